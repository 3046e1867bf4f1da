"""
Command line entry point for the node certificate tool.
Wires configuration, logging, the OpenSSL toolkit, the key vault and the
certificate lifecycle manager together.
"""

import argparse
import getpass
import logging
import os
import sys
from typing import List, Optional

from .models.config import Config
from .services.config_service import ConfigService
from .services.logging_service import LoggingService
from .security.certificate_service import CertificateLifecycleManager, render_report
from .security.cipher import AesGcmSecretCipher
from .security.errors import NodeCertError
from .security.toolkit import OpenSslToolkit
from .security.vault import PrivateKeyVault


class NodeCertApplication:
    """Holds the services of one tool invocation."""

    def __init__(self, config: Config, toolkit=None, cipher=None):
        """
        Initialize the application.

        Args:
            config: loaded configuration
            toolkit: PKI toolkit, OpenSSL by default
            cipher: vault cipher, AES-GCM by default
        """
        self.config = config
        self.logging_service = LoggingService(config)
        self.logger = logging.getLogger(__name__)

        self.toolkit = toolkit or OpenSslToolkit(
            openssl_path=config.openssl_path,
            min_version=config.min_openssl_version,
        )
        self.cipher = cipher or AesGcmSecretCipher(iterations=config.kdf_iterations)
        self.vault = PrivateKeyVault(
            self.cipher,
            self.toolkit,
            retain_node_key_file=config.retain_node_key_file,
        )
        self.manager = CertificateLifecycleManager(self.toolkit, self.vault)

    def run(self, command: str, args: argparse.Namespace) -> int:
        """Run one subcommand and return the process exit code."""
        config = self.config
        try:
            with self.logging_service.measure_operation(command):
                if command == 'generate':
                    self.manager.generate(
                        cert_dir=config.cert_dir,
                        ca_name=config.ca_name,
                        node_name=config.node_name,
                        ca_cert_days=config.ca_cert_days,
                        node_cert_days=config.node_cert_days,
                        overwrite=args.force,
                        vault_path=config.privatekeys_path,
                        password=_read_password(args),
                    )
                elif command == 'renew':
                    self.manager.renew(
                        cert_dir=config.cert_dir,
                        ca_cert_days=config.ca_cert_days,
                        node_cert_days=config.node_cert_days,
                        vault_path=config.privatekeys_path,
                        password=_read_password(args),
                    )
                elif command == 'info':
                    report = self.manager.info(config.cert_dir, vault_path=config.privatekeys_path)
                    print(render_report(report))
                elif command == 'encrypt':
                    self.vault.encrypt_file(args.input, args.output or args.input, _read_password(args))
                elif command == 'decrypt':
                    self.vault.decrypt_file(args.input, args.output, _read_password(args))
                elif command == 'passwd':
                    old_password, new_password = _read_password_change(args)
                    self.vault.rotate(args.input, old_password, new_password, out_path=args.output)
        except NodeCertError as e:
            self.logging_service.track_error(e, {'command': command})
            print(f"Error: {e}", file=sys.stderr)
            return 1

        return 0


def _read_password(args: argparse.Namespace) -> str:
    if getattr(args, 'ask_password', False):
        return getpass.getpass('Password: ')
    return getattr(args, 'password', None) or ''


def _read_password_change(args: argparse.Namespace):
    if args.ask_password:
        old_password = getpass.getpass('Old password: ')
        new_password = getpass.getpass('New password: ')
        if new_password != getpass.getpass('Repeat new password: '):
            raise NodeCertError("New passwords do not match")
        return old_password, new_password
    return args.old_password or '', args.new_password or ''


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--config', '-c', help='Configuration file path')
    common.add_argument('--log-level', help='Override the configured log level')

    password = argparse.ArgumentParser(add_help=False)
    password.add_argument('--password', '-p', help='Vault password (empty stores keys unencrypted)')
    password.add_argument('--ask-password', action='store_true', help='Prompt for the vault password')

    cert_dir = argparse.ArgumentParser(add_help=False)
    cert_dir.add_argument('--cert-dir', '-d', help='Certificate directory (default: ./cert)')
    cert_dir.add_argument('--privatekeys', '-k', help='Private key vault file (default: ./privatekeys.yaml)')

    days = argparse.ArgumentParser(add_help=False)
    days.add_argument('--ca-days', type=int, help='CA certificate validity in days (default: 7300)')
    days.add_argument('--node-days', type=int, help='Node certificate validity in days (default: 375)')

    parser = argparse.ArgumentParser(prog='nodecert', description='Node certificate and key vault tool')
    subparsers = parser.add_subparsers(dest='command', required=True)

    generate = subparsers.add_parser('generate', parents=[common, cert_dir, days, password],
                                     help='Generate CA and node certificates')
    generate.add_argument('--ca-name', help='CA common name')
    generate.add_argument('--node-name', help='Node common name')
    generate.add_argument('--force', '-f', action='store_true',
                          help='Overwrite an existing certificate directory')

    subparsers.add_parser('renew', parents=[common, cert_dir, days, password],
                          help='Renew certificates with the keys stored in the vault')
    subparsers.add_parser('info', parents=[common, cert_dir],
                          help='Show validity, public keys and addresses')

    for name, help_text in (('encrypt', 'Encrypt the private keys of a vault file'),
                            ('decrypt', 'Write a decrypted copy of a vault file')):
        sub = subparsers.add_parser(name, parents=[common, password], help=help_text)
        sub.add_argument('--input', '-i', required=True, help='Input vault file')
        sub.add_argument('--output', '-o', required=(name == 'decrypt'), help='Output vault file')

    passwd = subparsers.add_parser('passwd', parents=[common], help='Change the vault password')
    passwd.add_argument('--input', '-i', required=True, help='Vault file')
    passwd.add_argument('--output', '-o', help='Output vault file (default: in place)')
    passwd.add_argument('--old-password', help='Current password')
    passwd.add_argument('--new-password', help='New password')
    passwd.add_argument('--ask-password', action='store_true', help='Prompt for both passwords')

    init_config = subparsers.add_parser('init-config', help='Write a default configuration file')
    init_config.add_argument('--output', '-o', default='nodecert.conf',
                             help='Configuration file to create (default: ./nodecert.conf)')

    return parser


def load_config(args: argparse.Namespace) -> Config:
    """Load the configuration file, if any, and apply command line overrides."""
    config = ConfigService(args.config).get_config() if args.config else Config()

    overrides = {
        'cert_dir': getattr(args, 'cert_dir', None),
        'privatekeys_path': getattr(args, 'privatekeys', None),
        'ca_name': getattr(args, 'ca_name', None),
        'node_name': getattr(args, 'node_name', None),
        'ca_cert_days': getattr(args, 'ca_days', None),
        'node_cert_days': getattr(args, 'node_days', None),
        'log_level': args.log_level.upper() if args.log_level else None,
    }
    for field_name, value in overrides.items():
        if value is not None:
            setattr(config, field_name, value)

    # re-run type validation on the overridden values
    config.__post_init__()
    return config


def init_config(config_path: str) -> int:
    """Write a default configuration file, never replacing an existing one."""
    if os.path.exists(config_path):
        print(f"Configuration error: file already exists: {config_path}", file=sys.stderr)
        return 1

    try:
        ConfigService().create_default_config_file(config_path)
    except OSError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    print(f"Created configuration file: {config_path}")
    print("Please edit the configuration file and run again.")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the tool."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == 'init-config':
        return init_config(args.output)

    try:
        config = load_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    app = NodeCertApplication(config)
    return app.run(args.command, args)


if __name__ == '__main__':
    sys.exit(main())

"""
Certificate lifecycle management for the CA and node certificate chain.
"""
import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from cryptography import x509

from . import key_codec
from .address import derive_addresses
from .errors import (
    DirectoryExistsError, DirectoryNotFoundError, FileIOError,
    InvalidConfigurationError, ToolkitExecutionError, VaultNotFoundError,
)
from .models import CertificateBundle, CertificateInfo, CertificateReport, KeyRole
from .toolkit import PkiToolkit
from .vault import PrivateKeyVault

CA_CONFIG_FILE = 'ca.cnf'
NODE_CONFIG_FILE = 'node.cnf'
INDEX_FILE = 'index.txt'
SERIAL_FILE = 'serial.dat'
NEW_CERTS_DIR = 'new_certs'
CA_KEY_FILE = 'ca.key.pem'
CA_PUBLIC_KEY_FILE = 'ca.pubkey.pem'
NODE_KEY_FILE = 'node.key.pem'
CA_CERT_FILE = 'ca.crt.pem'
NODE_CSR_FILE = 'node.csr.pem'
NODE_CERT_FILE = 'node.crt.pem'
FULL_CERT_FILE = 'node.full.crt.pem'

SERIAL_BYTES = 19
DUMP_DATE_FORMAT = '%b %d %H:%M:%S %Y %Z'

_CERTIFICATE_SPLIT = re.compile(r'^Certificate:\s*$', re.MULTILINE)
_SUBJECT_PATTERN = re.compile(r'Subject: ?(.*)')
_ISSUER_PATTERN = re.compile(r'Issuer: ?(.*)')
_NOT_BEFORE_PATTERN = re.compile(r'Not Before: (.*)')
_NOT_AFTER_PATTERN = re.compile(r'Not After : (.*)')


@dataclass
class CertificatePaths:
    """Fixed file layout of a certificate directory."""
    cert_dir: str

    def path(self, name: str) -> str:
        return os.path.join(self.cert_dir, name)

    @property
    def ca_config(self) -> str:
        return self.path(CA_CONFIG_FILE)

    @property
    def node_config(self) -> str:
        return self.path(NODE_CONFIG_FILE)

    @property
    def index(self) -> str:
        return self.path(INDEX_FILE)

    @property
    def serial(self) -> str:
        return self.path(SERIAL_FILE)

    @property
    def new_certs(self) -> str:
        return self.path(NEW_CERTS_DIR)

    @property
    def ca_key(self) -> str:
        return self.path(CA_KEY_FILE)

    @property
    def ca_public_key(self) -> str:
        return self.path(CA_PUBLIC_KEY_FILE)

    @property
    def node_key(self) -> str:
        return self.path(NODE_KEY_FILE)

    @property
    def ca_cert(self) -> str:
        return self.path(CA_CERT_FILE)

    @property
    def node_csr(self) -> str:
        return self.path(NODE_CSR_FILE)

    @property
    def node_cert(self) -> str:
        return self.path(NODE_CERT_FILE)

    @property
    def full_cert(self) -> str:
        return self.path(FULL_CERT_FILE)

    def key_files(self) -> Dict[KeyRole, str]:
        return {KeyRole.CA: self.ca_key, KeyRole.NODE: self.node_key}


@dataclass
class _DumpedCertificate:
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    public_key_hex: str


class CertificateLifecycleManager:
    """Generates, renews and inspects the CA and node certificates."""

    def __init__(self, toolkit: PkiToolkit, vault: PrivateKeyVault):
        """Initialize the manager with the PKI toolkit and the key vault."""
        self.toolkit = toolkit
        self.vault = vault
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def generate(self, cert_dir: str = './cert', ca_name: str = 'my cool CA',
                 node_name: str = 'my cool node name', ca_cert_days: int = 7300,
                 node_cert_days: int = 375, overwrite: bool = False,
                 vault_path: str = './privatekeys.yaml', password: str = '') -> CertificateBundle:
        """
        Issue a CA and node certificate into a fresh certificate directory.

        Existing keys are reused when the vault already exists, so running
        generate again only replaces the certificates.

        Raises:
            InvalidConfigurationError: CA validity shorter than node validity
            ToolkitUnavailableError: openssl missing or too old
            DirectoryExistsError: directory exists and overwrite is False
        """
        self._validate_days(ca_cert_days, node_cert_days)
        self.toolkit.check_version()

        paths = CertificatePaths(os.path.abspath(cert_dir))
        vault_path = os.path.abspath(vault_path)

        if os.path.exists(paths.cert_dir):
            if not overwrite:
                raise DirectoryExistsError(f"Certificate directory already exists: {paths.cert_dir}")
            self.logger.info(f"Removing existing certificate directory: {paths.cert_dir}")
            try:
                shutil.rmtree(paths.cert_dir)
            except OSError as e:
                raise FileIOError(f"Failed to delete directory: {paths.cert_dir} ({e})")
        self._make_dir(paths.cert_dir)

        key_files = paths.key_files()
        if os.path.exists(vault_path):
            self.logger.info(f"Restoring private keys from {vault_path}")
            self.vault.restore(vault_path, key_files, password)

        for role, key_path in key_files.items():
            if not os.path.exists(key_path):
                self.logger.info(f"Generating new {role.label} private key")
                self.toolkit.generate_private_key(key_path)

        self._write_ca_config(paths, ca_name)
        self._write_node_config(paths, node_name)
        self._write_ledger(paths)

        self.toolkit.derive_public_key(paths.ca_key, paths.ca_public_key)

        bundle = self._issue(paths, ca_cert_days, node_cert_days)

        self.vault.persist(key_files, password, vault_path)
        self.logger.info(f"Certificates generated in {paths.cert_dir}")
        return bundle

    def renew(self, cert_dir: str = './cert', ca_cert_days: int = 7300,
              node_cert_days: int = 375, vault_path: str = './privatekeys.yaml',
              password: str = '') -> CertificateBundle:
        """
        Re-issue both certificates with the keys stored in the vault.

        The current node certificate is revoked first; a failed revocation is
        logged and does not stop the reissue.
        """
        self._validate_days(ca_cert_days, node_cert_days)
        self.toolkit.check_version()

        paths = CertificatePaths(os.path.abspath(cert_dir))
        vault_path = os.path.abspath(vault_path)

        if not os.path.exists(paths.cert_dir):
            raise DirectoryNotFoundError(f"Certificate directory does not exist: {paths.cert_dir}")
        if not os.path.exists(vault_path):
            raise VaultNotFoundError(
                f"Private keys cannot be restored, vault does not exist: {vault_path}"
            )

        key_files = paths.key_files()
        restored = self.vault.restore(vault_path, key_files, password)

        try:
            for role, key_path in key_files.items():
                if not os.path.exists(key_path):
                    raise FileIOError(f"{role.label} private key does not exist: {key_path}")

            try:
                self.toolkit.revoke_certificate(paths.ca_config, paths.node_cert)
            except ToolkitExecutionError as e:
                self.logger.warning(f"Revocation of the current node certificate failed: {e}")

            bundle = self._issue(paths, ca_cert_days, node_cert_days)
        finally:
            # restored plaintext keys never outlive the renew, failed or not
            self.vault.discard(restored)

        self.logger.info(f"Certificates renewed in {paths.cert_dir}")
        return bundle

    def info(self, cert_dir: str = './cert', vault_path: Optional[str] = None) -> CertificateReport:
        """
        Report validity windows, public keys and addresses of the chain.

        Args:
            cert_dir: certificate directory
            vault_path: optional vault used to identify the CA certificate
                by its stored public key
        """
        paths = CertificatePaths(os.path.abspath(cert_dir))
        if not os.path.exists(paths.cert_dir):
            raise DirectoryNotFoundError(f"Certificate directory does not exist: {paths.cert_dir}")
        if not os.path.exists(paths.full_cert):
            raise FileIOError(f"Combined certificate not found: {paths.full_cert}")

        self.toolkit.check_version()
        dump = self.toolkit.dump_certificates(paths.full_cert)
        certificates = self.parse_certificate_dump(dump)
        if len(certificates) < 2:
            raise ToolkitExecutionError(
                f"Expected 2 certificates in {paths.full_cert}, parsed {len(certificates)}"
            )

        ca_index, order_source = self._resolve_ca_index(certificates[:2], vault_path)
        node_index = 1 - ca_index

        return CertificateReport(
            ca=self._build_info(KeyRole.CA, certificates[ca_index]),
            node=self._build_info(KeyRole.NODE, certificates[node_index]),
            order_source=order_source,
        )

    # ------------------------------------------------------------------
    # Dump parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_certificate_dump(dump: str) -> List[_DumpedCertificate]:
        """Parse the toolkit's text dump into one entry per certificate."""
        certificates = []
        for block in _CERTIFICATE_SPLIT.split(dump)[1:]:
            subject = _SUBJECT_PATTERN.search(block)
            issuer = _ISSUER_PATTERN.search(block)
            not_before = _NOT_BEFORE_PATTERN.search(block)
            not_after = _NOT_AFTER_PATTERN.search(block)
            public_keys = key_codec.public_keys_from_dump(block)
            if not (not_before and not_after and public_keys):
                raise ToolkitExecutionError("Unrecognized certificate dump format")

            certificates.append(_DumpedCertificate(
                subject=subject.group(1).strip() if subject else '',
                issuer=issuer.group(1).strip() if issuer else '',
                not_before=_parse_dump_date(not_before.group(1)),
                not_after=_parse_dump_date(not_after.group(1)),
                public_key_hex=public_keys[0],
            ))
        return certificates

    def _resolve_ca_index(self, certificates: List[_DumpedCertificate],
                          vault_path: Optional[str]) -> Tuple[int, str]:
        if vault_path and os.path.exists(vault_path):
            entry = self.vault.load(vault_path).get(KeyRole.CA)
            ca_public_key = (entry.public_key or '').upper() if entry else ''
            for index, certificate in enumerate(certificates):
                if ca_public_key and certificate.public_key_hex == ca_public_key:
                    return index, 'vault'
            self.logger.warning("CA public key from the vault does not match the certificate chain")

        self_signed = [
            index for index, certificate in enumerate(certificates)
            if certificate.subject and certificate.subject == certificate.issuer
        ]
        if len(self_signed) == 1:
            return self_signed[0], 'self-signed'

        # node certificate leads the combined chain
        return 1, 'dump-order'

    @staticmethod
    def _build_info(role: KeyRole, certificate: _DumpedCertificate) -> CertificateInfo:
        now = datetime.now(timezone.utc)
        mainnet, testnet = derive_addresses(certificate.public_key_hex)
        return CertificateInfo(
            role=role,
            subject=certificate.subject,
            issuer=certificate.issuer,
            not_before=certificate.not_before,
            not_after=certificate.not_after,
            is_valid=certificate.not_before <= now <= certificate.not_after,
            public_key_hex=certificate.public_key_hex,
            mainnet_address=mainnet,
            testnet_address=testnet,
        )

    # ------------------------------------------------------------------
    # Issuance helpers
    # ------------------------------------------------------------------

    def _issue(self, paths: CertificatePaths, ca_cert_days: int, node_cert_days: int) -> CertificateBundle:
        self.toolkit.create_ca_certificate(paths.ca_config, paths.ca_key, ca_cert_days, paths.ca_cert)
        self.toolkit.create_csr(paths.node_config, paths.node_key, paths.node_csr)
        self._write_serial(paths)
        self.toolkit.sign_csr(paths.ca_config, paths.node_csr, node_cert_days, paths.node_cert)
        return self._combine(paths)

    def _combine(self, paths: CertificatePaths) -> CertificateBundle:
        try:
            with open(paths.ca_cert, 'r') as f:
                ca_certificate = f.read()
            with open(paths.node_cert, 'r') as f:
                node_certificate = f.read()
        except OSError as e:
            raise FileIOError(f"Failed to read certificate: {e}")

        ca_cert = _load_certificate(ca_certificate, paths.ca_cert)
        node_cert = _load_certificate(node_certificate, paths.node_cert)

        combined = node_certificate + ca_certificate
        self._write_file(paths.full_cert, combined)
        return CertificateBundle(
            ca_certificate=ca_certificate,
            node_certificate=node_certificate,
            combined_certificate=combined,
            ca_not_before=ca_cert.not_valid_before_utc,
            ca_not_after=ca_cert.not_valid_after_utc,
            node_not_before=node_cert.not_valid_before_utc,
            node_not_after=node_cert.not_valid_after_utc,
        )

    @staticmethod
    def _validate_days(ca_cert_days: int, node_cert_days: int) -> None:
        if ca_cert_days <= 0 or node_cert_days <= 0:
            raise InvalidConfigurationError("Certificate validity days must be positive")
        if ca_cert_days < node_cert_days:
            raise InvalidConfigurationError(
                f"CA certificate validity ({ca_cert_days} days) is shorter than "
                f"node certificate validity ({node_cert_days} days)"
            )

    def _write_ca_config(self, paths: CertificatePaths, ca_name: str) -> None:
        self.logger.info("Writing CA config")
        ca_config = f"""[ca]
default_ca = CA_default

[CA_default]
new_certs_dir = {_escape(paths.new_certs)}

database = {_escape(paths.index)}
serial   = {_escape(paths.serial)}
private_key = {_escape(paths.ca_key)}
certificate = {_escape(paths.ca_cert)}
policy = policy_catapult

[policy_catapult]
commonName = supplied

[req]
prompt = no
distinguished_name = dn

[dn]
CN = {ca_name}
"""
        self._write_file(paths.ca_config, ca_config)

    def _write_node_config(self, paths: CertificatePaths, node_name: str) -> None:
        self.logger.info("Writing node config")
        node_config = f"""[req]
prompt = no
distinguished_name = dn
[dn]
CN = {node_name}
"""
        self._write_file(paths.node_config, node_config)

    def _write_ledger(self, paths: CertificatePaths) -> None:
        self._write_file(paths.index, '')
        self._make_dir(paths.new_certs)

    def _write_serial(self, paths: CertificatePaths) -> None:
        self._write_file(paths.serial, os.urandom(SERIAL_BYTES).hex() + '\n')

    @staticmethod
    def _write_file(file_path: str, data: str) -> None:
        try:
            with open(file_path, 'w') as f:
                f.write(data)
        except OSError as e:
            raise FileIOError(f"Failed to write file: {file_path} ({e})")

    @staticmethod
    def _make_dir(dir_path: str) -> None:
        try:
            os.makedirs(dir_path, exist_ok=True)
        except OSError as e:
            raise FileIOError(f"Failed to create directory: {dir_path} ({e})")


def _escape(path: str) -> str:
    return path.replace('\\', '\\\\')


def _load_certificate(pem_text: str, certificate_path: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(pem_text.encode('ascii'))
    except ValueError as e:
        raise ToolkitExecutionError(f"Toolkit wrote an unreadable certificate: {certificate_path} ({e})")


def _parse_dump_date(value: str) -> datetime:
    try:
        parsed = datetime.strptime(value.strip(), DUMP_DATE_FORMAT)
    except ValueError:
        raise ToolkitExecutionError(f"Unrecognized certificate date: {value.strip()}")
    return parsed.replace(tzinfo=timezone.utc)


def render_report(report: CertificateReport) -> str:
    """Format a certificate report for the terminal."""
    lines = ['=' * 50]
    for title, info in (('CA Cert:', report.ca), ('Node Cert:', report.node)):
        lines.extend([
            title,
            f"          Subject: {info.subject}",
            f"       Start Date: {info.not_before.isoformat()}",
            f"         End Date: {info.not_after.isoformat()}",
            f"            Valid: {'yes' if info.is_valid else 'no'}",
            f"       Public Key: {info.public_key_hex}",
            f"  Mainnet Address: {info.mainnet_address}",
            f"  Testnet Address: {info.testnet_address}",
        ])
    lines.append('=' * 50)
    return '\n'.join(lines)

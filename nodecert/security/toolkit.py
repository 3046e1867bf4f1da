"""
PKI toolkit boundary: capability interfaces and the OpenSSL subprocess adapter.
"""
import logging
import os
import re
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .errors import ToolkitExecutionError, ToolkitUnavailableError, FileIOError

DEFAULT_MIN_VERSION = '3.0.2'

_VERSION_PATTERN = re.compile(r'^OpenSSL +([^ ]*)')


def parse_version(version: str) -> Tuple[int, ...]:
    """Turn '3.0.13' or '1.1.1w' into a comparable tuple of integers."""
    parts = []
    for piece in version.split('.'):
        match = re.match(r'\d+', piece)
        if not match:
            break
        parts.append(int(match.group(0)))
    return tuple(parts)


class KeyGenerator(ABC):
    """Creates ed25519 private keys and derives their public keys."""

    @abstractmethod
    def generate_private_key(self, private_key_path: str) -> None:
        """Write a fresh ed25519 private key PEM file with mode 0600."""

    @abstractmethod
    def derive_public_key(self, private_key_path: str,
                          public_key_path: Optional[str] = None) -> str:
        """Return the public key PEM text, optionally also writing it to a file."""


class CertificateAuthority(ABC):
    """Self-signs the CA certificate and revokes issued certificates."""

    @abstractmethod
    def create_ca_certificate(self, config_path: str, private_key_path: str,
                              days: int, certificate_path: str) -> None:
        """Create a self-signed CA certificate valid for the given days."""

    @abstractmethod
    def revoke_certificate(self, config_path: str, certificate_path: str) -> None:
        """Mark a certificate revoked in the issuance ledger."""


class CertificateSigner(ABC):
    """Builds certificate signing requests and signs them under the CA."""

    @abstractmethod
    def create_csr(self, config_path: str, private_key_path: str, csr_path: str) -> None:
        """Create a CSR from a request config and a private key."""

    @abstractmethod
    def sign_csr(self, config_path: str, csr_path: str, days: int,
                 certificate_path: str) -> None:
        """Sign a CSR under the CA config and ledger."""


class PkiToolkit(KeyGenerator, CertificateAuthority, CertificateSigner):
    """Everything the lifecycle manager needs from the PKI toolkit."""

    @abstractmethod
    def check_version(self) -> str:
        """Return the toolkit version or raise ToolkitUnavailableError."""

    @abstractmethod
    def dump_certificates(self, bundle_path: str) -> str:
        """Return the human-readable text dump of every certificate in a bundle."""


class OpenSslToolkit(PkiToolkit):
    """PKI toolkit backed by the openssl command line tool."""

    def __init__(self, openssl_path: str = 'openssl', min_version: str = DEFAULT_MIN_VERSION):
        self.openssl_path = openssl_path
        self.min_version = min_version
        self.logger = logging.getLogger(__name__)

    def _run(self, args: List[str], input_text: Optional[str] = None) -> str:
        """Run openssl with the given arguments and return stdout."""
        command = [self.openssl_path] + args
        self.logger.debug(f"Running: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                input=input_text,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            raise ToolkitUnavailableError(f"openssl executable not found: {self.openssl_path}")
        except OSError as e:
            raise ToolkitUnavailableError(f"openssl execution failure: {e}")

        if result.returncode != 0:
            raise ToolkitExecutionError(
                f"openssl {args[0]} failed with exit code {result.returncode}: "
                f"{result.stderr.strip()}",
                command=command,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result.stdout

    def check_version(self) -> str:
        try:
            output = self._run(['version'])
        except ToolkitExecutionError as e:
            raise ToolkitUnavailableError(f"openssl execution failure: {e}")

        match = _VERSION_PATTERN.match(output)
        if match is None:
            raise ToolkitUnavailableError(f"requires openssl version >={self.min_version}")

        version = match.group(1)
        if parse_version(version) < parse_version(self.min_version):
            raise ToolkitUnavailableError(
                f"requires openssl version >={self.min_version}, found {version}"
            )
        self.logger.debug(f"Using OpenSSL {version}")
        return version

    def generate_private_key(self, private_key_path: str) -> None:
        self.logger.info(f"Generating private key: {private_key_path}")
        self._run([
            'genpkey',
            '-algorithm', 'ed25519',
            '-outform', 'PEM',
            '-out', private_key_path,
        ])
        try:
            os.chmod(private_key_path, 0o600)
        except OSError as e:
            raise FileIOError(f"Failed to restrict permissions of {private_key_path}: {e}")

    def derive_public_key(self, private_key_path: str,
                          public_key_path: Optional[str] = None) -> str:
        public_key = self._run(['pkey', '-in', private_key_path, '-pubout'])
        if public_key_path:
            self.logger.info(f"Writing public key: {public_key_path}")
            try:
                with open(public_key_path, 'w') as f:
                    f.write(public_key)
            except OSError as e:
                raise FileIOError(f"Failed to write file: {public_key_path} ({e})")
        return public_key

    def create_ca_certificate(self, config_path: str, private_key_path: str,
                              days: int, certificate_path: str) -> None:
        self.logger.info(f"Creating CA certificate valid for {days} days")
        self._run([
            'req',
            '-config', config_path,
            '-keyform', 'PEM',
            '-key', private_key_path,
            '-new',
            '-x509',
            '-days', str(days),
            '-out', certificate_path,
        ])

    def create_csr(self, config_path: str, private_key_path: str, csr_path: str) -> None:
        self.logger.info("Creating node CSR")
        self._run([
            'req',
            '-config', config_path,
            '-key', private_key_path,
            '-new',
            '-out', csr_path,
        ])

    def sign_csr(self, config_path: str, csr_path: str, days: int,
                 certificate_path: str) -> None:
        self.logger.info(f"Signing node certificate valid for {days} days")
        self._run([
            'ca',
            '-config', config_path,
            '-days', str(days),
            '-notext',
            '-batch',
            '-in', csr_path,
            '-out', certificate_path,
        ])

    def revoke_certificate(self, config_path: str, certificate_path: str) -> None:
        self.logger.info(f"Revoking certificate: {certificate_path}")
        self._run(['ca', '-config', config_path, '-revoke', certificate_path])

    def dump_certificates(self, bundle_path: str) -> str:
        pkcs7 = self._run(['crl2pkcs7', '-nocrl', '-certfile', bundle_path])
        return self._run(['pkcs7', '-print_certs', '-text', '-noout'], input_text=pkcs7)

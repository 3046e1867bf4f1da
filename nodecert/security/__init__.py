"""
Security package for node key material and certificate management.
"""
from .models import (
    KeyRole, KeyMaterial, VaultEntry, VaultRecord,
    CertificateBundle, CertificateInfo, CertificateReport, DecryptResult
)
from .errors import (
    NodeCertError, InvalidConfigurationError, ToolkitUnavailableError,
    ToolkitExecutionError, DirectoryExistsError, DirectoryNotFoundError,
    VaultNotFoundError, VaultReadError, KeyIntegrityError, FileIOError
)
from .cipher import SecretCipher, AesGcmSecretCipher
from .toolkit import PkiToolkit, OpenSslToolkit
from .vault import PrivateKeyVault
from .certificate_service import CertificateLifecycleManager, render_report

__all__ = [
    'KeyRole',
    'KeyMaterial',
    'VaultEntry',
    'VaultRecord',
    'CertificateBundle',
    'CertificateInfo',
    'CertificateReport',
    'DecryptResult',
    'NodeCertError',
    'InvalidConfigurationError',
    'ToolkitUnavailableError',
    'ToolkitExecutionError',
    'DirectoryExistsError',
    'DirectoryNotFoundError',
    'VaultNotFoundError',
    'VaultReadError',
    'KeyIntegrityError',
    'FileIOError',
    'SecretCipher',
    'AesGcmSecretCipher',
    'PkiToolkit',
    'OpenSslToolkit',
    'PrivateKeyVault',
    'CertificateLifecycleManager',
    'render_report'
]

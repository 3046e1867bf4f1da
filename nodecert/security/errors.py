"""
Exceptions raised by the key vault and the certificate lifecycle manager.
"""
from typing import List, Optional


class NodeCertError(Exception):
    """Base class for every error surfaced to the caller."""


class InvalidConfigurationError(NodeCertError):
    """Validity days or other inputs are inconsistent."""


class ToolkitUnavailableError(NodeCertError):
    """The PKI toolkit is missing or older than the required version."""


class ToolkitExecutionError(NodeCertError):
    """A toolkit invocation failed or produced output that cannot be parsed."""

    def __init__(self, message: str, command: Optional[List[str]] = None,
                 returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class DirectoryExistsError(NodeCertError):
    """The certificate directory already exists and overwrite was not requested."""


class DirectoryNotFoundError(NodeCertError):
    """The certificate directory does not exist."""


class VaultNotFoundError(NodeCertError):
    """The private key vault file does not exist."""


class VaultReadError(NodeCertError):
    """The private key vault file cannot be read or parsed."""


class KeyIntegrityError(NodeCertError):
    """Recovered key material is not exactly 64 hex characters."""


class FileIOError(NodeCertError):
    """Writing or deleting a key, config or certificate file failed."""

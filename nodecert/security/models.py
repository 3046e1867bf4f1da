"""
Security models for node key material and certificate management.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class KeyRole(Enum):
    """Identities owned by a node; the value is the vault section name."""
    CA = "main"
    NODE = "transport"

    @property
    def label(self) -> str:
        return "CA" if self is KeyRole.CA else "Node"


@dataclass
class KeyMaterial:
    """Raw ed25519 key material of one identity, as 64 hex characters each."""
    role: KeyRole
    private_key_hex: Optional[str] = None
    public_key_hex: Optional[str] = None


@dataclass
class VaultEntry:
    """One role section of the private key vault document."""
    private_key: str
    public_key: Optional[str] = None
    mainnet_address: Optional[str] = None
    testnet_address: Optional[str] = None
    encrypted: Optional[bool] = None  # None: written before the flag existed

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {'privateKey': self.private_key}
        if self.public_key:
            data['publicKey'] = self.public_key
        if self.mainnet_address:
            data['mainnetAddress'] = self.mainnet_address
        if self.testnet_address:
            data['testnetAddress'] = self.testnet_address
        if self.encrypted is not None:
            data['encrypted'] = self.encrypted
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> 'VaultEntry':
        encrypted = data.get('encrypted')
        return cls(
            private_key=str(data.get('privateKey') or ''),
            public_key=data.get('publicKey') or None,
            mainnet_address=data.get('mainnetAddress') or None,
            testnet_address=data.get('testnetAddress') or None,
            encrypted=bool(encrypted) if encrypted is not None else None,
        )


@dataclass
class VaultRecord:
    """Persisted private key vault: role -> entry, either role optional."""
    entries: Dict[KeyRole, VaultEntry] = field(default_factory=dict)

    def get(self, role: KeyRole) -> Optional[VaultEntry]:
        return self.entries.get(role)

    def to_dict(self) -> Dict[str, Dict[str, object]]:
        return {
            role.value: self.entries[role].to_dict()
            for role in KeyRole
            if role in self.entries
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, object]]) -> 'VaultRecord':
        entries = {}
        for role in KeyRole:
            section = data.get(role.value)
            if section:
                entries[role] = VaultEntry.from_dict(section)
        return cls(entries=entries)


@dataclass
class CertificateBundle:
    """CA and node certificates plus the combined node-then-CA chain."""
    ca_certificate: str
    node_certificate: str
    combined_certificate: str
    ca_not_before: datetime
    ca_not_after: datetime
    node_not_before: datetime
    node_not_after: datetime


@dataclass
class CertificateInfo:
    """Information about one certificate of the combined chain."""
    role: KeyRole
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    is_valid: bool
    public_key_hex: str
    mainnet_address: str
    testnet_address: str


@dataclass
class CertificateReport:
    """Result of inspecting a certificate directory."""
    ca: CertificateInfo
    node: CertificateInfo
    order_source: str  # vault, self-signed or dump-order


@dataclass
class DecryptResult:
    """Outcome of a password based decryption."""
    success: bool
    plaintext: Optional[str] = None

    @classmethod
    def decrypted(cls, plaintext: str) -> 'DecryptResult':
        return cls(success=True, plaintext=plaintext)

    @classmethod
    def authentication_failed(cls) -> 'DecryptResult':
        return cls(success=False)

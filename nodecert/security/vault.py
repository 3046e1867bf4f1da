"""
Private key vault: encrypted-at-rest storage of the CA and node key material.

The vault document is a small YAML file with an optional ``main`` (CA) and an
optional ``transport`` (node) section. Plaintext PEM key files only exist
transiently so the PKI toolkit can use them; the vault is the durable copy.
"""
import logging
import os
from typing import Dict, Optional

import yaml

from . import key_codec
from .address import derive_addresses
from .cipher import SecretCipher
from .errors import FileIOError, KeyIntegrityError, VaultNotFoundError, VaultReadError
from .models import KeyMaterial, KeyRole, VaultEntry, VaultRecord


class PrivateKeyVault:
    """Seals key files into the vault and restores them from it."""

    def __init__(self, cipher: SecretCipher, key_generator, retain_node_key_file: bool = True):
        """
        Initialize the vault.

        Args:
            cipher: password based cipher for the private keys
            key_generator: toolkit used to derive public keys from key files
            retain_node_key_file: keep the plaintext node key after persisting,
                the running peer reads it from disk
        """
        self.cipher = cipher
        self.key_generator = key_generator
        self.retain_node_key_file = retain_node_key_file
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def load(self, vault_path: str) -> VaultRecord:
        """Read and parse a vault document."""
        if not os.path.exists(vault_path):
            raise VaultNotFoundError(f"Private key vault not found: {vault_path}")
        try:
            with open(vault_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise VaultReadError(f"Failed to read private key vault: {vault_path} ({e})")

        if not isinstance(data, dict):
            raise VaultReadError(f"Private key vault is not a mapping: {vault_path}")
        for role in KeyRole:
            section = data.get(role.value)
            if section is not None and not isinstance(section, dict):
                raise VaultReadError(f"Section '{role.value}' is not a mapping: {vault_path}")

        return VaultRecord.from_dict(data)

    def save(self, record: VaultRecord, vault_path: str) -> None:
        """Write a vault document with owner-only permissions."""
        vault_dir = os.path.dirname(vault_path)
        try:
            if vault_dir:
                os.makedirs(vault_dir, exist_ok=True)
            with open(vault_path, 'w') as f:
                yaml.safe_dump(record.to_dict(), f, default_flow_style=False, sort_keys=False)
            os.chmod(vault_path, 0o600)
        except OSError as e:
            raise FileIOError(f"Failed to write private key vault: {vault_path} ({e})")
        self.logger.info(f"Private key vault written: {vault_path}")

    # ------------------------------------------------------------------
    # Sealing and recovery of single entries
    # ------------------------------------------------------------------

    def _seal(self, role: KeyRole, private_key_hex: str, password: str,
              public_key_hex: Optional[str] = None) -> VaultEntry:
        private_key_hex = key_codec.validate_hex(private_key_hex, role)
        if password:
            private_key, encrypted = self.cipher.encrypt(private_key_hex, password), True
        else:
            private_key, encrypted = private_key_hex, False

        entry = VaultEntry(private_key=private_key, encrypted=encrypted)
        if public_key_hex:
            entry.public_key = public_key_hex
            entry.mainnet_address, entry.testnet_address = derive_addresses(public_key_hex)
        return entry

    def _recover(self, role: KeyRole, entry: VaultEntry, password: str) -> str:
        stored = entry.private_key

        if entry.encrypted is False:
            return key_codec.validate_hex(stored, role)

        result = self.cipher.decrypt(stored, password)
        if result.success:
            return key_codec.validate_hex(result.plaintext, role)

        if entry.encrypted:
            raise KeyIntegrityError(
                f"Failed to decrypt {role.label} private key: wrong password or corrupted vault"
            )

        # legacy document without the flag: the value may already be plaintext
        self.logger.debug(f"{role.label} private key is not decryptable, treating it as plaintext")
        return key_codec.validate_hex(stored, role)

    def recover_material(self, record: VaultRecord, password: str) -> Dict[KeyRole, KeyMaterial]:
        """Recover the plaintext key material of every role present in a record."""
        material = {}
        for role, entry in record.entries.items():
            if not entry.private_key:
                continue
            material[role] = KeyMaterial(
                role=role,
                private_key_hex=self._recover(role, entry, password),
                public_key_hex=entry.public_key,
            )
        return material

    # ------------------------------------------------------------------
    # Key file lifecycle
    # ------------------------------------------------------------------

    def persist(self, key_files: Dict[KeyRole, str], password: str, vault_path: str) -> VaultRecord:
        """
        Seal plaintext key files into the vault and remove the plaintext copies.

        Args:
            key_files: role -> plaintext private key PEM path
            password: vault password, empty stores the keys unencrypted
            vault_path: vault document to (re)write

        Returns:
            The written VaultRecord
        """
        record = VaultRecord()
        for role, key_path in key_files.items():
            try:
                seed = key_codec.read_seed(key_path)
            except OSError as e:
                raise FileIOError(f"Failed to read private key file: {key_path} ({e})")
            public_key_hex = key_codec.extract_public_key_hex(key_path, self.key_generator)
            record.entries[role] = self._seal(role, seed, password, public_key_hex)

        self.save(record, vault_path)
        self.discard(key_files)
        return record

    def discard(self, key_files: Dict[KeyRole, str]) -> None:
        """Delete plaintext key files according to the retention policy."""
        for role, key_path in key_files.items():
            if role is KeyRole.NODE and self.retain_node_key_file:
                continue
            try:
                os.remove(key_path)
            except OSError as e:
                raise FileIOError(f"Failed to delete file: {key_path} ({e})")
            self.logger.info(f"Removed plaintext {role.label} private key: {key_path}")

    def restore(self, vault_path: str, key_files: Dict[KeyRole, str], password: str) -> Dict[KeyRole, str]:
        """
        Materialize plaintext key files from the vault.

        Roles without data are skipped and existing key files are never
        overwritten.

        Returns:
            role -> path of every key file actually written
        """
        record = self.load(vault_path)
        written = {}

        # every role is recovered before any key file is written
        seeds = {}
        for role in key_files:
            entry = record.get(role)
            if entry is not None and entry.private_key:
                seeds[role] = self._recover(role, entry, password)

        for role, seed in seeds.items():
            key_path = key_files[role]
            if os.path.exists(key_path):
                self.logger.info(f"{role.label} private key already present, not overwriting: {key_path}")
                continue

            try:
                with open(key_path, 'w') as f:
                    f.write(key_codec.wrap_seed(seed))
                os.chmod(key_path, 0o600)
            except OSError as e:
                raise FileIOError(f"Failed to write private key file: {key_path} ({e})")
            self.logger.info(f"Restored {role.label} private key: {key_path}")
            written[role] = key_path

        return written

    # ------------------------------------------------------------------
    # Whole document operations
    # ------------------------------------------------------------------

    def rotate(self, vault_path: str, old_password: str, new_password: str,
               out_path: Optional[str] = None) -> VaultRecord:
        """Re-encrypt every private key of a vault under a new password."""
        record = self.load(vault_path)
        material = self.recover_material(record, old_password)

        rotated = VaultRecord()
        for role, keys in material.items():
            entry = record.get(role)
            sealed = self._seal(role, keys.private_key_hex, new_password)
            sealed.public_key = entry.public_key
            sealed.mainnet_address = entry.mainnet_address
            sealed.testnet_address = entry.testnet_address
            rotated.entries[role] = sealed

        self.save(rotated, out_path or vault_path)
        self.logger.info("Private key vault password changed")
        return rotated

    def encrypt_file(self, in_path: str, out_path: str, password: str) -> VaultRecord:
        """Seal a vault document whose private keys are stored in plaintext."""
        record = self.load(in_path)
        sealed_record = VaultRecord()

        for role, entry in record.entries.items():
            if not entry.private_key:
                continue
            if entry.encrypted:
                self.logger.warning(f"{role.label} private key is already encrypted, keeping it")
                sealed_record.entries[role] = entry
                continue
            sealed = self._seal(role, entry.private_key, password)
            sealed.public_key = entry.public_key
            sealed.mainnet_address = entry.mainnet_address
            sealed.testnet_address = entry.testnet_address
            sealed_record.entries[role] = sealed

        self.save(sealed_record, out_path)
        return sealed_record

    def decrypt_file(self, in_path: str, out_path: str, password: str) -> VaultRecord:
        """Write a plaintext copy of a vault document."""
        record = self.load(in_path)
        material = self.recover_material(record, password)

        plain = VaultRecord()
        for role, keys in material.items():
            entry = record.get(role)
            plain.entries[role] = VaultEntry(
                private_key=keys.private_key_hex,
                public_key=entry.public_key,
                mainnet_address=entry.mainnet_address,
                testnet_address=entry.testnet_address,
                encrypted=False,
            )

        self.save(plain, out_path)
        return plain

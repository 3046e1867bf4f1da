"""
Tests for the private key vault.
"""
import os
import shutil
import stat
import tempfile
import unittest

import yaml

from nodecert.security import key_codec
from nodecert.security.cipher import AesGcmSecretCipher
from nodecert.security.errors import (
    FileIOError, KeyIntegrityError, VaultNotFoundError, VaultReadError,
)
from nodecert.security.models import KeyRole
from nodecert.security.vault import PrivateKeyVault

from fake_toolkit import FakeToolkit


class VaultTestCase(unittest.TestCase):
    """Shared fixtures: a temp directory holding freshly generated key files."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.toolkit = FakeToolkit()
        self.cipher = AesGcmSecretCipher(iterations=1000)
        self.vault = PrivateKeyVault(self.cipher, self.toolkit)
        self.vault_path = os.path.join(self.temp_dir, 'privatekeys.yaml')
        self.key_files = {
            KeyRole.CA: os.path.join(self.temp_dir, 'ca.key.pem'),
            KeyRole.NODE: os.path.join(self.temp_dir, 'node.key.pem'),
        }
        self.originals = {}
        for role, path in self.key_files.items():
            self.toolkit.generate_private_key(path)
            with open(path, 'r') as f:
                self.originals[role] = f.read()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def read_document(self, path=None):
        with open(path or self.vault_path, 'r') as f:
            return yaml.safe_load(f)

    def write_document(self, data, path=None):
        with open(path or self.vault_path, 'w') as f:
            yaml.safe_dump(data, f)

    def remove_key_files(self):
        for path in self.key_files.values():
            if os.path.exists(path):
                os.remove(path)


class TestPersist(VaultTestCase):
    """Test cases for sealing key files into the vault."""

    def test_persist_writes_both_roles(self):
        """Both roles are stored encrypted with public key and addresses."""
        record = self.vault.persist(self.key_files, 'pw', self.vault_path)

        document = self.read_document()
        self.assertEqual(set(document.keys()), {'main', 'transport'})
        for role in KeyRole:
            section = document[role.value]
            seed = key_codec.extract_seed(self.originals[role])
            self.assertNotEqual(section['privateKey'], seed)
            self.assertTrue(section['encrypted'])
            self.assertEqual(len(section['publicKey']), 64)
            self.assertTrue(section['mainnetAddress'].startswith('N'))
            self.assertTrue(section['testnetAddress'].startswith('T'))
            self.assertEqual(record.get(role).public_key, section['publicKey'])

    def test_persist_deletes_ca_and_keeps_node_key(self):
        """The node key file stays for the running peer by default."""
        self.vault.persist(self.key_files, 'pw', self.vault_path)

        self.assertFalse(os.path.exists(self.key_files[KeyRole.CA]))
        self.assertTrue(os.path.exists(self.key_files[KeyRole.NODE]))

    def test_persist_deletes_both_when_node_key_not_retained(self):
        """With retention disabled no plaintext key is left behind."""
        vault = PrivateKeyVault(self.cipher, self.toolkit, retain_node_key_file=False)
        vault.persist(self.key_files, 'pw', self.vault_path)

        for path in self.key_files.values():
            self.assertFalse(os.path.exists(path))

    def test_persist_with_empty_password_stores_plaintext(self):
        """An empty password means no encryption, flagged in the document."""
        self.vault.persist(self.key_files, '', self.vault_path)

        section = self.read_document()['main']
        self.assertFalse(section['encrypted'])
        self.assertEqual(section['privateKey'], key_codec.extract_seed(self.originals[KeyRole.CA]))

    def test_vault_file_is_owner_only(self):
        """The vault document is written with mode 0600."""
        self.vault.persist(self.key_files, 'pw', self.vault_path)

        self.assertEqual(stat.S_IMODE(os.stat(self.vault_path).st_mode), 0o600)

    def test_persist_missing_key_file(self):
        """A missing plaintext key file is an I/O error."""
        os.remove(self.key_files[KeyRole.CA])

        with self.assertRaises(FileIOError):
            self.vault.persist(self.key_files, 'pw', self.vault_path)


class TestRestore(VaultTestCase):
    """Test cases for materializing key files from the vault."""

    def test_round_trip_is_byte_identical(self):
        """persist then restore gives back the exact key files."""
        vault = PrivateKeyVault(self.cipher, self.toolkit, retain_node_key_file=False)
        vault.persist(self.key_files, 'pw', self.vault_path)

        written = vault.restore(self.vault_path, self.key_files, 'pw')

        self.assertEqual(written, self.key_files)
        for role, path in self.key_files.items():
            with open(path, 'r') as f:
                self.assertEqual(f.read(), self.originals[role])
            self.assertEqual(stat.S_IMODE(os.stat(path).st_mode), 0o600)

    def test_restore_never_overwrites_existing_file(self):
        """A live key file is left untouched."""
        self.vault.persist(self.key_files, 'pw', self.vault_path)
        with open(self.key_files[KeyRole.NODE], 'w') as f:
            f.write('live key')

        written = self.vault.restore(self.vault_path, self.key_files, 'pw')

        self.assertEqual(list(written.keys()), [KeyRole.CA])
        with open(self.key_files[KeyRole.NODE], 'r') as f:
            self.assertEqual(f.read(), 'live key')

    def test_restore_skips_roles_without_data(self):
        """A role missing from the vault is a no-op."""
        seed = key_codec.extract_seed(self.originals[KeyRole.CA])
        self.write_document({'main': {'privateKey': seed, 'encrypted': False}, 'transport': {'privateKey': ''}})
        self.remove_key_files()

        written = self.vault.restore(self.vault_path, self.key_files, 'pw')

        self.assertEqual(list(written.keys()), [KeyRole.CA])
        self.assertFalse(os.path.exists(self.key_files[KeyRole.NODE]))

    def test_wrong_password_is_integrity_error(self):
        """Encrypted entries that fail authentication raise KeyIntegrityError."""
        self.vault.persist(self.key_files, 'pw', self.vault_path)
        self.remove_key_files()

        with self.assertRaises(KeyIntegrityError):
            self.vault.restore(self.vault_path, self.key_files, 'wrong')
        self.assertFalse(os.path.exists(self.key_files[KeyRole.CA]))

    def test_restore_writes_nothing_when_one_role_fails(self):
        """Key files are only written once every role has been recovered."""
        seed = key_codec.extract_seed(self.originals[KeyRole.CA])
        self.write_document({
            'main': {'privateKey': seed, 'encrypted': False},
            'transport': {'privateKey': 'AB' * 20, 'encrypted': False},
        })
        self.remove_key_files()

        with self.assertRaises(KeyIntegrityError):
            self.vault.restore(self.vault_path, self.key_files, '')

        for path in self.key_files.values():
            self.assertFalse(os.path.exists(path))

    def test_legacy_plaintext_vault(self):
        """Documents without the encrypted flag fall back to plaintext."""
        seed = key_codec.extract_seed(self.originals[KeyRole.CA])
        self.write_document({'main': {'privateKey': seed}})
        self.remove_key_files()

        self.vault.restore(self.vault_path, self.key_files, 'pw')

        with open(self.key_files[KeyRole.CA], 'r') as f:
            self.assertEqual(f.read(), self.originals[KeyRole.CA])

    def test_legacy_encrypted_vault(self):
        """Documents without the flag still decrypt when they are ciphertext."""
        seed = key_codec.extract_seed(self.originals[KeyRole.NODE])
        self.write_document({'transport': {'privateKey': self.cipher.encrypt(seed, 'pw')}})
        self.remove_key_files()

        self.vault.restore(self.vault_path, self.key_files, 'pw')

        with open(self.key_files[KeyRole.NODE], 'r') as f:
            self.assertEqual(f.read(), self.originals[KeyRole.NODE])

    def test_wrong_length_key_is_integrity_error(self):
        """A stored key that is not 64 hex characters is never truncated or padded."""
        for value in ('AB' * 31, 'AB' * 33):
            self.write_document({'main': {'privateKey': value, 'encrypted': False}})
            self.remove_key_files()
            with self.assertRaises(KeyIntegrityError):
                self.vault.restore(self.vault_path, self.key_files, '')

        self.write_document({'main': {'privateKey': self.cipher.encrypt('AB' * 30, 'pw'), 'encrypted': True}})
        with self.assertRaises(KeyIntegrityError):
            self.vault.restore(self.vault_path, self.key_files, 'pw')

    def test_missing_vault(self):
        """Restoring from a missing vault raises VaultNotFoundError."""
        with self.assertRaises(VaultNotFoundError):
            self.vault.restore(os.path.join(self.temp_dir, 'missing.yaml'), self.key_files, 'pw')

    def test_malformed_vault(self):
        """Unparseable or wrongly shaped documents raise VaultReadError."""
        with open(self.vault_path, 'w') as f:
            f.write("main: [unclosed\n")
        with self.assertRaises(VaultReadError):
            self.vault.load(self.vault_path)

        self.write_document(['not', 'a', 'mapping'])
        with self.assertRaises(VaultReadError):
            self.vault.load(self.vault_path)

        self.write_document({'main': 'just a string'})
        with self.assertRaises(VaultReadError):
            self.vault.load(self.vault_path)


class TestRotate(VaultTestCase):
    """Test cases for password rotation and whole document operations."""

    def test_rotate_then_restore_with_new_password(self):
        """Rotated vaults restore the same key material under the new password."""
        vault = PrivateKeyVault(self.cipher, self.toolkit, retain_node_key_file=False)
        vault.persist(self.key_files, 'old', self.vault_path)
        before = vault.recover_material(vault.load(self.vault_path), 'old')

        vault.rotate(self.vault_path, 'old', 'new')

        after = vault.recover_material(vault.load(self.vault_path), 'new')
        for role in KeyRole:
            self.assertEqual(after[role].private_key_hex, before[role].private_key_hex)
            self.assertEqual(after[role].public_key_hex, before[role].public_key_hex)

        with self.assertRaises(KeyIntegrityError):
            vault.restore(self.vault_path, self.key_files, 'old')

        vault.restore(self.vault_path, self.key_files, 'new')
        for role, path in self.key_files.items():
            with open(path, 'r') as f:
                self.assertEqual(f.read(), self.originals[role])

    def test_rotate_does_not_touch_key_files(self):
        """Rotation works on the document only."""
        self.vault.persist(self.key_files, 'old', self.vault_path)
        self.remove_key_files()

        self.vault.rotate(self.vault_path, 'old', 'new')

        for path in self.key_files.values():
            self.assertFalse(os.path.exists(path))

    def test_rotate_to_separate_output(self):
        """Rotation can write to another file and keep addresses."""
        self.vault.persist(self.key_files, 'old', self.vault_path)
        out_path = os.path.join(self.temp_dir, 'rotated.yaml')

        self.vault.rotate(self.vault_path, 'old', 'new', out_path=out_path)

        original = self.read_document()
        rotated = self.read_document(out_path)
        self.assertEqual(rotated['main']['mainnetAddress'], original['main']['mainnetAddress'])
        self.assertNotEqual(rotated['main']['privateKey'], original['main']['privateKey'])

    def test_encrypt_and_decrypt_file(self):
        """Plaintext documents can be sealed and unsealed."""
        plain_path = os.path.join(self.temp_dir, 'plain.yaml')
        sealed_path = os.path.join(self.temp_dir, 'sealed.yaml')
        seed = key_codec.extract_seed(self.originals[KeyRole.CA])
        self.write_document({'main': {'privateKey': seed, 'publicKey': 'AB' * 32}}, plain_path)

        self.vault.encrypt_file(plain_path, sealed_path, 'pw')
        sealed = self.read_document(sealed_path)
        self.assertTrue(sealed['main']['encrypted'])
        self.assertNotEqual(sealed['main']['privateKey'], seed)
        self.assertEqual(sealed['main']['publicKey'], 'AB' * 32)
        self.assertNotIn('transport', sealed)

        self.vault.decrypt_file(sealed_path, plain_path, 'pw')
        plain = self.read_document(plain_path)
        self.assertEqual(plain['main']['privateKey'], seed)
        self.assertFalse(plain['main']['encrypted'])


if __name__ == '__main__':
    unittest.main()

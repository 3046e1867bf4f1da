"""
Password based encryption of hex key material.
"""
import base64
import binascii
import logging
import os
from abc import ABC, abstractmethod

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .models import DecryptResult

SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
DEFAULT_ITERATIONS = 200_000


class SecretCipher(ABC):
    """Encrypts and decrypts short strings under a password."""

    @abstractmethod
    def encrypt(self, plaintext: str, password: str) -> str:
        """Encrypt plaintext and return a printable ciphertext."""

    @abstractmethod
    def decrypt(self, ciphertext: str, password: str) -> DecryptResult:
        """Decrypt ciphertext; never raises for a bad password or bad input."""


class AesGcmSecretCipher(SecretCipher):
    """PBKDF2-HMAC-SHA256 key derivation with AES-256-GCM."""

    def __init__(self, iterations: int = DEFAULT_ITERATIONS):
        self.iterations = iterations
        self.logger = logging.getLogger(__name__)

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(password.encode('utf-8'))

    def encrypt(self, plaintext: str, password: str) -> str:
        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        key = self._derive_key(password, salt)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode('utf-8'), None)
        return base64.b64encode(salt + nonce + ciphertext).decode('ascii')

    def decrypt(self, ciphertext: str, password: str) -> DecryptResult:
        try:
            raw = base64.b64decode(ciphertext.encode('ascii'), validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError):
            return DecryptResult.authentication_failed()

        # tag alone is 16 bytes
        if len(raw) < SALT_SIZE + NONCE_SIZE + 16:
            return DecryptResult.authentication_failed()

        salt = raw[:SALT_SIZE]
        nonce = raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
        body = raw[SALT_SIZE + NONCE_SIZE:]

        key = self._derive_key(password, salt)
        try:
            plaintext = AESGCM(key).decrypt(nonce, body, None)
        except InvalidTag:
            self.logger.debug("Decryption failed authentication")
            return DecryptResult.authentication_failed()

        try:
            return DecryptResult.decrypted(plaintext.decode('utf-8'))
        except UnicodeDecodeError:
            return DecryptResult.authentication_failed()

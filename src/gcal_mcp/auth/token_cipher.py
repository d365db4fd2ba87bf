"""Encryption at rest for the persisted OAuth credential.

Blob layout::

    salt (16 bytes) | nonce (12 bytes) | AES-256-GCM ciphertext + tag

The key is derived with PBKDF2-HMAC-SHA256 from a host-specific passphrase
and the per-blob salt, so every ``encrypt`` call draws a new salt and nonce
and repeated saves of the same token never produce the same bytes.
"""

import logging
import os
import socket

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from gcal_mcp.errors import CryptoError

logger = logging.getLogger(__name__)

SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
PBKDF2_ITERATIONS = 100_000
PASSPHRASE_PREFIX = "gcal_mcp_"


def default_passphrase() -> bytes:
    """Build the host-specific passphrase used when none is supplied."""
    return (PASSPHRASE_PREFIX + socket.gethostname()).encode("utf-8")


class TokenCipher:
    """Symmetric AEAD cipher for serialized credentials.

    Attributes:
        iterations: PBKDF2 iteration count.

    Example:
        ```python
        cipher = TokenCipher()
        blob = cipher.encrypt(b'{"access_token": "..."}')
        assert cipher.decrypt(blob) == b'{"access_token": "..."}'
        ```
    """

    def __init__(self, passphrase: bytes | None = None, iterations: int = PBKDF2_ITERATIONS) -> None:
        """Initialize the cipher.

        Args:
            passphrase: Key material. Defaults to one derived from the hostname.
            iterations: PBKDF2 iteration count.
        """
        self._passphrase = passphrase if passphrase is not None else default_passphrase()
        self.iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(self._passphrase)

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt a serialized credential.

        Args:
            plaintext: Bytes to protect.

        Returns:
            ``salt | nonce | ciphertext+tag``.
        """
        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        key = self._derive_key(salt)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
        return salt + nonce + ciphertext

    def decrypt(self, blob: bytes) -> bytes:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises:
            CryptoError: If the blob is truncated or fails authentication.
        """
        if len(blob) < SALT_SIZE:
            raise CryptoError("encrypted data too short")

        salt = blob[:SALT_SIZE]
        body = blob[SALT_SIZE:]
        if len(body) < NONCE_SIZE:
            raise CryptoError("ciphertext too short")

        nonce = body[:NONCE_SIZE]
        ciphertext = body[NONCE_SIZE:]
        key = self._derive_key(salt)

        try:
            return AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            logger.warning("Credential blob failed authentication")
            raise CryptoError("authentication failed: data tampered or wrong key", cause=e) from e

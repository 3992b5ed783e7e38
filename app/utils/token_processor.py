import base64
import binascii
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings

# Fernet envelope: version byte, 8-byte timestamp, 16-byte IV,
# ciphertext in 16-byte blocks, 32-byte HMAC
FERNET_VERSION_BYTE = 0x80
FERNET_TOKEN_PREFIX = "gAAAAA"
_FERNET_OVERHEAD = 1 + 8 + 16 + 32
_FERNET_MIN_LENGTH = _FERNET_OVERHEAD + 16


class TokenDecryptionError(Exception):
    """Raised when a value carries the encryption marker but cannot be decrypted."""


class TokenProcessor:
    """
    Secret encryption and decryption utility using Fernet symmetric encryption.

    Encrypted values are Fernet tokens, which always start with the version
    byte 0x80 ("gAAAAA" once base64 encoded). That envelope is the marker
    used by is_encrypted, so encrypting an already encrypted value can be
    skipped.
    """

    def __init__(self, secret: str | None = None):
        self._fernet = Fernet(self._get_encryption_key(secret))

    @staticmethod
    def _get_encryption_key(secret: str | None = None) -> bytes:
        """
        Derive the Fernet key from CRYPTOGRAPHY_SECRET.

        Returns:
            bytes: URL-safe base64-encoded SHA-256 digest of the secret

        Raises:
            ValueError: If no secret is configured
        """
        secret = secret if secret is not None else settings.CRYPTOGRAPHY_SECRET
        if not secret:
            raise ValueError(
                "CRYPTOGRAPHY_SECRET is not set. Cannot encrypt or decrypt secrets."
            )
        return base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())

    def encrypt(self, token: str) -> str:
        """Encrypt a plain text value and return the Fernet token as a string."""
        return self._fernet.encrypt(token.encode()).decode()

    def decrypt(self, encrypted_token: str) -> str:
        """
        Decrypt a Fernet token string.

        Raises:
            TokenDecryptionError: If the token is malformed or was encrypted
                with a different key
        """
        try:
            return self._fernet.decrypt(encrypted_token.encode()).decode()
        except InvalidToken as e:
            raise TokenDecryptionError("Invalid or corrupted encrypted value") from e

    @staticmethod
    def is_encrypted(value) -> bool:
        """Check whether a value carries the Fernet token envelope."""
        if not value or not isinstance(value, str):
            return False
        if not value.startswith(FERNET_TOKEN_PREFIX):
            return False
        try:
            raw = base64.urlsafe_b64decode(value.encode())
        except (binascii.Error, ValueError):
            return False
        if len(raw) < _FERNET_MIN_LENGTH or raw[0] != FERNET_VERSION_BYTE:
            return False
        return (len(raw) - _FERNET_OVERHEAD) % 16 == 0


token_processor = TokenProcessor()

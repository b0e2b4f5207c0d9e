"""Authenticated envelope encryption for credential material.

Every secret persisted by connector-core goes through ``EncryptionService``.
The stored form is ``base64(salt || iv || tag || ciphertext)``:

- salt: 16 random bytes, fed to HKDF-SHA256 with the master secret to derive
  a per-envelope AES-256 key
- iv: 12 random bytes (GCM nonce)
- tag: 16 byte GCM authentication tag
- ciphertext: AES-256-GCM output without the tag
"""

import binascii
import json
import secrets
from base64 import b64decode, b64encode
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import SecretStr

from connector_core.exceptions import DecryptionError, EncryptionError

SALT_LENGTH = 16
IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
MIN_SECRET_LENGTH = 32

_HKDF_INFO = b"connector-core/envelope/v1"


def generate_master_secret() -> str:
    """Generate a new master secret suitable for ``EncryptionService``.

    Returns:
        URL-safe base64 string carrying 48 random bytes
    """
    return secrets.token_urlsafe(48)


def generate_random_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token.

    Args:
        length: Number of bytes (output will be URL-safe base64, ~4/3 longer)

    Returns:
        URL-safe base64-encoded random string
    """
    return secrets.token_urlsafe(length)


class EncryptionService:
    """AES-256-GCM envelope encryption keyed from a process-wide master secret.

    Stateless per call and safe for concurrent use.
    """

    def __init__(self, master_secret: str | bytes | SecretStr | None) -> None:
        """Initialize encryption service.

        Args:
            master_secret: Process-wide master secret (at least 32 characters)

        Raises:
            EncryptionError: If the secret is missing or too short
        """
        if isinstance(master_secret, SecretStr):
            master_secret = master_secret.get_secret_value()
        if not master_secret:
            raise EncryptionError("Encryption master secret is not configured")
        if isinstance(master_secret, str):
            master_secret = master_secret.encode()
        if len(master_secret) < MIN_SECRET_LENGTH:
            raise EncryptionError(
                f"Encryption master secret must be at least {MIN_SECRET_LENGTH} characters"
            )
        self._master_secret = master_secret

    def __repr__(self) -> str:
        return "EncryptionService(master_secret=[REDACTED])"

    def _derive_key(self, salt: bytes) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            info=_HKDF_INFO,
        )
        return hkdf.derive(self._master_secret)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string into an envelope.

        Args:
            plaintext: Secret to protect

        Returns:
            Base64 envelope (salt || iv || tag || ciphertext)
        """
        if not isinstance(plaintext, str):
            raise EncryptionError("Only str plaintext can be encrypted")

        salt = secrets.token_bytes(SALT_LENGTH)
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode(), None)
        # AESGCM appends the tag; the envelope stores it ahead of the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return b64encode(salt + iv + tag + ciphertext).decode()

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope produced by ``encrypt``.

        Args:
            envelope: Base64 envelope

        Returns:
            Original plaintext

        Raises:
            DecryptionError: If the envelope is malformed or fails authentication
        """
        if not isinstance(envelope, str) or not envelope:
            raise DecryptionError("Envelope is empty")

        try:
            raw = b64decode(envelope.encode(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Envelope is not valid base64") from e

        if len(raw) < HEADER_LENGTH:
            raise DecryptionError("Envelope is shorter than the fixed header")

        salt = raw[:SALT_LENGTH]
        iv = raw[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
        tag = raw[SALT_LENGTH + IV_LENGTH:HEADER_LENGTH]
        ciphertext = raw[HEADER_LENGTH:]

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Envelope failed authentication") from e

        try:
            return plaintext.decode()
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted payload is not valid UTF-8") from e

    def encrypt_credentials(self, credentials: dict[str, Any]) -> str:
        """Serialize a credential mapping to JSON and encrypt it."""
        if not isinstance(credentials, dict):
            raise EncryptionError("Credentials must be a mapping")
        try:
            payload = json.dumps(credentials, separators=(",", ":"), sort_keys=True)
        except (TypeError, ValueError) as e:
            raise EncryptionError("Credentials are not JSON serializable") from e
        return self.encrypt(payload)

    def decrypt_credentials(self, envelope: str) -> dict[str, Any]:
        """Decrypt an envelope and parse the credential mapping inside it."""
        payload = self.decrypt(envelope)
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise DecryptionError("Decrypted payload is not JSON") from e
        if not isinstance(data, dict):
            raise DecryptionError("Decrypted payload is not a credential mapping")
        return data

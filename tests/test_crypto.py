"""Tests for envelope encryption."""

import base64

import pytest
from pydantic import SecretStr

from connector_core.crypto import (
    HEADER_LENGTH,
    IV_LENGTH,
    SALT_LENGTH,
    EncryptionService,
    generate_master_secret,
    generate_random_token,
)
from connector_core.exceptions import CryptoError, DecryptionError, EncryptionError


class TestMasterSecret:
    """Tests for master secret handling."""

    def test_missing_secret_rejected(self) -> None:
        """A missing master secret fails at construction."""
        with pytest.raises(EncryptionError):
            EncryptionService(None)
        with pytest.raises(EncryptionError):
            EncryptionService("")

    def test_short_secret_rejected(self) -> None:
        """Secrets shorter than 32 characters are rejected."""
        with pytest.raises(EncryptionError):
            EncryptionService("x" * 31)

    def test_secret_str_accepted(self, master_secret) -> None:
        """Pydantic SecretStr values are unwrapped."""
        service = EncryptionService(SecretStr(master_secret))
        assert service.decrypt(service.encrypt("hello")) == "hello"

    def test_repr_hides_secret(self, master_secret) -> None:
        """The master secret never shows up in repr."""
        service = EncryptionService(master_secret)
        assert master_secret not in repr(service)

    def test_error_message_hides_secret(self) -> None:
        """Construction errors do not echo the secret."""
        short = "short-secret-value"
        with pytest.raises(EncryptionError) as exc_info:
            EncryptionService(short)
        assert short not in str(exc_info.value)

    def test_generated_secret_is_usable(self) -> None:
        """generate_master_secret output satisfies the length rule."""
        service = EncryptionService(generate_master_secret())
        assert service.decrypt(service.encrypt("x")) == "x"

    def test_generate_random_token_unique(self) -> None:
        """Random tokens are URL-safe and unique."""
        tokens = {generate_random_token() for _ in range(20)}
        assert len(tokens) == 20
        assert all(c.isalnum() or c in "-_" for t in tokens for c in t)


class TestEncryptDecrypt:
    """Tests for encrypt/decrypt."""

    def test_roundtrip(self, encryption) -> None:
        """Decrypt returns the original plaintext."""
        envelope = encryption.encrypt("ntn_secret_token")
        assert envelope != "ntn_secret_token"
        assert encryption.decrypt(envelope) == "ntn_secret_token"

    def test_unicode_roundtrip(self, encryption) -> None:
        """Non-ASCII plaintext survives."""
        assert encryption.decrypt(encryption.encrypt("clé secrète ✓")) == "clé secrète ✓"

    def test_envelopes_differ_per_call(self, encryption) -> None:
        """Encrypting the same plaintext twice yields different envelopes."""
        assert encryption.encrypt("same") != encryption.encrypt("same")

    def test_envelope_layout(self, encryption) -> None:
        """Envelope is base64 of a fixed header followed by ciphertext."""
        raw = base64.b64decode(encryption.encrypt("abc"))
        assert len(raw) == HEADER_LENGTH + len("abc")

    def test_non_str_plaintext_rejected(self, encryption) -> None:
        """Only str plaintext is accepted."""
        with pytest.raises(EncryptionError):
            encryption.encrypt(b"bytes")  # type: ignore[arg-type]

    def test_different_secret_fails(self, encryption) -> None:
        """An envelope cannot be opened with another master secret."""
        envelope = encryption.encrypt("secret")
        other = EncryptionService("another-master-secret-0123456789-xyz")
        with pytest.raises(DecryptionError):
            other.decrypt(envelope)


class TestTamperDetection:
    """Tests that decrypt fails closed."""

    def _flip(self, envelope: str, index: int) -> str:
        raw = bytearray(base64.b64decode(envelope))
        raw[index] ^= 0x01
        return base64.b64encode(bytes(raw)).decode()

    def test_tampered_ciphertext(self, encryption) -> None:
        """Flipping a ciphertext bit fails authentication."""
        envelope = encryption.encrypt("payload")
        with pytest.raises(DecryptionError):
            encryption.decrypt(self._flip(envelope, HEADER_LENGTH))

    def test_tampered_salt(self, encryption) -> None:
        """Flipping a salt bit derives a different key."""
        envelope = encryption.encrypt("payload")
        with pytest.raises(DecryptionError):
            encryption.decrypt(self._flip(envelope, 0))

    def test_tampered_iv(self, encryption) -> None:
        """Flipping an IV bit fails authentication."""
        envelope = encryption.encrypt("payload")
        with pytest.raises(DecryptionError):
            encryption.decrypt(self._flip(envelope, SALT_LENGTH))

    def test_tampered_tag(self, encryption) -> None:
        """Flipping a tag bit fails authentication."""
        envelope = encryption.encrypt("payload")
        with pytest.raises(DecryptionError):
            encryption.decrypt(self._flip(envelope, SALT_LENGTH + IV_LENGTH))

    def test_truncated_envelope(self, encryption) -> None:
        """Envelopes shorter than the header are rejected."""
        short = base64.b64encode(b"x" * (HEADER_LENGTH - 1)).decode()
        with pytest.raises(DecryptionError):
            encryption.decrypt(short)

    @pytest.mark.parametrize("envelope", ["", "not base64!!", "@@@@"])
    def test_malformed_envelope(self, encryption, envelope) -> None:
        """Empty or non-base64 input is a DecryptionError."""
        with pytest.raises(DecryptionError):
            encryption.decrypt(envelope)

    def test_errors_share_base(self) -> None:
        """Both crypto errors derive from CryptoError."""
        assert issubclass(EncryptionError, CryptoError)
        assert issubclass(DecryptionError, CryptoError)


class TestCredentials:
    """Tests for credential mapping encryption."""

    def test_roundtrip(self, encryption) -> None:
        """Credential mappings survive encryption."""
        credential = {"secret_key": "sk_test_abc", "publishable_key": "pk_test_abc"}
        envelope = encryption.encrypt_credentials(credential)
        assert "sk_test_abc" not in envelope
        assert encryption.decrypt_credentials(envelope) == credential

    def test_non_mapping_rejected(self, encryption) -> None:
        """Only dicts can be encrypted as credentials."""
        with pytest.raises(EncryptionError):
            encryption.encrypt_credentials(["a", "b"])  # type: ignore[arg-type]

    def test_unserializable_rejected(self, encryption) -> None:
        """Values that are not JSON serializable are rejected."""
        with pytest.raises(EncryptionError):
            encryption.encrypt_credentials({"key": object()})

    def test_non_json_payload(self, encryption) -> None:
        """A valid envelope around non-JSON text is a DecryptionError."""
        with pytest.raises(DecryptionError):
            encryption.decrypt_credentials(encryption.encrypt("not json"))

    def test_non_object_payload(self, encryption) -> None:
        """A JSON list is not a credential mapping."""
        with pytest.raises(DecryptionError):
            encryption.decrypt_credentials(encryption.encrypt("[1, 2]"))

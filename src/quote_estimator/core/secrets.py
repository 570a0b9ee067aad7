"""Tenant secret decryption.

Tenant-owned provider keys are stored Fernet-encrypted in
``tenant_secrets.openai_key_enc``. Rows written before encryption was
introduced hold the plaintext key; those are accepted as-is.
"""

from beartype import beartype
from cryptography.fernet import Fernet, InvalidToken
from pydantic import SecretStr

from .result_types import Err, Ok

_PLAINTEXT_KEY_PREFIX = "sk-"
_PLAINTEXT_KEY_MIN_LENGTH = 20


@beartype
def looks_like_plaintext_key(value: str) -> bool:
    """Check for a legacy, unencrypted provider key."""
    candidate = value.strip()
    return (
        candidate.startswith(_PLAINTEXT_KEY_PREFIX)
        and len(candidate) >= _PLAINTEXT_KEY_MIN_LENGTH
    )


class SecretCipher:
    """Fernet wrapper for tenant secrets."""

    def __init__(self, encryption_key: SecretStr | None) -> None:
        """Initialize cipher; a missing key still allows legacy plaintext rows."""
        self._fernet = (
            Fernet(encryption_key.get_secret_value().encode())
            if encryption_key is not None
            else None
        )

    @beartype
    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret for storage."""
        if self._fernet is None:
            raise RuntimeError("Encryption key not configured")
        return self._fernet.encrypt(plaintext.strip().encode()).decode()

    @beartype
    def decrypt(self, stored: str) -> Ok[SecretStr] | Err[str]:
        """Decrypt a stored secret.

        Error messages never include the stored value.
        """
        raw = stored.strip()
        if not raw:
            return Err("Stored secret is empty")

        if looks_like_plaintext_key(raw):
            return Ok(SecretStr(raw))

        if self._fernet is None:
            return Err("Encryption key not configured")

        try:
            return Ok(SecretStr(self._fernet.decrypt(raw.encode()).decode()))
        except InvalidToken:
            return Err("Stored secret could not be decrypted with the configured key")

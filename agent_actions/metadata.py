"""Action metadata handling.

Provides:
- Removal of nullish values from incoming metadata
- Sanitizing of secret fields before metadata leaves the system
- Fernet symmetric encryption of secret fields at rest
"""

from typing import Any, Dict, Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken

from .config import Settings, get_settings
from .logging_config import get_logger

logger = get_logger(__name__)

# Clients send either spelling
SENSITIVE_FIELDS = (
    "apiKey", "oauthClientId", "oauthClientSecret",
    "api_key", "oauth_client_id", "oauth_client_secret",
)


def remove_nullish(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop None and empty-string values from incoming metadata."""
    if not metadata:
        return {}
    return {
        key: value
        for key, value in metadata.items()
        if value is not None and value != ""
    }


def sanitize(
    metadata: Optional[Dict[str, Any]],
    fields: Iterable[str] = SENSITIVE_FIELDS,
) -> Dict[str, Any]:
    """Return a copy of ``metadata`` without secret-bearing fields.

    The input mapping is never mutated.
    """
    hidden = set(fields)
    return {key: value for key, value in (metadata or {}).items() if key not in hidden}


def get_encryption_key(settings: Optional[Settings] = None) -> bytes:
    """Get encryption key from settings.

    If not set, generates a new key (for development only).
    In production, SECRET_ENCRYPTION_KEY must be set.

    Raises:
        ValueError: If key not set in production
    """
    settings = settings or get_settings()

    if settings.secret_encryption_key:
        return settings.secret_encryption_key.strip().encode()

    if settings.environment != "production":
        logger.warning("SECRET_ENCRYPTION_KEY not set. Generating temporary key for development.")
        return Fernet.generate_key()

    raise ValueError("SECRET_ENCRYPTION_KEY must be set in production")


class MetadataCrypto:
    """Encrypts and decrypts the secret fields of action metadata.

    Non-secret fields (``domain``, ``auth`` type, etc.) pass through untouched
    so they stay queryable and can be returned to callers.
    """

    def __init__(self, key: Optional[bytes] = None, fields: Iterable[str] = SENSITIVE_FIELDS):
        self._fernet = Fernet(key or get_encryption_key())
        self._fields = tuple(fields)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MetadataCrypto":
        return cls(get_encryption_key(settings))

    def encrypt_value(self, value: str) -> str:
        """Encrypt a secret value."""
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt_value(self, encrypted_value: str) -> str:
        """Decrypt a secret value."""
        return self._fernet.decrypt(encrypted_value.encode()).decode()

    def encrypt(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``metadata`` with secret fields encrypted."""
        result = dict(metadata)
        for field in self._fields:
            value = result.get(field)
            if isinstance(value, str) and value:
                result[field] = self.encrypt_value(value)
        return result

    def decrypt(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``metadata`` with secret fields decrypted.

        Raises:
            ValueError: If a secret field was encrypted with another key
        """
        result = dict(metadata)
        for field in self._fields:
            value = result.get(field)
            if isinstance(value, str) and value:
                try:
                    result[field] = self.decrypt_value(value)
                except InvalidToken as e:
                    raise ValueError(f"Cannot decrypt metadata field '{field}'") from e
        return result

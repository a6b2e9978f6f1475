"""
Vault Errors — stable, machine-readable failure kinds.

Every error carries a ``kind`` (for clients), a human-readable ``message``
and an HTTP-equivalent ``status`` hint for the web layer.

Security Note:
    Messages are fixed strings. Never interpolate plaintext keys into them.
"""
from typing import Optional


class VaultError(Exception):
    """Base class for every credential vault failure."""

    kind: str = "vault_error"
    status: int = 500
    default_message: str = "Credential vault error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidProvider(VaultError):
    kind = "invalid_provider"
    status = 400
    default_message = "Invalid provider"


class InvalidName(VaultError):
    kind = "invalid_name"
    status = 400
    default_message = "Name must be between 1 and 100 characters"


class InvalidKey(VaultError):
    kind = "invalid_key"
    status = 400
    default_message = "API key appears to be invalid"


class ProviderConflict(VaultError):
    kind = "provider_conflict"
    status = 409
    default_message = (
        "You already have an API key for this provider. "
        "Update or delete it first."
    )


class NotFound(VaultError):
    """Missing record, or a record owned by another user (indistinguishable)."""

    kind = "not_found"
    status = 404
    default_message = "API key not found"


class EncryptionFailed(VaultError):
    kind = "encryption_failed"
    default_message = "Failed to encrypt API key"


class DecryptionFailed(VaultError):
    """Stored ciphertext could not be opened (rotated secret or corrupted data)."""

    kind = "decryption_failed"
    default_message = "Failed to decrypt API key"


class StorageFailed(VaultError):
    kind = "storage_failed"
    default_message = "Credential storage is unavailable"

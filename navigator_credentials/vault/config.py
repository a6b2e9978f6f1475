"""
Vault Configuration — Master secret loading and validated settings.

Reads the master secret from environment variables, first match wins:
    VAULT_MASTER_SECRET = <any string>
    JWT_SECRET          = <any string>   (legacy; existing rows were sealed with it)

When neither is set the vault falls back to an insecure constant so that
development environments keep working. This is reported with a WARNING, and
refused outright when VAULT_REQUIRE_SECRET is truthy.

Security Note:
    Never log secret material. Only log whether the default is in use.
"""
import os
import secrets
import logging
from typing import Optional

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from .crypto import CIPHER_BACKENDS, PREVIEW_LENGTH, derive_master_key
from .models import DEFAULT_PROVIDERS

logger = logging.getLogger("navigator.credentials")

DEFAULT_MASTER_SECRET = "default-insecure-key-change-me"

_SECRET_ENV_VARS = ("VAULT_MASTER_SECRET", "JWT_SECRET")
_TRUTHY = ("1", "true", "yes", "on")


def load_master_secret() -> Optional[str]:
    """Load the master secret from the environment.

    Returns:
        The configured secret, or None if no candidate variable is set.

    Raises:
        RuntimeError: If no secret is set and VAULT_REQUIRE_SECRET is truthy.
    """
    for name in _SECRET_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            logger.debug("Master secret loaded from %s", name)
            return value
    required = os.environ.get("VAULT_REQUIRE_SECRET", "").strip().lower()
    if required in _TRUTHY:
        raise RuntimeError(
            "No vault master secret found in environment. "
            "Set VAULT_MASTER_SECRET=<random-string>"
        )
    return None


def generate_master_secret() -> str:
    """Generate a random master secret.

    This is a utility for operators provisioning new deployments.

    Returns:
        URL-safe random string (32 bytes of entropy).
    """
    return secrets.token_urlsafe(32)


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    master_secret: Optional[str] = None
    cipher_backend: str = Field(default="aesgcm")
    allowed_providers: frozenset[str] = Field(default=DEFAULT_PROVIDERS)
    name_max_length: int = Field(default=100, ge=1)
    key_min_length: int = Field(default=10, ge=PREVIEW_LENGTH)
    preview_length: int = Field(default=PREVIEW_LENGTH, ge=1)
    store_timeout: Optional[float] = Field(default=10.0, gt=0)

    _master_key: Optional[bytes] = PrivateAttr(default=None)

    @field_validator("master_secret")
    @classmethod
    def blank_secret_is_missing(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        if v not in CIPHER_BACKENDS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("allowed_providers")
    @classmethod
    def normalize_providers(cls, v: frozenset[str]) -> frozenset[str]:
        providers = frozenset(p.strip().lower() for p in v if p.strip())
        if not providers:
            raise ValueError("allowed_providers cannot be empty")
        return providers

    @property
    def using_default_secret(self) -> bool:
        return self.master_secret is None

    @property
    def master_key(self) -> bytes:
        """32-byte key derived from the master secret, cached per config."""
        if self._master_key is None:
            self._master_key = derive_master_key(
                self.master_secret or DEFAULT_MASTER_SECRET
            )
        return self._master_key

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        timeout = os.environ.get("VAULT_STORE_TIMEOUT")
        return cls(
            master_secret=load_master_secret(),
            cipher_backend=os.environ.get("VAULT_CIPHER_BACKEND", "aesgcm"),
            store_timeout=float(timeout) if timeout else 10.0,
        )

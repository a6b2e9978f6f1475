"""
Vault Models — the persisted ``UserAPIKey`` record and what callers may see.

``UserAPIKey`` mirrors a row of ``user_api_keys``; it holds the ciphertext
and fingerprint and never leaves the vault. ``UserAPIKeyInfo`` is the
non-secret projection returned by every owner-facing operation.
"""
from enum import Enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, SecretStr


class Provider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


DEFAULT_PROVIDERS = frozenset(p.value for p in Provider)


class UserAPIKeyInfo(BaseModel):
    """Non-secret view of a stored API key."""

    id: int
    provider: str
    name: str
    key_preview: str
    is_active: bool
    last_used_at: Optional[datetime] = None
    usage_count: int = 0
    created_at: datetime
    updated_at: datetime


class UserAPIKey(BaseModel):
    """Stored API key record."""

    id: int
    user_id: int
    provider: str
    name: str
    key_hash: str = Field(repr=False)
    key_encrypted: str = Field(repr=False)
    key_preview: str
    is_active: bool = True
    last_used_at: Optional[datetime] = None
    usage_count: int = 0
    created_at: datetime
    updated_at: datetime

    def to_info(self) -> UserAPIKeyInfo:
        return UserAPIKeyInfo(
            id=self.id,
            provider=self.provider,
            name=self.name,
            key_preview=self.key_preview,
            is_active=self.is_active,
            last_used_at=self.last_used_at,
            usage_count=self.usage_count,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


# ---------------------------------------------------------------------------
# Web request bodies
# ---------------------------------------------------------------------------

class CreateAPIKeyRequest(BaseModel):
    provider: str
    name: str
    api_key: SecretStr


class UpdateAPIKeyRequest(BaseModel):
    name: Optional[str] = None
    api_key: Optional[SecretStr] = None
    is_active: Optional[bool] = None

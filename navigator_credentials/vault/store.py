"""
Credential Store — ``user_api_keys`` persistence over an asyncpg-compatible pool.

The store only runs SQL and maps rows to ``UserAPIKey``.
Driver errors propagate untouched; ``CredentialVault`` translates them.

The partial unique index ``(user_id, provider) WHERE is_active`` is the
authoritative guard against two active keys for one provider. A violation
surfaces as the driver's unique-violation error (SQLSTATE 23505).
"""
import logging
from datetime import datetime
from typing import Any, Optional

from .models import UserAPIKey

logger = logging.getLogger("navigator.credentials")

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_COLUMNS = """id, user_id, provider, name, key_hash, key_encrypted, key_preview,
       is_active, last_used_at, usage_count, created_at, updated_at"""

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS user_api_keys (
    id BIGSERIAL PRIMARY KEY,
    user_id BIGINT NOT NULL,
    provider VARCHAR(32) NOT NULL,
    name VARCHAR(100) NOT NULL,
    key_hash CHAR(64) NOT NULL,
    key_encrypted TEXT NOT NULL,
    key_preview VARCHAR(16) NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    last_used_at TIMESTAMPTZ,
    usage_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
)
"""

_CREATE_USER_INDEX = """
CREATE INDEX IF NOT EXISTS idx_user_api_keys_user_id
ON user_api_keys (user_id)
"""

_CREATE_ACTIVE_UNIQUE_INDEX = """
CREATE UNIQUE INDEX IF NOT EXISTS uq_user_api_keys_active_provider
ON user_api_keys (user_id, provider)
WHERE is_active
"""

_INSERT_KEY = f"""
INSERT INTO user_api_keys (user_id, provider, name, key_hash, key_encrypted,
                           key_preview, is_active, created_at, updated_at)
VALUES ($1, $2, $3, $4, $5, $6, TRUE, $7, $7)
RETURNING {_COLUMNS}
"""

_SELECT_ONE = f"""
SELECT {_COLUMNS}
FROM user_api_keys
WHERE id = $1 AND user_id = $2
"""

_SELECT_ALL = f"""
SELECT {_COLUMNS}
FROM user_api_keys
WHERE user_id = $1
ORDER BY created_at, id
"""

_SELECT_BY_PROVIDER = f"""
SELECT {_COLUMNS}
FROM user_api_keys
WHERE user_id = $1 AND provider = $2
ORDER BY is_active DESC, id
LIMIT 1
"""

_SELECT_ACTIVE = f"""
SELECT {_COLUMNS}
FROM user_api_keys
WHERE user_id = $1 AND provider = $2 AND is_active
LIMIT 1
"""

_UPDATE_KEY = f"""
UPDATE user_api_keys
SET name = $3, key_hash = $4, key_encrypted = $5, key_preview = $6,
    is_active = $7, updated_at = $8
WHERE id = $1 AND user_id = $2
RETURNING {_COLUMNS}
"""

_DELETE_KEY = """
DELETE FROM user_api_keys
WHERE id = $1 AND user_id = $2
RETURNING id
"""

_RECORD_USAGE = """
UPDATE user_api_keys
SET usage_count = usage_count + 1, last_used_at = $2
WHERE id = $1
"""


def _to_record(row: Any) -> Optional[UserAPIKey]:
    if row is None:
        return None
    return UserAPIKey.model_validate(dict(row))


class CredentialStore:
    """Record store for ``UserAPIKey`` rows.

    Every owner-facing lookup is scoped by ``(id, user_id)`` in SQL, so a
    key belonging to another user is simply not found.
    """

    def __init__(self, db_pool: Any):
        self._db = db_pool

    async def create_schema(self) -> None:
        """Create the ``user_api_keys`` table and its indexes if missing."""
        async with self._db.acquire() as conn:
            await conn.execute(_CREATE_TABLE)
            await conn.execute(_CREATE_USER_INDEX)
            await conn.execute(_CREATE_ACTIVE_UNIQUE_INDEX)
        logger.info("user_api_keys schema ready")

    async def insert(
        self,
        user_id: int,
        provider: str,
        name: str,
        key_hash: str,
        key_encrypted: str,
        key_preview: str,
        now: datetime,
    ) -> UserAPIKey:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                _INSERT_KEY,
                user_id, provider, name, key_hash, key_encrypted,
                key_preview, now,
            )
        return _to_record(row)

    async def get(self, user_id: int, key_id: int) -> Optional[UserAPIKey]:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SELECT_ONE, key_id, user_id)
        return _to_record(row)

    async def list_for_user(self, user_id: int) -> list[UserAPIKey]:
        async with self._db.acquire() as conn:
            rows = await conn.fetch(_SELECT_ALL, user_id)
        return [_to_record(row) for row in rows]

    async def find_by_provider(
        self,
        user_id: int,
        provider: str,
        active_only: bool = False,
    ) -> Optional[UserAPIKey]:
        """Return the user's key for a provider, preferring an active one."""
        sql = _SELECT_ACTIVE if active_only else _SELECT_BY_PROVIDER
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(sql, user_id, provider)
        return _to_record(row)

    async def update(self, key: UserAPIKey) -> Optional[UserAPIKey]:
        """Persist mutable fields; returns None if the row vanished."""
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                _UPDATE_KEY,
                key.id, key.user_id, key.name, key.key_hash,
                key.key_encrypted, key.key_preview, key.is_active,
                key.updated_at,
            )
        return _to_record(row)

    async def delete(self, user_id: int, key_id: int) -> bool:
        async with self._db.acquire() as conn:
            deleted = await conn.fetchval(_DELETE_KEY, key_id, user_id)
        return deleted is not None

    async def record_usage(self, key_id: int, used_at: datetime) -> None:
        """Bump ``usage_count`` and ``last_used_at`` in a single statement."""
        async with self._db.acquire() as conn:
            await conn.execute(_RECORD_USAGE, key_id, used_at)

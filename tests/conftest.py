"""Shared fixtures for the credential vault tests."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from navigator_credentials.vault import CredentialVault, VaultConfig, UserAPIKey


TEST_SECRET = "test-master-secret"
SAMPLE_KEY = "sk-xxxxxxxxxx1234"


class UniqueViolationError(Exception):
    """Mimics asyncpg.exceptions.UniqueViolationError."""
    sqlstate = "23505"


class MemoryStore:
    """In-memory stand-in for CredentialStore.

    Enforces the same partial unique index as the real table: one active
    key per (user_id, provider). Every call yields to the event loop first,
    so concurrent callers interleave the way they would over a network.
    """

    def __init__(self):
        self.rows: dict[int, UserAPIKey] = {}
        self.fail_on: set[str] = set()
        self._next_id = 1

    async def _enter(self, operation: str) -> None:
        await asyncio.sleep(0)
        if operation in self.fail_on:
            raise ConnectionError(f"store unavailable during {operation}")

    def _active_conflict(self, user_id, provider, exclude=None) -> bool:
        return any(
            row.user_id == user_id and row.provider == provider
            and row.is_active and row.id != exclude
            for row in self.rows.values()
        )

    async def insert(
        self, user_id, provider, name, key_hash, key_encrypted, key_preview, now,
    ):
        await self._enter("insert")
        if self._active_conflict(user_id, provider):
            raise UniqueViolationError("uq_user_api_keys_active_provider")
        key = UserAPIKey(
            id=self._next_id,
            user_id=user_id,
            provider=provider,
            name=name,
            key_hash=key_hash,
            key_encrypted=key_encrypted,
            key_preview=key_preview,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self._next_id += 1
        self.rows[key.id] = key
        return key.model_copy()

    async def get(self, user_id, key_id):
        await self._enter("get")
        row = self.rows.get(key_id)
        if row is None or row.user_id != user_id:
            return None
        return row.model_copy()

    async def list_for_user(self, user_id):
        await self._enter("list")
        return [
            row.model_copy() for row in sorted(self.rows.values(), key=lambda r: r.id)
            if row.user_id == user_id
        ]

    async def find_by_provider(self, user_id, provider, active_only=False):
        await self._enter("find")
        candidates = sorted(
            (
                row for row in self.rows.values()
                if row.user_id == user_id and row.provider == provider
                and (row.is_active or not active_only)
            ),
            key=lambda r: (not r.is_active, r.id),
        )
        return candidates[0].model_copy() if candidates else None

    async def update(self, key):
        await self._enter("update")
        current = self.rows.get(key.id)
        if current is None or current.user_id != key.user_id:
            return None
        if key.is_active and self._active_conflict(
            key.user_id, key.provider, exclude=key.id
        ):
            raise UniqueViolationError("uq_user_api_keys_active_provider")
        stored = current.model_copy(update={
            "name": key.name,
            "key_hash": key.key_hash,
            "key_encrypted": key.key_encrypted,
            "key_preview": key.key_preview,
            "is_active": key.is_active,
            "updated_at": key.updated_at,
        })
        self.rows[key.id] = stored
        return stored.model_copy()

    async def delete(self, user_id, key_id):
        await self._enter("delete")
        row = self.rows.get(key_id)
        if row is None or row.user_id != user_id:
            return False
        del self.rows[key_id]
        return True

    async def record_usage(self, key_id, used_at):
        await self._enter("record_usage")
        row = self.rows.get(key_id)
        if row is not None:
            self.rows[key_id] = row.model_copy(update={
                "usage_count": row.usage_count + 1,
                "last_used_at": used_at,
            })


class FrozenClock:
    """Deterministic clock; call ``advance`` to move time forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def config():
    return VaultConfig(master_secret=TEST_SECRET, store_timeout=1.0)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def vault(store, config, clock):
    return CredentialVault(store, config, clock=clock)

"""
CredentialVault — Encrypted storage for users' third-party API keys.

Provides the public API of the credential vault:
- ``create`` / ``update`` / ``delete`` — owner-driven lifecycle
- ``get`` / ``list`` — non-secret projections only
- ``test`` — prove the stored ciphertext still opens under the master key
- ``fetch_for_use`` — decrypt the active key for a provider (internal callers)
- ``export`` — JSON document of a user's non-secret key data

Security Note:
    Never log plaintext, ciphertext or hashes. Only log key ids, user ids,
    providers and operations. Plaintext handed out by ``fetch_for_use`` must
    be used once and discarded by the caller.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

import orjson

from .config import VaultConfig
from .crypto import (
    hash_api_key,
    hash_matches,
    encrypt_api_key,
    decrypt_api_key,
    make_preview,
)
from .exceptions import (
    VaultError,
    InvalidProvider,
    InvalidName,
    InvalidKey,
    ProviderConflict,
    NotFound,
    DecryptionFailed,
    StorageFailed,
)
from .models import UserAPIKey, UserAPIKeyInfo

logger = logging.getLogger("navigator.credentials")

# SQLSTATE for unique_violation (asyncpg exposes it as ``err.sqlstate``)
UNIQUE_VIOLATION = "23505"

_EXPORT_FIELDS = {
    "id", "provider", "name", "key_preview", "is_active",
    "usage_count", "last_used_at", "created_at",
}

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialVault:
    """Create, read, update, delete and use encrypted API keys.

    The master key comes from the injected ``VaultConfig``; the vault keeps
    no other state. All record-store I/O goes through ``_call`` which applies
    the configured deadline and maps driver errors to vault errors.
    """

    def __init__(
        self,
        store: Any,
        config: Optional[VaultConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._config = config or VaultConfig.from_env()
        self._clock = clock or _utcnow
        if self._config.using_default_secret:
            logger.warning(
                "Credential vault is using the insecure default master secret; "
                "set VAULT_MASTER_SECRET before storing real API keys"
            )
        logger.info(
            "Credential vault ready (cipher=%s, providers=%s)",
            self._config.cipher_backend,
            sorted(self._config.allowed_providers),
        )

    @property
    def config(self) -> VaultConfig:
        return self._config

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_provider(self, provider: str) -> str:
        provider = (provider or "").strip().lower()
        if provider not in self._config.allowed_providers:
            allowed = ", ".join(sorted(self._config.allowed_providers))
            raise InvalidProvider(f"Invalid provider. Allowed: {allowed}")
        return provider

    def _validate_name(self, name: str) -> str:
        name = (name or "").strip()
        if not 1 <= len(name) <= self._config.name_max_length:
            raise InvalidName(
                f"Name must be between 1 and {self._config.name_max_length} characters"
            )
        return name

    def _validate_api_key(self, api_key: str) -> str:
        api_key = (api_key or "").strip()
        if len(api_key) < self._config.key_min_length:
            raise InvalidKey()
        return api_key

    # ------------------------------------------------------------------
    # Crypto helpers
    # ------------------------------------------------------------------

    def _seal(self, api_key: str) -> tuple[str, str, str]:
        """Return ``(key_hash, key_encrypted, key_preview)`` for a plaintext."""
        key_hash = hash_api_key(api_key)
        key_encrypted = encrypt_api_key(
            api_key, self._config.master_key, self._config.cipher_backend,
        )
        key_preview = make_preview(api_key, self._config.preview_length)
        return key_hash, key_encrypted, key_preview

    def _open(self, key: UserAPIKey) -> str:
        """Decrypt a stored key and check it against its fingerprint."""
        try:
            api_key = decrypt_api_key(
                key.key_encrypted,
                self._config.master_key,
                self._config.cipher_backend,
            )
        except DecryptionFailed:
            logger.error(
                "Failed to decrypt API key id=%s user=%s", key.id, key.user_id,
            )
            raise
        if not hash_matches(api_key, key.key_hash):
            logger.error(
                "API key id=%s user=%s does not match its stored hash",
                key.id, key.user_id,
            )
            raise DecryptionFailed("Stored API key failed its integrity check")
        return api_key

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    async def _call(self, operation: str, coro: Awaitable[T]) -> T:
        """Await a store coroutine under the deadline, translating failures."""
        try:
            return await asyncio.wait_for(coro, timeout=self._config.store_timeout)
        except VaultError:
            raise
        except asyncio.TimeoutError as err:
            logger.error("Credential store timed out during %s", operation)
            raise StorageFailed("Credential storage timed out") from err
        except Exception as err:
            if getattr(err, "sqlstate", None) == UNIQUE_VIOLATION:
                raise ProviderConflict() from err
            logger.error(
                "Credential store failed during %s: %s",
                operation, type(err).__name__,
            )
            raise StorageFailed() from err

    async def _load(self, user_id: int, key_id: int, operation: str) -> UserAPIKey:
        key = await self._call(operation, self._store.get(user_id, key_id))
        if key is None:
            raise NotFound()
        return key

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self,
        user_id: int,
        provider: str,
        name: str,
        api_key: str,
    ) -> UserAPIKeyInfo:
        """Encrypt and persist a new API key for a provider.

        Args:
            user_id: Owner of the key.
            provider: Provider name, case and surrounding whitespace ignored.
            name: Label shown to the owner (1-100 chars after trimming).
            api_key: Plaintext key (at least 10 chars after trimming).

        Returns:
            Non-secret projection of the stored key.

        Raises:
            InvalidProvider, InvalidName, InvalidKey: Bad input.
            ProviderConflict: The user already has a key for this provider.
            EncryptionFailed, StorageFailed: Operational failures.
        """
        provider = self._validate_provider(provider)
        name = self._validate_name(name)
        api_key = self._validate_api_key(api_key)

        # Fast-path rejection; the unique index is the real guard.
        existing = await self._call(
            "create", self._store.find_by_provider(user_id, provider),
        )
        if existing is not None:
            raise ProviderConflict()

        key_hash, key_encrypted, key_preview = self._seal(api_key)
        del api_key

        key = await self._call(
            "create",
            self._store.insert(
                user_id, provider, name, key_hash, key_encrypted,
                key_preview, self._clock(),
            ),
        )
        logger.debug(
            "Vault create: user=%s provider=%s id=%s", user_id, provider, key.id,
        )
        return key.to_info()

    async def update(
        self,
        user_id: int,
        key_id: int,
        name: Optional[str] = None,
        api_key: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> UserAPIKeyInfo:
        """Change the label, the key material and/or the active flag.

        Only the supplied fields change. A supplied ``api_key`` is always
        re-hashed and re-sealed under the current master key.

        Raises:
            NotFound: No key ``key_id`` owned by ``user_id``.
            InvalidName, InvalidKey: Bad input.
            ProviderConflict: Re-activating while another key is active.
            EncryptionFailed, StorageFailed: Operational failures.
        """
        if name is not None:
            name = self._validate_name(name)
        if api_key is not None:
            api_key = self._validate_api_key(api_key)

        key = await self._load(user_id, key_id, "update")

        changes: dict[str, Any] = {"updated_at": self._clock()}
        if name is not None:
            changes["name"] = name
        if api_key is not None:
            key_hash, key_encrypted, key_preview = self._seal(api_key)
            changes.update(
                key_hash=key_hash,
                key_encrypted=key_encrypted,
                key_preview=key_preview,
            )
            del api_key
        if is_active is not None:
            changes["is_active"] = is_active

        saved = await self._call(
            "update", self._store.update(key.model_copy(update=changes)),
        )
        if saved is None:
            raise NotFound()
        logger.debug(
            "Vault update: user=%s id=%s fields=%s",
            user_id, key_id, sorted(changes),
        )
        return saved.to_info()

    async def delete(self, user_id: int, key_id: int) -> None:
        """Hard-delete a key. Deleting a missing key raises ``NotFound``."""
        deleted = await self._call(
            "delete", self._store.delete(user_id, key_id),
        )
        if not deleted:
            raise NotFound()
        logger.debug("Vault delete: user=%s id=%s", user_id, key_id)

    async def get(self, user_id: int, key_id: int) -> UserAPIKeyInfo:
        key = await self._load(user_id, key_id, "get")
        return key.to_info()

    async def list(self, user_id: int) -> list[UserAPIKeyInfo]:
        keys = await self._call("list", self._store.list_for_user(user_id))
        return [key.to_info() for key in keys]

    async def test(self, user_id: int, key_id: int) -> bool:
        """Check that a stored key still decrypts under the current master key.

        This does not contact the provider.

        Raises:
            NotFound: No key ``key_id`` owned by ``user_id``.
            DecryptionFailed: Master secret rotated or data corrupted.
        """
        key = await self._load(user_id, key_id, "test")
        self._open(key)
        return True

    async def fetch_for_use(self, user_id: int, provider: str) -> str:
        """Return the plaintext of the user's active key for ``provider``.

        Usage statistics are updated after a successful decrypt; a failure
        to record them is logged and does not fail the call.

        Raises:
            NotFound: No active key for that provider.
            DecryptionFailed: Master secret rotated or data corrupted.
        """
        provider = (provider or "").strip().lower()
        key = await self._call(
            "fetch",
            self._store.find_by_provider(user_id, provider, active_only=True),
        )
        if key is None:
            raise NotFound(f"No active API key for provider {provider}")
        api_key = self._open(key)
        try:
            await self._call(
                "record_usage", self._store.record_usage(key.id, self._clock()),
            )
        except StorageFailed:
            logger.warning("Could not record usage for API key id=%s", key.id)
        return api_key

    async def export(self, user_id: int) -> bytes:
        """Serialize the user's non-secret key data for a data export."""
        keys = await self._call("export", self._store.list_for_user(user_id))
        return orjson.dumps({
            "api_keys": [key.model_dump(include=_EXPORT_FIELDS) for key in keys],
        })

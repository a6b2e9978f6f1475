"""Credential Vault — Encrypted storage for users' third-party API keys.

Security Note (Threat Model):
    Plaintext keys exist in process memory only while a key is being
    created, updated, tested or fetched for use. Anyone holding the master
    secret and a copy of ``user_api_keys`` can recover every key.
    This is an accepted limitation; mitigation requires KMS/HSM
    integration which is out of scope.
"""

from .credential_vault import CredentialVault
from .store import CredentialStore
from .config import VaultConfig, load_master_secret, generate_master_secret
from .models import Provider, UserAPIKey, UserAPIKeyInfo
from .exceptions import (
    VaultError,
    InvalidProvider,
    InvalidName,
    InvalidKey,
    ProviderConflict,
    NotFound,
    EncryptionFailed,
    DecryptionFailed,
    StorageFailed,
)

__all__ = [
    "CredentialVault",
    "CredentialStore",
    "VaultConfig",
    "load_master_secret",
    "generate_master_secret",
    "Provider",
    "UserAPIKey",
    "UserAPIKeyInfo",
    "VaultError",
    "InvalidProvider",
    "InvalidName",
    "InvalidKey",
    "ProviderConflict",
    "NotFound",
    "EncryptionFailed",
    "DecryptionFailed",
    "StorageFailed",
]

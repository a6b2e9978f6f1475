"""Navigator Credentials.

Encrypted storage for the third-party API keys users hand to the platform.
"""
from .version import __version__
from .vault import CredentialVault, CredentialStore, VaultConfig

__all__ = ["__version__", "CredentialVault", "CredentialStore", "VaultConfig"]

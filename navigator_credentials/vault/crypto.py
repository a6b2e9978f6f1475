"""
Vault Crypto Core — Key derivation, hashing, encryption/decryption and previews.

Stored format for ``key_encrypted``:
    base64( [nonce 12B][encrypted_payload + tag 16B] )

The master key is SHA-256(master_secret), 32 bytes, used directly as the
AEAD key. Both are fixed by the data already at rest and must not change.

Security Note:
    Never log plaintext, derived keys, ciphertext or hashes.
    Nonces are random 96-bit, drawn from os.urandom on every call;
    callers cannot supply one.
"""
import os
import base64
import binascii

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, constant_time
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .exceptions import EncryptionFailed, DecryptionFailed

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
PREVIEW_LENGTH = 4
PREVIEW_PREFIX = "..."

CIPHER_BACKENDS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def _sha256(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


def _get_cipher(key: bytes, backend: str):
    try:
        cipher_cls = CIPHER_BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unsupported cipher backend: {backend}") from None
    if len(key) != KEY_LENGTH:
        raise ValueError(
            f"Encryption key must be exactly {KEY_LENGTH} bytes"
        )
    return cipher_cls(key)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_master_key(secret: str) -> bytes:
    """Derive the 32-byte symmetric key from the process master secret.

    Args:
        secret: Master secret string from configuration.

    Returns:
        32-byte key (SHA-256 digest of the UTF-8 secret).
    """
    return _sha256(secret.encode("utf-8"))


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------

def hash_api_key(api_key: str) -> str:
    """Return the hex SHA-256 fingerprint of a plaintext API key."""
    return _sha256(api_key.encode("utf-8")).hex()


def hash_matches(api_key: str, key_hash: str) -> bool:
    """Compare a plaintext key against a stored fingerprint in constant time."""
    return constant_time.bytes_eq(
        hash_api_key(api_key).encode("ascii"),
        key_hash.encode("ascii", "replace"),
    )


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def encrypt_api_key(api_key: str, key: bytes, backend: str = "aesgcm") -> str:
    """Encrypt a plaintext API key for storage.

    Args:
        api_key: Plaintext key.
        key: 32-byte master key (see ``derive_master_key``).
        backend: AEAD backend name, ``aesgcm`` or ``chacha20``.

    Returns:
        base64 text of ``nonce || ciphertext || tag``.

    Raises:
        EncryptionFailed: If the cipher cannot be built or refuses the input.
    """
    try:
        cipher = _get_cipher(key, backend)
        nonce = os.urandom(NONCE_SIZE)
        ct = cipher.encrypt(nonce, api_key.encode("utf-8"), None)
    except (ValueError, OverflowError) as err:
        raise EncryptionFailed() from err
    return base64.b64encode(nonce + ct).decode("ascii")


def decrypt_api_key(key_encrypted: str, key: bytes, backend: str = "aesgcm") -> str:
    """Decrypt a stored API key blob.

    Either the exact original plaintext is returned or ``DecryptionFailed``
    is raised; there is no partial result.

    Args:
        key_encrypted: base64 text produced by ``encrypt_api_key``.
        key: 32-byte master key.
        backend: AEAD backend name the blob was sealed with.

    Returns:
        Plaintext API key.

    Raises:
        DecryptionFailed: Malformed base64, blob too short, wrong key
            (e.g. rotated master secret) or tampered ciphertext.
    """
    try:
        raw = base64.b64decode(key_encrypted, validate=True)
    except (binascii.Error, ValueError, TypeError) as err:
        raise DecryptionFailed("Stored API key is not valid base64") from err
    _min = NONCE_SIZE + TAG_SIZE
    if len(raw) < _min:
        raise DecryptionFailed("Stored API key is truncated")
    try:
        cipher = _get_cipher(key, backend)
        plaintext = cipher.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        return plaintext.decode("utf-8")
    except (InvalidTag, ValueError) as err:
        # ValueError covers bad UTF-8 after a successful open.
        raise DecryptionFailed() from err


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def make_preview(api_key: str, length: int = PREVIEW_LENGTH) -> str:
    """Build the display fragment, e.g. ``...1234``."""
    return PREVIEW_PREFIX + api_key[-length:]

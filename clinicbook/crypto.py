"""
clinicbook/crypto.py

Field-level protection for patient-identifying data.

Key lifecycle
-------------
Both secrets are supplied by the operator and never generated or rotated
here:

- ENCRYPTION_KEY: base64 of 32 random bytes, used for AES-256-GCM.
- SEARCH_PEPPER: base64 of a separate random secret, used as the HMAC key
  for the blind index.

Public API
----------
encrypt_field(plaintext: str) -> str          "ivBase64:ciphertextBase64"
decrypt_field(encrypted: str) -> str          raises CryptoError on tampering
hash_for_search(text: str) -> str             hex HMAC-SHA256 of lower/trimmed text
"""

import base64
import binascii
import hashlib
import hmac
import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import CryptoError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------

_ENCRYPTION_KEY_NAME = "ENCRYPTION_KEY"
_SEARCH_PEPPER_NAME = "SEARCH_PEPPER"

IV_LENGTH = 12  # 96-bit nonce, the GCM standard size
FIELD_DELIMITER = ":"


def _decode_secret(env_name: str) -> bytes:
    raw = os.environ.get(env_name)
    if not raw:
        raise CryptoError(f"Missing {env_name}")
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"{env_name} is not valid base64") from e


@lru_cache(maxsize=1)
def _get_cipher() -> AESGCM:
    """Return a cached AES-256-GCM cipher built from ENCRYPTION_KEY."""
    key = _decode_secret(_ENCRYPTION_KEY_NAME)
    if len(key) != 32:
        raise CryptoError(f"{_ENCRYPTION_KEY_NAME} must decode to 32 bytes, got {len(key)}")
    logger.debug("AES-GCM key loaded from environment variable '%s'.", _ENCRYPTION_KEY_NAME)
    return AESGCM(key)


@lru_cache(maxsize=1)
def _get_pepper() -> bytes:
    return _decode_secret(_SEARCH_PEPPER_NAME)


def reload_keys() -> None:
    """Forget cached key material so the next call re-reads the environment."""
    _get_cipher.cache_clear()
    _get_pepper.cache_clear()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def encrypt_field(plaintext: str) -> str:
    """
    Encrypt a value with a fresh random IV.

    The same plaintext encrypted twice gives two different outputs.
    """
    cipher = _get_cipher()
    iv = os.urandom(IV_LENGTH)
    ciphertext = cipher.encrypt(iv, plaintext.encode("utf-8"), None)
    return (
        base64.b64encode(iv).decode("ascii")
        + FIELD_DELIMITER
        + base64.b64encode(ciphertext).decode("ascii")
    )


def decrypt_field(encrypted: str) -> str:
    """
    Decrypt an "ivBase64:ciphertextBase64" value.

    Raises:
        CryptoError: malformed input, wrong key, or the authentication tag
            does not match (tampered ciphertext).
    """
    if not encrypted or FIELD_DELIMITER not in encrypted:
        raise CryptoError("Encrypted field is malformed")

    iv_b64, _, ciphertext_b64 = encrypted.partition(FIELD_DELIMITER)
    try:
        iv = base64.b64decode(iv_b64, validate=True)
        ciphertext = base64.b64decode(ciphertext_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError("Encrypted field is not valid base64") from e

    if len(iv) != IV_LENGTH:
        raise CryptoError("Encrypted field has an invalid IV")

    cipher = _get_cipher()
    try:
        plaintext = cipher.decrypt(iv, ciphertext, None)
    except InvalidTag as e:
        logger.error("❌ Authentication tag mismatch while decrypting a protected field")
        raise CryptoError("Decryption failed: data was tampered with or the key is wrong") from e

    return plaintext.decode("utf-8")


def normalize_for_search(text: str) -> str:
    return text.strip().lower()


def hash_for_search(text: str) -> str:
    """
    Deterministic blind index of a value.

    Input is lowercased and trimmed, then HMAC-SHA256'd with SEARCH_PEPPER.
    Empty input is returned as-is.
    """
    if not text:
        return text
    normalized = normalize_for_search(text)
    return hmac.new(_get_pepper(), normalized.encode("utf-8"), hashlib.sha256).hexdigest()


def encrypt_optional(value):
    """Encrypt a value that may be missing; None and "" stay as None."""
    if value is None or value == "":
        return None
    return encrypt_field(str(value))


def decrypt_optional(value):
    if value is None:
        return None
    return decrypt_field(value)

"""
OmniFlow CRM - API key encryption

AES-256-GCM for third-party credentials stored on company documents.

Stored shape:
    {"encrypted": True, "ciphertext": b64(ciphertext + tag), "iv": b64(nonce)}

Legacy plaintext strings are still accepted by decrypt_api_key.
"""

import base64
import logging
import os
from typing import Any, Dict, Union

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

import config

logger = logging.getLogger("encryption")

IV_LENGTH = 12


def _get_key() -> bytes:
    raw = config.ENCRYPTION_KEY
    if not raw:
        raise ValueError("ENCRYPTION_KEY environment variable is required")
    key = base64.b64decode(raw)
    if len(key) != 32:
        raise ValueError(f"ENCRYPTION_KEY must decode to 32 bytes (got {len(key)})")
    return key


def is_encrypted(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("encrypted") is True
        and bool(value.get("ciphertext"))
        and bool(value.get("iv"))
    )


def encrypt_api_key(plaintext: str) -> Union[Dict[str, Any], str]:
    """Encrypt a secret. Empty input stays empty."""
    if not plaintext:
        return ""
    iv = os.urandom(IV_LENGTH)
    # AESGCM appends the 16-byte tag to the ciphertext
    ciphertext = AESGCM(_get_key()).encrypt(iv, plaintext.encode("utf-8"), None)
    return {
        "encrypted": True,
        "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        "iv": base64.b64encode(iv).decode("ascii"),
    }


def decrypt_api_key(value: Any) -> str:
    """
    Decrypt a stored secret.
    Plain strings pass through. Any failure is logged and returns "".
    """
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if not is_encrypted(value):
        logger.warning("[ENCRYPTION] Unrecognized secret format, ignoring")
        return ""
    try:
        iv = base64.b64decode(value["iv"])
        ciphertext = base64.b64decode(value["ciphertext"])
        plaintext = AESGCM(_get_key()).decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except Exception as e:
        logger.error(f"[ENCRYPTION] Decryption failed: {e}")
        return ""


def mask_secret(value: str) -> str:
    """••••last4 for display"""
    if not value:
        return ""
    if len(value) <= 4:
        return "••••"
    return f"••••{value[-4:]}"

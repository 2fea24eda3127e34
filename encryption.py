import base64
import binascii
import hashlib
import json
import os
import re
from datetime import datetime, timezone
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

ENVELOPE_VERSION = "1.0.0"
NONCE_BYTES = 12
MIN_PASSWORD_LENGTH = 8


class DecryptionError(ValueError):
    pass


def validate_password(password: str) -> bool:
    """At least eight characters with one letter and one digit."""
    return (
        len(password) >= MIN_PASSWORD_LENGTH
        and re.search(r"[A-Za-z]", password) is not None
        and re.search(r"\d", password) is not None
    )


def _derive_key(password: str) -> bytes:
    return hashlib.sha256(password.encode("utf-8")).digest()


def encrypt_payload(data: Any, password: str) -> str:
    plaintext = json.dumps(data).encode("utf-8")
    nonce = os.urandom(NONCE_BYTES)
    ciphertext = AESGCM(_derive_key(password)).encrypt(nonce, plaintext, None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_payload(token: str, password: str) -> Any:
    try:
        combined = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Failed to decrypt data. Check your password.") from exc
    if len(combined) <= NONCE_BYTES:
        raise DecryptionError("Failed to decrypt data. Check your password.")

    nonce, ciphertext = combined[:NONCE_BYTES], combined[NONCE_BYTES:]
    try:
        plaintext = AESGCM(_derive_key(password)).decrypt(nonce, ciphertext, None)
        return json.loads(plaintext.decode("utf-8"))
    except (InvalidTag, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptionError("Failed to decrypt data. Check your password.") from exc


def wrap_encrypted(data: Any, password: str) -> dict[str, Any]:
    return {
        "version": ENVELOPE_VERSION,
        "encryptedAt": datetime.now(timezone.utc).isoformat(),
        "encrypted": True,
        "data": encrypt_payload(data, password),
    }

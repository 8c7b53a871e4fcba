"""Decryption of stored provider API keys."""

from __future__ import annotations

import base64
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from . import db
from .config import settings

logger = logging.getLogger(__name__)

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret.encode())


def encrypt_secret(plaintext: str, secret: str | None = None) -> str:
    """Encrypt to base64(salt | iv | tag | ciphertext)."""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = _derive_key(secret or settings.encryption_secret, salt)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode(), None)
    # AESGCM appends the tag; the stored layout keeps it in front of the ciphertext.
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(salt + iv + tag + ciphertext).decode()


def decrypt_secret(token: str, secret: str | None = None) -> str:
    combined = base64.b64decode(token)
    if len(combined) < SALT_LENGTH + IV_LENGTH + TAG_LENGTH:
        raise ValueError("Encrypted secret is truncated")
    salt = combined[:SALT_LENGTH]
    iv = combined[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    tag = combined[SALT_LENGTH + IV_LENGTH : SALT_LENGTH + IV_LENGTH + TAG_LENGTH]
    ciphertext = combined[SALT_LENGTH + IV_LENGTH + TAG_LENGTH :]
    key = _derive_key(secret or settings.encryption_secret, salt)
    return AESGCM(key).decrypt(iv, ciphertext + tag, None).decode()


async def load_session_credentials(user_id: str, secret: str | None = None) -> dict[str, str]:
    """Decrypt each active credential once; returns {provider: api_key}.

    The result lives only as long as the caller keeps it and is never logged.
    """
    async with db.get_session() as session:
        rows = await db.get_active_credentials(session, user_id)

    credentials: dict[str, str] = {}
    for row in rows:
        if row.provider in credentials:
            continue
        try:
            credentials[row.provider] = decrypt_secret(row.encrypted_secret, secret)
        except (InvalidTag, ValueError) as exc:
            logger.warning(
                "Skipping undecryptable %s credential %s: %s",
                row.provider,
                row.id,
                type(exc).__name__,
            )
    return credentials

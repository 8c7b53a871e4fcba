import base64
import logging

import pytest
from cryptography.exceptions import InvalidTag

from brandprobe import db
from brandprobe.credentials import (
    IV_LENGTH,
    SALT_LENGTH,
    TAG_LENGTH,
    decrypt_secret,
    encrypt_secret,
    load_session_credentials,
)
from brandprobe.models import Credential

from conftest import TEST_SECRET, seed


def test_encrypted_layout_and_decryption() -> None:
    token = encrypt_secret("sk-live-123", "s3cret")

    raw = base64.b64decode(token)
    assert len(raw) == SALT_LENGTH + IV_LENGTH + TAG_LENGTH + len("sk-live-123")
    assert decrypt_secret(token, "s3cret") == "sk-live-123"
    # Random salt and IV per encryption.
    assert encrypt_secret("sk-live-123", "s3cret") != token


def test_wrong_secret_is_rejected() -> None:
    token = encrypt_secret("sk-live-123", "s3cret")
    with pytest.raises(InvalidTag):
        decrypt_secret(token, "other")


def test_truncated_token_is_rejected() -> None:
    with pytest.raises(ValueError):
        decrypt_secret(base64.b64encode(b"short").decode(), "s3cret")


@pytest.mark.asyncio
async def test_load_session_credentials(database, caplog) -> None:
    await seed(credentials={"openai": "sk-openai-test"})
    async with db.get_session() as session:
        session.add_all(
            [
                Credential(
                    user_id="user-1",
                    provider="google",
                    encrypted_secret=encrypt_secret("google-secret", "wrong-secret"),
                ),
                Credential(
                    user_id="user-1",
                    provider="perplexity",
                    encrypted_secret=encrypt_secret("pplx-secret", TEST_SECRET),
                    is_active=False,
                ),
                Credential(
                    user_id="someone-else",
                    provider="perplexity",
                    encrypted_secret=encrypt_secret("pplx-other", TEST_SECRET),
                ),
            ]
        )

    with caplog.at_level(logging.WARNING, logger="brandprobe.credentials"):
        credentials = await load_session_credentials("user-1", TEST_SECRET)

    assert credentials == {"openai": "sk-openai-test"}
    assert "google" in caplog.text
    assert "google-secret" not in caplog.text

"""Shared fixtures: isolated temp-file database and an in-memory keychain."""

import os
import tempfile
from unittest.mock import MagicMock, patch

import pytest

from storage.database import Database
from storage.keychain import KeychainManager


@pytest.fixture
def db():
    """Create an isolated Database using a temp file."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    try:
        yield Database(db_path=path)
    finally:
        for suffix in ("", "-wal", "-shm"):
            if os.path.exists(path + suffix):
                os.unlink(path + suffix)


@pytest.fixture(autouse=True)
def memory_keychain(monkeypatch):
    """Never touch the real OS keychain or ambient provider keys."""
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    broken = MagicMock()
    broken.get_credential.side_effect = Exception("No keyring backend")
    with patch("storage.keychain.keyring", broken):
        kc = KeychainManager()
    with patch("api.settings_store.get_keychain", return_value=kc):
        yield kc

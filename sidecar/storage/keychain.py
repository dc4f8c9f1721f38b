"""OS keychain integration for generation-provider credentials."""

from __future__ import annotations

import logging

import keyring
from keyring.errors import PasswordDeleteError

logger = logging.getLogger(__name__)

_SERVICE_NAME = "medicinia"

PROVIDER_KEY_NAMES = {
    "gemini": "gemini_api_key",
    "claude": "claude_api_key",
    "openai": "openai_api_key",
}


class KeychainManager:
    """Store and retrieve API keys via OS keychain, with in-memory fallback.

    The fallback only applies when no keyring backend is usable on this
    machine; keys stored there are lost at shutdown.
    """

    def __init__(self) -> None:
        self._available = False
        self._fallback: dict[str, str] = {}
        try:
            keyring.get_credential(_SERVICE_NAME, None)
            self._available = True
            logger.info("OS keychain is available")
        except Exception:
            logger.warning(
                "OS keychain unavailable; API keys will be stored in memory only"
            )

    def get_key(self, name: str) -> str | None:
        if self._available:
            try:
                return keyring.get_password(_SERVICE_NAME, name)
            except Exception:
                logger.warning("Failed to read '%s' from keychain; using fallback", name)
        return self._fallback.get(name)

    def set_key(self, name: str, value: str) -> None:
        if self._available:
            try:
                keyring.set_password(_SERVICE_NAME, name, value)
                return
            except Exception:
                logger.warning("Failed to write to keychain; using fallback")
        self._fallback[name] = value

    def delete_key(self, name: str) -> None:
        if self._available:
            try:
                keyring.delete_password(_SERVICE_NAME, name)
                return
            except PasswordDeleteError:
                pass
            except Exception:
                logger.warning("Failed to delete '%s' from keychain", name)
        self._fallback.pop(name, None)

    # Convenience methods

    def get_provider_key(self, provider: str) -> str | None:
        name = PROVIDER_KEY_NAMES.get(provider)
        return self.get_key(name) if name else None

    def set_provider_key(self, provider: str, value: str) -> None:
        self.set_key(PROVIDER_KEY_NAMES[provider], value)

    def delete_provider_key(self, provider: str) -> None:
        self.delete_key(PROVIDER_KEY_NAMES[provider])


_keychain_instance: KeychainManager | None = None


def get_keychain() -> KeychainManager:
    """Return the module-level KeychainManager singleton."""
    global _keychain_instance
    if _keychain_instance is None:
        _keychain_instance = KeychainManager()
    return _keychain_instance

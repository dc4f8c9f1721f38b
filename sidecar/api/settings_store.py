"""
Persistent settings store backed by SQLite + OS keychain.

Public API: get_settings, update_settings, get_api_key_for_provider,
get_profile, save_profile.
"""

from __future__ import annotations

import logging
import os

from pydantic import ValidationError as SchemaError

from api.settings_models import AppSettings, LLMProviderEnum, SettingsUpdate, UserProfile
from storage.database import Database, get_db
from storage.keychain import PROVIDER_KEY_NAMES, get_keychain

logger = logging.getLogger(__name__)

PROFILE_KEY = "medicinia_profile"

# Non-secret settings stored in SQLite
_DB_KEYS = ("llm_provider", "gemini_model", "claude_model", "openai_model")
# Secret keys stored in OS keychain
_SECRET_KEYS = tuple(PROVIDER_KEY_NAMES.values())

# Environment fallback when the keychain holds nothing
_ENV_KEYS = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "claude": ("ANTHROPIC_API_KEY",),
    "openai": ("OPENAI_API_KEY",),
}


def get_settings(db: Database | None = None) -> AppSettings:
    """Return current settings (loaded fresh from SQLite + keychain)."""
    db = db or get_db()
    all_db = db.get_all_settings()
    keychain = get_keychain()

    try:
        provider = LLMProviderEnum(all_db.get("llm_provider", LLMProviderEnum.GEMINI.value))
    except ValueError:
        logger.warning("Unknown llm_provider '%s' in settings; using gemini", all_db["llm_provider"])
        provider = LLMProviderEnum.GEMINI

    return AppSettings(
        llm_provider=provider,
        gemini_api_key=keychain.get_key("gemini_api_key"),
        claude_api_key=keychain.get_key("claude_api_key"),
        openai_api_key=keychain.get_key("openai_api_key"),
        gemini_model=all_db.get("gemini_model"),
        claude_model=all_db.get("claude_model"),
        openai_model=all_db.get("openai_model"),
    )


def update_settings(update: SettingsUpdate, db: Database | None = None) -> AppSettings:
    """Apply partial update and return new settings."""
    db = db or get_db()
    update_data = update.model_dump(exclude_unset=True)

    # Persist API keys in keychain
    keychain = get_keychain()
    for secret_key in _SECRET_KEYS:
        if secret_key in update_data:
            val = update_data.pop(secret_key)
            if val is None:
                keychain.delete_key(secret_key)
            else:
                keychain.set_key(secret_key, val)

    # Persist non-secret settings in SQLite
    for key in _DB_KEYS:
        if key in update_data:
            val = update_data[key]
            if val is None:
                db.delete_setting(key)
            else:
                # Enums -> store their value string
                db.set_setting(key, val.value if hasattr(val, "value") else str(val))

    return get_settings(db)


def get_api_key_for_provider(provider: str) -> str | None:
    """Get the API key for the given provider.

    Keys come from the OS keychain first, then from the environment.
    """
    key = get_keychain().get_provider_key(provider)
    if key:
        return key
    for env_name in _ENV_KEYS.get(provider, ()):
        value = os.getenv(env_name)
        if value:
            return value
    return None


def get_model_for_provider(settings: AppSettings) -> str | None:
    return getattr(settings, f"{settings.llm_provider.value}_model")


def get_profile(db: Database | None = None) -> UserProfile:
    """Stored clinician profile, or the default when none has been saved."""
    db = db or get_db()
    raw = db.get(PROFILE_KEY)
    if raw is None:
        return UserProfile()
    try:
        return UserProfile.model_validate(raw)
    except SchemaError:
        logger.warning("Stored profile is malformed; using default profile")
        return UserProfile()


def save_profile(profile: UserProfile, db: Database | None = None) -> UserProfile:
    db = db or get_db()
    db.set(PROFILE_KEY, profile.model_dump(mode="json"))
    return profile

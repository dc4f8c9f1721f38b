"""Pydantic models for the /profile and /settings endpoints."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class LLMProviderEnum(str, Enum):
    GEMINI = "gemini"
    CLAUDE = "claude"
    OPENAI = "openai"


class UserProfile(BaseModel):
    name: str = "Dr. Usuario"
    role: str = "Médico"
    specialty: str = "Medicina General"


class AppSettings(BaseModel):
    llm_provider: LLMProviderEnum = LLMProviderEnum.GEMINI
    gemini_api_key: Optional[str] = None
    claude_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_model: Optional[str] = None
    claude_model: Optional[str] = None
    openai_model: Optional[str] = None


class SettingsUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    llm_provider: Optional[LLMProviderEnum] = None
    gemini_api_key: Optional[str] = None
    claude_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_model: Optional[str] = None
    claude_model: Optional[str] = None
    openai_model: Optional[str] = None

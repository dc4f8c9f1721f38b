from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Probability(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class SuggestedDiagnosis(BaseModel):
    code: str
    description: str
    probability: Probability
    justification: str


class SuggestedProcedure(BaseModel):
    cups_code: str
    soat_code: Optional[str] = None
    description: str
    justification: str


class AnalysisResult(BaseModel):
    """Structured assessment produced by the generation provider."""

    corrected_text: str
    summary: str
    diagnostics: list[SuggestedDiagnosis]
    procedures: list[SuggestedProcedure]
    plan: str
    alerts: list[str]


class DroppedCodeInfo(BaseModel):
    code: str
    kind: str
    reason: str


# --- Requests / responses ---


class AnalyzeRequest(BaseModel):
    """Request body for POST /cases/{case_id}/analyze."""

    note: str


class AnalysisDraft(BaseModel):
    """An uncommitted, validated analysis awaiting commit or discard."""

    id: str
    case_id: str
    original_text: str
    analysis: AnalysisResult
    dropped_codes: list[DroppedCodeInfo] = Field(default_factory=list)
    model_used: str = ""
    created_at: str

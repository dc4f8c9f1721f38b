"""Pydantic models for the controlled code vocabularies (CIE-10, CUPS/SOAT)."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


class CodeKind(str, Enum):
    DIAGNOSTIC = "cie10"
    PROCEDURE = "cups"


class ProcedureCategory(str, Enum):
    DIAGNOSTIC = "Diagnostic"
    THERAPEUTIC = "Therapeutic"
    SURGICAL = "Surgical"


class Cie10Code(BaseModel):
    code: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    active: bool = True


class CupsCode(BaseModel):
    code: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: ProcedureCategory = ProcedureCategory.DIAGNOSTIC
    active: bool = True
    soat_code: Optional[str] = None


VocabularyCode = Union[Cie10Code, CupsCode]


class MedicalVocabulary(BaseModel):
    """Both vocabularies as stored under a single persistence key."""

    cie10: list[Cie10Code] = Field(default_factory=list)
    cups: list[CupsCode] = Field(default_factory=list)


# --- Requests / responses ---


class CodeCreateRequest(BaseModel):
    """Request body for POST /vocabulary/{kind}."""

    code: str
    description: str
    category: Optional[ProcedureCategory] = None
    soat_code: Optional[str] = None


class BulkImportRequest(BaseModel):
    """Request body for POST /vocabulary/{kind}/import."""

    text: str


class ImportSummary(BaseModel):
    imported: int = 0
    skipped: int = 0

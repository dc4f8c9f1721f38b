"""Pydantic models for patients, cases and the evolution timeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from api.analysis_models import AnalysisResult


class Gender(str, Enum):
    MALE = "M"
    FEMALE = "F"


class CaseStatus(str, Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"


class Patient(BaseModel):
    id: str
    name: str
    age: int = Field(ge=0)
    gender: Gender
    weight: Optional[str] = None
    height: Optional[str] = None
    personal_history: Optional[str] = None
    family_history: Optional[str] = None
    other_info: Optional[str] = None
    created_at: str


class ClinicalEvolution(BaseModel):
    id: str
    date: str
    professional_name: str
    professional_specialty: str
    original_text: str
    analysis: AnalysisResult


class Case(BaseModel):
    id: str
    patient_id: str
    status: CaseStatus = CaseStatus.ACTIVE
    created_at: str
    evolutions: list[ClinicalEvolution] = Field(default_factory=list)


# --- Requests / responses ---


class PatientCreateRequest(BaseModel):
    """Request body for POST /patients.

    ``name`` and ``age`` are checked by CaseRepository so a missing value
    surfaces as a domain validation error rather than a schema error.
    """

    name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0)
    gender: Gender = Gender.FEMALE
    weight: Optional[str] = None
    height: Optional[str] = None
    personal_history: Optional[str] = None
    family_history: Optional[str] = None
    other_info: Optional[str] = None


class PatientWithCase(BaseModel):
    patient: Patient
    case: Case


class DiagnosisCount(BaseModel):
    code: str
    count: int


class DashboardStats(BaseModel):
    total_patients: int = 0
    active_cases: int = 0
    total_evolutions: int = 0
    top_diagnoses: list[DiagnosisCount] = Field(default_factory=list)

import logging

from fastapi import APIRouter, Body, HTTPException, Request, Response

from api import settings_store
from api.analysis_models import AnalysisDraft, AnalyzeRequest
from api.case_models import (
    Case,
    DashboardStats,
    Patient,
    PatientCreateRequest,
    PatientWithCase,
)
from api.consult_models import ConsultationEntry, ConsultRequest
from api.settings_models import AppSettings, SettingsUpdate, UserProfile
from api.vocabulary_models import (
    BulkImportRequest,
    CodeCreateRequest,
    CodeKind,
    ImportSummary,
)
from clinical.workspace import ClinicalWorkspace
from errors import NotFoundError

router = APIRouter()
logger = logging.getLogger(__name__)


def _workspace(request: Request) -> ClinicalWorkspace:
    return request.app.state.workspace


def _mask_api_key(key: str | None) -> str | None:
    """Mask an API key for display, keeping first 8 and last 4 chars."""
    if not key:
        return key
    if len(key) < 16:
        return "***"
    return key[:8] + "..." + key[-4:]


def _masked(settings: AppSettings) -> AppSettings:
    settings.gemini_api_key = _mask_api_key(settings.gemini_api_key)
    settings.claude_api_key = _mask_api_key(settings.claude_api_key)
    settings.openai_api_key = _mask_api_key(settings.openai_api_key)
    return settings


@router.get("/health")
async def health_check(request: Request):
    try:
        _workspace(request).db.get_all_settings()
        return {"status": "ok"}
    except Exception:
        return {"status": "starting"}


# --- Profile & settings ---


@router.get("/profile", response_model=UserProfile)
async def get_profile(request: Request):
    return settings_store.get_profile(_workspace(request).db)


@router.put("/profile", response_model=UserProfile)
async def save_profile(request: Request, profile: UserProfile = Body(...)):
    return settings_store.save_profile(profile, _workspace(request).db)


@router.get("/settings", response_model=AppSettings)
async def get_settings(request: Request):
    """Return current application settings with masked API keys."""
    return _masked(settings_store.get_settings(_workspace(request).db))


@router.patch("/settings", response_model=AppSettings)
async def update_settings(request: Request, update: SettingsUpdate = Body(...)):
    """Update application settings (partial update)."""
    workspace = _workspace(request)
    updated = settings_store.update_settings(update, workspace.db)
    # Provider or key may have changed
    workspace.reset_engine()
    return _masked(updated)


# --- Vocabulary ---


@router.get("/vocabulary/{kind}")
async def list_vocabulary(request: Request, kind: CodeKind, active_only: bool = False):
    store = _workspace(request).vocabulary
    return store.list_active(kind) if active_only else store.list_codes(kind)


@router.post("/vocabulary/{kind}")
async def add_code(request: Request, kind: CodeKind, body: CodeCreateRequest = Body(...)):
    return _workspace(request).vocabulary.add(
        kind,
        body.code,
        body.description,
        category=body.category,
        soat_code=body.soat_code,
    )


@router.post("/vocabulary/{kind}/{code}/toggle")
async def toggle_code(request: Request, kind: CodeKind, code: str):
    return _workspace(request).vocabulary.toggle_active(kind, code)


@router.post("/vocabulary/{kind}/import", response_model=ImportSummary)
async def import_codes(request: Request, kind: CodeKind, body: BulkImportRequest = Body(...)):
    """Bulk import tab- or comma-separated rows."""
    return _workspace(request).vocabulary.import_text(kind, body.text)


# --- Patients & cases ---


@router.get("/patients", response_model=list[Patient])
async def list_patients(request: Request):
    return _workspace(request).cases.list_patients()


@router.post("/patients", response_model=PatientWithCase)
async def create_patient(request: Request, body: PatientCreateRequest = Body(...)):
    """Create a patient together with its single active case."""
    patient, case = _workspace(request).cases.create_patient(body)
    return PatientWithCase(patient=patient, case=case)


@router.get("/patients/{patient_id}/case", response_model=Case)
async def get_patient_case(request: Request, patient_id: str):
    case = _workspace(request).cases.get_case_for_patient(patient_id)
    if case is None:
        raise NotFoundError(f"No case for patient {patient_id}.")
    return case


@router.post("/cases/{case_id}/close", response_model=Case)
async def close_case(request: Request, case_id: str):
    return _workspace(request).cases.close_case(case_id)


@router.post("/cases/{case_id}/analyze", response_model=AnalysisDraft)
async def analyze_note(request: Request, case_id: str, body: AnalyzeRequest = Body(...)):
    """Generate a validated, uncommitted analysis draft for a new note.

    At most one analysis per case runs at a time.
    """
    in_flight: set[str] = request.app.state.analyses_in_flight
    if case_id in in_flight:
        raise HTTPException(
            status_code=409,
            detail="An analysis for this case is already in progress.",
        )
    engine = _workspace(request).engine()
    in_flight.add(case_id)
    try:
        return await engine.analyze_note(case_id, body.note)
    finally:
        in_flight.discard(case_id)


@router.post("/drafts/{draft_id}/commit", response_model=Case)
async def commit_draft(request: Request, draft_id: str):
    return _workspace(request).drafts.commit(draft_id)


@router.delete("/drafts/{draft_id}", status_code=204)
async def discard_draft(request: Request, draft_id: str):
    _workspace(request).drafts.discard(draft_id)
    return Response(status_code=204)


# --- Consultations ---


@router.get("/consultations", response_model=list[ConsultationEntry])
async def list_consultations(request: Request):
    return _workspace(request).consultations.list()


@router.post("/consultations", response_model=ConsultationEntry)
async def consult(request: Request, body: ConsultRequest = Body(...)):
    return await _workspace(request).engine().consult(body.query)


# --- Dashboard ---


@router.get("/dashboard", response_model=DashboardStats)
async def dashboard(request: Request):
    return _workspace(request).cases.stats()

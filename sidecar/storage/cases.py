"""Patients, their single clinical case, and the append-only evolution timeline."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Callable

from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from api.case_models import (
    Case,
    CaseStatus,
    ClinicalEvolution,
    DashboardStats,
    DiagnosisCount,
    Patient,
    PatientCreateRequest,
)
from errors import NotFoundError, ValidationError
from storage.database import Database, _now

logger = logging.getLogger(__name__)

PATIENTS_KEY = "medicinia_patients"
CASES_KEY = "medicinia_cases"

_PATIENT_LIST = TypeAdapter(list[Patient])
_CASE_LIST = TypeAdapter(list[Case])


def new_id() -> str:
    return str(uuid.uuid4())


class CaseRepository:
    """Single write path into case history.

    There is no update or delete for patients or evolutions;
    ``commit_evolution`` only appends.
    """

    def __init__(
        self,
        db: Database,
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], str] = _now,
    ) -> None:
        self._db = db
        self._new_id = id_factory
        self._clock = clock

    def _load(self, key: str, adapter: TypeAdapter) -> tuple[list, int]:
        raw, revision = self._db.get_versioned(key)
        if raw is None:
            return [], revision
        try:
            return adapter.validate_python(raw), revision
        except SchemaError:
            logger.warning("Stored collection '%s' is malformed; treating as empty", key)
            return [], revision

    def _save(self, key: str, adapter: TypeAdapter, items: list, revision: int) -> int:
        return self._db.set(key, adapter.dump_python(items, mode="json"), expected_revision=revision)

    # --- Patients ---

    def list_patients(self) -> list[Patient]:
        patients, _ = self._load(PATIENTS_KEY, _PATIENT_LIST)
        return patients

    def get_patient(self, patient_id: str) -> Patient | None:
        return next((p for p in self.list_patients() if p.id == patient_id), None)

    def create_patient(self, data: PatientCreateRequest) -> tuple[Patient, Case]:
        """Store a patient and open its one Active case with no evolutions.

        The patient write is undone when the case cannot be stored, so a
        patient never exists without its case.
        """
        name = (data.name or "").strip()
        if not name or data.age is None:
            raise ValidationError("Patient name and age are required.")

        created_at = self._clock()
        patient = Patient(
            id=self._new_id(),
            name=name,
            age=data.age,
            gender=data.gender,
            weight=data.weight,
            height=data.height,
            personal_history=data.personal_history,
            family_history=data.family_history,
            other_info=data.other_info,
            created_at=created_at,
        )
        case = Case(
            id=self._new_id(),
            patient_id=patient.id,
            status=CaseStatus.ACTIVE,
            created_at=created_at,
            evolutions=[],
        )
        patients, p_rev = self._load(PATIENTS_KEY, _PATIENT_LIST)
        cases, c_rev = self._load(CASES_KEY, _CASE_LIST)

        saved_rev = self._save(PATIENTS_KEY, _PATIENT_LIST, patients + [patient], p_rev)
        try:
            self._save(CASES_KEY, _CASE_LIST, cases + [case], c_rev)
        except Exception:
            logger.warning("Case write failed; removing patient %s", patient.id)
            self._save(PATIENTS_KEY, _PATIENT_LIST, patients, saved_rev)
            raise

        logger.info("Created patient %s with case %s", patient.id, case.id)
        return patient, case

    # --- Cases ---

    def list_cases(self) -> list[Case]:
        cases, _ = self._load(CASES_KEY, _CASE_LIST)
        return cases

    def get_case(self, case_id: str) -> Case | None:
        return next((c for c in self.list_cases() if c.id == case_id), None)

    def get_case_for_patient(self, patient_id: str) -> Case | None:
        return next((c for c in self.list_cases() if c.patient_id == patient_id), None)

    def commit_evolution(self, case_id: str, evolution: ClinicalEvolution) -> Case:
        """Append ``evolution`` to the tail of the case timeline and persist.

        Re-committing an evolution id that is already in the timeline is a
        no-op that returns the case unchanged.
        """
        cases, revision = self._load(CASES_KEY, _CASE_LIST)
        for case in cases:
            if case.id != case_id:
                continue
            if any(e.id == evolution.id for e in case.evolutions):
                return case
            if case.status == CaseStatus.CLOSED:
                raise ValidationError(f"Case {case_id} is closed.")
            case.evolutions.append(evolution)
            self._save(CASES_KEY, _CASE_LIST, cases, revision)
            logger.info(
                "Committed evolution %s to case %s (%d total)",
                evolution.id, case_id, len(case.evolutions),
            )
            return case
        raise NotFoundError(f"Case {case_id} not found.")

    def close_case(self, case_id: str) -> Case:
        cases, revision = self._load(CASES_KEY, _CASE_LIST)
        for case in cases:
            if case.id == case_id:
                if case.status != CaseStatus.CLOSED:
                    case.status = CaseStatus.CLOSED
                    self._save(CASES_KEY, _CASE_LIST, cases, revision)
                    logger.info("Closed case %s", case_id)
                return case
        raise NotFoundError(f"Case {case_id} not found.")

    # --- Dashboard ---

    def stats(self, top: int = 5) -> DashboardStats:
        cases = self.list_cases()
        dx_counts: Counter[str] = Counter()
        total_evolutions = 0
        for case in cases:
            for evolution in case.evolutions:
                total_evolutions += 1
                dx_counts.update(d.code for d in evolution.analysis.diagnostics)

        return DashboardStats(
            total_patients=len(self.list_patients()),
            active_cases=sum(1 for c in cases if c.status == CaseStatus.ACTIVE),
            total_evolutions=total_evolutions,
            top_diagnoses=[
                DiagnosisCount(code=code, count=count)
                for code, count in dx_counts.most_common(top)
            ],
        )

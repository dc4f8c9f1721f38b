"""Tests for patients, cases and the append-only evolution timeline."""

import itertools
import random
from unittest.mock import patch

import pytest

from api.analysis_models import AnalysisResult, Probability, SuggestedDiagnosis
from api.case_models import CaseStatus, ClinicalEvolution, Gender, PatientCreateRequest
from errors import NotFoundError, StaleWriteError, ValidationError
from storage.cases import CASES_KEY, PATIENTS_KEY, CaseRepository


def _ids():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def repo(db):
    return CaseRepository(db, id_factory=_ids(), clock=lambda: "2024-05-01T10:00:00Z")


def _evolution(evolution_id: str, codes=("A09X",)) -> ClinicalEvolution:
    return ClinicalEvolution(
        id=evolution_id,
        date="2024-05-01T10:00:00Z",
        professional_name="Dr. Usuario",
        professional_specialty="Medicina General",
        original_text=f"nota {evolution_id}",
        analysis=AnalysisResult(
            corrected_text="Nota corregida",
            summary="Resumen",
            diagnostics=[
                SuggestedDiagnosis(
                    code=code, description="d", probability=Probability.HIGH, justification="j",
                )
                for code in codes
            ],
            procedures=[],
            plan="Plan",
            alerts=[],
        ),
    )


class TestCreatePatient:
    def test_creates_one_active_case(self, repo):
        patient, case = repo.create_patient(PatientCreateRequest(name="Ana", age=34))
        assert patient.id == "id-1"
        assert patient.gender == Gender.FEMALE
        assert case.id == "id-2"
        assert case.patient_id == patient.id
        assert case.status == CaseStatus.ACTIVE
        assert case.evolutions == []
        assert [c.id for c in repo.list_cases()] == [case.id]
        assert repo.get_case_for_patient(patient.id) == case

    def test_fields_persisted(self, repo, db):
        repo.create_patient(PatientCreateRequest(
            name="  Luis ", age=60, gender=Gender.MALE, weight="70 kg",
            personal_history="HTA", other_info="Fumador",
        ))
        fresh = CaseRepository(db)
        patient = fresh.list_patients()[0]
        assert patient.name == "Luis"
        assert patient.personal_history == "HTA"
        assert patient.created_at == "2024-05-01T10:00:00Z"

    @pytest.mark.parametrize("data", [
        PatientCreateRequest(age=34),
        PatientCreateRequest(name="  ", age=34),
        PatientCreateRequest(name="Ana"),
    ])
    def test_missing_name_or_age(self, repo, db, data):
        with pytest.raises(ValidationError):
            repo.create_patient(data)
        assert db.has_key(PATIENTS_KEY) is False
        assert db.has_key(CASES_KEY) is False

    def test_age_zero_allowed(self, repo):
        patient, _ = repo.create_patient(PatientCreateRequest(name="Bebé", age=0))
        assert patient.age == 0

    def test_lookup_missing(self, repo):
        assert repo.get_patient("nope") is None
        assert repo.get_case("nope") is None
        assert repo.get_case_for_patient("nope") is None

    def test_malformed_collections_read_as_empty(self, repo, db):
        db.set(PATIENTS_KEY, [{"id": 1}])
        db.set(CASES_KEY, "garbage")
        assert repo.list_patients() == []
        assert repo.list_cases() == []

    def test_failed_case_write_leaves_no_patient(self, repo, db):
        repo.create_patient(PatientCreateRequest(name="Luis", age=50))
        original_set = db.set

        def set_rejecting_cases(key, value, expected_revision=None):
            if key == CASES_KEY:
                raise StaleWriteError(key, expected_revision, expected_revision + 1)
            return original_set(key, value, expected_revision=expected_revision)

        with patch.object(db, "set", side_effect=set_rejecting_cases):
            with pytest.raises(StaleWriteError):
                repo.create_patient(PatientCreateRequest(name="Ana", age=34))

        assert [p.name for p in repo.list_patients()] == ["Luis"]
        assert len(repo.list_cases()) == 1
        # The collection stays writable after the rollback
        patient, case = repo.create_patient(PatientCreateRequest(name="Ana", age=34))
        assert repo.get_case_for_patient(patient.id) == case


class TestCommitEvolution:
    def test_append_only_preserves_order(self, repo):
        _, case = repo.create_patient(PatientCreateRequest(name="Ana", age=34))
        rng = random.Random(3)
        committed = []
        for i in range(rng.randint(5, 12)):
            before = list(repo.get_case(case.id).evolutions)
            evolution = _evolution(f"evo-{i}")
            after = repo.commit_evolution(case.id, evolution).evolutions
            assert after[: len(before)] == before
            assert after[-1] == evolution
            committed.append(evolution)
        assert repo.get_case(case.id).evolutions == committed

    def test_recommit_same_id_is_noop(self, repo):
        _, case = repo.create_patient(PatientCreateRequest(name="Ana", age=34))
        evolution = _evolution("evo-1")
        repo.commit_evolution(case.id, evolution)
        again = repo.commit_evolution(case.id, evolution)
        assert len(again.evolutions) == 1

    def test_commit_to_missing_case(self, repo):
        with pytest.raises(NotFoundError):
            repo.commit_evolution("missing", _evolution("evo-1"))

    def test_commit_only_touches_target_case(self, repo):
        _, case_a = repo.create_patient(PatientCreateRequest(name="Ana", age=34))
        _, case_b = repo.create_patient(PatientCreateRequest(name="Luis", age=50))
        repo.commit_evolution(case_a.id, _evolution("evo-1"))
        assert repo.get_case(case_b.id).evolutions == []


class TestCloseCase:
    def test_close_then_commit_rejected(self, repo):
        _, case = repo.create_patient(PatientCreateRequest(name="Ana", age=34))
        repo.commit_evolution(case.id, _evolution("evo-1"))
        closed = repo.close_case(case.id)
        assert closed.status == CaseStatus.CLOSED
        with pytest.raises(ValidationError):
            repo.commit_evolution(case.id, _evolution("evo-2"))
        assert len(repo.get_case(case.id).evolutions) == 1

    def test_close_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.close_case("missing")


class TestStats:
    def test_dashboard_counts(self, repo):
        _, case_a = repo.create_patient(PatientCreateRequest(name="Ana", age=34))
        _, case_b = repo.create_patient(PatientCreateRequest(name="Luis", age=50))
        repo.commit_evolution(case_a.id, _evolution("e1", ("A09X", "R51X")))
        repo.commit_evolution(case_a.id, _evolution("e2", ("A09X",)))
        repo.commit_evolution(case_b.id, _evolution("e3", ("I10X",)))
        repo.close_case(case_b.id)

        stats = repo.stats()
        assert stats.total_patients == 2
        assert stats.active_cases == 1
        assert stats.total_evolutions == 3
        assert stats.top_diagnoses[0].code == "A09X"
        assert stats.top_diagnoses[0].count == 2
        assert {d.code for d in stats.top_diagnoses} == {"A09X", "R51X", "I10X"}

    def test_top_limited_to_five(self, repo):
        _, case = repo.create_patient(PatientCreateRequest(name="Ana", age=34))
        repo.commit_evolution(case.id, _evolution("e1", tuple(f"X{i}" for i in range(8))))
        assert len(repo.stats().top_diagnoses) == 5

    def test_empty(self, repo):
        stats = repo.stats()
        assert stats.total_patients == 0
        assert stats.top_diagnoses == []

"""Tests for the analyze -> draft -> commit pipeline and the workspace lifecycle."""

import asyncio
import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from api.case_models import CaseStatus, PatientCreateRequest
from api.settings_models import UserProfile
from api.settings_store import save_profile
from api.vocabulary_models import CodeKind
from clinical.engine import ClinicalEngine
from clinical.workspace import ClinicalWorkspace
from errors import (
    AnalysisRejectedError,
    ConfigurationError,
    GenerationError,
    LLMRetryError,
    NotFoundError,
    ValidationError,
)
from llm.client import LLMClient, LLMProvider, LLMResponse
from storage.cases import CASES_KEY

CLOCK = "2024-05-01T10:00:00Z"


def _payload(dx_codes=("A09X",), px_codes=()):
    return {
        "corrected_text": "Paciente con deposiciones líquidas.",
        "summary": "Gastroenteritis aguda.",
        "diagnostics": [
            {"code": c, "description": "d", "probability": "Medium", "justification": "j"}
            for c in dx_codes
        ],
        "procedures": [
            {"cups_code": c, "description": "p", "justification": "j"} for c in px_codes
        ],
        "plan": "Hidratación oral.",
        "alerts": [],
    }


def _response(tool_result=None, text=""):
    return LLMResponse(
        provider=LLMProvider.GEMINI,
        raw_content=text,
        tool_call_result=tool_result,
        model="gemini-2.5-flash",
        input_tokens=10,
        output_tokens=20,
    )


def _fake_client():
    client = MagicMock(spec=LLMClient)
    client.call_with_tool = AsyncMock(return_value=_response(_payload()))
    client.call = AsyncMock(return_value=_response(text="R51X: Cefalea"))
    return client


@pytest.fixture
def client():
    return _fake_client()


@pytest.fixture
def workspace(db, client):
    counter = itertools.count(1)
    ws = ClinicalWorkspace(
        db,
        id_factory=lambda: f"id-{next(counter)}",
        clock=lambda: CLOCK,
        client_factory=lambda _db: client,
        seed_vocabulary=False,
    )
    ws.init()
    ws.vocabulary.add(CodeKind.DIAGNOSTIC, "A09X", "Diarrea y gastroenteritis")
    ws.vocabulary.add(CodeKind.PROCEDURE, "890201", "Consulta", soat_code="39145")
    return ws


@pytest.fixture
def case(workspace):
    _, case = workspace.cases.create_patient(PatientCreateRequest(name="Ana", age=34))
    return case


def _engine(workspace) -> ClinicalEngine:
    engine = workspace.engine()
    engine.max_attempts = 2
    return engine


class TestAnalyze:
    def test_draft_is_not_committed(self, workspace, case):
        draft = asyncio.run(_engine(workspace).analyze_note(case.id, "  diarrea hace 3 días "))
        assert draft.case_id == case.id
        assert draft.original_text == "diarrea hace 3 días"
        assert [d.code for d in draft.analysis.diagnostics] == ["A09X"]
        assert draft.dropped_codes == []
        assert draft.model_used == "gemini-2.5-flash"
        assert workspace.cases.get_case(case.id).evolutions == []
        assert workspace.drafts.pending == [draft]

    def test_prompt_sent_with_schema_and_temperature(self, workspace, case, client):
        asyncio.run(_engine(workspace).analyze_note(case.id, "nota"))
        kwargs = client.call_with_tool.await_args.kwargs
        assert kwargs["tool_schema"]["required"][0] == "corrected_text"
        assert kwargs["temperature"] == pytest.approx(0.2)
        assert "A09X: Diarrea y gastroenteritis" in kwargs["user_prompt"]
        assert "Medicina General" in kwargs["system_prompt"]

    def test_hallucinated_code_stripped(self, workspace, case, client):
        client.call_with_tool.return_value = _response(_payload(("A09X", "Z99Z"), ("890201", "000000")))
        draft = asyncio.run(_engine(workspace).analyze_note(case.id, "nota"))
        assert [d.code for d in draft.analysis.diagnostics] == ["A09X"]
        assert [p.cups_code for p in draft.analysis.procedures] == ["890201"]
        assert {(d.code, d.kind) for d in draft.dropped_codes} == {("Z99Z", "cie10"), ("000000", "cups")}
        assert any("Z99Z" in a for a in draft.analysis.alerts)

    def test_validates_against_prompt_snapshot(self, workspace, case, client):
        async def deactivate_during_call(**kwargs):
            # Vocabulary changes while the provider is working
            workspace.vocabulary.toggle_active(CodeKind.DIAGNOSTIC, "A09X")
            return _response(_payload(("A09X",)))

        client.call_with_tool.side_effect = deactivate_during_call
        draft = asyncio.run(_engine(workspace).analyze_note(case.id, "nota"))
        assert [d.code for d in draft.analysis.diagnostics] == ["A09X"]
        assert draft.dropped_codes == []

    def test_inactive_code_rejected(self, workspace, case, client):
        workspace.vocabulary.toggle_active(CodeKind.DIAGNOSTIC, "A09X")
        draft = asyncio.run(_engine(workspace).analyze_note(case.id, "nota"))
        assert draft.analysis.diagnostics == []
        assert draft.dropped_codes[0].code == "A09X"

    def test_schema_rejection_commits_nothing(self, workspace, case, client):
        bad = _payload()
        del bad["plan"]
        client.call_with_tool.return_value = _response(bad)
        with pytest.raises(AnalysisRejectedError) as exc_info:
            asyncio.run(_engine(workspace).analyze_note(case.id, "nota"))
        assert exc_info.value.retryable is True
        assert workspace.drafts.pending == []
        assert workspace.cases.get_case(case.id).evolutions == []

    def test_provider_failure_commits_nothing(self, workspace, case, client):
        client.call_with_tool.side_effect = GenerationError("timeout")
        engine = _engine(workspace)
        with pytest.raises(LLMRetryError):
            asyncio.run(engine.analyze_note(case.id, "nota"))
        assert client.call_with_tool.await_count == 2
        assert workspace.drafts.pending == []
        assert workspace.cases.get_case(case.id).evolutions == []

    def test_empty_note(self, workspace, case, client):
        with pytest.raises(ValidationError):
            asyncio.run(_engine(workspace).analyze_note(case.id, "   "))
        client.call_with_tool.assert_not_awaited()

    def test_unknown_case(self, workspace):
        with pytest.raises(NotFoundError):
            asyncio.run(_engine(workspace).analyze_note("missing", "nota"))

    def test_closed_case(self, workspace, case):
        workspace.cases.close_case(case.id)
        with pytest.raises(ValidationError):
            asyncio.run(_engine(workspace).analyze_note(case.id, "nota"))

    def test_prior_evolutions_in_prompt(self, workspace, case, client):
        engine = _engine(workspace)
        first = asyncio.run(engine.analyze_note(case.id, "primera consulta"))
        workspace.drafts.commit(first.id)
        asyncio.run(engine.analyze_note(case.id, "control"))
        prompt = client.call_with_tool.await_args.kwargs["user_prompt"]
        assert "[2024-05-01] primera consulta" in prompt
        assert "Primera atención." not in prompt


class TestCommit:
    def test_commit_appends_signed_evolution(self, workspace, case):
        save_profile(UserProfile(name="Dra. Ruiz", specialty="Pediatría"), workspace.db)
        engine = _engine(workspace)
        draft = asyncio.run(engine.analyze_note(case.id, "nota"))
        committed = workspace.drafts.commit(draft.id)
        evolution = committed.evolutions[-1]
        assert evolution.id == draft.id
        assert evolution.date == CLOCK
        assert evolution.professional_name == "Dra. Ruiz"
        assert evolution.professional_specialty == "Pediatría"
        assert evolution.analysis == draft.analysis
        assert workspace.drafts.pending == []

    def test_draft_committed_once(self, workspace, case):
        engine = _engine(workspace)
        draft = asyncio.run(engine.analyze_note(case.id, "nota"))
        workspace.drafts.commit(draft.id)
        with pytest.raises(NotFoundError):
            workspace.drafts.commit(draft.id)
        assert len(workspace.cases.get_case(case.id).evolutions) == 1

    def test_committed_codes_are_in_vocabulary(self, workspace, case, client):
        client.call_with_tool.return_value = _response(_payload(("A09X", "B99X", "C00X"), ("890201", "1")))
        engine = _engine(workspace)
        workspace.drafts.commit(asyncio.run(engine.analyze_note(case.id, "nota")).id)
        stored = workspace.cases.get_case(case.id).evolutions[0].analysis
        snap = workspace.vocabulary.snapshot()
        assert {d.code for d in stored.diagnostics} <= snap.diagnostic_codes
        assert {p.cups_code for p in stored.procedures} <= snap.procedure_codes

    def test_discard(self, workspace, case):
        engine = _engine(workspace)
        draft = asyncio.run(engine.analyze_note(case.id, "nota"))
        workspace.drafts.discard(draft.id)
        with pytest.raises(NotFoundError):
            workspace.drafts.commit(draft.id)
        with pytest.raises(NotFoundError):
            workspace.drafts.discard(draft.id)
        assert workspace.cases.get_case(case.id).evolutions == []

    def test_commit_to_closed_case_keeps_draft(self, workspace, case):
        engine = _engine(workspace)
        draft = asyncio.run(engine.analyze_note(case.id, "nota"))
        workspace.cases.close_case(case.id)
        with pytest.raises(ValidationError):
            workspace.drafts.commit(draft.id)
        assert workspace.drafts.get(draft.id) == draft
        assert workspace.cases.get_case(case.id).status == CaseStatus.CLOSED


class TestConsult:
    def test_consult_records_entry(self, workspace, client):
        entry = asyncio.run(_engine(workspace).consult("  ¿código para cefalea? "))
        assert entry.query == "¿código para cefalea?"
        assert entry.response == "R51X: Cefalea"
        assert workspace.consultations.list() == [entry]
        prompt = client.call.await_args.kwargs["user_prompt"]
        assert "A09X: Diarrea y gastroenteritis" in prompt

    def test_empty_response_recorded_as_unprocessed(self, workspace, client):
        client.call.return_value = _response(text="  ")
        entry = asyncio.run(_engine(workspace).consult("¿algo?"))
        assert entry.response == "No pude procesar tu solicitud."

    def test_empty_query(self, workspace, client):
        with pytest.raises(ValidationError):
            asyncio.run(_engine(workspace).consult(""))
        client.call.assert_not_awaited()

    def test_failure_records_nothing(self, workspace, client):
        client.call.side_effect = GenerationError("boom")
        with pytest.raises(LLMRetryError):
            asyncio.run(_engine(workspace).consult("¿algo?"))
        assert workspace.consultations.list() == []


class TestWorkspace:
    def test_init_seeds_empty_vocabulary(self, db, client):
        ws = ClinicalWorkspace(db, client_factory=lambda _db: client, seed_vocabulary=True)
        ws.init()
        codes = {c.code for c in ws.vocabulary.list_codes(CodeKind.DIAGNOSTIC)}
        assert "A09X" in codes
        assert ws.vocabulary.list_codes(CodeKind.PROCEDURE)

    def test_init_does_not_reseed(self, db, client):
        ws = ClinicalWorkspace(db, client_factory=lambda _db: client, seed_vocabulary=True)
        ws.init()
        ws.vocabulary.toggle_active(CodeKind.DIAGNOSTIC, "A09X")
        ws.init()
        entry = next(c for c in ws.vocabulary.list_codes(CodeKind.DIAGNOSTIC) if c.code == "A09X")
        assert entry.active is False

    def test_missing_credential_is_fatal_for_engine_only(self, db):
        ws = ClinicalWorkspace(db, seed_vocabulary=False)
        ws.init()
        with pytest.raises(ConfigurationError) as exc_info:
            ws.engine()
        assert exc_info.value.retryable is False
        # Non-generation operations keep working
        _, case = ws.cases.create_patient(PatientCreateRequest(name="Ana", age=34))
        assert ws.cases.get_case(case.id).status == CaseStatus.ACTIVE

    def test_engine_built_once(self, db, client):
        factory = MagicMock(return_value=client)
        ws = ClinicalWorkspace(db, client_factory=factory, seed_vocabulary=False)
        assert ws.engine() is ws.engine()
        factory.assert_called_once_with(db)

    def test_reset_keeps_drafts(self, workspace, case):
        draft = asyncio.run(_engine(workspace).analyze_note(case.id, "nota"))
        workspace.reset_engine()
        assert workspace.drafts.get(draft.id) == draft

    def test_drafts_commit_after_credential_removed(self, workspace, case):
        committed = asyncio.run(_engine(workspace).analyze_note(case.id, "uno"))
        discarded = asyncio.run(_engine(workspace).analyze_note(case.id, "dos"))
        workspace._client_factory = MagicMock(side_effect=ConfigurationError("No API key configured"))
        workspace.reset_engine()
        with pytest.raises(ConfigurationError):
            workspace.engine()

        updated = workspace.drafts.commit(committed.id)
        workspace.drafts.discard(discarded.id)
        assert [e.id for e in updated.evolutions] == [committed.id]
        assert workspace.drafts.pending == []

    def test_flush_drops_drafts_only(self, workspace, case, db):
        engine = _engine(workspace)
        committed = asyncio.run(engine.analyze_note(case.id, "uno"))
        workspace.drafts.commit(committed.id)
        asyncio.run(engine.analyze_note(case.id, "dos"))
        workspace.flush()
        assert workspace.drafts.pending == []
        assert len(workspace.cases.get_case(case.id).evolutions) == 1
        assert db.get(CASES_KEY)[0]["evolutions"][0]["id"] == committed.id

"""
Clinical analysis pipeline.

analyze_note: snapshot active vocabulary -> assemble prompt -> provider
call (with retry) -> validate against the same snapshot -> in-memory draft.
Drafts are committed through the DraftBook; nothing reaches case history
without passing validation.
"""

from __future__ import annotations

import logging
import os
from typing import Callable

from api.analysis_models import AnalysisDraft, DroppedCodeInfo
from api.case_models import CaseStatus
from api.consult_models import ConsultationEntry
from api.settings_models import UserProfile
from clinical.drafts import DraftBook
from errors import AnalysisRejectedError, NotFoundError, ValidationError
from llm.client import LLMClient
from llm.prompt_engine import PromptEngine
from llm.response_parser import (
    Accepted,
    PartiallyRejected,
    SchemaRejected,
    parse_and_validate_response,
)
from llm.retry import with_retry
from storage.cases import CaseRepository, new_id
from storage.consultations import ConsultationLog
from storage.database import _now
from storage.vocabulary import VocabularyStore

logger = logging.getLogger(__name__)

_TEMPERATURE = float(os.getenv("MEDICINIA_LLM_TEMPERATURE", "0.2"))
_MAX_ATTEMPTS = int(os.getenv("MEDICINIA_LLM_MAX_ATTEMPTS", "2"))

_UNPROCESSED_REPLY = "No pude procesar tu solicitud."


class ClinicalEngine:
    """Runs analyses and consultations against one provider client.

    ``drafts`` is owned by the caller so that rebuilding the client after a
    settings change keeps pending drafts.
    """

    def __init__(
        self,
        client: LLMClient,
        vocabulary: VocabularyStore,
        cases: CaseRepository,
        consultations: ConsultationLog,
        profile_provider: Callable[[], UserProfile],
        prompt_engine: PromptEngine | None = None,
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], str] = _now,
        drafts: DraftBook | None = None,
        temperature: float = _TEMPERATURE,
        max_attempts: int = _MAX_ATTEMPTS,
    ) -> None:
        self.client = client
        self.vocabulary = vocabulary
        self.cases = cases
        self.consultations = consultations
        self._profile = profile_provider
        self.prompt_engine = prompt_engine or PromptEngine()
        self._new_id = id_factory
        self._clock = clock
        self.drafts = drafts or DraftBook(cases, profile_provider, clock=clock)
        self.temperature = temperature
        self.max_attempts = max_attempts

    async def analyze_note(self, case_id: str, note: str) -> AnalysisDraft:
        """Generate and validate an analysis of ``note`` for a case.

        Raises AnalysisRejectedError when the payload does not match the
        analysis schema and LLMRetryError when the provider keeps failing.
        In both cases no draft is stored and the case is untouched.
        """
        note = (note or "").strip()
        if not note:
            raise ValidationError("The clinical note is empty.")

        case = self.cases.get_case(case_id)
        if case is None:
            raise NotFoundError(f"Case {case_id} not found.")
        if case.status == CaseStatus.CLOSED:
            raise ValidationError(f"Case {case_id} is closed.")
        patient = self.cases.get_patient(case.patient_id)
        if patient is None:
            raise NotFoundError(f"Patient {case.patient_id} not found.")

        profile = self._profile()
        snapshot = self.vocabulary.snapshot()
        assembled = self.prompt_engine.build_analysis_prompt(
            note, patient, case.evolutions, snapshot, profile,
        )
        logger.info(
            "Analyzing note for case %s (%d prior evolutions, %d CIE-10 / %d CUPS authorized)",
            case_id, len(case.evolutions), len(snapshot.diagnostics), len(snapshot.procedures),
        )

        llm_response = await with_retry(
            self.client.call_with_tool,
            system_prompt=assembled.system_instruction,
            user_prompt=assembled.prompt,
            tool_name=assembled.tool_name,
            tool_schema=assembled.output_schema,
            temperature=self.temperature,
            max_attempts=self.max_attempts,
        )

        verdict = parse_and_validate_response(
            llm_response.tool_call_result, assembled.snapshot,
        )
        if isinstance(verdict, SchemaRejected):
            raise AnalysisRejectedError(verdict.reason)
        if isinstance(verdict, PartiallyRejected):
            dropped = [
                DroppedCodeInfo(code=d.code, kind=d.kind.value, reason=d.reason)
                for d in verdict.dropped_codes
            ]
        elif isinstance(verdict, Accepted):
            dropped = []
        else:
            raise TypeError(f"Unexpected verdict {verdict!r}")

        draft = AnalysisDraft(
            id=self._new_id(),
            case_id=case_id,
            original_text=note,
            analysis=verdict.result,
            dropped_codes=dropped,
            model_used=llm_response.model,
            created_at=self._clock(),
        )
        self.drafts.add(draft)
        logger.info(
            "Draft %s ready: %d diagnoses, %d procedures, %d codes removed",
            draft.id,
            len(draft.analysis.diagnostics),
            len(draft.analysis.procedures),
            len(dropped),
        )
        return draft

    async def consult(self, query: str) -> ConsultationEntry:
        """Answer a free-form question restricted to the active vocabulary."""
        query = (query or "").strip()
        if not query:
            raise ValidationError("The consultation query is empty.")

        snapshot = self.vocabulary.snapshot()
        assembled = self.prompt_engine.build_consult_prompt(query, snapshot, self._profile())
        llm_response = await with_retry(
            self.client.call,
            system_prompt=assembled.system_instruction,
            user_prompt=assembled.prompt,
            temperature=self.temperature,
            max_attempts=self.max_attempts,
        )
        answer = llm_response.text_content.strip() or _UNPROCESSED_REPLY
        entries = self.consultations.record(query, answer)
        return entries[0]

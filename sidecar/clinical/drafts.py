"""Uncommitted analysis drafts and their commit into case history."""

from __future__ import annotations

import logging
from typing import Callable

from api.analysis_models import AnalysisDraft
from api.case_models import Case, ClinicalEvolution
from api.settings_models import UserProfile
from errors import NotFoundError
from storage.cases import CaseRepository
from storage.database import _now

logger = logging.getLogger(__name__)


class DraftBook:
    """In-memory drafts keyed by id.

    Committing and discarding never touch the provider, so they keep working
    when no credential is configured.
    """

    def __init__(
        self,
        cases: CaseRepository,
        profile_provider: Callable[[], UserProfile],
        clock: Callable[[], str] = _now,
    ) -> None:
        self.cases = cases
        self._profile = profile_provider
        self._clock = clock
        self._drafts: dict[str, AnalysisDraft] = {}

    @property
    def pending(self) -> list[AnalysisDraft]:
        return list(self._drafts.values())

    def add(self, draft: AnalysisDraft) -> None:
        self._drafts[draft.id] = draft

    def get(self, draft_id: str) -> AnalysisDraft:
        draft = self._drafts.get(draft_id)
        if draft is None:
            raise NotFoundError(f"Draft {draft_id} not found.")
        return draft

    def commit(self, draft_id: str) -> Case:
        """Append the draft to its case as a new evolution.

        The evolution is dated at commit time and signed with the current
        profile. A draft can be committed only once; it stays pending when
        the case rejects it.
        """
        draft = self.get(draft_id)
        profile = self._profile()
        evolution = ClinicalEvolution(
            id=draft.id,
            date=self._clock(),
            professional_name=profile.name,
            professional_specialty=profile.specialty,
            original_text=draft.original_text,
            analysis=draft.analysis,
        )
        case = self.cases.commit_evolution(draft.case_id, evolution)
        self._drafts.pop(draft_id, None)
        return case

    def discard(self, draft_id: str) -> None:
        if self._drafts.pop(draft_id, None) is None:
            raise NotFoundError(f"Draft {draft_id} not found.")
        logger.info("Discarded draft %s", draft_id)

    def clear(self) -> int:
        count = len(self._drafts)
        self._drafts.clear()
        return count

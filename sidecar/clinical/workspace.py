"""
Service object holding every collaborator of the clinical sidecar.

Lifecycle: ``init()`` once at startup, serve requests, ``flush()`` at
shutdown. Routes receive the workspace instead of reaching for module
globals.
"""

from __future__ import annotations

import logging
import os
from typing import Callable

from api.settings_models import UserProfile
from api.settings_store import (
    get_api_key_for_provider,
    get_model_for_provider,
    get_profile,
    get_settings,
)
from clinical.drafts import DraftBook
from clinical.engine import ClinicalEngine
from llm.client import LLMClient, LLMProvider
from storage.cases import CaseRepository, new_id
from storage.consultations import ConsultationLog
from storage.database import Database, _now, get_db
from storage.seed_data import SEED_CIE10, SEED_CUPS
from storage.vocabulary import VocabularyStore

logger = logging.getLogger(__name__)

_SEED_VOCABULARY = os.getenv("MEDICINIA_SEED_VOCABULARY", "true").lower() != "false"


def build_llm_client(db: Database) -> LLMClient:
    """Client for the configured provider; ConfigurationError without a key."""
    settings = get_settings(db)
    provider = settings.llm_provider.value
    return LLMClient(
        provider=LLMProvider(provider),
        api_key=get_api_key_for_provider(provider),
        model=get_model_for_provider(settings),
    )


class ClinicalWorkspace:
    def __init__(
        self,
        db: Database | None = None,
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], str] = _now,
        client_factory: Callable[[Database], LLMClient] = build_llm_client,
        seed_vocabulary: bool = _SEED_VOCABULARY,
    ) -> None:
        self.db = db or get_db()
        self.vocabulary = VocabularyStore(self.db)
        self.cases = CaseRepository(self.db, id_factory=id_factory, clock=clock)
        self.consultations = ConsultationLog(self.db, id_factory=id_factory, clock=clock)
        self._id_factory = id_factory
        self._clock = clock
        self._client_factory = client_factory
        self._seed_vocabulary = seed_vocabulary
        self.drafts = DraftBook(self.cases, lambda: self.profile, clock=clock)
        self._engine: ClinicalEngine | None = None

    @property
    def profile(self) -> UserProfile:
        return get_profile(self.db)

    def init(self) -> None:
        if self._seed_vocabulary and self.vocabulary.seed(SEED_CIE10, SEED_CUPS):
            logger.info("Stored starter vocabulary")
        vocabulary = self.vocabulary.get_vocabulary()
        logger.info(
            "Workspace ready: %d CIE-10, %d CUPS, %d patients",
            len(vocabulary.cie10), len(vocabulary.cups), len(self.cases.list_patients()),
        )

    def engine(self) -> ClinicalEngine:
        """Return the engine, building the provider client on first use.

        Raises ConfigurationError when no credential is configured; the
        failed build is not cached so a later call can succeed.
        """
        if self._engine is None:
            self._engine = ClinicalEngine(
                client=self._client_factory(self.db),
                vocabulary=self.vocabulary,
                cases=self.cases,
                consultations=self.consultations,
                profile_provider=lambda: self.profile,
                id_factory=self._id_factory,
                clock=self._clock,
                drafts=self.drafts,
            )
        return self._engine

    def reset_engine(self) -> None:
        """Forget the current client, e.g. after provider settings change."""
        self._engine = None

    def flush(self) -> None:
        dropped = self.drafts.clear()
        self._engine = None
        logger.info("Workspace flushed (%d uncommitted drafts dropped)", dropped)

"""Newest-first log of free-form questions asked against the vocabulary."""

from __future__ import annotations

import logging
from typing import Callable

from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from api.consult_models import ConsultationEntry
from storage.cases import new_id
from storage.database import Database, _now

logger = logging.getLogger(__name__)

CONSULT_HISTORY_KEY = "medicinia_consult_history"

_ENTRY_LIST = TypeAdapter(list[ConsultationEntry])


class ConsultationLog:
    def __init__(
        self,
        db: Database,
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], str] = _now,
    ) -> None:
        self._db = db
        self._new_id = id_factory
        self._clock = clock

    def _load(self) -> tuple[list[ConsultationEntry], int]:
        raw, revision = self._db.get_versioned(CONSULT_HISTORY_KEY)
        if raw is None:
            return [], revision
        try:
            return _ENTRY_LIST.validate_python(raw), revision
        except SchemaError:
            logger.warning("Stored consultation log is malformed; treating as empty")
            return [], revision

    def list(self) -> list[ConsultationEntry]:
        """Entries in storage order, which is newest first."""
        entries, _ = self._load()
        return entries

    def record(self, query: str, response: str) -> list[ConsultationEntry]:
        entry = ConsultationEntry(
            id=self._new_id(),
            timestamp=self._clock(),
            query=query,
            response=response,
        )
        entries, revision = self._load()
        updated = [entry, *entries]
        self._db.set(
            CONSULT_HISTORY_KEY,
            _ENTRY_LIST.dump_python(updated, mode="json"),
            expected_revision=revision,
        )
        return updated

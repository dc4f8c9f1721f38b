"""Tests for the consultation log."""

import itertools

from storage.consultations import CONSULT_HISTORY_KEY, ConsultationLog


def _log(db):
    counter = itertools.count(1)
    return ConsultationLog(
        db,
        id_factory=lambda: f"q-{next(counter)}",
        clock=lambda: "2024-05-01T10:00:00Z",
    )


class TestConsultationLog:
    def test_empty(self, db):
        assert _log(db).list() == []

    def test_record_prepends(self, db):
        log = _log(db)
        log.record("¿Código para cefalea?", "R51X: Cefalea")
        updated = log.record("¿Código para fiebre?", "R509: Fiebre, no especificada")
        assert [e.id for e in updated] == ["q-2", "q-1"]
        assert [e.query for e in log.list()] == ["¿Código para fiebre?", "¿Código para cefalea?"]

    def test_entries_never_rewritten(self, db):
        log = _log(db)
        first = log.record("a", "b")[0]
        log.record("c", "d")
        assert log.list()[-1] == first

    def test_storage_order_is_display_order(self, db):
        log = _log(db)
        log.record("a", "1")
        log.record("b", "2")
        raw = db.get(CONSULT_HISTORY_KEY)
        assert [r["query"] for r in raw] == ["b", "a"]

    def test_malformed_log_reads_empty(self, db):
        db.set(CONSULT_HISTORY_KEY, {"not": "a list"})
        log = _log(db)
        assert log.list() == []
        log.record("q", "r")
        assert len(log.list()) == 1

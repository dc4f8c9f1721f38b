"""Controlled code vocabularies: CIE-10 diagnoses and CUPS/SOAT procedures.

Entries are never deleted, only deactivated. Only active entries are
handed to prompt assembly, through an immutable VocabularySnapshot that
the response validator later checks against.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from pydantic import ValidationError as SchemaError

from api.vocabulary_models import (
    Cie10Code,
    CodeKind,
    CupsCode,
    ImportSummary,
    MedicalVocabulary,
    ProcedureCategory,
    VocabularyCode,
)
from errors import DuplicateCodeError, NotFoundError, ValidationError
from storage.database import Database

logger = logging.getLogger(__name__)

VOCABULARY_KEY = "medicinia_db"

# (code, description, cross-reference code)
ImportRow = tuple[str, str, Optional[str]]


@dataclass(frozen=True)
class VocabularySnapshot:
    """Active codes captured at prompt-assembly time."""

    diagnostics: tuple[Cie10Code, ...] = ()
    procedures: tuple[CupsCode, ...] = ()

    @property
    def diagnostic_codes(self) -> frozenset[str]:
        return frozenset(c.code for c in self.diagnostics)

    @property
    def procedure_codes(self) -> frozenset[str]:
        return frozenset(c.code for c in self.procedures)


def normalize_code(kind: CodeKind, code: str | None) -> str:
    code = (code or "").strip()
    if kind == CodeKind.DIAGNOSTIC:
        return code.upper()
    return code


def parse_import_rows(text: str, kind: CodeKind) -> list[ImportRow]:
    """Split bulk-import text into rows.

    Tab-separated rows are preferred; a row without tabs is read as
    comma-separated (quotes allowed). Blank lines are dropped. Rows are
    returned even when incomplete so the importer can count them.
    """
    rows: list[ImportRow] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        tabbed = "\t" in line
        if tabbed:
            cells = line.split("\t")
        else:
            cells = next(csv.reader([line], skipinitialspace=True), [])
        cells = [c.strip() for c in cells]
        if not cells:
            continue

        code = cells[0]
        if kind == CodeKind.DIAGNOSTIC:
            # Unquoted commas in a comma row belong to the description
            if tabbed:
                description = cells[1] if len(cells) > 1 else ""
            else:
                description = ", ".join(c for c in cells[1:] if c)
            cross_ref = None
        else:
            description = cells[1] if len(cells) > 1 else ""
            cross_ref = cells[2] if len(cells) > 2 and cells[2] else None
        rows.append((code, description, cross_ref))
    return rows


class VocabularyStore:
    """Owns both vocabularies, persisted whole under one key."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def _load(self) -> tuple[MedicalVocabulary, int]:
        raw, revision = self._db.get_versioned(VOCABULARY_KEY)
        if raw is None:
            return MedicalVocabulary(), revision
        try:
            return MedicalVocabulary.model_validate(raw), revision
        except SchemaError:
            logger.warning("Stored vocabulary is malformed; treating as empty")
            return MedicalVocabulary(), revision

    def _save(self, vocabulary: MedicalVocabulary, revision: int) -> None:
        self._db.set(
            VOCABULARY_KEY,
            vocabulary.model_dump(mode="json"),
            expected_revision=revision,
        )

    @staticmethod
    def _entries(vocabulary: MedicalVocabulary, kind: CodeKind) -> list:
        return vocabulary.cie10 if kind == CodeKind.DIAGNOSTIC else vocabulary.cups

    # --- Reads ---

    def get_vocabulary(self) -> MedicalVocabulary:
        vocabulary, _ = self._load()
        return vocabulary

    def list_codes(self, kind: CodeKind) -> list[VocabularyCode]:
        return list(self._entries(self.get_vocabulary(), kind))

    def list_active(self, kind: CodeKind) -> list[VocabularyCode]:
        return [c for c in self.list_codes(kind) if c.active]

    def snapshot(self) -> VocabularySnapshot:
        vocabulary = self.get_vocabulary()
        return VocabularySnapshot(
            diagnostics=tuple(c for c in vocabulary.cie10 if c.active),
            procedures=tuple(c for c in vocabulary.cups if c.active),
        )

    def is_initialized(self) -> bool:
        return self._db.has_key(VOCABULARY_KEY)

    # --- Mutations ---

    def add(
        self,
        kind: CodeKind,
        code: str,
        description: str,
        category: ProcedureCategory | None = None,
        soat_code: str | None = None,
    ) -> VocabularyCode:
        code = normalize_code(kind, code)
        description = (description or "").strip()
        if not code or not description:
            raise ValidationError("Both code and description are required.")

        vocabulary, revision = self._load()
        entries = self._entries(vocabulary, kind)
        if any(e.code == code for e in entries):
            raise DuplicateCodeError(kind.value, code)

        entry = self._build_entry(kind, code, description, category, soat_code)
        entries.append(entry)
        self._save(vocabulary, revision)
        logger.info("Added %s code %s", kind.value, code)
        return entry

    def toggle_active(self, kind: CodeKind, code: str) -> VocabularyCode:
        code = normalize_code(kind, code)
        vocabulary, revision = self._load()
        for entry in self._entries(vocabulary, kind):
            if entry.code == code:
                entry.active = not entry.active
                self._save(vocabulary, revision)
                logger.info(
                    "%s code %s is now %s",
                    kind.value, code, "active" if entry.active else "inactive",
                )
                return entry
        raise NotFoundError(f"Code '{code}' not found in the {kind.value} vocabulary.")

    def bulk_import(self, kind: CodeKind, rows: Iterable[ImportRow]) -> ImportSummary:
        """Insert new codes; existing codes and repeats within the batch are skipped."""
        vocabulary, revision = self._load()
        entries = self._entries(vocabulary, kind)
        seen = {e.code for e in entries}
        summary = ImportSummary()

        for code, description, cross_ref in rows:
            code = normalize_code(kind, code)
            description = (description or "").strip()
            if not code or not description or code in seen:
                summary.skipped += 1
                continue
            seen.add(code)
            entries.append(self._build_entry(kind, code, description, None, cross_ref))
            summary.imported += 1

        if summary.imported:
            self._save(vocabulary, revision)
        logger.info(
            "Imported %d %s codes (%d skipped)",
            summary.imported, kind.value, summary.skipped,
        )
        return summary

    def import_text(self, kind: CodeKind, text: str) -> ImportSummary:
        return self.bulk_import(kind, parse_import_rows(text, kind))

    def seed(
        self,
        cie10: Iterable[tuple[str, str]],
        cups: Iterable[tuple[str, str, str, str | None]],
    ) -> bool:
        """Write a starter vocabulary if the vocabulary was never stored."""
        if self.is_initialized():
            return False
        vocabulary = MedicalVocabulary(
            cie10=[Cie10Code(code=c, description=d) for c, d in cie10],
            cups=[
                CupsCode(
                    code=c,
                    description=d,
                    category=ProcedureCategory(cat),
                    soat_code=soat,
                )
                for c, d, cat, soat in cups
            ],
        )
        self._save(vocabulary, 0)
        logger.info(
            "Seeded vocabulary with %d CIE-10 and %d CUPS codes",
            len(vocabulary.cie10), len(vocabulary.cups),
        )
        return True

    @staticmethod
    def _build_entry(
        kind: CodeKind,
        code: str,
        description: str,
        category: ProcedureCategory | None,
        soat_code: str | None,
    ) -> VocabularyCode:
        if kind == CodeKind.DIAGNOSTIC:
            return Cie10Code(code=code, description=description)
        soat_code = (soat_code or "").strip() or None
        return CupsCode(
            code=code,
            description=description,
            category=category or ProcedureCategory.DIAGNOSTIC,
            soat_code=soat_code,
        )

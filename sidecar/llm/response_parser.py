"""
Parse and validate the structured analysis returned by the provider.

Post-response validation:
1. Schema validation (Pydantic) -> SchemaRejected on any mismatch
2. Vocabulary containment: every diagnostic / procedure code must be in
   the active snapshot the prompt was built from
3. Remove hallucinated codes and append an alert naming each one
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import ValidationError as SchemaError

from api.analysis_models import AnalysisResult
from api.vocabulary_models import CodeKind
from storage.vocabulary import VocabularySnapshot

logger = logging.getLogger(__name__)

NOT_IN_VOCABULARY = "not_in_active_vocabulary"

_KIND_LABELS = {
    CodeKind.DIAGNOSTIC: "CIE-10",
    CodeKind.PROCEDURE: "CUPS",
}


@dataclass(frozen=True)
class DroppedCode:
    code: str
    kind: CodeKind
    reason: str = NOT_IN_VOCABULARY

    @property
    def alert(self) -> str:
        return (
            f"El código {_KIND_LABELS[self.kind]} {self.code} no está en el "
            f"vocabulario autorizado y fue removido."
        )


@dataclass(frozen=True)
class Accepted:
    result: AnalysisResult


@dataclass(frozen=True)
class PartiallyRejected:
    result: AnalysisResult
    dropped_codes: tuple[DroppedCode, ...]


@dataclass(frozen=True)
class SchemaRejected:
    reason: str


AnalysisVerdict = Union[Accepted, PartiallyRejected, SchemaRejected]


def _describe_schema_errors(exc: SchemaError, limit: int = 5) -> str:
    parts = []
    for err in exc.errors()[:limit]:
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    if len(exc.errors()) > limit:
        parts.append(f"... {len(exc.errors()) - limit} more")
    return "; ".join(parts)


def parse_and_validate_response(
    tool_result: Optional[Any],
    snapshot: VocabularySnapshot,
) -> AnalysisVerdict:
    """
    Turn the provider payload into a verdict.

    ``snapshot`` must be the one used to build the prompt, not a fresh
    read of the vocabulary.
    """
    if tool_result is None:
        return SchemaRejected("provider returned no structured payload")
    if not isinstance(tool_result, dict):
        return SchemaRejected(
            f"payload must be a JSON object, got {type(tool_result).__name__}"
        )

    # 1. Parse into Pydantic model
    try:
        result = AnalysisResult.model_validate(tool_result)
    except SchemaError as e:
        reason = _describe_schema_errors(e)
        logger.warning("Analysis payload rejected: %s", reason)
        return SchemaRejected(reason)

    # 2. Check every code against the snapshot
    allowed_dx = snapshot.diagnostic_codes
    allowed_px = snapshot.procedure_codes
    dropped: list[DroppedCode] = []

    diagnostics = []
    for dx in result.diagnostics:
        if dx.code in allowed_dx:
            diagnostics.append(dx)
        else:
            dropped.append(DroppedCode(code=dx.code, kind=CodeKind.DIAGNOSTIC))

    procedures = []
    for px in result.procedures:
        if px.cups_code in allowed_px:
            procedures.append(px)
        else:
            dropped.append(DroppedCode(code=px.cups_code, kind=CodeKind.PROCEDURE))

    if not dropped:
        return Accepted(result)

    # 3. Strip hallucinated entries, keep the clinician informed
    logger.warning(
        "Removed %d code(s) outside the authorized vocabulary: %s",
        len(dropped), ", ".join(d.code for d in dropped),
    )
    stripped = result.model_copy(
        update={
            "diagnostics": diagnostics,
            "procedures": procedures,
            "alerts": [*result.alerts, *(d.alert for d in dropped)],
        }
    )
    return PartiallyRejected(result=stripped, dropped_codes=tuple(dropped))

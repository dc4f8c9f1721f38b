"""
Prompt construction for clinical-note analysis and vocabulary consultation.

Builds the system instruction (role, specialty) and the user prompt
(patient context, prior-evolution digest, new note, anti-hallucination
rules, authorized code lists).

Only codes from the active VocabularySnapshot are ever rendered. The
same snapshot travels with the AssembledPrompt so the response parser
validates against exactly what the provider was shown.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from api.case_models import ClinicalEvolution, Patient
from api.settings_models import UserProfile
from api.vocabulary_models import Cie10Code, CupsCode
from llm.schemas import ANALYSIS_TOOL_NAME, ANALYSIS_TOOL_SCHEMA
from storage.vocabulary import VocabularySnapshot

_MAX_PRIOR_EVOLUTIONS = int(os.getenv("MEDICINIA_MAX_PRIOR_EVOLUTIONS", "10"))
_MAX_EVOLUTION_CHARS = int(os.getenv("MEDICINIA_MAX_EVOLUTION_CHARS", "1500"))

_FIRST_VISIT = "Primera atención."
_NOT_FOUND_REPLY = "No se encontró información en la base de datos controlada."


@dataclass(frozen=True)
class AssembledPrompt:
    """Everything sent to the provider for one request."""

    prompt: str
    system_instruction: str
    snapshot: VocabularySnapshot
    tool_name: Optional[str] = None
    output_schema: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _truncate(text: str, limit: int) -> str:
    text = text.strip()
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit].rstrip() + "…"


def render_patient_context(patient: Patient) -> str:
    """Demographics and personal history as a short Spanish summary."""
    lines = [
        f"Paciente: {patient.name}, {patient.age} años, Sexo: {patient.gender.value}.",
        f"Antecedentes personales: {patient.personal_history or 'Niega'}.",
    ]
    if patient.family_history:
        lines.append(f"Antecedentes familiares: {patient.family_history}.")
    lines.append(
        f"Peso: {patient.weight or 'N/A'}. Talla: {patient.height or 'N/A'}."
    )
    if patient.other_info:
        lines.append(f"Otros datos: {patient.other_info}.")
    return "\n".join(lines)


def render_evolution_digest(
    evolutions: Sequence[ClinicalEvolution],
    max_entries: int = _MAX_PRIOR_EVOLUTIONS,
    max_chars: int = _MAX_EVOLUTION_CHARS,
) -> str:
    """Prior evolutions oldest first, each tagged with its date.

    Only the most recent ``max_entries`` are kept and each note is cut to
    ``max_chars`` so the prompt stays bounded as a case grows.
    """
    if not evolutions:
        return ""
    kept = list(evolutions)[-max_entries:] if max_entries > 0 else []
    omitted = len(evolutions) - len(kept)

    parts: list[str] = []
    if omitted:
        parts.append(f"({omitted} evoluciones anteriores omitidas)")
    for evolution in kept:
        parts.append(f"[{evolution.date[:10]}] {_truncate(evolution.original_text, max_chars)}")
    return "\n\n".join(parts)


def render_diagnostic_list(codes: Sequence[Cie10Code]) -> str:
    return "\n".join(f"{c.code}: {c.description}" for c in codes)


def render_procedure_list(codes: Sequence[CupsCode], include_soat: bool = True) -> str:
    if not include_soat:
        return "\n".join(f"{c.code}: {c.description}" for c in codes)
    return "\n".join(
        f"{c.code} (SOAT: {c.soat_code or 'N/A'}): {c.description}" for c in codes
    )


# ---------------------------------------------------------------------------
# Prompt engine
# ---------------------------------------------------------------------------


class PromptEngine:
    """Constructs system instructions and user prompts for the provider."""

    def __init__(
        self,
        max_prior_evolutions: int = _MAX_PRIOR_EVOLUTIONS,
        max_evolution_chars: int = _MAX_EVOLUTION_CHARS,
    ) -> None:
        self.max_prior_evolutions = max_prior_evolutions
        self.max_evolution_chars = max_evolution_chars

    @staticmethod
    def build_system_instruction(profile: UserProfile) -> str:
        return (
            "Eres un asistente clínico estricto. Tu prioridad es la seguridad del "
            "paciente y la trazabilidad documental bajo normativa colombiana. "
            f"Eres especialista en {profile.specialty}."
        )

    def build_analysis_prompt(
        self,
        note: str,
        patient: Patient,
        evolutions: Sequence[ClinicalEvolution],
        snapshot: VocabularySnapshot,
        profile: UserProfile,
    ) -> AssembledPrompt:
        """Assemble the analysis prompt for a new free-text evolution note."""
        patient_context = render_patient_context(patient)
        digest = render_evolution_digest(
            evolutions, self.max_prior_evolutions, self.max_evolution_chars
        )
        cie10_list = render_diagnostic_list(snapshot.diagnostics)
        cups_list = render_procedure_list(snapshot.procedures)

        prompt = (
            f'ROL: Actúa como un Asistente Médico Experto para un profesional con el rol de '
            f'"{profile.role}" y especialidad en "{profile.specialty}".\n\n'
            f"TAREA: Analizar una nueva evolución clínica y estructurar la salida.\n\n"
            f"CONTEXTO DEL PACIENTE:\n{patient_context}\n\n"
            f"HISTORIA PREVIA (RESUMEN):\n{digest or _FIRST_VISIT}\n\n"
            f'NUEVA NOTA CLÍNICA (TEXTO LIBRE):\n"{note.strip()}"\n\n'
            f"REGLAS DE SEGURIDAD (ANTI-ALUCINACIÓN):\n"
            f"1. DIAGNÓSTICOS: Solo sugiere códigos CIE-10 que estén en la LISTA AUTORIZADA "
            f"abajo. Si el paciente tiene algo que no está en la lista, menciónalo en "
            f'"alerts" pero no inventes el código.\n'
            f"2. PROCEDIMIENTOS: Solo sugiere códigos CUPS que estén en la LISTA AUTORIZADA abajo.\n"
            f"3. TONO: Usa terminología médica formal, adaptada a la especialidad de "
            f"{profile.specialty}.\n"
            f"4. NO INVENTAR: Si falta información, indícalo en lugar de suponerla.\n\n"
            f"LISTA CIE-10 AUTORIZADA:\n{cie10_list or '(vacía)'}\n\n"
            f"LISTA CUPS AUTORIZADA:\n{cups_list or '(vacía)'}\n"
        )
        return AssembledPrompt(
            prompt=prompt,
            system_instruction=self.build_system_instruction(profile),
            snapshot=snapshot,
            tool_name=ANALYSIS_TOOL_NAME,
            output_schema=ANALYSIS_TOOL_SCHEMA,
        )

    def build_consult_prompt(
        self,
        query: str,
        snapshot: VocabularySnapshot,
        profile: UserProfile,
    ) -> AssembledPrompt:
        """Assemble a free-form question restricted to the authorized vocabulary."""
        cie10_list = render_diagnostic_list(snapshot.diagnostics)
        cups_list = render_procedure_list(snapshot.procedures, include_soat=False)

        prompt = (
            f'Pregunta del médico ({profile.specialty}): "{query.strip()}"\n\n'
            f"Responde basándote EXCLUSIVAMENTE en las siguientes bases de datos autorizadas:\n\n"
            f"CIE-10:\n{cie10_list or '(vacía)'}\n\n"
            f"CUPS:\n{cups_list or '(vacía)'}\n\n"
            f"Instrucciones:\n"
            f"1. Si la respuesta implica un código, debe estar en la lista.\n"
            f"2. Provee una explicación clínica breve si es relevante.\n"
            f'3. Si no encuentras el concepto en la lista, di: "{_NOT_FOUND_REPLY}"\n'
        )
        return AssembledPrompt(
            prompt=prompt,
            system_instruction=self.build_system_instruction(profile),
            snapshot=snapshot,
        )

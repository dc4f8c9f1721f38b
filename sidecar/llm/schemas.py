"""JSON schema the generation provider must answer with."""

from __future__ import annotations

from typing import Any

ANALYSIS_TOOL_NAME = "clinical_analysis"

ANALYSIS_TOOL_DESCRIPTION = "Generate a structured clinical assessment of an evolution note"

ANALYSIS_TOOL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "corrected_text": {
            "type": "string",
            "description": (
                "The clinical note corrected for grammar, spelling and professional "
                "medical terminology (Spanish), in formal medical-record style."
            ),
        },
        "summary": {
            "type": "string",
            "description": "A concise summary of the patient's current evolution.",
        },
        "diagnostics": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "code": {
                        "type": "string",
                        "description": "The CIE-10 code EXACTLY as listed in the authorized vocabulary.",
                    },
                    "description": {"type": "string", "description": "The official description."},
                    "probability": {"type": "string", "enum": ["High", "Medium", "Low"]},
                    "justification": {
                        "type": "string",
                        "description": "Clinical reasoning for this diagnosis.",
                    },
                },
                "required": ["code", "description", "probability", "justification"],
            },
        },
        "procedures": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "cups_code": {
                        "type": "string",
                        "description": "The CUPS code EXACTLY as listed in the authorized vocabulary.",
                    },
                    "soat_code": {"type": "string", "description": "The SOAT code if available."},
                    "description": {"type": "string"},
                    "justification": {
                        "type": "string",
                        "description": "Medical necessity for this procedure.",
                    },
                },
                "required": ["cups_code", "description", "justification"],
            },
        },
        "plan": {
            "type": "string",
            "description": (
                "Detailed clinical management plan, including medications, "
                "exams or referrals."
            ),
        },
        "alerts": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Clinical red flags or administrative warnings.",
        },
    },
    "required": ["corrected_text", "summary", "diagnostics", "procedures", "plan", "alerts"],
}

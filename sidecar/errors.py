"""Exception hierarchy shared by storage, llm and the HTTP layer.

``retryable`` tells the caller whether re-issuing the same request
unchanged can succeed.
"""

from __future__ import annotations


class MediciniaError(Exception):
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MediciniaError, ValueError):
    """Input rejected before any mutation."""


class DuplicateCodeError(ValidationError):
    def __init__(self, kind: str, code: str) -> None:
        super().__init__(f"Code '{code}' already exists in the {kind} vocabulary.")
        self.kind = kind
        self.code = code


class NotFoundError(MediciniaError, LookupError):
    pass


class StaleWriteError(MediciniaError):
    """A whole-collection write lost an optimistic revision check."""

    retryable = True

    def __init__(self, key: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Stale write to '{key}': expected revision {expected}, found {actual}."
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class ConfigurationError(MediciniaError, RuntimeError):
    """Fatal setup problem, e.g. no provider credential."""


class GenerationError(MediciniaError):
    """The generation provider failed; nothing was committed."""

    retryable = True


class LLMRetryError(GenerationError):
    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class AnalysisRejectedError(GenerationError):
    """The provider payload did not match the analysis schema."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Analysis failed schema validation: {reason}")
        self.reason = reason

import logging
import os
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.middleware import add_cors_middleware
from api.routes import router
from clinical.workspace import ClinicalWorkspace
from errors import (
    ConfigurationError,
    GenerationError,
    MediciniaError,
    NotFoundError,
    StaleWriteError,
    ValidationError,
)
from server import find_free_port, start_server

_logger = logging.getLogger(__name__)

_LOG_LEVEL = os.getenv("MEDICINIA_LOG_LEVEL", "INFO").upper()
_SENTRY_DSN = os.getenv("SENTRY_DSN", "")

# Identifiers that can appear inside error text (notes, patient fields, payload echoes)
_PHI_PATTERNS = [
    re.compile(r"input_value=.*?(?=, input_type=)"),            # pydantic payload echo
    re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b"),        # dates
    re.compile(r"\b\d{6,12}\b"),                              # document and phone numbers
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # email
    re.compile(r"https?://[^\s<>\"']+"),                     # URLs
    re.compile(r"(?i)(?:paciente|nombre|patient|name)\s*[:=]\s*[^\n,;]{2,40}"),  # labeled names
]


def _scrub_phi(text: str) -> str:
    for pattern in _PHI_PATTERNS:
        text = pattern.sub("[REDACTED]", text)
    return text


def _before_send(event, hint):
    # Request bodies carry clinical notes and patient data
    request = event.get("request")
    if request:
        request.pop("data", None)
        request.pop("cookies", None)
    if "exception" in event:
        for exc_info in event["exception"].get("values", []):
            if exc_info.get("value"):
                exc_info["value"] = _scrub_phi(exc_info["value"])
    for bc in event.get("breadcrumbs", {}).get("values", []):
        if bc.get("message"):
            bc["message"] = _scrub_phi(bc["message"])
    return event


def _init_sentry() -> None:
    if not _SENTRY_DSN:
        return
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    sentry_sdk.init(
        dsn=_SENTRY_DSN,
        environment=os.getenv("SENTRY_ENVIRONMENT", "development"),
        integrations=[FastApiIntegration(), StarletteIntegration()],
        before_send=_before_send,
        send_default_pii=False,
        include_local_variables=False,
    )
    _logger.info("Sentry error reporting enabled")


# Most specific first
_STATUS_BY_ERROR: list[tuple[type[MediciniaError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (StaleWriteError, 409),
    (ConfigurationError, 503),
    (GenerationError, 502),
]


def _status_for(exc: MediciniaError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def create_app(workspace: ClinicalWorkspace | None = None) -> FastAPI:
    _init_sentry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Workspace lifecycle: init -> serve -> flush."""
        app.state.workspace.init()
        yield
        app.state.workspace.flush()

    app = FastAPI(title="Medicinia Sidecar", version="0.1.0", lifespan=lifespan)
    app.state.workspace = workspace or ClinicalWorkspace()
    app.state.analyses_in_flight = set()
    add_cors_middleware(app)

    @app.exception_handler(MediciniaError)
    async def _domain_exception_handler(request: Request, exc: MediciniaError):
        status = _status_for(exc)
        if status >= 500:
            _logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status,
            content={
                "detail": exc.message,
                "error": type(exc).__name__,
                "retryable": exc.retryable,
            },
        )

    # Catch-all exception handler so unhandled errors still return JSON
    # with CORS headers (instead of a bare 500 that the browser blocks).
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        _logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error."},
        )

    app.include_router(router)
    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=_LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = find_free_port()
    app = create_app()
    start_server(app, port)

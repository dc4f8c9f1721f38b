import os

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from fastapi.middleware.cors import CORSMiddleware

_DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "tauri://localhost",
]


class NoCacheMiddleware:
    """Keep the local webview from caching clinical data.

    Plain ASGI so that exceptions reach the app's handlers untouched.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_no_cache(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
                headers["Pragma"] = "no-cache"
            await send(message)

        await self.app(scope, receive, send_no_cache)


def allowed_origins() -> list[str]:
    # Comma-separated; "*" allows any origin
    env = os.getenv("MEDICINIA_ALLOWED_ORIGINS", "")
    if env:
        return [o.strip() for o in env.split(",") if o.strip()]
    return list(_DEFAULT_ORIGINS)


def add_cors_middleware(app):
    app.add_middleware(NoCacheMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

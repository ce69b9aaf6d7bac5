"""FastAPI application serving generated docs with a live-update channel."""

from __future__ import annotations

import asyncio
import html
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse, Response, StreamingResponse
from pydantic import BaseModel

from .. import __version__
from ..hub import NotificationHub, SessionClosed
from ..models import BuildState, BuildStatus
from .livereload import (
    CLIENT_SCRIPT,
    EVENTS_PATH,
    KEEPALIVE,
    SCRIPT_PATH,
    STATUS_PATH,
    format_event,
    inject_script,
)

_NO_CACHE = {"Cache-Control": "no-cache"}


class HealthResponse(BaseModel):
    status: str


class StatusResponse(BaseModel):
    generation: int
    status: str
    summary: str
    output: str
    last_success: int


def create_app(
    output_dir: Path,
    hub: NotificationHub,
    state_provider: Callable[[], BuildState],
    *,
    index: str = "/index.html",
    keepalive_interval: float = 15.0,
) -> FastAPI:
    """Create the application serving ``output_dir``.

    ``state_provider`` returns the current build state; ``hub`` feeds the
    server-sent event stream that connected pages listen to.
    """
    root = Path(output_dir).resolve()
    app = FastAPI(
        title="docserve",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get(STATUS_PATH, response_model=StatusResponse)
    async def status() -> StatusResponse:
        return StatusResponse(**state_provider().to_dict())

    @app.get(SCRIPT_PATH)
    async def livereload_script() -> Response:
        return Response(CLIENT_SCRIPT, media_type="application/javascript", headers=_NO_CACHE)

    @app.get(EVENTS_PATH)
    async def events(request: Request) -> StreamingResponse:
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[BuildState]" = asyncio.Queue()

        def _sink(state: BuildState) -> None:
            if loop.is_closed():
                raise SessionClosed("event loop closed")
            loop.call_soon_threadsafe(queue.put_nowait, state)

        session = hub.subscribe(_sink)

        async def _stream() -> AsyncIterator[str]:
            try:
                while not session.closed:
                    try:
                        state = await asyncio.wait_for(queue.get(), timeout=keepalive_interval)
                    except asyncio.TimeoutError:
                        if await request.is_disconnected():
                            break
                        yield KEEPALIVE
                        continue
                    yield format_event(state)
            finally:
                hub.unsubscribe(session)

        return StreamingResponse(
            _stream(),
            media_type="text/event-stream",
            headers={**_NO_CACHE, "X-Accel-Buffering": "no"},
        )

    @app.get("/")
    async def root_redirect() -> RedirectResponse:
        return RedirectResponse(index, status_code=307)

    @app.get("/{path:path}")
    async def static_file(path: str) -> Response:
        target = _resolve(root, path)
        if target is None:
            return _not_found(path, state_provider())
        if target.is_dir():
            # Relative links inside index pages need the trailing slash.
            return RedirectResponse(f"/{path}/", status_code=307)
        if target.suffix.lower() in {".html", ".htm"}:
            loop = asyncio.get_running_loop()
            page = await loop.run_in_executor(None, _read_page, target)
            generation = state_provider().last_success
            return HTMLResponse(inject_script(page, generation), headers=_NO_CACHE)
        return FileResponse(target, headers=_NO_CACHE)

    return app


def _resolve(root: Path, path: str) -> Optional[Path]:
    candidate = (root / path).resolve()
    if candidate != root and root not in candidate.parents:
        return None
    if candidate.is_dir():
        if path and not path.endswith("/"):
            return candidate
        candidate = candidate / "index.html"
    if not candidate.is_file():
        return None
    return candidate


def _read_page(target: Path) -> str:
    return target.read_text(encoding="utf-8", errors="replace")


def _not_found(path: str, state: BuildState) -> HTMLResponse:
    if state.status is BuildStatus.FAILED and state.last_success == 0:
        hint = f"The documentation has not been built successfully yet: {state.summary}."
    elif state.status is BuildStatus.BUILDING and state.last_success == 0:
        hint = "The documentation is still being built."
    else:
        hint = "The page does not exist in the generated documentation."
    body = (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>Not found</title></head>"
        f"<body><h1>Not found: /{html.escape(path)}</h1><p>{html.escape(hint)}</p></body></html>"
    )
    return HTMLResponse(inject_script(body, state.last_success), status_code=404, headers=_NO_CACHE)


def build_server(app: FastAPI, host: str, port: int, *, verbose: bool = False) -> uvicorn.Server:
    """Return a uvicorn server for ``app``; stop it with ``stop_server``."""
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="debug" if verbose else "warning",
        access_log=verbose,
    )
    return uvicorn.Server(config)


def stop_server(server: uvicorn.Server) -> None:
    """Ask a running server to shut down; safe to call from any thread."""
    server.should_exit = True


__all__ = ["HealthResponse", "StatusResponse", "build_server", "create_app", "stop_server"]

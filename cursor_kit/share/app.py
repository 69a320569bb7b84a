"""
Share HTTP Application

Design Decision: API Framework
==============================

The share listener only has two routes, but it streams a generated
archive and must tell a finished stream from a dropped client.

Decision: FastAPI on uvicorn
- StreamingResponse forwards an async generator chunk by chunk
- stream_response() returning normally means the final body message was
  handed to the server: that is the "stream finished" event
- Leaving the response any other way while still sending is the
  "stream interrupted" event

Routes:
- GET /         -> 200 application/zip (chunked), 409 if busy
- GET /confirm  -> 200 {"status": "confirmed" | "already_confirmed"}
- anything else -> 404 text/plain
"""

import logging
from typing import AsyncIterator, Callable, Iterable

from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import iterate_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import ArchiveBuildError
from .session import SessionState, TransferSession

logger = logging.getLogger(__name__)

ARCHIVE_FILENAME = "cursor-kit-configs.zip"

# Produces a fresh, single-pass archive stream per download attempt
ArchiveFactory = Callable[[], Iterable[bytes]]


class ConfirmResponse(BaseModel):
    """Body of GET /confirm."""
    status: str


class ArchiveResponse(StreamingResponse):
    """Streams one archive and reports how the stream ended to the session."""

    def __init__(self, session: TransferSession, archive_factory: ArchiveFactory):
        self.session = session
        self._source = _stream_archive(session, archive_factory)
        self._completed = False
        super().__init__(
            self._source,
            media_type="application/zip",
            headers={
                "Content-Disposition": f'attachment; filename="{ARCHIVE_FILENAME}"',
            },
        )

    async def stream_response(self, send) -> None:
        await super().stream_response(send)
        self._completed = True

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self._source.aclose()
            if self._completed:
                logger.info(f"Archive stream finished ({self.session.bytes_sent:,} bytes)")
                self.session.stream_finished()
            elif self.session.state is SessionState.SENDING:
                self.session.stream_interrupted()


def create_app(session: TransferSession, archive_factory: ArchiveFactory) -> FastAPI:
    """
    Create the share application.

    Args:
        session: State machine driven by the routes
        archive_factory: Called once per GET / to build the archive stream

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="cursor-kit share",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request, exc: StarletteHTTPException):
        # Unknown paths and wrong methods both look like 404 to clients
        if exc.status_code in (404, 405):
            return PlainTextResponse("Not Found", status_code=404)
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @app.get("/")
    async def download():
        """Stream the config archive."""
        if not session.connection_received():
            logger.warning(f"Rejected download while {session.state.value}")
            return PlainTextResponse(
                "A transfer is already in progress for this share",
                status_code=409,
            )

        logger.info("Connection established, transferring files...")
        return ArchiveResponse(session, archive_factory)

    @app.get("/confirm", response_model=ConfirmResponse)
    async def confirm():
        """Record that the receiver wrote the archive to disk."""
        if session.confirm():
            return ConfirmResponse(status="confirmed")

        if session.confirmation is not None:
            return ConfirmResponse(status="already_confirmed")

        return JSONResponse({"status": session.state.value}, status_code=409)

    return app


async def _stream_archive(session: TransferSession,
                          archive_factory: ArchiveFactory) -> AsyncIterator[bytes]:
    try:
        # Compression runs in the threadpool; each chunk is sent as produced
        async for chunk in iterate_in_threadpool(iter(archive_factory())):
            session.bytes_sent += len(chunk)
            yield chunk
    except ArchiveBuildError as e:
        session.stream_failed(str(e))
        raise
    except Exception as e:
        logger.exception("Unexpected error while building the archive")
        session.stream_failed(f"Failed to build archive: {e}")
        raise

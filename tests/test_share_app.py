"""
Tests for the share HTTP application.

The FastAPI app is driven in-process through httpx.ASGITransport.
"""

import asyncio
import io
import os
import zipfile

import httpx
import pytest

from cursor_kit.archive import ArchiveBuilder, METADATA_FILENAME
from cursor_kit.configs import detect_available_configs
from cursor_kit.errors import ArchiveBuildError
from cursor_kit.share import ARCHIVE_FILENAME, SessionState, TransferSession, create_app


@pytest.fixture
def session():
    session = TransferSession(confirm_timeout=60)
    session.listen_started()
    return session


@pytest.fixture
def app(session, project_dir):
    configs = detect_available_configs(project_dir)
    return create_app(session, lambda: ArchiveBuilder.from_descriptors(configs))


def make_client(app, **kwargs) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app, **kwargs)
    return httpx.AsyncClient(transport=transport, base_url="http://share.test")


class TestDownload:

    @pytest.mark.asyncio
    async def test_serves_zip(self, app, session):
        async with make_client(app) as client:
            response = await client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert ARCHIVE_FILENAME in response.headers["content-disposition"]

        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert zf.infolist()[0].filename == METADATA_FILENAME

        assert session.state is SessionState.AWAITING_CONFIRMATION
        assert session.bytes_sent == len(response.content)
        session.interrupt()

    @pytest.mark.asyncio
    async def test_second_download_is_rejected(self, app, session):
        async with make_client(app) as client:
            await client.get("/")
            response = await client.get("/")

        assert response.status_code == 409
        assert response.headers["content-type"].startswith("text/plain")
        assert session.attempts == 1
        session.interrupt()

    @pytest.mark.asyncio
    async def test_not_listening_yet(self, project_dir):
        session = TransferSession()
        app = create_app(session, lambda: [b""])
        async with make_client(app) as client:
            response = await client.get("/")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_build_error_fails_session(self, session):
        def broken_archive():
            yield b"PK\x03\x04partial"
            raise ArchiveBuildError("Failed to read .cursor/rules: Permission denied")

        app = create_app(session, broken_archive)
        async with make_client(app, raise_app_exceptions=False) as client:
            await client.get("/")

        assert session.state is SessionState.FAILED
        assert "Permission denied" in session.last_error

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_session(self, session):
        def broken_archive():
            yield b"PK\x03\x04partial"
            raise ValueError("bad metadata")

        app = create_app(session, broken_archive)
        async with make_client(app, raise_app_exceptions=False) as client:
            await client.get("/")

        assert session.state is SessionState.FAILED
        assert "bad metadata" in session.last_error

    @pytest.mark.asyncio
    async def test_files_older_than_1980(self, app, session, project_dir):
        os.utime(project_dir / ".cursor" / "mcp.json", (0, 0))
        os.utime(project_dir / ".cursor", (0, 0))

        async with make_client(app) as client:
            response = await client.get("/")

        assert response.status_code == 200
        assert session.state is SessionState.AWAITING_CONFIRMATION
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert zf.testzip() is None
            assert zf.getinfo(".cursor/mcp.json").date_time[0] == 1980
        session.interrupt()


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_client_drop_returns_to_listening(self, app, session):
        body_started = asyncio.Event()
        sent = []

        async def receive():
            await body_started.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            sent.append(message)
            if message["type"] == "http.response.body" and message.get("more_body"):
                body_started.set()
                # Hold the stream open until the disconnect is noticed
                await asyncio.sleep(1)

        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/",
            "raw_path": b"/",
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"share.test")],
            "client": ("127.0.0.1", 50000),
            "server": ("share.test", 80),
        }
        await asyncio.wait_for(app(scope, receive, send), timeout=5)

        assert sent[0]["type"] == "http.response.start"
        assert session.state is SessionState.LISTENING
        assert session.attempts == 1
        assert session.last_error

        # The receiver can try again
        async with make_client(app) as client:
            response = await client.get("/")
        assert response.status_code == 200
        assert session.attempts == 2
        assert session.state is SessionState.AWAITING_CONFIRMATION
        session.interrupt()


class TestConfirm:

    @pytest.mark.asyncio
    async def test_confirm_twice(self, app, session):
        async with make_client(app) as client:
            await client.get("/")
            first = await client.get("/confirm")
            second = await client.get("/confirm")

        assert first.status_code == 200
        assert first.json() == {"status": "confirmed"}
        assert second.status_code == 200
        assert second.json() == {"status": "already_confirmed"}
        assert session.state is SessionState.CONFIRMED

    @pytest.mark.asyncio
    async def test_confirm_after_failure(self, session):
        session.connection_received()
        session.stream_failed("disk error")
        app = create_app(session, lambda: [b""])

        async with make_client(app) as client:
            response = await client.get("/confirm")

        assert response.status_code == 409
        assert response.json() == {"status": "failed"}


class TestUnknownRoutes:

    @pytest.mark.asyncio
    async def test_unknown_path(self, app):
        async with make_client(app) as client:
            response = await client.get("/secrets")
        assert response.status_code == 404
        assert response.text == "Not Found"
        assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_wrong_method_looks_like_404(self, app, session):
        async with make_client(app) as client:
            response = await client.post("/confirm")
        assert response.status_code == 404
        assert response.text == "Not Found"
        assert session.confirmation is None

    @pytest.mark.asyncio
    async def test_docs_disabled(self, app):
        async with make_client(app) as client:
            response = await client.get("/docs")
        assert response.status_code == 404

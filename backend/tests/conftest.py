"""
Study Portal Backend — Test Configuration (conftest.py)
=========================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test gets its own snapshot file, upload directory and SQLite
       primary database (aiosqlite) under tmp_path.

Fixture Hierarchy:
    test_settings   Settings pointed at tmp_path
    portal          StoragePortal built from test_settings, local store initialized
    online_portal   portal after one monitor tick (primary reachable)
    outage          helper that takes the primary down and brings it back
    fake_magic      MIME detection by PDF header instead of libmagic
    test_client     HTTPX AsyncClient bound to an app using `portal`

Primary outages:
    outage.begin() disconnects the client and points it at a database file
    inside a directory that does not exist, so every reconnect fails until
    outage.end() restores the real URL.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport


# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Override settings BEFORE any studyportal imports; studyportal.main builds
# its module-level app from these.
_env_root = tempfile.mkdtemp(prefix="studyportal_test_")
os.environ["PRIMARY_DATABASE_URL"] = f"sqlite+aiosqlite:///{_env_root}/primary.db"
os.environ["FALLBACK_DB_FILE"] = os.path.join(_env_root, "fallback-database.json")
os.environ["UPLOAD_DIR"] = os.path.join(_env_root, "uploads")
os.environ["LOG_LEVEL"] = "WARNING"

from studyportal.config import Settings  # noqa: E402
from studyportal.dependencies import build_storage_portal  # noqa: E402
from studyportal.schemas.document import Document  # noqa: E402
from studyportal.services.file_service import FileService  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Settings & Storage
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        primary_database_url=f"sqlite+aiosqlite:///{tmp_path}/primary.db",
        fallback_db_file=str(tmp_path / "fallback-database.json"),
        upload_dir=str(tmp_path / "uploads"),
        primary_connect_attempts=1,
        primary_connect_timeout=5.0,
        primary_operation_timeout=5.0,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def portal(test_settings):
    """Storage container with an initialized local store; primary not yet connected."""
    storage = build_storage_portal(test_settings)
    await storage.local.initialize()
    yield storage
    await storage.monitor.stop()
    await storage.primary.disconnect()


@pytest_asyncio.fixture
async def online_portal(portal):
    """Portal after the first monitor tick: primary connected and reachable."""
    assert await portal.monitor.tick() is True
    return portal


class PrimaryOutage:
    """Takes the primary database down and brings it back."""

    def __init__(self, portal, tmp_path):
        self.portal = portal
        self.real_url = portal.primary.database_url
        self.broken_url = f"sqlite+aiosqlite:///{tmp_path}/missing/primary.db"

    async def begin(self) -> None:
        await self.portal.primary.disconnect()
        self.portal.primary.database_url = self.broken_url

    def end(self) -> None:
        self.portal.primary.database_url = self.real_url


@pytest.fixture
def outage(portal, tmp_path):
    return PrimaryOutage(portal, tmp_path)


# ══════════════════════════════════════════════════════════════════════════
# Payloads & Documents
# ══════════════════════════════════════════════════════════════════════════

def _detect_by_header(self, content: bytes) -> str:
    return "application/pdf" if content.startswith(b"%PDF-") else "text/plain"


@pytest.fixture
def fake_magic():
    """
    Replaces libmagic detection with a PDF header check.

    Keeps the suite independent of the system libmagic; the real detector is
    covered separately in test_file_service.py.
    """
    with patch.object(FileService, "detect_mime_type", _detect_by_header):
        yield


@pytest.fixture
def sample_pdf_bytes():
    """Minimal PDF: header, one empty page, trailer."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n"
        b"2 0 obj << /Type /Pages /Kids [3 0 R] /Count 1 >> endobj\n"
        b"3 0 obj << /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >> endobj\n"
        b"trailer << /Root 1 0 R >>\n"
        b"%%EOF\n"
    )


@pytest.fixture
def make_document():
    """
    Factory for Document instances.

    Each call without `date_added` is one second newer than the previous one,
    so ordering assertions are deterministic.
    """
    counter = {"n": 0}
    base = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

    def _make(**overrides) -> Document:
        counter["n"] += 1
        n = counter["n"]
        fields = {
            "id": "",
            "name": f"unit{n}.pdf",
            "display_name": f"Unit {n}",
            "filename": f"17000000000{n:02d}-abcd{n:04d}.pdf",
            "path": f"/uploads/17000000000{n:02d}-abcd{n:04d}.pdf",
            "type": "material",
            "icon": "fa-book",
            "date_added": base + timedelta(seconds=n),
            "synced": False,
        }
        fields.update(overrides)
        return Document(**fields)

    return _make


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(portal, fake_magic):
    """
    HTTPX AsyncClient talking to an app that uses the `portal` fixture.

    ASGITransport does not run the lifespan, so the monitor task is not
    started; tests drive portal.monitor.tick()/reconnect() themselves.
    """
    from studyportal.main import create_app

    app = create_app(portal.settings)
    app.state.portal = portal
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

"""
Study Portal Backend — Storage Container & FastAPI Dependencies
=================================================================

What:  Builds the storage components once per application and exposes them
       to route handlers through FastAPI dependencies.
How:   build_storage_portal() wires SyncState → stores → reconciler →
       monitor → façade. create_app() keeps the result on `app.state.portal`;
       the getters below read it from the request.
Who:   main.create_app() (construction, lifespan start/stop), routes (Depends).

Per-app container:
    Tests build an app per test with their own snapshot file, upload
    directory and SQLite primary, without touching global state.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from studyportal.config import Settings, settings as default_settings
from studyportal.services.connection_monitor import ConnectionMonitor
from studyportal.services.document_service import DocumentService
from studyportal.services.file_service import FileService
from studyportal.services.local_store import LocalStore
from studyportal.services.primary_store import PrimaryStoreClient
from studyportal.services.reconciliation import ReconciliationEngine
from studyportal.services.sync_state import SyncState


@dataclass
class StoragePortal:
    settings: Settings
    state: SyncState
    local: LocalStore
    primary: PrimaryStoreClient
    files: FileService
    reconciler: ReconciliationEngine
    monitor: ConnectionMonitor
    documents: DocumentService

    async def startup(self) -> None:
        """Prepare the local store and start watching the primary."""
        await self.local.initialize()
        await self.documents.refresh_pending()
        self.monitor.start()

    async def shutdown(self) -> None:
        await self.monitor.stop()
        await self.primary.disconnect()


def build_storage_portal(app_settings: Optional[Settings] = None) -> StoragePortal:
    cfg = app_settings or default_settings
    state = SyncState()
    local = LocalStore(cfg.fallback_db_file)
    primary = PrimaryStoreClient(state, app_settings=cfg)
    files = FileService(upload_dir=cfg.upload_dir, max_file_size=cfg.max_file_size)
    reconciler = ReconciliationEngine(local, primary, state)
    monitor = ConnectionMonitor(primary, reconciler, state, interval=cfg.primary_reconnect_interval)
    documents = DocumentService(local, primary, files, state, default_color=cfg.default_color)
    return StoragePortal(
        settings=cfg,
        state=state,
        local=local,
        primary=primary,
        files=files,
        reconciler=reconciler,
        monitor=monitor,
        documents=documents,
    )


# ── FastAPI dependency getters ────────────────────────────────────────────


def get_portal(request: Request) -> StoragePortal:
    return request.app.state.portal


def get_document_service(request: Request) -> DocumentService:
    return get_portal(request).documents


def get_file_service(request: Request) -> FileService:
    return get_portal(request).files

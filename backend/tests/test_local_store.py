"""
Study Portal Backend — Local Store Unit Tests
===============================================

What:  Tests for the JSON snapshot store: initialization, id assignment,
       removal with tombstones, corruption recovery, sync bookkeeping.
How:   Real files under tmp_path; aiofiles calls are patched only to
       simulate write failures.
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from studyportal.exceptions import LocalStoreWriteError
from studyportal.services.local_store import LocalStore


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "fallback-database.json"


class TestInitialization:

    @pytest.mark.asyncio
    async def test_creates_empty_snapshot(self, store_path):
        store = LocalStore(str(store_path))
        await store.initialize()

        data = json.loads(store_path.read_text())
        assert data["documents"] == []
        assert data["pendingDeletes"] == []
        assert data["visits"] == 0
        assert data["lastUpdated"]

    @pytest.mark.asyncio
    async def test_keeps_existing_snapshot(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.initialize()
        await store.append(make_document())

        await LocalStore(str(store_path)).initialize()

        assert len(await LocalStore(str(store_path)).read_all()) == 1

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_is_moved_aside(self, store_path):
        store_path.write_text("{ this is not json")
        store = LocalStore(str(store_path))

        assert await store.read_all() == []
        quarantined = list(store_path.parent.glob("fallback-database.json.corrupt-*"))
        assert len(quarantined) == 1
        assert quarantined[0].read_text() == "{ this is not json"

    @pytest.mark.asyncio
    async def test_initialize_recreates_after_corruption(self, store_path):
        store_path.write_text("[1, 2, 3]")
        store = LocalStore(str(store_path))
        await store.initialize()

        assert json.loads(store_path.read_text())["documents"] == []

    @pytest.mark.asyncio
    async def test_malformed_entries_are_skipped(self, store_path, make_document):
        good = make_document(id="100").to_json()
        store_path.write_text(json.dumps({"documents": [good, {"id": "101"}], "visits": 3}))

        docs = await LocalStore(str(store_path)).read_all()

        assert [d.id for d in docs] == ["100"]

    @pytest.mark.asyncio
    async def test_reads_legacy_pdfs_snapshot_as_pending(self, store_path):
        legacy = {
            "pdfs": [
                {
                    "id": "1700000000000",
                    "name": "notes.pdf",
                    "displayName": "Notes",
                    "filename": "1700000000000-notes.pdf",
                    "path": "/uploads/1700000000000-notes.pdf",
                    "type": "imp-material",
                    "icon": "fa-star",
                    "color": "#6a11cb",
                    "dateAdded": "2023-11-14T22:13:20.000Z",
                }
            ],
            "visits": 42,
            "lastUpdated": "2023-11-14T22:13:20.000Z",
        }
        store_path.write_text(json.dumps(legacy))
        store = LocalStore(str(store_path))

        pending = await store.pending()

        assert [d.id for d in pending] == ["1700000000000"]
        assert pending[0].date_added.tzinfo is not None
        assert await store.get_visits() == 42


class TestAppend:

    @pytest.mark.asyncio
    async def test_assigns_timestamp_id(self, store_path, make_document):
        store = LocalStore(str(store_path))
        with patch("studyportal.services.local_store.time.time", return_value=1705320000.123):
            stored = await store.append(make_document())

        assert stored.id == "1705320000123"
        assert stored.synced is False

    @pytest.mark.asyncio
    async def test_bumps_colliding_ids(self, store_path, make_document):
        store = LocalStore(str(store_path))
        with patch("studyportal.services.local_store.time.time", return_value=1705320000.0):
            first = await store.append(make_document())
            second = await store.append(make_document())

        assert first.id == "1705320000000"
        assert second.id == "1705320000001"

    @pytest.mark.asyncio
    async def test_rejects_duplicate_explicit_id(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="abc"))

        with pytest.raises(ValueError, match="already exists"):
            await store.append(make_document(id="abc"))

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, store_path, make_document):
        await LocalStore(str(store_path)).append(make_document(display_name="Unit 1"))

        docs = await LocalStore(str(store_path)).read_all()

        assert [d.display_name for d in docs] == ["Unit 1"]

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_serialized(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.initialize()

        stored = await asyncio.gather(*(store.append(make_document()) for _ in range(20)))

        docs = await store.read_all()
        assert len(docs) == 20
        assert len({d.id for d in stored}) == 20

    @pytest.mark.asyncio
    async def test_write_failure_raises_and_keeps_previous_snapshot(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="keep"))

        with patch(
            "studyportal.services.local_store.aiofiles.os.replace",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(LocalStoreWriteError):
                await store.append(make_document(id="lost"))

        assert [d.id for d in await store.read_all()] == ["keep"]
        assert not (store_path.parent / "fallback-database.json.tmp").exists()


class TestRemoval:

    @pytest.mark.asyncio
    async def test_remove_returns_record(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="1"))

        removed = await store.remove_by_id("1")

        assert removed is not None and removed.id == "1"
        assert await store.read_all() == []

    @pytest.mark.asyncio
    async def test_remove_absent_returns_none(self, store_path):
        store = LocalStore(str(store_path))
        await store.initialize()

        assert await store.remove_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_tombstone_written_with_removal(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="synced", synced=True))
        await store.append(make_document(id="pending"))
        await store.append(make_document(id="plain"))

        await store.remove_by_id("synced", tombstone=True)
        await store.remove_by_id("pending", tombstone=True)
        await store.remove_by_id("plain")

        snapshot = await store.snapshot()
        assert snapshot.pending_deletes == ["synced", "pending"]
        assert snapshot.documents == []

    @pytest.mark.asyncio
    async def test_queue_deletes_skips_present_ids(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="kept"))

        assert await store.queue_deletes(["kept", "gone", "gone"]) == 1
        assert await store.queue_deletes(["gone"]) == 0
        assert (await store.snapshot()).pending_deletes == ["gone"]

    @pytest.mark.asyncio
    async def test_drop_tombstones(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="a", synced=True))
        await store.remove_by_id("a", tombstone=True)

        assert await store.drop_tombstones(["a", "unknown"]) == 1
        assert (await store.snapshot()).pending_deletes == []


class TestSyncBookkeeping:

    @pytest.mark.asyncio
    async def test_mark_synced_flips_only_given_ids(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="a"))
        await store.append(make_document(id="b"))

        flipped = await store.mark_synced(["a", "ghost"])

        assert flipped == 1
        assert [d.id for d in await store.pending()] == ["b"]

    @pytest.mark.asyncio
    async def test_mark_synced_drops_applied_tombstones(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="x", synced=True))
        await store.append(make_document(id="y", synced=True))
        await store.remove_by_id("x", tombstone=True)
        await store.remove_by_id("y", tombstone=True)

        await store.mark_synced([], applied_deletes=["x"])

        assert (await store.snapshot()).pending_deletes == ["y"]

    @pytest.mark.asyncio
    async def test_upsert_synced(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="pending", display_name="Local draft"))
        await store.append(make_document(id="synced", synced=True, display_name="Old title"))
        await store.append(make_document(id="gone", synced=True))
        await store.remove_by_id("gone", tombstone=True)

        added = await store.upsert_synced([
            make_document(id="pending", display_name="Primary copy", synced=True),
            make_document(id="synced", display_name="New title", synced=True),
            make_document(id="gone", synced=True),
            make_document(id="restored", synced=True),
        ])

        assert added == 1
        docs = {d.id: d for d in await store.read_all()}
        assert set(docs) == {"pending", "synced", "restored"}
        assert docs["pending"].display_name == "Local draft"
        assert docs["pending"].synced is False
        assert docs["synced"].display_name == "New title"
        assert docs["restored"].synced is True


    @pytest.mark.asyncio
    async def test_replace_all_keeps_visits_and_tombstones(self, store_path, make_document):
        store = LocalStore(str(store_path))
        await store.append(make_document(id="old", synced=True))
        await store.remove_by_id("old", tombstone=True)
        await store.record_visit()

        await store.replace_all([make_document(id="new")])

        snapshot = await store.snapshot()
        assert [d.id for d in snapshot.documents] == ["new"]
        assert snapshot.pending_deletes == ["old"]
        assert snapshot.visits == 1


class TestVisits:

    @pytest.mark.asyncio
    async def test_record_visit_increments(self, store_path):
        store = LocalStore(str(store_path))
        await store.initialize()

        assert await store.record_visit() == 1
        assert await store.record_visit() == 2
        assert (await store.stats())["visits"] == 2

"""
Study Portal Backend — Document Service (Façade) Tests
========================================================

What:  End-to-end behavior of the façade over real stores: durability during
       outages, fallback reads, delete consistency, and the write outcomes
       when one or both stores fail.

Test Strategy:
    ✅ Uploads during an outage survive and reach the primary on reconnect
    ✅ Reads fall back when a primary call fails mid-request
    ✅ Deletes never leave a record retrievable from either store
    ✅ Only a double store failure fails an upload
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from studyportal.exceptions import (
    LocalStoreWriteError,
    NotFoundError,
    PrimaryUnavailableError,
    StorageError,
    ValidationError,
)
from studyportal.schemas.document import DocumentMetadata, DocumentOrigin
from studyportal.services.document_service import STORES_BOTH, STORES_LOCAL, STORES_PRIMARY

pytestmark = pytest.mark.usefixtures("fake_magic")


def unit_metadata(**overrides):
    fields = {"display_name": "Unit 1", "type": "material", "icon": "fa-book"}
    fields.update(overrides)
    return DocumentMetadata(**fields)


def uploaded_files(portal):
    return sorted(p.name for p in portal.files.upload_dir.iterdir())


class TestUploadDuringOutage:

    @pytest.mark.asyncio
    async def test_outage_upload_then_reconnect(self, portal, outage, sample_pdf_bytes):
        await outage.begin()

        result = await portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)

        assert result.stores == STORES_LOCAL
        assert len(await portal.local.read_all()) == 1
        assert portal.state.pending_count == 1
        assert portal.files.has_file(result.document.filename)

        outage.end()
        reconnect = await portal.monitor.reconnect()

        assert reconnect.success
        assert portal.state.pending_count == 0
        assert await portal.primary.count_by() == 1
        assert (await portal.primary.get_by_id(result.document.id)).id == result.document.id

    @pytest.mark.asyncio
    async def test_outage_uploads_are_readable(self, portal, outage, sample_pdf_bytes):
        await outage.begin()
        added = [
            (await portal.documents.add_document(
                unit_metadata(display_name=f"Unit {i}"), f"unit{i}.pdf", sample_pdf_bytes
            )).document
            for i in range(3)
        ]

        listed = await portal.documents.get_documents()

        assert {d.id for d in listed} == {d.id for d in added}
        assert all(d.origin == DocumentOrigin.LOCAL for d in listed)
        assert (await portal.documents.get_document(added[0].id)).display_name == "Unit 0"


class TestUploadWhileOnline:

    @pytest.mark.asyncio
    async def test_upload_is_mirrored(self, online_portal, sample_pdf_bytes):
        result = await online_portal.documents.add_document(
            unit_metadata(color="#ff0000", name="Chapter 1"), "ch1.pdf", sample_pdf_bytes
        )

        assert result.stores == STORES_BOTH
        assert result.document.synced is True
        assert result.document.color == "#ff0000"
        assert result.document.name == "Chapter 1"
        assert result.document.path == f"/uploads/{result.document.filename}"
        assert await online_portal.local.pending() == []
        assert (await online_portal.primary.get_by_id(result.document.id)) is not None

    @pytest.mark.asyncio
    async def test_defaults(self, online_portal, sample_pdf_bytes):
        result = await online_portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)

        assert result.document.color == "#6a11cb"
        assert result.document.name == "unit1.pdf"
        assert result.document.size_bytes == len(sample_pdf_bytes)

    @pytest.mark.asyncio
    async def test_mirror_failure_keeps_record_pending(self, online_portal, sample_pdf_bytes):
        error = OperationalError("INSERT", {}, Exception("server closed the connection"))

        with patch.object(online_portal.primary, "_open_session", side_effect=error):
            result = await online_portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)

        assert result.stores == STORES_LOCAL
        assert online_portal.state.primary_reachable is False
        assert [d.id for d in await online_portal.local.pending()] == [result.document.id]

    @pytest.mark.asyncio
    async def test_local_failure_with_primary_success(self, online_portal, sample_pdf_bytes):
        with patch.object(online_portal.local, "append", side_effect=LocalStoreWriteError()):
            result = await online_portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)

        assert result.stores == STORES_PRIMARY
        assert result.document.id
        assert (await online_portal.primary.get_by_id(result.document.id)) is not None
        assert online_portal.files.has_file(result.document.filename)

    @pytest.mark.asyncio
    async def test_both_stores_failing_raises_and_cleans_up(self, portal, outage, sample_pdf_bytes):
        await outage.begin()

        with patch.object(portal.local, "append", side_effect=LocalStoreWriteError()):
            with pytest.raises(StorageError):
                await portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)

        assert uploaded_files(portal) == []


class TestValidation:

    @pytest.mark.asyncio
    async def test_missing_fields_listed(self, portal, sample_pdf_bytes):
        with pytest.raises(ValidationError, match="displayName, icon"):
            await portal.documents.add_document(
                DocumentMetadata(type="material"), "unit1.pdf", sample_pdf_bytes
            )
        assert uploaded_files(portal) == []

    @pytest.mark.asyncio
    async def test_unknown_type(self, portal, sample_pdf_bytes):
        with pytest.raises(ValidationError, match="Unknown document type"):
            await portal.documents.add_document(unit_metadata(type="video"), "unit1.pdf", sample_pdf_bytes)

    @pytest.mark.asyncio
    async def test_non_pdf_payload(self, portal):
        with pytest.raises(ValidationError):
            await portal.documents.add_document(unit_metadata(), "unit1.pdf", b"just text")
        assert await portal.local.read_all() == []

    @pytest.mark.asyncio
    async def test_unknown_type_filter(self, portal):
        with pytest.raises(ValidationError):
            await portal.documents.get_documents(type_filter="slides")


class TestFallbackReads:

    @pytest.mark.asyncio
    async def test_primary_failure_mid_read_falls_back(self, online_portal, sample_pdf_bytes):
        added = await online_portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)
        error = OperationalError("SELECT", {}, Exception("connection refused"))

        with patch.object(online_portal.primary, "_open_session", side_effect=error):
            listed = await online_portal.documents.get_documents()
            counts = await online_portal.documents.get_counts()

        assert [d.id for d in listed] == [added.document.id]
        assert listed[0].origin == DocumentOrigin.LOCAL
        assert counts.total == 1
        assert online_portal.state.primary_reachable is False

    @pytest.mark.asyncio
    async def test_online_reads_include_pending_records(self, online_portal, make_document):
        await online_portal.local.append(make_document(id="pending-only"))

        listed = await online_portal.documents.get_documents()
        counts = await online_portal.documents.get_counts()

        assert [d.id for d in listed] == ["pending-only"]
        assert counts.material == 1

    @pytest.mark.asyncio
    async def test_newest_first_and_type_filter(self, portal, outage, make_document):
        await outage.begin()
        for doc in [
            make_document(id="a"),
            make_document(id="b", type="imp-material"),
            make_document(id="c"),
        ]:
            await portal.local.append(doc)

        assert [d.id for d in await portal.documents.get_documents()] == ["c", "b", "a"]
        assert [d.id for d in await portal.documents.get_documents("material")] == ["c", "a"]

        counts = await portal.documents.get_counts()
        assert (counts.material, counts.imp_material, counts.total) == (2, 1, 3)

    @pytest.mark.asyncio
    async def test_get_document_not_found(self, portal):
        with pytest.raises(NotFoundError):
            await portal.documents.get_document("nope")


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_synced_while_online(self, online_portal, sample_pdf_bytes):
        added = (await online_portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)).document

        result = await online_portal.documents.delete_document(added.id)

        assert result.stores == STORES_BOTH
        assert await online_portal.primary.get_by_id(added.id) is None
        assert await online_portal.local.get_by_id(added.id) is None
        assert (await online_portal.local.snapshot()).pending_deletes == []
        assert uploaded_files(online_portal) == []
        with pytest.raises(NotFoundError):
            await online_portal.documents.get_document(added.id)

    @pytest.mark.asyncio
    async def test_delete_synced_during_outage_is_replayed(self, online_portal, outage, sample_pdf_bytes):
        added = (await online_portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)).document
        await outage.begin()

        result = await online_portal.documents.delete_document(added.id)

        assert result.stores == STORES_LOCAL
        assert await online_portal.local.read_all() == []
        assert online_portal.state.pending_delete_count == 1

        outage.end()
        await online_portal.monitor.tick()

        assert await online_portal.primary.get_by_id(added.id) is None
        assert await online_portal.local.read_all() == []
        assert online_portal.state.pending_delete_count == 0

    @pytest.mark.asyncio
    async def test_delete_pending_while_offline(self, portal, outage, sample_pdf_bytes):
        await outage.begin()
        added = (await portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)).document

        with patch.object(portal.primary, "delete_by_id") as primary_delete:
            await portal.documents.delete_document(added.id)

        primary_delete.assert_not_called()
        assert (await portal.local.snapshot()).pending_deletes == [added.id]

        outage.end()
        result = await portal.monitor.reconnect()

        assert result.reconciliation.upserted == 0
        assert await portal.primary.count_by() == 0
        assert (await portal.local.snapshot()).pending_deletes == []

    @pytest.mark.asyncio
    async def test_delete_during_mirror_write(self, online_portal, sample_pdf_bytes):
        original_insert = online_portal.primary.insert_many

        async def delete_then_insert(docs):
            await online_portal.documents.delete_document(docs[0].id)
            return await original_insert(docs)

        with patch.object(online_portal.primary, "insert_many", side_effect=delete_then_insert):
            added = (await online_portal.documents.add_document(
                unit_metadata(), "unit1.pdf", sample_pdf_bytes
            )).document

        assert await online_portal.primary.get_by_id(added.id) is None
        assert await online_portal.local.get_by_id(added.id) is None
        assert (await online_portal.local.snapshot()).pending_deletes == []
        assert added.id not in [d.id for d in await online_portal.documents.get_documents()]

        await online_portal.monitor.reconnect()

        assert await online_portal.local.get_by_id(added.id) is None
        assert await online_portal.primary.get_by_id(added.id) is None

    @pytest.mark.asyncio
    async def test_delete_during_mirror_write_with_primary_failing(self, online_portal, sample_pdf_bytes):
        original_insert = online_portal.primary.insert_many

        async def delete_then_insert(docs):
            await online_portal.documents.delete_document(docs[0].id)
            return await original_insert(docs)

        failing_delete = PrimaryUnavailableError(context={"error": "connection reset"})
        with patch.object(online_portal.primary, "insert_many", side_effect=delete_then_insert), patch.object(
            online_portal.primary, "delete_by_id", side_effect=failing_delete
        ):
            added = (await online_portal.documents.add_document(
                unit_metadata(), "unit1.pdf", sample_pdf_bytes
            )).document

        assert (await online_portal.local.snapshot()).pending_deletes == [added.id]
        assert added.id not in [d.id for d in await online_portal.documents.get_documents()]

        await online_portal.reconciler.reconcile()

        assert await online_portal.primary.get_by_id(added.id) is None
        assert await online_portal.local.get_by_id(added.id) is None

    @pytest.mark.asyncio
    async def test_delete_during_reconnect_pass(self, online_portal, outage, make_document):
        await outage.begin()
        doc = await online_portal.local.append(make_document())
        outage.end()
        original_insert = online_portal.primary.insert_many

        async def insert_then_delete(docs):
            count = await original_insert(docs)
            await online_portal.documents.delete_document(doc.id)
            return count

        with patch.object(online_portal.primary, "insert_many", side_effect=insert_then_delete):
            assert await online_portal.monitor.tick() is True

        assert doc.id not in [d.id for d in await online_portal.documents.get_documents()]
        assert await online_portal.primary.get_by_id(doc.id) is None
        assert await online_portal.local.get_by_id(doc.id) is None

    @pytest.mark.asyncio
    async def test_delete_primary_only_record(self, online_portal, make_document):
        await online_portal.primary.insert_many([make_document(id="remote")])

        result = await online_portal.documents.delete_document("remote")

        assert result.stores == STORES_PRIMARY
        assert await online_portal.primary.get_by_id("remote") is None

    @pytest.mark.asyncio
    async def test_delete_unknown_while_offline(self, portal, outage):
        await outage.begin()

        with pytest.raises(NotFoundError):
            await portal.documents.delete_document("ghost")


class TestStatusAndVisits:

    @pytest.mark.asyncio
    async def test_status_reflects_pending(self, portal, outage, sample_pdf_bytes):
        await outage.begin()
        await portal.documents.add_document(unit_metadata(), "unit1.pdf", sample_pdf_bytes)

        status = await portal.documents.get_status()

        assert status.primary_reachable is False
        assert status.pending_count == 1
        assert status.pending_delete_count == 0

    @pytest.mark.asyncio
    async def test_visits(self, portal):
        assert await portal.documents.record_visit() == 1
        assert await portal.documents.get_visits() == 1

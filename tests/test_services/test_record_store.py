"""Tests for sync record persistence."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from backend.exceptions import StoreError
from backend.schemas.sync import SyncRecord, SyncStatus
from backend.services.datetime_service import now_utc
from backend.services.record_service import SyncRecordStore, record_key
from backend.storage.kv import SqlKeyValueStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

REPO = "acme/widget"


def _synced(file_paths: list[str]) -> SyncRecord:
    return SyncRecord(
        repo=REPO,
        version="v1.0.0",
        status=SyncStatus.SYNCED,
        path="/downloads",
        last_update=now_utc(),
        file_paths=file_paths,
    )


class TestSyncRecordStore:
    async def test_missing_record(self, records: SyncRecordStore) -> None:
        assert await records.get(REPO) is None

    async def test_record_key(self) -> None:
        assert record_key(REPO) == "repo:acme/widget"

    async def test_put_and_get(self, records: SyncRecordStore) -> None:
        record = _synced(["downloads/Windows/widget-win.exe"])
        await records.put(REPO, record)

        loaded = await records.get(REPO)
        assert loaded is not None
        assert loaded.version == "v1.0.0"
        assert loaded.status is SyncStatus.SYNCED
        assert loaded.file_paths == ["downloads/Windows/widget-win.exe"]

    async def test_serialized_with_camel_case_fields(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        kv = SqlKeyValueStore(session_factory)
        await SyncRecordStore(kv).put(REPO, _synced(["a_widget.zip"]))

        raw = await kv.get("repo:acme/widget")
        assert raw is not None
        data = json.loads(raw)
        assert data["filePaths"] == ["a_widget.zip"]
        assert "lastUpdate" in data
        assert "error" not in data

    async def test_reads_records_written_in_camel_case(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        kv = SqlKeyValueStore(session_factory)
        await kv.put(
            "repo:acme/widget",
            json.dumps(
                {
                    "repo": REPO,
                    "version": "v0.9",
                    "status": "synced",
                    "path": "/downloads",
                    "lastUpdate": "2026-01-05T10:00:00.000Z",
                    "filePaths": ["downloads/widget.apk"],
                }
            ),
        )
        record = await SyncRecordStore(kv).get(REPO)
        assert record is not None
        assert record.version == "v0.9"
        assert record.file_paths == ["downloads/widget.apk"]
        assert record.last_update is not None

    async def test_corrupt_record_raises_store_error(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        kv = SqlKeyValueStore(session_factory)
        await kv.put("repo:acme/widget", "not json")
        with pytest.raises(StoreError, match="Corrupt sync record"):
            await SyncRecordStore(kv).get(REPO)

    async def test_every_call_rereads_the_store(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        first = SyncRecordStore(SqlKeyValueStore(session_factory))
        second = SyncRecordStore(SqlKeyValueStore(session_factory))

        await first.put(REPO, _synced(["a_widget.zip"]))
        await second.put(REPO, _synced(["b_widget.zip"]))

        loaded = await first.get(REPO)
        assert loaded is not None
        assert loaded.file_paths == ["b_widget.zip"]


class TestUpdate:
    async def test_transform_returning_none_writes_nothing(
        self, records: SyncRecordStore
    ) -> None:
        assert await records.update(REPO, lambda record: None) is None
        assert await records.get(REPO) is None

    async def test_transform_receives_a_copy(self, records: SyncRecordStore) -> None:
        await records.put(REPO, _synced(["a_widget.zip"]))
        seen: list[SyncRecord | None] = []

        def _capture(record: SyncRecord | None) -> None:
            assert record is not None
            record.file_paths.append("mutated")
            seen.append(record)

        await records.update(REPO, _capture)

        loaded = await records.get(REPO)
        assert loaded is not None
        assert loaded.file_paths == ["a_widget.zip"]
        assert len(seen) == 1

    async def test_transform_result_is_written(self, records: SyncRecordStore) -> None:
        await records.put(REPO, _synced(["a_widget.zip"]))

        def _add(record: SyncRecord | None) -> SyncRecord | None:
            assert record is not None
            record.file_paths.append("b_widget.zip")
            return record

        written = await records.update(REPO, _add)
        assert written is not None
        loaded = await records.get(REPO)
        assert loaded is not None
        assert loaded.file_paths == ["a_widget.zip", "b_widget.zip"]


class TestTransitions:
    async def test_clear_file_list_without_record_is_noop(self, records: SyncRecordStore) -> None:
        assert await records.clear_file_list(REPO) is None
        assert await records.get(REPO) is None

    async def test_clear_file_list(self, records: SyncRecordStore) -> None:
        before = _synced(["a_widget.zip", "b_widget.zip"])
        await records.put(REPO, before)

        await records.clear_file_list(REPO)

        record = await records.get(REPO)
        assert record is not None
        assert record.file_paths == []
        assert record.status is SyncStatus.SYNCING
        assert record.version == "v1.0.0"
        assert record.last_update is not None
        assert before.last_update is not None
        assert record.last_update >= before.last_update

    async def test_mark_synced(self, records: SyncRecordStore) -> None:
        await records.mark_synced(REPO, "v2.0.0", "/downloads", ["a_widget.zip"])

        record = await records.get(REPO)
        assert record is not None
        assert record.status is SyncStatus.SYNCED
        assert record.version == "v2.0.0"
        assert record.file_paths == ["a_widget.zip"]
        assert record.error is None

    async def test_mark_error_keeps_paths_and_drops_version(
        self, records: SyncRecordStore
    ) -> None:
        await records.put(REPO, _synced(["a_widget.zip"]))

        await records.mark_error(REPO, "/downloads", "boom")

        record = await records.get(REPO)
        assert record is not None
        assert record.status is SyncStatus.ERROR
        assert record.error == "boom"
        assert record.version is None
        assert record.path == "/downloads"
        assert record.file_paths == ["a_widget.zip"]

    async def test_mark_error_without_record(self, records: SyncRecordStore) -> None:
        await records.mark_error(REPO, "/downloads", "boom")

        record = await records.get(REPO)
        assert record is not None
        assert record.status is SyncStatus.ERROR
        assert record.file_paths == []

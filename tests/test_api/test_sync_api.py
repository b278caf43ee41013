"""Integration tests for the sync and status endpoints."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from backend.api.pages import render_status_page
from backend.api.sync import sync_logs_stream
from backend.schemas.sync import RepoStatusResponse, StatusResponse, SyncRecord, SyncStatus
from backend.services.datetime_service import now_utc
from backend.services.log_service import SyncLogBroadcaster
from backend.services.sync_service import SYNC_COMPLETE_MESSAGE
from backend.storage.local import LocalObjectStore
from tests.conftest import GitHubStub, create_test_app, create_test_client

if TYPE_CHECKING:
    from backend.config import Settings

REPO = "acme/widget"
ASSETS = ["widget-win.exe", "widget.apk", "widget-Source-code.zip"]


@pytest.fixture
def stub() -> GitHubStub:
    github_stub = GitHubStub()
    github_stub.add_release(REPO, "v1.0.0", ASSETS)
    return github_stub


@pytest.fixture
def store(test_settings: Settings) -> LocalObjectStore:
    return LocalObjectStore(test_settings.local_storage_dir)


async def _sync(client: AsyncClient, method: str = "POST", **params: str) -> list[str]:
    resp = await client.request(method, "/sync", params=params)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    return resp.text.splitlines()


class TestTriggerSync:
    async def test_streams_progress_until_sentinel(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            lines = await _sync(client)

        assert lines[0] == f"Starting sync for {REPO}"
        assert "Uploaded widget.apk to downloads/Android/widget.apk" in lines
        assert lines[-1] == SYNC_COMPLETE_MESSAGE
        assert [obj.key for obj in await store.list_objects()] == [
            "downloads/Android/widget.apk",
            "downloads/Windows/widget-win.exe",
        ]

    async def test_get_triggers_sync(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            lines = await _sync(client, "GET", repo=REPO)
        assert lines[-1] == SYNC_COMPLETE_MESSAGE

    async def test_unknown_repo(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            resp = await client.post("/sync", params={"repo": "acme/unknown"})
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Repository not configured: acme/unknown"

    async def test_no_repos(self, test_settings: Settings, store: LocalObjectStore) -> None:
        test_settings.repos = []
        async with create_test_client(test_settings, object_store=store) as client:
            resp = await client.post("/sync")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No repositories configured"

    async def test_legacy_repo_variables(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        test_settings.repos = []
        stub.add_release("acme/gadget", "v2", ["gadget.apk"])
        environ = {"REPO_1": "acme/gadget:/g"}
        async with create_test_client(test_settings, stub, store, environ) as client:
            lines = await _sync(client)
        assert "Uploaded gadget.apk to g/Android/gadget.apk" in lines

    async def test_without_object_store(self, test_settings: Settings, stub: GitHubStub) -> None:
        async with create_test_client(test_settings, stub) as client:
            resp = await client.post("/sync")
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Object storage is not configured"

    async def test_rejected_while_syncing(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_app(test_settings, stub, store) as app:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                app.state.orchestrator.guard.try_acquire()
                resp = await client.post("/sync")
                app.state.orchestrator.guard.release()

        assert resp.status_code == 409
        assert resp.json()["detail"] == "A sync is already in progress"

    async def test_repo_query_too_long(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            resp = await client.post("/sync", params={"repo": "a" * 300})
        assert resp.status_code == 422
        assert resp.json()["detail"][0]["field"] == "repo"


class TestStatus:
    async def test_before_first_sync(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            resp = await client.get("/api/status")

        assert resp.status_code == 200
        data = resp.json()
        assert data["error"] is None
        assert data["last_check"] is None
        assert data["is_syncing"] is False
        assert data["api_rate_limit"]["remaining"] == 4990
        assert data["repos"] == [
            {
                "repo": REPO,
                "path": "/downloads",
                "version": None,
                "status": "pending",
                "last_update": None,
                "file_count": 0,
                "message": "Not synced yet",
            }
        ]

    async def test_after_sync(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            await _sync(client)
            data = (await client.get("/api/status")).json()

        assert data["last_check"] is not None
        repo = data["repos"][0]
        assert repo["status"] == "synced"
        assert repo["version"] == "v1.0.0"
        assert repo["file_count"] == 2

    async def test_reports_missing_storage_and_repos(
        self, test_settings: Settings, stub: GitHubStub
    ) -> None:
        test_settings.repos = []
        async with create_test_client(test_settings, stub) as client:
            data = (await client.get("/api/status")).json()

        assert data["error"] == "Object storage is not configured"
        assert data["info"].startswith("No repositories configured")
        assert data["repos"] == []

    async def test_no_healing_while_syncing(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        stale = SyncRecord(
            repo=REPO,
            status=SyncStatus.SYNCING,
            path="/downloads",
            last_update=now_utc() - timedelta(hours=2),
        )
        async with create_test_app(test_settings, stub, store) as app:
            await app.state.records.put(REPO, stale)
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                app.state.orchestrator.guard.try_acquire()
                during = (await client.get("/api/status")).json()
                app.state.orchestrator.guard.release()
                after = (await client.get("/api/status")).json()

        assert during["is_syncing"] is True
        assert during["repos"][0]["status"] == "syncing"
        assert after["is_syncing"] is False
        assert after["repos"][0]["status"] == "error"

    async def test_github_rate(self, test_settings: Settings, stub: GitHubStub) -> None:
        async with create_test_client(test_settings, stub) as client:
            resp = await client.get("/api/github-rate")
        assert resp.status_code == 200
        assert resp.json()["limit"] == 5000

    async def test_status_page(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            await _sync(client)
            resp = await client.get("/")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        assert "<td>acme/widget</td>" in resp.text
        assert "<td>v1.0.0</td>" in resp.text


class TestRepoRecord:
    async def test_record_after_sync(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            missing = await client.get(f"/api/repos/{REPO}")
            await _sync(client)
            resp = await client.get(f"/api/repos/{REPO}")

        assert missing.status_code == 404
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "synced"
        assert sorted(data["filePaths"]) == [
            "downloads/Android/widget.apk",
            "downloads/Windows/widget-win.exe",
        ]

    async def test_unconfigured_repo(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            resp = await client.get("/api/repos/acme/unknown")
        assert resp.status_code == 404

    async def test_needs_sync(
        self, test_settings: Settings, stub: GitHubStub, store: LocalObjectStore
    ) -> None:
        async with create_test_client(test_settings, stub, store) as client:
            before = (await client.get(f"/api/repos/{REPO}/needs-sync")).json()
            await _sync(client)
            after = (await client.get(f"/api/repos/{REPO}/needs-sync")).json()
            newer = (
                await client.get(f"/api/repos/{REPO}/needs-sync", params={"tag": "v2.0.0"})
            ).json()

        assert before == {"repo": REPO, "tag": "v1.0.0", "path": "/downloads", "needs_sync": True}
        assert after["needs_sync"] is False
        assert newer["needs_sync"] is True
        assert newer["tag"] == "v2.0.0"


class TestLogStream:
    async def test_events_follow_published_lines(self) -> None:
        class _Request:
            def __init__(self) -> None:
                self.checks = 0

            async def is_disconnected(self) -> bool:
                self.checks += 1
                return self.checks > 1

        broadcaster = SyncLogBroadcaster()
        response = await sync_logs_stream(_Request(), broadcaster, REPO)  # type: ignore[arg-type]
        events = response.body_iterator

        assert await anext(events) == {"comment": "connected"}
        assert broadcaster.subscriber_count == 1
        broadcaster.publish("Starting sync for acme/gadget", repo="acme/gadget")
        broadcaster.publish(f"Starting sync for {REPO}", repo=REPO)
        assert await anext(events) == {"event": "log", "data": f"Starting sync for {REPO}"}
        with pytest.raises(StopAsyncIteration):
            await anext(events)
        assert broadcaster.subscriber_count == 0


def test_render_status_page_escapes() -> None:
    page = render_status_page(
        StatusResponse(
            repos=[
                RepoStatusResponse(
                    repo="acme/<script>",
                    path="/d",
                    status=SyncStatus.ERROR,
                    message='bad "quote"',
                )
            ],
            error="Object storage is not configured",
        )
    )
    assert "&lt;script&gt;" in page
    assert "<script>" not in page
    assert "Object storage is not configured" in page
    assert "GitHub API: unknown" in page

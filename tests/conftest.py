"""Shared test fixtures for the release mirror."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from backend.config import Settings
from backend.database import create_engine, create_schema
from backend.github.client import GitHubClient
from backend.main import create_app, init_app_state
from backend.services.record_service import SyncRecordStore
from backend.storage.kv import SqlKeyValueStore
from backend.storage.local import LocalObjectStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable, Mapping
    from pathlib import Path

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from backend.storage.base import ObjectStore

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.test"
GITHUB_DOWNLOAD_URL = "https://github.test"
RATE_LIMIT_HEADERS = {
    "x-ratelimit-limit": "5000",
    "x-ratelimit-remaining": "4990",
    "x-ratelimit-reset": "1767225600",
}


class GitHubStub:
    """In-memory stand-in for the GitHub REST API, served via ``httpx.MockTransport``.

    A release entry is either a ``releases/latest`` payload or an HTTP status
    code to fail with; download entries work the same way.
    """

    def __init__(self) -> None:
        self.releases: dict[str, dict[str, Any] | int] = {}
        self.downloads: dict[str, bytes | int] = {}
        self.requests: list[httpx.Request] = []

    def add_release(
        self,
        repo: str,
        tag: str,
        asset_names: Iterable[str],
        published_at: str = "2026-02-02T22:21:29Z",
    ) -> dict[str, Any]:
        assets = []
        for name in asset_names:
            url = f"{GITHUB_DOWNLOAD_URL}/{repo}/releases/download/{tag}/{name}"
            body = f"{repo}@{tag}:{name}".encode()
            self.downloads[url] = body
            assets.append({"name": name, "browser_download_url": url, "size": len(body)})
        payload = {"tag_name": tag, "published_at": published_at, "assets": assets}
        self.releases[repo] = payload
        return payload

    def fail_release(self, repo: str, status_code: int = 500) -> None:
        self.releases[repo] = status_code

    def download_url(self, repo: str, tag: str, name: str) -> str:
        return f"{GITHUB_DOWNLOAD_URL}/{repo}/releases/download/{tag}/{name}"

    @property
    def download_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "github.test"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "api.github.test":
            if path == "/rate_limit":
                return httpx.Response(
                    200,
                    json={"rate": {"limit": 5000, "remaining": 4990, "reset": 1767225600}},
                    headers=RATE_LIMIT_HEADERS,
                )
            if path.startswith("/repos/") and path.endswith("/releases/latest"):
                repo = path.removeprefix("/repos/").removesuffix("/releases/latest")
                entry = self.releases.get(repo)
                if entry is None:
                    return httpx.Response(404, json={"message": "Not Found"})
                if isinstance(entry, int):
                    return httpx.Response(entry, json={"message": "Server Error"})
                return httpx.Response(200, json=entry, headers=RATE_LIMIT_HEADERS)
            return httpx.Response(404, json={"message": "Not Found"})

        body = self.downloads.get(str(request.url))
        if body is None:
            return httpx.Response(404, text="Not Found")
        if isinstance(body, int):
            return httpx.Response(body, text="error")
        return httpx.Response(200, content=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> GitHubClient:
        return GitHubClient(api_url=GITHUB_API_URL, transport=self.transport)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths and a local object store."""
    db_path = tmp_path / "db" / "test.db"
    return Settings(
        _env_file=None,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        github_api_url=GITHUB_API_URL,
        storage_backend="local",
        local_storage_dir=tmp_path / "mirror",
        repos=["acme/widget:/downloads"],
        scheduler_enabled=False,
    )


@pytest.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Session factory over a fresh SQLite database with the schema created."""
    engine, factory = create_engine(test_settings)
    await create_schema(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def records(session_factory: async_sessionmaker[AsyncSession]) -> SyncRecordStore:
    return SyncRecordStore(SqlKeyValueStore(session_factory))


@pytest.fixture
def object_store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "mirror")


@pytest.fixture
def github_stub() -> GitHubStub:
    return GitHubStub()


@pytest.fixture
async def github_client(github_stub: GitHubStub) -> AsyncGenerator[GitHubClient]:
    client = github_stub.client()
    yield client
    await client.aclose()


@asynccontextmanager
async def create_test_app(
    settings: Settings,
    github_stub: GitHubStub | None = None,
    object_store: ObjectStore | None = None,
    environ: Mapping[str, str] | None = None,
) -> AsyncGenerator[FastAPI]:
    """Create a fully initialized app.

    Manually performs the work of the application lifespan (database schema,
    GitHub client, sync services) because ASGITransport does not trigger it.
    The scheduler is never started.
    """
    app = create_app(settings)
    settings.validate_runtime()

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    await create_schema(engine)

    if github_stub is None:
        github_stub = GitHubStub()
    github = github_stub.client()
    init_app_state(
        app,
        settings,
        session_factory,
        object_store,
        github,
        environ=environ if environ is not None else {},
    )

    yield app

    await app.state.orchestrator.wait_idle()
    await github.aclose()
    await engine.dispose()


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    github_stub: GitHubStub | None = None,
    object_store: ObjectStore | None = None,
    environ: Mapping[str, str] | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client over a fully initialized app."""
    async with (
        create_test_app(settings, github_stub, object_store, environ) as app,
        AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac,
    ):
        yield ac

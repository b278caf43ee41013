"""CLI client: trigger a mirror sync on a running server and follow its progress."""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Callable
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

import httpx

from backend.services.sync_service import SYNC_COMPLETE_MESSAGE, SYNC_FAILED_PREFIX

DEFAULT_SERVER_URL = "http://localhost:8000"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_SENTINEL = 2


class SyncOutcome(StrEnum):
    """How a streamed sync ended."""

    COMPLETE = "complete"
    FAILED = "failed"
    NO_SENTINEL = "no_sentinel"


class SyncRequestError(Exception):
    """The server refused to start a sync."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"Server returned {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def classify_line(line: str) -> SyncOutcome | None:
    """Return the outcome a sentinel line announces, or None for ordinary lines."""
    if line == SYNC_COMPLETE_MESSAGE:
        return SyncOutcome.COMPLETE
    if line.startswith(SYNC_FAILED_PREFIX):
        return SyncOutcome.FAILED
    return None


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        return response.text or response.reason_phrase
    return str(detail) if detail else response.reason_phrase


class MirrorClient:
    """Client for a release mirror server."""

    def __init__(
        self,
        server_url: str,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        # Passes can run for minutes between lines, so reads never time out.
        self.client = httpx.Client(
            base_url=self.server_url,
            timeout=httpx.Timeout(30.0, read=timeout),
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> MirrorClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def sync(self, repo: str | None = None, out: Callable[[str], None] = print) -> SyncOutcome:
        """Start a sync and print each progress line as it arrives.

        Raises:
            SyncRequestError: The server rejected the request.
            httpx.HTTPError: The connection failed.
        """
        params = {"repo": repo} if repo else None
        outcome = SyncOutcome.NO_SENTINEL
        with self.client.stream("POST", "/sync", params=params) as response:
            if response.status_code != 200:
                response.read()
                raise SyncRequestError(response.status_code, _error_detail(response))
            for line in response.iter_lines():
                if not line:
                    continue
                out(line)
                announced = classify_line(line)
                if announced is not None:
                    outcome = announced
        return outcome

    def status(self) -> dict[str, Any]:
        resp = self.client.get("/api/status")
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result


def format_status(status: dict[str, Any]) -> list[str]:
    """Render the ``/api/status`` payload as terminal lines."""
    lines: list[str] = []
    if status.get("error"):
        lines.append(f"Error: {status['error']}")
    if status.get("info"):
        lines.append(status["info"])
    lines.append(f"Last check: {status.get('last_check') or 'never'}")
    if status.get("is_syncing"):
        lines.append("A sync is in progress")
    for repo in status.get("repos", []):
        version = repo.get("version") or "-"
        path = repo.get("path") or "/"
        lines.append(
            f"  {repo['repo']:<40} {version:<16} {repo['status']:<8} "
            f"{repo.get('file_count', 0):>4} files  {path}"
        )
        message = repo.get("message")
        if message:
            lines.append(f"      {message}")
    return lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="release-mirror-sync",
        description="Trigger and follow release mirror syncs",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("RELEASE_MIRROR_URL", DEFAULT_SERVER_URL),
        help=f"Server URL (default: $RELEASE_MIRROR_URL or {DEFAULT_SERVER_URL})",
    )
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    sync_parser = subparsers.add_parser("sync", help="Run a sync and stream its output")
    sync_parser.add_argument("--repo", "-r", help="Only sync this owner/name repository")
    subparsers.add_parser("status", help="Show the sync status of every repository")
    return parser


def run(argv: list[str] | None = None, transport: httpx.BaseTransport | None = None) -> int:
    """Run the CLI and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return EXIT_FAILED

    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        return EXIT_FAILED

    with MirrorClient(server_url, transport=transport) as client:
        try:
            if args.command == "status":
                for line in format_status(client.status()):
                    print(line)
                return EXIT_OK

            outcome = client.sync(args.repo)
            if outcome is SyncOutcome.COMPLETE:
                return EXIT_OK
            if outcome is SyncOutcome.FAILED:
                return EXIT_FAILED

            print("Warning: the sync stream ended without a completion message; current status:")
            for line in format_status(client.status()):
                print(line)
            return EXIT_NO_SENTINEL
        except SyncRequestError as exc:
            print(f"Error: {exc.detail} (HTTP {exc.status_code})")
            return EXIT_FAILED
        except httpx.HTTPError as exc:
            print(f"Error: {exc}")
            return EXIT_FAILED


def main() -> None:
    """CLI entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()

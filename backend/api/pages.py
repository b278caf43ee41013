"""Human-readable status page."""

from __future__ import annotations

from html import escape
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from backend.api.deps import get_github, get_object_store, get_orchestrator, get_status_service
from backend.api.sync import build_status
from backend.github.client import GitHubClient
from backend.schemas.sync import StatusResponse
from backend.services.status_service import StatusService
from backend.services.sync_service import SyncOrchestrator
from backend.storage.base import ObjectStore

router = APIRouter(tags=["pages"])

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Release Mirror</title>
</head>
<body>
<h1>Release Mirror</h1>
{notices}
<p>Last check: {last_check}</p>
<p>{rate_limit}</p>
<table>
<thead>
<tr>
<th>Repository</th><th>Version</th><th>Updated</th><th>Path</th><th>Status</th><th>Files</th>
</tr>
</thead>
<tbody>
{rows}
</tbody>
</table>
</body>
</html>
"""


def render_status_page(status: StatusResponse) -> str:
    notices = []
    if status.error:
        notices.append(f'<p class="error">{escape(status.error)}</p>')
    if status.info:
        notices.append(f'<p class="info">{escape(status.info)}</p>')
    if status.is_syncing:
        notices.append('<p class="info">A sync is in progress.</p>')

    rows = []
    for repo in status.repos:
        updated = repo.last_update.isoformat() if repo.last_update else "-"
        rows.append(
            "<tr>"
            f"<td>{escape(repo.repo)}</td>"
            f"<td>{escape(repo.version or '-')}</td>"
            f"<td>{escape(updated)}</td>"
            f"<td>{escape(repo.path or '/')}</td>"
            f'<td title="{escape(repo.message)}">{escape(repo.status.value)}</td>'
            f"<td>{repo.file_count}</td>"
            "</tr>"
        )
    if not rows:
        rows.append('<tr><td colspan="6">No repositories configured</td></tr>')

    if status.api_rate_limit is not None:
        rate = status.api_rate_limit
        rate_limit = (
            f"GitHub API: {rate.remaining}/{rate.limit} remaining, "
            f"resets {escape(rate.reset.isoformat())}"
        )
    else:
        rate_limit = "GitHub API: unknown"

    return _PAGE_TEMPLATE.format(
        notices="\n".join(notices),
        last_check=escape(status.last_check.isoformat()) if status.last_check else "never",
        rate_limit=rate_limit,
        rows="\n".join(rows),
    )


@router.get("/", response_class=HTMLResponse)
async def status_page(
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    status_service: Annotated[StatusService, Depends(get_status_service)],
    github: Annotated[GitHubClient, Depends(get_github)],
    object_store: Annotated[ObjectStore | None, Depends(get_object_store)],
) -> HTMLResponse:
    """Status table of the configured repositories."""
    status = await build_status(orchestrator, status_service, github, object_store)
    return HTMLResponse(render_status_page(status))

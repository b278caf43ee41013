"""Ownership inference: does a stored object key belong to a repository?

Every function here is pure. The authoritative answer is always the
``file_paths`` list of the repository's sync record; these heuristics are
the fallback used for recovery and self-healing when that list is missing.
They are deliberately conservative: a key that matches no rule is presumed
not to belong, because a false positive leads to deleting another
repository's files.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

PLATFORM_LABELS = ("Windows", "macOS", "Linux", "Android", "Other")

_ANDROID_REPO_HINTS = ("android", "mobile", "app")
_WINDOWS_REPO_HINTS = ("win", "desktop", "pc")


def split_repo(repo: str) -> tuple[str, str]:
    """Split ``owner/name``. A missing part comes back as an empty string."""
    owner, _, name = repo.partition("/")
    return owner, name


def version_metadata_name(repo: str) -> str:
    """File name of the per-repository version metadata object."""
    return f"{repo.replace('/', '-')}-version.json"


def has_repo_token(file_name: str, repo_name: str) -> bool:
    """True when ``file_name`` carries ``_{repo_name}`` as an inserted token.

    The uploader inserts the token before the extension (``app_widget.exe``)
    or appends it when there is none (``tool_widget``).
    """
    if not repo_name:
        return False
    token = f"_{repo_name}"
    return (
        f"{token}." in file_name
        or f"{token}_" in file_name
        or file_name.endswith(token)
    )


def _platform_affinity_match(key: str, repo_name: str) -> bool:
    lowered_name = repo_name.lower()
    lowered_key = key.lower()

    if any(hint in lowered_name for hint in _ANDROID_REPO_HINTS) and (
        lowered_key.endswith(".apk") or "/Android/" in key or "android" in lowered_key
    ):
        return True

    return any(hint in lowered_name for hint in _WINDOWS_REPO_HINTS) and (
        lowered_key.endswith((".exe", ".msi")) or "/Windows/" in key or "win" in lowered_key
    )


def belongs_to(key: str, repo: str) -> bool:
    """Decide whether the object ``key`` was uploaded for ``repo``.

    Rules, any of which claims the key:

    1. ``owner/name/`` or ``owner-name`` appears in the key.
    2. The file name carries the ``_name`` disambiguation token.
    3. A platform folder and the repo name are adjacent
       (``Windows/name``, ``name/Windows`` or ``Windows/name-``).
    4. ``/name/``, ``/name-`` or ``-name.`` appears in the key.
    5. The key is the repository's version metadata file.
    6. The repo name suggests a platform (``*android*``, ``*app*``,
       ``*win*``, ...) and the key looks like that platform's artifact.
    """
    owner, name = split_repo(repo)
    if not name:
        return False

    file_name = key.rsplit("/", 1)[-1]
    if not file_name:
        return False

    if f"{owner}/{name}/" in key or f"{owner}-{name}" in key:
        return True

    if has_repo_token(file_name, name):
        return True

    for platform in PLATFORM_LABELS:
        if (
            f"{platform}/{name}" in key
            or f"{name}/{platform}" in key
            or f"{platform}/{name}-" in key
        ):
            return True

    if f"/{name}/" in key or f"/{name}-" in key or f"-{name}." in key:
        return True

    if key.endswith(version_metadata_name(repo)):
        return True

    return _platform_affinity_match(key, name)


def claimed_by_other_repo(key: str, repo: str, all_repos: Iterable[str]) -> str | None:
    """Return the first other repository whose heuristics also claim ``key``."""
    for other in all_repos:
        if other != repo and belongs_to(key, other):
            return other
    return None

"""Git repo scanner: classifies each repository by its local and remote sync state."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from config import GitCommandError, _run_git, _run_git_checked, discover_repos, get_root_dir
from models import Repository, ScanResult
from summary import aggregate

logger = logging.getLogger(__name__)


class RemoteQueryFailed(Exception):
    """The upstream of the current branch could not be queried. Never fatal."""


def scan_repo(path: Path) -> Repository:
    """Classify a single repository.

    Does not raise for an ordinary repository. Raises GitCommandError when the
    working tree state cannot be read (corrupt .git, timeout); scan_all records
    that in ScanResult.errors and leaves the repository out of every bucket.
    """
    has_uncommitted = _has_uncommitted_changes(path)

    remote_error = None
    has_upstream = True
    try:
        unpushed = _count_unpushed(path)
    except RemoteQueryFailed as e:
        logger.debug("%s: %s", path, e)
        remote_error = str(e)
        has_upstream = False
        unpushed = 0

    return Repository(
        path=path,
        name=path.name,
        has_uncommitted_changes=has_uncommitted,
        unpushed_count=unpushed,
        has_upstream=has_upstream,
        remote_error=remote_error,
    )


def _has_uncommitted_changes(path: Path) -> bool:
    """Working tree vs index, index vs HEAD, then untracked files.

    Raises GitCommandError when git cannot answer, so a broken or slow
    repository is reported as an error instead of being called dirty.
    """
    if _differs(path, ["diff", "--quiet"]):
        return True
    if _differs(path, ["diff", "--cached", "--quiet"]):
        return True
    untracked = _run_git_checked(path, ["ls-files", "--others", "--exclude-standard"])
    return bool(untracked)


def _differs(path: Path, args: list[str]) -> bool:
    # --quiet exits 1 when there is a difference; any other failure is real
    try:
        _run_git_checked(path, args)
    except GitCommandError as e:
        if e.returncode == 1 and not e.timed_out:
            return True
        raise
    return False


def upstream_ref(path: Path) -> str | None:
    """Name of the configured upstream (e.g. origin/main), or None."""
    return _run_git(path, ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"]) or None


def _count_unpushed(path: Path) -> int:
    """Commits reachable from HEAD but not from the upstream tip."""
    if upstream_ref(path) is None:
        raise RemoteQueryFailed("no upstream configured")
    output = _run_git(path, ["rev-list", "--count", "@{upstream}..HEAD"])
    if output is None:
        raise RemoteQueryFailed("could not count commits ahead of upstream")
    try:
        return int(output)
    except ValueError:
        raise RemoteQueryFailed(f"unexpected rev-list output: {output!r}")


def scan_all(root: Path | None = None, max_depth: int | None = None, workers: int = 1) -> ScanResult:
    """Walk root, classify every repository found and bucket the results.

    Raises FatalConfigError before visiting anything when root is not a directory.
    """
    start = time.monotonic()
    root = (root or get_root_dir()).absolute()
    paths = discover_repos(root, max_depth)
    errors: list[str] = []

    def _safe_scan(path: Path) -> Repository | None:
        try:
            logger.info("Checking repository: %s", path)
            return scan_repo(path)
        except Exception as e:
            errors.append(f"{path.name}: {type(e).__name__}: {e}")
            logger.warning("Failed to scan %s: %s", path, e)
            return None

    if workers > 1:
        # map() yields in submission order, so discovery order survives
        with ThreadPoolExecutor(max_workers=workers) as pool:
            scanned = list(pool.map(_safe_scan, paths))
    else:
        scanned = [_safe_scan(p) for p in paths]

    result = aggregate([r for r in scanned if r is not None], root=root)
    result.errors = errors
    result.duration_ms = int((time.monotonic() - start) * 1000)
    return result

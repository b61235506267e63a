"""Per-repository drill-down: branch, short status and unpushed commit log."""

from __future__ import annotations

from config import _run_git
from models import Repository


def detailed_status(repo: Repository) -> str:
    """Render the detailed status block for one repository. Read-only."""
    lines = [
        f"--- Detailed Status: {repo.name} ---",
        f"Current branch: {repo.current_branch}",
    ]

    if repo.has_uncommitted_changes:
        lines.append("Uncommitted changes:")
        short = _run_git(repo.path, ["status", "--short"]) or ""
        lines.extend(ln for ln in short.splitlines() if ln.strip())

    if repo.has_unpushed_commits:
        lines.append(f"Unpushed commits: {repo.unpushed_count}")
        log = _run_git(repo.path, ["log", "--oneline", "@{upstream}..HEAD"]) or ""
        lines.extend(ln for ln in log.splitlines() if ln.strip())

    return "\n".join(lines)

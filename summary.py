"""Bucket classified repositories and render the scan summary."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from models import Classification, Repository, ScanResult

ALL_CLEAN_MESSAGE = "All repositories are clean and up to date!"

# Display order and headings for the non-clean buckets
_SECTIONS = [
    (Classification.BOTH, "Repositories with BOTH uncommitted changes AND unpushed commits:"),
    (Classification.UNCOMMITTED_ONLY, "Repositories with uncommitted changes:"),
    (Classification.UNPUSHED_ONLY, "Repositories with unpushed commits:"),
]


def aggregate(repos: Iterable[Repository], root: Path | None = None) -> ScanResult:
    """Single pass over the repositories; discovery order is kept inside each bucket."""
    result = ScanResult(root=root)
    for repo in repos:
        result.bucket(repo.classification).append(repo)
        result.total += 1
    return result


def render_summary(result: ScanResult) -> str:
    lines = ["=== REPOSITORY STATUS SUMMARY ==="]
    if result.all_clean:
        lines.append(ALL_CLEAN_MESSAGE)
        return "\n".join(lines)

    for classification, heading in _SECTIONS:
        bucket = result.bucket(classification)
        if not bucket:
            continue
        lines.append("")
        lines.append(heading)
        lines.extend(f"  - {repo.path}" for repo in bucket)
    return "\n".join(lines)

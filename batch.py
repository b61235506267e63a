"""Batch commit-and-push across a selected set of non-clean repositories."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime

from config import GitCommandError, _run_git, _run_git_checked
from models import BatchOutcome, BatchReport, OutcomeStatus, Repository, Selection, SelectionKind
from scanner import RemoteQueryFailed, _count_unpushed

logger = logging.getLogger(__name__)

NO_REMOTE = "no-remote"
NOTHING_TO_DO = "nothing to do"
CANCELLED = "cancelled"
INTERRUPTED = "interrupted"


def commit_message(now: datetime) -> str:
    return f"Auto-commit: {now:%Y-%m-%d %H:%M:%S}"


def parse_selection(text: str) -> Selection:
    """Turn interactive input ("all", "1 3 4", "") into a Selection.

    Tokens that are not integers are dropped; range checking happens later
    in resolve_selection so ignored positions can be reported.
    """
    text = text.strip()
    if not text:
        return Selection.none()
    if text.lower() == "all":
        return Selection.all()
    indices = []
    for token in text.split():
        try:
            indices.append(int(token))
        except ValueError:
            logger.warning("Ignoring non-numeric selection %r", token)
    return Selection.of(*indices)


def resolve_selection(
    selection: Selection, candidates: Sequence[Repository]
) -> tuple[list[Repository], list[int]]:
    """Return (selected repositories, ignored indices).

    Out-of-range and repeated indices are ignored rather than failing the batch.
    """
    if selection.kind == SelectionKind.ALL:
        return list(candidates), []
    if selection.kind == SelectionKind.NONE:
        return [], []

    selected: list[Repository] = []
    ignored: list[int] = []
    used: set[int] = set()
    for index in selection.indices:
        if 1 <= index <= len(candidates) and index not in used:
            used.add(index)
            selected.append(candidates[index - 1])
        else:
            ignored.append(index)
    if ignored:
        logger.warning("Ignoring selection indices %s (valid range 1-%d)", ignored, len(candidates))
    return selected, ignored


def _push_target(repo: Repository) -> tuple[str, str] | None:
    """(remote, merge ref) configured for the current branch, or None."""
    branch = _run_git(repo.path, ["branch", "--show-current"])
    if not branch:
        return None
    remote = _run_git(repo.path, ["config", "--get", f"branch.{branch}.remote"])
    merge = _run_git(repo.path, ["config", "--get", f"branch.{branch}.merge"])
    if not remote or not merge:
        return None
    return remote, merge


def _plan(repo: Repository) -> str:
    if not repo.has_upstream:
        return f"dry-run: would commit ({NO_REMOTE})"
    if repo.has_uncommitted_changes:
        return "dry-run: would commit and push"
    return "dry-run: would push"


def process_repo(repo: Repository, now: datetime, dry_run: bool = False) -> BatchOutcome:
    """Commit then push one repository. Failures stay inside this repository."""

    def outcome(status: OutcomeStatus, reason: str | None = None, **flags: bool) -> BatchOutcome:
        return BatchOutcome(path=repo.path, name=repo.name, status=status, reason=reason, **flags)

    if not repo.has_uncommitted_changes and not repo.has_unpushed_commits:
        return outcome(OutcomeStatus.SKIPPED, NOTHING_TO_DO)
    if dry_run:
        return outcome(OutcomeStatus.SKIPPED, _plan(repo))

    logger.info("Processing: %s", repo.name)
    committed = False
    if repo.has_uncommitted_changes:
        try:
            logger.info("  Adding and committing changes...")
            _run_git_checked(repo.path, ["add", "-A"])
            _run_git_checked(repo.path, ["commit", "-m", commit_message(now)])
            committed = True
        except GitCommandError as e:
            logger.error("  Commit failed for %s: %s", repo.name, e)
            return outcome(OutcomeStatus.FAILED, "timeout" if e.timed_out else e.stderr or str(e))

    target = _push_target(repo)
    if target is None:
        logger.info("  No upstream configured for %s, not pushing", repo.name)
        return outcome(OutcomeStatus.SKIPPED, NO_REMOTE, committed=committed)

    try:
        ahead = _count_unpushed(repo.path)
    except RemoteQueryFailed:
        # A fresh commit is by definition ahead of the upstream
        ahead = 1 if committed else 0

    if ahead > 0:
        remote, merge = target
        try:
            logger.info("  Pushing to %s...", remote)
            _run_git_checked(repo.path, ["push", remote, f"HEAD:{merge}"])
        except GitCommandError as e:
            logger.error("  Push failed for %s: %s", repo.name, e)
            return outcome(
                OutcomeStatus.FAILED, "timeout" if e.timed_out else e.stderr or str(e), committed=committed
            )
        logger.info("  %s completed", repo.name)
        return outcome(OutcomeStatus.PUSHED, committed=committed, pushed=True)

    if committed:
        return outcome(OutcomeStatus.COMMITTED, committed=True)
    return outcome(OutcomeStatus.SKIPPED, NOTHING_TO_DO)


def apply_batch(
    selection: Selection,
    candidates: Sequence[Repository],
    dry_run: bool = True,
    clock: Callable[[], datetime] = datetime.now,
    cancel: threading.Event | None = None,
) -> BatchReport:
    """Apply commit-then-push to the selected repositories, one after another.

    Dry-run is the default. Setting ``cancel`` stops before the next
    repository; anything already committed or pushed stays that way.
    Ctrl-C while a repository is being processed marks that repository
    failed ("interrupted") and the rest cancelled, and the partial report
    is still returned.
    """
    selected, ignored = resolve_selection(selection, candidates)
    report = BatchReport(ignored=ignored)
    for repo in selected:
        if report.interrupted or (cancel is not None and cancel.is_set()):
            report.outcomes.append(
                BatchOutcome(path=repo.path, name=repo.name, status=OutcomeStatus.SKIPPED, reason=CANCELLED)
            )
            continue
        try:
            report.outcomes.append(process_repo(repo, clock(), dry_run=dry_run))
        except KeyboardInterrupt:
            logger.warning("Interrupted while processing %s; cancelling the remaining repositories", repo.name)
            report.interrupted = True
            report.outcomes.append(
                BatchOutcome(path=repo.path, name=repo.name, status=OutcomeStatus.FAILED, reason=INTERRUPTED)
            )
    return report

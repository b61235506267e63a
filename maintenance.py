"""Scheduled maintenance. Lints every repository under the configured roots and can fix, commit and push.

Designed for cron. Each check, fix and push is recorded as a MaintenanceEvent;
the log file and the emailed report are both rendered from those events.
"""

from __future__ import annotations

import logging
import re
import smtplib
import subprocess
from collections.abc import Callable
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path

from config import GitCommandError, MaintenanceSettings, _run_git, _run_git_checked, get_git_timeout, walk_repos
from models import EventAction, MaintenanceEvent, MaintenanceSummary
from scanner import scan_repo

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ISSUES_RE = re.compile(r"Total issues found:\s*(\d+)")

FIX_COMMIT_MESSAGE = """Auto-fix whitespace issues

- Remove trailing whitespace
- Convert whitespace-only lines to empty lines
- Fixed by repo-maintenance on {now:%Y-%m-%d %H:%M:%S}"""


class ParseFailure(ValueError):
    """Linter output carried no 'Total issues found' line."""


def parse_issue_count(output: str) -> int:
    """Extract the issue total from linter output. Raises ParseFailure when absent."""
    match = _ISSUES_RE.search(output)
    if not match:
        raise ParseFailure("no 'Total issues found' line in linter output")
    return int(match.group(1))


def configure_logging(log_file: Path, quiet: bool = False) -> list[logging.Handler]:
    """Send this module's records to the console and to an append-only log file.

    Returns the handlers so the caller can detach them when the run ends.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    console = logging.StreamHandler()
    console.setLevel(logging.WARNING if quiet else logging.INFO)
    console.setFormatter(formatter)
    logger.addHandler(console)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    handlers: list[logging.Handler] = [console]

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        logger.warning("Cannot open log file %s: %s", log_file, e)
        return handlers
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    handlers.append(file_handler)
    return handlers


def detach_logging(handlers: list[logging.Handler]) -> None:
    for handler in handlers:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


class Journal:
    """Collects structured events and mirrors each one to the log."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self.events: list[MaintenanceEvent] = []

    def record(self, repository: str, action: EventAction, message: str, issue_count: int = 0) -> MaintenanceEvent:
        event = MaintenanceEvent(
            timestamp=self.clock(),
            repository=repository,
            action=action,
            issue_count=issue_count,
            message=message,
        )
        self.events.append(event)
        level = logging.WARNING if action in (EventAction.FIX_FAILED, EventAction.MISSING_DIR) else logging.INFO
        logger.log(level, "%s", message)
        return event


def run_linter(tool: str, repo_path: Path, fix: bool = False) -> subprocess.CompletedProcess[str] | None:
    """Run the whitespace linter (-q report, -f fix) recursively over repo_path.

    Returns None when the tool is missing or times out.
    """
    args = [tool, "-f" if fix else "-q", "-r", str(repo_path)]
    try:
        return subprocess.run(
            args,
            cwd=str(repo_path),
            capture_output=True,
            text=True,
            timeout=get_git_timeout() * 30,
        )
    except subprocess.TimeoutExpired:
        logger.error("Linter timed out in %s", repo_path)
        return None
    except OSError as e:
        logger.error("Cannot run linter %s: %s", tool, e)
        return None


def _commit_and_push_fix(repo_path: Path, journal: Journal) -> None:
    name = repo_path.name
    if _run_git(repo_path, ["diff", "--quiet"]) is not None:
        return
    try:
        _run_git_checked(repo_path, ["add", "-A"])
        _run_git_checked(repo_path, ["commit", "-m", FIX_COMMIT_MESSAGE.format(now=journal.clock())])
        journal.record(name, EventAction.COMMITTED, f"Committed whitespace fixes for {name}")
        if _run_git(repo_path, ["remote"]):
            _run_git_checked(repo_path, ["push"])
            journal.record(name, EventAction.PUSHED, f"Pushed whitespace fixes for {name}")
    except GitCommandError as e:
        journal.record(name, EventAction.FIX_FAILED, f"Failed to commit or push fixes in {name}: {e}")


def check_repository(repo_path: Path, settings: MaintenanceSettings, journal: Journal) -> int:
    """Lint one repository, fixing when enabled. Returns the issue count found."""
    name = repo_path.name
    try:
        state = scan_repo(repo_path).classification.value
    except GitCommandError as e:
        logger.warning("Could not classify %s: %s", name, e)
        state = "unknown"
    journal.record(name, EventAction.CHECKED, f"Checking repository: {name} ({state})")

    result = run_linter(settings.whitespace_linter, repo_path)
    output = (result.stdout + result.stderr) if result else ""
    try:
        issues = parse_issue_count(output)
    except ParseFailure as e:
        journal.record(name, EventAction.PARSE_FAILED, f"Could not read issue count for {name}: {e}")
        issues = 0

    if issues == 0:
        journal.record(name, EventAction.CLEAN, f"Repository {name} is clean")
        return 0

    journal.record(
        name, EventAction.ISSUES_FOUND, f"Repository {name} has {issues} whitespace issues", issue_count=issues
    )
    if settings.auto_fix:
        logger.info("Auto-fixing issues in %s", name)
        fixed = run_linter(settings.whitespace_linter, repo_path, fix=True)
        if fixed is not None and fixed.returncode == 0:
            journal.record(name, EventAction.FIXED, f"Successfully fixed issues in {name}", issue_count=issues)
            _commit_and_push_fix(repo_path, journal)
        else:
            journal.record(name, EventAction.FIX_FAILED, f"Failed to fix issues in {name}")
    return issues


def run_maintenance(settings: MaintenanceSettings, clock: Callable[[], datetime] = datetime.now) -> MaintenanceSummary:
    journal = Journal(clock)
    summary = MaintenanceSummary(auto_fix=settings.auto_fix)

    logger.info("Starting whitespace maintenance")
    logger.info("Directories: %s", ",".join(str(d) for d in settings.repo_dirs))
    logger.info("Auto-fix: %s", str(settings.auto_fix).lower())

    for directory in settings.repo_dirs:
        if not directory.is_dir():
            journal.record(str(directory), EventAction.MISSING_DIR, f"Warning: Directory {directory} does not exist")
            continue
        for repo_path in walk_repos(directory.absolute()):
            summary.total_repos += 1
            issues = check_repository(repo_path, settings, journal)
            if issues > 0:
                summary.repos_with_issues += 1
                summary.total_issues += issues

    summary.events = journal.events
    logger.info(
        "Maintenance complete. Checked %d repositories, %d had issues",
        summary.total_repos,
        summary.repos_with_issues,
    )
    return summary


def render_report(summary: MaintenanceSummary, now: datetime) -> str:
    """Markdown report built from the run's events."""
    lines = [
        "# Whitespace Maintenance Report",
        f"Generated: {now:%Y-%m-%d %H:%M:%S}",
        "",
        "## Summary",
        f"- Total repositories checked: {summary.total_repos}",
        f"- Repositories with issues: {summary.repos_with_issues}",
        f"- Total issues found: {summary.total_issues}",
        "",
    ]

    found = summary.events_for(EventAction.ISSUES_FOUND)
    if found:
        lines.append("## Repositories with Issues")
        lines.extend(f"- {e.repository}: {e.issue_count} issues" for e in found)
        lines.append("")

    if summary.auto_fix:
        lines.append("## Auto-fix Results")
        fixed = summary.events_for(EventAction.FIXED)
        if fixed:
            lines.extend(f"- {e.repository}" for e in fixed)
        else:
            lines.append("- No fixes applied")
        lines.append("")

    lines.append("## Recommendations")
    if summary.repos_with_issues > 0:
        lines.append("- Consider setting up pre-commit hooks to prevent future issues")
        lines.append("- Run the linter regularly to catch issues early")
        if not summary.auto_fix:
            lines.append("- Use the -f flag to automatically fix issues")
    else:
        lines.append("- All repositories are clean! Great job!")
    return "\n".join(lines)


def send_report(report: str, settings: MaintenanceSettings, now: datetime) -> bool:
    """Email the report. Failures are logged and reported as False."""
    if not settings.email_address:
        return False

    msg = EmailMessage()
    msg["Subject"] = f"Whitespace Maintenance Report - {now:%Y-%m-%d}"
    msg["From"] = f"repo-maintenance@{settings.smtp_host}"
    msg["To"] = settings.email_address
    msg.set_content(report)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
            server.send_message(msg)
    except (OSError, smtplib.SMTPException) as e:
        logger.error("Failed to send email report to %s: %s", settings.email_address, e)
        return False
    logger.info("Email report sent to %s", settings.email_address)
    return True

"""Maintenance driver with a fake whitespace linter."""

import shutil
from datetime import datetime
from pathlib import Path

import pytest

import maintenance
from conftest import git, requires_git
from config import MaintenanceSettings
from maintenance import ParseFailure, parse_issue_count, render_report, run_maintenance, send_report
from models import EventAction, MaintenanceEvent, MaintenanceSummary

NOW = datetime(2024, 5, 6, 7, 8, 9)

FAKE_LINTER = """#!/bin/sh
if [ "$1" = "-f" ]; then
  printf 'hello\\n' > "$3/README.md"
  exit 0
fi
echo "Checking $3"
echo "Total issues found: 3"
"""


@pytest.fixture
def linter(tmp_path) -> str:
    script = tmp_path / "whitespace-linter.sh"
    script.write_text(FAKE_LINTER)
    script.chmod(0o755)
    return str(script)


def _settings(dirs, linter: str, **kwargs) -> MaintenanceSettings:
    return MaintenanceSettings(repo_dirs=list(dirs), whitespace_linter=linter, log_file=Path("unused.log"), **kwargs)


def test_parse_issue_count() -> None:
    assert parse_issue_count("scanning...\nTotal issues found: 12\n") == 12
    assert parse_issue_count("Total issues found:0") == 0


def test_parse_issue_count_without_anchor_raises() -> None:
    with pytest.raises(ParseFailure):
        parse_issue_count("linter crashed")


def test_exit_code_contract() -> None:
    assert MaintenanceSummary(repos_with_issues=2).exit_code == 1
    assert MaintenanceSummary(repos_with_issues=2, auto_fix=True).exit_code == 0
    assert MaintenanceSummary(repos_with_issues=0).exit_code == 0


def test_missing_directory_is_recorded_and_skipped(tmp_path, linter) -> None:
    summary = run_maintenance(_settings([tmp_path / "nope"], linter), clock=lambda: NOW)

    assert summary.total_repos == 0
    assert [e.action for e in summary.events] == [EventAction.MISSING_DIR]
    assert summary.exit_code == 0


@requires_git
@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
def test_issues_without_fix_fail_the_run(make_repo, tmp_path, linter) -> None:
    fleet = tmp_path / "fleet"
    path = make_repo(fleet / "messy", state="uncommitted")
    before = (path / "README.md").read_text()

    summary = run_maintenance(_settings([fleet], linter), clock=lambda: NOW)

    assert summary.total_repos == 1
    assert summary.repos_with_issues == 1
    assert summary.total_issues == 3
    assert summary.exit_code == 1
    assert [e.action for e in summary.events] == [EventAction.CHECKED, EventAction.ISSUES_FOUND]
    assert "uncommitted_only" in summary.events[0].message
    assert (path / "README.md").read_text() == before


@requires_git
@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
def test_auto_fix_commits_and_pushes(make_repo, tmp_path, linter, upstream_of) -> None:
    fleet = tmp_path / "fleet"
    path = make_repo(fleet / "messy")
    (path / "README.md").write_text("hello   \n")
    git(path, "commit", "-q", "-am", "trailing spaces")
    git(path, "push", "-q")

    summary = run_maintenance(_settings([fleet], linter, auto_fix=True), clock=lambda: NOW)

    actions = [e.action for e in summary.events]
    assert actions == [
        EventAction.CHECKED,
        EventAction.ISSUES_FOUND,
        EventAction.FIXED,
        EventAction.COMMITTED,
        EventAction.PUSHED,
    ]
    assert summary.exit_code == 0
    assert git(path, "log", "-1", "--format=%s") == "Auto-fix whitespace issues"
    assert git(upstream_of(path), "rev-parse", "HEAD") == git(path, "rev-parse", "HEAD")


@requires_git
def test_unparseable_linter_output_counts_as_clean(make_repo, tmp_path) -> None:
    fleet = tmp_path / "fleet"
    make_repo(fleet / "repo")

    summary = run_maintenance(_settings([fleet], str(tmp_path / "no-such-linter")), clock=lambda: NOW)

    assert summary.repos_with_issues == 0
    assert EventAction.PARSE_FAILED in [e.action for e in summary.events]
    assert summary.exit_code == 0


def test_render_report_from_events() -> None:
    summary = MaintenanceSummary(
        total_repos=2,
        repos_with_issues=1,
        total_issues=4,
        auto_fix=True,
        events=[
            MaintenanceEvent(timestamp=NOW, repository="messy", action=EventAction.ISSUES_FOUND, issue_count=4),
            MaintenanceEvent(timestamp=NOW, repository="messy", action=EventAction.FIXED, issue_count=4),
        ],
    )

    text = render_report(summary, NOW)

    assert text.startswith("# Whitespace Maintenance Report\nGenerated: 2024-05-06 07:08:09")
    assert "- Total repositories checked: 2" in text
    assert "- Total issues found: 4" in text
    assert "## Repositories with Issues\n- messy: 4 issues" in text
    assert "## Auto-fix Results\n- messy" in text
    assert "Use the -f flag" not in text


def test_render_report_all_clean() -> None:
    text = render_report(MaintenanceSummary(total_repos=3), NOW)

    assert "Repositories with Issues" not in text
    assert "Auto-fix Results" not in text
    assert "- All repositories are clean! Great job!" in text


class _FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def send_message(self, msg):
        self.sent.append((self.host, self.port, msg))


def test_send_report_uses_smtp(monkeypatch) -> None:
    _FakeSMTP.sent = []
    monkeypatch.setattr(maintenance.smtplib, "SMTP", _FakeSMTP)
    settings = MaintenanceSettings(repo_dirs=[], email_address="ops@example.com", smtp_host="mail.local")

    assert send_report("body text", settings, NOW)

    [(host, port, msg)] = _FakeSMTP.sent
    assert (host, port) == ("mail.local", 25)
    assert msg["To"] == "ops@example.com"
    assert msg["Subject"] == "Whitespace Maintenance Report - 2024-05-06"
    assert "body text" in msg.get_content()


def test_send_report_failure_is_not_fatal(monkeypatch) -> None:
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("no smtp here")

    monkeypatch.setattr(maintenance.smtplib, "SMTP", refuse)
    settings = MaintenanceSettings(repo_dirs=[], email_address="ops@example.com")

    assert send_report("body", settings, NOW) is False


def test_send_report_without_address_does_nothing() -> None:
    assert send_report("body", MaintenanceSettings(repo_dirs=[]), NOW) is False


@requires_git
@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
def test_unreadable_repository_is_still_linted(tmp_path, linter, monkeypatch) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    fleet = tmp_path / "fleet"
    (fleet / "broken" / ".git").mkdir(parents=True)

    summary = run_maintenance(_settings([fleet], linter), clock=lambda: NOW)

    assert summary.total_repos == 1
    assert [e.action for e in summary.events] == [EventAction.CHECKED, EventAction.ISSUES_FOUND]
    assert summary.events[0].message == "Checking repository: broken (unknown)"

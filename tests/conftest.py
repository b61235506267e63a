"""Fixtures for building throw-away git repositories with a bare upstream."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=str(cwd), check=True, capture_output=True, text=True)
    return result.stdout.strip()


@pytest.fixture(autouse=True)
def isolated_git(monkeypatch, tmp_path_factory) -> None:
    """Keep the developer's git config (signing, hooks, identity) out of the tests."""
    gitconfig = tmp_path_factory.mktemp("gitconfig") / "config"
    gitconfig.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Repo Audit")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "audit@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Repo Audit")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "audit@example.com")


SETTINGS_ENV = (
    "REPO_AUDIT_ROOT",
    "REPO_AUDIT_MAX_DEPTH",
    "REPO_AUDIT_GIT_TIMEOUT",
    "REPO_AUDIT_SCAN_INTERVAL",
    "REPO_DIRS",
    "AUTO_FIX",
    "LOG_FILE",
    "EMAIL_REPORT",
    "EMAIL_ADDRESS",
    "WHITESPACE_LINTER",
    "SMTP_HOST",
    "SMTP_PORT",
    "QUIET",
)


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch) -> None:
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_repo(tmp_path):
    """Create a repository with one commit, optionally tracking a bare upstream.

    state: "clean" | "uncommitted" | "unpushed" | "both"
    """
    remotes = tmp_path / "_remotes"

    def _make(path: Path, state: str = "clean", upstream: bool = True) -> Path:
        path.mkdir(parents=True)
        git(path, "init", "-q")
        (path / "README.md").write_text("hello\n")
        git(path, "add", "README.md")
        git(path, "commit", "-q", "-m", "initial")

        if upstream:
            bare = remotes / f"{path.name}.git"
            bare.mkdir(parents=True)
            git(bare, "init", "-q", "--bare")
            git(path, "remote", "add", "origin", str(bare))
            git(path, "push", "-q", "-u", "origin", "HEAD")

        if state in ("unpushed", "both"):
            (path / "notes.txt").write_text("local work\n")
            git(path, "add", "notes.txt")
            git(path, "commit", "-q", "-m", "local work")
        if state in ("uncommitted", "both"):
            (path / "README.md").write_text("hello, edited\n")
        return path

    return _make


@pytest.fixture
def upstream_of(tmp_path):
    def _bare(repo: Path) -> Path:
        return tmp_path / "_remotes" / f"{repo.name}.git"

    return _bare

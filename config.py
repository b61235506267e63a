"""Settings, git helpers and repo discovery (walks a root directory for git repositories)."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

# Directories never descended into while walking
EXCLUDED_DIRS = frozenset({".git", "node_modules", ".venv", "venv", "__pycache__", ".tox"})

DEFAULT_MAX_DEPTH = 10
DEFAULT_GIT_TIMEOUT = 10.0
DEFAULT_SCAN_INTERVAL = 30
DEFAULT_LOG_FILE = Path("/var/log/whitespace-maintenance.log")
DEFAULT_LINTER = "whitespace-linter.sh"


class FatalConfigError(ValueError):
    """Raised when the scan root or a setting is unusable. Aborts the whole run."""


class GitCommandError(Exception):
    """A git command exited non-zero or timed out."""

    def __init__(self, args: list[str], cwd: Path, returncode: int | None, stderr: str, timed_out: bool = False):
        self.git_args = args
        self.cwd = cwd
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        reason = "timed out" if timed_out else stderr or f"exit status {returncode}"
        super().__init__(f"git {' '.join(args)} failed in {cwd}: {reason}")


class AuditSettings(BaseSettings):
    """Scanner and API settings, read from REPO_AUDIT_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="REPO_AUDIT_")

    root: Path | None = None
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=0)
    git_timeout: float = Field(default=DEFAULT_GIT_TIMEOUT, gt=0)
    scan_interval: int = Field(default=DEFAULT_SCAN_INTERVAL, gt=0)


def get_audit_settings(**overrides) -> AuditSettings:
    """Environment values, with any keyword overrides taking precedence.

    Raises FatalConfigError when a value cannot be parsed.
    """
    try:
        return AuditSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        raise FatalConfigError(f"Invalid configuration: {e}") from e


def get_root_dir(override: str | None = None) -> Path:
    """Get the root directory to scan for repos, as an absolute path.

    Priority: override > REPO_AUDIT_ROOT env var > current directory
    """
    root = get_audit_settings(root=override or None).root
    if root is None:
        return Path.cwd()
    return root.resolve()


def get_max_depth(override: int | None = None) -> int:
    return get_audit_settings(max_depth=override).max_depth


def get_git_timeout() -> float:
    """Seconds any single git invocation may run before it is abandoned."""
    return get_audit_settings().git_timeout


def get_scan_interval() -> int:
    return get_audit_settings().scan_interval


def split_dirs(value: str) -> list[Path]:
    """Split a comma-separated directory list, trimming whitespace around each entry."""
    return [Path(part.strip()) for part in value.split(",") if part.strip()]


class MaintenanceSettings(BaseSettings):
    """Configuration for the scheduled whitespace maintenance run.

    Field names double as environment variable names (REPO_DIRS, AUTO_FIX,
    LOG_FILE, EMAIL_REPORT, EMAIL_ADDRESS, WHITESPACE_LINTER, SMTP_HOST,
    SMTP_PORT). REPO_DIRS is a comma-separated list.
    """

    repo_dirs: Annotated[list[Path], NoDecode] = Field(default_factory=lambda: [Path.cwd()])
    auto_fix: bool = False
    log_file: Path = DEFAULT_LOG_FILE
    email_report: bool = False
    email_address: str | None = None
    whitespace_linter: str = DEFAULT_LINTER
    smtp_host: str = "localhost"
    smtp_port: int = 25
    quiet: bool = False

    @field_validator("repo_dirs", mode="before")
    @classmethod
    def _split_repo_dirs(cls, value):
        if isinstance(value, str):
            return split_dirs(value)
        return value

    @field_validator("email_address", mode="before")
    @classmethod
    def _blank_address_is_none(cls, value):
        return value or None


def get_maintenance_settings(
    dirs: str | None = None,
    auto_fix: bool | None = None,
    log_file: str | None = None,
    email_address: str | None = None,
    quiet: bool = False,
) -> MaintenanceSettings:
    """Build maintenance settings. Explicit arguments win over environment variables.

    An address given on the command line also turns report emission on;
    EMAIL_ADDRESS alone does not.
    """
    overrides: dict = {"quiet": quiet}
    if dirs:
        overrides["repo_dirs"] = dirs
    if auto_fix:
        overrides["auto_fix"] = True
    if log_file:
        overrides["log_file"] = log_file
    if email_address:
        overrides["email_address"] = email_address
        overrides["email_report"] = True
    try:
        return MaintenanceSettings(**overrides)
    except ValidationError as e:
        raise FatalConfigError(f"Invalid configuration: {e}") from e


def _run_git_checked(repo_path: Path, args: list[str]) -> str:
    """Run a git command in a repo directory, returning stdout; raise GitCommandError on failure."""
    try:
        result = subprocess.run(
            ["git", "-C", str(repo_path)] + args,
            capture_output=True,
            text=True,
            timeout=get_git_timeout(),
        )
    except subprocess.TimeoutExpired:
        logger.warning("git %s timed out in %s", " ".join(args), repo_path)
        raise GitCommandError(args, repo_path, None, "", timed_out=True)
    except FileNotFoundError:
        raise GitCommandError(args, repo_path, None, "git executable not found")
    if result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip()
        raise GitCommandError(args, repo_path, result.returncode, stderr)
    return result.stdout.strip()


def _run_git(repo_path: Path, args: list[str]) -> str | None:
    """Run a git command in a repo directory, returning stdout or None on error."""
    try:
        return _run_git_checked(repo_path, args)
    except GitCommandError as e:
        logger.debug("%s", e)
        return None


def is_repo_root(path: Path) -> bool:
    """A .git directory marks a primary checkout, a .git file a worktree or submodule."""
    return (path / ".git").exists()


def walk_repos(root: Path, max_depth: int = DEFAULT_MAX_DEPTH) -> Iterator[Path]:
    """Yield git repositories below root in sorted listing order.

    A repository is a leaf: it is yielded and never descended into. Branches
    deeper than max_depth yield nothing, which also bounds symlink cycles.
    """
    seen: set[Path] = set()
    yield from _walk(root, 0, max_depth, seen)


def _walk(directory: Path, depth: int, max_depth: int, seen: set[Path]) -> Iterator[Path]:
    if depth > max_depth:
        return
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        logger.warning("Skipping unreadable directory %s: %s", directory, e)
        return

    for entry in entries:
        try:
            if not entry.is_dir():
                continue
            if is_repo_root(entry):
                real = entry.resolve()
                if real not in seen:
                    seen.add(real)
                    yield entry
                continue
            if entry.name in EXCLUDED_DIRS:
                continue
        except OSError as e:
            logger.warning("Skipping %s: %s", entry, e)
            continue
        yield from _walk(entry, depth + 1, max_depth, seen)


def check_root(root: Path) -> None:
    """Raise FatalConfigError unless root is an existing directory."""
    if not root.exists():
        raise FatalConfigError(f"Directory '{root}' does not exist")
    if not root.is_dir():
        raise FatalConfigError(f"'{root}' is not a directory")


def discover_repos(root: Path | None = None, max_depth: int | None = None) -> list[Path]:
    """Validate the root and return every repository below it, in discovery order."""
    root = (root or get_root_dir()).absolute()
    check_root(root)
    return list(walk_repos(root, get_max_depth(max_depth)))

"""Pydantic models for scan results, batch outcomes and maintenance events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, Field, computed_field

from config import _run_git


class Classification(str, Enum):
    """Synchronization state of a repository relative to its upstream."""

    CLEAN = "clean"
    UNCOMMITTED_ONLY = "uncommitted_only"
    UNPUSHED_ONLY = "unpushed_only"
    BOTH = "both"


def classify(has_uncommitted_changes: bool, has_unpushed_commits: bool) -> Classification:
    if has_uncommitted_changes and has_unpushed_commits:
        return Classification.BOTH
    if has_uncommitted_changes:
        return Classification.UNCOMMITTED_ONLY
    if has_unpushed_commits:
        return Classification.UNPUSHED_ONLY
    return Classification.CLEAN


class Repository(BaseModel):
    """Git synchronization state for a single discovered repository."""

    path: Path
    name: str
    has_uncommitted_changes: bool = False
    unpushed_count: int = Field(default=0, ge=0)
    has_upstream: bool = False
    remote_error: str | None = None  # set when the upstream query failed

    @property
    def has_unpushed_commits(self) -> bool:
        return self.unpushed_count > 0

    @property
    def classification(self) -> Classification:
        return classify(self.has_uncommitted_changes, self.has_unpushed_commits)

    @computed_field  # type: ignore[prop-decorator]
    @cached_property
    def current_branch(self) -> str:
        """Checked-out branch, resolved from git on first access."""
        branch = _run_git(self.path, ["branch", "--show-current"])
        if branch is None:
            return "unknown"
        return branch or "HEAD"


class ScanResult(BaseModel):
    """Repositories from one scan pass, bucketed by classification."""

    root: Path | None = None
    clean: list[Repository] = Field(default_factory=list)
    uncommitted_only: list[Repository] = Field(default_factory=list)
    unpushed_only: list[Repository] = Field(default_factory=list)
    both: list[Repository] = Field(default_factory=list)
    total: int = 0
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)

    def bucket(self, classification: Classification) -> list[Repository]:
        return getattr(self, classification.value)

    def non_clean(self) -> list[Repository]:
        """Actionable repositories in display order: both, uncommitted, unpushed."""
        return self.both + self.uncommitted_only + self.unpushed_only

    @property
    def all_clean(self) -> bool:
        return not (self.both or self.uncommitted_only or self.unpushed_only)


class SelectionKind(str, Enum):
    ALL = "all"
    INDICES = "indices"
    NONE = "none"


class Selection(BaseModel):
    """Which of the displayed non-clean repositories a batch should touch."""

    kind: SelectionKind
    indices: list[int] = Field(default_factory=list)  # 1-based, in the order given

    @classmethod
    def all(cls) -> Selection:
        return cls(kind=SelectionKind.ALL)

    @classmethod
    def none(cls) -> Selection:
        return cls(kind=SelectionKind.NONE)

    @classmethod
    def of(cls, *indices: int) -> Selection:
        return cls(kind=SelectionKind.INDICES, indices=list(indices))


class OutcomeStatus(str, Enum):
    COMMITTED = "committed"
    PUSHED = "pushed"
    SKIPPED = "skipped"
    FAILED = "failed"


class BatchOutcome(BaseModel):
    """Result of the commit-then-push step for one repository."""

    path: Path
    name: str
    status: OutcomeStatus
    reason: str | None = None  # "no-remote", "nothing to do", "cancelled", git stderr...
    committed: bool = False
    pushed: bool = False


class BatchReport(BaseModel):
    """Everything one batch produced: per-repository outcomes plus the selection indices it ignored."""

    outcomes: list[BatchOutcome] = []
    ignored: list[int] = []
    interrupted: bool = False

    @property
    def failed(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]


class EventAction(str, Enum):
    CHECKED = "checked"
    CLEAN = "clean"
    ISSUES_FOUND = "issues_found"
    PARSE_FAILED = "parse_failed"
    FIXED = "fixed"
    FIX_FAILED = "fix_failed"
    COMMITTED = "committed"
    PUSHED = "pushed"
    MISSING_DIR = "missing_dir"


class MaintenanceEvent(BaseModel):
    """One structured record emitted by the maintenance driver."""

    timestamp: datetime
    repository: str
    action: EventAction
    issue_count: int = 0
    message: str = ""


class MaintenanceSummary(BaseModel):
    """Totals and events for one maintenance run."""

    total_repos: int = 0
    repos_with_issues: int = 0
    total_issues: int = 0
    auto_fix: bool = False
    events: list[MaintenanceEvent] = Field(default_factory=list)

    @property
    def exit_code(self) -> int:
        """Non-zero exactly when issues remain and nothing tried to fix them."""
        return 1 if self.repos_with_issues > 0 and not self.auto_fix else 0

    def events_for(self, action: EventAction) -> list[MaintenanceEvent]:
        return [e for e in self.events if e.action == action]


class OverviewStats(BaseModel):
    """Summary statistics across all repos."""

    total_repos: int
    clean_repos: int
    uncommitted_only: int
    unpushed_only: int
    both: int
    all_clean: bool
    last_scanned: str


class ScanStats(BaseModel):
    """Result of a manual or scheduled rescan."""

    repos_scanned: int
    scan_duration_ms: int
    errors: list[str]

"""FastAPI app for repo-audit: read-only view of the latest fleet scan."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from config import get_root_dir, get_scan_interval
from models import OverviewStats, Repository, ScanResult, ScanStats
from report import detailed_status
from scanner import scan_all

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: initial scan + background polling. Shutdown: cancel polling."""
    logger.info("Running initial scan...")
    _run_scan()
    logger.info("Initial scan complete: %d repos", _result.total)
    task = asyncio.create_task(_background_scanner())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="Repo Audit",
    description="Synchronization state of every git repository under a root directory",
    version="0.1.0",
    lifespan=lifespan,
)

# In-memory state, replaced wholesale by each scan
_result: ScanResult = ScanResult()
_last_scan: str = ""


def _run_scan() -> None:
    """Execute a full scan of the configured root."""
    global _result, _last_scan
    _result = scan_all(get_root_dir())
    _last_scan = datetime.now().isoformat()


async def _background_scanner():
    """Re-scan all repos every REPO_AUDIT_SCAN_INTERVAL seconds."""
    while True:
        await asyncio.sleep(get_scan_interval())
        try:
            await asyncio.to_thread(_run_scan)
        except Exception as e:
            logger.error("Background scan error: %s", e)


def _all_repos() -> list[Repository]:
    return _result.non_clean() + _result.clean


def _with_branch(repo: Repository) -> Repository:
    # Response serialization happens on the event loop; resolve the lazy branch lookup before it
    _ = repo.current_branch
    return repo


def _find(name: str) -> Repository:
    for repo in _all_repos():
        if repo.name == name:
            return repo
    raise HTTPException(status_code=404, detail=f"Repo '{name}' not found")


# --- API Endpoints ---
# Handlers that may run git are sync so they execute in the threadpool


@app.get("/api/repos", response_model=list[Repository])
def list_repos():
    """Return every repository from the latest scan, non-clean first."""
    return [_with_branch(r) for r in _all_repos()]


@app.get("/api/repos/{name}", response_model=Repository)
def get_repo(name: str):
    return _with_branch(_find(name))


@app.get("/api/repos/{name}/detail", response_class=PlainTextResponse)
def get_repo_detail(name: str):
    """Branch, short status and unpushed log for one repository."""
    return detailed_status(_find(name))


@app.get("/api/overview", response_model=OverviewStats)
async def overview():
    """Return bucket counts."""
    return OverviewStats(
        total_repos=_result.total,
        clean_repos=len(_result.clean),
        uncommitted_only=len(_result.uncommitted_only),
        unpushed_only=len(_result.unpushed_only),
        both=len(_result.both),
        all_clean=_result.all_clean,
        last_scanned=_last_scan,
    )


@app.post("/api/scan", response_model=ScanStats)
async def force_scan():
    """Trigger an immediate rescan."""
    start = time.monotonic()
    await asyncio.to_thread(_run_scan)
    duration_ms = int((time.monotonic() - start) * 1000)
    return ScanStats(
        repos_scanned=_result.total,
        scan_duration_ms=duration_ms,
        errors=_result.errors,
    )


@app.get("/health")
async def health():
    """Health check."""
    return {
        "status": "ok",
        "repos": _result.total,
        "last_scan": _last_scan,
    }

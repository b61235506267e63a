"""HTTP API over the latest scan, with the scanner stubbed out."""

import asyncio
import inspect
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import main
import models
from models import Repository
from summary import aggregate


def _repo(name: str, dirty: bool = False, ahead: int = 0) -> Repository:
    return Repository(
        path=Path("/fleet") / name,
        name=name,
        has_uncommitted_changes=dirty,
        unpushed_count=ahead,
        has_upstream=True,
    )


@pytest.fixture
def client(monkeypatch) -> TestClient:
    result = aggregate([_repo("tidy"), _repo("dirty", dirty=True), _repo("ahead", ahead=2)], root=Path("/fleet"))
    monkeypatch.setattr(main, "_result", result)
    monkeypatch.setattr(main, "_last_scan", "2024-01-01T00:00:00")
    monkeypatch.setattr(models, "_run_git", lambda path, args: "main")
    # No `with` block: the lifespan scan of the real filesystem never runs
    return TestClient(main.app)


def test_list_repos_puts_non_clean_first(client) -> None:
    body = client.get("/api/repos").json()

    assert [r["name"] for r in body] == ["dirty", "ahead", "tidy"]
    assert body[0]["current_branch"] == "main"
    assert body[1]["unpushed_count"] == 2


def test_get_repo_by_name(client) -> None:
    assert client.get("/api/repos/dirty").json()["has_uncommitted_changes"] is True
    assert client.get("/api/repos/missing").status_code == 404


def test_repo_detail_is_plain_text(client, monkeypatch) -> None:
    import report

    monkeypatch.setattr(report, "_run_git", lambda path, args: "abc1234 local work")
    response = client.get("/api/repos/ahead/detail")

    assert response.status_code == 200
    assert "Unpushed commits: 2" in response.text


def test_overview_counts_buckets(client) -> None:
    body = client.get("/api/overview").json()

    assert body == {
        "total_repos": 3,
        "clean_repos": 1,
        "uncommitted_only": 1,
        "unpushed_only": 1,
        "both": 0,
        "all_clean": False,
        "last_scanned": "2024-01-01T00:00:00",
    }


def test_force_scan_replaces_state(client, monkeypatch) -> None:
    fresh = aggregate([_repo("only")], root=Path("/fleet"))
    monkeypatch.setattr(main, "scan_all", lambda root: fresh)

    body = client.post("/api/scan").json()

    assert body["repos_scanned"] == 1
    assert body["errors"] == []
    assert client.get("/health").json()["repos"] == 1


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


@pytest.mark.parametrize("url", ["/api/repos", "/api/repos/ahead", "/api/repos/ahead/detail"])
def test_git_backed_endpoints_run_off_the_event_loop(client, monkeypatch, url) -> None:
    import report

    calls = []

    def recording_git(path, args):
        calls.append(_on_event_loop())
        return "main"

    monkeypatch.setattr(models, "_run_git", recording_git)
    monkeypatch.setattr(report, "_run_git", recording_git)

    assert client.get(url).status_code == 200
    assert calls
    assert not any(calls)


def test_git_backed_handlers_are_sync() -> None:
    for handler in (main.list_repos, main.get_repo, main.get_repo_detail):
        assert not inspect.iscoroutinefunction(handler)

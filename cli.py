"""Command-line entry points: the interactive scanner and the cron maintenance run."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from datetime import datetime

from batch import apply_batch, parse_selection
from config import FatalConfigError, check_root, get_maintenance_settings, get_max_depth, get_root_dir
from maintenance import configure_logging, detach_logging, render_report, run_maintenance, send_report
from models import Repository, Selection
from report import detailed_status
from scanner import scan_all
from summary import render_summary


def _scan_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repo-audit",
        description="Repository Status Checker and Batch Manager. Recursively checks all git "
        "repositories for uncommitted/unpushed changes and offers batch commit/push operations.",
    )
    parser.add_argument("directory", nargs="?", help="Directory to scan (default: current directory)")
    parser.add_argument(
        "-d", "--detailed", action="store_true", help="Show detailed status for each repository"
    )
    parser.add_argument(
        "-n", "--dry-run", action="store_true", help="Show what batch operations would do without changing anything"
    )
    parser.add_argument("--max-depth", type=int, default=None, help="Directory depth ceiling (default: 10)")
    parser.add_argument("--workers", type=int, default=1, help="Repositories classified in parallel")
    return parser


def _ask(input_fn: Callable[[str], str], prompt: str) -> str:
    try:
        return input_fn(prompt)
    except EOFError:
        return ""


def _prompt_selection(candidates: list[Repository], input_fn: Callable[[str], str]) -> Selection:
    print("\n=== BATCH OPERATIONS ===")
    print("Would you like to commit and push changes?")
    print("1) Process ALL repositories")
    print("2) SELECT specific repositories")
    print("3) Skip batch operations")
    choice = _ask(input_fn, "Enter your choice (1-3): ").strip()

    if choice == "1":
        return Selection.all()
    if choice == "2":
        print("Select repositories to process:")
        for i, repo in enumerate(candidates, start=1):
            print(f"{i}) {repo.path}")
        print("Enter repository numbers (space-separated) or 'all' for all:")
        return parse_selection(_ask(input_fn, "Selection: "))
    if choice == "3":
        print("Skipping batch operations.")
    else:
        print("Invalid choice. Skipping batch operations.")
    return Selection.none()


def _run_batch(candidates: list[Repository], dry_run: bool, input_fn: Callable[[str], str]) -> None:
    selection = _prompt_selection(candidates, input_fn)
    report = apply_batch(selection, candidates, dry_run=dry_run)
    if report.ignored:
        print(f"Ignored out-of-range selections: {' '.join(str(i) for i in report.ignored)}")

    for outcome in report.outcomes:
        suffix = f" ({outcome.reason})" if outcome.reason else ""
        print(f"  {outcome.name}: {outcome.status.value}{suffix}")
    if report.interrupted:
        print("Cancelled. Repositories already processed keep their commits and pushes.")
    if report.failed:
        print(f"{len(report.failed)} repositories failed; see messages above.")


def scan_main(argv: list[str] | None = None, input_fn: Callable[[str], str] = input) -> int:
    args = _scan_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    try:
        root = get_root_dir(args.directory)
        check_root(root)
        max_depth = get_max_depth(args.max_depth)
    except FatalConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Scanning for git repositories in: {root}")
    try:
        result = scan_all(root, max_depth, workers=args.workers)
    except FatalConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print()
    print(render_summary(result))
    for error in result.errors:
        print(f"  ! {error}")

    if not result.all_clean:
        candidates = result.non_clean()
        if args.detailed:
            for repo in candidates:
                print()
                print(detailed_status(repo))
        _run_batch(candidates, args.dry_run, input_fn)

    print("\nRepository check completed!")
    return 0


def _maintenance_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repo-maintenance",
        description="Whitespace maintenance for every repository under the given directories. "
        "Designed to run from cron, e.g. '0 2 * * * repo-maintenance' or '0 3 * * 0 repo-maintenance -f'.",
    )
    parser.add_argument("-d", "--dirs", help="Comma-separated list of directories to check")
    parser.add_argument("-f", "--fix", action="store_true", help="Automatically fix whitespace issues")
    parser.add_argument("-l", "--log", help="Log file path (default: /var/log/whitespace-maintenance.log)")
    parser.add_argument("-e", "--email", help="Email address for reports")
    parser.add_argument("-q", "--quiet", action="store_true", help="Quiet mode (minimal output)")
    return parser


def maintenance_main(argv: list[str] | None = None) -> int:
    args = _maintenance_parser().parse_args(argv)
    try:
        settings = get_maintenance_settings(
            dirs=args.dirs, auto_fix=args.fix, log_file=args.log, email_address=args.email, quiet=args.quiet
        )
    except FatalConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    logging.basicConfig(level=logging.WARNING if settings.quiet else logging.INFO, format="%(message)s")
    handlers = configure_logging(settings.log_file, quiet=settings.quiet)

    if not settings.quiet:
        print("Starting whitespace maintenance...")
        print(f"Directories: {','.join(str(d) for d in settings.repo_dirs)}")
        print(f"Auto-fix: {str(settings.auto_fix).lower()}")
        print(f"Log file: {settings.log_file}")

    try:
        summary = run_maintenance(settings)
        if settings.email_report:
            now = datetime.now()
            send_report(render_report(summary, now), settings, now)
    finally:
        detach_logging(handlers)

    if not settings.quiet:
        print("Maintenance complete!")
        print(f"Checked {summary.total_repos} repositories")
        if summary.repos_with_issues > 0:
            print(f"Found issues in {summary.repos_with_issues} repositories")
        else:
            print("All repositories are clean!")

    return summary.exit_code


if __name__ == "__main__":
    sys.exit(scan_main())

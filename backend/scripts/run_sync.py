"""CLI for pushing a show, trial or class to the hosted store and pulling results back."""

from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from typing import Dict, List, Optional

from myk9q_sync import (
    LicenseError,
    LocalStore,
    ProtectedAction,
    ProtectionPrompt,
    RemoteError,
    SyncOrchestrator,
    SyncReport,
    SyncScope,
    fixed_chooser,
)
from myk9q_sync.config import local_db_path


def terminal_chooser(prompt: ProtectionPrompt) -> ProtectedAction:
    """Ask the operator at the terminal until a valid choice is typed."""

    shortcuts = {"a": ProtectedAction.ABORT, "s": ProtectedAction.SKIP, "o": ProtectedAction.OVERWRITE}
    while True:
        answer = input(f"{prompt.message} [a]bort/[s]kip/[o]verwrite: ").strip().lower()
        if answer in shortcuts:
            return shortcuts[answer]
        try:
            return ProtectedAction(answer)
        except ValueError:
            print("Please answer abort, skip or overwrite.")


def _progress(step: str, done: int, total: int) -> None:
    print(f"[{done}/{total}] {step}")


def _format_report(report: SyncReport) -> str:
    if report.aborted:
        return f"{report.scope.label()}: aborted ({report.scored_count} scored entries left untouched)"

    lines = [f"{report.scope.label()}: {report.direction} finished"]
    counters: Dict[str, int] = {
        "shows": report.shows,
        "trials": report.trials,
        "classes": report.classes,
        "entries": report.entries,
        "removed entries": report.removed_entries,
        "time limits": report.time_limits,
        "results downloaded": report.downloaded,
        "placements": report.placements,
    }
    counters.update({f"deleted {name}": count for name, count in report.deleted.items()})
    for name, count in counters.items():
        if count:
            lines.append(f"  {name}: {count}")

    notes: List[str] = []
    if report.overwrite:
        notes.append(f"overwrote scored entries ({report.unlocked} unlocked)")
    elif report.scored_count:
        notes.append(f"kept {report.scored_count} scored entries")
    if report.kept_scored:
        notes.append(f"left {report.kept_scored} scored remote entries that are no longer local")
    if report.protected_skipped:
        notes.append(f"kept {report.protected_skipped} locally scored entries")
    if report.skipped_classes or report.skipped_entries:
        notes.append(
            f"skipped {report.skipped_classes} classes and {report.skipped_entries} entries without a remote parent"
        )
    for item in notes:
        lines.append(f"  - {item}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("action", choices=["upload", "download", "delete"])
    parser.add_argument("kind", choices=["show", "trial", "class"])
    parser.add_argument("local_id", type=int, metavar="ID")
    parser.add_argument("--db", default=None, help="Path to the local SQLite database")
    parser.add_argument(
        "--on-protected",
        choices=[choice.value for choice in ProtectedAction],
        default=None,
        help="Answer for already-scored entries instead of prompting",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log HTTP requests")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.action == "download" and args.kind == "show":
        print("ERROR: download works on a trial or a class", file=sys.stderr)
        return 2

    store = LocalStore(args.db or local_db_path())
    orchestrator = SyncOrchestrator(store)
    scope = SyncScope(args.kind, args.local_id)
    chooser = fixed_chooser(args.on_protected) if args.on_protected else terminal_chooser

    try:
        if args.action == "upload":
            report = orchestrator.upload(scope, chooser, progress=_progress)
        elif args.action == "download":
            report = orchestrator.download(scope, chooser, progress=_progress)
        else:
            report = orchestrator.delete_remote(scope, progress=_progress)
    except LicenseError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 3
    except RemoteError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        if exc.body:
            print(exc.body, file=sys.stderr)
        return 1
    except sqlite3.Error as exc:
        print(f"ERROR: local database {store.db_path}: {exc}", file=sys.stderr)
        return 1
    except (RuntimeError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(_format_report(report))
    return 1 if report.aborted else 0


if __name__ == "__main__":
    raise SystemExit(main())

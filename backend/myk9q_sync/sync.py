"""Show → trial → class → entry synchronization.

Each call runs its steps strictly in order and commits as it goes. A failure
stops the remaining steps but leaves finished ones in place; upserts are
idempotent, so the operator simply runs the call again.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import LicenseError, RemoteError, SyncAborted
from .guard import Chooser, ProtectedAction, ProtectionPrompt, ScoreProtectionGuard, ask
from .id_cache import IdCache
from .local_store import LocalStore
from .models import LICENSE_ACTIVE, ClassRow, EntryResult, ScopeSnapshot, Show, SyncScope, TimeLimits
from .organizations import OrganizationProfile, get_profile
from .placements import compute_placements
from .remote import RemoteClient, eq, in_


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]

SHOW_CONFLICT = ("license_key",)
TRIAL_CONFLICT = ("show_id", "trial_number", "trial_date")
CLASS_CONFLICT = ("trial_id", "element", "level", "section")
ENTRY_CONFLICT = ("class_id", "armband_number")

TIME_LIMIT_COLUMNS = "time_limit_seconds,time_limit_area2_seconds,time_limit_area3_seconds"
RESULT_COLUMNS = (
    "id,access_entry_id,is_scored,result_status,search_time_seconds,"
    "area1_time_seconds,area2_time_seconds,area3_time_seconds,"
    "total_correct_finds,total_incorrect_finds,total_faults,no_finish_count,"
    "final_placement,disqualification_reason"
)


@dataclass
class SyncReport:
    scope: SyncScope
    direction: str
    shows: int = 0
    trials: int = 0
    classes: int = 0
    entries: int = 0
    removed_entries: int = 0
    skipped_classes: int = 0
    skipped_entries: int = 0
    time_limits: int = 0
    downloaded: int = 0
    protected_skipped: int = 0
    kept_scored: int = 0
    placements: int = 0
    scored_count: int = 0
    unlocked: int = 0
    overwrite: bool = False
    aborted: bool = False
    deleted: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scope"] = {"kind": self.scope.kind, "localId": self.scope.local_id}
        return data


class _Progress:
    def __init__(self, callback: Optional[ProgressCallback], total: int) -> None:
        self._callback = callback
        self._total = total
        self._done = 0

    def step(self, name: str) -> None:
        self._done += 1
        logger.info("%s (%s/%s)", name, self._done, self._total)
        if self._callback:
            self._callback(name, self._done, self._total)


class SyncOrchestrator:
    """Sequences uploads, downloads and scoped remote deletes.

    The caller supplies the scope, a chooser for the scored-entry decision and
    an optional progress callback; no UI state is read.
    """

    def __init__(self, store: LocalStore, remote: RemoteClient | None = None) -> None:
        self.store = store
        self.remote = remote or RemoteClient()

    # ------------------------------------------------------------------
    # Upload

    def upload(
        self,
        scope: SyncScope,
        chooser: Chooser,
        progress: ProgressCallback | None = None,
    ) -> SyncReport:
        snapshot = self._load(scope)
        show = snapshot.show
        self._require_license(show)
        profile = get_profile(show.organization)

        report = SyncReport(scope=scope, direction="upload")
        ids = IdCache(self.remote, show.license_key)
        tracker = _Progress(progress, total=6)

        try:
            decision = ScoreProtectionGuard(self.remote, ids, chooser).check(scope, snapshot)
        except SyncAborted as exc:
            report.aborted = True
            report.scored_count = exc.scored_count
            logger.info("Upload of %s aborted at the scored-entry prompt", scope.label())
            return report
        report.overwrite = decision.overwrite
        report.scored_count = decision.scored_count
        report.unlocked = decision.unlocked
        tracker.step("Checked scored entries")

        step = "show"
        try:
            self._upload_show(show, ids, report)
            tracker.step("Uploaded show")

            step = "trials"
            self._upload_trials(snapshot, ids, report)
            tracker.step("Uploaded trials")

            step = "classes"
            self._upload_classes(snapshot, profile, ids, report)
            tracker.step("Uploaded classes")

            step = "entries"
            upserted = self._upload_entries(snapshot, ids, report)
            tracker.step("Uploaded entries")

            step = "cleanup"
            self._remove_stale_entries(snapshot, ids, upserted, report)
            tracker.step("Removed moved or deleted entries")
        except RemoteError:
            logger.error("Upload of %s stopped during %s; earlier steps remain committed", scope.label(), step)
            raise

        return report

    def _upload_show(self, show: Show, ids: IdCache, report: SyncReport) -> None:
        rows = self.remote.upsert(self.remote.config.shows_table, [show.to_record()], SHOW_CONFLICT)
        ids.remember_rows("show", rows)
        report.shows = 1

    def _upload_trials(self, snapshot: ScopeSnapshot, ids: IdCache, report: SyncReport) -> None:
        show = snapshot.show
        remote_show_id = ids.resolve("show", show.show_id)
        if not remote_show_id:
            logger.warning("Show %s has no remote id; skipping %s trials", show.show_id, len(snapshot.trials))
            return
        records = [trial.to_record(remote_show_id, show) for trial in snapshot.trials]
        rows = self.remote.upsert(self.remote.config.trials_table, records, TRIAL_CONFLICT)
        ids.remember_rows("trial", rows)
        report.trials = len(records)

    def _upload_classes(
        self,
        snapshot: ScopeSnapshot,
        profile: OrganizationProfile,
        ids: IdCache,
        report: SyncReport,
    ) -> None:
        records: List[Dict[str, Any]] = []
        for trial in snapshot.trials:
            classes = snapshot.classes_for(trial.trial_id)
            remote_trial_id = ids.resolve("trial", trial.trial_id)
            if not remote_trial_id:
                logger.warning("Trial %s has no remote id; skipping %s classes", trial.trial_id, len(classes))
                report.skipped_classes += len(classes)
                continue
            records.extend(row.to_record(remote_trial_id, profile, snapshot.show.license_key) for row in classes)

        rows = self.remote.upsert(self.remote.config.classes_table, records, CLASS_CONFLICT)
        ids.remember_rows("class", rows)
        report.classes = len(records)

    def _upload_entries(
        self,
        snapshot: ScopeSnapshot,
        ids: IdCache,
        report: SyncReport,
    ) -> Dict[int, Dict[int, int]]:
        """Upsert entries class by class.

        Returns ``local class id -> {access_entry_id: remote id}`` for every
        class whose entries were sent.
        """

        license_key = snapshot.show.license_key
        upserted: Dict[int, Dict[int, int]] = {}
        ids.prime("class", [row.class_id for row in snapshot.classes])

        for class_row in snapshot.classes:
            entries = snapshot.entries_for(class_row.class_id)
            remote_class_id = ids.resolve("class", class_row.class_id)
            if not remote_class_id:
                logger.warning(
                    "Class %s (%s) has no remote id; skipping %s entries",
                    class_row.class_id,
                    class_row.label(),
                    len(entries),
                )
                report.skipped_entries += len(entries)
                continue

            records = []
            for entry in entries:
                record = entry.base_record(remote_class_id, license_key)
                if report.overwrite:
                    record.update(entry.scoring_record())
                records.append(record)

            rows = self.remote.upsert(self.remote.config.entries_table, records, ENTRY_CONFLICT)
            ids.remember_rows("entry", rows)
            upserted[class_row.class_id] = {
                int(row["access_entry_id"]): int(row["id"])
                for row in rows
                if row.get("access_entry_id") is not None and row.get("id") is not None
            }
            report.entries += len(records)

        return upserted

    def _remove_stale_entries(
        self,
        snapshot: ScopeSnapshot,
        ids: IdCache,
        upserted: Dict[int, Dict[int, int]],
        report: SyncReport,
    ) -> None:
        """Delete remote entries that no longer exist locally in their class.

        Covers move-ups (the entry now lives in another class) and scratched
        entries, plus an old row left behind when an armband was renumbered.
        Scored rows are only removed when the operator chose to overwrite;
        otherwise they stay and are counted in ``kept_scored``.
        """

        entries_table = self.remote.config.entries_table
        for class_id, current in upserted.items():
            remote_class_id = ids.resolve("class", class_id)
            local_ids = {entry.entry_id for entry in snapshot.entries_for(class_id)}
            remote_rows = self.remote.select(
                entries_table,
                {"class_id": eq(remote_class_id)},
                columns="id,access_entry_id,is_scored",
            )

            stale_local_ids: List[int] = []
            stale_row_ids: List[int] = []
            for row in remote_rows:
                access_id = row.get("access_entry_id")
                if access_id is None:
                    continue
                access_id = int(access_id)
                stale = access_id not in local_ids or (
                    access_id in current and int(row["id"]) != current[access_id]
                )
                if not stale:
                    continue
                if row.get("is_scored") and not report.overwrite:
                    logger.warning(
                        "Remote entry %s (local %s) is scored; left in class %s",
                        row["id"],
                        access_id,
                        class_id,
                    )
                    report.kept_scored += 1
                    continue
                if access_id not in local_ids:
                    stale_local_ids.append(access_id)
                else:
                    stale_row_ids.append(int(row["id"]))

            # Scored rows never match the delete filter unless overwrite was chosen.
            guard_filter = {} if report.overwrite else {"is_scored": eq(False)}
            if stale_local_ids:
                deleted = self.remote.delete(
                    entries_table,
                    {
                        "class_id": eq(remote_class_id),
                        "access_entry_id": in_(sorted(set(stale_local_ids))),
                        **guard_filter,
                    },
                )
                logger.info(
                    "Removed %s remote entries no longer in class %s: %s",
                    len(deleted),
                    class_id,
                    sorted(set(stale_local_ids)),
                )
                report.removed_entries += len(deleted)
                for local_id in stale_local_ids:
                    ids.forget("entry", local_id)
            if stale_row_ids:
                deleted = self.remote.delete(entries_table, {"id": in_(sorted(stale_row_ids)), **guard_filter})
                report.removed_entries += len(deleted)

    # ------------------------------------------------------------------
    # Download

    def download(
        self,
        scope: SyncScope,
        chooser: Chooser,
        progress: ProgressCallback | None = None,
    ) -> SyncReport:
        """Pull time limits and scored results back into the local store.

        All remote reads happen first so an abort at the prompt writes nothing.
        """

        snapshot = self._load(scope)
        self._require_license(snapshot.show)
        profile = get_profile(snapshot.show.organization)

        report = SyncReport(scope=scope, direction="download")
        ids = IdCache(self.remote, snapshot.show.license_key)
        tracker = _Progress(progress, total=4)
        ids.prime("class", [row.class_id for row in snapshot.classes])

        limits: Dict[int, TimeLimits] = {}
        results: Dict[int, List[EntryResult]] = {}
        classes: List[ClassRow] = []
        for class_row in snapshot.classes:
            remote_class_id = ids.resolve("class", class_row.class_id)
            if not remote_class_id:
                logger.warning("Class %s has not been uploaded; nothing to download", class_row.class_id)
                report.skipped_classes += 1
                continue
            classes.append(class_row)

            rows = self.remote.select(
                self.remote.config.classes_table,
                {"id": eq(remote_class_id)},
                columns=TIME_LIMIT_COLUMNS,
            )
            if rows:
                limits[class_row.class_id] = TimeLimits.from_remote(rows[0])

            scored_rows = self.remote.select(
                self.remote.config.entries_table,
                {"class_id": eq(remote_class_id), "is_scored": eq(True)},
                columns=RESULT_COLUMNS,
            )
            results[class_row.class_id] = [
                EntryResult.from_remote(row) for row in scored_rows if row.get("access_entry_id") is not None
            ]
        tracker.step("Fetched time limits and results")

        local_entries = {entry.entry_id: entry for entry in snapshot.entries}
        conflicts = sum(
            1
            for class_id, class_results in results.items()
            for result in class_results
            if result.entry_id in local_entries
            and local_entries[result.entry_id].class_id == class_id
            and local_entries[result.entry_id].is_scored
        )
        overwrite = False
        if conflicts:
            action = ask(chooser, ProtectionPrompt(scope=scope, scored_count=conflicts, direction="download"))
            report.scored_count = conflicts
            if action is ProtectedAction.ABORT:
                report.aborted = True
                logger.info("Download of %s aborted at the scored-entry prompt", scope.label())
                return report
            overwrite = action is ProtectedAction.OVERWRITE
        report.overwrite = overwrite

        for class_id, class_limits in limits.items():
            self.store.update_class_time_limits(class_id, class_limits)
            report.time_limits += 1
        tracker.step("Updated time limits")

        for class_id, class_results in results.items():
            for result in class_results:
                local = local_entries.get(result.entry_id)
                if local is None or local.class_id != class_id:
                    logger.warning(
                        "Remote result for entry %s does not match a local entry in class %s; skipped",
                        result.entry_id,
                        class_id,
                    )
                    continue
                if local.is_scored and not overwrite:
                    report.protected_skipped += 1
                    continue
                if self.store.update_entry_result(result):
                    report.downloaded += 1
        tracker.step("Wrote results")

        for class_row in classes:
            entries = self.store.fetch_entries([class_row.class_id])
            placements = compute_placements(entries, profile)
            self.store.update_placements(placements)
            report.placements += sum(1 for value in placements.values() if value)
        tracker.step("Recomputed placements")

        return report

    # ------------------------------------------------------------------
    # Explicit remote removal

    def delete_remote(self, scope: SyncScope, progress: ProgressCallback | None = None) -> SyncReport:
        """Remove the hosted copy of a show, trial or class.

        The cascade runs child-first over whatever rows exist remotely under
        the scope: entries, then classes, then trials, then the show.
        """

        snapshot = self._load(scope)
        self._require_license(snapshot.show)
        report = SyncReport(scope=scope, direction="delete")
        report.deleted = {"entries": 0, "classes": 0, "trials": 0, "shows": 0}
        tracker = _Progress(progress, total=1)
        ids = IdCache(self.remote, snapshot.show.license_key)
        config = self.remote.config

        remote_id = ids.resolve(scope.kind, scope.local_id)
        if not remote_id:
            logger.info("%s has no remote copy; nothing to delete", scope.label())
            tracker.step("Nothing to delete")
            return report

        if scope.kind == "class":
            class_ids = [remote_id]
            trial_ids: List[int] = []
        elif scope.kind == "trial":
            trial_ids = [remote_id]
            class_ids = self._remote_ids(config.classes_table, "trial_id", trial_ids)
        else:
            trial_ids = self._remote_ids(config.trials_table, "show_id", [remote_id])
            class_ids = self._remote_ids(config.classes_table, "trial_id", trial_ids)

        if class_ids:
            report.deleted["entries"] = len(self.remote.delete(config.entries_table, {"class_id": in_(class_ids)}))
            report.deleted["classes"] = len(self.remote.delete(config.classes_table, {"id": in_(class_ids)}))
        if trial_ids:
            report.deleted["trials"] = len(self.remote.delete(config.trials_table, {"id": in_(trial_ids)}))
        if scope.kind == "show":
            report.deleted["shows"] = len(self.remote.delete(config.shows_table, {"id": eq(remote_id)}))

        logger.info("Deleted remote rows for %s: %s", scope.label(), report.deleted)
        tracker.step("Deleted remote rows")
        return report

    def _remote_ids(self, table: str, parent_column: str, parent_ids: List[int]) -> List[int]:
        if not parent_ids:
            return []
        rows = self.remote.select(table, {parent_column: in_(parent_ids)}, columns="id")
        return [int(row["id"]) for row in rows if row.get("id") is not None]

    # ------------------------------------------------------------------
    # Show detail patch

    def update_show_details(self, show_id: int) -> SyncReport:
        """Re-send the editable show fields (site, contacts, status)."""

        show = self.store.fetch_show(show_id)
        if show is None:
            raise ValueError(f"Show {show_id} not found")
        self._require_license(show)
        report = SyncReport(scope=SyncScope("show", show_id), direction="patch")

        remote_show_id = IdCache(self.remote, show.license_key).resolve("show", show_id)
        if not remote_show_id:
            raise ValueError(f"Show {show_id} has not been uploaded yet")
        rows = self.remote.patch(self.remote.config.shows_table, {"id": eq(remote_show_id)}, show.details_record())
        report.shows = len(rows) or 1
        return report

    # ------------------------------------------------------------------
    # Helpers

    def _load(self, scope: SyncScope) -> ScopeSnapshot:
        snapshot = self.store.snapshot(scope)
        if snapshot.empty:
            raise ValueError(f"{scope.kind.title()} {scope.local_id} not found")
        return snapshot

    @staticmethod
    def _require_license(show: Show) -> None:
        if not show.license_active:
            status = show.license_status or "missing"
            raise LicenseError(
                f"License for show '{show.show_name}' is {status}; "
                f"syncing requires '{LICENSE_ACTIVE}'"
            )

"""SQLite rendition of the show secretary's desktop database."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from .models import ClassRow, EntryResult, EntryRow, ScopeSnapshot, Show, SyncScope, TimeLimits, Trial


logger = logging.getLogger(__name__)


SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS clubs (
    club_id INTEGER PRIMARY KEY AUTOINCREMENT,
    club_name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS shows (
    show_id INTEGER PRIMARY KEY AUTOINCREMENT,
    club_id INTEGER REFERENCES clubs(club_id),
    show_name TEXT NOT NULL,
    organization TEXT NOT NULL,
    start_date TEXT,
    end_date TEXT,
    license_key TEXT NOT NULL,
    license_status TEXT,
    show_status TEXT,
    site_name TEXT,
    site_address TEXT,
    site_city TEXT,
    site_state TEXT,
    site_zip TEXT,
    secretary_name TEXT,
    secretary_email TEXT,
    secretary_phone TEXT,
    chairman_name TEXT,
    chairman_email TEXT,
    chairman_phone TEXT,
    website TEXT
);

CREATE TABLE IF NOT EXISTS trials (
    trial_id INTEGER PRIMARY KEY AUTOINCREMENT,
    show_id INTEGER NOT NULL REFERENCES shows(show_id),
    trial_date TEXT,
    trial_number INTEGER NOT NULL DEFAULT 1,
    trial_type TEXT
);

CREATE TABLE IF NOT EXISTS judges (
    judge_id INTEGER PRIMARY KEY AUTOINCREMENT,
    judge_name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS classes (
    class_id INTEGER PRIMARY KEY AUTOINCREMENT,
    trial_id INTEGER NOT NULL REFERENCES trials(trial_id),
    element TEXT NOT NULL,
    level TEXT NOT NULL,
    section TEXT,
    division TEXT,
    judge_id INTEGER REFERENCES judges(judge_id),
    time_limit TEXT,
    time_limit2 TEXT,
    time_limit3 TEXT,
    area_count INTEGER,
    class_order INTEGER
);

CREATE TABLE IF NOT EXISTS handlers (
    handler_id INTEGER PRIMARY KEY AUTOINCREMENT,
    handler_name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS dogs (
    dog_id INTEGER PRIMARY KEY AUTOINCREMENT,
    call_name TEXT NOT NULL,
    breed TEXT
);

CREATE TABLE IF NOT EXISTS entries (
    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
    class_id INTEGER NOT NULL REFERENCES classes(class_id),
    armband INTEGER NOT NULL,
    handler_id INTEGER REFERENCES handlers(handler_id),
    dog_id INTEGER REFERENCES dogs(dog_id),
    run_order INTEGER,
    entry_status TEXT,
    is_scored INTEGER NOT NULL DEFAULT 0,
    result_code TEXT,
    search_time TEXT,
    area1_time TEXT,
    area2_time TEXT,
    area3_time TEXT,
    correct_finds INTEGER DEFAULT 0,
    incorrect_finds INTEGER DEFAULT 0,
    faults INTEGER DEFAULT 0,
    no_finish INTEGER DEFAULT 0,
    placement INTEGER DEFAULT 0,
    dq_reason TEXT
);
"""

_SHOW_SQL = """
SELECT s.*, COALESCE(c.club_name, '') AS club_name
FROM shows AS s
LEFT JOIN clubs AS c ON c.club_id = s.club_id
WHERE s.show_id = ?
"""

_CLASS_SQL = """
SELECT k.*, COALESCE(j.judge_name, '') AS judge_name
FROM classes AS k
LEFT JOIN judges AS j ON j.judge_id = k.judge_id
"""

_ENTRY_SQL = """
SELECT e.*,
       COALESCE(h.handler_name, '') AS handler_name,
       COALESCE(d.call_name, '') AS dog_call_name,
       COALESCE(d.breed, '') AS dog_breed
FROM entries AS e
LEFT JOIN handlers AS h ON h.handler_id = e.handler_id
LEFT JOIN dogs AS d ON d.dog_id = e.dog_id
"""


def _text(row: sqlite3.Row, key: str) -> str:
    value = row[key]
    return "" if value is None else str(value)


def _int(row: sqlite3.Row, key: str) -> int:
    value = row[key]
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def _optional_int(row: sqlite3.Row, key: str) -> Optional[int]:
    value = row[key]
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class LocalStore:
    """Typed reads and targeted writes against the local database."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            conn.executescript(SCHEMA_SQL)

    # ------------------------------------------------------------------
    # Reads

    def fetch_show(self, show_id: int) -> Optional[Show]:
        with self.connect() as conn:
            row = conn.execute(_SHOW_SQL, (show_id,)).fetchone()
        if row is None:
            return None
        return Show(
            show_id=int(row["show_id"]),
            show_name=_text(row, "show_name"),
            club_name=_text(row, "club_name"),
            organization=_text(row, "organization"),
            start_date=row["start_date"],
            end_date=row["end_date"],
            license_key=_text(row, "license_key"),
            license_status=_text(row, "license_status"),
            show_status=_text(row, "show_status"),
            site_name=_text(row, "site_name"),
            site_address=_text(row, "site_address"),
            site_city=_text(row, "site_city"),
            site_state=_text(row, "site_state"),
            site_zip=_text(row, "site_zip"),
            secretary_name=_text(row, "secretary_name"),
            secretary_email=_text(row, "secretary_email"),
            secretary_phone=_text(row, "secretary_phone"),
            chairman_name=_text(row, "chairman_name"),
            chairman_email=_text(row, "chairman_email"),
            chairman_phone=_text(row, "chairman_phone"),
            website=_text(row, "website"),
        )

    def fetch_trials(self, show_id: Optional[int] = None, trial_id: Optional[int] = None) -> List[Trial]:
        sql = "SELECT * FROM trials"
        clauses: List[str] = []
        params: List[int] = []
        if show_id is not None:
            clauses.append("show_id = ?")
            params.append(show_id)
        if trial_id is not None:
            clauses.append("trial_id = ?")
            params.append(trial_id)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY trial_date, trial_number, trial_id"

        with self.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            Trial(
                trial_id=int(row["trial_id"]),
                show_id=int(row["show_id"]),
                trial_date=row["trial_date"],
                trial_number=_int(row, "trial_number") or 1,
                trial_type=_text(row, "trial_type"),
            )
            for row in rows
        ]

    def fetch_classes(self, trial_id: Optional[int] = None, class_id: Optional[int] = None) -> List[ClassRow]:
        sql = _CLASS_SQL
        clauses: List[str] = []
        params: List[int] = []
        if trial_id is not None:
            clauses.append("k.trial_id = ?")
            params.append(trial_id)
        if class_id is not None:
            clauses.append("k.class_id = ?")
            params.append(class_id)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY k.trial_id, COALESCE(k.class_order, 9999), k.class_id"

        with self.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            ClassRow(
                class_id=int(row["class_id"]),
                trial_id=int(row["trial_id"]),
                element=_text(row, "element"),
                level=_text(row, "level"),
                section=_text(row, "section"),
                division=_text(row, "division"),
                judge_name=_text(row, "judge_name"),
                time_limit=_text(row, "time_limit"),
                time_limit2=_text(row, "time_limit2"),
                time_limit3=_text(row, "time_limit3"),
                area_count=_optional_int(row, "area_count"),
                class_order=_optional_int(row, "class_order"),
            )
            for row in rows
        ]

    def fetch_entries(self, class_ids: Iterable[int]) -> List[EntryRow]:
        ids = [int(value) for value in class_ids]
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        sql = (
            _ENTRY_SQL
            + f" WHERE e.class_id IN ({placeholders})"
            + " ORDER BY e.class_id, COALESCE(e.run_order, e.armband), e.armband"
        )
        with self.connect() as conn:
            rows = conn.execute(sql, ids).fetchall()
        return [
            EntryRow(
                entry_id=int(row["entry_id"]),
                class_id=int(row["class_id"]),
                armband=_int(row, "armband"),
                handler_name=_text(row, "handler_name"),
                dog_call_name=_text(row, "dog_call_name"),
                dog_breed=_text(row, "dog_breed"),
                run_order=_optional_int(row, "run_order"),
                entry_status=_text(row, "entry_status"),
                is_scored=bool(_int(row, "is_scored")),
                result_code=_text(row, "result_code").upper(),
                search_time=_text(row, "search_time"),
                area1_time=_text(row, "area1_time"),
                area2_time=_text(row, "area2_time"),
                area3_time=_text(row, "area3_time"),
                correct_finds=_int(row, "correct_finds"),
                incorrect_finds=_int(row, "incorrect_finds"),
                faults=_int(row, "faults"),
                no_finish=_int(row, "no_finish"),
                placement=_int(row, "placement"),
                dq_reason=_text(row, "dq_reason"),
            )
            for row in rows
        ]

    def snapshot(self, scope: SyncScope) -> ScopeSnapshot:
        """Rows a sync of ``scope`` needs; empty when the scope is unknown."""

        if scope.kind == "show":
            show = self.fetch_show(scope.local_id)
            if show is None:
                return ScopeSnapshot()
            trials = self.fetch_trials(show_id=show.show_id)
            classes: List[ClassRow] = []
            for trial in trials:
                classes.extend(self.fetch_classes(trial_id=trial.trial_id))
        elif scope.kind == "trial":
            trials = self.fetch_trials(trial_id=scope.local_id)
            if not trials:
                return ScopeSnapshot()
            show = self.fetch_show(trials[0].show_id)
            if show is None:
                return ScopeSnapshot()
            classes = self.fetch_classes(trial_id=scope.local_id)
        else:
            classes = self.fetch_classes(class_id=scope.local_id)
            if not classes:
                return ScopeSnapshot()
            trials = self.fetch_trials(trial_id=classes[0].trial_id)
            show = self.fetch_show(trials[0].show_id) if trials else None
            if show is None:
                return ScopeSnapshot()

        entries = self.fetch_entries(row.class_id for row in classes)
        return ScopeSnapshot(show=show, trials=trials, classes=classes, entries=entries)

    # ------------------------------------------------------------------
    # Writes used by the download path

    def update_class_time_limits(self, class_id: int, limits: TimeLimits) -> None:
        """Write downloaded limits; a blank primary limit keeps the local one."""

        with self.connect() as conn:
            if limits.time_limit:
                conn.execute(
                    "UPDATE classes SET time_limit = ?, time_limit2 = ?, time_limit3 = ? WHERE class_id = ?",
                    (limits.time_limit, limits.time_limit2 or None, limits.time_limit3 or None, class_id),
                )
            else:
                logger.warning("Remote class %s has no primary time limit; local value kept", class_id)
                conn.execute(
                    "UPDATE classes SET time_limit2 = ?, time_limit3 = ? WHERE class_id = ?",
                    (limits.time_limit2 or None, limits.time_limit3 or None, class_id),
                )

    def update_entry_result(self, result: EntryResult) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                UPDATE entries
                SET is_scored = 1,
                    result_code = ?,
                    search_time = ?,
                    area1_time = ?,
                    area2_time = ?,
                    area3_time = ?,
                    correct_finds = ?,
                    incorrect_finds = ?,
                    faults = ?,
                    no_finish = ?,
                    placement = ?,
                    dq_reason = ?
                WHERE entry_id = ?
                """,
                (
                    result.result_code,
                    result.search_time,
                    result.area1_time or None,
                    result.area2_time or None,
                    result.area3_time or None,
                    result.correct_finds,
                    result.incorrect_finds,
                    result.faults,
                    result.no_finish,
                    result.placement,
                    result.dq_reason or None,
                    result.entry_id,
                ),
            )
            updated = cursor.rowcount > 0
        if not updated:
            logger.warning("Local entry %s not found; downloaded result ignored", result.entry_id)
        return updated

    def update_placements(self, placements: Dict[int, int]) -> None:
        if not placements:
            return
        with self.connect() as conn:
            conn.executemany(
                "UPDATE entries SET placement = ? WHERE entry_id = ?",
                [(placement, entry_id) for entry_id, placement in placements.items()],
            )

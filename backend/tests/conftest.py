from __future__ import annotations

import copy
import itertools
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from myk9q_sync import remote as remote_module
from myk9q_sync.local_store import LocalStore


BASE_URL = "https://example.supabase.co"

SCORING_FIELDS = {
    "is_scored",
    "result_status",
    "search_time_seconds",
    "area1_time_seconds",
    "area2_time_seconds",
    "area3_time_seconds",
    "total_correct_finds",
    "total_incorrect_finds",
    "total_faults",
    "no_finish_count",
    "final_placement",
    "disqualification_reason",
}

ENV_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_SERVICE_KEY",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SCHEMA",
    "SUPABASE_SHOWS_TABLE",
    "SUPABASE_TRIALS_TABLE",
    "SUPABASE_CLASSES_TABLE",
    "SUPABASE_ENTRIES_TABLE",
    "MYK9Q_HTTP_TIMEOUT",
    "MYK9Q_DB_PATH",
)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _matches(row: Dict[str, Any], column: str, condition: str) -> bool:
    op, _, operand = condition.partition(".")
    actual = _as_text(row.get(column))
    if op == "eq":
        return actual == operand
    if op == "in":
        return actual in set(operand.strip("()").split(","))
    raise AssertionError(f"Unsupported filter {condition}")


class FakePostgrest:
    """In-memory stand-in for the hosted tables.

    Mirrors the two server behaviours the sync relies on: an entry that is
    already scored keeps its scoring columns on upsert, and the unlock RPCs
    clear ``is_scored`` for a class or trial and return how many rows changed.
    """

    RESERVED = {"select", "order", "on_conflict"}

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            "shows": [],
            "trials": [],
            "classes": [],
            "entries": [],
        }
        self._ids = {
            "shows": itertools.count(501),
            "trials": itertools.count(601),
            "classes": itertools.count(701),
            "entries": itertools.count(9001),
        }
        self.requests: List[Dict[str, Any]] = []
        self.failures: Dict[Tuple[str, str], int] = {}

    # ---- helpers used by tests -------------------------------------------

    def add(self, table: str, **values: Any) -> Dict[str, Any]:
        row = {"id": next(self._ids[table])}
        if table == "entries":
            row.update({"is_scored": False, "result_status": "pending"})
        row.update(values)
        self.tables[table].append(row)
        return row

    def rows(self, table: str, **filters: Any) -> List[Dict[str, Any]]:
        return [
            row
            for row in self.tables[table]
            if all(_as_text(row.get(key)) == _as_text(value) for key, value in filters.items())
        ]

    def calls(self, method: str, table: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            call
            for call in self.requests
            if call["method"] == method and (table is None or call["table"] == table)
        ]

    # ---- request handling --------------------------------------------------

    def handle(
        self,
        method: str,
        endpoint: str,
        params: Dict[str, Any],
        payload: Any,
        headers: Dict[str, str],
    ) -> httpx.Response:
        path = endpoint.split("/rest/v1/", 1)[1]
        self.requests.append(
            {"method": method, "table": path, "params": dict(params), "json": payload, "headers": dict(headers)}
        )
        request = httpx.Request(method, endpoint)

        status = self.failures.get((method, path))
        if status:
            return httpx.Response(status, request=request, json={"message": f"{path} is unavailable"})

        if path.startswith("rpc/"):
            return httpx.Response(200, request=request, json=self._rpc(path[4:], payload or {}))

        filters = {key: value for key, value in params.items() if key not in self.RESERVED}
        table = self.tables[path]
        selected = [row for row in table if all(_matches(row, col, cond) for col, cond in filters.items())]

        if method == "GET":
            return httpx.Response(200, request=request, json=[self._project(row, params.get("select", "*")) for row in selected])
        if method == "POST":
            return httpx.Response(201, request=request, json=self._upsert(path, payload, params["on_conflict"].split(",")))
        if method == "PATCH":
            for row in selected:
                row.update(payload)
            return httpx.Response(200, request=request, json=copy.deepcopy(selected))
        if method == "DELETE":
            self.tables[path] = [row for row in table if row not in selected]
            return httpx.Response(200, request=request, json=copy.deepcopy(selected))
        raise AssertionError(f"Unexpected method {method}")

    def _upsert(self, table: str, records: List[Dict[str, Any]], keys: List[str]) -> List[Dict[str, Any]]:
        result = []
        for record in records:
            existing = next(
                (
                    row
                    for row in self.tables[table]
                    if all(_as_text(row.get(key)) == _as_text(record.get(key)) for key in keys)
                ),
                None,
            )
            if existing is None:
                row = self.add(table, **record)
            else:
                values = dict(record)
                if table == "entries" and existing.get("is_scored"):
                    values = {key: value for key, value in values.items() if key not in SCORING_FIELDS}
                existing.update(values)
                row = existing
            result.append(copy.deepcopy(row))
        return result

    def _rpc(self, name: str, params: Dict[str, Any]) -> int:
        if name == "unlock_class_for_reupload":
            class_ids = {params["p_class_id"]}
        elif name == "unlock_trial_for_reupload":
            class_ids = {row["id"] for row in self.tables["classes"] if row.get("trial_id") == params["p_trial_id"]}
        else:
            raise AssertionError(f"Unknown rpc {name}")
        unlocked = 0
        for row in self.tables["entries"]:
            if row.get("class_id") in class_ids and row.get("is_scored"):
                row["is_scored"] = False
                unlocked += 1
        return unlocked

    @staticmethod
    def _project(row: Dict[str, Any], columns: str) -> Dict[str, Any]:
        if columns == "*":
            return copy.deepcopy(row)
        return {column: row.get(column) for column in columns.split(",")}


def _client_for(server: FakePostgrest):
    class _FakeClient:
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            self.timeout = kwargs.get("timeout")

        def __enter__(self) -> "_FakeClient":
            return self

        def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - nothing to clean up
            return None

        def get(self, endpoint: str, params: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
            return server.handle("GET", endpoint, params, None, headers)

        def post(self, endpoint: str, params: Dict[str, Any], json: Any, headers: Dict[str, str]) -> httpx.Response:
            return server.handle("POST", endpoint, params, json, headers)

        def patch(self, endpoint: str, params: Dict[str, Any], json: Any, headers: Dict[str, str]) -> httpx.Response:
            return server.handle("PATCH", endpoint, params, json, headers)

        def delete(self, endpoint: str, params: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
            return server.handle("DELETE", endpoint, params, None, headers)

    return _FakeClient


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def supabase_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", BASE_URL)
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "test-key")


@pytest.fixture
def fake_postgrest(monkeypatch: pytest.MonkeyPatch, supabase_env: None) -> FakePostgrest:
    server = FakePostgrest()
    monkeypatch.setattr(remote_module.httpx, "Client", _client_for(server))
    return server


def insert(store: LocalStore, table: str, **values: Any) -> int:
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    with store.connect() as conn:
        cursor = conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(values.values()))
        return int(cursor.lastrowid)


def _entry(store: LocalStore, class_id: int, armband: int, handler: str, dog: str, breed: str, **values: Any) -> int:
    handler_id = insert(store, "handlers", handler_name=handler)
    dog_id = insert(store, "dogs", call_name=dog, breed=breed)
    return insert(
        store,
        "entries",
        class_id=class_id,
        armband=armband,
        handler_id=handler_id,
        dog_id=dog_id,
        run_order=values.pop("run_order", armband),
        **values,
    )


@pytest.fixture
def show_db(tmp_path) -> SimpleNamespace:
    """One AKC show: trial 1 with two classes, trial 2 with one class."""

    store = LocalStore(tmp_path / "show.sqlite3")
    store.create_schema()

    club_id = insert(store, "clubs", club_name="Valley K9 Club")
    show_id = insert(
        store,
        "shows",
        club_id=club_id,
        show_name="Spring Scent Trials",
        organization="AKC Scent Work",
        start_date="2026-03-14",
        end_date="2026-03-15",
        license_key="myK9Q1-d8609f3b-d3fd43aa-1",
        license_status="Active and Valid",
        site_name="County Fairgrounds",
        secretary_name="Pat Lee",
    )
    trial_id = insert(store, "trials", show_id=show_id, trial_date="2026-03-14", trial_number=1, trial_type="Regular")
    trial2_id = insert(store, "trials", show_id=show_id, trial_date="2026-03-15", trial_number=1, trial_type="Regular")
    judge_id = insert(store, "judges", judge_name="Sam Ortiz")

    interior = insert(
        store,
        "classes",
        trial_id=trial_id,
        element="Interior",
        level="Excellent",
        section="A",
        judge_id=judge_id,
        time_limit="03:00",
        time_limit2="03:00",
        class_order=1,
    )
    container = insert(
        store,
        "classes",
        trial_id=trial_id,
        element="Container",
        level="Novice",
        section="",
        judge_id=judge_id,
        time_limit="02:00",
        class_order=2,
    )
    buried = insert(
        store,
        "classes",
        trial_id=trial2_id,
        element="Buried",
        level="Master",
        judge_id=judge_id,
        time_limit="04:00",
        class_order=1,
    )

    entries = {
        101: _entry(store, interior, 101, "Alex Kim", "Rosie", "Border Collie"),
        102: _entry(store, interior, 102, "Jo Park", "Max", "Beagle"),
        103: _entry(store, interior, 103, "Chris Dunn", "Pepper", "Vizsla"),
        201: _entry(store, container, 201, "Robin Shaw", "Ziggy", "Poodle"),
        202: _entry(store, container, 202, "Lee Grant", "Bo", "Labrador Retriever"),
        301: _entry(store, buried, 301, "Dana Fox", "Kit", "Golden Retriever"),
    }

    return SimpleNamespace(
        store=store,
        show_id=show_id,
        trial_id=trial_id,
        trial2_id=trial2_id,
        interior=interior,
        container=container,
        buried=buried,
        entries=entries,
    )


def score_locally(store: LocalStore, entry_id: int, **values: Any) -> None:
    values.setdefault("is_scored", 1)
    assignments = ", ".join(f"{column} = ?" for column in values)
    with store.connect() as conn:
        conn.execute(f"UPDATE entries SET {assignments} WHERE entry_id = ?", (*values.values(), entry_id))

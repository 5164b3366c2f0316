from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app import main


@pytest.fixture
def client(show_db, fake_postgrest, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MYK9Q_DB_PATH", str(show_db.store.db_path))
    main.store.cache_clear()
    main.remote_client.cache_clear()
    yield TestClient(main.app)
    main.store.cache_clear()
    main.remote_client.cache_clear()


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_upload_class_returns_report(client, show_db, fake_postgrest) -> None:
    response = client.post(f"/classes/{show_db.interior}/upload")

    assert response.status_code == 200
    body = response.json()
    assert body["scope"] == {"kind": "class", "localId": show_db.interior}
    assert body["entries"] == 3
    assert body["removedEntries"] == 0
    assert len(fake_postgrest.tables["entries"]) == 3


def test_scored_entries_need_a_decision(client, show_db, fake_postgrest) -> None:
    client.post(f"/classes/{show_db.interior}/upload")
    fake_postgrest.rows("entries", access_entry_id=show_db.entries[101])[0]["is_scored"] = True

    response = client.post(f"/classes/{show_db.interior}/upload")

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["scoredCount"] == 1
    assert detail["options"] == ["abort", "skip", "overwrite"]

    response = client.post(f"/classes/{show_db.interior}/upload", json={"onProtected": "skip"})
    assert response.status_code == 200
    assert response.json()["scoredCount"] == 1


def test_abort_choice_returns_conflict(client, show_db, fake_postgrest) -> None:
    client.post(f"/trials/{show_db.trial_id}/upload")
    fake_postgrest.rows("entries", access_entry_id=show_db.entries[201])[0]["is_scored"] = True

    response = client.post(f"/trials/{show_db.trial_id}/upload", json={"onProtected": "abort"})

    assert response.status_code == 409
    assert response.json()["detail"]["scoredCount"] == 1


def test_unknown_scope_is_404(client) -> None:
    response = client.post("/shows/404/upload")

    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


def test_inactive_license_is_403(client, show_db, fake_postgrest) -> None:
    with show_db.store.connect() as conn:
        conn.execute("UPDATE shows SET license_status = 'Suspended'")

    response = client.post(f"/shows/{show_db.show_id}/upload")

    assert response.status_code == 403
    assert fake_postgrest.requests == []


def test_remote_failure_is_502_with_body(client, show_db, fake_postgrest) -> None:
    fake_postgrest.failures[("POST", "shows")] = 503

    response = client.post(f"/shows/{show_db.show_id}/upload")

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["statusCode"] == 503
    assert "shows is unavailable" in detail["body"]


def test_download_and_delete_endpoints(client, show_db, fake_postgrest) -> None:
    client.post(f"/classes/{show_db.interior}/upload")
    fake_postgrest.rows("classes", access_class_id=show_db.interior)[0]["time_limit_seconds"] = 240

    response = client.post(f"/classes/{show_db.interior}/download")
    assert response.status_code == 200
    assert response.json()["timeLimits"] == 1
    assert show_db.store.fetch_classes(class_id=show_db.interior)[0].time_limit == "04:00"

    response = client.delete(f"/classes/{show_db.interior}/remote")
    assert response.status_code == 200
    assert response.json()["deleted"]["entries"] == 3
    assert fake_postgrest.tables["classes"] == []


def test_patch_show_details(client, show_db, fake_postgrest) -> None:
    client.post(f"/shows/{show_db.show_id}/upload")
    with show_db.store.connect() as conn:
        conn.execute("UPDATE shows SET show_status = 'closed'")

    response = client.patch(f"/shows/{show_db.show_id}/details")

    assert response.status_code == 200
    assert fake_postgrest.tables["shows"][0]["show_status"] == "closed"


def test_local_database_error_is_500(tmp_path, fake_postgrest, monkeypatch: pytest.MonkeyPatch) -> None:
    empty = tmp_path / "empty.sqlite3"
    empty.touch()
    monkeypatch.setenv("MYK9Q_DB_PATH", str(empty))
    main.store.cache_clear()
    main.remote_client.cache_clear()
    try:
        response = TestClient(main.app).post("/shows/1/upload")
    finally:
        main.store.cache_clear()
        main.remote_client.cache_clear()

    assert response.status_code == 500
    assert response.json()["detail"].startswith("Local database error")
    assert fake_postgrest.requests == []

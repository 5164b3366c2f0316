from __future__ import annotations

import pytest

from myk9q_sync.guard import ProtectedAction, ProtectionPrompt
from myk9q_sync.models import SyncScope
from scripts import run_sync


def test_cli_upload_prints_summary(show_db, fake_postgrest, capsys) -> None:
    exit_code = run_sync.main(["upload", "class", str(show_db.interior), "--db", str(show_db.store.db_path)])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "class 1: upload finished" in out
    assert "entries: 3" in out
    assert len(fake_postgrest.tables["entries"]) == 3


def test_cli_prompts_when_scored(show_db, fake_postgrest, capsys, monkeypatch: pytest.MonkeyPatch) -> None:
    run_sync.main(["upload", "class", str(show_db.interior), "--db", str(show_db.store.db_path)])
    fake_postgrest.rows("entries", access_entry_id=show_db.entries[101])[0]["is_scored"] = True
    answers = iter(["later", "a"])
    monkeypatch.setattr("builtins.input", lambda prompt: next(answers))

    exit_code = run_sync.main(["upload", "class", str(show_db.interior), "--db", str(show_db.store.db_path)])

    assert exit_code == 1
    out = capsys.readouterr().out
    assert "Please answer abort, skip or overwrite." in out
    assert "aborted (1 scored entries left untouched)" in out


def test_cli_reports_license_error(show_db, fake_postgrest, capsys) -> None:
    with show_db.store.connect() as conn:
        conn.execute("UPDATE shows SET license_status = ''")

    exit_code = run_sync.main(["delete", "show", str(show_db.show_id), "--db", str(show_db.store.db_path)])

    assert exit_code == 3
    assert "syncing requires 'Active and Valid'" in capsys.readouterr().err


def test_cli_rejects_show_download(show_db, capsys) -> None:
    assert run_sync.main(["download", "show", "1", "--db", str(show_db.store.db_path)]) == 2


def test_terminal_chooser_accepts_shortcuts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("builtins.input", lambda prompt: " O ")

    choice = run_sync.terminal_chooser(ProtectionPrompt(scope=SyncScope("trial", 2), scored_count=4))

    assert choice is ProtectedAction.OVERWRITE

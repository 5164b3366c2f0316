from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "myk9q_local.sqlite3"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class SupabaseConfig:
    """Connection settings for the hosted store, read from the environment."""

    url: str = ""
    key: str = ""
    schema: str = "public"
    shows_table: str = "shows"
    trials_table: str = "trials"
    classes_table: str = "classes"
    entries_table: str = "entries"
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        return cls(
            url=os.getenv("SUPABASE_URL", ""),
            key=(
                os.getenv("SUPABASE_SERVICE_ROLE_KEY")
                or os.getenv("SUPABASE_SERVICE_KEY")
                or os.getenv("SUPABASE_ANON_KEY")
                or ""
            ),
            schema=os.getenv("SUPABASE_SCHEMA", "public"),
            shows_table=os.getenv("SUPABASE_SHOWS_TABLE", "shows"),
            trials_table=os.getenv("SUPABASE_TRIALS_TABLE", "trials"),
            classes_table=os.getenv("SUPABASE_CLASSES_TABLE", "classes"),
            entries_table=os.getenv("SUPABASE_ENTRIES_TABLE", "entries"),
            timeout=_float_env("MYK9Q_HTTP_TIMEOUT", 10.0),
        )

    @property
    def configured(self) -> bool:
        return bool(self.url and self.key)

    def table_for(self, entity: str) -> str:
        tables = {
            "show": self.shows_table,
            "trial": self.trials_table,
            "class": self.classes_table,
            "entry": self.entries_table,
        }
        try:
            return tables[entity]
        except KeyError:
            raise ValueError(f"Unknown entity '{entity}'") from None


def local_db_path() -> Path:
    raw = os.getenv("MYK9Q_DB_PATH", "").strip()
    return Path(raw) if raw else DEFAULT_DB_PATH

from __future__ import annotations

import logging
from typing import Dict, Iterable, Tuple

from .remote import RemoteClient, eq, in_


logger = logging.getLogger(__name__)

ENTITIES = ("show", "trial", "class", "entry")


class IdCache:
    """Maps local autonumber ids to ids assigned by the hosted store.

    Every remote row carries ``access_<entity>_id`` and the show's
    ``license_key``; lookups filter on both because every club's local
    database numbers its rows from 1. Shows are looked up by license key
    alone. Nothing is persisted, so a new cache is built for every sync call.
    A result of 0 means the row has not been uploaded yet.
    """

    def __init__(self, remote: RemoteClient, license_key: str) -> None:
        if not license_key:
            raise ValueError("A license key is required to resolve remote ids")
        self._remote = remote
        self.license_key = license_key
        self._ids: Dict[Tuple[str, int], int] = {}

    @staticmethod
    def column(entity: str) -> str:
        if entity not in ENTITIES:
            raise ValueError(f"Unknown entity '{entity}'")
        return f"access_{entity}_id"

    def resolve(self, entity: str, local_id: int) -> int:
        key = (entity, int(local_id))
        if key in self._ids:
            return self._ids[key]

        column = self.column(entity)
        rows = self._remote.select(
            self._remote.config.table_for(entity),
            self._filters(entity, {column: eq(int(local_id))}),
            columns=f"id,{column}",
        )
        remote_id = self._first_id(rows)
        if remote_id:
            self._ids[key] = remote_id
        else:
            logger.debug("No remote %s for local id %s", entity, local_id)
        return remote_id

    def prime(self, entity: str, local_ids: Iterable[int]) -> None:
        """Resolve many ids with a single ``in.(...)`` query."""

        pending = sorted({int(value) for value in local_ids if (entity, int(value)) not in self._ids})
        if not pending:
            return
        column = self.column(entity)
        rows = self._remote.select(
            self._remote.config.table_for(entity),
            self._filters(entity, {column: in_(pending)}),
            columns=f"id,{column}",
        )
        for row in rows:
            try:
                local_id = int(row[column])
                remote_id = int(row["id"])
            except (KeyError, TypeError, ValueError):
                continue
            self._ids[(entity, local_id)] = remote_id

    def remember(self, entity: str, local_id: int, remote_id: int) -> None:
        self.column(entity)
        if remote_id:
            self._ids[(entity, int(local_id))] = int(remote_id)

    def remember_rows(self, entity: str, rows: Iterable[dict]) -> None:
        column = self.column(entity)
        for row in rows:
            try:
                self.remember(entity, int(row[column]), int(row["id"]))
            except (KeyError, TypeError, ValueError):
                continue

    def forget(self, entity: str, local_id: int) -> None:
        self._ids.pop((entity, int(local_id)), None)

    def _filters(self, entity: str, filters: Dict[str, str]) -> Dict[str, str]:
        if entity == "show":
            return {"license_key": eq(self.license_key)}
        return {**filters, "license_key": eq(self.license_key)}

    @staticmethod
    def _first_id(rows: list) -> int:
        for row in rows:
            try:
                return int(row["id"])
            except (KeyError, TypeError, ValueError):
                continue
        return 0

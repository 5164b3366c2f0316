from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from .config import SupabaseConfig
from .errors import RemoteError


logger = logging.getLogger(__name__)


def eq(value: Any) -> str:
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def in_(values: Iterable[Any]) -> str:
    return "in.(" + ",".join(str(value) for value in values) + ")"


class RemoteClient:
    """Blocking PostgREST client for the hosted show database.

    Every call opens its own ``httpx.Client``; there is no retry. A non-2xx
    answer becomes :class:`RemoteError` carrying the status and raw body so the
    operator can read it and re-run.
    """

    def __init__(self, config: SupabaseConfig | None = None) -> None:
        self.config = config or SupabaseConfig.from_env()

    # ---- public operations ---------------------------------------------------

    def select(
        self,
        table: str,
        filters: Dict[str, str] | None = None,
        columns: str = "*",
        order: str | None = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"select": columns}
        if order:
            params["order"] = order
        params.update(filters or {})
        rows = self._send("GET", self._endpoint(table), params, headers=self._headers(include_content_profile=False))
        return self._rows(rows)

    def upsert(
        self,
        table: str,
        records: Sequence[Dict[str, Any]],
        conflict_keys: Sequence[str],
    ) -> List[Dict[str, Any]]:
        """Insert ``records`` in one request, merging rows that hit ``conflict_keys``."""

        if not records:
            return []
        headers = self._headers("resolution=merge-duplicates,return=representation")
        headers["Content-Type"] = "application/json"
        params = {"on_conflict": ",".join(conflict_keys)}
        rows = self._send("POST", self._endpoint(table), params, headers=headers, payload=list(records))
        return self._rows(rows)

    def patch(self, table: str, filters: Dict[str, str], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to PATCH without a filter")
        headers = self._headers("return=representation")
        headers["Content-Type"] = "application/json"
        rows = self._send("PATCH", self._endpoint(table), dict(filters), headers=headers, payload=values)
        return self._rows(rows)

    def delete(self, table: str, filters: Dict[str, str]) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to DELETE without a filter")
        headers = self._headers("return=representation")
        rows = self._send("DELETE", self._endpoint(table), dict(filters), headers=headers)
        return self._rows(rows)

    def rpc(self, name: str, params: Dict[str, Any]) -> Any:
        headers = self._headers()
        headers["Content-Type"] = "application/json"
        return self._send("POST", self._endpoint(f"rpc/{name}"), {}, headers=headers, payload=params)

    def unlock_class_for_reupload(self, class_id: int) -> int:
        return self._count(self.rpc("unlock_class_for_reupload", {"p_class_id": class_id}))

    def unlock_trial_for_reupload(self, trial_id: int) -> int:
        return self._count(self.rpc("unlock_trial_for_reupload", {"p_trial_id": trial_id}))

    # ---- internal helpers ----------------------------------------------------

    def _endpoint(self, path: str) -> str:
        return f"{self.config.url.rstrip('/')}/rest/v1/{path}"

    def _headers(self, prefer: str | None = None, include_content_profile: bool = True) -> Dict[str, str]:
        headers = {
            "apikey": self.config.key,
            "Authorization": f"Bearer {self.config.key}",
            "Accept": "application/json",
        }
        schema = self.config.schema
        if include_content_profile and schema and schema != "public":
            headers["Content-Profile"] = schema
        if schema and schema != "public":
            headers["Accept-Profile"] = schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _send(
        self,
        method: str,
        endpoint: str,
        params: Dict[str, Any],
        headers: Dict[str, str],
        payload: Any = None,
    ) -> Any:
        if not self.config.configured:
            raise RuntimeError("Supabase configuration is required (SUPABASE_URL and a service or anon key)")

        logger.debug("%s %s params=%s", method, endpoint, params)
        try:
            with httpx.Client(timeout=self.config.timeout) as client:
                if method == "GET":
                    response = client.get(endpoint, params=params, headers=headers)
                elif method == "POST":
                    response = client.post(endpoint, params=params, json=payload, headers=headers)
                elif method == "PATCH":
                    response = client.patch(endpoint, params=params, json=payload, headers=headers)
                elif method == "DELETE":
                    response = client.delete(endpoint, params=params, headers=headers)
                else:
                    raise ValueError(f"Unsupported method {method}")
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            body = exc.response.text or ""
            detail = self._extract_detail(exc.response)
            message = f"{method} {endpoint} failed with HTTP {status_code}"
            if detail:
                message = f"{message}: {detail}"
            raise RemoteError(message, status_code=status_code, body=body, detail=detail) from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {endpoint} request failed: {exc}") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _rows(payload: Any) -> List[Dict[str, Any]]:
        if isinstance(payload, list):
            return [row for row in payload if isinstance(row, dict)]
        if isinstance(payload, dict):
            return [payload]
        return []

    @staticmethod
    def _count(payload: Any) -> int:
        if isinstance(payload, bool):
            return int(payload)
        if isinstance(payload, (int, float)):
            return int(payload)
        if isinstance(payload, str) and payload.strip().isdigit():
            return int(payload.strip())
        if isinstance(payload, list) and payload:
            return RemoteClient._count(payload[0])
        if isinstance(payload, dict):
            for value in payload.values():
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    return int(value)
        return 0

    @staticmethod
    def _extract_detail(response: Optional[httpx.Response]) -> Optional[str]:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, list) and payload:
            payload = payload[0]
        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None

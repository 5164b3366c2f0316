from __future__ import annotations

import logging
import sqlite3
from functools import lru_cache
from typing import Callable, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from myk9q_sync import (
    LicenseError,
    LocalStore,
    ProtectedAction,
    ProtectionPrompt,
    RemoteClient,
    RemoteError,
    SyncOrchestrator,
    SyncReport,
    SyncScope,
    fixed_chooser,
)
from myk9q_sync.config import local_db_path

app = FastAPI(title="myK9Q Sync API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)


class SyncRequest(BaseModel):
    on_protected: Optional[ProtectedAction] = Field(
        default=None,
        alias="onProtected",
        description="What to do with already-scored entries; omit to be asked via HTTP 409",
    )

    model_config = ConfigDict(populate_by_name=True)


class ScopeModel(BaseModel):
    kind: str
    local_id: int = Field(alias="localId")

    model_config = ConfigDict(populate_by_name=True)


class SyncReportModel(BaseModel):
    scope: ScopeModel
    direction: str
    shows: int = 0
    trials: int = 0
    classes: int = 0
    entries: int = 0
    removed_entries: int = Field(default=0, alias="removedEntries")
    skipped_classes: int = Field(default=0, alias="skippedClasses")
    skipped_entries: int = Field(default=0, alias="skippedEntries")
    time_limits: int = Field(default=0, alias="timeLimits")
    downloaded: int = 0
    protected_skipped: int = Field(default=0, alias="protectedSkipped")
    kept_scored: int = Field(default=0, alias="keptScored")
    placements: int = 0
    scored_count: int = Field(default=0, alias="scoredCount")
    unlocked: int = 0
    overwrite: bool = False
    aborted: bool = False
    deleted: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class DecisionRequired(Exception):
    """Raised by the HTTP chooser when scored entries exist and no choice was sent."""

    def __init__(self, prompt: ProtectionPrompt) -> None:
        super().__init__(prompt.message)
        self.prompt = prompt


@lru_cache(maxsize=1)
def store() -> LocalStore:
    return LocalStore(local_db_path())


@lru_cache(maxsize=1)
def remote_client() -> RemoteClient:
    return RemoteClient()


def orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator(store(), remote_client())


def _chooser(payload: Optional[SyncRequest]):
    if payload is not None and payload.on_protected is not None:
        return fixed_chooser(payload.on_protected)

    def ask_caller(prompt: ProtectionPrompt) -> ProtectedAction:
        raise DecisionRequired(prompt)

    return ask_caller


def _run(action: Callable[[], SyncReport]) -> SyncReportModel:
    try:
        report = action()
    except DecisionRequired as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": exc.prompt.message,
                "scoredCount": exc.prompt.scored_count,
                "direction": exc.prompt.direction,
                "options": [choice.value for choice in ProtectedAction],
            },
        ) from exc
    except LicenseError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        message = str(exc)
        if "not found" in message.lower():
            raise HTTPException(status_code=404, detail=message) from exc
        raise HTTPException(status_code=400, detail=message) from exc
    except RemoteError as exc:
        logger.warning("Remote store call failed: %s", exc)
        raise HTTPException(status_code=502, detail=exc.as_dict()) from exc
    except sqlite3.Error as exc:
        logger.exception("Local database error")
        raise HTTPException(status_code=500, detail=f"Local database error: {exc}") from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    if report.aborted:
        raise HTTPException(
            status_code=409,
            detail={"message": "Sync aborted by operator", "scoredCount": report.scored_count},
        )
    return SyncReportModel(**report.as_dict())


def _upload(kind: str, local_id: int, payload: Optional[SyncRequest]) -> SyncReportModel:
    scope = SyncScope(kind, local_id)
    return _run(lambda: orchestrator().upload(scope, _chooser(payload)))


def _download(kind: str, local_id: int, payload: Optional[SyncRequest]) -> SyncReportModel:
    scope = SyncScope(kind, local_id)
    return _run(lambda: orchestrator().download(scope, _chooser(payload)))


def _delete(kind: str, local_id: int) -> SyncReportModel:
    scope = SyncScope(kind, local_id)
    return _run(lambda: orchestrator().delete_remote(scope))


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/shows/{show_id}/upload", response_model=SyncReportModel)
def upload_show(show_id: int, payload: Optional[SyncRequest] = None):
    return _upload("show", show_id, payload)


@app.post("/trials/{trial_id}/upload", response_model=SyncReportModel)
def upload_trial(trial_id: int, payload: Optional[SyncRequest] = None):
    return _upload("trial", trial_id, payload)


@app.post("/classes/{class_id}/upload", response_model=SyncReportModel)
def upload_class(class_id: int, payload: Optional[SyncRequest] = None):
    return _upload("class", class_id, payload)


@app.post("/trials/{trial_id}/download", response_model=SyncReportModel)
def download_trial(trial_id: int, payload: Optional[SyncRequest] = None):
    return _download("trial", trial_id, payload)


@app.post("/classes/{class_id}/download", response_model=SyncReportModel)
def download_class(class_id: int, payload: Optional[SyncRequest] = None):
    return _download("class", class_id, payload)


@app.delete("/shows/{show_id}/remote", response_model=SyncReportModel)
def delete_show(show_id: int):
    return _delete("show", show_id)


@app.delete("/trials/{trial_id}/remote", response_model=SyncReportModel)
def delete_trial(trial_id: int):
    return _delete("trial", trial_id)


@app.delete("/classes/{class_id}/remote", response_model=SyncReportModel)
def delete_class(class_id: int):
    return _delete("class", class_id)


@app.patch("/shows/{show_id}/details", response_model=SyncReportModel)
def update_show_details(show_id: int):
    return _run(lambda: orchestrator().update_show_details(show_id))

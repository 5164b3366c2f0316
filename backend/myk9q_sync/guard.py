"""Scored-entry protection.

Before a re-upload the guard counts remote entries already marked scored in the
scope. If there are any, the operator picks one of three outcomes: abort,
skip the protected rows (the server trigger keeps them as they are) or force an
overwrite, which first unlocks the scope through an RPC.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from .errors import SyncAborted
from .id_cache import IdCache
from .models import ScopeSnapshot, SyncScope
from .remote import RemoteClient, eq, in_


logger = logging.getLogger(__name__)


class ProtectedAction(str, Enum):
    ABORT = "abort"
    SKIP = "skip"
    OVERWRITE = "overwrite"


@dataclass(frozen=True)
class ProtectionPrompt:
    scope: SyncScope
    scored_count: int
    direction: str = "upload"

    @property
    def message(self) -> str:
        where = "in the hosted results" if self.direction == "upload" else "locally"
        return (
            f"{self.scored_count} entr{'y is' if self.scored_count == 1 else 'ies are'} already scored "
            f"{where} for {self.scope.label()}. Abort, skip the scored entries, or overwrite them?"
        )


Chooser = Callable[[ProtectionPrompt], Union[ProtectedAction, str]]


def fixed_chooser(action: Union[ProtectedAction, str]) -> Chooser:
    """Chooser that always answers ``action``, for non-interactive callers."""

    choice = _coerce(action)

    def choose(prompt: ProtectionPrompt) -> ProtectedAction:
        logger.info("Scored entries found (%s); pre-selected action: %s", prompt.scored_count, choice.value)
        return choice

    return choose


def _coerce(answer: Union[ProtectedAction, str]) -> ProtectedAction:
    if isinstance(answer, ProtectedAction):
        return answer
    try:
        return ProtectedAction(str(answer).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown protected-entry action '{answer}'") from None


def ask(chooser: Chooser, prompt: ProtectionPrompt) -> ProtectedAction:
    return _coerce(chooser(prompt))


@dataclass
class GuardDecision:
    overwrite: bool = False
    scored_count: int = 0
    unlocked: int = 0
    action: Optional[ProtectedAction] = None


class ScoreProtectionGuard:
    def __init__(self, remote: RemoteClient, ids: IdCache, chooser: Chooser) -> None:
        self._remote = remote
        self._ids = ids
        self._chooser = chooser

    def check(self, scope: SyncScope, snapshot: ScopeSnapshot) -> GuardDecision:
        """Run once before an upload cascade starts.

        Raises :class:`SyncAborted` when the operator aborts; nothing has been
        written at that point.
        """

        if scope.kind == "class":
            remote_class_id = self._ids.resolve("class", scope.local_id)
            scored = self._scored_in_classes([remote_class_id]) if remote_class_id else 0
            per_trial: Dict[int, int] = {}
        else:
            trials = snapshot.trials if scope.kind == "show" else [t for t in snapshot.trials if t.trial_id == scope.local_id]
            per_trial = {}
            for trial in trials:
                remote_trial_id = self._ids.resolve("trial", trial.trial_id)
                if not remote_trial_id:
                    continue
                count = self._scored_in_trial(remote_trial_id)
                if count:
                    per_trial[remote_trial_id] = count
            scored = sum(per_trial.values())

        if not scored:
            return GuardDecision()

        action = ask(self._chooser, ProtectionPrompt(scope=scope, scored_count=scored))
        logger.info("Operator chose %s for %s scored entries in %s", action.value, scored, scope.label())

        if action is ProtectedAction.ABORT:
            raise SyncAborted(scored_count=scored)
        if action is ProtectedAction.SKIP:
            return GuardDecision(overwrite=False, scored_count=scored, action=action)

        if scope.kind == "class":
            unlocked = self._remote.unlock_class_for_reupload(self._ids.resolve("class", scope.local_id))
        else:
            unlocked = sum(self._remote.unlock_trial_for_reupload(trial_id) for trial_id in per_trial)
        logger.info("Unlocked %s scored entries in %s for re-upload", unlocked, scope.label())
        return GuardDecision(overwrite=True, scored_count=scored, unlocked=unlocked, action=action)

    def _scored_in_trial(self, remote_trial_id: int) -> int:
        classes = self._remote.select(
            self._remote.config.classes_table,
            {"trial_id": eq(remote_trial_id)},
            columns="id",
        )
        class_ids: List[int] = [int(row["id"]) for row in classes if row.get("id")]
        return self._scored_in_classes(class_ids)

    def _scored_in_classes(self, remote_class_ids: List[int]) -> int:
        if not remote_class_ids:
            return 0
        if len(remote_class_ids) == 1:
            class_filter = eq(remote_class_ids[0])
        else:
            class_filter = in_(remote_class_ids)
        rows = self._remote.select(
            self._remote.config.entries_table,
            {"class_id": class_filter, "is_scored": eq(True)},
            columns="id",
        )
        return len(rows)

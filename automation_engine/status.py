from __future__ import annotations

"""Automation lifecycle: draft / active / paused / error, with publish guards."""

import logging
from typing import Callable, List, Optional

from automation_engine.collaborators import AutomationStore
from automation_engine.models import AutomationStatus, Graph
from automation_engine.validation import ValidationResult, validate_graph

logger = logging.getLogger("automation.status")

USER_TARGETS: frozenset[str] = frozenset({"draft", "active", "paused"})


class TransitionError(Exception):
    """Base class for status transition failures."""


class PublishBlocked(TransitionError):
    """The guard rejected activation; nothing was persisted."""

    def __init__(self, reasons: List[str], validation: ValidationResult | None = None) -> None:
        super().__init__("; ".join(reasons))
        self.reasons = reasons
        self.validation = validation


class StatusPersistError(TransitionError):
    """The transition was accepted but could not be persisted."""


def enabled_for(status: str) -> bool:
    return status == "active"


class StatusMachine:
    """Tracks and persists the status of one automation.

    Guards are evaluated synchronously against local state at request time;
    local status only changes after the store accepted the new value.
    """

    def __init__(
        self,
        automation_id: str,
        store: AutomationStore,
        *,
        status: AutomationStatus = "draft",
        is_dirty: Callable[[], bool] = lambda: False,
        current_graph: Callable[[], Graph] | None = None,
    ) -> None:
        self._automation_id = automation_id
        self._store = store
        self._status: AutomationStatus = status
        self._is_dirty = is_dirty
        self._current_graph = current_graph

    @property
    def status(self) -> AutomationStatus:
        return self._status

    @property
    def enabled(self) -> bool:
        return enabled_for(self._status)

    def check_publish(self) -> Optional[PublishBlocked]:
        """Return why activation would be rejected right now, if it would."""

        reasons: List[str] = []
        validation = None
        if self._is_dirty():
            reasons.append("Save your changes before activating")
        if self._current_graph is not None:
            validation = validate_graph(self._current_graph())
            if not validation.valid:
                reasons.append(f"Fix configuration issues first ({validation.summary()})")
        if reasons:
            return PublishBlocked(reasons, validation)
        return None

    async def request(self, target: AutomationStatus) -> AutomationStatus:
        """Move to ``target`` on behalf of the user.

        Raises :class:`PublishBlocked` when activation is guarded off and
        :class:`StatusPersistError` when the store fails.
        """

        if target not in USER_TARGETS:
            raise TransitionError(f"Status '{target}' cannot be requested directly.")
        if target == "active":
            blocked = self.check_publish()
            if blocked is not None:
                logger.info("Activation of %s blocked: %s", self._automation_id, blocked)
                raise blocked
        await self._persist(target)
        logger.info("Automation %s is now %s", self._automation_id, target)
        return self._status

    async def mark_error(self) -> AutomationStatus:
        """Escalate to ``error`` after a failed live run."""

        await self._persist("error")
        logger.warning("Automation %s moved to error status", self._automation_id)
        return self._status

    async def _persist(self, target: AutomationStatus) -> None:
        try:
            await self._store.update_automation(
                self._automation_id,
                {"status": target, "enabled": enabled_for(target)},
            )
        except Exception as exc:
            raise StatusPersistError(
                f"Could not set automation '{self._automation_id}' to {target}: {exc}"
            ) from exc
        self._status = target


__all__ = [
    "PublishBlocked",
    "StatusMachine",
    "StatusPersistError",
    "TransitionError",
    "USER_TARGETS",
    "enabled_for",
]

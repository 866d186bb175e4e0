"""
Action types and dispatch result structures.

Auto-responses (warn, timeout, delete, kick, ban, revoke_permissions) each have
a compensating inverse used when an appeal is approved or a moderator
overrides a violation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from modguard.datatypes.violation_datatypes import ViolationRecord
    from modguard.exceptions import ActionFailure


FAILED_PREFIX = "failed:"


class ActionType(Enum):
    """Enumeration of supported moderation actions."""

    WARN = "warn"
    TIMEOUT = "timeout"
    DELETE = "delete"
    KICK = "kick"
    BAN = "ban"
    REVOKE_PERMISSIONS = "revoke_permissions"

    # Compensating actions
    UNBAN = "unban"
    TIMEOUT_CLEAR = "timeout_clear"
    RESTORE_MESSAGE = "restore_message"
    RESTORE_PERMISSIONS = "restore_permissions"
    CLEAR_VIOLATION = "clear_violation"

    def __str__(self) -> str:
        return self.value

    @property
    def is_compensating(self) -> bool:
        """True for actions that undo a prior auto-response."""
        return self in COMPENSATING_ACTIONS

    @property
    def inverse(self) -> "ActionType":
        """The action that undoes this one.

        Kicks cannot be reverted on the platform, so like warnings they are
        compensated by clearing the violation.

        Raises:
            ValueError: If called on a compensating action.
        """
        try:
            return INVERSE_ACTIONS[self]
        except KeyError:
            raise ValueError(f"{self.value} has no inverse action") from None


INVERSE_ACTIONS: dict[ActionType, ActionType] = {
    ActionType.BAN: ActionType.UNBAN,
    ActionType.TIMEOUT: ActionType.TIMEOUT_CLEAR,
    ActionType.WARN: ActionType.CLEAR_VIOLATION,
    ActionType.DELETE: ActionType.RESTORE_MESSAGE,
    ActionType.REVOKE_PERMISSIONS: ActionType.RESTORE_PERMISSIONS,
    ActionType.KICK: ActionType.CLEAR_VIOLATION,
}

COMPENSATING_ACTIONS: frozenset[ActionType] = frozenset(INVERSE_ACTIONS.values())


def parse_ledger_action(value: str) -> tuple[ActionType, bool]:
    """Split a ledger action string into ``(action, failed)``.

    >>> parse_ledger_action("failed:ban")
    (<ActionType.BAN: 'ban'>, True)
    """
    if value.startswith(FAILED_PREFIX):
        return ActionType(value[len(FAILED_PREFIX):]), True
    return ActionType(value), False


@dataclass(slots=True)
class DispatchResult:
    """
    Outcome of a single :meth:`ActionDispatcher.apply` call.

    Attributes:
        ok: True if the action is in effect after the call.
        action: The action that was requested.
        record: Ledger entry written for this dispatch, None for idempotent no-ops.
        error: Structured failure when ``ok`` is False.
        attempts: Number of platform calls made.
        already_applied: True when the call was a no-op because the state already held.
    """

    ok: bool
    action: ActionType
    record: Optional["ViolationRecord"] = None
    error: Optional["ActionFailure"] = None
    attempts: int = 0
    already_applied: bool = False

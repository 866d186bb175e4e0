"""
Exception taxonomy for the ModGuard engine.

Detection never raises for "no violation"; that is an ``allow`` verdict. The
classes here cover malformed input, rejected configuration, platform action
failures and appeal workflow refusals.
"""

from __future__ import annotations


class ModGuardError(Exception):
    """Base class for every error raised by the engine."""


class MalformedEventError(ModGuardError):
    """A raw gateway payload could not be turned into a ModerationEvent."""


class ConfigurationError(ModGuardError):
    """A guild policy failed validation and was not stored."""


# ---------------------------------------------------------------------------
# Platform actions
# ---------------------------------------------------------------------------

class ActionFailure(ModGuardError):
    """A platform action call did not succeed."""

    def __init__(self, action: str, detail: str = "") -> None:
        self.action = action
        self.detail = detail
        super().__init__(f"{action} failed: {detail}" if detail else f"{action} failed")


class TransientActionFailure(ActionFailure):
    """Timeout or rate limit; the call may succeed if retried."""


class PermanentActionFailure(ActionFailure):
    """Permission denied or target gone; retrying will not help."""


# ---------------------------------------------------------------------------
# Appeals
# ---------------------------------------------------------------------------

class AppealError(ModGuardError):
    """Base class for synchronous refusals from the appeal workflow."""


class AlreadyResolved(AppealError):
    """The appeal (or overridden violation) is already in a terminal state."""


class CooldownActive(AppealError):
    """Another appeal for the same category was submitted too recently."""

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"appeal cooldown active, retry in {retry_after:.0f}s")


class NotFound(AppealError):
    """The referenced appeal or violation record does not exist for this guild/user."""


class InvalidTransition(AppealError):
    """The requested status change is not allowed from the current state."""


class AppealsDisabled(AppealError):
    """The guild does not accept appeal submissions."""

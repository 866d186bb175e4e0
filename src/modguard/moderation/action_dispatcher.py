"""
Executes auto-responses and their inverses against the platform.

Every successful dispatch writes exactly one ledger entry, no matter how many
platform attempts it took. Failed dispatches are written too, as
``failed:<action>``, so moderators can see where enforcement did not happen.
"""

from __future__ import annotations

import asyncio
import math
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from modguard.datatypes.action_datatypes import FAILED_PREFIX, ActionType, DispatchResult
from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, UserID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.datatypes.violation_datatypes import ViolationRecord
from modguard.exceptions import ActionFailure, PermanentActionFailure, TransientActionFailure
from modguard.moderation.interfaces import Notifier, PlatformActionAPI
from modguard.moderation.violation_ledger import ViolationLedger
from modguard.util.logger import get_logger

logger = get_logger("action_dispatcher")

# Platform ceiling for a single timeout
MAX_TIMEOUT_MINUTES = 28 * 24 * 60


@dataclass(slots=True)
class EnforcementState:
    """What the dispatcher believes is currently applied to one member."""

    banned: bool = False
    timeout_until: Optional[datetime] = None
    revoked: bool = False


class ActionDispatcher:
    """
    Idempotent action execution with bounded retries.

    * ``ban`` on a member already banned by this dispatcher is a no-op success.
    * ``timeout`` on a member already timed out extends the timeout.
    * ``revoke_permissions`` on a member whose roles are already revoked is a no-op.
    * Transient failures are retried with exponential backoff
      (``backoff_base * 2**(attempt - 1)``) up to ``max_attempts`` total calls, then
      reported as permanent.

    Calls for the same (guild, user) are serialized so concurrent dispatches
    cannot both observe "not yet applied".
    """

    def __init__(
        self,
        platform: PlatformActionAPI,
        ledger: ViolationLedger,
        *,
        notifier: Optional[Notifier] = None,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        default_timeout_minutes: int = 60,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._platform = platform
        self._ledger = ledger
        self._notifier = notifier
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = backoff_base
        self._default_timeout_minutes = default_timeout_minutes
        self._sleep = sleep
        self._clock = clock
        self._states: Dict[Tuple[GuildID, UserID], EnforcementState] = {}
        self._locks: "weakref.WeakValueDictionary[Tuple[GuildID, UserID], asyncio.Lock]" = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def state_for(self, guild_id: GuildID, user_id: UserID) -> EnforcementState:
        return self._states.setdefault((guild_id, user_id), EnforcementState())

    async def apply(
        self,
        guild_id: GuildID,
        user_id: UserID,
        action: ActionType,
        reason: str,
        *,
        category: EventCategory,
        duration_minutes: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> DispatchResult:
        """
        Apply one action to a member and log it to the ledger.

        Args:
            guild_id: Guild to act in.
            user_id: Target member.
            action: Action to apply.
            reason: Audit reason, stored on the ledger entry.
            category: Violation category the action responds to.
            duration_minutes: Timeout length; defaults to the configured duration.
            details: Action inputs (``channel_id``/``message_id``/``content`` for
                message actions, ``role_ids`` for role restoration).

        Returns:
            DispatchResult: Never raises for platform failures; inspect ``ok``.
        """
        key = (guild_id, user_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock

        async with lock:
            return await self._apply_locked(
                guild_id, user_id, action, reason, category, duration_minutes, dict(details or {})
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _apply_locked(
        self,
        guild_id: GuildID,
        user_id: UserID,
        action: ActionType,
        reason: str,
        category: EventCategory,
        duration_minutes: Optional[int],
        details: Dict[str, Any],
    ) -> DispatchResult:
        state = self.state_for(guild_id, user_id)
        now = self._clock()

        if (action is ActionType.BAN and state.banned) or (action is ActionType.REVOKE_PERMISSIONS and state.revoked):
            logger.debug("[DISPATCHER] %s already applied to user %s in guild %s", action, user_id, guild_id)
            return DispatchResult(ok=True, action=action, already_applied=True)

        if action is ActionType.TIMEOUT:
            minutes = duration_minutes or self._default_timeout_minutes
            start = state.timeout_until if state.timeout_until and state.timeout_until > now else now
            until = min(start + timedelta(minutes=minutes), now + timedelta(minutes=MAX_TIMEOUT_MINUTES))
            details["timeout_until"] = until.isoformat()
            details["duration_minutes"] = math.ceil((until - now).total_seconds() / 60)

        attempts = 0
        error: Optional[ActionFailure] = None
        last_transient: Optional[TransientActionFailure] = None

        while attempts < self._max_attempts:
            attempts += 1
            try:
                outcome = await self._call_platform(guild_id, user_id, action, reason, details)
                error = None
                break
            except PermanentActionFailure as exc:
                error = exc
                break
            except TransientActionFailure as exc:
                last_transient = exc
                error = exc
                logger.warning(
                    "[DISPATCHER] %s on user %s failed (attempt %d/%d): %s",
                    action, user_id, attempts, self._max_attempts, exc.detail,
                )
                if attempts < self._max_attempts:
                    await self._sleep(self._backoff_base * (2 ** (attempts - 1)))
            except Exception as exc:
                logger.exception("[DISPATCHER] Unexpected error running %s on user %s", action, user_id)
                error = PermanentActionFailure(action.value, f"unexpected error: {exc!r}")
                break

        if error is not None:
            if isinstance(error, TransientActionFailure):
                detail = last_transient.detail if last_transient else ""
                error = PermanentActionFailure(action.value, f"retries exhausted after {attempts} attempts: {detail}")
            record = await self._ledger.append(
                ViolationRecord(
                    guild_id=guild_id,
                    user_id=user_id,
                    category=category,
                    action=f"{FAILED_PREFIX}{action.value}",
                    reason=f"{reason} ({error.detail})" if error.detail else reason,
                    timestamp=now,
                    details=details,
                )
            )
            logger.error("[DISPATCHER] %s on user %s in guild %s failed: %s", action, user_id, guild_id, error)
            return DispatchResult(ok=False, action=action, record=record, error=error, attempts=attempts)

        if outcome is not None:
            details.update(outcome)
        self._update_state(state, action, details)

        record = await self._ledger.append(
            ViolationRecord(
                guild_id=guild_id,
                user_id=user_id,
                category=category,
                action=action.value,
                reason=reason,
                timestamp=now,
                details=details,
            )
        )
        logger.info("[DISPATCHER] Applied %s to user %s in guild %s: %s", action, user_id, guild_id, reason)
        return DispatchResult(ok=True, action=action, record=record, attempts=attempts)

    async def _call_platform(
        self,
        guild_id: GuildID,
        user_id: UserID,
        action: ActionType,
        reason: str,
        details: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Run the platform call for ``action``; returns details to merge into the record."""
        platform = self._platform
        channel_id = ChannelID(details["channel_id"]) if details.get("channel_id") is not None else None

        match action:
            case ActionType.WARN:
                if self._notifier is not None:
                    await self._notifier.notify_user(guild_id, user_id, f"You have been warned: {reason}")
            case ActionType.TIMEOUT:
                await platform.timeout(guild_id, user_id, int(details["duration_minutes"]), reason)
            case ActionType.DELETE:
                await platform.delete_message(guild_id, channel_id, details.get("message_id"), reason)
            case ActionType.KICK:
                await platform.kick(guild_id, user_id, reason)
            case ActionType.BAN:
                await platform.ban(guild_id, user_id, reason)
            case ActionType.REVOKE_PERMISSIONS:
                removed = await platform.remove_roles(guild_id, user_id, reason)
                return {"role_ids": [int(role_id) for role_id in removed or []]}
            case ActionType.UNBAN:
                await platform.unban(guild_id, user_id, reason)
            case ActionType.TIMEOUT_CLEAR:
                await platform.clear_timeout(guild_id, user_id, reason)
            case ActionType.RESTORE_MESSAGE:
                await platform.restore_message(guild_id, channel_id, str(details.get("content", "")), reason)
            case ActionType.RESTORE_PERMISSIONS:
                role_ids = [RoleID(role_id) for role_id in details.get("role_ids", [])]
                await platform.restore_roles(guild_id, user_id, role_ids, reason)
            case ActionType.CLEAR_VIOLATION:
                pass
        return None

    @staticmethod
    def _update_state(state: EnforcementState, action: ActionType, details: Mapping[str, Any]) -> None:
        match action:
            case ActionType.BAN:
                state.banned = True
            case ActionType.UNBAN:
                state.banned = False
            case ActionType.TIMEOUT:
                state.timeout_until = datetime.fromisoformat(details["timeout_until"])
            case ActionType.TIMEOUT_CLEAR:
                state.timeout_until = None
            case ActionType.REVOKE_PERMISSIONS:
                state.revoked = True
            case ActionType.RESTORE_PERMISSIONS:
                state.revoked = False
            case _:
                pass

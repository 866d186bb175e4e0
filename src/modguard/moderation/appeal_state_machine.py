"""
Lifecycle of disputed enforcement actions.

States::

    pending ──► investigating ──► approved | rejected
       │              │
       └──────────────┴──► approved | rejected     (fast-track from pending)
    investigating ──► pending                       (abandonment sweep only)

Approved and rejected are terminal. Approval flips the disputed record's
``overridden`` flag together with the status change and then dispatches the
inverse of the original action exactly once.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, DefaultDict, Dict, List, Optional

from modguard.datatypes.action_datatypes import DispatchResult, parse_ledger_action
from modguard.datatypes.appeal_datatypes import Appeal, AppealStatus
from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.guild_policy import GuildPolicy
from modguard.datatypes.violation_datatypes import ViolationRecord
from modguard.exceptions import (
    AlreadyResolved,
    AppealsDisabled,
    CooldownActive,
    InvalidTransition,
    NotFound,
)
from modguard.moderation.action_dispatcher import ActionDispatcher
from modguard.moderation.interfaces import ModerationStore, Notifier
from modguard.moderation.violation_ledger import ViolationLedger
from modguard.util.logger import get_logger

logger = get_logger("appeal_state_machine")


ALLOWED_TRANSITIONS: Dict[AppealStatus, frozenset[AppealStatus]] = {
    AppealStatus.PENDING: frozenset({AppealStatus.INVESTIGATING, AppealStatus.APPROVED, AppealStatus.REJECTED}),
    AppealStatus.INVESTIGATING: frozenset({AppealStatus.APPROVED, AppealStatus.REJECTED}),
    AppealStatus.APPROVED: frozenset(),
    AppealStatus.REJECTED: frozenset(),
}


@dataclass(slots=True)
class AppealResolution:
    """Outcome of an approval, rejection or moderator override."""

    appeal: Optional[Appeal]
    record: ViolationRecord
    dispatch: Optional[DispatchResult] = None


class AppealStateMachine:
    """
    Owns every appeal and enforces the transition table.

    All writes for a guild are serialized by a per-guild lock; the inverse
    action is dispatched after the lock is released so a slow platform call
    never blocks other reviewers. Duplicate approvals racing each other are
    resolved by the lock: the first wins, the rest get :class:`AlreadyResolved`.
    """

    def __init__(
        self,
        ledger: ViolationLedger,
        dispatcher: ActionDispatcher,
        policy_provider: Callable[[GuildID], GuildPolicy],
        *,
        store: Optional[ModerationStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._policy_provider = policy_provider
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self._appeals: DefaultDict[GuildID, Dict[str, Appeal]] = defaultdict(dict)
        self._locks: DefaultDict[GuildID, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def load(self) -> int:
        if self._store is None:
            return 0
        appeals = await self._store.load_appeals()
        for appeal in appeals:
            self._appeals[appeal.guild_id][appeal.id] = appeal
        logger.info("[APPEALS] Loaded %d appeals", len(appeals))
        return len(appeals)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, guild_id: GuildID, appeal_id: str) -> Appeal:
        appeal = self._appeals.get(guild_id, {}).get(appeal_id)
        if appeal is None:
            raise NotFound(f"appeal {appeal_id} not found in guild {guild_id}")
        return appeal

    def list(self, guild_id: GuildID, status_filter: AppealStatus | str | None = None) -> List[Appeal]:
        """Appeals of a guild, oldest first; ``None`` or ``"all"`` returns every status."""
        appeals = list(self._appeals.get(guild_id, {}).values())
        if isinstance(status_filter, str):
            status_filter = None if status_filter == "all" else AppealStatus(status_filter)
        if status_filter is not None:
            appeals = [a for a in appeals if a.status is status_filter]
        return sorted(appeals, key=lambda a: a.submitted_at)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        guild_id: GuildID,
        user_id: UserID,
        violation_record_id: str,
        *,
        statement: str = "",
        now: Optional[datetime] = None,
    ) -> Appeal:
        """
        Open an appeal against one of the user's violation records.

        Raises:
            AppealsDisabled: The guild does not accept appeals.
            NotFound: The record does not exist, belongs to someone else, or is
                not an enforced auto-response.
            AlreadyResolved: The record was already overridden.
            CooldownActive: The user appealed this category too recently.
        """
        now = now or self._clock()
        policy = self._policy_provider(guild_id)
        if not policy.appeals.allow_appeals:
            raise AppealsDisabled(f"guild {guild_id} does not accept appeals")

        record = self._ledger.get(guild_id, violation_record_id)
        if record is None or record.user_id != user_id:
            raise NotFound(f"violation {violation_record_id} not found for user {user_id}")
        action, failed = parse_ledger_action(record.action)
        if failed or action.is_compensating:
            raise NotFound(f"violation {violation_record_id} has no enforced action to appeal")
        if record.overridden:
            raise AlreadyResolved(f"violation {violation_record_id} was already overridden")

        async with self._locks[guild_id]:
            cooldown = timedelta(hours=policy.appeals.cooldown_hours)
            previous = [
                a.submitted_at
                for a in self._appeals.get(guild_id, {}).values()
                if a.user_id == user_id and a.category is record.category
            ]
            if previous and cooldown:
                elapsed = now - max(previous)
                if elapsed < cooldown:
                    raise CooldownActive(retry_after=(cooldown - elapsed).total_seconds())

            appeal = Appeal(
                guild_id=guild_id,
                user_id=user_id,
                violation_record_id=record.id,
                category=record.category,
                submitted_at=now,
                updated_at=now,
                statement=statement,
            )
            if self._store is not None:
                await self._store.save_appeal(appeal)
            self._appeals[guild_id][appeal.id] = appeal

        logger.info("[APPEALS] Appeal %s submitted by user %s for violation %s", appeal.id, user_id, record.id)
        return appeal

    # ------------------------------------------------------------------
    # Reviewer transitions
    # ------------------------------------------------------------------

    async def start_investigation(
        self, guild_id: GuildID, appeal_id: str, resolver_id: UserID, *, now: Optional[datetime] = None
    ) -> Appeal:
        resolution = await self._transition(guild_id, appeal_id, resolver_id, AppealStatus.INVESTIGATING, None, now)
        return resolution.appeal  # type: ignore[return-value]

    async def approve(
        self, guild_id: GuildID, appeal_id: str, resolver_id: UserID, reason: str, *, now: Optional[datetime] = None
    ) -> AppealResolution:
        """Approve an appeal: mark the record overridden and dispatch the inverse action."""
        resolution = await self._transition(guild_id, appeal_id, resolver_id, AppealStatus.APPROVED, reason, now)
        await self._notify_resolution(resolution, "approved", reason)
        return resolution

    async def reject(
        self, guild_id: GuildID, appeal_id: str, resolver_id: UserID, reason: str, *, now: Optional[datetime] = None
    ) -> AppealResolution:
        """Reject an appeal; the original action stays in effect."""
        resolution = await self._transition(guild_id, appeal_id, resolver_id, AppealStatus.REJECTED, reason, now)
        await self._notify_resolution(resolution, "rejected", reason)
        return resolution

    async def override(
        self, guild_id: GuildID, record_id: str, resolver_id: UserID, reason: str
    ) -> AppealResolution:
        """
        Reverse a violation directly, without an appeal (moderator override).

        Raises:
            NotFound: The record does not exist or has nothing to reverse.
            AlreadyResolved: The record was already overridden.
        """
        if resolver_id is None:
            raise InvalidTransition("an override requires a resolver")

        async with self._locks[guild_id]:
            record = self._ledger.get(guild_id, record_id)
            if record is None:
                raise NotFound(f"violation {record_id} not found in guild {guild_id}")
            action, failed = parse_ledger_action(record.action)
            if failed or action.is_compensating:
                raise NotFound(f"violation {record_id} has no enforced action to reverse")
            if record.overridden:
                raise AlreadyResolved(f"violation {record_id} was already overridden")

            if self._store is not None:
                await self._store.save_resolution(None, replace(record, overridden=True))
            self._ledger.mark_overridden(guild_id, record_id)

        logger.info("[APPEALS] Violation %s overridden by %s: %s", record_id, resolver_id, reason)
        dispatch = await self._dispatch_inverse(record, f"Override by {resolver_id}: {reason}")
        resolution = AppealResolution(appeal=None, record=record, dispatch=dispatch)
        await self._notify_resolution(resolution, "overridden", reason)
        return resolution

    # ------------------------------------------------------------------
    # Abandonment sweep
    # ------------------------------------------------------------------

    async def sweep_abandoned(self, now: Optional[datetime] = None) -> List[Appeal]:
        """Move investigations idle past the guild's abandonment timeout back to pending."""
        now = now or self._clock()
        reverted: List[Appeal] = []

        for guild_id in list(self._appeals):
            timeout = timedelta(hours=self._policy_provider(guild_id).appeals.abandonment_hours)
            async with self._locks[guild_id]:
                for appeal in list(self._appeals[guild_id].values()):
                    if appeal.status is not AppealStatus.INVESTIGATING:
                        continue
                    if now - appeal.last_activity < timeout:
                        continue
                    updated = replace(appeal, status=AppealStatus.PENDING, updated_at=now, resolver_id=None)
                    if self._store is not None:
                        await self._store.save_appeal(updated)
                    self._appeals[guild_id][appeal.id] = updated
                    reverted.append(updated)

        if reverted:
            logger.info("[APPEALS] Returned %d abandoned investigations to pending", len(reverted))
        return reverted

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        guild_id: GuildID,
        appeal_id: str,
        resolver_id: UserID,
        target: AppealStatus,
        reason: Optional[str],
        now: Optional[datetime],
    ) -> AppealResolution:
        if resolver_id is None:
            raise InvalidTransition(f"moving an appeal to {target} requires a resolver")
        now = now or self._clock()
        reverse = False

        async with self._locks[guild_id]:
            appeal = self.get(guild_id, appeal_id)
            if appeal.status.is_terminal:
                raise AlreadyResolved(f"appeal {appeal_id} is already {appeal.status}")
            if target not in ALLOWED_TRANSITIONS[appeal.status]:
                raise InvalidTransition(f"appeal {appeal_id} cannot move from {appeal.status} to {target}")

            record = self._ledger.get(guild_id, appeal.violation_record_id)
            if record is None:
                raise NotFound(f"violation {appeal.violation_record_id} for appeal {appeal_id} is missing")

            updated = replace(appeal, status=target, updated_at=now, resolver_id=UserID(resolver_id))
            if target.is_terminal:
                updated = replace(updated, resolved_at=now, resolution_reason=reason)

            if target is AppealStatus.APPROVED:
                reverse = not record.overridden
                if self._store is not None:
                    await self._store.save_resolution(updated, replace(record, overridden=True))
                # Status and flag change together, no await in between
                self._appeals[guild_id][appeal_id] = updated
                self._ledger.mark_overridden(guild_id, record.id)
            else:
                if self._store is not None:
                    await self._store.save_appeal(updated)
                self._appeals[guild_id][appeal_id] = updated

        logger.info("[APPEALS] Appeal %s moved to %s by %s", appeal_id, target, resolver_id)

        dispatch = None
        if reverse:
            dispatch = await self._dispatch_inverse(record, f"Appeal {appeal_id} approved: {reason}")
        return AppealResolution(appeal=updated, record=record, dispatch=dispatch)

    async def _dispatch_inverse(self, record: ViolationRecord, reason: str) -> DispatchResult:
        action, _ = parse_ledger_action(record.action)
        return await self._dispatcher.apply(
            record.guild_id,
            record.user_id,
            action.inverse,
            reason,
            category=record.category,
            details=record.details,
        )

    async def _notify_resolution(self, resolution: AppealResolution, outcome: str, reason: str) -> None:
        if self._notifier is None:
            return
        record = resolution.record
        if not self._policy_provider(record.guild_id).appeals.auto_notify:
            return
        await self._notifier.notify_user(
            record.guild_id,
            record.user_id,
            f"Your {record.action} for {record.category} has been {outcome}: {reason}",
        )

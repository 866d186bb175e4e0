"""
Moderation engine: the detection pipeline for normalized events.

Per event, in arrival order::

    policy snapshot ─► module switch ─► whitelist ─► rate window ─► threshold

After the whole batch has been evaluated, warn verdicts become moderator
alerts and escalations are grouped per actor so that exactly one action is
dispatched per actor per batch (the most severe category wins). Dispatch runs
after every counter update of the batch is finished; nothing in the tracker or
policy service is held while the platform call is awaited.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from modguard.datatypes.action_datatypes import ActionType, DispatchResult
from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.event_datatypes import EventCategory, ModerationEvent
from modguard.datatypes.guild_policy import GuildPolicy
from modguard.datatypes.verdict_datatypes import Verdict
from modguard.moderation.action_dispatcher import ActionDispatcher
from modguard.moderation.interfaces import ContentClassifier, Notifier
from modguard.moderation.rate_window_tracker import RateWindowTracker
from modguard.moderation.threshold_policy import ThresholdPolicyEngine
from modguard.moderation.whitelist_resolver import WhitelistResolver
from modguard.util.logger import get_logger

logger = get_logger("moderation_engine")

PolicyProvider = Callable[[GuildID], GuildPolicy]

# Event metadata copied onto the ledger entry so the inverse action can run later
_DISPATCH_DETAIL_KEYS = ("message_id", "content")


@dataclass(slots=True)
class Evaluation:
    """One event with the policy snapshot it was judged against and the outcome."""

    event: ModerationEvent
    policy: GuildPolicy
    verdict: Verdict


class ModerationEngine:
    """
    Wires the detection components together for one process.

    Args:
        policy_provider: Returns the current policy snapshot for a guild.
        tracker: Sliding-window counters.
        dispatcher: Executes auto-responses.
        notifier: Receives warn alerts and enforcement notices; optional.
        classifier: Optional content classifier for ``message`` events.
    """

    def __init__(
        self,
        policy_provider: PolicyProvider,
        tracker: RateWindowTracker,
        dispatcher: ActionDispatcher,
        *,
        notifier: Optional[Notifier] = None,
        classifier: Optional[ContentClassifier] = None,
        whitelist: Optional[WhitelistResolver] = None,
        thresholds: Optional[ThresholdPolicyEngine] = None,
    ) -> None:
        self._policy_provider = policy_provider
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._classifier = classifier
        self._whitelist = whitelist or WhitelistResolver()
        self._thresholds = thresholds or ThresholdPolicyEngine()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_event(self, event: ModerationEvent) -> Verdict:
        verdicts = await self.process_batch([event])
        return verdicts[0]

    async def process_batch(self, events: Iterable[ModerationEvent]) -> List[Verdict]:
        """
        Evaluate a batch of events in order and act on the outcome.

        Every escalating actor is dispatched even if an earlier one raised; the
        first such error (a storage failure, say) is re-raised afterwards.

        Returns:
            List[Verdict]: One verdict per input event, in input order.
        """
        evaluated = [self.evaluate(event) for event in events]

        await self._raise_alerts(evaluated)

        grouped: Dict[Tuple[GuildID, UserID], List[Evaluation]] = {}
        for item in evaluated:
            if item.verdict.is_escalate:
                grouped.setdefault((item.event.guild_id, item.event.actor_id), []).append(item)

        failures: List[Exception] = []
        for items in grouped.values():
            try:
                await self._dispatch_for_actor(items)
            except Exception as exc:
                logger.exception("[ENGINE] Dispatch for user %s failed", items[0].event.actor_id)
                failures.append(exc)
        if failures:
            raise failures[0]

        return [item.verdict for item in evaluated]

    def evaluate(self, event: ModerationEvent) -> Evaluation:
        """Run the synchronous detection steps for one event; no platform calls."""
        policy = self._policy_provider(event.guild_id)
        common = dict(category=event.category, actor_id=event.actor_id)

        if not policy.module_enabled(event.category):
            return Evaluation(event, policy, Verdict.allow(reason=f"{event.category.module} disabled", **common))

        if self._whitelist.is_event_exempt(event, policy):
            logger.debug("[ENGINE] Exempt %s by user %s in guild %s", event.category, event.actor_id, event.guild_id)
            return Evaluation(event, policy, Verdict.allow(reason="whitelisted", **common))

        count = self._tracker.record(
            event.guild_id, event.category, event.timestamp, window_seconds=policy.window_for(event.category)
        )

        if event.category is EventCategory.MESSAGE and self._classifier is not None:
            classified = self._classifier.classify(event)
            if classified.flagged:
                verdict = Verdict.escalate(
                    policy.action_for(event.category),
                    count=count,
                    limit=policy.effective_limit(event.category),
                    reason=f"message flagged by content classifier (severity {classified.severity})",
                    **common,
                )
                return Evaluation(event, policy, verdict)

        return Evaluation(event, policy, self._thresholds.evaluate(event, policy, count))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _raise_alerts(self, evaluated: List[Evaluation]) -> None:
        if self._notifier is None:
            return
        seen = set()
        for item in evaluated:
            if not item.verdict.is_warn:
                continue
            key = (item.event.guild_id, item.event.actor_id, item.event.category)
            if key in seen:
                continue
            seen.add(key)
            await self._notifier.send_alert(
                item.event.guild_id,
                f"User {item.event.actor_id} is close to the limit: {item.verdict.reason}",
            )

    async def _dispatch_for_actor(self, items: List[Evaluation]) -> Optional[DispatchResult]:
        chosen = self._thresholds.resolve(item.verdict for item in items)
        # resolve() only returns verdicts from items, so the match exists
        source = next(item for item in reversed(items) if item.verdict is chosen)
        event, policy, verdict = source.event, source.policy, source.verdict
        if verdict.action is None:
            logger.error("[ENGINE] Escalation for user %s carries no action, skipped", event.actor_id)
            return None

        duration = policy.timeout_minutes if verdict.action is ActionType.TIMEOUT else None
        result = await self._dispatcher.apply(
            event.guild_id,
            event.actor_id,
            verdict.action,
            verdict.reason,
            category=event.category,
            duration_minutes=duration,
            details=self._dispatch_details(event),
        )

        if self._notifier is not None and not result.already_applied:
            if result.ok:
                text = f"Applied {verdict.action} to user {event.actor_id}: {verdict.reason}"
            else:
                text = f"Failed to apply {verdict.action} to user {event.actor_id}: {result.error}"
            await self._notifier.send_alert(event.guild_id, text)
        return result

    @staticmethod
    def _dispatch_details(event: ModerationEvent) -> Dict[str, Any]:
        details: Dict[str, Any] = {}
        if event.channel_id is not None:
            details["channel_id"] = event.channel_id.to_int()
        for key in _DISPATCH_DETAIL_KEYS:
            if key in event.metadata:
                details[key] = event.metadata[key]
        return details

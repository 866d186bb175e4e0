"""
Threshold evaluation: turns a window count into an allow / warn / escalate verdict.
"""

from __future__ import annotations

from typing import Iterable, Optional

from modguard.datatypes.event_datatypes import ModerationEvent
from modguard.datatypes.guild_policy import GuildPolicy
from modguard.datatypes.verdict_datatypes import Verdict


class ThresholdPolicyEngine:
    """
    Stateless decision rule over a guild policy snapshot.

    ``count >= limit`` escalates with the category's configured action,
    ``count >= limit * near_threshold_ratio`` warns, anything lower is allowed.
    Strict mode is already folded into :meth:`GuildPolicy.effective_limit`.
    Whitelisted actors never get here; the resolver short-circuits them first.
    """

    def evaluate(self, event: ModerationEvent, policy: GuildPolicy, current_count: int) -> Verdict:
        category = event.category
        limit = policy.effective_limit(category)
        common = dict(category=category, count=current_count, limit=limit, actor_id=event.actor_id)

        if limit <= 0:
            return Verdict.allow(**common)

        if current_count >= limit:
            action = policy.action_for(category)
            reason = f"{category.value} threshold reached ({current_count}/{limit} in {policy.window_for(category):g}s)"
            return Verdict.escalate(action, reason=reason, **common)

        if current_count >= limit * policy.near_threshold_ratio:
            reason = f"{category.value} approaching threshold ({current_count}/{limit})"
            return Verdict.warn(reason=reason, **common)

        return Verdict.allow(**common)

    @staticmethod
    def resolve(verdicts: Iterable[Verdict]) -> Optional[Verdict]:
        """
        Pick the single escalation to act on for one actor in one pass.

        The most severe category wins; among equals the latest verdict (highest
        count) is kept. Returns None when nothing escalated.
        """
        chosen: Optional[Verdict] = None
        for verdict in verdicts:
            if not verdict.is_escalate or verdict.category is None:
                continue
            if chosen is None or verdict.category.severity >= chosen.category.severity:  # type: ignore[union-attr]
                chosen = verdict
        return chosen

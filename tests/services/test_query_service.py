from datetime import timedelta

import pytest

from modguard.datatypes.action_datatypes import ActionType
from modguard.datatypes.appeal_datatypes import AppealStatus
from modguard.datatypes.discord_datatypes import UserID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.datatypes.guild_policy import WhitelistKind
from modguard.exceptions import NotFound
from modguard.services.query_service import QueryService

from conftest import ACTOR, GUILD, RESOLVER, T0


@pytest.fixture()
def queries(engine_parts):
    parts = engine_parts
    return QueryService(parts.policies, parts.tracker, parts.ledger, parts.appeals, recent_actions_limit=2)


@pytest.mark.asyncio
async def test_current_status_reports_switches_counts_and_actions(engine_parts, queries, make_event):
    parts = engine_parts
    await parts.policies.set_automod_enabled(GUILD, False)
    await parts.policies.add_whitelist_entry(GUILD, WhitelistKind.USER, 1)
    for t in (0, 5):
        await parts.engine.process_event(make_event(EventCategory.CHANNEL_DELETE, t))

    status = queries.current_status(GUILD, now=T0 + timedelta(seconds=5))

    assert status.guild_id == GUILD
    assert status.enabled and not status.automod_enabled
    assert not status.strict_mode
    assert status.module_counts[EventCategory.CHANNEL_DELETE] == 2
    assert status.module_counts[EventCategory.MEMBER_BAN] == 0
    assert set(status.module_counts) == set(EventCategory)
    assert status.whitelist_size == 1
    assert status.recent_actions == []
    assert status.pending_appeals == 0


@pytest.mark.asyncio
async def test_recent_actions_limit_and_filter(engine_parts, queries):
    parts = engine_parts
    cd = EventCategory.CHANNEL_DELETE
    await parts.dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "x", category=cd)
    await parts.dispatcher.apply(GUILD, UserID(1), ActionType.KICK, "x", category=cd)
    await parts.dispatcher.apply(GUILD, UserID(2), ActionType.KICK, "x", category=cd)

    assert len(queries.recent_actions(GUILD)) == 2
    assert len(queries.recent_actions(GUILD, limit=10)) == 3
    assert [r.action for r in queries.recent_actions(GUILD, limit=10, action_filter="ban")] == ["ban"]
    assert len(queries.recent_actions(GUILD, limit=10, action_filter="all")) == 3
    assert len(queries.current_status(GUILD).recent_actions) == 2


@pytest.mark.asyncio
async def test_appeals_history_and_incident_lookup(engine_parts, queries):
    parts = engine_parts
    result = await parts.dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "x", category=EventCategory.MEMBER_BAN)
    appeal = await parts.appeals.submit(GUILD, ACTOR, result.record.id)

    assert queries.list_appeals(GUILD, AppealStatus.PENDING) == [appeal]
    assert queries.current_status(GUILD).pending_appeals == 1

    await parts.appeals.approve(GUILD, appeal.id, RESOLVER, "ok")

    assert queries.list_appeals(GUILD, "pending") == []
    assert [r.action for r in queries.get_violation_history(GUILD, ACTOR)] == ["ban", "unban"]
    assert queries.get_incident(GUILD, result.record.id).overridden
    with pytest.raises(NotFound):
        queries.get_incident(GUILD, "missing")

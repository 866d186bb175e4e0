from datetime import timedelta

import pytest

from modguard.datatypes.action_datatypes import ActionType
from modguard.datatypes.discord_datatypes import UserID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.datatypes.guild_policy import WhitelistKind
from modguard.datatypes.verdict_datatypes import VerdictKind
from modguard.exceptions import PermanentActionFailure
from modguard.moderation.interfaces import ContentVerdict
from modguard.moderation.moderation_engine import ModerationEngine

from conftest import ACTOR, GUILD, T0

CD = EventCategory.CHANNEL_DELETE


@pytest.mark.asyncio
async def test_channel_delete_burst_escalates_at_the_limit(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.set_limit(GUILD, CD, 3, 60)

    verdicts = [await parts.engine.process_event(make_event(CD, t)) for t in (0, 10, 20, 30)]

    assert [v.kind for v in verdicts] == [
        VerdictKind.ALLOW, VerdictKind.ALLOW, VerdictKind.ESCALATE, VerdictKind.ESCALATE
    ]
    assert verdicts[2].action is ActionType.BAN
    assert [v.count for v in verdicts] == [1, 2, 3, 4]
    # the second escalation hits an already banned member
    assert parts.platform.names() == ["ban"]
    assert [r.action for r in parts.ledger.history(GUILD, ACTOR)] == ["ban"]


@pytest.mark.asyncio
async def test_role_whitelisted_actor_is_never_counted(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.add_whitelist_entry(GUILD, WhitelistKind.ROLE, 555)

    verdicts = [await parts.engine.process_event(make_event(CD, t, role_ids=[555])) for t in (0, 10, 20, 30)]

    assert all(v.is_allow for v in verdicts)
    assert all(v.reason == "whitelisted" for v in verdicts)
    assert parts.tracker.current_count(GUILD, CD, T0 + timedelta(seconds=30)) == 0
    assert parts.platform.calls == []


@pytest.mark.asyncio
async def test_events_outside_the_window_do_not_escalate(engine_parts, make_event):
    parts = engine_parts

    verdicts = [await parts.engine.process_event(make_event(CD, t)) for t in (0, 61, 122, 183)]

    assert all(v.is_allow for v in verdicts)
    assert all(v.count == 1 for v in verdicts)


@pytest.mark.asyncio
async def test_disabled_module_allows_without_counting(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.set_enabled(GUILD, False)

    verdict = await parts.engine.process_event(make_event(CD))
    message_verdict = await parts.engine.process_event(make_event(EventCategory.MESSAGE))

    assert verdict.is_allow and verdict.reason == "antinuke disabled"
    assert len(parts.tracker.snapshot(GUILD, T0)) == 1
    assert message_verdict.count == 1


@pytest.mark.asyncio
async def test_batch_dispatches_once_per_actor_with_most_severe_category(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.set_limit(GUILD, EventCategory.MESSAGE, 1, 10)
    await parts.policies.set_limit(GUILD, EventCategory.MEMBER_BAN, 1, 60)
    await parts.policies.set_limit(GUILD, CD, 1, 60)

    verdicts = await parts.engine.process_batch([
        make_event(EventCategory.MESSAGE, 0),
        make_event(EventCategory.MEMBER_BAN, 1),
        make_event(CD, 2),
    ])

    assert all(v.is_escalate for v in verdicts)
    assert parts.platform.names() == ["ban"]
    history = parts.ledger.history(GUILD, ACTOR)
    assert len(history) == 1
    assert history[0].category is EventCategory.MEMBER_BAN


@pytest.mark.asyncio
async def test_batch_dispatches_for_each_escalating_actor(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.set_limit(GUILD, CD, 1, 60)

    await parts.engine.process_batch([make_event(CD, 0), make_event(CD, 1, actor_id=3000)])

    assert sorted(int(call[2]) for call in parts.platform.calls) == [2000, 3000]


@pytest.mark.asyncio
async def test_warn_verdicts_raise_one_alert_per_actor_and_category(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.set_limit(GUILD, CD, 10, 60)

    events = [make_event(CD, t) for t in range(9)]
    verdicts = await parts.engine.process_batch(events)

    assert [v.kind for v in verdicts][-2:] == [VerdictKind.WARN, VerdictKind.WARN]
    assert len(parts.notifier.alerts) == 1
    assert "close to the limit" in parts.notifier.alerts[0][1]
    assert parts.platform.calls == []


@pytest.mark.asyncio
async def test_timeout_escalation_uses_policy_duration_and_message_details(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.set_limit(GUILD, EventCategory.MESSAGE, 1, 10)

    await parts.engine.process_event(
        make_event(EventCategory.MESSAGE, channel_id=5, message_id=6, content="buy now")
    )

    assert parts.platform.calls == [("timeout", GUILD, ACTOR, 60)]
    record = parts.ledger.history(GUILD, ACTOR)[0]
    assert record.details["channel_id"] == 5
    assert record.details["message_id"] == 6
    assert record.details["content"] == "buy now"
    assert parts.notifier.alerts[-1][1].startswith("Applied timeout to user 2000")


@pytest.mark.asyncio
async def test_failed_dispatch_is_logged_and_alerted(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.set_limit(GUILD, CD, 1, 60)
    parts.platform.failures["ban"] = [PermanentActionFailure("ban", "Forbidden")]

    verdict = await parts.engine.process_event(make_event(CD))

    assert verdict.is_escalate
    assert [r.action for r in parts.ledger.history(GUILD, ACTOR)] == ["failed:ban"]
    assert parts.notifier.alerts[-1][1].startswith("Failed to apply ban")


@pytest.mark.asyncio
async def test_flagged_message_escalates_below_the_limit(engine_parts, make_event):
    parts = engine_parts

    class FlagEverything:
        def classify(self, event):
            return ContentVerdict(flagged=True, severity=3)

    engine = ModerationEngine(
        parts.policies.get_policy, parts.tracker, parts.dispatcher, classifier=FlagEverything()
    )

    verdict = await engine.process_event(make_event(EventCategory.MESSAGE, channel_id=5))
    channel_verdict = await engine.process_event(make_event(CD, actor_id=UserID(4000)))

    assert verdict.is_escalate
    assert verdict.action is ActionType.TIMEOUT
    assert "classifier" in verdict.reason
    assert channel_verdict.is_allow


@pytest.mark.asyncio
async def test_connection_error_on_one_actor_does_not_skip_the_rest(engine_parts, make_event):
    parts = engine_parts
    await parts.policies.set_limit(GUILD, EventCategory.ROLE_DELETE, 1, 60)
    await parts.policies.set_limit(GUILD, EventCategory.WEBHOOK_CREATE, 1, 60)
    parts.platform.failures["ban"] = [ConnectionResetError("peer reset")]

    await parts.engine.process_batch(
        [
            make_event(EventCategory.ROLE_DELETE, 0),
            make_event(EventCategory.WEBHOOK_CREATE, 1, actor_id=3000),
        ]
    )

    assert parts.platform.calls == [("ban", GUILD, ACTOR), ("ban", GUILD, UserID(3000))]
    assert [r.action for r in parts.ledger.history(GUILD, ACTOR)] == ["failed:ban"]
    assert [r.action for r in parts.ledger.history(GUILD, UserID(3000))] == ["ban"]


@pytest.mark.asyncio
async def test_storage_error_is_raised_after_every_actor_was_dispatched(engine_parts, make_event, monkeypatch):
    parts = engine_parts
    await parts.policies.set_limit(GUILD, CD, 1, 60)
    append = parts.store.append_violation
    calls = []

    async def flaky_append(record):
        calls.append(record.user_id)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        await append(record)

    monkeypatch.setattr(parts.store, "append_violation", flaky_append)

    with pytest.raises(RuntimeError, match="database is locked"):
        await parts.engine.process_batch([make_event(CD, 0), make_event(CD, 1, actor_id=3000)])

    assert [call[2] for call in parts.platform.calls] == [ACTOR, UserID(3000)]
    assert [r.action for r in parts.ledger.history(GUILD, UserID(3000))] == ["ban"]

import asyncio
from datetime import datetime, timedelta

import pytest

from modguard.datatypes.action_datatypes import ActionType
from modguard.datatypes.discord_datatypes import RoleID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.exceptions import PermanentActionFailure, TransientActionFailure
from modguard.moderation.action_dispatcher import ActionDispatcher
from modguard.moderation.violation_ledger import ViolationLedger

from conftest import ACTOR, GUILD, T0

CD = EventCategory.CHANNEL_DELETE


def make_dispatcher(platform, notifier=None, *, clock=lambda: T0, max_attempts=3):
    sleeps = []

    async def sleep(seconds):
        sleeps.append(seconds)

    ledger = ViolationLedger()
    dispatcher = ActionDispatcher(
        platform, ledger, notifier=notifier, max_attempts=max_attempts, backoff_base=0.5, sleep=sleep, clock=clock
    )
    return dispatcher, ledger, sleeps


@pytest.mark.asyncio
async def test_ban_writes_one_ledger_entry(platform):
    dispatcher, ledger, _ = make_dispatcher(platform)

    result = await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "nuke", category=CD)

    assert result.ok and result.attempts == 1
    assert platform.names() == ["ban"]
    assert [r.action for r in ledger.history(GUILD, ACTOR)] == ["ban"]
    assert result.record.reason == "nuke"
    assert result.record.timestamp == T0


@pytest.mark.asyncio
async def test_second_ban_is_a_no_op(platform):
    dispatcher, ledger, _ = make_dispatcher(platform)

    await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "first", category=CD)
    again = await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "second", category=CD)

    assert again.ok and again.already_applied and again.record is None
    assert platform.names() == ["ban"]
    assert ledger.count(GUILD) == 1


@pytest.mark.asyncio
async def test_unban_resets_ban_state(platform):
    dispatcher, _, _ = make_dispatcher(platform)

    await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "x", category=CD)
    await dispatcher.apply(GUILD, ACTOR, ActionType.UNBAN, "appeal", category=CD)
    await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "again", category=CD)

    assert platform.names() == ["ban", "unban", "ban"]


@pytest.mark.asyncio
async def test_concurrent_bans_reach_the_platform_once(platform):
    dispatcher, ledger, _ = make_dispatcher(platform)

    results = await asyncio.gather(
        *(dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "race", category=CD) for _ in range(5))
    )

    assert all(r.ok for r in results)
    assert sum(1 for r in results if not r.already_applied) == 1
    assert platform.names() == ["ban"]
    assert ledger.count(GUILD) == 1


@pytest.mark.asyncio
async def test_timeout_on_timed_out_member_extends_it(platform):
    now = [T0]
    dispatcher, ledger, _ = make_dispatcher(platform, clock=lambda: now[0])

    first = await dispatcher.apply(GUILD, ACTOR, ActionType.TIMEOUT, "spam", category=EventCategory.MESSAGE,
                                   duration_minutes=10)
    now[0] = T0 + timedelta(minutes=4)
    second = await dispatcher.apply(GUILD, ACTOR, ActionType.TIMEOUT, "spam", category=EventCategory.MESSAGE,
                                    duration_minutes=10)

    assert first.record.details["timeout_until"] == (T0 + timedelta(minutes=10)).isoformat()
    assert second.record.details["timeout_until"] == (T0 + timedelta(minutes=20)).isoformat()
    # 16 minutes remain from the second call's point of view
    assert platform.calls[1] == ("timeout", GUILD, ACTOR, 16)
    assert ledger.count(GUILD) == 2
    assert dispatcher.state_for(GUILD, ACTOR).timeout_until == T0 + timedelta(minutes=20)


@pytest.mark.asyncio
async def test_expired_timeout_starts_fresh(platform):
    now = [T0]
    dispatcher, _, _ = make_dispatcher(platform, clock=lambda: now[0])

    await dispatcher.apply(GUILD, ACTOR, ActionType.TIMEOUT, "spam", category=EventCategory.MESSAGE, duration_minutes=5)
    now[0] = T0 + timedelta(hours=1)
    result = await dispatcher.apply(GUILD, ACTOR, ActionType.TIMEOUT, "spam", category=EventCategory.MESSAGE,
                                    duration_minutes=5)

    assert datetime.fromisoformat(result.record.details["timeout_until"]) == now[0] + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_timeout_uses_default_duration(platform):
    dispatcher, _, _ = make_dispatcher(platform)

    await dispatcher.apply(GUILD, ACTOR, ActionType.TIMEOUT, "spam", category=EventCategory.MESSAGE)

    assert platform.calls[0] == ("timeout", GUILD, ACTOR, 60)


@pytest.mark.asyncio
async def test_transient_failure_is_retried_with_backoff(platform):
    platform.failures["ban"] = [TransientActionFailure("ban", "429"), TransientActionFailure("ban", "503")]
    dispatcher, ledger, sleeps = make_dispatcher(platform)

    result = await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "nuke", category=CD)

    assert result.ok and result.attempts == 3
    assert sleeps == [0.5, 1.0]
    assert [r.action for r in ledger.history(GUILD, ACTOR)] == ["ban"]


@pytest.mark.asyncio
async def test_exhausted_retries_are_reported_as_permanent(platform):
    platform.failures["kick"] = [TransientActionFailure("kick", "timeout")] * 3
    dispatcher, ledger, sleeps = make_dispatcher(platform)

    result = await dispatcher.apply(GUILD, ACTOR, ActionType.KICK, "nuke", category=CD)

    assert not result.ok
    assert isinstance(result.error, PermanentActionFailure)
    assert "retries exhausted" in result.error.detail
    assert result.attempts == 3
    assert len(sleeps) == 2
    assert [r.action for r in ledger.history(GUILD, ACTOR)] == ["failed:kick"]
    assert ledger.history(GUILD, ACTOR)[0].failed


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried(platform):
    platform.failures["ban"] = [PermanentActionFailure("ban", "Forbidden")]
    dispatcher, ledger, sleeps = make_dispatcher(platform)

    result = await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "nuke", category=CD)

    assert not result.ok and result.attempts == 1
    assert sleeps == []
    assert result.record.action == "failed:ban"
    assert "Forbidden" in result.record.reason
    # a failed ban does not mark the member as banned
    assert not dispatcher.state_for(GUILD, ACTOR).banned


@pytest.mark.asyncio
async def test_revoke_permissions_records_removed_roles_and_restores_them(platform):
    platform.member_roles[ACTOR] = [RoleID(11), RoleID(12)]
    dispatcher, _, _ = make_dispatcher(platform)

    revoked = await dispatcher.apply(GUILD, ACTOR, ActionType.REVOKE_PERMISSIONS, "perm abuse", category=CD)
    again = await dispatcher.apply(GUILD, ACTOR, ActionType.REVOKE_PERMISSIONS, "perm abuse", category=CD)
    restored = await dispatcher.apply(
        GUILD, ACTOR, ActionType.RESTORE_PERMISSIONS, "appeal", category=CD, details=revoked.record.details
    )

    assert revoked.record.details["role_ids"] == [11, 12]
    assert again.already_applied
    assert restored.ok
    assert platform.calls[-1] == ("restore_roles", GUILD, ACTOR, [11, 12])
    assert not dispatcher.state_for(GUILD, ACTOR).revoked


@pytest.mark.asyncio
async def test_delete_and_restore_message_use_details(platform):
    dispatcher, _, _ = make_dispatcher(platform)
    details = {"channel_id": 5, "message_id": 6, "content": "spam"}

    deleted = await dispatcher.apply(GUILD, ACTOR, ActionType.DELETE, "spam", category=EventCategory.MESSAGE,
                                     details=details)
    await dispatcher.apply(GUILD, ACTOR, ActionType.RESTORE_MESSAGE, "appeal", category=EventCategory.MESSAGE,
                           details=deleted.record.details)

    assert platform.calls[0] == ("delete_message", GUILD, 5, 6)
    assert platform.calls[1] == ("restore_message", GUILD, 5, "spam")


@pytest.mark.asyncio
async def test_warn_notifies_the_user_and_clear_violation_only_logs(platform, notifier):
    dispatcher, ledger, _ = make_dispatcher(platform, notifier)

    await dispatcher.apply(GUILD, ACTOR, ActionType.WARN, "slow down", category=EventCategory.MESSAGE)
    await dispatcher.apply(GUILD, ACTOR, ActionType.CLEAR_VIOLATION, "appeal", category=EventCategory.MESSAGE)

    assert platform.calls == []
    assert notifier.notices == [(GUILD, ACTOR, "You have been warned: slow down")]
    assert [r.action for r in ledger.history(GUILD, ACTOR)] == ["warn", "clear_violation"]


@pytest.mark.asyncio
async def test_unexpected_platform_error_still_leaves_a_failed_record(platform):
    platform.failures["ban"] = [ConnectionResetError("peer reset")]
    dispatcher, ledger, sleeps = make_dispatcher(platform)

    result = await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "burst", category=CD)

    assert not result.ok
    assert isinstance(result.error, PermanentActionFailure)
    assert "peer reset" in result.error.detail
    assert result.attempts == 1 and sleeps == []
    assert [r.action for r in ledger.history(GUILD, ACTOR)] == ["failed:ban"]
    assert not dispatcher.state_for(GUILD, ACTOR).banned

    retry = await dispatcher.apply(GUILD, ACTOR, ActionType.BAN, "burst", category=CD)
    assert retry.ok and not retry.already_applied

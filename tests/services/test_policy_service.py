import asyncio
from dataclasses import replace
from pathlib import Path

import pytest

from modguard.configuration.app_configuration import AppConfig
from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.datatypes.guild_policy import GuildPolicy, PolicyPreset, WhitelistKind
from modguard.exceptions import ConfigurationError
from modguard.services.policy_service import PolicyService

from conftest import GUILD


@pytest.fixture()
def service(store):
    return PolicyService(store)


def test_unknown_guild_gets_unsaved_default(service, store):
    policy = service.get_policy(GUILD)

    assert policy.guild_id == GUILD
    assert policy.enabled
    assert not service.has_policy(GUILD)
    assert store.policies == {}
    assert service.window_for(GUILD, EventCategory.MESSAGE) == 10


def test_defaults_come_from_app_config(tmp_path: Path):
    path = tmp_path / "app_config.yml"
    path.write_text(
        "thresholds:\n  near_threshold_ratio: 0.5\n  strict_mode_factor: 0.25\n"
        "dispatch:\n  default_timeout_minutes: 5\nappeals:\n  cooldown_hours: 2\n  abandonment_hours: 3\n",
        encoding="utf-8",
    )

    policy = PolicyService.from_config(AppConfig(path)).get_policy(GUILD)

    assert policy.near_threshold_ratio == 0.5
    assert policy.strict_factor == 0.25
    assert policy.timeout_minutes == 5
    assert policy.appeals.cooldown_hours == 2
    assert policy.appeals.abandonment_hours == 3


@pytest.mark.asyncio
async def test_writes_persist_and_swap_snapshots(service, store):
    before = service.get_policy(GUILD)

    after = await service.set_strict_mode(GUILD, True)

    assert after.strict_mode and not before.strict_mode
    assert service.get_policy(GUILD) is after
    assert store.policies[GUILD] is after
    assert service.has_policy(GUILD)


@pytest.mark.asyncio
async def test_whitelist_entries(service):
    await service.add_whitelist_entry(GUILD, WhitelistKind.USER, 42)
    await service.add_whitelist_entry(GUILD, WhitelistKind.ROLE, "7")
    assert UserID(42) in service.get_policy(GUILD).whitelist.user_ids

    await service.remove_whitelist_entry(GUILD, WhitelistKind.USER, 42)
    assert service.get_policy(GUILD).whitelist.user_ids == frozenset()

    await service.clear_whitelist(GUILD)
    assert len(service.get_policy(GUILD).whitelist) == 0


@pytest.mark.asyncio
async def test_invalid_write_is_rejected_and_old_policy_kept(service, store):
    await service.set_limit(GUILD, EventCategory.MESSAGE, 4, 10)
    current = service.get_policy(GUILD)

    with pytest.raises(ConfigurationError):
        await service.set_limit(GUILD, EventCategory.MESSAGE, 0, 10)
    with pytest.raises(ConfigurationError):
        await service.set_policy(GUILD, replace(current, strict_factor=2))

    assert service.get_policy(GUILD) is current
    assert store.policies[GUILD] is current


@pytest.mark.asyncio
async def test_set_policy_for_another_guild_is_rejected(service):
    with pytest.raises(ConfigurationError):
        await service.set_policy(GUILD, GuildPolicy(guild_id=GuildID(1)))


@pytest.mark.asyncio
async def test_module_switches(service):
    await service.set_enabled(GUILD, False)
    await service.set_automod_enabled(GUILD, False)
    policy = service.get_policy(GUILD)

    assert not policy.module_enabled(EventCategory.CHANNEL_DELETE)
    assert not policy.module_enabled(EventCategory.MESSAGE)


@pytest.mark.asyncio
async def test_apply_preset(service):
    policy = await service.apply_preset(GUILD, "strict")
    assert policy.strict_mode

    policy = await service.apply_preset(GUILD, PolicyPreset.BALANCED)
    assert not policy.strict_mode

    with pytest.raises(ConfigurationError):
        await service.apply_preset(GUILD, "paranoid")


@pytest.mark.asyncio
async def test_update_appeal_settings_keeps_unspecified_values(service):
    await service.update_appeal_settings(GUILD, cooldown_hours=6)
    policy = await service.update_appeal_settings(GUILD, allow_appeals=False)

    assert policy.appeals.cooldown_hours == 6
    assert not policy.appeals.allow_appeals
    assert policy.appeals.auto_notify

    with pytest.raises(ConfigurationError):
        await service.update_appeal_settings(GUILD, abandonment_hours=0)


@pytest.mark.asyncio
async def test_concurrent_writes_are_not_lost(service):
    await asyncio.gather(*(service.add_whitelist_entry(GUILD, WhitelistKind.USER, i) for i in range(1, 21)))

    assert len(service.get_policy(GUILD).whitelist.user_ids) == 20


@pytest.mark.asyncio
async def test_load_and_forget_guild(store):
    writer = PolicyService(store)
    await writer.set_strict_mode(GUILD, True)

    reader = PolicyService(store)
    assert await reader.load() == 1
    assert reader.get_policy(GUILD).strict_mode

    await reader.forget_guild(GUILD)
    assert not reader.has_policy(GUILD)
    assert GUILD in store.policies


@pytest.mark.asyncio
async def test_update_alert_settings(service, store):
    policy = await service.update_alert_settings(GUILD, alert_channel_id=321, dm_alerts=True)

    assert policy.alert_channel_id == 321
    assert policy.dm_alerts
    assert store.policies[GUILD].alert_channel_id == 321

    policy = await service.update_alert_settings(GUILD, dm_alerts=False)
    assert policy.alert_channel_id == 321 and not policy.dm_alerts

    policy = await service.update_alert_settings(GUILD, reset_channel=True)
    assert policy.alert_channel_id is None

    with pytest.raises(ConfigurationError):
        await service.update_alert_settings(GUILD, alert_channel_id="not-a-channel")
    assert service.get_policy(GUILD).alert_channel_id is None

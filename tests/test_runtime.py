from pathlib import Path

import pytest

from modguard.configuration.app_configuration import AppConfig
from modguard.datatypes.event_datatypes import EventCategory
from modguard.runtime import ModGuardRuntime

from conftest import GUILD, FakePlatform, RecordingNotifier


@pytest.fixture()
def config(tmp_path: Path) -> AppConfig:
    path = tmp_path / "app_config.yml"
    path.write_text(
        "dispatch:\n  backoff_base_seconds: 0\nqueue:\n  worker_pool_size: 2\nstatus:\n  recent_actions_limit: 5\n",
        encoding="utf-8",
    )
    return AppConfig(path)


@pytest.mark.asyncio
async def test_runtime_wires_queue_engine_and_queries(config, store, make_event):
    platform = FakePlatform()
    runtime = ModGuardRuntime.build(config, platform, RecordingNotifier(), store)
    await runtime.load()

    event = runtime.normalizer.normalize(
        {"type": "MEMBER_KICK", "guild_id": GUILD, "executor_id": 2000, "timestamp": make_event().timestamp}
    )
    for _ in range(10):
        await runtime.queue.enqueue(event)
    await runtime.queue.wait_idle()

    status = runtime.queries.current_status(GUILD, now=event.timestamp)
    assert status.module_counts[EventCategory.MEMBER_KICK] == 10
    assert [r.action for r in status.recent_actions] == ["ban"]
    assert platform.names() == ["ban"]
    assert len(store.violations) == 1

    runtime.scheduler.start()
    await runtime.shutdown()
    assert not runtime.scheduler.running


@pytest.mark.asyncio
async def test_runtime_without_store_loads_nothing(config):
    runtime = ModGuardRuntime.build(config, FakePlatform(), RecordingNotifier())
    await runtime.load()

    assert runtime.ledger.count(GUILD) == 0
    assert runtime.policies.get_policy(GUILD).enabled
    await runtime.shutdown()

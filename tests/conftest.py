"""
Pytest configuration and fixtures for ModGuard tests.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

# Add src directory to path so imports work without an editable install
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modguard.database.memory_store import MemoryModerationStore  # noqa: E402
from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, UserID  # noqa: E402
from modguard.datatypes.event_datatypes import EventCategory, ModerationEvent  # noqa: E402
from modguard.moderation.action_dispatcher import ActionDispatcher  # noqa: E402
from modguard.moderation.appeal_state_machine import AppealStateMachine  # noqa: E402
from modguard.moderation.moderation_engine import ModerationEngine  # noqa: E402
from modguard.moderation.rate_window_tracker import RateWindowTracker  # noqa: E402
from modguard.moderation.violation_ledger import ViolationLedger  # noqa: E402
from modguard.services.policy_service import PolicyService  # noqa: E402

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
GUILD = GuildID(1000)
ACTOR = UserID(2000)
RESOLVER = UserID(9000)


class FakePlatform:
    """In-memory PlatformActionAPI that records every call.

    ``failures`` maps a method name to a list of exceptions raised by the next
    calls of that method, one per call, before it starts succeeding.
    """

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.member_roles: Dict[UserID, List[RoleID]] = {}

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        pending = self.failures.get(name)
        if pending:
            raise pending.pop(0)

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def ban(self, guild_id, user_id, reason):
        self._record("ban", guild_id, user_id)

    async def unban(self, guild_id, user_id, reason):
        self._record("unban", guild_id, user_id)

    async def kick(self, guild_id, user_id, reason):
        self._record("kick", guild_id, user_id)

    async def timeout(self, guild_id, user_id, duration_minutes, reason):
        self._record("timeout", guild_id, user_id, duration_minutes)

    async def clear_timeout(self, guild_id, user_id, reason):
        self._record("clear_timeout", guild_id, user_id)

    async def delete_message(self, guild_id, channel_id, message_id, reason):
        self._record("delete_message", guild_id, channel_id, message_id)

    async def restore_message(self, guild_id, channel_id, content, reason):
        self._record("restore_message", guild_id, channel_id, content)

    async def remove_roles(self, guild_id, user_id, reason):
        self._record("remove_roles", guild_id, user_id)
        return self.member_roles.get(user_id, [])

    async def restore_roles(self, guild_id, user_id, role_ids, reason):
        self._record("restore_roles", guild_id, user_id, [int(r) for r in role_ids])


class RecordingNotifier:
    def __init__(self) -> None:
        self.alerts: List[tuple] = []
        self.notices: List[tuple] = []

    async def send_alert(self, guild_id, text):
        self.alerts.append((guild_id, text))

    async def notify_user(self, guild_id, user_id, text):
        self.notices.append((guild_id, user_id, text))


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture()
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def store() -> MemoryModerationStore:
    return MemoryModerationStore()


@pytest.fixture()
def make_event():
    """Factory for ModerationEvents offset in seconds from a fixed base time."""

    def _make(
        category: EventCategory = EventCategory.CHANNEL_DELETE,
        t: float = 0.0,
        *,
        guild_id=GUILD,
        actor_id=ACTOR,
        channel_id=None,
        role_ids=(),
        **metadata: Any,
    ) -> ModerationEvent:
        return ModerationEvent(
            guild_id=GuildID(guild_id),
            actor_id=UserID(actor_id),
            category=category,
            timestamp=T0 + timedelta(seconds=t),
            metadata=metadata,
            channel_id=ChannelID(channel_id) if channel_id is not None else None,
            actor_role_ids=frozenset(RoleID(r) for r in role_ids),
        )

    return _make


@pytest.fixture()
def engine_parts(platform, notifier, store):
    """Engine components wired together around the fakes."""
    policies = PolicyService(store)
    tracker = RateWindowTracker(window_resolver=policies.window_for)
    ledger = ViolationLedger(store)
    dispatcher = ActionDispatcher(
        platform, ledger, notifier=notifier, sleep=_no_sleep, clock=lambda: T0
    )
    engine = ModerationEngine(policies.get_policy, tracker, dispatcher, notifier=notifier)
    appeals = AppealStateMachine(
        ledger, dispatcher, policies.get_policy, store=store, notifier=notifier, clock=lambda: T0
    )
    return SimpleNamespace(
        policies=policies,
        tracker=tracker,
        ledger=ledger,
        dispatcher=dispatcher,
        engine=engine,
        appeals=appeals,
        platform=platform,
        notifier=notifier,
        store=store,
    )

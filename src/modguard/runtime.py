"""
Object graph of one ModGuard process.

``ModGuardRuntime.build`` wires the engine components around a platform
adapter, a notifier and a store. The Discord entrypoint uses it with the
py-cord adapters and the SQLite store; tests use it with in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from modguard.configuration.app_configuration import AppConfig
from modguard.moderation.action_dispatcher import ActionDispatcher
from modguard.moderation.appeal_state_machine import AppealStateMachine
from modguard.moderation.event_normalizer import EventNormalizer
from modguard.moderation.interfaces import ContentClassifier, ModerationStore, Notifier, PlatformActionAPI
from modguard.moderation.moderation_engine import ModerationEngine
from modguard.moderation.rate_window_tracker import RateWindowTracker
from modguard.moderation.violation_ledger import ViolationLedger
from modguard.scheduler.maintenance_scheduler import MaintenanceScheduler
from modguard.services.moderation_queue_service import ModerationQueueService
from modguard.services.policy_service import PolicyService
from modguard.services.query_service import QueryService
from modguard.util.logger import get_logger

logger = get_logger("runtime")


@dataclass
class ModGuardRuntime:
    policies: PolicyService
    tracker: RateWindowTracker
    ledger: ViolationLedger
    dispatcher: ActionDispatcher
    engine: ModerationEngine
    appeals: AppealStateMachine
    queue: ModerationQueueService
    queries: QueryService
    scheduler: MaintenanceScheduler
    normalizer: EventNormalizer

    @classmethod
    def build(
        cls,
        config: AppConfig,
        platform: PlatformActionAPI,
        notifier: Notifier,
        store: Optional[ModerationStore] = None,
        classifier: Optional[ContentClassifier] = None,
    ) -> "ModGuardRuntime":
        policies = PolicyService.from_config(config, store)
        tracker = RateWindowTracker(window_resolver=policies.window_for)
        ledger = ViolationLedger(store)
        dispatcher = ActionDispatcher(
            platform,
            ledger,
            notifier=notifier,
            max_attempts=config.dispatch_max_attempts,
            backoff_base=config.dispatch_backoff_base_seconds,
            default_timeout_minutes=config.default_timeout_minutes,
        )
        engine = ModerationEngine(
            policies.get_policy, tracker, dispatcher, notifier=notifier, classifier=classifier
        )
        appeals = AppealStateMachine(ledger, dispatcher, policies.get_policy, store=store, notifier=notifier)
        queue = ModerationQueueService(
            engine,
            policies.get_policy,
            max_size=config.queue_max_size,
            worker_pool_size=config.worker_pool_size,
        )
        queries = QueryService(
            policies, tracker, ledger, appeals, recent_actions_limit=config.recent_actions_limit
        )
        scheduler = MaintenanceScheduler(appeals, tracker, lambda: config.sweep_interval_seconds)
        return cls(
            policies=policies,
            tracker=tracker,
            ledger=ledger,
            dispatcher=dispatcher,
            engine=engine,
            appeals=appeals,
            queue=queue,
            queries=queries,
            scheduler=scheduler,
            normalizer=EventNormalizer(),
        )

    async def load(self) -> None:
        """Populate policies, ledger and appeals from the store."""
        await self.policies.load()
        await self.ledger.load()
        await self.appeals.load()
        logger.info("[RUNTIME] State loaded")

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        await self.queue.shutdown()

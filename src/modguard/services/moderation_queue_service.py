"""
Moderation Queue Service.

Manages a bounded per-guild asyncio.Queue and a persistent worker task for each
guild. The gateway cog just calls enqueue(); ordering, batching and the
module-disabled check all live here.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from modguard.datatypes.discord_datatypes import GuildID
from modguard.datatypes.event_datatypes import ModerationEvent
from modguard.datatypes.guild_policy import GuildPolicy
from modguard.moderation.moderation_engine import ModerationEngine
from modguard.util.logger import get_logger

logger = get_logger("moderation_queue_service")


class ModerationQueueService:
    """
    Per-guild queue that feeds normalized events to the ModerationEngine.

    Design notes
    ------------
    * One bounded asyncio.Queue per guild; ``enqueue`` waits when it is full.
    * One persistent worker coroutine per guild, started lazily on the first
      event. A single worker per guild keeps that guild's events strictly
      ordered.
    * The worker drains whatever is queued into one batch, so a burst is
      evaluated together and produces one action per actor.
    * Events whose module was disabled after they were queued are dropped at
      dequeue, so the latest configuration always wins.
    * Batches from different guilds run in parallel, capped by a semaphore of
      ``worker_pool_size``.
    * If the worker task dies, the next event for that guild transparently
      restarts it.
    """

    def __init__(
        self,
        engine: ModerationEngine,
        policy_provider: Callable[[GuildID], GuildPolicy],
        *,
        max_size: int = 1000,
        worker_pool_size: int = 32,
    ) -> None:
        self._engine = engine
        self._policy_provider = policy_provider
        self._max_size = max_size
        self._pool = asyncio.Semaphore(max(1, worker_pool_size))
        self._queues: dict[GuildID, asyncio.Queue[ModerationEvent]] = {}
        self._workers: dict[GuildID, asyncio.Task] = {}

    # ------------------------------------------------------
    # Public API
    # ------------------------------------------------------

    async def enqueue(self, event: ModerationEvent) -> None:
        """
        Place an event on its guild's queue.

        If no worker exists for this guild (or the previous one crashed),
        a new persistent worker is started.
        """
        guild_id = event.guild_id
        queue = self._get_or_create_queue(guild_id)
        await queue.put(event)

        worker = self._workers.get(guild_id)
        if worker is None or worker.done():
            self._workers[guild_id] = asyncio.create_task(
                self._guild_worker(guild_id, queue),
                name=f"modguard-worker-guild-{guild_id}",
            )
            logger.debug("[QUEUE SERVICE] Started queue worker for guild %s", guild_id)

    async def wait_idle(self, guild_id: Optional[GuildID] = None) -> None:
        """Wait until every queued event (of one guild, or all guilds) has been processed."""
        if guild_id is None:
            queues = list(self._queues.values())
        else:
            queues = [self._queues[guild_id]] if guild_id in self._queues else []
        for queue in queues:
            await queue.join()

    def pending(self, guild_id: GuildID) -> int:
        queue = self._queues.get(guild_id)
        return queue.qsize() if queue else 0

    async def remove_guild(self, guild_id: GuildID) -> None:
        """Stop the guild's worker and discard its queue (bot removed from guild)."""
        task = self._workers.pop(guild_id, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._queues.pop(guild_id, None)

    async def shutdown(self) -> None:
        """Cancel all worker tasks gracefully during bot shutdown."""
        for task in self._workers.values():
            if not task.done():
                task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
        logger.info("[QUEUE SERVICE] All guild workers shut down.")

    # -------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------

    def _get_or_create_queue(self, guild_id: GuildID) -> asyncio.Queue[ModerationEvent]:
        if guild_id not in self._queues:
            self._queues[guild_id] = asyncio.Queue(maxsize=self._max_size)
        return self._queues[guild_id]

    async def _guild_worker(self, guild_id: GuildID, queue: asyncio.Queue[ModerationEvent]) -> None:
        """
        Persistent worker for one guild.

        Waits for the first event, drains the rest of the queue, drops events
        whose module is now disabled and forwards the batch to the engine.
        """
        logger.debug("[QUEUE SERVICE] Guild worker running for guild %s", guild_id)
        while True:
            try:
                events: List[ModerationEvent] = [await queue.get()]
                while not queue.empty():
                    events.append(queue.get_nowait())
            except asyncio.CancelledError:
                logger.info("[QUEUE SERVICE] Guild worker cancelled for guild %s", guild_id)
                return

            try:
                policy = self._policy_provider(guild_id)
                batch = [event for event in events if policy.module_enabled(event.category)]
                dropped = len(events) - len(batch)
                if dropped:
                    logger.info(
                        "[QUEUE SERVICE] Guild %s: dropped %d event(s) for disabled modules", guild_id, dropped
                    )
                if batch:
                    async with self._pool:
                        await self._engine.process_batch(batch)
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("[QUEUE SERVICE] Engine raised an exception for guild %s batch", guild_id)
            finally:
                for _ in events:
                    queue.task_done()

"""Periodic reconciliation of buffered episodes with the remote graph.

Two drain modes are supported:

best_effort
    Each group's live queue is walked in order and then reset to empty.
    Episodes whose delivery fails are discarded (at most one attempt per
    tick). This is the default.

requeue
    Each group's queue is detached before delivery starts; episodes whose
    delivery fails are put back at the front of the queue, ahead of anything
    added while the tick was running. A tick cancelled by ``stop()`` puts
    the in-flight and unattempted episodes back as well. Nothing is lost, at
    the cost of possible repeated deliveries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Literal, Optional

from .buffer import EpisodeBuffer
from .models import Episode
from .observability import log_debug, log_error, log_warning

SyncMode = Literal["best_effort", "requeue"]

DeliverFn = Callable[[Episode], Awaitable[None]]
TickCallback = Callable[["SyncReport"], None]


@dataclass
class SyncReport:
    """Outcome of one scheduler tick."""

    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    requeued: int = 0
    groups: list[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "requeued": self.requeued,
            "groups": list(self.groups),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class SyncScheduler:
    """Drains an EpisodeBuffer into the remote service on a fixed interval.

    The scheduler never touches the adapter directly: it is handed the buffer
    and a delivery coroutine, and reports each tick through ``on_tick``.
    """

    def __init__(
        self,
        buffer: EpisodeBuffer,
        deliver: DeliverFn,
        *,
        interval: float,
        mode: SyncMode = "best_effort",
        on_tick: Optional[TickCallback] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if mode not in ("best_effort", "requeue"):
            raise ValueError(f"unknown sync mode: {mode!r}")
        self._buffer = buffer
        self._deliver = deliver
        self._interval = interval
        self._mode: SyncMode = mode
        self._on_tick = on_tick
        self._task: Optional[asyncio.Task] = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def mode(self) -> SyncMode:
        return self._mode

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the periodic loop, replacing any loop already running.

        Must be called from within a running event loop.

        Returns:
            The task handle driving the loop
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name=f"graph-memory-sync-{id(self)}"
        )
        log_debug(f"SYNC: scheduler started (interval={self._interval}s, mode={self._mode})")
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log_debug("SYNC: scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log_error(f"SYNC: tick failed: {exc}")

    async def run_once(self) -> SyncReport:
        """Attempt delivery of every buffered episode, group by group."""
        report = SyncReport()
        for group_id in self._buffer.groups():
            report.groups.append(group_id)
            if self._mode == "requeue":
                await self._drain_requeue(group_id, report)
            else:
                await self._drain_best_effort(group_id, report)

        report.completed_at = datetime.now(timezone.utc)
        if report.attempted:
            log_debug("SYNC: tick complete", **report.to_dict())
        if self._on_tick is not None:
            self._on_tick(report)
        return report

    async def _drain_best_effort(self, group_id: str, report: SyncReport) -> None:
        for episode in self._buffer.live_queue(group_id):
            report.attempted += 1
            if await self._attempt(episode):
                report.delivered += 1
            else:
                report.failed += 1
        self._buffer.reset(group_id)

    async def _drain_requeue(self, group_id: str, report: SyncReport) -> None:
        remaining = self._buffer.take(group_id)
        failed: list[Episode] = []
        try:
            while remaining:
                episode = remaining[0]
                report.attempted += 1
                delivered = await self._attempt(episode)
                remaining.pop(0)
                if delivered:
                    report.delivered += 1
                else:
                    report.failed += 1
                    failed.append(episode)
        finally:
            # On cancellation the in-flight episode is still at remaining[0]
            self._buffer.requeue_front(group_id, failed + remaining)
            report.requeued += len(failed) + len(remaining)

    async def _attempt(self, episode: Episode) -> bool:
        try:
            await self._deliver(episode)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_warning(
                f"SYNC: failed to deliver episode: {exc}",
                episode=episode.uuid,
                group_id=episode.group_id,
            )
            return False
        return True

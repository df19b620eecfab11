"""Per-group FIFO buffer of episodes awaiting delivery."""

from __future__ import annotations

from typing import Sequence

from .models import Episode


class EpisodeBuffer:
    """Ordered queues of pending episodes, one per group.

    Queues are created lazily on first enqueue and never duplicated. Within a
    group, episodes keep strict insertion order.
    """

    def __init__(self) -> None:
        self._queues: dict[str, list[Episode]] = {}

    def enqueue(self, episode: Episode) -> int:
        """Append to the tail of the episode's group queue.

        Returns:
            The group's queue length after the append
        """
        queue = self._queues.setdefault(episode.group_id, [])
        queue.append(episode)
        return len(queue)

    def groups(self) -> list[str]:
        """Snapshot of group ids that currently hold pending episodes."""
        return [group_id for group_id, queue in self._queues.items() if queue]

    def live_queue(self, group_id: str) -> list[Episode]:
        """The group's queue itself, not a copy.

        Iterating it observes episodes appended while the iteration is
        suspended. Only the sync scheduler should use this.
        """
        return self._queues.get(group_id, [])

    def pending(self, group_id: str) -> tuple[Episode, ...]:
        return tuple(self._queues.get(group_id, ()))

    def recent(self, group_id: str, limit: int) -> list[Episode]:
        """The last ``limit`` episodes of a group, oldest first."""
        if limit <= 0:
            return []
        return list(self._queues.get(group_id, [])[-limit:])

    def take(self, group_id: str) -> list[Episode]:
        """Detach and return the group's queue, leaving an empty one behind."""
        queue = self._queues.get(group_id, [])
        if group_id in self._queues:
            self._queues[group_id] = []
        return queue

    def reset(self, group_id: str) -> None:
        if group_id in self._queues:
            self._queues[group_id] = []

    def requeue_front(self, group_id: str, episodes: Sequence[Episode]) -> None:
        """Put episodes back ahead of anything queued since they were taken."""
        if not episodes:
            return
        queue = self._queues.setdefault(group_id, [])
        queue[:0] = list(episodes)

    def total(self) -> int:
        return sum(len(queue) for queue in self._queues.values())

    def __len__(self) -> int:
        return self.total()

    def clear(self) -> None:
        self._queues.clear()

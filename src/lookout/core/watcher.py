"""Waiting for a disqualifying follow-up message (core domain).

Each wait is a future registered under (user, channel). Registration is
synchronous, so a follow-up handled right after the triggering message is
never missed. An incoming message from that user in that channel resolves
the future; otherwise asyncio.wait_for cancels it when the patience window
runs out. The registration is removed in every case so finished waits never
receive events.

Messages that arrive while candidates are still being looked up are caught
by a recording on the channel, opened before the lookup starts.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass, field
import enum
import logging
from typing import Iterator, Optional

LOGGER = logging.getLogger(__name__)

_Key = tuple[int, int]


class WatchOutcome(enum.Enum):
    FOLLOW_UP = "follow_up"
    CHANNEL_DELETED = "channel_deleted"
    TIMED_OUT = "timed_out"


@dataclass(eq=False)
class Watch:
    user_id: int
    channel_id: int
    future: asyncio.Future

    @property
    def key(self) -> _Key:
        return (self.user_id, self.channel_id)


@dataclass(eq=False)
class Recording:
    """Authors seen in a channel while a recording is open."""

    channel_id: int
    authors: set[int] = field(default_factory=set)
    channel_deleted: bool = False

    def outcome_for(self, user_id: int) -> Optional[WatchOutcome]:
        if self.channel_deleted:
            return WatchOutcome.CHANNEL_DELETED
        if user_id in self.authors:
            return WatchOutcome.FOLLOW_UP
        return None


class FollowUpWatcher:
    """Registry of pending waits keyed by (user_id, channel_id)."""

    def __init__(self) -> None:
        self._waiters: dict[_Key, set[asyncio.Future]] = {}
        self._recordings: dict[int, list[Recording]] = {}

    @property
    def pending(self) -> int:
        return sum(len(futures) for futures in self._waiters.values())

    def register(self, user_id: int, channel_id: int) -> Watch:
        """Start listening for the next message from user_id in channel_id."""

        watch = Watch(user_id, channel_id, asyncio.get_running_loop().create_future())
        self._waiters.setdefault(watch.key, set()).add(watch.future)
        return watch

    async def wait(self, watch: Watch, timeout: float) -> WatchOutcome:
        """Wait for a registered watch to resolve, up to timeout seconds."""

        try:
            return await asyncio.wait_for(watch.future, timeout)
        except asyncio.TimeoutError:
            return WatchOutcome.TIMED_OUT
        finally:
            self.discard(watch)

    def settle(self, watch: Watch, outcome: WatchOutcome) -> bool:
        """Resolve a watch directly; returns False if it was already done."""

        return self._resolve([watch.future], outcome) == 1

    def discard(self, watch: Watch) -> None:
        futures = self._waiters.get(watch.key)
        if futures is None:
            return
        futures.discard(watch.future)
        if not futures:
            del self._waiters[watch.key]

    @contextmanager
    def recording(self, channel_id: int) -> Iterator[Recording]:
        recording = Recording(channel_id)
        self._recordings.setdefault(channel_id, []).append(recording)
        try:
            yield recording
        finally:
            recordings = self._recordings[channel_id]
            recordings.remove(recording)
            if not recordings:
                del self._recordings[channel_id]

    def observe(self, user_id: int, channel_id: int) -> int:
        """Record a new message and return how many waits it resolved."""

        for recording in self._recordings.get(channel_id, []):
            recording.authors.add(user_id)

        futures = self._waiters.get((user_id, channel_id))
        if not futures:
            return 0
        return self._resolve(list(futures), WatchOutcome.FOLLOW_UP)

    def channel_deleted(self, channel_id: int) -> int:
        for recording in self._recordings.get(channel_id, []):
            recording.channel_deleted = True

        futures = [
            future
            for (_, waiting_channel), waiting in self._waiters.items()
            if waiting_channel == channel_id
            for future in waiting
        ]
        resolved = self._resolve(futures, WatchOutcome.CHANNEL_DELETED)
        if resolved:
            LOGGER.info("Channel %s deleted, suppressing %s pending notifications", channel_id, resolved)
        return resolved

    @staticmethod
    def _resolve(futures: list[asyncio.Future], outcome: WatchOutcome) -> int:
        resolved = 0
        for future in futures:
            # Timed-out waits are cancelled and count as done.
            if not future.done():
                future.set_result(outcome)
                resolved += 1
        return resolved

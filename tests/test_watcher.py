from __future__ import annotations

import asyncio

from lookout.core.watcher import FollowUpWatcher, WatchOutcome


def test_wait_times_out_and_unregisters() -> None:
    watcher = FollowUpWatcher()

    async def run() -> WatchOutcome:
        watch = watcher.register(1, 10)
        assert watcher.pending == 1
        return await watcher.wait(watch, 0.05)

    assert asyncio.run(run()) is WatchOutcome.TIMED_OUT
    assert watcher.pending == 0
    assert watcher.observe(1, 10) == 0


def test_registered_watch_sees_follow_up_before_waiting() -> None:
    watcher = FollowUpWatcher()

    async def run() -> WatchOutcome:
        watch = watcher.register(1, 10)
        assert watcher.observe(1, 10) == 1
        return await watcher.wait(watch, 0.2)

    assert asyncio.run(run()) is WatchOutcome.FOLLOW_UP
    assert watcher.pending == 0


def test_observe_resolves_only_matching_user_and_channel() -> None:
    watcher = FollowUpWatcher()

    async def run() -> tuple[list[WatchOutcome], list[int]]:
        watches = [
            watcher.register(1, 10),
            watcher.register(1, 10),
            watcher.register(1, 11),
            watcher.register(2, 10),
        ]
        resolved = [watcher.observe(1, 10), watcher.observe(1, 10)]
        outcomes = await asyncio.gather(*(watcher.wait(watch, 0.2) for watch in watches))
        return list(outcomes), resolved

    outcomes, resolved = asyncio.run(run())

    assert outcomes == [
        WatchOutcome.FOLLOW_UP,
        WatchOutcome.FOLLOW_UP,
        WatchOutcome.TIMED_OUT,
        WatchOutcome.TIMED_OUT,
    ]
    assert resolved == [2, 0]
    assert watcher.pending == 0


def test_channel_deleted_resolves_every_user_in_channel() -> None:
    watcher = FollowUpWatcher()

    async def run() -> tuple[list[WatchOutcome], int]:
        watches = [watcher.register(1, 10), watcher.register(2, 10), watcher.register(3, 11)]
        resolved = watcher.channel_deleted(10)
        outcomes = await asyncio.gather(*(watcher.wait(watch, 0.1) for watch in watches))
        return list(outcomes), resolved

    outcomes, resolved = asyncio.run(run())

    assert outcomes == [WatchOutcome.CHANNEL_DELETED, WatchOutcome.CHANNEL_DELETED, WatchOutcome.TIMED_OUT]
    assert resolved == 2


def test_settle_only_resolves_once() -> None:
    watcher = FollowUpWatcher()

    async def run() -> WatchOutcome:
        watch = watcher.register(1, 10)
        assert watcher.settle(watch, WatchOutcome.FOLLOW_UP) is True
        assert watcher.settle(watch, WatchOutcome.CHANNEL_DELETED) is False
        return await watcher.wait(watch, 0.2)

    assert asyncio.run(run()) is WatchOutcome.FOLLOW_UP


def test_discard_unregisters_without_waiting() -> None:
    watcher = FollowUpWatcher()

    async def run() -> None:
        watch = watcher.register(1, 10)
        watcher.discard(watch)
        watcher.discard(watch)

    asyncio.run(run())

    assert watcher.pending == 0


def test_recording_collects_authors_and_channel_deletion() -> None:
    watcher = FollowUpWatcher()

    with watcher.recording(10) as recording:
        watcher.observe(1, 10)
        watcher.observe(2, 11)
        assert recording.outcome_for(1) is WatchOutcome.FOLLOW_UP
        assert recording.outcome_for(2) is None
        watcher.channel_deleted(10)
        assert recording.outcome_for(2) is WatchOutcome.CHANNEL_DELETED

    # Closed recordings no longer collect anything.
    watcher.observe(3, 10)
    assert recording.authors == {1}


def test_cancelled_wait_is_unregistered() -> None:
    watcher = FollowUpWatcher()

    async def run() -> None:
        watch = watcher.register(1, 10)
        task = asyncio.create_task(watcher.wait(watch, 5))
        await asyncio.sleep(0)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    asyncio.run(run())

    assert watcher.pending == 0

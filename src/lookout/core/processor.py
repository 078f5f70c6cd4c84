"""Core message processing pipeline.

This module is integration-agnostic. It only relies on ports for storage,
delivery, and error reporting, enabling other transports without changes
here.

The pipeline for a new message:
1) Resolve any pending watch the message disqualifies
2) Fast-exit for DMs, bots, and empty text
3) Find keyword candidates, noting follow-ups that arrive meanwhile
4) Register a watch and start one independent task per candidate
5) After the patience window, deliver and record the notification
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional

from lookout.core.config import FOLLOW_UP_FROM_AUTHOR, BehaviorConfig
from lookout.core.errors import StorageError
from lookout.core.matcher import KeywordMatcher, keyword_matches
from lookout.core.models import Candidate, MessageContext, Notification
from lookout.core.policies import NullRecipientPolicy, RecipientPolicy
from lookout.core.ports import ErrorReporterPort, NotificationLedgerPort, NotifierPort
from lookout.core.watcher import FollowUpWatcher, Recording, Watch, WatchOutcome

LOGGER = logging.getLogger(__name__)


class DeliveryOutcome(enum.Enum):
    SUPPRESSED = "suppressed"
    DELIVERED = "delivered"
    FAILED = "failed"


class MessageProcessor:
    """Orchestrates matching, debounced delivery, persistence, and retraction."""

    def __init__(
        self,
        matcher: KeywordMatcher,
        watcher: FollowUpWatcher,
        notifier: NotifierPort,
        ledger: NotificationLedgerPort,
        reporter: ErrorReporterPort,
        behavior: BehaviorConfig,
        policy: Optional[RecipientPolicy] = None,
    ) -> None:
        self._matcher = matcher
        self._watcher = watcher
        self._notifier = notifier
        self._ledger = ledger
        self._reporter = reporter
        self._behavior = behavior
        self._policy = policy or NullRecipientPolicy()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of watches that have not finished yet."""

        return len(self._tasks)

    async def handle(self, context: MessageContext) -> list[asyncio.Task]:
        """Process one message and return the watch tasks it started.

        Every watch is registered before this returns, so the next message
        handled already counts as a follow-up.
        """

        # Any message may be the follow-up a pending watch is waiting for,
        # including messages that can't trigger keywords themselves.
        self._watcher.observe(context.author.id, context.channel_id)

        if context.guild_id is None or context.author.bot:
            return []
        if not context.content.strip():
            return []

        with self._watcher.recording(context.channel_id) as recording:
            candidates = await self._matcher.find_candidates(context)
            tasks = [self._spawn(context, candidate, recording) for candidate in candidates]
        if tasks:
            LOGGER.info("Message %s matched %s subscriber(s)", context.message_id, len(tasks))
        return tasks

    def _watched_user(self, context: MessageContext, candidate: Candidate) -> int:
        if self._behavior.follow_up_from == FOLLOW_UP_FROM_AUTHOR:
            return context.author.id
        return candidate.user_id

    def _spawn(self, context: MessageContext, candidate: Candidate, recording: Recording) -> asyncio.Task:
        watch = self._watcher.register(self._watched_user(context, candidate), context.channel_id)
        # Follow-ups that arrived during the candidate lookup.
        early = recording.outcome_for(watch.user_id)
        if early is not None:
            self._watcher.settle(watch, early)

        task = asyncio.create_task(
            self._watch(context, candidate, watch),
            name=f"watch-{context.message_id}-{candidate.user_id}",
        )
        # Keep a strong reference until the task is done.
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        # A task cancelled before it starts never reaches wait().
        task.add_done_callback(lambda _: self._watcher.discard(watch))
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            LOGGER.error("Watch %s crashed", task.get_name(), exc_info=error)

    async def _watch(self, context: MessageContext, candidate: Candidate, watch: Watch) -> DeliveryOutcome:
        outcome = await self._watcher.wait(watch, self._behavior.patience_seconds)
        if outcome is not WatchOutcome.TIMED_OUT:
            LOGGER.debug(
                "Suppressed notification for %s on message %s (%s)",
                candidate.user_id,
                context.message_id,
                outcome.value,
            )
            return DeliveryOutcome.SUPPRESSED

        return await self._deliver(context, candidate)

    async def _deliver(self, context: MessageContext, candidate: Candidate) -> DeliveryOutcome:
        try:
            notification_message = await self._notifier.send(
                candidate.user_id,
                context,
                candidate.keyword,
            )
        except Exception as error:
            self._policy.delivery_failed(candidate.user_id, error)
            await self._reporter.report(context.channel_id, candidate.user_id, error)
            return DeliveryOutcome.FAILED

        self._policy.delivery_succeeded(candidate.user_id)
        notification = Notification(
            original_message=context.message_id,
            notification_message=notification_message,
            keyword=candidate.keyword,
            user_id=candidate.user_id,
        )
        try:
            self._ledger.insert(notification)
        except StorageError as error:
            # The DM went out but can't be retracted later.
            await self._reporter.report(context.channel_id, candidate.user_id, error)
            return DeliveryOutcome.FAILED

        LOGGER.info(
            "Notified %s of keyword %r in message %s",
            candidate.user_id,
            candidate.keyword,
            context.message_id,
        )
        return DeliveryOutcome.DELIVERED

    def channel_deleted(self, channel_id: int) -> int:
        """Suppress every pending watch in a deleted channel."""

        return self._watcher.channel_deleted(channel_id)

    async def retract(self, message_id: int) -> int:
        """Delete every notification caused by a deleted message.

        Returns the number of ledger rows removed.
        """

        notifications = self._ledger.notifications_of_message(message_id)
        if not notifications:
            return 0

        for notification in notifications:
            await self._delete_notification_message(notification)

        removed = self._ledger.delete_notifications_of_message(message_id)
        LOGGER.info("Retracted %s notification(s) of message %s", removed, message_id)
        return removed

    async def handle_edit(self, context: MessageContext) -> None:
        """Refresh notifications whose keyword survived an edit, retract the rest."""

        for notification in self._ledger.notifications_of_message(context.message_id):
            if keyword_matches(notification.keyword, context.content):
                try:
                    await self._notifier.refresh(notification, context)
                except Exception as error:
                    await self._reporter.report(context.channel_id, notification.user_id, error)
                continue

            await self._delete_notification_message(notification)
            self._ledger.delete_notification(notification.notification_message)
            LOGGER.info(
                "Retracted notification %s after edit of message %s",
                notification.notification_message,
                context.message_id,
            )

    def notification_deleted(self, notification_message: int) -> bool:
        """Forget a notification message that no longer exists."""

        return self._ledger.delete_notification(notification_message)

    async def _delete_notification_message(self, notification: Notification) -> None:
        try:
            await self._notifier.delete(notification)
        except Exception:
            # Best effort; callers drop the ledger row either way.
            LOGGER.warning(
                "Failed to delete notification %s for %s",
                notification.notification_message,
                notification.user_id,
                exc_info=True,
            )

    async def join(self) -> None:
        """Wait until every in-flight watch has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Abandon in-flight watches; abandoned watches write nothing."""

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            LOGGER.info("Abandoned %s pending watch(es)", len(tasks))

"""Policies deciding when a recipient is flagged as unreachable."""

from __future__ import annotations

import logging
from typing import Protocol

from lookout.core.errors import RecipientUnreachableError
from lookout.core.models import UserState, UserStateKind
from lookout.core.ports import UserStatePort

LOGGER = logging.getLogger(__name__)


class RecipientPolicy(Protocol):
    def delivery_succeeded(self, user_id: int) -> None:
        ...

    def delivery_failed(self, user_id: int, error: BaseException) -> None:
        ...


class NullRecipientPolicy:
    """Never changes recipient state; failures are only reported."""

    def delivery_succeeded(self, user_id: int) -> None:
        return None

    def delivery_failed(self, user_id: int, error: BaseException) -> None:
        return None


class ConsecutiveFailurePolicy:
    """Flag a user as CANNOT_DM after `threshold` unreachable deliveries in a row."""

    def __init__(self, user_states: UserStatePort, threshold: int) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._user_states = user_states
        self._threshold = threshold
        self._failures: dict[int, int] = {}

    def failures(self, user_id: int) -> int:
        return self._failures.get(user_id, 0)

    def delivery_succeeded(self, user_id: int) -> None:
        self._failures.pop(user_id, None)

    def delivery_failed(self, user_id: int, error: BaseException) -> None:
        if not isinstance(error, RecipientUnreachableError):
            return

        count = self._failures.get(user_id, 0) + 1
        if count < self._threshold:
            self._failures[user_id] = count
            return

        self._failures.pop(user_id, None)
        self._user_states.set(UserState(user_id=user_id, state=UserStateKind.CANNOT_DM))
        LOGGER.info("User %s flagged as unreachable after %s failed deliveries", user_id, count)

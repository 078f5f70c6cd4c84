"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

FOLLOW_UP_FROM_AUTHOR = "author"
FOLLOW_UP_FROM_SUBSCRIBER = "subscriber"


@dataclass(frozen=True)
class BehaviorConfig:
    """Matching and delivery behavior for the core pipeline."""

    patience_seconds: float = 120.0
    max_keywords: int = 100
    # Whose next message in the channel cancels a pending notification.
    follow_up_from: str = FOLLOW_UP_FROM_AUTHOR
    # 0 disables flagging recipients as unreachable.
    cannot_dm_after_failures: int = 0

    def __post_init__(self) -> None:
        if self.patience_seconds <= 0:
            raise ValueError("patience_seconds must be positive")
        if self.max_keywords < 1:
            raise ValueError("max_keywords must be at least 1")
        if self.follow_up_from not in {FOLLOW_UP_FROM_AUTHOR, FOLLOW_UP_FROM_SUBSCRIBER}:
            raise ValueError(f"Unsupported follow_up_from: {self.follow_up_from}")
        if self.cannot_dm_after_failures < 0:
            raise ValueError("cannot_dm_after_failures must not be negative")


@dataclass(frozen=True)
class NotificationConfig:
    """Notification formatting settings consumed by notifier adapters."""

    snippet_chars: int = 1500
    embed_color: int = 0xEFFF47

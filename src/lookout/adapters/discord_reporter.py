"""Error reporting for failed deliveries.

Errors are always logged; when a log channel is configured they are also
posted there so operators see them without reading log files.
"""

from __future__ import annotations

import logging
from typing import Optional

import discord

from lookout.adapters.notification_formatting import clip, format_error_report

LOGGER = logging.getLogger(__name__)

# Discord's message content limit.
MAX_MESSAGE_CHARS = 2000


class DiscordErrorReporter:
    def __init__(self, client: discord.Client, log_channel_id: Optional[int] = None) -> None:
        self._client = client
        self._log_channel_id = log_channel_id

    async def report(self, channel_id: int, user_id: int, error: BaseException) -> None:
        content = format_error_report(channel_id, user_id, error)
        LOGGER.error("%s", content, exc_info=error)

        if self._log_channel_id is None:
            return

        channel = self._client.get_channel(self._log_channel_id)
        if channel is None:
            LOGGER.warning("Log channel %s not found, error not posted", self._log_channel_id)
            return
        try:
            await channel.send(clip(content, MAX_MESSAGE_CHARS))
        except discord.HTTPException:
            LOGGER.warning("Failed to post error to log channel %s", self._log_channel_id, exc_info=True)

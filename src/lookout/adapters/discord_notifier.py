"""Discord notification adapter for direct messages.

Formats notifications as embeds and sends them to the subscriber's DMs.
"""

from __future__ import annotations

import logging

import discord

from lookout.adapters.discord_directory import DiscordDirectory
from lookout.adapters.notification_formatting import NotificationPayload, build_payload
from lookout.core.config import NotificationConfig
from lookout.core.errors import DeliveryError, RecipientUnreachableError, ResolutionError
from lookout.core.models import MessageContext, Notification

LOGGER = logging.getLogger(__name__)


def to_embed(payload: NotificationPayload) -> discord.Embed:
    embed = discord.Embed(
        description=payload.description,
        color=payload.color,
        timestamp=payload.timestamp,
    )
    embed.set_author(name=payload.title, url=payload.url)
    embed.set_footer(text=payload.footer_text, icon_url=payload.footer_icon_url)
    return embed


class DiscordNotifier:
    """Notifier adapter that sends embeds to the subscriber's DM channel."""

    def __init__(self, directory: DiscordDirectory, config: NotificationConfig) -> None:
        self._directory = directory
        self._config = config

    def _embed(self, context: MessageContext, keyword: str) -> discord.Embed:
        if context.guild_id is None:
            raise ResolutionError(f"Message {context.message_id} is not in a guild")
        payload = build_payload(
            context,
            keyword,
            channel_name=self._directory.channel_name(context.channel_id),
            guild_name=self._directory.guild_name(context.guild_id),
            config=self._config,
        )
        return to_embed(payload)

    async def _dm_channel(self, user_id: int) -> discord.DMChannel:
        user = await self._directory.fetch_discord_user(user_id)
        if user.dm_channel is not None:
            return user.dm_channel
        try:
            return await user.create_dm()
        except discord.HTTPException as error:
            raise DeliveryError(f"Couldn't open a DM channel with {user_id}") from error

    async def send(self, user_id: int, context: MessageContext, keyword: str) -> int:
        """Send the notification and return the id of the DM."""

        embed = self._embed(context, keyword)
        dm_channel = await self._dm_channel(user_id)
        try:
            message = await dm_channel.send(embed=embed)
        except discord.Forbidden as error:
            raise RecipientUnreachableError(f"User {user_id} does not accept direct messages") from error
        except discord.HTTPException as error:
            raise DeliveryError(f"Sending notification to {user_id} failed: {error}") from error
        return message.id

    async def refresh(self, notification: Notification, context: MessageContext) -> None:
        """Rewrite a sent notification with the edited message content."""

        embed = self._embed(context, notification.keyword)
        dm_channel = await self._dm_channel(notification.user_id)
        try:
            await dm_channel.get_partial_message(notification.notification_message).edit(embed=embed)
        except discord.HTTPException as error:
            raise DeliveryError(
                f"Editing notification {notification.notification_message} failed: {error}"
            ) from error

    async def delete(self, notification: Notification) -> None:
        dm_channel = await self._dm_channel(notification.user_id)
        try:
            await dm_channel.get_partial_message(notification.notification_message).delete()
        except discord.NotFound:
            LOGGER.debug("Notification %s was already deleted", notification.notification_message)
        except discord.HTTPException as error:
            raise DeliveryError(
                f"Deleting notification {notification.notification_message} failed: {error}"
            ) from error

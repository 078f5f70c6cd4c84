from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Optional

import discord
import pytest

from lookout.adapters.discord_directory import DiscordDirectory
from lookout.adapters.discord_mapper import build_context, build_permalink, channel_kind
from lookout.adapters.discord_notifier import DiscordNotifier, to_embed
from lookout.adapters.discord_reporter import MAX_MESSAGE_CHARS, DiscordErrorReporter
from lookout.adapters.notification_formatting import NotificationPayload
from lookout.core.config import NotificationConfig
from lookout.core.errors import DeliveryError, RecipientUnreachableError, ResolutionError
from lookout.core.models import Author, Channel, ChannelKind, MessageContext, Notification

WHEN = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _http_error(cls: type, status: int, reason: str) -> discord.HTTPException:
    return cls(SimpleNamespace(status=status, reason=reason), reason)


class DummyAvatar:
    def __init__(self, url: str) -> None:
        self.url = url


class DummyUser:
    def __init__(self, user_id: int, name: str, display_name: Optional[str] = None, bot: bool = False) -> None:
        self.id = user_id
        self.name = name
        self.display_name = display_name
        self.bot = bot
        self.display_avatar = DummyAvatar(f"https://cdn.example/{user_id}.png")
        self.dm_channel: Optional[DummyDMChannel] = None


class DummyMessage:
    def __init__(self, *, guild_id: Optional[int], content: Optional[str]) -> None:
        self.id = 1000
        self.guild = SimpleNamespace(id=guild_id) if guild_id is not None else None
        self.channel = SimpleNamespace(id=10)
        self.author = DummyUser(5, "alice", display_name="Alice A.")
        self.created_at = WHEN
        self.content = content


class DummyPartialMessage:
    def __init__(self, message_id: int, channel: DummyDMChannel) -> None:
        self.id = message_id
        self._channel = channel

    async def edit(self, embed: discord.Embed) -> None:
        if self._channel.error is not None:
            raise self._channel.error
        self._channel.edited.append((self.id, embed))

    async def delete(self) -> None:
        if self._channel.error is not None:
            raise self._channel.error
        self._channel.deleted.append(self.id)


class DummyDMChannel:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.embeds: list[discord.Embed] = []
        self.edited: list[tuple[int, discord.Embed]] = []
        self.deleted: list[int] = []

    def get_partial_message(self, message_id: int) -> DummyPartialMessage:
        return DummyPartialMessage(message_id, self)

    async def send(self, embed: discord.Embed) -> SimpleNamespace:
        if self.error is not None:
            raise self.error
        self.embeds.append(embed)
        return SimpleNamespace(id=5001)


class DummyPermissions:
    def __init__(self, read_messages: bool) -> None:
        self.read_messages = read_messages


class DummyGuild:
    def __init__(self, guild_id: int, members: dict[int, object], remote: Optional[dict[int, object]] = None) -> None:
        self.id = guild_id
        self.name = "Guild"
        self._members = members
        self._remote = remote or {}
        self.channels: list = []

    def get_member(self, user_id: int):
        return self._members.get(user_id)

    async def fetch_member(self, user_id: int):
        if user_id not in self._remote:
            raise _http_error(discord.NotFound, 404, "Not Found")
        return self._remote[user_id]

    async def fetch_channels(self) -> list:
        return self.channels


class DummyGuildChannel:
    def __init__(
        self,
        channel_id: int,
        guild: DummyGuild,
        readers: set[int],
        name: str = "general",
        channel_type: discord.ChannelType = discord.ChannelType.text,
    ) -> None:
        self.id = channel_id
        self.name = name
        self.type = channel_type
        self.guild = guild
        self._readers = readers

    def permissions_for(self, member) -> DummyPermissions:
        return DummyPermissions(member.id in self._readers)


class DummyClient:
    def __init__(self) -> None:
        self.user: Optional[DummyUser] = None
        self.channels: dict[int, object] = {}
        self.guilds: dict[int, DummyGuild] = {}
        self.users: dict[int, DummyUser] = {}
        self.remote_guilds: dict[int, DummyGuild] = {}
        self.sent: list[str] = []

    def get_channel(self, channel_id: int):
        return self.channels.get(channel_id)

    def get_guild(self, guild_id: int):
        return self.guilds.get(guild_id)

    def get_user(self, user_id: int):
        return self.users.get(user_id)

    async def fetch_user(self, user_id: int):
        raise _http_error(discord.NotFound, 404, "Not Found")

    async def fetch_guild(self, guild_id: int):
        if guild_id not in self.remote_guilds:
            raise _http_error(discord.NotFound, 404, "Not Found")
        return self.remote_guilds[guild_id]


def _setup_client() -> DummyClient:
    client = DummyClient()
    guild = DummyGuild(1, members={6: SimpleNamespace(id=6)}, remote={7: SimpleNamespace(id=7)})
    client.guilds[1] = guild
    client.channels[10] = DummyGuildChannel(10, guild, readers={6})
    return client


def _context() -> MessageContext:
    return MessageContext(
        message_id=1000,
        channel_id=10,
        guild_id=1,
        author=Author(id=5, name="alice"),
        timestamp=WHEN,
        content="rust is great",
        permalink="https://discord.com/channels/1/10/1000",
    )


def test_build_permalink_for_guilds_and_dms() -> None:
    assert build_permalink(1, 10, 1000) == "https://discord.com/channels/1/10/1000"
    assert build_permalink(None, 10, 1000) == "https://discord.com/channels/@me/10/1000"


def test_build_context_prefers_display_name() -> None:
    context = build_context(DummyMessage(guild_id=1, content="hello"))

    assert context.message_id == 1000
    assert context.channel_id == 10
    assert context.guild_id == 1
    assert context.author == Author(id=5, name="Alice A.", avatar_url="https://cdn.example/5.png", bot=False)
    assert context.timestamp == WHEN
    assert context.content == "hello"


def test_build_context_for_direct_message_without_content() -> None:
    context = build_context(DummyMessage(guild_id=None, content=None))

    assert context.guild_id is None
    assert context.content == ""
    assert context.permalink.endswith("/@me/10/1000")


def test_channel_kind() -> None:
    assert channel_kind(discord.ChannelType.text) is ChannelKind.TEXT
    assert channel_kind(discord.ChannelType.news) is ChannelKind.TEXT
    assert channel_kind(discord.ChannelType.voice) is ChannelKind.VOICE
    assert channel_kind(discord.ChannelType.category) is ChannelKind.CATEGORY
    assert channel_kind(discord.ChannelType.forum) is ChannelKind.OTHER


def test_to_embed() -> None:
    payload = NotificationPayload(
        title='Keyword "rust" seen in #general (Guild)',
        url="https://discord.com/channels/1/10/1000",
        description="**rust** is great",
        timestamp=WHEN,
        footer_text="alice",
        footer_icon_url=None,
        color=0xEFFF47,
    )

    embed = to_embed(payload)

    assert embed.author.name == payload.title
    assert embed.author.url == payload.url
    assert embed.description == payload.description
    assert embed.footer.text == "alice"
    assert embed.color.value == 0xEFFF47
    assert embed.timestamp == WHEN


def test_directory_reads_permissions_of_cached_and_fetched_members() -> None:
    directory = DiscordDirectory(_setup_client())

    assert asyncio.run(directory.user_can_read_channel(10, 6)) is True
    assert asyncio.run(directory.user_can_read_channel(10, 7)) is False
    # Not a member at all.
    assert asyncio.run(directory.user_can_read_channel(10, 8)) is False


def test_directory_unknown_channel_is_a_resolution_error() -> None:
    directory = DiscordDirectory(_setup_client())

    with pytest.raises(ResolutionError):
        asyncio.run(directory.user_can_read_channel(99, 6))
    with pytest.raises(ResolutionError):
        directory.current_user_id


def test_directory_fetch_user_returns_none_for_unknown_users() -> None:
    client = _setup_client()
    client.users[6] = DummyUser(6, "bob")
    directory = DiscordDirectory(client)

    user = asyncio.run(directory.fetch_user(6))

    assert (user.id, user.name) == (6, "bob")
    assert asyncio.run(directory.fetch_user(8)) is None


def test_directory_lists_text_channels_from_cache_or_api() -> None:
    client = _setup_client()
    cached = client.guilds[1]
    cached.channels = [
        client.channels[10],
        DummyGuildChannel(11, cached, readers=set(), name="voice", channel_type=discord.ChannelType.voice),
    ]
    remote = DummyGuild(2, members={})
    remote.channels = [DummyGuildChannel(20, remote, readers=set(), name="deploys")]
    client.remote_guilds[2] = remote
    directory = DiscordDirectory(client)

    assert asyncio.run(directory.text_channels_in_guild(1)) == {10: Channel(10, "general", 1, ChannelKind.TEXT)}
    assert asyncio.run(directory.text_channels_in_guild(2)) == {20: Channel(20, "deploys", 2, ChannelKind.TEXT)}
    with pytest.raises(ResolutionError):
        asyncio.run(directory.text_channels_in_guild(3))


def test_notifier_sends_embed_to_existing_dm_channel() -> None:
    client = _setup_client()
    subscriber = DummyUser(6, "bob")
    subscriber.dm_channel = DummyDMChannel()
    client.users[6] = subscriber
    notifier = DiscordNotifier(DiscordDirectory(client), NotificationConfig())

    message_id = asyncio.run(notifier.send(6, _context(), "rust"))

    assert message_id == 5001
    [embed] = subscriber.dm_channel.embeds
    assert embed.author.name == 'Keyword "rust" seen in #general (Guild)'
    assert embed.description == "**rust** is great"


def test_notifier_maps_forbidden_to_unreachable() -> None:
    client = _setup_client()
    subscriber = DummyUser(6, "bob")
    subscriber.dm_channel = DummyDMChannel(error=_http_error(discord.Forbidden, 403, "Forbidden"))
    client.users[6] = subscriber
    notifier = DiscordNotifier(DiscordDirectory(client), NotificationConfig())

    with pytest.raises(RecipientUnreachableError):
        asyncio.run(notifier.send(6, _context(), "rust"))


def test_reporter_posts_clipped_error_to_log_channel() -> None:
    client = _setup_client()
    log_channel = SimpleNamespace(messages=[])

    async def send(content: str) -> None:
        log_channel.messages.append(content)

    log_channel.send = send
    client.channels[50] = log_channel
    reporter = DiscordErrorReporter(client, log_channel_id=50)

    asyncio.run(reporter.report(10, 6, RuntimeError("x" * 3000)))

    [content] = log_channel.messages
    assert content.startswith("Error in 10 by 6: xxx")
    assert len(content) == MAX_MESSAGE_CHARS


def test_reporter_without_log_channel_only_logs(caplog) -> None:
    reporter = DiscordErrorReporter(_setup_client())

    with caplog.at_level("ERROR"):
        asyncio.run(reporter.report(10, 6, RuntimeError("boom")))

    assert "Error in 10 by 6: boom" in caplog.text


def _notifier_with_dm(error: Optional[Exception] = None) -> tuple[DiscordNotifier, DummyDMChannel]:
    client = _setup_client()
    subscriber = DummyUser(6, "bob")
    subscriber.dm_channel = DummyDMChannel(error=error)
    client.users[6] = subscriber
    return DiscordNotifier(DiscordDirectory(client), NotificationConfig()), subscriber.dm_channel


def _sent_notification() -> Notification:
    return Notification(original_message=1000, notification_message=5001, keyword="rust", user_id=6)


def test_notifier_refresh_edits_the_sent_dm() -> None:
    notifier, dm_channel = _notifier_with_dm()

    asyncio.run(notifier.refresh(_sent_notification(), _context()))

    [(message_id, embed)] = dm_channel.edited
    assert message_id == 5001
    assert embed.description == "**rust** is great"


def test_notifier_refresh_failure_is_a_delivery_error() -> None:
    notifier, _ = _notifier_with_dm(error=_http_error(discord.HTTPException, 500, "Server Error"))

    with pytest.raises(DeliveryError):
        asyncio.run(notifier.refresh(_sent_notification(), _context()))


def test_notifier_delete_removes_the_sent_dm() -> None:
    notifier, dm_channel = _notifier_with_dm()

    asyncio.run(notifier.delete(_sent_notification()))

    assert dm_channel.deleted == [5001]


def test_notifier_delete_of_missing_dm_is_not_an_error() -> None:
    notifier, _ = _notifier_with_dm(error=_http_error(discord.NotFound, 404, "Not Found"))

    asyncio.run(notifier.delete(_sent_notification()))


def test_notifier_delete_failure_is_a_delivery_error() -> None:
    notifier, _ = _notifier_with_dm(error=_http_error(discord.Forbidden, 403, "Forbidden"))

    with pytest.raises(DeliveryError):
        asyncio.run(notifier.delete(_sent_notification()))

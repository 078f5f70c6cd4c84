"""Application entry point for the lookout bot."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import queue
import urllib.request
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import Optional

import discord
from art import tprint
from dotenv import load_dotenv

from lookout.adapters.discord_directory import DiscordDirectory
from lookout.adapters.discord_mapper import build_context
from lookout.adapters.discord_notifier import DiscordNotifier
from lookout.adapters.discord_reporter import MAX_MESSAGE_CHARS, DiscordErrorReporter
from lookout.adapters.notification_formatting import clip
from lookout.adapters.sqlite_keywords import SQLiteKeywordStore
from lookout.adapters.sqlite_ledger import SQLiteNotificationLedger
from lookout.adapters.sqlite_storage import BACKUP_DIRNAME, backup_database, database_file, init_db
from lookout.adapters.sqlite_user_state import SQLiteUserStateStore
from lookout.client import build_client, load_token
from lookout.core.channels import get_channels_from_args
from lookout.core.errors import KeywordLimitError, ResolutionError, StorageError
from lookout.core.matcher import KeywordMatcher
from lookout.core.models import Channel, Keyword, KeywordKind
from lookout.core.policies import ConsecutiveFailurePolicy, NullRecipientPolicy, RecipientPolicy
from lookout.core.processor import MessageProcessor
from lookout.core.watcher import FollowUpWatcher
from lookout.settings import PROJECT_ROOT, Settings, load_settings

NAME = "LOOKOUT"
FONT = "tarty-1"

BACKUP_INTERVAL_SECONDS = 24 * 60 * 60


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


class _WebhookHandler(logging.Handler):
    """POST error records to a chat webhook as {"content": ...}.

    Runs behind a QueueListener thread so slow webhooks never stall the bot.
    """

    def __init__(self, url: str, timeout: float = 5.0) -> None:
        super().__init__(level=logging.ERROR)
        self._url = url
        self._timeout = timeout

    def emit(self, record: logging.LogRecord) -> None:
        try:
            content = clip(f"[{record.levelname}] {self.format(record)}", MAX_MESSAGE_CHARS)
            data = json.dumps({"content": content}).encode("utf-8")
            request = urllib.request.Request(self._url, data=data, method="POST")
            request.add_header("Content-Type", "application/json")
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except Exception:
            self.handleError(record)


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: dict) -> Optional[QueueListener]:
    """Install console, file, and webhook handlers from the logging config.

    Returns the webhook queue listener, which must be stopped on exit.
    """

    config = config or {}
    if not config.get("enabled", True):
        return None

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/lookout.log")
        if not os.path.isabs(path):
            path = os.path.join(PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    listener = None
    webhook_url = config.get("webhook")
    if webhook_url:
        records: queue.Queue = queue.Queue()
        queue_handler = QueueHandler(records)
        queue_handler.setLevel(logging.ERROR)
        queue_handler.setFormatter(_RedactingFormatter(secrets, fmt="%(name)s: %(message)s"))
        handlers.append(queue_handler)
        listener = QueueListener(records, _WebhookHandler(webhook_url))
        listener.start()

    if not handlers:
        return listener

    logging.basicConfig(level=level, handlers=handlers)
    if not webhook_url:
        logging.getLogger(__name__).warning("Webhook URL is not set, errors are not reported remotely")
    return listener


def _open_stores(
    settings: Settings,
) -> tuple[SQLiteNotificationLedger, SQLiteUserStateStore, SQLiteKeywordStore]:
    db_path = database_file(settings.database_path)
    ledger = SQLiteNotificationLedger(db_path)
    user_states = SQLiteUserStateStore(db_path)
    keywords = SQLiteKeywordStore(db_path)
    init_db(ledger, user_states, keywords)
    return ledger, user_states, keywords


def _backup(settings: Settings) -> str:
    return backup_database(
        database_file(settings.database_path),
        os.path.join(settings.database_path, BACKUP_DIRNAME),
        settings.database_backup_keep,
    )


async def _backup_loop(settings: Settings) -> None:
    logger = logging.getLogger(__name__)
    while True:
        try:
            await asyncio.to_thread(_backup, settings)
        except StorageError:
            logger.exception("Database backup failed")
        await asyncio.sleep(BACKUP_INTERVAL_SECONDS)


def _build_policy(settings: Settings, user_states: SQLiteUserStateStore) -> RecipientPolicy:
    threshold = settings.behavior.cannot_dm_after_failures
    if threshold > 0:
        return ConsecutiveFailurePolicy(user_states, threshold)
    return NullRecipientPolicy()


def _register_handlers(
    client: discord.Client,
    processor: MessageProcessor,
    ledger: SQLiteNotificationLedger,
    keywords: SQLiteKeywordStore,
) -> None:
    """Wire gateway events to the processor; every handler logs and survives errors."""

    logger = logging.getLogger(__name__)

    @client.event
    async def on_ready() -> None:
        logger.info("Logged in as %s, watching %s guild(s)", client.user, len(client.guilds))

    @client.event
    async def on_message(message: discord.Message) -> None:
        try:
            await processor.handle(build_context(message))
        except Exception:
            logger.exception("Error while processing message %s", message.id)

    @client.event
    async def on_raw_message_delete(payload: discord.RawMessageDeleteEvent) -> None:
        try:
            if payload.guild_id is None:
                # A notification DM disappeared.
                processor.notification_deleted(payload.message_id)
            else:
                await processor.retract(payload.message_id)
        except Exception:
            logger.exception("Error while retracting notifications of %s", payload.message_id)

    @client.event
    async def on_raw_bulk_message_delete(payload: discord.RawBulkMessageDeleteEvent) -> None:
        for message_id in payload.message_ids:
            try:
                await processor.retract(message_id)
            except Exception:
                logger.exception("Error while retracting notifications of %s", message_id)

    @client.event
    async def on_raw_message_edit(payload: discord.RawMessageUpdateEvent) -> None:
        if payload.guild_id is None:
            return
        try:
            # Only fetch the edited message when something was sent about it.
            if not ledger.notifications_of_message(payload.message_id):
                return
            channel = client.get_channel(payload.channel_id)
            if channel is None:
                return
            message = await channel.fetch_message(payload.message_id)
            await processor.handle_edit(build_context(message))
        except Exception:
            logger.exception("Error while handling edit of %s", payload.message_id)

    @client.event
    async def on_guild_channel_delete(channel: discord.abc.GuildChannel) -> None:
        processor.channel_deleted(channel.id)
        try:
            removed = keywords.delete_channel_keywords(channel.id)
        except StorageError:
            logger.exception("Failed to remove keywords of deleted channel %s", channel.id)
            return
        if removed:
            logger.info("Removed %s keyword(s) of deleted channel %s", removed, channel.id)


async def _serve(client: discord.Client, token: str, processor: MessageProcessor, settings: Settings) -> None:
    backup_task = asyncio.create_task(_backup_loop(settings)) if settings.database_backup else None
    async with client:
        try:
            await client.start(token)
        finally:
            if backup_task is not None:
                backup_task.cancel()
            await processor.close()


def _run(settings: Settings) -> None:
    _print_banner()
    listener = _configure_logging(settings.logging)
    logger = logging.getLogger(__name__)

    logger.info("Starting lookout")
    try:
        token = load_token()
        ledger, user_states, keywords = _open_stores(settings)

        client = build_client()
        directory = DiscordDirectory(client)
        processor = MessageProcessor(
            matcher=KeywordMatcher(keywords, user_states, directory),
            watcher=FollowUpWatcher(),
            notifier=DiscordNotifier(directory, settings.notifications),
            ledger=ledger,
            reporter=DiscordErrorReporter(client, settings.log_channel_id),
            behavior=settings.behavior,
            policy=_build_policy(settings, user_states),
        )
        logger.info(
            "Patience window is %ss, follow-ups from the %s",
            settings.behavior.patience_seconds,
            settings.behavior.follow_up_from,
        )

        _register_handlers(client, processor, ledger, keywords)
        asyncio.run(_serve(client, token, processor, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        if listener is not None:
            listener.stop()


async def _fetch_text_channels(guild_id: int) -> dict[int, Channel]:
    """Log in without opening the gateway and list a guild's text channels."""

    client = build_client()
    async with client:
        await client.login(load_token())
        return await DiscordDirectory(client).text_channels_in_guild(guild_id)


def _resolve_channel(arg: str, guild_id: Optional[int]) -> int:
    """Turn a channel id, mention, or name into a channel id.

    Ids are taken as they are. Mentions and names are looked up among the
    text channels of the guild. Raises ValueError if none matches.
    """

    if arg.isdigit():
        return int(arg)
    if guild_id is None:
        raise ValueError(f"Looking up channel {arg!r} needs --guild")

    result = get_channels_from_args(asyncio.run(_fetch_text_channels(guild_id)), arg)
    if result.not_found or len(result.found) != 1:
        raise ValueError(f"Couldn't find channel {arg!r} in guild {guild_id}")
    channel, _ = result.found[0]
    return channel.id


def _keyword_from_args(args: argparse.Namespace) -> Keyword:
    if args.channel is not None:
        kind, scope_id = KeywordKind.CHANNEL, _resolve_channel(args.channel, args.guild)
    else:
        kind, scope_id = KeywordKind.GUILD, args.guild
    return Keyword(keyword=" ".join(args.keyword), user_id=args.user, kind=kind, scope_id=scope_id)


def _keyword_command(args: argparse.Namespace, settings: Settings) -> int:
    _, _, keywords = _open_stores(settings)

    if args.action == "list":
        entries = keywords.user_keywords(args.user)
        if not entries:
            print("No keywords.")
        for entry in entries:
            print(f"{entry.keyword} | {entry.kind.value} | {entry.scope_id}")
        return 0

    try:
        keyword = _keyword_from_args(args)
    except (ResolutionError, ValueError) as error:
        print(error)
        return 1
    if args.action == "add":
        try:
            added = keywords.add_keyword(keyword, settings.behavior.max_keywords)
        except KeywordLimitError as error:
            print(error)
            return 1
        print("Added." if added else "Already present.")
        return 0

    removed = keywords.remove_keyword(keyword)
    print("Removed." if removed else "Not found.")
    return 0 if removed else 1


def _mute_command(args: argparse.Namespace, settings: Settings) -> int:
    _, _, keywords = _open_stores(settings)

    if args.action == "list":
        channel_ids = keywords.user_mutes(args.user)
        if not channel_ids:
            print("No mutes.")
        for channel_id in channel_ids:
            print(channel_id)
        return 0

    try:
        channel_id = _resolve_channel(args.channel, args.guild)
    except (ResolutionError, ValueError) as error:
        print(error)
        return 1
    if args.action == "add":
        print("Added." if keywords.mute(args.user, channel_id) else "Already present.")
        return 0

    removed = keywords.unmute(args.user, channel_id)
    print("Removed." if removed else "Not found.")
    return 0 if removed else 1


def _ignore_command(args: argparse.Namespace, settings: Settings) -> int:
    _, _, keywords = _open_stores(settings)

    if args.action == "list":
        entries = [
            (guild_id, phrase)
            for guild_id, phrase in keywords.user_ignores(args.user)
            if args.guild is None or guild_id == args.guild
        ]
        if not entries:
            print("No ignores.")
        for guild_id, phrase in entries:
            print(f"{phrase} | {guild_id}")
        return 0

    phrase = " ".join(args.phrase)
    if args.action == "add":
        print("Added." if keywords.add_ignore(args.user, args.guild, phrase) else "Already present.")
        return 0

    removed = keywords.remove_ignore(args.user, args.guild, phrase)
    print("Removed." if removed else "Not found.")
    return 0 if removed else 1


def _state_command(args: argparse.Namespace, settings: Settings) -> int:
    _, user_states, _ = _open_stores(settings)
    if args.action == "clear":
        user_states.clear(args.user)
        print("Cleared.")
        return 0

    state = user_states.user_state(args.user)
    print(state.state.name if state else "none")
    return 0


def _backup_command(settings: Settings) -> int:
    _open_stores(settings)
    print(_backup(settings))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lookout")
    parser.add_argument("--config", help="Path to config.json (defaults to $LOOKOUT_CONFIG)")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bot")
    subparsers.add_parser("backup", help="Write a database backup and exit")

    channel_help = "Channel id, or a mention or name looked up in --guild"

    keyword_parser = subparsers.add_parser("keyword", help="Manage keyword subscriptions")
    keyword_parser.add_argument("action", choices=["add", "remove", "list"])
    keyword_parser.add_argument("keyword", nargs="*", help="Keyword text (add/remove)")
    keyword_parser.add_argument("--user", type=int, required=True)
    keyword_parser.add_argument("--guild", type=int, help="Match in every channel of a guild")
    keyword_parser.add_argument("--channel", help=f"Match in one channel only. {channel_help}")

    mute_parser = subparsers.add_parser("mute", help="Manage muted channels")
    mute_parser.add_argument("action", choices=["add", "remove", "list"])
    mute_parser.add_argument("--user", type=int, required=True)
    mute_parser.add_argument("--channel", help=channel_help)
    mute_parser.add_argument("--guild", type=int, help="Guild used to look up --channel")

    ignore_parser = subparsers.add_parser("ignore", help="Manage ignored phrases")
    ignore_parser.add_argument("action", choices=["add", "remove", "list"])
    ignore_parser.add_argument("phrase", nargs="*", help="Phrase text (add/remove)")
    ignore_parser.add_argument("--user", type=int, required=True)
    ignore_parser.add_argument("--guild", type=int, help="Guild the phrase is ignored in")

    state_parser = subparsers.add_parser("state", help="Inspect or clear a user's delivery state")
    state_parser.add_argument("action", choices=["show", "clear"])
    state_parser.add_argument("--user", type=int, required=True)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = load_settings(args.config)

    if args.command == "keyword":
        if args.action != "list":
            if not args.keyword:
                parser.error("keyword add/remove needs the keyword text")
            if args.guild is None and args.channel is None:
                parser.error("keyword add/remove needs --guild or --channel")
        return _keyword_command(args, settings)
    if args.command == "mute":
        if args.action != "list" and args.channel is None:
            parser.error("mute add/remove needs --channel")
        return _mute_command(args, settings)
    if args.command == "ignore":
        if args.action != "list":
            if not args.phrase:
                parser.error("ignore add/remove needs the phrase text")
            if args.guild is None:
                parser.error("ignore add/remove needs --guild")
        return _ignore_command(args, settings)
    if args.command == "state":
        return _state_command(args, settings)
    if args.command == "backup":
        return _backup_command(settings)
    _run(settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""Configuration for lookout.

All user-editable settings (behavior, notifications, database, logging)
live in a single JSON file for quick edits without touching Python. The
file is optional; every setting has a default. Secrets such as the bot
token come from the environment instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from typing import Any, Optional

from lookout.core.config import BehaviorConfig, NotificationConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

# LOOKOUT_CONFIG points at another config file, e.g. for containers.
CONFIG_ENV_VAR = "LOOKOUT_CONFIG"
DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

DEFAULT_DATABASE_PATH = "data"


@dataclass(frozen=True)
class Settings:
    """Settings built once at startup and passed to the components that need them."""

    behavior: BehaviorConfig = field(default_factory=BehaviorConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    # Directory holding the database file and its backups.
    database_path: str = os.path.join(PROJECT_ROOT, DEFAULT_DATABASE_PATH)
    database_backup: bool = True
    database_backup_keep: int = 7
    # Raw logging section, interpreted by app._configure_logging.
    logging: dict[str, Any] = field(default_factory=dict)
    log_channel_id: Optional[int] = None


def config_path() -> str:
    return os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH


def _load_json_config(path: str) -> dict:
    """Load the JSON config, or an empty config if the file is missing."""

    if not os.path.exists(path):
        return {}

    with open(path, "r", encoding="utf-8") as handle:
        config = json.load(handle)
    if not isinstance(config, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")
    return config


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def build_settings(config: dict) -> Settings:
    """Build Settings from a parsed config, applying defaults for missing keys."""

    behavior = config.get("behavior", {})
    notifications = config.get("notifications", {})
    database = config.get("database", {})
    logging_config = config.get("logging", {})

    embed_color = notifications.get("embed_color", NotificationConfig.embed_color)
    if isinstance(embed_color, str):
        # Accept "#efff47" and "0xefff47" as well as plain integers.
        embed_color = int(embed_color.lstrip("#"), 16)

    backup_keep = int(database.get("backup_keep", 7))
    if backup_keep < 1:
        raise ValueError("database.backup_keep must be at least 1")
    snippet_chars = int(notifications.get("snippet_chars", NotificationConfig.snippet_chars))
    if snippet_chars < 1:
        raise ValueError("notifications.snippet_chars must be at least 1")

    return Settings(
        behavior=BehaviorConfig(
            patience_seconds=float(behavior.get("patience_seconds", BehaviorConfig.patience_seconds)),
            max_keywords=int(behavior.get("max_keywords", BehaviorConfig.max_keywords)),
            follow_up_from=str(behavior.get("follow_up_from", BehaviorConfig.follow_up_from)),
            cannot_dm_after_failures=int(
                behavior.get("cannot_dm_after_failures", BehaviorConfig.cannot_dm_after_failures)
            ),
        ),
        notifications=NotificationConfig(snippet_chars=snippet_chars, embed_color=int(embed_color)),
        database_path=_resolve_path(str(database.get("path", DEFAULT_DATABASE_PATH))),
        database_backup=bool(database.get("backup", True)),
        database_backup_keep=backup_keep,
        logging=logging_config,
        log_channel_id=_optional_int(logging_config.get("log_channel_id")),
    )


def load_settings(path: Optional[str] = None) -> Settings:
    return build_settings(_load_json_config(path or config_path()))

"""SQLite storage adapter.

Shared connection handling for the SQLite stores, plus schema setup and
online backups of the whole database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os
import sqlite3
from typing import Iterator

from lookout.core.errors import StorageError

LOGGER = logging.getLogger(__name__)

DB_FILENAME = "lookout.db"
BACKUP_DIRNAME = "backup"


class SQLiteStorage(ABC):
    """Thin SQLite wrapper; every operation uses its own short-lived connection."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose statements commit together or not at all.

        Any sqlite3 error, including constraint violations, surfaces as
        StorageError.
        """

        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as error:
            raise StorageError(f"Failed to open {self._db_path}: {error}") from error
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as error:
            raise StorageError(str(error)) from error
        finally:
            conn.close()

    @abstractmethod
    def init_table(self) -> None:
        """Create this store's tables if they do not exist."""


def database_file(directory: str) -> str:
    return os.path.join(directory, DB_FILENAME)


def init_db(*stores: SQLiteStorage) -> None:
    """Create the tables of every store, creating the database file if needed."""

    for store in stores:
        directory = os.path.dirname(store.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        store.init_table()


def backup_database(db_path: str, backup_dir: str, keep: int) -> str:
    """Copy the database with SQLite's online backup API.

    Only the newest `keep` backups are kept. Returns the new backup path.
    """

    os.makedirs(backup_dir, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    target = os.path.join(backup_dir, f"{stamp}.db")

    try:
        source = sqlite3.connect(db_path)
        try:
            destination = sqlite3.connect(target)
            try:
                source.backup(destination)
            finally:
                destination.close()
        finally:
            source.close()
    except sqlite3.Error as error:
        raise StorageError(f"Backup of {db_path} failed: {error}") from error

    backups = sorted(name for name in os.listdir(backup_dir) if name.endswith(".db"))
    for stale in backups[: max(len(backups) - keep, 0)]:
        os.remove(os.path.join(backup_dir, stale))

    LOGGER.info("Database backed up to %s", target)
    return target

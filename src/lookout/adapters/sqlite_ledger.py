"""SQLite notification ledger.

Implements NotificationLedgerPort: a record of every notification that was
delivered, so it can be retracted when its source message goes away.
"""

from __future__ import annotations

import sqlite3

from lookout.adapters.sqlite_storage import SQLiteStorage
from lookout.core.models import Notification


def _notification_from_row(row: sqlite3.Row) -> Notification:
    return Notification(
        original_message=int(row["original_message"]),
        notification_message=int(row["notification_message"]),
        keyword=row["keyword"],
        user_id=int(row["user_id"]),
    )


class SQLiteNotificationLedger(SQLiteStorage):
    """Sent notifications keyed by source message and by notification message."""

    def init_table(self) -> None:
        with self._connect() as conn:
            # sent_notifications is written once per delivered notification
            # and never updated.
            # Fields:
            # - original_message: message that triggered the notification
            # - notification_message: the DM that was sent (unique)
            # - keyword: matched keyword, kept for display on retraction
            # - user_id: subscriber that received the DM
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sent_notifications (
                    original_message INTEGER NOT NULL,
                    notification_message INTEGER NOT NULL UNIQUE,
                    keyword TEXT NOT NULL,
                    user_id INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS sent_notifications_original
                ON sent_notifications (original_message)
                """
            )

    def insert(self, notification: Notification) -> None:
        """Record a delivered notification.

        Raises StorageError if the notification message is already recorded.
        """

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sent_notifications (
                    original_message,
                    notification_message,
                    keyword,
                    user_id
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    notification.original_message,
                    notification.notification_message,
                    notification.keyword,
                    notification.user_id,
                ),
            )

    def notifications_of_message(self, message_id: int) -> list[Notification]:
        """Return the notifications sent because of a message, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT original_message, notification_message, keyword, user_id
                FROM sent_notifications
                WHERE original_message = ?
                ORDER BY rowid
                """,
                (message_id,),
            ).fetchall()
        return [_notification_from_row(row) for row in rows]

    def delete_notification(self, notification_message: int) -> bool:
        """Remove one notification; return whether it was recorded."""

        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM sent_notifications WHERE notification_message = ?",
                (notification_message,),
            )
            return cur.rowcount > 0

    def delete_notifications_of_message(self, message_id: int) -> int:
        """Remove every notification sent because of a message; return how many."""

        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM sent_notifications WHERE original_message = ?",
                (message_id,),
            )
            return cur.rowcount

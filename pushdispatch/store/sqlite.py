"""
Tool: SQLite Subscription Store
Purpose: Store and manage Web Push subscriptions on disk

Database: data/push_dispatch.db
    - push_subscriptions: one row per (owner, endpoint)

Usage:
    from pushdispatch.store.sqlite import SQLiteSubscriptionStore

    store = SQLiteSubscriptionStore("data/push_dispatch.db")
    await store.put(Subscription.from_payload("alice", payload))
    subs = await store.get("alice")
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from pushdispatch.errors import SubscriptionNotFound
from pushdispatch.logging_config import endpoint_prefix, get_logger
from pushdispatch.models import Subscription
from pushdispatch.store.base import SubscriptionStore

logger = get_logger(__name__)


def _to_epoch(value: datetime | None) -> float | None:
    return value.timestamp() if value is not None else None


def _row_to_subscription(row: sqlite3.Row) -> Subscription:
    expiration = row["expiration_time"]
    return Subscription(
        owner=row["owner"],
        endpoint=row["endpoint"],
        p256dh_key=row["p256dh_key"],
        auth_key=row["auth_key"],
        expiration_time=(
            datetime.fromtimestamp(expiration, tz=timezone.utc) if expiration is not None else None
        ),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class SQLiteSubscriptionStore(SubscriptionStore):
    """
    SQLite-backed store.

    Each operation runs in its own connection and transaction, so a
    concurrent invalidate and get see either the old or the new state,
    never a partial one.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        conn = self.get_connection()
        conn.close()

    def get_connection(self) -> sqlite3.Connection:
        """
        Get database connection, creating tables if needed.

        Returns:
            SQLite connection with row_factory set
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row

        conn.execute("""
            CREATE TABLE IF NOT EXISTS push_subscriptions (
                id TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                endpoint TEXT NOT NULL,
                p256dh_key TEXT NOT NULL,
                auth_key TEXT NOT NULL,
                expiration_time REAL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (owner, endpoint)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_subscriptions_owner "
            "ON push_subscriptions(owner)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_subscriptions_endpoint "
            "ON push_subscriptions(endpoint)"
        )
        conn.commit()
        return conn

    async def put(self, subscription: Subscription) -> Subscription:
        now = datetime.now(timezone.utc).isoformat()
        conn = self.get_connection()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO push_subscriptions
                    (id, owner, endpoint, p256dh_key, auth_key, expiration_time, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (owner, endpoint) DO UPDATE SET
                        p256dh_key = excluded.p256dh_key,
                        auth_key = excluded.auth_key,
                        expiration_time = excluded.expiration_time,
                        updated_at = excluded.updated_at
                    """,
                    (
                        subscription.id,
                        subscription.owner,
                        subscription.endpoint,
                        subscription.p256dh_key,
                        subscription.auth_key,
                        _to_epoch(subscription.expiration_time),
                        subscription.created_at.isoformat(),
                        now,
                    ),
                )
        finally:
            conn.close()
        return subscription

    async def get(self, owner: str, now: datetime | None = None) -> list[Subscription]:
        now_epoch = (now or datetime.now(timezone.utc)).timestamp()
        conn = self.get_connection()
        try:
            with conn:
                removed = conn.execute(
                    """
                    DELETE FROM push_subscriptions
                    WHERE owner = ? AND expiration_time IS NOT NULL AND expiration_time <= ?
                    """,
                    (owner, now_epoch),
                ).rowcount
                rows = conn.execute(
                    "SELECT * FROM push_subscriptions WHERE owner = ? ORDER BY created_at",
                    (owner,),
                ).fetchall()
        finally:
            conn.close()

        if removed:
            logger.info("subscriptions_expired", owner=owner, count=removed)
        return [_row_to_subscription(row) for row in rows]

    async def invalidate(self, endpoint: str) -> int:
        conn = self.get_connection()
        try:
            with conn:
                removed = conn.execute(
                    "DELETE FROM push_subscriptions WHERE endpoint = ?",
                    (endpoint,),
                ).rowcount
        finally:
            conn.close()

        if removed == 0:
            raise SubscriptionNotFound(endpoint)
        logger.info("subscription_invalidated", endpoint=endpoint_prefix(endpoint), removed=removed)
        return removed

    async def prune_expired(self, now: datetime | None = None) -> int:
        """
        Remove subscriptions whose expiration time has passed.

        Returns:
            Number of removed subscriptions
        """
        now_epoch = (now or datetime.now(timezone.utc)).timestamp()
        conn = self.get_connection()
        try:
            with conn:
                removed = conn.execute(
                    "DELETE FROM push_subscriptions "
                    "WHERE expiration_time IS NOT NULL AND expiration_time <= ?",
                    (now_epoch,),
                ).rowcount
        finally:
            conn.close()
        return removed

    async def count(self) -> int:
        conn = self.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM push_subscriptions").fetchone()[0]
        finally:
            conn.close()

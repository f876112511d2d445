"""SQLite-backed log of webhook delivery attempts.

Keeps an audit trail of every delivery (payload, signature, outcome) so
failed notifications can be inspected after the fact. Writes are
best-effort: a logging failure never affects the delivery flow.
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from leadhub.config import settings
from leadhub.webhooks.registry import WebhookDelivery, WebhookDeliveryStatus

logger = structlog.get_logger(__name__)

MEMORY_DB = ":memory:"


class DeliveryLog:
    """SQLite storage for webhook delivery records.

    The connection is opened lazily on first use, or explicitly with
    ``initialize()``.

    Example:
        log = DeliveryLog(":memory:")
        await log.record(delivery)
        recent = await log.list_for_webhook(webhook_id=1, limit=20)
    """

    def __init__(self, db_path: str | None = None) -> None:
        """Initialize the delivery log.

        Args:
            db_path: Path to SQLite database file.
                    Defaults to the DELIVERY_LOG_PATH setting.
        """
        self._db_path = db_path or settings.DELIVERY_LOG_PATH
        self._connection: aiosqlite.Connection | None = None
        self._init_lock = asyncio.Lock()
        self._logger = logger.bind(component="delivery_log")

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Open the database and create tables."""
        async with self._init_lock:
            if self._connection is not None:
                return

            if self._db_path != MEMORY_DB:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = await aiosqlite.connect(self._db_path)
            self._connection.row_factory = aiosqlite.Row

            await self._create_tables()
            self._logger.info("delivery_log_initialized", db_path=self._db_path)

    async def _create_tables(self) -> None:
        """Create the deliveries table if it doesn't exist."""
        assert self._connection is not None

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS webhook_deliveries (
                id TEXT PRIMARY KEY,
                webhook_id INTEGER NOT NULL,
                event TEXT NOT NULL,
                status TEXT NOT NULL,
                url TEXT NOT NULL,
                payload TEXT NOT NULL,
                signature TEXT,
                headers TEXT NOT NULL,
                attempt_count INTEGER NOT NULL DEFAULT 0,
                last_attempt_at TEXT,
                response_status INTEGER,
                response_body TEXT,
                error_message TEXT,
                created_at TEXT NOT NULL,
                completed_at TEXT
            )
        """)
        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_deliveries_webhook
            ON webhook_deliveries(webhook_id, created_at DESC)
        """)
        await self._connection.commit()

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            await self.initialize()
        assert self._connection is not None
        return self._connection

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def record(self, delivery: WebhookDelivery) -> bool:
        """Insert or update a delivery record.

        Args:
            delivery: Delivery to persist.

        Returns:
            True if written, False if the write failed (logged).
        """
        try:
            connection = await self._ensure_connection()
            await connection.execute(
                """
                INSERT OR REPLACE INTO webhook_deliveries
                (id, webhook_id, event, status, url, payload, signature, headers,
                 attempt_count, last_attempt_at, response_status, response_body,
                 error_message, created_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    delivery.id,
                    delivery.webhook_id,
                    delivery.event,
                    delivery.status.value,
                    delivery.url,
                    json.dumps(delivery.payload),
                    delivery.signature,
                    json.dumps(delivery.headers),
                    delivery.attempt_count,
                    delivery.last_attempt_at.isoformat() if delivery.last_attempt_at else None,
                    delivery.response_status,
                    delivery.response_body,
                    delivery.error_message,
                    delivery.created_at.isoformat(),
                    delivery.completed_at.isoformat() if delivery.completed_at else None,
                ),
            )
            await connection.commit()
        except Exception as e:
            self._logger.warning(
                "delivery_log_write_failed",
                delivery_id=delivery.id,
                webhook_id=delivery.webhook_id,
                error=str(e),
            )
            return False

        self._logger.debug(
            "delivery_recorded",
            delivery_id=delivery.id,
            webhook_id=delivery.webhook_id,
            status=delivery.status.value,
        )
        return True

    async def get(self, delivery_id: str) -> WebhookDelivery | None:
        """Get a delivery by ID.

        Args:
            delivery_id: Delivery identifier.

        Returns:
            Delivery if found, None otherwise.
        """
        connection = await self._ensure_connection()
        cursor = await connection.execute(
            "SELECT * FROM webhook_deliveries WHERE id = ?",
            (delivery_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_delivery(row)

    async def list_for_webhook(
        self,
        webhook_id: int,
        *,
        limit: int = 50,
        status: WebhookDeliveryStatus | None = None,
    ) -> list[WebhookDelivery]:
        """List deliveries for a webhook, newest first.

        Args:
            webhook_id: Webhook identifier.
            limit: Maximum results.
            status: Filter by status.

        Returns:
            List of deliveries.
        """
        connection = await self._ensure_connection()

        conditions = ["webhook_id = ?"]
        params: list[Any] = [webhook_id]
        if status:
            conditions.append("status = ?")
            params.append(status.value)

        query = f"""
            SELECT * FROM webhook_deliveries
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            LIMIT ?
        """
        params.append(limit)

        cursor = await connection.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_delivery(row) for row in rows]

    def _row_to_delivery(self, row: aiosqlite.Row) -> WebhookDelivery:
        """Convert a database row to a WebhookDelivery."""
        return WebhookDelivery(
            id=row["id"],
            webhook_id=row["webhook_id"],
            event=row["event"],
            status=WebhookDeliveryStatus(row["status"]),
            url=row["url"],
            payload=json.loads(row["payload"]),
            signature=row["signature"],
            headers=json.loads(row["headers"]),
            attempt_count=row["attempt_count"],
            last_attempt_at=datetime.fromisoformat(row["last_attempt_at"])
            if row["last_attempt_at"]
            else None,
            response_status=row["response_status"],
            response_body=row["response_body"],
            error_message=row["error_message"],
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=datetime.fromisoformat(row["completed_at"])
            if row["completed_at"]
            else None,
        )


# Global delivery log instance
_delivery_log: DeliveryLog | None = None


def get_delivery_log() -> DeliveryLog | None:
    """Get the global delivery log.

    Returns:
        Singleton DeliveryLog, or None when DELIVERY_LOG_ENABLED is off.
    """
    global _delivery_log
    if _delivery_log is None and settings.DELIVERY_LOG_ENABLED:
        _delivery_log = DeliveryLog()
    return _delivery_log


def set_delivery_log(delivery_log: DeliveryLog | None) -> None:
    """Set the global delivery log.

    Useful for testing.

    Args:
        delivery_log: DeliveryLog instance.
    """
    global _delivery_log
    _delivery_log = delivery_log

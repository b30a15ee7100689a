"""Gmail push notifications -> history resolution -> worker pool."""

from __future__ import annotations

import base64
import binascii
import json
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from inbox_triage.errors import MalformedNotification, PoolClosed, TransientUpstreamError
from inbox_triage.pipeline.history import HistoryResolver
from inbox_triage.pipeline.worker_pool import Job, WorkerPool

DeliveryStatus = Literal["dispatched", "duplicate", "malformed", "failed", "stopped"]


class GmailNotification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_address: str = Field(default="", alias="emailAddress")
    history_id: int = Field(alias="historyId", ge=1)


@dataclass(frozen=True)
class DeliveryResult:
    status: DeliveryStatus
    cursor: Optional[int] = None
    submitted: int = 0

    @property
    def ack(self) -> bool:
        # Only a stopped listener leaves the delivery to the transport; everything else is acked.
        return self.status != "stopped"


def decode_notification(payload: bytes) -> GmailNotification:
    """Decode a Pub/Sub push envelope, or the bare Gmail notification JSON."""
    try:
        data: Any = json.loads(payload)
        if isinstance(data, dict) and isinstance(data.get("message"), dict):
            encoded = data["message"].get("data") or ""
            data = json.loads(base64.b64decode(encoded, validate=False))
        return GmailNotification.model_validate(data)
    except (ValueError, binascii.Error, ValidationError, TypeError) as exc:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors.
        raise MalformedNotification(f"cannot decode notification: {exc}") from exc


class CursorCache:
    """Bounded LRU of history ids already dispatched by this process.

    Only saves duplicate history scans; after a restart a cursor may be
    dispatched once more and the idempotency store absorbs it.
    """

    def __init__(self, max_size: int = 10_000):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._items: "OrderedDict[int, None]" = OrderedDict()
        self._lock = threading.Lock()

    def add(self, cursor: int) -> bool:
        """Record the cursor; False if it was already present."""
        with self._lock:
            if cursor in self._items:
                self._items.move_to_end(cursor)
                return False
            self._items[cursor] = None
            if len(self._items) > self._max_size:
                self._items.popitem(last=False)
            return True

    def __contains__(self, cursor: int) -> bool:
        with self._lock:
            return cursor in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class NotificationListener:
    def __init__(
        self,
        resolver: HistoryResolver,
        pool: WorkerPool,
        *,
        cache: Optional[CursorCache] = None,
    ):
        self._resolver = resolver
        self._pool = pool
        self.cache = cache or CursorCache()
        self._stopped = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        """Stop consuming deliveries; later ones are left for redelivery."""
        if not self._stopped.is_set():
            self._stopped.set()
            logger.info("Notification listener stopped")

    def handle(self, payload: bytes) -> DeliveryResult:
        if self.stopped:
            return DeliveryResult("stopped")

        try:
            notification = decode_notification(payload)
        except MalformedNotification as exc:
            logger.warning(f"Error parsing notification: {exc}, raw data: {payload[:200]!r}")
            return DeliveryResult("malformed")

        cursor = notification.history_id
        if not self.cache.add(cursor):
            logger.info(f"HistoryID {cursor} already processed, skipping")
            return DeliveryResult("duplicate", cursor)

        logger.info(f"New notification - {notification.email_address} (historyID: {cursor})")
        return self._dispatch(cursor)

    def _dispatch(self, cursor: int) -> DeliveryResult:
        try:
            message_ids = self._resolver.resolve(cursor)
        except TransientUpstreamError as exc:
            logger.error(f"Fetch history error for historyID {cursor}: {exc}")
            return DeliveryResult("failed", cursor)
        except Exception as exc:
            # Timeouts, DNS and token refresh failures surface outside HttpError.
            # The cursor is already cached, so the delivery is still acked.
            logger.exception(f"Unexpected history error for historyID {cursor}: {exc}")
            return DeliveryResult("failed", cursor)

        if not message_ids:
            logger.info(f"No new messages in historyID: {cursor}")
            return DeliveryResult("dispatched", cursor)

        logger.info(f"Found {len(message_ids)} new message(s) in historyID: {cursor}")
        submitted = 0
        for message_id in message_ids:
            try:
                self._pool.submit(Job(message_id=message_id, source="notification"))
            except PoolClosed as exc:
                logger.warning(f"Dropping remaining messages of historyID {cursor}: {exc}")
                return DeliveryResult("failed", cursor, submitted)
            submitted += 1
        return DeliveryResult("dispatched", cursor, submitted)

    def snapshot(self) -> Dict[str, Any]:
        return {"stopped": self.stopped, "cursors_seen": len(self.cache)}

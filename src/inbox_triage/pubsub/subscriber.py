"""Streaming-pull delivery of Gmail notifications, for hosts without a public push URL."""

from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, Optional

from google.cloud import pubsub_v1
from loguru import logger

from inbox_triage.pubsub.listener import NotificationListener


class PullSubscriber:
    """Feeds a Pub/Sub subscription into the ``NotificationListener``.

    Every message is acked except while the listener is stopped; those are
    nacked so Pub/Sub hands them to the next process.
    """

    def __init__(
        self,
        listener: NotificationListener,
        subscription_path: str,
        *,
        client: Optional[pubsub_v1.SubscriberClient] = None,
        max_messages: int = 10,
    ):
        self._listener = listener
        self.subscription_path = subscription_path
        self._client = client
        self._owns_client = client is None
        self._flow_control = pubsub_v1.types.FlowControl(max_messages=max_messages)
        self._future: Optional[Any] = None
        self._lock = threading.Lock()
        self._counts: Counter = Counter()

    def start(self) -> None:
        with self._lock:
            if self._future is not None:
                raise RuntimeError("PullSubscriber already started")
            if self._client is None:
                self._client = pubsub_v1.SubscriberClient()
            self._future = self._client.subscribe(
                self.subscription_path,
                callback=self._on_message,
                flow_control=self._flow_control,
            )
        logger.info(f"Pub/Sub listener started on {self.subscription_path}")

    def _on_message(self, message: Any) -> None:
        try:
            result = self._listener.handle(message.data)
        except Exception as exc:
            # Redelivery would hit the cursor cache and be dropped anyway.
            logger.exception(f"Notification handling failed: {exc}")
            message.ack()
            self._count("error")
            return

        if result.ack:
            message.ack()
        else:
            message.nack()
        self._count(result.status)

    def _count(self, status: str) -> None:
        with self._lock:
            self._counts[status] += 1

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel the streaming pull and wait for it to wind down."""
        with self._lock:
            future, self._future = self._future, None
        if future is None:
            return

        future.cancel()
        try:
            future.result(timeout=timeout)
        except FutureTimeout:
            logger.warning("Pub/Sub streaming pull did not stop within the timeout")
        except Exception as exc:
            # The stream had already failed; shutdown goes on.
            logger.warning(f"Pub/Sub streaming pull ended with error: {exc}")
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None
        logger.info("Pub/Sub listener stopped")

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "subscription": self.subscription_path,
                "running": self._future is not None,
                "messages": dict(self._counts),
            }

# src/inbox_triage/app/run.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from googleapiclient.errors import HttpError
from loguru import logger

from inbox_triage.actions.executor import default_executor
from inbox_triage.classifier.openai_classifier import Classifier, OpenAIClassifier
from inbox_triage.config.settings import Settings
from inbox_triage.errors import PoolClosed, StoreError
from inbox_triage.gmail.client import GmailClient, GmailClientConfig, Mailbox
from inbox_triage.gmail.labels import LabelBook
from inbox_triage.pipeline.fetcher import MessageFetcher
from inbox_triage.pipeline.history import HistoryResolver
from inbox_triage.pipeline.orchestrator import EmailProcessor
from inbox_triage.pipeline.worker_pool import Job, WorkerPool
from inbox_triage.pubsub.listener import CursorCache, NotificationListener
from inbox_triage.pubsub.subscriber import PullSubscriber
from inbox_triage.storage.store import IdempotencyStore


@dataclass
class Runtime:
    settings: Settings
    mailbox: Mailbox
    store: IdempotencyStore
    pool: WorkerPool
    resolver: HistoryResolver
    listener: NotificationListener
    cancel: threading.Event = field(default_factory=threading.Event)
    # Only set when notifications arrive by streaming pull.
    subscriber: Optional[PullSubscriber] = None

    def start(self) -> None:
        self.pool.start()
        if self.subscriber is not None:
            self.subscriber.start()

    def shutdown(self, *, drain: bool = True, timeout: Optional[float] = None) -> bool:
        # Stop intake -> drain queue -> join workers.
        if self.subscriber is not None:
            self.subscriber.stop(timeout)
        self.listener.stop()
        stopped = self.pool.shutdown(drain=drain, timeout=timeout)
        self.cancel.set()
        if not stopped:
            # Drain took too long: cancelled workers exit after their current call.
            stopped = self.pool.join(timeout)
        return stopped

    def snapshot(self) -> Dict[str, Any]:
        try:
            committed: Optional[int] = self.store.count()
        except StoreError as exc:
            logger.warning(f"Cannot count committed messages: {exc}")
            committed = None
        data: Dict[str, Any] = {
            "pool": self.pool.stats(),
            "listener": self.listener.snapshot(),
            "committed": committed,
        }
        if self.subscriber is not None:
            data["subscriber"] = self.subscriber.snapshot()
        return data


def load_gmail_config(settings: Settings) -> GmailClientConfig:
    return GmailClientConfig(
        credentials_path=settings.credentials_path,
        token_path=settings.token_path,
        user_id="me",
    )


def build_runtime(
    settings: Settings,
    *,
    mailbox: Optional[Mailbox] = None,
    classifier: Optional[Classifier] = None,
    labels: Optional[LabelBook] = None,
    subscriber_client: Optional[Any] = None,
) -> Runtime:
    """Wire every component; Gmail, OpenAI and Pub/Sub clients can be injected."""
    if mailbox is None:
        client = GmailClient(load_gmail_config(settings))
        client.connect()
        mailbox = client

    if labels is None:
        labels = LabelBook()
        labels.bootstrap(mailbox)

    if classifier is None:
        classifier = OpenAIClassifier(settings.openai_api_key, settings.model_name)

    cancel = threading.Event()
    store = IdempotencyStore(settings.database_path)
    processor = EmailProcessor(
        store=store,
        fetcher=MessageFetcher(mailbox),
        classifier=classifier,
        executor=default_executor(labels),
        mailbox=mailbox,
    )
    pool = WorkerPool(
        processor,
        workers=settings.num_workers,
        capacity=settings.queue_capacity,
        throttle_seconds=settings.throttle_seconds,
        cancel=cancel,
    )
    resolver = HistoryResolver(
        mailbox,
        attempts=settings.history_attempts,
        backoff_seconds=settings.history_backoff_seconds,
        cancel=cancel,
    )
    listener = NotificationListener(
        resolver,
        pool,
        cache=CursorCache(settings.cursor_cache_size),
    )
    subscriber = None
    if settings.subscription_path:
        subscriber = PullSubscriber(listener, settings.subscription_path, client=subscriber_client)
    return Runtime(
        settings=settings,
        mailbox=mailbox,
        store=store,
        pool=pool,
        resolver=resolver,
        listener=listener,
        cancel=cancel,
        subscriber=subscriber,
    )


def scan_backlog(runtime: Runtime, max_results: int) -> int:
    """Submit the newest INBOX messages; returns how many jobs were queued."""
    logger.info(f"Processing initial batch of {max_results} emails...")
    try:
        message_ids = runtime.mailbox.list_messages(max_results=max_results, label_ids=["INBOX"])
    except HttpError as exc:
        logger.error(f"Backlog scan failed to list messages: {exc}")
        return 0

    logger.info(f"Found {len(message_ids)} messages to process")
    submitted = 0
    for message_id in message_ids:
        try:
            runtime.pool.submit(Job(message_id=message_id, source="backlog"))
        except PoolClosed:
            logger.warning(f"Backlog scan interrupted after {submitted} messages")
            break
        submitted += 1
    return submitted


def enable_watch(runtime: Runtime) -> bool:
    watch = getattr(runtime.mailbox, "watch", None)
    if watch is None:
        return False
    try:
        watch(runtime.settings.topic_name)
    except HttpError as exc:
        logger.warning(f"Failed to enable watch: {exc}")
        return False
    return True

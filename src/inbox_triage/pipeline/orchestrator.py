"""Per-message processing: the idempotency barrier around fetch, classify and effects."""

from __future__ import annotations

import threading
from enum import Enum
from typing import Optional

from loguru import logger

from inbox_triage.actions.executor import ActionExecutor
from inbox_triage.classifier.openai_classifier import Classifier
from inbox_triage.errors import MessageNotFound, StoreError, TransientUpstreamError
from inbox_triage.gmail.client import Mailbox
from inbox_triage.models import Email, ProcessedRecord
from inbox_triage.pipeline.fetcher import MessageFetcher
from inbox_triage.pipeline.policy import actions_from_classification
from inbox_triage.storage.store import IdempotencyStore


class JobOutcome(str, Enum):
    COMMITTED = "committed"
    DUPLICATE = "duplicate"
    EMPTY_BODY = "empty_body"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EmailProcessor:
    def __init__(
        self,
        *,
        store: IdempotencyStore,
        fetcher: MessageFetcher,
        classifier: Classifier,
        executor: ActionExecutor,
        mailbox: Mailbox,
    ):
        self.store = store
        self.fetcher = fetcher
        self.classifier = classifier
        self.executor = executor
        self.mailbox = mailbox

    def process(
        self,
        message_id: str,
        email: Optional[Email] = None,
        *,
        cancel: Optional[threading.Event] = None,
        worker_id: int = 0,
    ) -> JobOutcome:
        tag = f"[worker {worker_id}]"
        # The claim keeps concurrent duplicates of one id from passing the check together.
        with self.store.claim(message_id):
            try:
                if self.store.already_committed(message_id):
                    logger.info(f"{tag} Message {message_id} already processed, skip")
                    return JobOutcome.DUPLICATE
            except StoreError as exc:
                logger.error(f"{tag} DB check error for {message_id}: {exc}")
                return JobOutcome.FAILED

            if email is None:
                try:
                    email = self.fetcher.fetch(message_id)
                except MessageNotFound:
                    logger.warning(f"{tag} Message {message_id} no longer exists, skip")
                    return JobOutcome.NOT_FOUND
                except TransientUpstreamError as exc:
                    logger.error(f"{tag} Fetch error for {message_id}: {exc}")
                    return JobOutcome.FAILED

            if email.is_empty:
                logger.info(f"{tag} Empty body for {message_id}, skipping")
                return JobOutcome.EMPTY_BODY

            if cancel is not None and cancel.is_set():
                logger.info(f"{tag} Shutdown requested, leaving {message_id} unprocessed")
                return JobOutcome.CANCELLED

            try:
                result = self.classifier.classify(email.subject, email.body)
            except TransientUpstreamError as exc:
                logger.error(f"{tag} LLM error for {message_id}: {exc}")
                return JobOutcome.FAILED

            actions = actions_from_classification(email, result)
            failures = self.executor.run(self.mailbox, actions)
            if failures:
                logger.warning(
                    f"{tag} {len(failures)} of {len(actions)} effects failed for {message_id}, "
                    "committing anyway"
                )

            try:
                self.store.commit(ProcessedRecord.from_result(email, result))
            except StoreError as exc:
                # Effects are applied but not recorded: a restart may repeat them for this id.
                logger.error(
                    f"{tag} DB save error for {message_id} AFTER side effects were applied; "
                    f"it may be reprocessed after a restart: {exc}"
                )
                return JobOutcome.FAILED

        logger.info(
            f"{tag} OK: {message_id} category={result.category.value} label={result.label.value}"
        )
        return JobOutcome.COMMITTED

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from googleapiclient.errors import HttpError
from loguru import logger

from inbox_triage.errors import TransientUpstreamError
from inbox_triage.gmail.client import Mailbox

DRAFT_LABEL = "DRAFT"


def is_draft(message: Dict[str, Any]) -> bool:
    return DRAFT_LABEL in (message.get("labelIds") or [])


def extract_message_ids(history: List[Dict[str, Any]]) -> List[str]:
    """Added message ids in first-seen order, without our own drafts."""
    ids: List[str] = []
    seen = set()
    for record in history:
        for added in record.get("messagesAdded", []) or []:
            message = added.get("message") or {}
            message_id = message.get("id")
            # Drafts we created would otherwise come back as new mail.
            if not message_id or is_draft(message) or message_id in seen:
                continue
            seen.add(message_id)
            ids.append(message_id)
    return ids


class HistoryResolver:
    """Turns a Gmail historyId into the ids of messages added since then.

    Gmail writes history asynchronously and often notifies before the
    records are readable, so an empty history is retried ``attempts`` times
    with a linearly growing delay before it is accepted as "nothing new".
    """

    def __init__(
        self,
        mailbox: Mailbox,
        *,
        attempts: int = 5,
        backoff_seconds: float = 0.08,
        cancel: Optional[threading.Event] = None,
    ):
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self._mailbox = mailbox
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        # Waiting on the token instead of time.sleep lets shutdown cut the backoff short.
        self._cancel = cancel or threading.Event()

    def resolve(self, cursor: int) -> List[str]:
        for attempt in range(1, self.attempts + 1):
            history = self._fetch_all(cursor)
            if history:
                return extract_message_ids(history)

            if attempt < self.attempts:
                logger.debug(f"History {cursor} still empty (attempt {attempt}/{self.attempts}), retrying")
                if self._cancel.wait(attempt * self.backoff_seconds):
                    break

        # Still empty after retries, not an error.
        logger.info(f"No history records for historyId {cursor}")
        return []

    def _fetch_all(self, cursor: int) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            try:
                resp = self._mailbox.list_history(cursor, page_token=page_token)
            except HttpError as exc:
                raise TransientUpstreamError(f"gmail history list error: {exc}") from exc
            records.extend(resp.get("history", []) or [])
            page_token = resp.get("nextPageToken")
            if not page_token:
                return records

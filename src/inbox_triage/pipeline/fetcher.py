from __future__ import annotations

from googleapiclient.errors import HttpError

from inbox_triage.errors import MessageNotFound, TransientUpstreamError
from inbox_triage.gmail.client import Mailbox, http_status
from inbox_triage.models import Email
from inbox_triage.parsing.parser import extract_body_from_payload, headers_from_payload


class MessageFetcher:
    """Loads one Gmail message and normalizes it into an ``Email``."""

    def __init__(self, mailbox: Mailbox):
        self._mailbox = mailbox

    def fetch(self, message_id: str) -> Email:
        try:
            msg = self._mailbox.get_message(message_id, fmt="full")
        except HttpError as exc:
            if http_status(exc) in (404, 410):
                raise MessageNotFound(message_id) from exc
            raise TransientUpstreamError(f"Gmail get {message_id} failed: {exc}") from exc

        payload = msg.get("payload") or {}
        headers = headers_from_payload(payload)
        return Email(
            message_id=message_id,
            sender=headers.get("from", ""),
            subject=headers.get("subject", ""),
            body=extract_body_from_payload(payload),
            thread_id=str(msg.get("threadId") or ""),
            rfc_message_id=headers.get("message-id", ""),
            label_ids=[str(x) for x in (msg.get("labelIds") or [])],
        )

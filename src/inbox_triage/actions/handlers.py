from __future__ import annotations

import re
from abc import ABC, abstractmethod
from email.utils import parseaddr

from loguru import logger

from inbox_triage.actions.core import Action
from inbox_triage.gmail.client import Mailbox
from inbox_triage.gmail.labels import LabelBook
from inbox_triage.models import Category, Email

_REPLY_PREFIX = re.compile(r"^(re|aw|sv)\s*:\s*(.*)$", flags=re.IGNORECASE)


def as_reply_subject(subject: str) -> str:
    cleaned = subject.strip()
    # Collapse stacked "Re: AW: ..." prefixes into a single "Re:".
    while True:
        match = _REPLY_PREFIX.match(cleaned)
        if not match:
            break
        cleaned = match.group(2).strip()
    return f"Re: {cleaned}" if cleaned else "Re:"


def reply_recipient(sender: str) -> str:
    display_name, address = parseaddr(sender)
    display_name = display_name.strip()
    address = address.strip()
    if display_name and address:
        return f"{display_name} <{address}>"
    return address or sender.strip()


def greeting_name(display_name: str, sender: str) -> str:
    name = display_name.strip()
    if not name:
        name = parseaddr(sender)[0].strip().strip('"')
    return name or "there"


def compose_reply_body(reply_text: str, display_name: str, sender: str) -> str:
    body = reply_text.strip()
    name = greeting_name(display_name, sender)
    # The model usually greets already; only add a salutation when it did not.
    if name.lower() not in body[:80].lower():
        body = f"Hi {name},\n\n{body}"
    return body


def apply_label(mailbox: Mailbox, labels: LabelBook, message_id: str, label: Category) -> None:
    mailbox.modify_labels(message_id, add=[labels.id_for(label)])


def create_reply_draft(mailbox: Mailbox, email: Email, reply_text: str, display_name: str = "") -> None:
    recipient = reply_recipient(email.sender)
    if not recipient:
        raise ValueError(f"No sender address to reply to for {email.message_id}")
    mailbox.create_draft(
        recipient,
        as_reply_subject(email.subject),
        compose_reply_body(reply_text, display_name, email.sender),
        thread_id=email.thread_id,
        in_reply_to=email.rfc_message_id,
    )


class ActionHandler(ABC):
    @abstractmethod
    def handle(self, mailbox: Mailbox, action: Action) -> None:
        """Execute one action."""
        ...


class AddLabelHandler(ActionHandler):
    def __init__(self, labels: LabelBook):
        self._labels = labels

    def handle(self, mailbox: Mailbox, action: Action) -> None:
        if action.label is None:
            raise ValueError("add_label requires a label")
        apply_label(mailbox, self._labels, action.message_id, action.label)
        logger.info(f"[label] message_id={action.message_id} label={self._labels.name_for(action.label)}")


class CreateDraftHandler(ActionHandler):
    def handle(self, mailbox: Mailbox, action: Action) -> None:
        if not action.reply.strip():
            raise ValueError("create_draft requires reply text")
        create_reply_draft(mailbox, action.email, action.reply, action.display_name)
        logger.info(f"[draft] message_id={action.message_id} to={reply_recipient(action.email.sender)}")

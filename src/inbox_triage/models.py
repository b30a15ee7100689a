from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List


class Category(str, Enum):
    BUSINESS = "business"
    PRIVATE = "private"
    PAYMENTS = "payments"
    ACTION_NEEDED = "action_needed"
    JUNK = "junk"
    NEWSLETTER = "newsletter"

    @property
    def needs_reply(self) -> bool:
        return self is Category.ACTION_NEEDED


@dataclass(frozen=True)
class Email:
    message_id: str
    sender: str = ""
    subject: str = ""
    body: str = ""
    thread_id: str = ""
    # RFC 822 Message-ID header, used to thread reply drafts.
    rfc_message_id: str = ""
    label_ids: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.body.strip()


@dataclass(frozen=True)
class Classification:
    category: Category
    label: Category
    reply: str = ""
    display_name: str = ""

    @property
    def needs_reply(self) -> bool:
        return self.category.needs_reply and bool(self.reply.strip())


@dataclass(frozen=True)
class ProcessedRecord:
    message_id: str
    sender: str
    subject: str
    category: str
    label: str
    draft: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_result(cls, email: Email, result: Classification) -> "ProcessedRecord":
        return cls(
            message_id=email.message_id,
            sender=email.sender,
            subject=email.subject,
            category=result.category.value,
            label=result.label.value,
            draft=result.reply if result.needs_reply else "",
        )

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from inbox_triage.models import Category, Email

ActionType = Literal["add_label", "create_draft"]


@dataclass(frozen=True)
class Action:
    type: ActionType
    email: Email
    label: Optional[Category] = None
    reply: str = ""
    display_name: str = ""
    reason: str = ""

    @property
    def message_id(self) -> str:
        return self.email.message_id


@dataclass(frozen=True)
class ActionFailure:
    action: Action
    error: str

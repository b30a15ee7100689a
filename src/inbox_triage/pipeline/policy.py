from __future__ import annotations

from typing import List

from inbox_triage.actions.core import Action
from inbox_triage.models import Classification, Email


def actions_from_classification(email: Email, result: Classification) -> List[Action]:
    # Policy layer decides side effects based on the classifier output.
    actions: List[Action] = [
        Action(
            type="add_label",
            email=email,
            label=result.label,
            reason=result.category.value,
        )
    ]

    if result.needs_reply:
        actions.append(
            Action(
                type="create_draft",
                email=email,
                reply=result.reply,
                display_name=result.display_name,
                reason=result.category.value,
            )
        )

    return actions

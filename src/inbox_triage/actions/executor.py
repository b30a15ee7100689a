from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from loguru import logger

from inbox_triage.actions.core import Action, ActionFailure, ActionType
from inbox_triage.actions.handlers import ActionHandler, AddLabelHandler, CreateDraftHandler
from inbox_triage.gmail.client import Mailbox
from inbox_triage.gmail.labels import LabelBook


@dataclass
class ActionExecutor:
    """Runs planned side effects independently of each other.

    Label and draft are not transactional: one failing never prevents the
    other from being attempted, and failures are returned rather than raised
    unless ``continue_on_error`` is off.
    """

    handlers: Dict[ActionType, ActionHandler]
    dry_run: bool = False
    continue_on_error: bool = True

    def run(self, mailbox: Mailbox, actions: List[Action]) -> List[ActionFailure]:
        failures: List[ActionFailure] = []
        for action in actions:
            handler = self.handlers.get(action.type)
            if not handler:
                logger.warning(f"No handler registered for action type: {action.type}")
                failures.append(ActionFailure(action, "no handler"))
                continue

            if self.dry_run:
                logger.info(
                    f"[dry-run] would run type={action.type} "
                    f"message_id={action.message_id} reason={action.reason}"
                )
                continue

            try:
                handler.handle(mailbox, action)
            except Exception as e:
                logger.error(
                    f"Action failed type={action.type} message_id={action.message_id} "
                    f"reason={action.reason} err={e}"
                )
                if not self.continue_on_error:
                    raise
                failures.append(ActionFailure(action, f"{type(e).__name__}: {e}"))
        return failures


def default_executor(labels: LabelBook, *, dry_run: bool = False) -> ActionExecutor:
    return ActionExecutor(
        handlers={
            "add_label": AddLabelHandler(labels),
            "create_draft": CreateDraftHandler(),
        },
        dry_run=dry_run,
    )

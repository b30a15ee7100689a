from __future__ import annotations

from typing import Dict, Mapping, Optional

from googleapiclient.errors import HttpError
from loguru import logger

from inbox_triage.gmail.client import Mailbox, http_status
from inbox_triage.models import Category

# Gmail label name per category.
DEFAULT_LABEL_NAMES: Dict[Category, str] = {
    Category.NEWSLETTER: "Newsletter",
    Category.PRIVATE: "Private",
    Category.BUSINESS: "Business",
    Category.PAYMENTS: "Payments",
    Category.ACTION_NEEDED: "Action Needed",
    Category.JUNK: "Junk",
}


class LabelBook:
    """Category -> Gmail label id lookup, shared by every worker.

    Built once at startup; after ``bootstrap`` it is read-only.
    """

    def __init__(
        self,
        names: Mapping[Category, str] = DEFAULT_LABEL_NAMES,
        ids: Optional[Mapping[Category, str]] = None,
    ):
        missing = [c.value for c in Category if not names.get(c)]
        if missing:
            raise ValueError(f"No Gmail label name configured for: {', '.join(missing)}")
        self._names: Dict[Category, str] = dict(names)
        self._ids: Dict[Category, str] = dict(ids or {})

    def name_for(self, category: Category) -> str:
        return self._names[category]

    def id_for(self, category: Category) -> str:
        label_id = self._ids.get(category)
        if not label_id:
            raise KeyError(f"Label ID not found for {self._names[category]!r}")
        return label_id

    def bootstrap(self, mailbox: Mailbox) -> None:
        """Resolve every category label, creating the ones Gmail lacks."""
        existing = {label["name"]: label["id"] for label in mailbox.list_labels()}
        conflicted = False

        for category, name in self._names.items():
            if name in existing:
                self._ids[category] = existing[name]
                continue
            try:
                created = mailbox.create_label(name)
            except HttpError as exc:
                # Gmail says the label exists somewhere; trust it and re-read below.
                if http_status(exc) == 409 or "exists or conflicts" in str(exc):
                    logger.info(f"Label {name!r} already exists (409 conflict), continuing")
                    conflicted = True
                    continue
                raise
            self._ids[category] = created["id"]
            logger.info(f"Created Gmail label {name!r} ({created['id']})")

        if conflicted:
            refreshed = {label["name"]: label["id"] for label in mailbox.list_labels()}
            for category, name in self._names.items():
                if category not in self._ids and name in refreshed:
                    self._ids[category] = refreshed[name]

        unresolved = [self._names[c] for c in Category if c not in self._ids]
        if unresolved:
            logger.warning(f"Labels without an ID after bootstrap: {unresolved}")

from __future__ import annotations

import base64
import threading
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from loguru import logger


# Labeling needs modify, label bootstrap needs labels, drafts need compose.
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.labels",
    "https://www.googleapis.com/auth/gmail.compose",
]


class Mailbox(Protocol):
    """The subset of Gmail operations the pipeline depends on."""

    def get_message(self, message_id: str, fmt: str = "full") -> Dict[str, Any]: ...
    def modify_labels(
        self, message_id: str, add: Iterable[str] = (), remove: Iterable[str] = ()
    ) -> Dict[str, Any]: ...
    def create_draft(
        self, recipient: str, subject: str, body: str, *, thread_id: str = "", in_reply_to: str = ""
    ) -> Dict[str, Any]: ...
    def list_messages(
        self, query: str = "", max_results: int = 10, label_ids: Optional[Iterable[str]] = None
    ) -> List[str]: ...
    def list_history(
        self,
        start_history_id: int,
        *,
        history_types: Iterable[str] = ("messageAdded",),
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]: ...
    def list_labels(self) -> List[Dict[str, Any]]: ...
    def create_label(self, name: str) -> Dict[str, Any]: ...


@dataclass(frozen=True)
class GmailClientConfig:
    # Path to OAuth client credentials downloaded from Google Cloud Console.
    credentials_path: Path
    # Token cache will be created here after first login.
    token_path: Path
    # Gmail userId, "me" refers to the authenticated user.
    user_id: str = "me"


class GmailClient:
    """Thin wrapper around the Gmail v1 API resource.

    Methods return the raw API dicts and let ``HttpError`` propagate; callers
    in the pipeline decide what a failure means for them.
    """

    def __init__(self, cfg: GmailClientConfig):
        self._cfg = cfg
        self._creds: Optional[Credentials] = None
        # httplib2 transports are not thread safe, so every worker thread gets its own service.
        self._local = threading.local()

    def connect(self) -> None:
        """Create an authenticated Gmail API service client."""
        creds = None

        if self._cfg.token_path.exists():
            creds = Credentials.from_authorized_user_file(str(self._cfg.token_path), SCOPES)

        # If there are no (valid) credentials available, let the user log in.
        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                flow = InstalledAppFlow.from_client_secrets_file(
                    str(self._cfg.credentials_path),
                    SCOPES,
                )
                creds = flow.run_local_server(port=0)

            # Save the credentials for the next run.
            self._cfg.token_path.parent.mkdir(parents=True, exist_ok=True)
            self._cfg.token_path.write_text(creds.to_json(), encoding="utf-8")

        self._creds = creds
        self._local = threading.local()

    @property
    def service(self):
        if self._creds is None:
            raise RuntimeError("GmailClient is not connected. Call connect() first.")
        service = getattr(self._local, "service", None)
        if service is None:
            service = build("gmail", "v1", credentials=self._creds, cache_discovery=False)
            self._local.service = service
        return service

    @property
    def user_id(self) -> str:
        return self._cfg.user_id

    def list_messages(
        self,
        query: str = "",
        max_results: int = 10,
        label_ids: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """
        List message IDs matching a Gmail search query and/or label filter.
        Example query: 'newer_than:7d in:inbox -category:promotions'
        """
        params: Dict[str, Any] = {"userId": self.user_id, "maxResults": max_results}
        if query:
            params["q"] = query
        if label_ids:
            params["labelIds"] = list(label_ids)
        resp = self.service.users().messages().list(**params).execute()
        msgs = resp.get("messages", [])
        return [m["id"] for m in msgs]

    def get_message(self, message_id: str, fmt: str = "full") -> Dict[str, Any]:
        """
        Fetch a full message resource.
        fmt: 'full' | 'metadata' | 'minimal' | 'raw'
        """
        return (
            self.service.users()
            .messages()
            .get(userId=self.user_id, id=message_id, format=fmt)
            .execute()
        )

    def modify_labels(
        self,
        message_id: str,
        add: Iterable[str] = (),
        remove: Iterable[str] = (),
    ) -> Dict[str, Any]:
        body = {"addLabelIds": list(add), "removeLabelIds": list(remove)}
        return (
            self.service.users()
            .messages()
            .modify(userId=self.user_id, id=message_id, body=body)
            .execute()
        )

    def create_draft(
        self,
        recipient: str,
        subject: str,
        body: str,
        *,
        thread_id: str = "",
        in_reply_to: str = "",
    ) -> Dict[str, Any]:
        msg = EmailMessage()
        msg["To"] = recipient
        msg["Subject"] = subject
        if in_reply_to:
            msg["In-Reply-To"] = in_reply_to
            msg["References"] = in_reply_to
        msg.set_content(body)

        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
        message: Dict[str, Any] = {"raw": raw}
        if thread_id:
            message["threadId"] = thread_id
        return (
            self.service.users()
            .drafts()
            .create(userId=self.user_id, body={"message": message})
            .execute()
        )

    def list_history(
        self,
        start_history_id: int,
        *,
        history_types: Iterable[str] = ("messageAdded",),
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "userId": self.user_id,
            "startHistoryId": str(start_history_id),
            "historyTypes": list(history_types),
        }
        if page_token:
            params["pageToken"] = page_token
        return self.service.users().history().list(**params).execute()

    def watch(self, topic_name: str, label_ids: Iterable[str] = ("INBOX",)) -> Dict[str, Any]:
        body = {"topicName": topic_name, "labelIds": list(label_ids)}
        resp = self.service.users().watch(userId=self.user_id, body=body).execute()
        logger.info(f"Gmail watch enabled on {topic_name}, expiration={resp.get('expiration')}")
        return resp

    def list_labels(self) -> List[Dict[str, Any]]:
        resp = self.service.users().labels().list(userId=self.user_id).execute()
        return resp.get("labels", [])

    def create_label(self, name: str) -> Dict[str, Any]:
        body = {
            "name": name,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        return self.service.users().labels().create(userId=self.user_id, body=body).execute()


def http_status(exc: HttpError) -> Optional[int]:
    status = getattr(exc, "status_code", None) or getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None

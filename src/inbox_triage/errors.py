from __future__ import annotations


class TriageError(Exception):
    """Base class for pipeline errors."""


class ConfigError(TriageError):
    """Required configuration or credentials are missing."""


class TransientUpstreamError(TriageError):
    """Gmail, OpenAI or the store failed in a way that may succeed later."""


class StoreError(TransientUpstreamError):
    pass


class ClassificationError(TransientUpstreamError):
    pass


class MessageNotFound(TriageError):
    """The message disappeared between notification and fetch."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class MalformedNotification(TriageError):
    pass


class PoolClosed(TriageError):
    """The worker pool no longer accepts jobs."""

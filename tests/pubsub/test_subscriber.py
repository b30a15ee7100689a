from __future__ import annotations

import json
from dataclasses import replace
from typing import Any, Callable, List, Optional

import pytest

from inbox_triage.app.run import build_runtime
from inbox_triage.config.settings import Settings
from inbox_triage.gmail.labels import LabelBook
from inbox_triage.pipeline.history import HistoryResolver
from inbox_triage.pipeline.worker_pool import Job
from inbox_triage.pubsub.listener import NotificationListener
from inbox_triage.pubsub.subscriber import PullSubscriber
from tests.fakes import FakeClassifier, FakeMailbox, added


class FakeMessage:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.acked = False
        self.nacked = False

    def ack(self) -> None:
        self.acked = True

    def nack(self) -> None:
        self.nacked = True


class FakeStreamingPull:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def result(self, timeout: Optional[float] = None) -> None:
        return None


class FakeSubscriberClient:
    def __init__(self) -> None:
        self.subscriptions: List[str] = []
        self.callback: Optional[Callable[[Any], None]] = None
        self.future = FakeStreamingPull()

    def subscribe(self, subscription: str, callback: Callable[[Any], None], **kwargs: Any) -> FakeStreamingPull:
        self.subscriptions.append(subscription)
        self.callback = callback
        return self.future

    def deliver(self, data: bytes) -> FakeMessage:
        assert self.callback is not None
        message = FakeMessage(data)
        self.callback(message)
        return message


class RecordingPool:
    def __init__(self) -> None:
        self.jobs: List[Job] = []

    def submit(self, job: Job) -> None:
        self.jobs.append(job)


def _notification(history_id: int) -> bytes:
    return json.dumps({"emailAddress": "me@example.com", "historyId": history_id}).encode("utf-8")


@pytest.fixture
def client() -> FakeSubscriberClient:
    return FakeSubscriberClient()


@pytest.fixture
def subscriber(mailbox: FakeMailbox, client: FakeSubscriberClient):
    mailbox.history_responses = [{"history": [added({"id": "m1", "labelIds": ["INBOX"]})]}]
    pool = RecordingPool()
    listener = NotificationListener(HistoryResolver(mailbox, attempts=1), pool)
    sub = PullSubscriber(listener, "projects/demo/subscriptions/gmail-sub", client=client)
    sub.start()
    return sub, listener, pool


def test_pulled_notification_is_dispatched_and_acked(subscriber, client: FakeSubscriberClient) -> None:
    _, _, pool = subscriber

    message = client.deliver(_notification(42))

    assert client.subscriptions == ["projects/demo/subscriptions/gmail-sub"]
    assert message.acked
    assert [job.message_id for job in pool.jobs] == ["m1"]


def test_duplicate_and_malformed_messages_are_acked(subscriber, client: FakeSubscriberClient) -> None:
    _, _, pool = subscriber
    client.deliver(_notification(42))

    duplicate = client.deliver(_notification(42))
    garbage = client.deliver(b"not json")

    assert duplicate.acked
    assert garbage.acked
    assert len(pool.jobs) == 1


def test_stopped_listener_nacks(subscriber, client: FakeSubscriberClient) -> None:
    sub, listener, pool = subscriber
    listener.stop()

    message = client.deliver(_notification(42))

    assert message.nacked
    assert not message.acked
    assert pool.jobs == []
    assert sub.snapshot()["messages"] == {"stopped": 1}


def test_stop_cancels_streaming_pull(subscriber, client: FakeSubscriberClient) -> None:
    sub, _, _ = subscriber

    sub.stop(timeout=1)

    assert client.future.cancelled
    assert sub.snapshot()["running"] is False


def test_start_twice_raises(subscriber) -> None:
    sub, _, _ = subscriber

    with pytest.raises(RuntimeError):
        sub.start()


def test_runtime_uses_pull_when_subscription_is_configured(
    settings: Settings, mailbox: FakeMailbox, labels: LabelBook, client: FakeSubscriberClient
) -> None:
    mailbox.add_message("m1", body="Hello")
    mailbox.history_responses = [{"history": [added({"id": "m1", "labelIds": ["INBOX"]})]}]
    runtime = build_runtime(
        replace(settings, subscription_id="gmail-sub"),
        mailbox=mailbox,
        classifier=FakeClassifier(),
        labels=labels,
        subscriber_client=client,
    )
    runtime.start()

    message = client.deliver(_notification(7))
    assert runtime.shutdown(drain=True, timeout=5)

    assert client.subscriptions == ["projects/demo-project/subscriptions/gmail-sub"]
    assert message.acked
    assert client.future.cancelled
    assert runtime.listener.stopped
    assert runtime.store.already_committed("m1")

from __future__ import annotations

import threading
import time

import pytest

from inbox_triage.errors import PoolClosed
from inbox_triage.pipeline.orchestrator import EmailProcessor
from inbox_triage.pipeline.worker_pool import Job, WorkerPool
from inbox_triage.storage.store import IdempotencyStore
from tests.fakes import FakeClassifier, FakeMailbox


def test_duplicate_jobs_across_workers_apply_effects_once(
    processor: EmailProcessor,
    mailbox: FakeMailbox,
    classifier: FakeClassifier,
    store: IdempotencyStore,
) -> None:
    mailbox.add_message("m1", body="Hello")
    pool = WorkerPool(processor, workers=5, capacity=20, throttle_seconds=0.0)
    pool.start()

    for _ in range(10):
        pool.submit(Job(message_id="m1"))
    assert pool.shutdown(drain=True, timeout=5)

    assert len(classifier.calls) == 1
    assert len(mailbox.label_calls) == 1
    assert store.count() == 1
    stats = pool.stats()
    assert stats["committed"] == 1
    assert stats["duplicate"] == 9
    assert stats["pending"] == 0


def test_drain_processes_every_queued_job(
    processor: EmailProcessor, mailbox: FakeMailbox, store: IdempotencyStore
) -> None:
    for i in range(6):
        mailbox.add_message(f"m{i}", body=f"Body {i}")
    pool = WorkerPool(processor, workers=2, capacity=10, throttle_seconds=0.0)
    pool.start()

    for i in range(6):
        pool.submit(Job(message_id=f"m{i}"))
    assert pool.shutdown(drain=True, timeout=5)

    assert store.count() == 6


def test_submit_blocks_while_queue_is_full(
    processor: EmailProcessor, mailbox: FakeMailbox, classifier: FakeClassifier
) -> None:
    for i in range(3):
        mailbox.add_message(f"m{i}", body="Hello")
    classifier.gate = threading.Event()
    pool = WorkerPool(processor, workers=1, capacity=1, throttle_seconds=0.0)
    pool.start()

    pool.submit(Job(message_id="m0"))
    assert classifier.entered.wait(2)
    pool.submit(Job(message_id="m1"))

    blocked = threading.Thread(target=pool.submit, args=(Job(message_id="m2"),))
    blocked.start()
    blocked.join(0.3)
    assert blocked.is_alive()

    classifier.gate.set()
    blocked.join(2)
    assert not blocked.is_alive()
    assert pool.shutdown(drain=True, timeout=5)
    assert pool.stats()["committed"] == 3


def test_cancel_abandons_queued_jobs(
    processor: EmailProcessor,
    mailbox: FakeMailbox,
    classifier: FakeClassifier,
    store: IdempotencyStore,
) -> None:
    for i in range(3):
        mailbox.add_message(f"m{i}", body="Hello")
    classifier.gate = threading.Event()
    pool = WorkerPool(processor, workers=1, capacity=5, throttle_seconds=0.0)
    pool.start()

    pool.submit(Job(message_id="m0"))
    assert classifier.entered.wait(2)
    pool.submit(Job(message_id="m1"))
    pool.submit(Job(message_id="m2"))

    # The in-flight classifier call is still blocked.
    assert pool.shutdown(drain=False, timeout=0.1) is False
    classifier.gate.set()
    assert pool.join(2)

    assert len(classifier.calls) == 1
    assert store.already_committed("m0")
    assert not store.already_committed("m1")
    assert not store.already_committed("m2")


def test_submit_after_shutdown_raises(processor: EmailProcessor) -> None:
    pool = WorkerPool(processor, workers=1, throttle_seconds=0.0)
    pool.start()
    pool.shutdown(drain=True, timeout=2)

    with pytest.raises(PoolClosed):
        pool.submit(Job(message_id="m1"))


def test_submit_before_start_raises(processor: EmailProcessor) -> None:
    pool = WorkerPool(processor, workers=1)

    with pytest.raises(PoolClosed):
        pool.submit(Job(message_id="m1"))


def test_start_twice_raises(processor: EmailProcessor) -> None:
    pool = WorkerPool(processor, workers=1, throttle_seconds=0.0)
    pool.start()
    try:
        with pytest.raises(RuntimeError):
            pool.start()
    finally:
        pool.shutdown(drain=True, timeout=2)


def test_worker_throttles_between_jobs(processor: EmailProcessor, mailbox: FakeMailbox) -> None:
    for i in range(3):
        mailbox.add_message(f"m{i}", body="Hello")
    pool = WorkerPool(processor, workers=1, capacity=5, throttle_seconds=0.15)
    pool.start()

    started = time.monotonic()
    for i in range(3):
        pool.submit(Job(message_id=f"m{i}"))
    assert pool.shutdown(drain=True, timeout=5)

    # Three jobs on one worker sleep at least twice before the sentinel.
    assert time.monotonic() - started >= 0.3
    assert pool.stats()["committed"] == 3


def test_unexpected_error_does_not_kill_worker(
    processor: EmailProcessor,
    mailbox: FakeMailbox,
    classifier: FakeClassifier,
) -> None:
    mailbox.add_message("boom", body="Hello")
    mailbox.add_message("ok", body="Hello")

    def decide(subject: str, body: str):
        if len(classifier.calls) == 1:
            raise RuntimeError("unexpected")
        return classifier.result

    classifier.decide = decide
    pool = WorkerPool(processor, workers=1, capacity=5, throttle_seconds=0.0)
    pool.start()
    pool.submit(Job(message_id="boom"))
    pool.submit(Job(message_id="ok"))
    assert pool.shutdown(drain=True, timeout=5)

    stats = pool.stats()
    assert stats["failed"] == 1
    assert stats["committed"] == 1


def test_blocked_submit_is_refused_once_shutdown_starts(
    processor: EmailProcessor,
    mailbox: FakeMailbox,
    classifier: FakeClassifier,
    store: IdempotencyStore,
) -> None:
    for i in range(3):
        mailbox.add_message(f"m{i}", body="Hello")
    classifier.gate = threading.Event()
    pool = WorkerPool(processor, workers=1, capacity=1, throttle_seconds=0.0)
    pool.start()
    pool.submit(Job(message_id="m0"))
    assert classifier.entered.wait(2)
    pool.submit(Job(message_id="m1"))

    errors = []

    def late_submit() -> None:
        try:
            pool.submit(Job(message_id="m2"))
        except PoolClosed as exc:
            errors.append(exc)

    submitter = threading.Thread(target=late_submit)
    submitter.start()
    submitter.join(0.3)
    assert submitter.is_alive()

    closer = threading.Thread(target=pool.shutdown, kwargs={"drain": True, "timeout": 5})
    closer.start()
    submitter.join(2)
    assert not submitter.is_alive()
    assert len(errors) == 1

    classifier.gate.set()
    closer.join(5)
    assert pool.join(2)
    assert pool.pending() == 0
    assert store.already_committed("m1")
    assert not store.already_committed("m2")


def test_drain_timeout_bounds_sentinel_phase(
    processor: EmailProcessor, mailbox: FakeMailbox, classifier: FakeClassifier
) -> None:
    for i in range(2):
        mailbox.add_message(f"m{i}", body="Hello")
    classifier.gate = threading.Event()
    cancel = threading.Event()
    pool = WorkerPool(processor, workers=1, capacity=1, throttle_seconds=0.0, cancel=cancel)
    pool.start()
    pool.submit(Job(message_id="m0"))
    assert classifier.entered.wait(2)
    pool.submit(Job(message_id="m1"))

    started = time.monotonic()
    # The queue stays full, so no stop sentinel fits before the deadline.
    assert pool.shutdown(drain=True, timeout=0.3) is False
    assert time.monotonic() - started < 2

    cancel.set()
    classifier.gate.set()
    assert pool.join(2)

from __future__ import annotations

from pathlib import Path

import pytest

from inbox_triage.actions.executor import default_executor
from inbox_triage.config.settings import Settings
from inbox_triage.gmail.labels import LabelBook
from inbox_triage.models import Category
from inbox_triage.pipeline.fetcher import MessageFetcher
from inbox_triage.pipeline.orchestrator import EmailProcessor
from inbox_triage.storage.store import IdempotencyStore
from tests.fakes import FakeClassifier, FakeMailbox


@pytest.fixture
def store(tmp_path: Path) -> IdempotencyStore:
    return IdempotencyStore(tmp_path / "mailai.db")


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def labels() -> LabelBook:
    return LabelBook(ids={c: f"Label_{c.value}" for c in Category})


@pytest.fixture
def processor(
    store: IdempotencyStore,
    mailbox: FakeMailbox,
    classifier: FakeClassifier,
    labels: LabelBook,
) -> EmailProcessor:
    return EmailProcessor(
        store=store,
        fetcher=MessageFetcher(mailbox),
        classifier=classifier,
        executor=default_executor(labels),
        mailbox=mailbox,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        openai_api_key="sk-test",
        google_cloud_project="demo-project",
        secrets_dir=tmp_path / "secrets",
        database_path=tmp_path / "mailai.db",
        pubsub_verification_token="push-secret",
        num_workers=2,
        throttle_seconds=0.0,
        history_attempts=1,
        history_backoff_seconds=0.0,
    )

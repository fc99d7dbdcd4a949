"""Shared fixtures."""

import pytest

from pair_chat.api.app import create_app
from pair_chat.config import Settings
from pair_chat.repositories.memory import InMemoryChatStore
from pair_chat.services.deletion import DeletionService
from pair_chat.services.messages import MessageService
from pair_chat.services.notifier import InMemoryNotifier
from pair_chat.services.queries import QueryService
from pair_chat.services.seen import SeenTracker


@pytest.fixture
def store():
    return InMemoryChatStore(max_attempts=25)


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def message_service(store, notifier):
    return MessageService(store, notifier)


@pytest.fixture
def query_service(store):
    return QueryService(store)


@pytest.fixture
def seen_tracker(store, notifier):
    return SeenTracker(store, notifier)


@pytest.fixture
def deletion_service(store, notifier):
    return DeletionService(store, notifier)


@pytest.fixture
def app(store, notifier):
    settings = Settings(rate_limit_enabled=False)
    return create_app(settings=settings, store=store, notifier=notifier)

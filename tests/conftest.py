import asyncio
from unittest.mock import MagicMock

import pytest

from bustracker.application import AuthService, DataAccessLayer, SessionManager
from bustracker.domain.models import Sentiment, SentimentResult
from bustracker.infrastructure.config import (
    CacheSettings,
    LLMSettings,
    RemoteStoreSettings,
    Settings,
)
from bustracker.infrastructure.llm import InferenceService
from bustracker.infrastructure.persistence import init_with_seed_data
from bustracker.infrastructure.remote import InMemoryDocumentStore


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        llm=LLMSettings(api_key=""),
        remote=RemoteStoreSettings(project_id=""),
        cache=CacheSettings(db_file=tmp_path / "cache.db"),
        simulated_latency_ms=0,
        review_encoding="delimited",
        max_login_attempts=3,
        login_lockout_seconds=300,
    )


@pytest.fixture
def cache(settings):
    return init_with_seed_data(settings.cache.db_file)


@pytest.fixture
def remote():
    return InMemoryDocumentStore()


@pytest.fixture
def inference():
    stub = MagicMock(spec=InferenceService)
    stub.analyze_sentiment.return_value = SentimentResult(Sentiment.NEGATIVE, 0.2)
    stub.classify_sentiment.return_value = SentimentResult(Sentiment.NEGATIVE, 0.2)
    stub.predict_delay.return_value = "Heavy traffic on Nana Sita Street."
    stub.chat.return_value = "The T1 leaves Hatfield at 08:05."
    return stub


@pytest.fixture
def sessions(cache):
    return SessionManager(cache)


@pytest.fixture
def session(sessions):
    return sessions.open()


@pytest.fixture
def dal(cache, remote, inference, sessions, settings):
    return DataAccessLayer(cache, remote, inference, sessions, settings)


@pytest.fixture
def auth(cache, dal, settings):
    service = AuthService(cache, dal, settings)
    service.seed_credentials()
    return service

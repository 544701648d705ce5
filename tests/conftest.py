"""
Pytest configuration and shared fixtures for relationship map tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that run full extraction over large message sets
- integration: Tests requiring running server or external APIs
- requires_ollama: Tests requiring Ollama LLM to be running
- requires_server: Tests requiring API server to be running

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests

The oracle is always faked; no test calls a real LLM.
"""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from api.services.messages import Message
from config.extraction_config import ExtractionConfig

USER_EMAIL = "me@mycompany.com"

# Wednesday; the current window starts Monday 2026-03-02
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)
CURRENT_WEEK_START = datetime(2026, 3, 2, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (large extraction runs)")
    config.addinivalue_line("markers", "integration: Integration tests (server required)")
    config.addinivalue_line("markers", "requires_ollama: Requires Ollama running")
    config.addinivalue_line("markers", "requires_server: Requires API server running")


@pytest.fixture(scope="session")
def ollama_available():
    """Check if Ollama is available for tests."""
    try:
        response = httpx.get("http://localhost:11434", timeout=2.0)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


@pytest.fixture(scope="session")
def server_available():
    """Check if API server is available for tests."""
    try:
        response = httpx.get("http://localhost:8000/health", timeout=2.0)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


@pytest.fixture
def now():
    """Fixed reference time for a run."""
    return NOW


@pytest.fixture
def user_email():
    return USER_EMAIL


@pytest.fixture
def config():
    """Extraction config with no pause between batches."""
    return ExtractionConfig(batch_pause_seconds=0)


@pytest.fixture
def make_message():
    """Factory for Message records between the user and one contact."""
    counter = {"n": 0}

    def _make(
        contact: str = "alice@acme.com",
        timestamp: datetime = NOW,
        from_user: bool = False,
        thread_id: str = None,
        subject: str = "Project update",
        body: str = "",
        message_id: str = None,
        cc: list = None,
    ) -> Message:
        counter["n"] += 1
        message_id = message_id or f"msg-{counter['n']}"
        return Message(
            id=message_id,
            thread_id=thread_id or f"thread-{message_id}",
            sender=USER_EMAIL if from_user else contact,
            to=[contact] if from_user else [USER_EMAIL],
            cc=cc or [],
            subject=subject,
            body=body,
            timestamp=timestamp,
            is_from_user=from_user,
        )

    return _make


@pytest.fixture
def weekly_messages(make_message):
    """
    Factory for a contact's history given per-window message counts.

    The last count lands in the current window; messages are placed on the
    Tuesday of each window, an hour apart, alternating direction.
    """
    def _build(counts: list[int], contact: str = "alice@acme.com") -> list[Message]:
        messages = []
        weeks = len(counts)
        for week, count in enumerate(counts):
            window_start = CURRENT_WEEK_START - timedelta(weeks=weeks - 1 - week)
            for i in range(count):
                messages.append(make_message(
                    contact=contact,
                    timestamp=window_start + timedelta(days=1, hours=i),
                    from_user=i % 2 == 1,
                    thread_id=f"{contact}-week-{week}",
                ))
        return messages

    return _build


def oracle_response(*commitments: dict) -> str:
    """Oracle JSON payload listing the given commitments."""
    return json.dumps({"commitments": list(commitments)})


@pytest.fixture
def fake_oracle():
    """Oracle whose generate() returns no commitments unless reconfigured."""
    oracle = MagicMock()
    oracle.generate = AsyncMock(return_value=oracle_response())
    oracle.aclose = AsyncMock()
    return oracle

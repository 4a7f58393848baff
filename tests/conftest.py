"""Shared fixtures for journal insights tests"""

import json
from datetime import datetime, timedelta

import pytest
import pytz

from journal_insights.cache import CachedInsightRecord, CacheKey, InMemoryInsightStore
from journal_insights.cost import TokenUsage
from journal_insights.insight_client import GenerationResult
from journal_insights.models import InsightResult, Theme, SourceEntry
from journal_insights.orchestrator import InsightOrchestrator

NOW = datetime(2025, 10, 23, 12, 0, tzinfo=pytz.utc)
USER_ID = "5f0c8a7e-1111-2222-3333-444455556666"


def make_payload(theme_count=4, **overrides):
    """Build an LLM insight payload with the given number of themes"""
    payload = {
        "summary": "You've been balancing work pressure with small moments of rest.",
        "description": "Across 'Sprint review' and 'Long walk', you keep returning to ...",
        "themes": [
            {
                "name": f"Theme {i}",
                "icon": "📊",
                "explanation": f"Explanation for theme {i}.",
                "frequency": f"{i + 1} times this week",
                "source_entries": [{"date": "2025-10-21", "title": "Sprint review"}],
            }
            for i in range(theme_count)
        ],
    }
    payload.update(overrides)
    return payload


class FakeInsightClient:
    """Records calls and replays queued responses (text or exception)"""

    def __init__(self, *responses, model_id="test-model"):
        self.responses = list(responses) or [json.dumps(make_payload())]
        self.calls = []
        self.model_id = model_id

    def generate(self, entries):
        self.calls.append(list(entries))
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return GenerationResult(
            text=response,
            usage=TokenUsage(input_tokens=600, output_tokens=400),
            model_id=self.model_id,
            generation_time_ms=1200,
        )


class FailingStore:
    """Store whose read and/or write raise the given error"""

    def __init__(self, read_error=None, write_error=None):
        self.read_error = read_error
        self.write_error = write_error
        self.written = []

    def read(self, key):
        if self.read_error:
            raise self.read_error
        return None

    def write(self, record):
        if self.write_error:
            raise self.write_error
        self.written.append(record)
        return True


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def sample_entries():
    """Three raw journal entries as sent by the app"""
    return [
        {
            "date": "2025-10-21T09:15:00Z",
            "title": "Sprint review",
            "content": "Presented the demo. My hands were shaking but it went fine.",
            "word_count": 11,
            "mood": "anxious",
        },
        {
            "date": "2025-10-22T20:30:00Z",
            "title": "Long walk",
            "content": "Walked by the river after dinner and finally felt calm.",
            "word_count": 10,
            "mood": "calm",
        },
        {
            "date": "2025-10-23T07:45:00Z",
            "title": "",
            "content": "Couldn't sleep. Thinking about the reorg again.",
            "word_count": 7,
        },
    ]


@pytest.fixture
def store():
    return InMemoryInsightStore()


@pytest.fixture
def fake_client():
    return FakeInsightClient()


@pytest.fixture
def orchestrator(store, fake_client):
    return InsightOrchestrator(store=store, client=fake_client)


@pytest.fixture
def cached_result():
    return InsightResult(
        summary="Cached summary",
        description="Cached description",
        themes=[
            Theme(
                name=f"Cached theme {i}",
                icon="🌊",
                explanation="Cached explanation.",
                frequency="2 times this week",
                source_entries=[SourceEntry(date="2025-10-20", title="Old entry")],
            )
            for i in range(5)
        ],
        entries_analyzed=2,
        generated_at=NOW - timedelta(hours=30),
    )


@pytest.fixture
def make_record(user_id, cached_result):
    """Factory for a cached record generated `age_hours` before NOW"""

    def _make(age_hours, ttl_hours=168, key=None):
        generated_at = NOW - timedelta(hours=age_hours)
        return CachedInsightRecord(
            key=key or CacheKey.for_request(user_id),
            content=cached_result,
            entries_count=2,
            generated_at=generated_at,
            ttl_hours=ttl_hours,
        )

    return _make

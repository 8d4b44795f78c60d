"""
Shared fixtures: an in-memory store, seeded users and agents, and fake
search / LLM / broadcast collaborators.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from socialcore.models.core import SearchResult
from socialcore.models.orm import Agent, User
from socialcore.services.social_core import SocialCoreService
from socialcore.utils.config import (AppConfig, BedrockLLMConfig, DatabaseConfig, EventBridgeConfig, SchedulerConfig,
                                     SerpApiConfig)
from socialcore.utils.database import Database
from socialcore.utils.timestamp_utils import utc_now

ALICE = 'u-alice'
ALICE_EMAIL = 'alice@example.com'
BOB = 'u-bob'
BOB_EMAIL = 'bob@example.com'
CAROL = 'u-carol'
CAROL_EMAIL = 'carol@example.com'

ALICE_AGENT = 'agent-alice'
BOB_AGENT = 'agent-bob'


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeSearch:
    """Returns whatever ``items`` holds; raises when ``fail`` is set."""

    def __init__(self):
        self.items: List[Dict[str, Any]] = []
        self.fail = False
        self.calls = []

    def run(self, engine: str, query: str, params: Optional[Dict[str, Any]] = None) -> SearchResult:
        self.calls.append({'engine': engine, 'query': query, 'params': dict(params or {})})
        if self.fail:
            raise RuntimeError('search backend unavailable')
        return SearchResult(items=[dict(item) for item in self.items], raw={})


class FakeLLM:
    def __init__(self, reply: str = 'Fresh news, hot off the wire.'):
        self.reply = reply
        self.fail = False
        self.calls = []

    def complete(self, messages, system_prompt=None, max_tokens=None, temperature=None) -> str:
        self.calls.append({'messages': messages, 'system_prompt': system_prompt})
        if self.fail:
            raise RuntimeError('model throttled')
        return self.reply


class FakeBroadcaster:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def publish(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e.get('type') == event_type]


# =============================================================================
# Helpers
# =============================================================================


def iso(dt: datetime) -> str:
    """Naive UTC datetime as the ISO string SerpAPI puts in ``iso_date``."""
    return dt.replace(tzinfo=timezone.utc).isoformat().replace('+00:00', 'Z')


def news_item(title: str, when: Optional[datetime] = None, link: Optional[str] = None) -> Dict[str, Any]:
    item = {
        'title': title,
        'link': link or f"https://news.example.com/{title.lower().replace(' ', '-')}",
        'source': {'name': 'Example Wire'},
    }
    if when is not None:
        item['iso_date'] = iso(when)
    return item


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(enabled=True,
                           tick_interval_seconds=0.01,
                           batch_size=5,
                           max_items_per_post=5,
                           max_jitter_minutes=10,
                           default_cadence_minutes=60,
                           min_cadence_minutes=1)


@pytest.fixture
def app_config(scheduler_config) -> AppConfig:
    return AppConfig(environment='test',
                     log_level='WARNING',
                     database=DatabaseConfig(url='sqlite://', echo=False),
                     bedrock_llm=BedrockLLMConfig(region='us-east-1',
                                                  model_id='test-model',
                                                  max_tokens=100,
                                                  temperature=0.0,
                                                  retry_attempts=2,
                                                  retry_delay=0.0),
                     serpapi=SerpApiConfig(api_key='test-key',
                                           base_url='https://serpapi.test/search.json',
                                           timeout_seconds=5,
                                           num_results=10,
                                           retry_attempts=2,
                                           retry_delay=0.0),
                     eventbridge=EventBridgeConfig(enabled=False,
                                                   region='us-east-1',
                                                   bus_name='test-bus',
                                                   source='socialcore.test'),
                     scheduler=scheduler_config)


@pytest.fixture
def database(app_config):
    db = Database(app_config.database)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def seeded(database):
    """Three users and two agents; Alice's agent still records its creator by email."""
    with database.session() as session:
        session.add_all([
            User(id=ALICE, email=ALICE_EMAIL, name='Alice'),
            User(id=BOB, email=BOB_EMAIL, name='Bob'),
            User(id=CAROL, email=CAROL_EMAIL, name='Carol'),
            Agent(id=ALICE_AGENT, name='Scout', instructions='You are Scout, a curious news hound.',
                  created_by=ALICE_EMAIL),
            Agent(id=BOB_AGENT, name='Ledger', instructions='You are Ledger, a dry financial analyst.',
                  created_by=BOB),
        ])
    return database


@pytest.fixture
def fake_search():
    return FakeSearch()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def service(app_config, seeded, fake_search, fake_llm, fake_broadcaster) -> SocialCoreService:
    return SocialCoreService(app_config,
                             database=seeded,
                             search=fake_search,
                             llm=fake_llm,
                             broadcaster=fake_broadcaster)


@pytest.fixture
def scheduler(service):
    return service.build_scheduler(is_leader=True)


@pytest.fixture
def now() -> datetime:
    # A little ahead of creation times so freshly created monitors are due
    return utc_now() + timedelta(seconds=1)

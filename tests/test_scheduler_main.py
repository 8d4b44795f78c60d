"""
Tests for the scheduler process entry point.
"""

import pytest

from conftest import ALICE, BOB_AGENT, news_item
from socialcore import scheduler_main
from socialcore.models.orm import SeenItem


@pytest.fixture
def entry(service, monkeypatch):
    monkeypatch.setattr(scheduler_main, 'SocialCoreService', lambda app_config: service)
    return scheduler_main


class TestMain:

    def test_once_runs_a_tick(self, entry, service, seeded, fake_search):
        post = service.create_post('user', ALICE, 'Any news on rockets?')
        service.create_monitor(BOB_AGENT, post.id, 'google_news', 'rockets')
        fake_search.items = [news_item('Booster caught')]

        assert entry.main(['--once']) == 0
        assert len(fake_search.calls) == 1
        with seeded.session() as session:
            assert session.query(SeenItem).count() == 1

    def test_migrate_then_once(self, entry, service, seeded):
        assert entry.main(['--migrate', '--once']) == 0
        assert service.resolve_agent_actor(BOB_AGENT)

    def test_health_all_components_up(self, entry, fake_llm, fake_search, monkeypatch):
        monkeypatch.setattr(fake_llm, 'health_check', lambda: True, raising=False)
        monkeypatch.setattr(fake_search, 'health_check', lambda: True, raising=False)
        assert entry.main(['--health']) == 0

    def test_health_reports_failure(self, entry, fake_llm, fake_search, monkeypatch):
        monkeypatch.setattr(fake_llm, 'health_check', lambda: True, raising=False)
        monkeypatch.setattr(fake_search, 'health_check', lambda: False, raising=False)
        assert entry.main(['--health']) == 1

    def test_non_leader_exits(self, entry, monkeypatch):
        monkeypatch.setattr(scheduler_main.config.scheduler, 'enabled', False)
        assert entry.main([]) == 0

    def test_parse_args(self):
        args = scheduler_main.parse_args(['--once'])
        assert args.once is True
        assert args.migrate is False

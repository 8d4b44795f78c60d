"""
Tests for configuration loading, response cleaning, timestamps and health checks.
"""

from datetime import datetime, timezone

import pytest

from socialcore.utils.config import load_config
from socialcore.utils.health_check import get_health_status, get_system_info
from socialcore.utils.json_utils import clean_json_response, clean_text_response, dumps_compact
from socialcore.utils.timestamp_utils import add_minutes, from_millis, to_millis, to_naive_utc


class TestConfig:

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv('DATABASE_URL', 'sqlite:///tmp.db')
        monkeypatch.setenv('MONITOR_SCHEDULER_ENABLED', 'true')
        monkeypatch.setenv('MONITOR_BATCH_SIZE', '9')
        monkeypatch.setenv('SERPAPI_KEY', 'k-123')
        monkeypatch.setenv('EVENTBRIDGE_ENABLED', 'no')

        loaded = load_config()
        assert loaded.database.url == 'sqlite:///tmp.db'
        assert loaded.scheduler.enabled is True
        assert loaded.scheduler.batch_size == 9
        assert loaded.serpapi.api_key == 'k-123'
        assert loaded.eventbridge.enabled is False

    def test_defaults(self, monkeypatch):
        for name in ('MONITOR_SCHEDULER_ENABLED', 'MONITOR_MIN_CADENCE_MINUTES', 'MONITOR_MAX_JITTER_MINUTES'):
            monkeypatch.delenv(name, raising=False)
        loaded = load_config()
        assert loaded.scheduler.enabled is False
        assert loaded.scheduler.min_cadence_minutes == 5
        assert loaded.scheduler.max_jitter_minutes == 10


class TestJsonUtils:

    @pytest.mark.parametrize('raw, expected', [
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ('```\n{"a": 1}```', '{"a": 1}'),
        ('  {"a": 1}  ', '{"a": 1}'),
    ])
    def test_clean_json_response(self, raw, expected):
        assert clean_json_response(raw) == expected

    def test_clean_text_response(self):
        assert clean_text_response('"Two new\n\nlaunches today."') == 'Two new launches today.'
        assert clean_text_response('```text\nHello\n```') == 'Hello'
        assert clean_text_response(None) == ''

    def test_clean_text_response_truncates_on_word(self):
        text = clean_text_response('word ' * 50, max_chars=22)
        assert text == 'word word word word…'

    def test_dumps_compact(self):
        assert dumps_compact({'a': [1, 2], 'b': 'é'}) == '{"a":[1,2],"b":"é"}'
        assert dumps_compact({'when': datetime(2024, 6, 18)}) == '{"when":"2024-06-18 00:00:00"}'


class TestTimestamps:

    def test_naive_utc(self):
        aware = datetime(2024, 6, 18, 9, 0, tzinfo=timezone.utc)
        assert to_naive_utc(aware) == datetime(2024, 6, 18, 9, 0)
        assert to_naive_utc(datetime(2024, 6, 18, 9, 0)) == datetime(2024, 6, 18, 9, 0)

    def test_millis(self):
        dt = datetime(2024, 6, 18, 9, 0)
        assert from_millis(to_millis(dt)) == dt
        assert add_minutes(dt, 90) == datetime(2024, 6, 18, 10, 30)


class _Stub:

    def __init__(self, healthy):
        self.healthy = healthy

    def health_check(self):
        return self.healthy


class TestHealthCheck:

    def test_reports_each_component(self, app_config, database):
        status = get_health_status(app_config, database=database, llm=_Stub(True), search=_Stub(False))
        assert status['database'] == {'healthy': True, 'service': 'Relational store', 'dialect': 'sqlite'}
        assert status['bedrock_llm']['healthy'] is True
        assert status['bedrock_llm']['model'] == 'test-model'
        assert status['serpapi']['healthy'] is False

    def test_system_info(self, app_config, monkeypatch):
        monkeypatch.setattr('socialcore.utils.health_check.get_health_status', lambda cfg: {})
        info = get_system_info(app_config)
        assert info['service_name'] == 'socialcore'
        assert info['configuration']['scheduler_enabled'] is True
        assert info['health_status'] == {}

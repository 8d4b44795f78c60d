"""
Tests for item fingerprints and the per-monitor seen set.
"""

import pytest

from socialcore.services.dedup import FINGERPRINT_LENGTH, DedupStore, item_fingerprint


@pytest.fixture
def store(database):
    return DedupStore(database)


class TestFingerprint:
    """Deterministic, bounded and intentionally lossy."""

    def test_length_and_hex(self):
        key = item_fingerprint('google_news', 'https://example.com/a', 'A title', '2024-06-18')
        assert len(key) == FINGERPRINT_LENGTH
        int(key, 16)

    def test_cosmetic_differences_collapse(self):
        base = item_fingerprint('google_news', 'https://www.example.com/story/', 'SpaceX  launches Starship!')
        assert item_fingerprint('Google_News', 'http://example.com/story', 'spacex launches starship') == base
        assert item_fingerprint('google_news', 'https://example.com/story#comments', 'SpaceX launches, Starship') == base

    def test_identifying_fields_matter(self):
        base = item_fingerprint('google_news', 'https://example.com/a', 'Title', '2024-06-18')
        assert item_fingerprint('google', 'https://example.com/a', 'Title', '2024-06-18') != base
        assert item_fingerprint('google_news', 'https://example.com/b', 'Title', '2024-06-18') != base
        assert item_fingerprint('google_news', 'https://example.com/a', 'Other', '2024-06-18') != base
        assert item_fingerprint('google_news', 'https://example.com/a', 'Title', '2024-06-19') != base

    def test_missing_fields_are_tolerated(self):
        assert item_fingerprint('google', None, None, None) == item_fingerprint('google', '', '', '')


class TestDedupStore:
    """Insert-or-ignore semantics keyed by (monitor, item key)."""

    def test_mark_seen_is_idempotent(self, store):
        assert store.mark_seen('m1', 'k1') is True
        assert store.mark_seen('m1', 'k1') is False
        assert store.has('m1', 'k1')

    def test_scoped_per_monitor(self, store):
        store.mark_seen('m1', 'k1')
        assert not store.has('m2', 'k1')

    def test_seen_keys_batch(self, store):
        store.mark_seen('m1', 'k1')
        store.mark_seen('m1', 'k3')
        assert store.seen_keys('m1', ['k1', 'k2', 'k3', 'k1']) == {'k1', 'k3'}
        assert store.seen_keys('m1', []) == set()

    def test_mark_all_counts_new_keys(self, store, database):
        store.mark_seen('m1', 'k1')
        with database.session() as session:
            assert store.mark_all_seen_in(session, 'm1', ['k1', 'k2', 'k2', 'k3']) == 2
        assert store.seen_keys('m1', ['k1', 'k2', 'k3']) == {'k1', 'k2', 'k3'}

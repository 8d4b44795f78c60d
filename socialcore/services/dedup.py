"""
Dedup Store: the per-monitor set of item fingerprints already surfaced.
"""

import hashlib
import re
from typing import Iterable, Optional, Set

from sqlalchemy.orm import Session

from ..models.orm import SeenItem
from ..utils.database import Database, insert_or_ignore
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

FINGERPRINT_LENGTH = 40

_PUNCTUATION = re.compile(r'[^\w\s]', re.UNICODE)


def _squash(value: Optional[str]) -> str:
    """Lower-case, drop punctuation and collapse whitespace."""
    value = _PUNCTUATION.sub(' ', (value or '').lower())
    return ' '.join(value.split())


def _squash_link(link: Optional[str]) -> str:
    link = (link or '').strip().lower()
    link = re.sub(r'^https?://(www\.)?', '', link)
    link = link.split('#', 1)[0]
    return link.rstrip('/')


def item_fingerprint(engine: str, link: Optional[str], title: Optional[str], date_token: Optional[str] = None) -> str:
    """Deterministic, bounded and intentionally lossy digest of an external item.

    Items differing only in case, punctuation, whitespace, URL scheme or a
    trailing slash collapse to the same key.
    """
    material = '|'.join((_squash(engine), _squash_link(link), _squash(title), _squash(date_token)))
    return hashlib.sha256(material.encode('utf-8')).hexdigest()[:FINGERPRINT_LENGTH]


class DedupStore:
    """Persistent fingerprint set keyed by (monitor_id, item_key)."""

    def __init__(self, database: Database):
        self.database = database

    def has(self, monitor_id: str, key: str) -> bool:
        with self.database.session() as session:
            return self.has_in(session, monitor_id, key)

    def mark_seen(self, monitor_id: str, key: str) -> bool:
        """Record a key; returns False if it was already present."""
        with self.database.session() as session:
            return self.mark_seen_in(session, monitor_id, key)

    def seen_keys(self, monitor_id: str, keys: Iterable[str]) -> Set[str]:
        with self.database.session() as session:
            return self.seen_keys_in(session, monitor_id, keys)

    def has_in(self, session: Session, monitor_id: str, key: str) -> bool:
        return session.query(SeenItem.id).filter(SeenItem.monitor_id == monitor_id,
                                                 SeenItem.item_key == key).first() is not None

    def mark_seen_in(self, session: Session, monitor_id: str, key: str) -> bool:
        return insert_or_ignore(session, SeenItem, monitor_id=monitor_id, item_key=key)

    def seen_keys_in(self, session: Session, monitor_id: str, keys: Iterable[str]) -> Set[str]:
        keys = list(set(keys))
        if not keys:
            return set()
        rows = (session.query(SeenItem.item_key)
                .filter(SeenItem.monitor_id == monitor_id, SeenItem.item_key.in_(keys))
                .all())
        return {row.item_key for row in rows}

    def mark_all_seen_in(self, session: Session, monitor_id: str, keys: Iterable[str]) -> int:
        """Mark several keys; returns how many were new."""
        added = 0
        for key in dict.fromkeys(keys):
            if self.mark_seen_in(session, monitor_id, key):
                added += 1
        logger.debug(f'Monitor {monitor_id}: marked {added} new item(s) seen')
        return added

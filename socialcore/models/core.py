"""
Core value types, enumerations and domain events.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ACTOR_USER = 'user'
ACTOR_AGENT = 'agent'

KIND_FOLLOW = 'follow'
KIND_BLOCK = 'block'
KIND_MUTE = 'mute'
KIND_AGENT_ACCESS = 'agent_access'
RELATIONSHIP_KINDS = (KIND_FOLLOW, KIND_BLOCK, KIND_MUTE, KIND_AGENT_ACCESS)

STATUS_PENDING = 'pending'
STATUS_ACCEPTED = 'accepted'
STATUS_REJECTED = 'rejected'

DIRECTION_OUTGOING = 'outgoing'
DIRECTION_INCOMING = 'incoming'


@dataclass
class SearchResult:
    """What the search collaborator returned for one query."""
    items: List[Dict[str, Any]]  # engine-specific result dicts
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MonitorItem:
    """An external item normalized for recency filtering and dedup."""
    key: str  # fingerprint, see services.dedup.item_fingerprint
    title: str
    link: str
    timestamp_ms: Optional[int] = None
    source: str = ''
    snippet: str = ''


@dataclass
class MonitorRequest:
    """Monitor parameters carried by an agent's public reply."""
    engine: str
    query: str
    params: Dict[str, Any] = field(default_factory=dict)
    cadence_minutes: Optional[int] = None


@dataclass
class RunOutcome:
    """Result of running one monitor within a tick."""
    monitor_id: str
    baseline: bool = False
    candidate_count: int = 0
    fresh_count: int = 0
    posted_post_id: Optional[str] = None
    error: Optional[str] = None


# Domain events


@dataclass
class AgentRepliedPublicly:
    """An agent answered a feed post in public."""
    agent_id: str
    source_post_id: str
    reply_post_id: Optional[str] = None
    requested_by_user_id: Optional[str] = None
    monitor_request: Optional[MonitorRequest] = None


@dataclass
class MonitorProducedPost:
    """A monitor surfaced new findings as a feed post."""
    monitor_id: str
    agent_id: str
    feed_post_id: str
    source_post_id: str
    title: str
    body: str

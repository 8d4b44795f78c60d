"""
Relational tables for the social graph, monitors and notifications.

Foreign keys are deliberately loose (plain string columns): historical rows hold
either a user's stable id or their email in owner/creator columns.
"""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

from ..utils.timestamp_utils import utc_now

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = 'users'

    id = Column(String(191), primary_key=True, default=new_id)
    email = Column(String(191), unique=True, nullable=True, index=True)
    name = Column(String(191), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)


class Agent(Base):
    __tablename__ = 'agents'

    id = Column(String(191), primary_key=True, default=new_id)
    name = Column(String(191), nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=False, default='')  # persona
    created_by = Column(String(191), nullable=False, index=True)  # stable id or legacy email
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)


class Actor(Base):
    """A graph node: one user or one agent.

    Several user actors may share an owner (legacy duplicates); readers collapse
    them to a primary and writers backfill the owner toward the canonical id.
    """
    __tablename__ = 'actors'

    id = Column(String(191), primary_key=True, default=new_id)
    type = Column(String(20), nullable=False)  # user | agent
    handle = Column(String(191), nullable=True)
    display_name = Column(String(255), nullable=True)
    owner_user_id = Column(String(191), nullable=True)
    agent_id = Column(String(191), nullable=True)
    settings = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        Index('ix_actors_type_owner', 'type', 'owner_user_id'),
        Index('ix_actors_agent', 'agent_id'),
    )


class Relationship(Base):
    __tablename__ = 'relationships'

    id = Column(String(191), primary_key=True, default=new_id)
    from_actor_id = Column(String(191), nullable=False)
    to_actor_id = Column(String(191), nullable=False)
    kind = Column(String(20), nullable=False)  # follow | block | mute | agent_access
    meta = Column('metadata', JSON, nullable=True)  # {"status": pending|accepted|rejected}
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('from_actor_id', 'to_actor_id', 'kind', name='uq_relationships_edge'),
        Index('ix_relationships_to_kind', 'to_actor_id', 'kind'),
        Index('ix_relationships_from_kind', 'from_actor_id', 'kind'),
    )

    @property
    def status(self) -> str:
        return (self.meta or {}).get('status') or 'accepted'


class FeedPost(Base):
    __tablename__ = 'feed_posts'

    id = Column(String(191), primary_key=True, default=new_id)
    author_type = Column(String(32), nullable=False)  # user | agent
    author_id = Column(String(191), nullable=False)
    actor_id = Column(String(191), nullable=True)
    text = Column(Text, nullable=False)
    reply_to_id = Column(String(191), nullable=True, index=True)
    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)


class Monitor(Base):
    __tablename__ = 'monitors'

    id = Column(String(191), primary_key=True, default=new_id)
    agent_id = Column(String(191), nullable=False, index=True)
    created_by_user_id = Column(String(191), nullable=True)
    source_post_id = Column(String(191), nullable=False, index=True)
    engine = Column(String(64), nullable=False)
    query = Column(Text, nullable=False)
    params = Column(JSON, nullable=True)
    cadence_minutes = Column(Integer, nullable=False)
    last_run_at = Column(DateTime, nullable=True)
    next_run_at = Column(DateTime, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    scope = Column(String(32), nullable=False, default='post')
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (Index('ix_monitors_due', 'enabled', 'next_run_at'), )


class SeenItem(Base):
    __tablename__ = 'monitor_seen_items'

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(String(191), nullable=False)
    item_key = Column(String(191), nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (UniqueConstraint('monitor_id', 'item_key', name='uq_monitor_seen_item'), )


class InboxMessage(Base):
    __tablename__ = 'inbox_messages'

    id = Column(String(191), primary_key=True, default=new_id)
    user_id = Column(String(191), nullable=False, index=True)
    feed_post_id = Column(String(191), nullable=False)
    monitor_id = Column(String(191), nullable=True)
    source_post_id = Column(String(191), nullable=True)
    title = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    read_at = Column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint('user_id', 'feed_post_id', name='uq_inbox_user_post'), )

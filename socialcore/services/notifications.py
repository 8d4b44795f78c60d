"""
Notification Emitter: feed posts, broadcast events and at-most-one inbox message
per (user, feed post).
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.core import ACTOR_AGENT, ACTOR_USER, MonitorProducedPost
from ..models.orm import FeedPost, InboxMessage, new_id
from ..utils.database import Database, insert_or_ignore
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .errors import InvalidArgumentError, NotFoundError
from .identity import IdentityResolver

logger = get_logger(__name__)


def post_event(post: FeedPost) -> Dict[str, Any]:
    return {
        'type': 'feed.post',
        'post': {
            'id': post.id,
            'author_type': post.author_type,
            'author_id': post.author_id,
            'actor_id': post.actor_id,
            'text': post.text,
            'reply_to_id': post.reply_to_id,
            'created_at': post.created_at.isoformat() if post.created_at else None,
        },
    }


def inbox_to_dict(message: InboxMessage) -> Dict[str, Any]:
    return {
        'id': message.id,
        'user_id': message.user_id,
        'feed_post_id': message.feed_post_id,
        'monitor_id': message.monitor_id,
        'source_post_id': message.source_post_id,
        'title': message.title,
        'body': message.body,
        'created_at': message.created_at,
        'read_at': message.read_at,
    }


class NotificationEmitter:
    """Publishes feed posts and delivers inbox messages."""

    def __init__(self, database: Database, identity: IdentityResolver, broadcaster):
        self.database = database
        self.identity = identity
        self.broadcaster = broadcaster

    def broadcast(self, event: Dict[str, Any]) -> None:
        """Fire-and-forget; a broadcaster failure never reaches the caller."""
        try:
            self.broadcaster.publish(event)
        except Exception as e:
            logger.warning(f"Broadcast of {event.get('type')} failed: {e}")

    def create_post(self, author_type: str, author_id: str, text: str, reply_to_id: Optional[str] = None) -> FeedPost:
        """Store a feed post by a user or an agent and broadcast it."""
        if author_type not in (ACTOR_USER, ACTOR_AGENT):
            raise InvalidArgumentError(f'Invalid author_type: {author_type}')
        if not text or not text.strip():
            raise InvalidArgumentError('Post text is required')

        with self.database.session() as session:
            post = self.create_post_in(session, author_type, author_id, text, reply_to_id)
        self.broadcast(post_event(post))
        return post

    def create_post_in(self,
                       session: Session,
                       author_type: str,
                       author_id: str,
                       text: str,
                       reply_to_id: Optional[str] = None) -> FeedPost:
        if author_type == ACTOR_AGENT:
            actor_id = self.identity.agent_actor_in(session, author_id).id
        else:
            author_id = self.identity.normalize_in(session, author_id)
            actor_id = self.identity.primary_actor_in(session, author_id).id

        post = FeedPost(id=new_id(),
                        author_type=author_type,
                        author_id=author_id,
                        actor_id=actor_id,
                        text=text.strip(),
                        reply_to_id=reply_to_id,
                        created_at=utc_now())
        session.add(post)
        session.flush()
        logger.debug(f'Created {author_type} post {post.id} reply_to={reply_to_id}')
        return post

    def publish_post(self, agent_id: str, text: str, reply_to_id: Optional[str] = None) -> FeedPost:
        """Publish a post authored by an agent and broadcast it."""
        return self.create_post(ACTOR_AGENT, agent_id, text, reply_to_id)

    def get_post(self, post_id: str) -> FeedPost:
        with self.database.session() as session:
            post = session.get(FeedPost, post_id)
            if post is None:
                raise NotFoundError(f'Post not found: {post_id}')
            return post

    def deliver_inbox(self,
                      user_id: str,
                      feed_post_id: str,
                      title: str,
                      body: str,
                      monitor_id: Optional[str] = None,
                      source_post_id: Optional[str] = None) -> bool:
        """Deliver one inbox message; returns False if the user already has one for this post."""
        with self.database.session() as session:
            user_id = self.identity.normalize_in(session, user_id)
            delivered = insert_or_ignore(session,
                                         InboxMessage,
                                         id=new_id(),
                                         user_id=user_id,
                                         feed_post_id=feed_post_id,
                                         monitor_id=monitor_id,
                                         source_post_id=source_post_id,
                                         title=title[:500],
                                         body=body,
                                         created_at=utc_now())
        if delivered:
            logger.info(f'Delivered inbox message for post {feed_post_id} to {user_id}')
            self.broadcast({'type': 'inbox.message', 'user_id': user_id, 'feed_post_id': feed_post_id})
        else:
            logger.debug(f'Inbox message for post {feed_post_id} already delivered to {user_id}')
        return delivered

    def handle_monitor_post(self, event: MonitorProducedPost) -> bool:
        """Notify the author of the monitored post, if that author is a user."""
        with self.database.session() as session:
            source = session.get(FeedPost, event.source_post_id)
            if source is None or source.author_type != ACTOR_USER:
                logger.debug(f'Monitor {event.monitor_id}: source post {event.source_post_id} has no user author')
                return False
            author_id = source.author_id

        return self.deliver_inbox(user_id=author_id,
                                  feed_post_id=event.feed_post_id,
                                  title=event.title,
                                  body=event.body,
                                  monitor_id=event.monitor_id,
                                  source_post_id=event.source_post_id)

    def list_inbox(self, user_ref: str, unread_only: bool = False, limit: int = 50) -> List[Dict[str, Any]]:
        with self.database.session() as session:
            user_id = self.identity.normalize_in(session, user_ref)
            q = session.query(InboxMessage).filter(InboxMessage.user_id.in_([user_id, user_ref]))
            if unread_only:
                q = q.filter(InboxMessage.read_at.is_(None))
            rows = q.order_by(InboxMessage.created_at.desc()).limit(limit).all()
            return [inbox_to_dict(row) for row in rows]

    def unread_count(self, user_ref: str) -> int:
        with self.database.session() as session:
            user_id = self.identity.normalize_in(session, user_ref)
            return (session.query(InboxMessage)
                    .filter(InboxMessage.user_id.in_([user_id, user_ref]), InboxMessage.read_at.is_(None))
                    .count())

    def mark_read(self, user_ref: str, message_id: str) -> bool:
        """Mark one of the caller's messages read; returns False if it already was."""
        with self.database.session() as session:
            user_id = self.identity.normalize_in(session, user_ref)
            message = session.get(InboxMessage, message_id)
            if message is None or message.user_id not in (user_id, user_ref):
                raise NotFoundError(f'Inbox message not found: {message_id}')
            if message.read_at is not None:
                return False
            message.read_at = utc_now()
            return True

"""
Social Core Service: one entry point for the social graph, monitors and inbox.
"""

from typing import Any, Callable, Dict, List, Optional, Union

from ..models.core import (DIRECTION_OUTGOING, KIND_FOLLOW, AgentRepliedPublicly, MonitorProducedPost,
                           MonitorRequest)
from ..models.orm import FeedPost, Monitor
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import AppConfig
from ..utils.config import config as default_config
from ..utils.database import Database
from ..utils.eventbridge_client import build_broadcaster
from ..utils.logging_config import get_logger
from ..utils.serpapi_client import SerpApiClient
from .dedup import DedupStore
from .events import EventDispatcher
from .identity import IdentityResolver
from .maintenance import MaintenanceService
from .monitors import MonitorRegistry
from .notifications import NotificationEmitter
from .relationships import RelationshipGraph
from .scheduler import MonitorScheduler

logger = get_logger(__name__)


class SocialCoreService:
    """Wires persistence, collaborators and services, and routes domain events."""

    def __init__(self,
                 app_config: Optional[AppConfig] = None,
                 database: Optional[Database] = None,
                 search=None,
                 llm=None,
                 broadcaster=None):
        """
        Initialize the social core.

        Collaborators default to the configured SerpAPI, Bedrock and EventBridge
        clients; tests pass their own.

        Args:
            app_config: AppConfig instance (defaults to the environment-loaded config)
            database: Database to use instead of one built from config
            search: Search collaborator with ``run(engine, query, params)``
            llm: Text-completion collaborator with ``complete(messages, system_prompt=...)``
            broadcaster: Event sink with ``publish(event)``
        """
        self.config = app_config or default_config

        self.database = database or Database(self.config.database)
        self.database.create_all()

        self.search = search or SerpApiClient(self.config.serpapi)
        self.llm = llm or BedrockLLM(self.config.bedrock_llm)
        self.broadcaster = broadcaster or build_broadcaster(self.config.eventbridge)

        self.identity = IdentityResolver(self.database)
        self.relationships = RelationshipGraph(self.database, self.identity)
        self.monitors = MonitorRegistry(self.database, self.identity, self.config.scheduler)
        self.dedup = DedupStore(self.database)
        self.notifications = NotificationEmitter(self.database, self.identity, self.broadcaster)
        self.maintenance = MaintenanceService(self.database, self.identity)

        self.dispatcher = EventDispatcher()
        self.dispatcher.register(AgentRepliedPublicly, self.monitors.handle_agent_replied)
        self.dispatcher.register(MonitorProducedPost, self.notifications.handle_monitor_post)

        logger.info('Initialized SocialCoreService')

    # Identity

    def resolve_primary_actor(self, user_ref: str) -> str:
        return self.identity.resolve_primary_actor(user_ref)

    def resolve_agent_actor(self, agent_id: str) -> str:
        return self.identity.resolve_agent_actor(agent_id)

    # Relationships

    def create_relationship(self,
                            user_ref: str,
                            to_actor_id: Optional[str] = None,
                            kind: str = KIND_FOLLOW,
                            agent_id: Optional[str] = None) -> str:
        return self.relationships.create_relationship(user_ref, to_actor_id=to_actor_id, kind=kind, agent_id=agent_id)

    def approve(self, user_ref: str, from_actor_id: str, kind: str = KIND_FOLLOW) -> int:
        return self.relationships.approve(user_ref, from_actor_id, kind)

    def reject(self, user_ref: str, from_actor_id: str, kind: str = KIND_FOLLOW) -> int:
        return self.relationships.reject(user_ref, from_actor_id, kind)

    def list_relationships(self,
                           user_ref: str,
                           direction: str = DIRECTION_OUTGOING,
                           kind: str = KIND_FOLLOW,
                           status: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.relationships.list_relationships(user_ref, direction, kind, status)

    def delete_relationship(self, user_ref: str, to_actor_id: str, kind: str = KIND_FOLLOW) -> int:
        return self.relationships.delete_relationship(user_ref, to_actor_id, kind)

    def accessible_agents(self, user_ref: str) -> List[Dict[str, Any]]:
        return self.relationships.accessible_agents(user_ref)

    def connections(self, user_ref: str) -> List[Dict[str, Any]]:
        return self.relationships.connections(user_ref)

    # Posts and monitors

    def create_post(self, author_type: str, author_id: str, text: str, reply_to_id: Optional[str] = None) -> FeedPost:
        return self.notifications.create_post(author_type, author_id, text, reply_to_id)

    def create_monitor(self,
                       agent_id: str,
                       source_post_id: str,
                       engine: str,
                       query: str,
                       params: Optional[Dict[str, Any]] = None,
                       cadence_minutes: Optional[int] = None,
                       created_by_user_id: Optional[str] = None) -> Monitor:
        return self.monitors.create_monitor(agent_id=agent_id,
                                            source_post_id=source_post_id,
                                            engine=engine,
                                            query=query,
                                            params=params,
                                            cadence_minutes=cadence_minutes,
                                            created_by_user_id=created_by_user_id)

    def disable_monitor(self, monitor_id: str, user_ref: Optional[str] = None) -> bool:
        return self.monitors.disable_monitor(monitor_id, user_ref)

    def disable_monitors_for_post(self, post_id: str) -> int:
        return self.monitors.disable_monitors_for_post(post_id)

    def agent_replied_publicly(self,
                               agent_id: str,
                               source_post_id: str,
                               text: str,
                               monitor_request: Optional[MonitorRequest] = None,
                               requested_by_user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Publish an agent's public reply and let the handlers react to it.

        Args:
            agent_id: Replying agent
            source_post_id: Post being answered
            text: Reply text
            monitor_request: Standing search the reply promised to keep running
            requested_by_user_id: User who asked the agent, if known

        Returns:
            Dict with the reply post and the monitor created for it, if any
        """
        reply = self.notifications.publish_post(agent_id, text, reply_to_id=source_post_id)
        results = self.dispatcher.dispatch(AgentRepliedPublicly(agent_id=agent_id,
                                                                source_post_id=source_post_id,
                                                                reply_post_id=reply.id,
                                                                requested_by_user_id=requested_by_user_id,
                                                                monitor_request=monitor_request))
        monitor = next((r for r in results if isinstance(r, Monitor)), None)
        return {'reply': reply, 'monitor': monitor}

    # Inbox

    def list_inbox(self, user_ref: str, unread_only: bool = False, limit: int = 50) -> List[Dict[str, Any]]:
        return self.notifications.list_inbox(user_ref, unread_only=unread_only, limit=limit)

    def unread_count(self, user_ref: str) -> int:
        return self.notifications.unread_count(user_ref)

    def mark_inbox_read(self, user_ref: str, message_id: str) -> bool:
        return self.notifications.mark_read(user_ref, message_id)

    # Scheduler

    def build_scheduler(self, is_leader: Union[bool, Callable[[], bool], None] = None) -> MonitorScheduler:
        """Create a scheduler bound to this service; leadership defaults to the config gate."""
        if is_leader is None:
            is_leader = self.config.scheduler.enabled
        return MonitorScheduler(database=self.database,
                                registry=self.monitors,
                                dedup=self.dedup,
                                notifications=self.notifications,
                                dispatcher=self.dispatcher,
                                search=self.search,
                                llm=self.llm,
                                config=self.config.scheduler,
                                is_leader=is_leader)

"""
Monitor Registry: persistent standing searches owned by an agent and tied to a post.
"""

import random
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.core import AgentRepliedPublicly
from ..models.orm import Agent, Monitor, new_id
from ..utils.config import SchedulerConfig
from ..utils.database import Database
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import add_minutes, utc_now
from .errors import ForbiddenError, InvalidArgumentError, NotFoundError
from .identity import IdentityResolver

logger = get_logger(__name__)

DEFAULT_SCOPE = 'post'


def monitor_to_dict(monitor: Monitor) -> Dict[str, Any]:
    return {
        'id': monitor.id,
        'agent_id': monitor.agent_id,
        'created_by_user_id': monitor.created_by_user_id,
        'source_post_id': monitor.source_post_id,
        'engine': monitor.engine,
        'query': monitor.query,
        'params': dict(monitor.params or {}),
        'cadence_minutes': monitor.cadence_minutes,
        'last_run_at': monitor.last_run_at,
        'next_run_at': monitor.next_run_at,
        'enabled': monitor.enabled,
        'scope': monitor.scope,
        'created_at': monitor.created_at,
    }


class MonitorRegistry:
    """Creates, disables and schedules monitors. Monitors are soft-disabled, never deleted."""

    def __init__(self, database: Database, identity: IdentityResolver, config: SchedulerConfig):
        self.database = database
        self.identity = identity
        self.config = config

    def create_monitor(self,
                       agent_id: str,
                       source_post_id: str,
                       engine: str,
                       query: str,
                       params: Optional[Dict[str, Any]] = None,
                       cadence_minutes: Optional[int] = None,
                       created_by_user_id: Optional[str] = None,
                       scope: str = DEFAULT_SCOPE) -> Monitor:
        """Create a monitor that runs its baseline on the next tick.

        Raises:
            InvalidArgumentError: Missing post/engine/query or cadence below the minimum
            NotFoundError: Unknown agent
        """
        cadence = self.config.default_cadence_minutes if cadence_minutes is None else int(cadence_minutes)
        if not source_post_id:
            raise InvalidArgumentError('source_post_id is required')
        if not engine or not engine.strip():
            raise InvalidArgumentError('engine is required')
        if not query or not query.strip():
            raise InvalidArgumentError('query is required')
        if cadence < self.config.min_cadence_minutes:
            raise InvalidArgumentError(f'cadence_minutes must be at least {self.config.min_cadence_minutes}')

        with self.database.session() as session:
            if session.get(Agent, agent_id) is None:
                raise NotFoundError(f'Agent not found: {agent_id}')

            now = utc_now()
            monitor = Monitor(id=new_id(),
                              agent_id=agent_id,
                              created_by_user_id=self.identity.normalize_in(session, created_by_user_id)
                              if created_by_user_id else None,
                              source_post_id=source_post_id,
                              engine=engine.strip(),
                              query=query.strip(),
                              params=dict(params or {}),
                              cadence_minutes=cadence,
                              last_run_at=None,
                              next_run_at=now,
                              enabled=True,
                              scope=scope or DEFAULT_SCOPE,
                              created_at=now,
                              updated_at=now)
            session.add(monitor)
            session.flush()
            logger.info(f'Created monitor {monitor.id} agent={agent_id} engine={monitor.engine} '
                        f'query="{monitor.query}" cadence={cadence}m')
            return monitor

    def get(self, monitor_id: str) -> Monitor:
        with self.database.session() as session:
            monitor = session.get(Monitor, monitor_id)
            if monitor is None:
                raise NotFoundError(f'Monitor not found: {monitor_id}')
            return monitor

    def list_for_post(self, post_id: str, enabled_only: bool = False) -> List[Monitor]:
        with self.database.session() as session:
            q = session.query(Monitor).filter(Monitor.source_post_id == post_id)
            if enabled_only:
                q = q.filter(Monitor.enabled.is_(True))
            return q.order_by(Monitor.created_at).all()

    def disable_monitor(self, monitor_id: str, user_ref: Optional[str] = None) -> bool:
        """Soft-disable one monitor.

        Args:
            monitor_id: Monitor to disable
            user_ref: Acting user; when given it must be the creator or the agent's owner

        Returns:
            True if the monitor was enabled before the call

        Raises:
            NotFoundError: Unknown monitor
            ForbiddenError: ``user_ref`` neither created the monitor nor owns its agent
        """
        with self.database.session() as session:
            monitor = session.get(Monitor, monitor_id)
            if monitor is None:
                raise NotFoundError(f'Monitor not found: {monitor_id}')

            if user_ref is not None:
                owner = self.identity.agent_owner_in(session, monitor.agent_id)
                if not (self.identity.is_owner_in(session, user_ref, monitor.created_by_user_id)
                        or self.identity.is_owner_in(session, user_ref, owner)):
                    raise ForbiddenError(f'{user_ref} may not disable monitor {monitor_id}')

            was_enabled = monitor.enabled
            monitor.enabled = False
            logger.info(f'Disabled monitor {monitor_id}')
            return was_enabled

    def disable_monitors_for_post(self, post_id: str) -> int:
        """Disable every enabled monitor hanging off ``post_id``; returns how many."""
        with self.database.session() as session:
            monitors = (session.query(Monitor)
                        .filter(Monitor.source_post_id == post_id, Monitor.enabled.is_(True))
                        .all())
            for monitor in monitors:
                monitor.enabled = False
            if monitors:
                logger.info(f'Disabled {len(monitors)} monitor(s) for post {post_id}')
            return len(monitors)

    def list_due_in(self, session: Session, now: datetime, limit: int) -> List[Monitor]:
        return (session.query(Monitor)
                .filter(Monitor.enabled.is_(True), Monitor.next_run_at <= now)
                .order_by(Monitor.next_run_at, Monitor.id)
                .limit(limit)
                .all())

    def list_due(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[Monitor]:
        with self.database.session() as session:
            return self.list_due_in(session, now or utc_now(), limit or self.config.batch_size)

    def jitter_minutes(self) -> float:
        return random.uniform(0, self.config.max_jitter_minutes)

    def record_run(self,
                   monitor_id: str,
                   now: datetime,
                   jitter_minutes: Optional[float] = None,
                   failed: bool = False) -> Monitor:
        """Advance the schedule: last_run_at = now, next_run_at = now + cadence + jitter.

        A failed run of a monitor that never ran only moves next_run_at, so
        its baseline is taken again on the next run.
        """
        with self.database.session() as session:
            monitor = session.get(Monitor, monitor_id)
            if monitor is None:
                raise NotFoundError(f'Monitor not found: {monitor_id}')
            jitter = self.jitter_minutes() if jitter_minutes is None else jitter_minutes
            if not failed or monitor.last_run_at is not None:
                monitor.last_run_at = now
            monitor.next_run_at = add_minutes(now, monitor.cadence_minutes + jitter)
            logger.debug(f'Monitor {monitor_id} next run at {monitor.next_run_at.isoformat()} (jitter {jitter:.1f}m)')
            return monitor

    def handle_agent_replied(self, event: AgentRepliedPublicly) -> Optional[Monitor]:
        """Create the monitor an agent's public reply asked for, once per (agent, post)."""
        request = event.monitor_request
        if request is None:
            return None

        with self.database.session() as session:
            existing = (session.query(Monitor)
                        .filter(Monitor.agent_id == event.agent_id,
                                Monitor.source_post_id == event.source_post_id,
                                Monitor.enabled.is_(True))
                        .first())
            if existing is not None:
                logger.debug(f'Monitor {existing.id} already covers agent {event.agent_id} on post {event.source_post_id}')
                return None

        return self.create_monitor(agent_id=event.agent_id,
                                   source_post_id=event.source_post_id,
                                   engine=request.engine,
                                   query=request.query,
                                   params=request.params,
                                   cadence_minutes=request.cadence_minutes,
                                   created_by_user_id=event.requested_by_user_id)

"""
Identity Resolver and Actor Directory.

A user can be referenced by a stable id or, in older rows, by email, and may
own several user actors created before uniqueness was enforced. Everything
here canonicalizes toward the stable id and collapses duplicates to a single
primary actor on read.
"""

import re
from datetime import timedelta
from typing import List, Optional, Set

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.core import ACTOR_AGENT, ACTOR_USER
from ..models.orm import Actor, Agent, User, new_id
from ..utils.database import Database
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .errors import NotFoundError

logger = get_logger(__name__)


def agent_handle(name: Optional[str]) -> Optional[str]:
    return re.sub(r'[^a-z0-9]+', '', (name or '').lower()) or None


def is_email(ref: Optional[str]) -> bool:
    return bool(ref) and '@' in ref


def _recency_key(actor: Actor):
    return (actor.updated_at or actor.created_at, actor.id)


class IdentityResolver:
    """Canonicalizes user references and resolves primary user/agent actors."""

    def __init__(self, database: Database):
        self.database = database

    # Public API: each call runs in its own session

    def normalize(self, ref: str) -> str:
        """Resolve an email-shaped ref to the user's stable id; anything else passes through.

        Best effort: unknown emails and lookup failures return ``ref`` unchanged.
        """
        try:
            with self.database.session() as session:
                return self.normalize_in(session, ref)
        except SQLAlchemyError as e:
            logger.warning(f'normalize({ref}) failed, passing through: {e}')
            return ref

    def resolve_primary_actor(self, ref: str) -> str:
        """Return the primary user actor id for ``ref``, creating one if needed."""
        with self.database.session() as session:
            return self.primary_actor_in(session, ref).id

    def resolve_agent_actor(self, agent_id: str) -> str:
        """Return the agent actor id for ``agent_id``, creating it lazily.

        Raises:
            NotFoundError: If the agent does not exist and has no actor yet
        """
        with self.database.session() as session:
            return self.agent_actor_in(session, agent_id).id

    def owned_actor_ids(self, ref: str) -> Set[str]:
        with self.database.session() as session:
            return self.owned_actor_ids_in(session, ref)

    def agent_owner(self, agent_id: str) -> Optional[str]:
        with self.database.session() as session:
            return self.agent_owner_in(session, agent_id)

    def is_owner(self, ref: str, owner: Optional[str]) -> bool:
        with self.database.session() as session:
            return self.is_owner_in(session, ref, owner)

    # Session-scoped helpers shared with the other services

    def normalize_in(self, session: Session, ref: str) -> str:
        if not is_email(ref):
            return ref
        user = session.query(User).filter(User.email == ref).first()
        return user.id if user else ref

    def is_owner_in(self, session: Session, ref: str, owner: Optional[str]) -> bool:
        """True if ``owner`` names the same user as ``ref`` in any of its forms."""
        if not owner:
            return False
        canonical = self.normalize_in(session, ref)
        return owner in (ref, canonical) or self.normalize_in(session, owner) == canonical

    def _user_actors_for(self, session: Session, owners: List[str]) -> List[Actor]:
        return (session.query(Actor)
                .filter(Actor.type == ACTOR_USER, Actor.owner_user_id.in_(owners))
                .all())

    def primary_actor_in(self, session: Session, ref: str) -> Actor:
        """Pick (or create) the primary user actor and backfill duplicates to the canonical owner."""
        canonical = self.normalize_in(session, ref)
        matches = self._user_actors_for(session, list(self.owner_forms_in(session, ref)))

        if not matches:
            actor = Actor(id=new_id(), type=ACTOR_USER, owner_user_id=canonical)
            session.add(actor)
            session.flush()
            logger.debug(f'Created user actor {actor.id} for {canonical}')
            return actor

        canonical_matches = [a for a in matches if a.owner_user_id == canonical]
        primary = max(canonical_matches or matches, key=_recency_key)

        stale = [a for a in matches if a.owner_user_id != canonical]
        if stale:
            self._heal_owners(session, stale, canonical, primary)
        return primary

    def _heal_owners(self, session: Session, stale: List[Actor], canonical: str, primary: Actor) -> None:
        """Rewrite legacy owners to the canonical id.

        Healed rows keep their updated_at while the primary is touched, so the
        next read still collapses to the same primary.
        """
        actor_ids = [a.id for a in stale if a.id != primary.id]
        newest = max(a.updated_at or a.created_at for a in stale)
        if actor_ids:
            session.execute(
                update(Actor).where(Actor.id.in_(actor_ids)).values(
                    owner_user_id=canonical,
                    updated_at=Actor.updated_at).execution_options(synchronize_session='fetch'))
        primary.owner_user_id = canonical
        primary.updated_at = max(utc_now(), newest + timedelta(microseconds=1))
        session.flush()
        logger.info(f'Backfilled owner of {len(actor_ids)} actor(s) to {canonical}')

    def owner_forms_in(self, session: Session, ref: str) -> Set[str]:
        """Every value an owner/creator column may hold for this user: raw ref, stable id, email."""
        canonical = self.normalize_in(session, ref)
        forms = {canonical, ref}
        user = session.get(User, canonical)
        if user is not None and user.email:
            forms.add(user.email)
        return forms

    def owned_actor_ids_in(self, session: Session, ref: str) -> Set[str]:
        """Every user actor that represents the caller, including legacy email-owned rows."""
        primary = self.primary_actor_in(session, ref)
        ids = {a.id for a in self._user_actors_for(session, list(self.owner_forms_in(session, ref)))}
        ids.add(primary.id)
        return ids

    def owned_agent_actor_ids_in(self, session: Session, ref: str) -> Set[str]:
        """Agent actors whose agent was created by the caller in any of its identity forms."""
        agent_ids = [row.id for row in
                     session.query(Agent.id).filter(Agent.created_by.in_(list(self.owner_forms_in(session, ref)))).all()]
        if not agent_ids:
            return set()
        rows = session.query(Actor.id).filter(Actor.type == ACTOR_AGENT, Actor.agent_id.in_(agent_ids)).all()
        return {row.id for row in rows}

    def agent_actor_in(self, session: Session, agent_id: str) -> Actor:
        existing = (session.query(Actor)
                    .filter(Actor.type == ACTOR_AGENT, Actor.agent_id == agent_id)
                    .order_by(Actor.created_at, Actor.id)
                    .first())
        if existing is not None:
            return existing

        agent = session.get(Agent, agent_id)
        if agent is None:
            raise NotFoundError(f'Agent not found: {agent_id}')

        actor = Actor(id=new_id(),
                      type=ACTOR_AGENT,
                      handle=agent_handle(agent.name),
                      display_name=agent.name,
                      owner_user_id=self.normalize_in(session, agent.created_by),
                      agent_id=agent_id,
                      settings={'agentId': agent_id})
        session.add(actor)
        session.flush()
        logger.debug(f'Created agent actor {actor.id} for agent {agent_id}')
        return actor

    def agent_owner_in(self, session: Session, agent_id: Optional[str]) -> Optional[str]:
        """Canonical id of the agent's creator, or None for an unknown agent."""
        if not agent_id:
            return None
        agent = session.get(Agent, agent_id)
        if agent is None or not agent.created_by:
            return None
        return self.normalize_in(session, agent.created_by)

    def agent_id_of_actor(self, actor: Optional[Actor]) -> Optional[str]:
        if actor is None or actor.type != ACTOR_AGENT:
            return None
        return actor.agent_id or (actor.settings or {}).get('agentId')

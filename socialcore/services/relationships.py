"""
Relationship Graph.

Directed, typed edges between actors. Follows to users and agent-access
requests to someone else's agent start out pending and need the target's
approval; approving a follow makes it mutual.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models.core import (ACTOR_AGENT, ACTOR_USER, DIRECTION_INCOMING, DIRECTION_OUTGOING, KIND_AGENT_ACCESS,
                           KIND_FOLLOW, RELATIONSHIP_KINDS, STATUS_ACCEPTED, STATUS_PENDING, STATUS_REJECTED)
from ..models.orm import Actor, Agent, Relationship, User, new_id
from ..utils.database import Database, insert_or_ignore
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .errors import ForbiddenError, InvalidArgumentError, NotFoundError
from .identity import IdentityResolver

logger = get_logger(__name__)


def _validate_kind(kind: str) -> None:
    if kind not in RELATIONSHIP_KINDS:
        raise InvalidArgumentError(f'Unknown relationship kind: {kind}')


def _set_status(edge: Relationship, status: str) -> None:
    # Reassign so the JSON column is flagged dirty
    edge.meta = {**(edge.meta or {}), 'status': status}


def agent_to_dict(agent: Agent) -> Dict[str, Any]:
    return {
        'id': agent.id,
        'name': agent.name,
        'description': agent.description,
        'created_by': agent.created_by,
        'is_active': agent.is_active,
    }


class RelationshipGraph:
    """Create, approve, reject, list and delete relationships between actors."""

    def __init__(self, database: Database, identity: IdentityResolver):
        self.database = database
        self.identity = identity

    def create_relationship(self,
                            user_ref: str,
                            to_actor_id: Optional[str] = None,
                            kind: str = KIND_FOLLOW,
                            agent_id: Optional[str] = None) -> str:
        """
        Create an edge from the caller's primary actor, or report the existing one.

        Args:
            user_ref: Caller, stable id or email
            to_actor_id: Target actor
            kind: follow, block, mute or agent_access
            agent_id: Alternative target, resolved to the agent's actor

        Returns:
            The edge status: pending or accepted

        Raises:
            InvalidArgumentError: No target, unknown kind, or a target the caller already is
            NotFoundError: Unknown target actor or agent
        """
        _validate_kind(kind)
        if not to_actor_id and not agent_id:
            raise InvalidArgumentError('A target actor or agent is required')

        with self.database.session() as session:
            requester = self.identity.primary_actor_in(session, user_ref)

            if to_actor_id:
                target = session.get(Actor, to_actor_id)
                if target is None:
                    raise NotFoundError(f'Actor not found: {to_actor_id}')
            else:
                target = self.identity.agent_actor_in(session, agent_id)

            my_ids = self.identity.owned_actor_ids_in(session, user_ref)
            if target.id in my_ids:
                raise InvalidArgumentError('Cannot create a relationship with yourself')

            existing = (session.query(Relationship)
                        .filter(Relationship.from_actor_id.in_(list(my_ids)),
                                Relationship.to_actor_id == target.id,
                                Relationship.kind == kind)
                        .first())
            if existing is not None:
                logger.debug(f'{kind} {existing.from_actor_id} -> {target.id} already exists ({existing.status})')
                return existing.status

            status = self._initial_status(session, user_ref, target, kind)
            inserted = insert_or_ignore(session,
                                        Relationship,
                                        id=new_id(),
                                        from_actor_id=requester.id,
                                        to_actor_id=target.id,
                                        kind=kind,
                                        meta={'status': status},
                                        created_at=utc_now())
            if not inserted:
                # Lost a race against an identical request
                stored = self._edge(session, requester.id, target.id, kind)
                return stored.status if stored is not None else status

            logger.info(f'Created {kind} {requester.id} -> {target.id} ({status})')
            return status

    def _initial_status(self, session: Session, user_ref: str, target: Actor, kind: str) -> str:
        if kind == KIND_AGENT_ACCESS:
            owner = self.identity.agent_owner_in(session, self.identity.agent_id_of_actor(target))
            if owner and owner == self.identity.normalize_in(session, user_ref):
                return STATUS_ACCEPTED
            return STATUS_PENDING
        return STATUS_PENDING if target.type == ACTOR_USER else STATUS_ACCEPTED

    def _edge(self, session: Session, from_id: str, to_id: str, kind: str) -> Optional[Relationship]:
        return (session.query(Relationship)
                .filter(Relationship.from_actor_id == from_id,
                        Relationship.to_actor_id == to_id,
                        Relationship.kind == kind)
                .first())

    def _incoming_agent_access(self, session: Session, from_actor_id: str) -> List[Relationship]:
        return (session.query(Relationship)
                .filter(Relationship.from_actor_id == from_actor_id, Relationship.kind == KIND_AGENT_ACCESS)
                .all())

    def _incoming_edge(self, session: Session, user_ref: str, from_actor_id: str, kind: str) -> Optional[Relationship]:
        my_ids = self.identity.owned_actor_ids_in(session, user_ref)
        edges = (session.query(Relationship)
                 .filter(Relationship.from_actor_id == from_actor_id,
                         Relationship.to_actor_id.in_(list(my_ids)),
                         Relationship.kind == kind)
                 .all())
        # A pending edge wins over stale duplicates pointing at other caller actors
        edges.sort(key=lambda e: e.status != STATUS_PENDING)
        return edges[0] if edges else None

    def approve(self, user_ref: str, from_actor_id: str, kind: str = KIND_FOLLOW) -> int:
        """
        Accept a pending request made by ``from_actor_id``.

        For agent_access every pending request from that actor to one of the
        caller's agents is accepted. For follow the reciprocal edge is made
        accepted too, so the two actors end up mutually connected.

        Returns:
            Number of edges that changed to accepted (0 for a repeated approval)

        Raises:
            NotFoundError: No such request
            ForbiddenError: The requests target agents the caller does not own
        """
        _validate_kind(kind)

        with self.database.session() as session:
            if kind == KIND_AGENT_ACCESS:
                return self._approve_agent_access(session, user_ref, from_actor_id)

            edge = self._incoming_edge(session, user_ref, from_actor_id, kind)
            if edge is None or edge.status == STATUS_REJECTED:
                raise NotFoundError(f'No pending {kind} request from {from_actor_id}')

            changed = 0
            if edge.status == STATUS_PENDING:
                _set_status(edge, STATUS_ACCEPTED)
                changed += 1

            if kind == KIND_FOLLOW:
                changed += self._accept_reciprocal(session, user_ref, from_actor_id)

            logger.info(f'{user_ref} approved {kind} from {from_actor_id} ({changed} edge(s) accepted)')
            return changed

    def _approve_agent_access(self, session: Session, user_ref: str, from_actor_id: str) -> int:
        edges = self._incoming_agent_access(session, from_actor_id)
        if not edges:
            raise NotFoundError(f'No agent_access request from {from_actor_id}')

        owned_agents = self.identity.owned_agent_actor_ids_in(session, user_ref)
        mine = [e for e in edges if e.to_actor_id in owned_agents]
        pending = [e for e in edges if e.status == STATUS_PENDING]
        if not mine:
            if pending:
                raise ForbiddenError(f'{user_ref} does not own the requested agent(s)')
            raise NotFoundError(f'No agent_access request from {from_actor_id} to your agents')

        changed = 0
        for edge in mine:
            if edge.status == STATUS_PENDING:
                _set_status(edge, STATUS_ACCEPTED)
                changed += 1
        if changed == 0 and not any(e.status == STATUS_ACCEPTED for e in mine):
            raise NotFoundError(f'No pending agent_access request from {from_actor_id}')

        logger.info(f'{user_ref} approved {changed} agent_access request(s) from {from_actor_id}')
        return changed

    def _accept_reciprocal(self, session: Session, user_ref: str, from_actor_id: str) -> int:
        my_ids = self.identity.owned_actor_ids_in(session, user_ref)
        reciprocal = (session.query(Relationship)
                      .filter(Relationship.from_actor_id.in_(list(my_ids)),
                              Relationship.to_actor_id == from_actor_id,
                              Relationship.kind == KIND_FOLLOW)
                      .first())
        if reciprocal is not None:
            if reciprocal.status == STATUS_ACCEPTED:
                return 0
            _set_status(reciprocal, STATUS_ACCEPTED)
            return 1

        primary = self.identity.primary_actor_in(session, user_ref)
        inserted = insert_or_ignore(session,
                                    Relationship,
                                    id=new_id(),
                                    from_actor_id=primary.id,
                                    to_actor_id=from_actor_id,
                                    kind=KIND_FOLLOW,
                                    meta={'status': STATUS_ACCEPTED},
                                    created_at=utc_now())
        return 1 if inserted else 0

    def reject(self, user_ref: str, from_actor_id: str, kind: str = KIND_FOLLOW) -> int:
        """
        Reject a pending request made by ``from_actor_id``. Rejection is terminal.

        Returns:
            Number of edges rejected

        Raises:
            NotFoundError: No pending request
            ForbiddenError: The requests target agents the caller does not own
        """
        _validate_kind(kind)

        with self.database.session() as session:
            if kind == KIND_AGENT_ACCESS:
                pending = [e for e in self._incoming_agent_access(session, from_actor_id)
                           if e.status == STATUS_PENDING]
                if not pending:
                    raise NotFoundError(f'No pending agent_access request from {from_actor_id}')
                owned_agents = self.identity.owned_agent_actor_ids_in(session, user_ref)
                mine = [e for e in pending if e.to_actor_id in owned_agents]
                if not mine:
                    raise ForbiddenError(f'{user_ref} does not own the requested agent(s)')
            else:
                edge = self._incoming_edge(session, user_ref, from_actor_id, kind)
                if edge is None or edge.status != STATUS_PENDING:
                    raise NotFoundError(f'No pending {kind} request from {from_actor_id}')
                mine = [edge]

            for edge in mine:
                _set_status(edge, STATUS_REJECTED)
            logger.info(f'{user_ref} rejected {len(mine)} {kind} request(s) from {from_actor_id}')
            return len(mine)

    def list_relationships(self,
                           user_ref: str,
                           direction: str = DIRECTION_OUTGOING,
                           kind: str = KIND_FOLLOW,
                           status: Optional[str] = None) -> List[Dict[str, Any]]:
        """List the caller's edges of one kind, with both endpoints summarized."""
        _validate_kind(kind)
        if direction not in (DIRECTION_OUTGOING, DIRECTION_INCOMING):
            raise InvalidArgumentError(f'Invalid direction: {direction}')

        with self.database.session() as session:
            my_ids = self.identity.owned_actor_ids_in(session, user_ref)
            q = session.query(Relationship).filter(Relationship.kind == kind)
            if direction == DIRECTION_OUTGOING:
                q = q.filter(Relationship.from_actor_id.in_(list(my_ids)))
            else:
                targets = set(my_ids)
                if kind == KIND_AGENT_ACCESS:
                    targets |= self.identity.owned_agent_actor_ids_in(session, user_ref)
                q = q.filter(Relationship.to_actor_id.in_(list(targets)))

            edges = q.order_by(Relationship.created_at.desc()).all()
            if status is not None:
                edges = [e for e in edges if e.status == status]

            summaries = self._summaries(session, {e.from_actor_id for e in edges} | {e.to_actor_id for e in edges})
            return [{
                'id': e.id,
                'kind': e.kind,
                'status': e.status,
                'from_actor_id': e.from_actor_id,
                'to_actor_id': e.to_actor_id,
                'created_at': e.created_at,
                'from_actor': summaries.get(e.from_actor_id),
                'to_actor': summaries.get(e.to_actor_id),
            } for e in edges]

    def delete_relationship(self, user_ref: str, to_actor_id: str, kind: str = KIND_FOLLOW) -> int:
        """Remove the caller's outgoing edge(s) of ``kind`` to ``to_actor_id``; returns how many."""
        _validate_kind(kind)

        with self.database.session() as session:
            my_ids = self.identity.owned_actor_ids_in(session, user_ref)
            deleted = (session.query(Relationship)
                       .filter(Relationship.from_actor_id.in_(list(my_ids)),
                               Relationship.to_actor_id == to_actor_id,
                               Relationship.kind == kind)
                       .delete(synchronize_session=False))
            if deleted:
                logger.info(f'{user_ref} removed {deleted} {kind} edge(s) to {to_actor_id}')
            return deleted

    def accessible_agents(self, user_ref: str) -> List[Dict[str, Any]]:
        """Agents the caller owns plus those granted through accepted agent_access."""
        with self.database.session() as session:
            owners = self.identity.owner_forms_in(session, user_ref)
            owned = session.query(Agent).filter(Agent.created_by.in_(list(owners))).all()

            my_ids = self.identity.owned_actor_ids_in(session, user_ref)
            grants = (session.query(Relationship)
                      .filter(Relationship.from_actor_id.in_(list(my_ids)),
                              Relationship.kind == KIND_AGENT_ACCESS)
                      .all())
            granted_actor_ids = [e.to_actor_id for e in grants if e.status == STATUS_ACCEPTED]
            granted_agent_ids = set()
            if granted_actor_ids:
                for actor in session.query(Actor).filter(Actor.id.in_(granted_actor_ids)).all():
                    agent_id = self.identity.agent_id_of_actor(actor)
                    if agent_id:
                        granted_agent_ids.add(agent_id)

            agents = {a.id: a for a in owned}
            missing = granted_agent_ids - set(agents)
            if missing:
                for agent in session.query(Agent).filter(Agent.id.in_(list(missing))).all():
                    agents[agent.id] = agent

            result = []
            for agent in sorted(agents.values(), key=lambda a: a.name or ''):
                entry = agent_to_dict(agent)
                entry['access'] = 'owner' if agent.created_by in owners else 'granted'
                result.append(entry)
            return result

    def connections(self, user_ref: str) -> List[Dict[str, Any]]:
        """Actors the caller follows and is followed by, both edges accepted."""
        with self.database.session() as session:
            my_ids = list(self.identity.owned_actor_ids_in(session, user_ref))
            outgoing = (session.query(Relationship)
                        .filter(Relationship.from_actor_id.in_(my_ids), Relationship.kind == KIND_FOLLOW)
                        .all())
            incoming = (session.query(Relationship)
                        .filter(Relationship.to_actor_id.in_(my_ids), Relationship.kind == KIND_FOLLOW)
                        .all())

            following = {e.to_actor_id for e in outgoing if e.status == STATUS_ACCEPTED}
            followers = {e.from_actor_id for e in incoming if e.status == STATUS_ACCEPTED}
            mutual = (following & followers) - set(my_ids)

            summaries = self._summaries(session, mutual)
            return sorted(summaries.values(), key=lambda s: (s['display_name'] or '', s['id']))

    def _summaries(self, session: Session, actor_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = list(actor_ids)
        if not ids:
            return {}
        actors = session.query(Actor).filter(Actor.id.in_(ids)).all()

        owner_refs = [a.owner_user_id for a in actors if a.type == ACTOR_USER and a.owner_user_id]
        users = {}
        if owner_refs:
            for user in session.query(User).filter((User.id.in_(owner_refs)) | (User.email.in_(owner_refs))).all():
                users[user.id] = user
                if user.email:
                    users[user.email] = user

        agent_ids = [a.agent_id for a in actors if a.type == ACTOR_AGENT and a.agent_id]
        agents = {}
        if agent_ids:
            agents = {a.id: a for a in session.query(Agent).filter(Agent.id.in_(agent_ids)).all()}

        summaries = {}
        for actor in actors:
            name = actor.display_name
            if not name and actor.type == ACTOR_USER:
                user = users.get(actor.owner_user_id)
                name = (user.name or user.email) if user else actor.handle
            elif not name and actor.agent_id in agents:
                name = agents[actor.agent_id].name
            summaries[actor.id] = {'id': actor.id, 'type': actor.type, 'display_name': name}
        return summaries

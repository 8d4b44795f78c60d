"""
One-time migrations for legacy identity rows.

Older data references users by email in owner/creator columns and may hold
several actors for the same agent. These passes rewrite owners to stable ids
and collapse agent actors to one per agent.
"""

from collections import defaultdict
from typing import Dict, List

from ..models.core import ACTOR_AGENT
from ..models.orm import Actor, Agent, FeedPost, Relationship, User
from ..utils.database import Database
from ..utils.logging_config import get_logger
from .identity import IdentityResolver

logger = get_logger(__name__)


def _canonical_actor(actors: List[Actor]) -> Actor:
    """Keep the oldest fully populated actor, else the oldest one."""
    ordered = sorted(actors, key=lambda a: (a.created_at, a.id))
    for actor in ordered:
        if actor.display_name and actor.owner_user_id:
            return actor
    return ordered[0]


class MaintenanceService:
    """Backfill and deduplication passes over the actor directory."""

    def __init__(self, database: Database, identity: IdentityResolver):
        self.database = database
        self.identity = identity

    def backfill_actor_owners(self) -> Dict[str, int]:
        """
        Rewrite email-shaped owners and creators to the user's stable id.

        Emails with no matching user are left untouched.

        Returns:
            Counts of rewritten actors and agents
        """
        counts = {'actors': 0, 'agents': 0}
        with self.database.session() as session:
            by_email = {u.email: u.id for u in session.query(User).filter(User.email.isnot(None)).all()}

            for actor in session.query(Actor).filter(Actor.owner_user_id.like('%@%')).all():
                canonical = by_email.get(actor.owner_user_id)
                if canonical:
                    actor.owner_user_id = canonical
                    counts['actors'] += 1

            for agent in session.query(Agent).filter(Agent.created_by.like('%@%')).all():
                canonical = by_email.get(agent.created_by)
                if canonical:
                    agent.created_by = canonical
                    counts['agents'] += 1

        logger.info(f"Backfilled owners: {counts['actors']} actor(s), {counts['agents']} agent(s)")
        return counts

    def backfill_agent_actors(self) -> Dict[str, int]:
        """Create the agent actor for every agent that has none yet."""
        counts = {'created': 0, 'existing': 0}
        with self.database.session() as session:
            with_actor = {row.agent_id for row in
                          session.query(Actor.agent_id).filter(Actor.type == ACTOR_AGENT, Actor.agent_id.isnot(None))}
            for agent in session.query(Agent).order_by(Agent.created_at).all():
                if agent.id in with_actor:
                    counts['existing'] += 1
                    continue
                self.identity.agent_actor_in(session, agent.id)
                counts['created'] += 1

        logger.info(f"Agent actors: {counts['created']} created, {counts['existing']} already present")
        return counts

    def collapse_duplicate_agent_actors(self) -> Dict[str, int]:
        """
        Keep one actor per agent and fold the others into it.

        Relationships and posts pointing at a duplicate are moved to the kept
        actor; an edge that would then collide with an existing one (or point
        at itself) is dropped instead.

        Returns:
            Counts of deleted actors, moved edges, dropped edges and moved posts
        """
        counts = {'actors_deleted': 0, 'edges_moved': 0, 'edges_dropped': 0, 'posts_moved': 0}
        with self.database.session() as session:
            groups = defaultdict(list)
            for actor in session.query(Actor).filter(Actor.type == ACTOR_AGENT).all():
                agent_id = self.identity.agent_id_of_actor(actor)
                if agent_id:
                    groups[agent_id].append(actor)

            for agent_id, actors in groups.items():
                keeper = _canonical_actor(actors)
                if not keeper.agent_id:
                    keeper.agent_id = agent_id
                if len(actors) < 2:
                    continue
                duplicates = {a.id for a in actors if a.id != keeper.id}
                self._fold_into(session, keeper.id, duplicates, counts)

                for actor in actors:
                    if actor.id in duplicates:
                        session.delete(actor)
                        counts['actors_deleted'] += 1
                session.flush()
                logger.info(f'Agent {agent_id}: kept actor {keeper.id}, removed {len(duplicates)} duplicate(s)')

        logger.info(f'Collapsed duplicate agent actors: {counts}')
        return counts

    def _fold_into(self, session, keeper_id: str, duplicates: set, counts: Dict[str, int]) -> None:
        group = duplicates | {keeper_id}
        edges = (session.query(Relationship)
                 .filter(Relationship.from_actor_id.in_(list(group)) | Relationship.to_actor_id.in_(list(group)))
                 .order_by(Relationship.created_at)
                 .all())

        taken = {(e.from_actor_id, e.to_actor_id, e.kind) for e in edges
                 if e.from_actor_id not in duplicates and e.to_actor_id not in duplicates}
        for edge in edges:
            if edge.from_actor_id not in duplicates and edge.to_actor_id not in duplicates:
                continue
            from_id = keeper_id if edge.from_actor_id in duplicates else edge.from_actor_id
            to_id = keeper_id if edge.to_actor_id in duplicates else edge.to_actor_id
            triple = (from_id, to_id, edge.kind)
            if from_id == to_id or triple in taken:
                session.delete(edge)
                counts['edges_dropped'] += 1
                continue
            taken.add(triple)
            edge.from_actor_id, edge.to_actor_id = from_id, to_id
            counts['edges_moved'] += 1
        session.flush()

        for post in session.query(FeedPost).filter(FeedPost.actor_id.in_(list(duplicates))).all():
            post.actor_id = keeper_id
            counts['posts_moved'] += 1

    def run_all(self) -> Dict[str, Dict[str, int]]:
        """Run every pass in dependency order."""
        return {
            'owners': self.backfill_actor_owners(),
            'duplicates': self.collapse_duplicate_agent_actors(),
            'agent_actors': self.backfill_agent_actors(),
        }

"""
Tests for relationship creation, approval, rejection and listing.
"""

import pytest

from conftest import ALICE, ALICE_AGENT, ALICE_EMAIL, BOB, BOB_AGENT, BOB_EMAIL, CAROL
from socialcore.models.core import (DIRECTION_INCOMING, DIRECTION_OUTGOING, KIND_AGENT_ACCESS, KIND_BLOCK,
                                    KIND_FOLLOW, STATUS_ACCEPTED, STATUS_PENDING, STATUS_REJECTED)
from socialcore.models.orm import Agent, Relationship
from socialcore.services.errors import ForbiddenError, InvalidArgumentError, NotFoundError


def _edges(database, kind=None):
    with database.session() as session:
        q = session.query(Relationship)
        if kind:
            q = q.filter(Relationship.kind == kind)
        return [(e.from_actor_id, e.to_actor_id, e.kind, e.status) for e in q.all()]


@pytest.fixture
def actors(service):
    return {
        'alice': service.resolve_primary_actor(ALICE),
        'bob': service.resolve_primary_actor(BOB),
        'carol': service.resolve_primary_actor(CAROL),
        'alice_agent': service.resolve_agent_actor(ALICE_AGENT),
        'bob_agent': service.resolve_agent_actor(BOB_AGENT),
    }


class TestCreateRelationship:
    """Status rules, validation and idempotency."""

    def test_follow_user_is_pending(self, service, actors):
        assert service.create_relationship(ALICE, actors['bob']) == STATUS_PENDING

    def test_follow_agent_is_accepted(self, service, actors):
        assert service.create_relationship(CAROL, actors['bob_agent']) == STATUS_ACCEPTED

    def test_repeated_follow_stores_one_edge(self, service, actors, seeded):
        for _ in range(3):
            assert service.create_relationship(ALICE, actors['bob']) == STATUS_PENDING
        assert _edges(seeded) == [(actors['alice'], actors['bob'], KIND_FOLLOW, STATUS_PENDING)]

    def test_email_ref_reuses_existing_edge(self, service, actors, seeded):
        service.create_relationship(ALICE, actors['bob'])
        service.create_relationship(ALICE_EMAIL, actors['bob'])
        assert len(_edges(seeded)) == 1

    def test_self_relationship_rejected(self, service, actors, seeded):
        with pytest.raises(InvalidArgumentError):
            service.create_relationship(ALICE, actors['alice'])
        assert _edges(seeded) == []

    def test_unknown_kind_rejected(self, service, actors, seeded):
        with pytest.raises(InvalidArgumentError):
            service.create_relationship(ALICE, actors['bob'], kind='befriend')
        assert _edges(seeded) == []

    def test_missing_target_rejected(self, service):
        with pytest.raises(InvalidArgumentError):
            service.create_relationship(ALICE)

    def test_unknown_target(self, service, actors, seeded):
        with pytest.raises(NotFoundError):
            service.create_relationship(ALICE, 'actor-missing')
        with pytest.raises(NotFoundError):
            service.create_relationship(ALICE, agent_id='agent-missing', kind=KIND_AGENT_ACCESS)
        assert _edges(seeded) == []

    def test_block_user_follows_user_target_rule(self, service, actors):
        assert service.create_relationship(ALICE, actors['carol'], kind=KIND_BLOCK) == STATUS_PENDING


class TestAgentAccess:
    """agent_access needs the agent owner's approval unless the requester is the owner."""

    def test_owner_is_accepted_immediately(self, service, actors, seeded):
        # Alice's agent records its creator by email; ownership still matches
        assert service.create_relationship(ALICE, agent_id=ALICE_AGENT, kind=KIND_AGENT_ACCESS) == STATUS_ACCEPTED
        assert _edges(seeded, KIND_AGENT_ACCESS) == [
            (actors['alice'], actors['alice_agent'], KIND_AGENT_ACCESS, STATUS_ACCEPTED)]

    def test_request_approve_repeat(self, service, actors, seeded):
        assert service.create_relationship(ALICE, agent_id=BOB_AGENT, kind=KIND_AGENT_ACCESS) == STATUS_PENDING
        assert service.approve(BOB, actors['alice'], KIND_AGENT_ACCESS) == 1
        assert service.create_relationship(ALICE, agent_id=BOB_AGENT, kind=KIND_AGENT_ACCESS) == STATUS_ACCEPTED
        assert _edges(seeded, KIND_AGENT_ACCESS) == [
            (actors['alice'], actors['bob_agent'], KIND_AGENT_ACCESS, STATUS_ACCEPTED)]

    def test_one_approval_covers_several_agents(self, service, actors, seeded):
        with seeded.session() as session:
            session.add(Agent(id='agent-bob-2', name='Tally', instructions='You count things.', created_by=BOB_EMAIL))
        second_agent = service.resolve_agent_actor('agent-bob-2')

        assert service.create_relationship(ALICE, agent_id=BOB_AGENT, kind=KIND_AGENT_ACCESS) == STATUS_PENDING
        assert service.create_relationship(ALICE, agent_id='agent-bob-2', kind=KIND_AGENT_ACCESS) == STATUS_PENDING

        assert service.approve(BOB, actors['alice'], KIND_AGENT_ACCESS) == 2
        assert sorted(_edges(seeded, KIND_AGENT_ACCESS)) == sorted([
            (actors['alice'], actors['bob_agent'], KIND_AGENT_ACCESS, STATUS_ACCEPTED),
            (actors['alice'], second_agent, KIND_AGENT_ACCESS, STATUS_ACCEPTED),
        ])
        assert {a['id'] for a in service.accessible_agents(ALICE) if a['access'] == 'granted'} == {
            BOB_AGENT, 'agent-bob-2'}

    def test_non_owner_cannot_approve(self, service, actors, seeded):
        service.create_relationship(ALICE, agent_id=BOB_AGENT, kind=KIND_AGENT_ACCESS)
        with pytest.raises(ForbiddenError):
            service.approve(CAROL, actors['alice'], KIND_AGENT_ACCESS)
        with pytest.raises(ForbiddenError):
            service.reject(CAROL, actors['alice'], KIND_AGENT_ACCESS)
        assert _edges(seeded, KIND_AGENT_ACCESS)[0][3] == STATUS_PENDING

    def test_repeated_approve_is_noop(self, service, actors):
        service.create_relationship(ALICE, agent_id=BOB_AGENT, kind=KIND_AGENT_ACCESS)
        assert service.approve(BOB, actors['alice'], KIND_AGENT_ACCESS) == 1
        assert service.approve(BOB, actors['alice'], KIND_AGENT_ACCESS) == 0

    def test_approve_without_request(self, service, actors):
        with pytest.raises(NotFoundError):
            service.approve(BOB, actors['carol'], KIND_AGENT_ACCESS)

    def test_owner_rejects(self, service, actors, seeded):
        service.create_relationship(ALICE, agent_id=BOB_AGENT, kind=KIND_AGENT_ACCESS)
        assert service.reject(BOB, actors['alice'], KIND_AGENT_ACCESS) == 1
        assert _edges(seeded, KIND_AGENT_ACCESS)[0][3] == STATUS_REJECTED
        with pytest.raises(NotFoundError):
            service.approve(BOB, actors['alice'], KIND_AGENT_ACCESS)

    def test_incoming_requests_listed_for_owner(self, service, actors):
        service.create_relationship(ALICE, agent_id=BOB_AGENT, kind=KIND_AGENT_ACCESS)
        incoming = service.list_relationships(BOB, DIRECTION_INCOMING, KIND_AGENT_ACCESS, STATUS_PENDING)
        assert len(incoming) == 1
        assert incoming[0]['from_actor'] == {'id': actors['alice'], 'type': 'user', 'display_name': 'Alice'}
        assert incoming[0]['to_actor']['display_name'] == 'Ledger'


class TestApproveFollow:
    """Approving a follow makes the connection mutual."""

    def test_approve_creates_reciprocal(self, service, actors, seeded):
        service.create_relationship(ALICE, actors['bob'])
        assert service.approve(BOB, actors['alice']) == 2
        assert sorted(_edges(seeded)) == sorted([
            (actors['alice'], actors['bob'], KIND_FOLLOW, STATUS_ACCEPTED),
            (actors['bob'], actors['alice'], KIND_FOLLOW, STATUS_ACCEPTED),
        ])

    def test_approve_promotes_pending_reciprocal(self, service, actors, seeded):
        service.create_relationship(ALICE, actors['bob'])
        service.create_relationship(BOB, actors['alice'])
        assert service.approve(BOB, actors['alice']) == 2
        assert {e[3] for e in _edges(seeded)} == {STATUS_ACCEPTED}
        assert len(_edges(seeded)) == 2

    def test_approve_retry_is_safe(self, service, actors, seeded):
        service.create_relationship(ALICE, actors['bob'])
        service.approve(BOB, actors['alice'])
        assert service.approve(BOB, actors['alice']) == 0
        assert len(_edges(seeded)) == 2

    def test_approve_without_request(self, service, actors):
        with pytest.raises(NotFoundError):
            service.approve(BOB, actors['carol'])

    def test_reject_is_terminal(self, service, actors, seeded):
        service.create_relationship(ALICE, actors['bob'])
        assert service.reject(BOB, actors['alice']) == 1
        assert _edges(seeded) == [(actors['alice'], actors['bob'], KIND_FOLLOW, STATUS_REJECTED)]
        with pytest.raises(NotFoundError):
            service.approve(BOB, actors['alice'])
        with pytest.raises(NotFoundError):
            service.reject(BOB, actors['alice'])
        # Asking again does not reopen the request
        assert service.create_relationship(ALICE, actors['bob']) == STATUS_REJECTED


class TestQueries:
    """Listing, deletion, accessible agents and connections."""

    def test_list_outgoing_with_status_filter(self, service, actors):
        service.create_relationship(ALICE, actors['bob'])
        service.create_relationship(ALICE, actors['bob_agent'])

        everything = service.list_relationships(ALICE, DIRECTION_OUTGOING, KIND_FOLLOW)
        accepted = service.list_relationships(ALICE, DIRECTION_OUTGOING, KIND_FOLLOW, STATUS_ACCEPTED)

        assert {r['to_actor_id'] for r in everything} == {actors['bob'], actors['bob_agent']}
        assert [r['to_actor_id'] for r in accepted] == [actors['bob_agent']]

    def test_list_incoming(self, service, actors):
        service.create_relationship(ALICE, actors['bob'])
        incoming = service.list_relationships(BOB, DIRECTION_INCOMING, KIND_FOLLOW)
        assert [r['from_actor_id'] for r in incoming] == [actors['alice']]
        assert service.list_relationships(CAROL, DIRECTION_INCOMING, KIND_FOLLOW) == []

    def test_list_invalid_direction(self, service):
        with pytest.raises(InvalidArgumentError):
            service.list_relationships(ALICE, 'sideways')

    def test_delete_relationship(self, service, actors, seeded):
        service.create_relationship(ALICE, actors['bob_agent'])
        assert service.delete_relationship(ALICE, actors['bob_agent']) == 1
        assert service.delete_relationship(ALICE, actors['bob_agent']) == 0
        assert _edges(seeded) == []

    def test_accessible_agents(self, service, actors):
        assert [a['id'] for a in service.accessible_agents(ALICE)] == [ALICE_AGENT]

        service.create_relationship(ALICE, agent_id=BOB_AGENT, kind=KIND_AGENT_ACCESS)
        assert [a['id'] for a in service.accessible_agents(ALICE)] == [ALICE_AGENT]

        service.approve(BOB, actors['alice'], KIND_AGENT_ACCESS)
        agents = {a['id']: a['access'] for a in service.accessible_agents(ALICE)}
        assert agents == {ALICE_AGENT: 'owner', BOB_AGENT: 'granted'}

    def test_connections_are_mutual(self, service, actors):
        service.create_relationship(ALICE, actors['bob'])
        service.create_relationship(ALICE, actors['bob_agent'])
        assert service.connections(ALICE) == []

        service.approve(BOB, actors['alice'])
        assert [c['id'] for c in service.connections(ALICE)] == [actors['bob']]
        assert [c['id'] for c in service.connections(BOB)] == [actors['alice']]

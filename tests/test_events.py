"""
Tests for the domain event dispatcher.
"""

from socialcore.models.core import AgentRepliedPublicly, MonitorProducedPost
from socialcore.services.events import EventDispatcher


def _event():
    return AgentRepliedPublicly(agent_id='a1', source_post_id='p1')


class TestEventDispatcher:
    """Handlers run in registration order; failures are contained."""

    def test_dispatch_in_order(self):
        dispatcher = EventDispatcher()
        seen = []
        dispatcher.register(AgentRepliedPublicly, lambda e: seen.append('first') or 1)
        dispatcher.register(AgentRepliedPublicly, lambda e: seen.append('second') or 2)

        assert dispatcher.dispatch(_event()) == [1, 2]
        assert seen == ['first', 'second']

    def test_failing_handler_does_not_stop_others(self):
        dispatcher = EventDispatcher()

        def broken(event):
            raise RuntimeError('handler bug')

        dispatcher.register(AgentRepliedPublicly, broken)
        dispatcher.register(AgentRepliedPublicly, lambda e: e.agent_id)

        assert dispatcher.dispatch(_event()) == [None, 'a1']

    def test_routes_by_type(self):
        dispatcher = EventDispatcher()
        dispatcher.register(MonitorProducedPost, lambda e: 'monitor')
        assert dispatcher.dispatch(_event()) == []
        assert dispatcher.handlers_for(AgentRepliedPublicly) == []
        assert len(dispatcher.handlers_for(MonitorProducedPost)) == 1

    def test_service_wiring(self, service):
        assert service.dispatcher.handlers_for(AgentRepliedPublicly) == [service.monitors.handle_agent_replied]
        assert service.dispatcher.handlers_for(MonitorProducedPost) == [service.notifications.handle_monitor_post]

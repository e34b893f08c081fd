"""Tests for the event bus."""

from switchboard.events import EventBus, EventType

from conftest import FakeClock


class TestEventBus:
    """Test publish, subscribe and drain."""

    def setup_method(self):
        self.clock = FakeClock()
        self.bus = EventBus(buffer_size=3, clock=self.clock)

    def test_publish_buffers_in_order(self):
        self.bus.publish(EventType.COST_TRACKED, cost=0.1)
        self.clock.advance(5)
        self.bus.publish(EventType.BUDGET_ALERT, level="info")

        events = self.bus.peek()
        assert [e.type for e in events] == [EventType.COST_TRACKED, EventType.BUDGET_ALERT]
        assert events[0].sequence < events[1].sequence
        assert events[1].timestamp - events[0].timestamp == 5
        assert events[1].data == {"level": "info"}

    def test_subscriber_filtering(self):
        """Subscribers only see the types they asked for."""
        seen = []
        self.bus.subscribe(seen.append, types=[EventType.BUDGET_ALERT])

        self.bus.publish(EventType.COST_TRACKED, cost=0.1)
        self.bus.publish(EventType.BUDGET_ALERT, level="warning")

        assert [e.type for e in seen] == [EventType.BUDGET_ALERT]

    def test_unsubscribe(self):
        seen = []
        sub = self.bus.subscribe(seen.append)
        self.bus.publish(EventType.DAY_ROLLED)
        sub.unsubscribe()
        self.bus.publish(EventType.DAY_ROLLED)
        assert len(seen) == 1

    def test_failing_subscriber_does_not_break_publish(self):
        """A raising callback is logged and the others still run."""
        seen = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        self.bus.subscribe(broken)
        self.bus.subscribe(seen.append)

        event = self.bus.publish(EventType.CIRCUIT_OPENED, provider="openai")
        assert seen == [event]

    def test_drain_by_type(self):
        """Draining one type leaves the rest buffered."""
        self.bus.publish(EventType.COST_TRACKED)
        self.bus.publish(EventType.BUDGET_ALERT)
        self.bus.publish(EventType.COST_TRACKED)

        drained = self.bus.drain([EventType.COST_TRACKED])
        assert len(drained) == 2
        assert [e.type for e in self.bus.peek()] == [EventType.BUDGET_ALERT]

        assert len(self.bus.drain()) == 1
        assert self.bus.peek() == []

    def test_buffer_is_bounded(self):
        for i in range(5):
            self.bus.publish(EventType.COST_TRACKED, n=i)
        assert [e.data["n"] for e in self.bus.peek()] == [2, 3, 4]

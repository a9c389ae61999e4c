"""
Tests for the internal EventChannel.
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.streaming.event_channel import EventChannel


class TestEventChannel:

    def test_publish_calls_handlers_in_subscription_order(self):
        channel = EventChannel()
        calls = []
        channel.subscribe("topic", lambda value: calls.append(("first", value)))
        channel.subscribe("topic", lambda value: calls.append(("second", value)))

        assert channel.publish("topic", 42) == 2
        assert calls == [("first", 42), ("second", 42)]

    def test_publish_without_subscribers_returns_zero(self):
        assert EventChannel().publish("nobody", "x") == 0

    def test_unsubscribe_callable_removes_handler(self):
        channel = EventChannel()
        handler = MagicMock()
        unsubscribe = channel.subscribe("topic", handler)

        unsubscribe()
        channel.publish("topic")

        handler.assert_not_called()
        assert not channel.has_subscribers("topic")

    def test_unsubscribe_unknown_handler_is_noop(self):
        channel = EventChannel()
        channel.unsubscribe("topic", MagicMock())

    def test_handler_exception_reaches_publisher(self):
        channel = EventChannel()
        channel.subscribe("topic", MagicMock(side_effect=TypeError("boom")))

        with pytest.raises(TypeError):
            channel.publish("topic")

    def test_handler_may_unsubscribe_during_publish(self):
        channel = EventChannel()
        second = MagicMock()
        unsubscribe_holder = {}

        def first():
            unsubscribe_holder["unsub"]()

        unsubscribe_holder["unsub"] = channel.subscribe("topic", first)
        channel.subscribe("topic", second)

        assert channel.publish("topic") == 2
        second.assert_called_once()
        assert channel.publish("topic") == 1

    def test_clear_drops_everything(self):
        channel = EventChannel()
        channel.subscribe("a", MagicMock())
        channel.subscribe("b", MagicMock())
        channel.clear()

        assert channel.publish("a") == 0
        assert channel.publish("b") == 0

"""
Internal publish/subscribe channel.

Decouples "something happened" (a progress update, a result, a timeout, a
disconnect) from the code that reacts to it. Handlers run synchronously in
subscription order and their exceptions reach the publisher.
"""

from typing import Any, Callable

Handler = Callable[..., Any]


class EventChannel:
    """A plain topic -> handlers dispatch table."""

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it again."""
        self._handlers.setdefault(topic, []).append(handler)
        return lambda: self.unsubscribe(topic, handler)

    def unsubscribe(self, topic: str, handler: Handler):
        handlers = self._handlers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[topic]

    def publish(self, topic: str, *args: Any) -> int:
        """Call every handler of `topic`; returns how many ran."""
        handlers = list(self._handlers.get(topic, ()))
        for handler in handlers:
            handler(*args)
        return len(handlers)

    def has_subscribers(self, topic: str) -> bool:
        return bool(self._handlers.get(topic))

    def clear(self):
        self._handlers.clear()

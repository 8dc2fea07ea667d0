"""Minimal synchronous observer registry used by transports and output streams."""
from collections import defaultdict
from typing import Any, Callable

Handler = Callable[..., Any]


class EventEmitter:
    """Named-event subscriptions; handlers run in registration order."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Subscribe ``handler``; returns a callable that unsubscribes it."""
        self._handlers[event].append(handler)
        return lambda: self.off(event, handler)

    def once(self, event: str, handler: Handler) -> Callable[[], None]:
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return handler(*args)

        return self.on(event, wrapper)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every handler for ``event``; returns False if there were none."""
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            handler(*args)
        return bool(handlers)

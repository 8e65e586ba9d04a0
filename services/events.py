"""
Minimal publish/subscribe plumbing.

Every subscription returns a ListenerHandle; callers must unsubscribe on
teardown (or use the handle as a context manager).
"""
import logging
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class ListenerHandle:
    def __init__(self, registry: "ListenerRegistry", handler: Callable[..., Any]):
        self._registry = registry
        self._handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._registry._remove(self._handler)
            self.active = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()


class ListenerRegistry:
    """Synchronous fan-out to registered handlers"""

    def __init__(self, name: str = "listeners"):
        self.name = name
        self._handlers: List[Callable[..., Any]] = []

    def subscribe(self, handler: Callable[..., Any]) -> ListenerHandle:
        self._handlers.append(handler)
        return ListenerHandle(self, handler)

    def _remove(self, handler: Callable[..., Any]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def publish(self, *args, **kwargs) -> None:
        # Copy so handlers may unsubscribe while being notified
        for handler in list(self._handlers):
            try:
                handler(*args, **kwargs)
            except Exception:
                logger.exception(f"Listener on {self.name} raised; continuing")

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)


class SubscriptionChangeFeed(ListenerRegistry):
    """Publishes the user id whose subscription row was written"""

    def __init__(self):
        super().__init__(name="subscription changes")

    def notify(self, user_id: str) -> None:
        self.publish(user_id)

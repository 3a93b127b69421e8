"""Application layer - Publish/subscribe of lifecycle events."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional

from miraveja_orchestrator.domain import LifecycleEvent, ServiceEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[ServiceEvent], Any]


class EventBus:
    """Dispatches lifecycle events to sync or async listeners.

    Listener failures are logged and never reach the operation that emitted
    the event.

    Example:
        >>> bus = EventBus()
        >>>
        >>> @bus.on(LifecycleEvent.SERVICE_STARTED)
        ... def log_start(event):
        ...     print(f"{event.service_name} started in {event.data['duration']:.3f}s")
    """

    def __init__(self) -> None:
        self._listeners: Dict[LifecycleEvent, List[EventListener]] = {event: [] for event in LifecycleEvent}
        self._wildcard: List[EventListener] = []

    def on(self, event: LifecycleEvent, listener: Optional[EventListener] = None) -> Any:
        """Subscribe a listener to an event, directly or as a decorator.

        Args:
            event: The event to listen for.
            listener: The callable to register. When omitted, a decorator is returned.
        """
        if listener is None:

            def decorator(func: EventListener) -> EventListener:
                self._listeners[LifecycleEvent(event)].append(func)
                return func

            return decorator

        self._listeners[LifecycleEvent(event)].append(listener)
        return listener

    def on_any(self, listener: EventListener) -> EventListener:
        """Subscribe a listener to every event."""
        self._wildcard.append(listener)
        return listener

    def off(self, event: LifecycleEvent, listener: EventListener) -> None:
        """Unsubscribe a listener. Unknown listeners are ignored."""
        listeners = self._listeners[LifecycleEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        if listener in self._wildcard:
            self._wildcard.remove(listener)

    def listener_count(self, event: Optional[LifecycleEvent] = None) -> int:
        if event is None:
            return sum(len(listeners) for listeners in self._listeners.values()) + len(self._wildcard)
        return len(self._listeners[LifecycleEvent(event)])

    def clear(self) -> None:
        """Remove every listener."""
        for listeners in self._listeners.values():
            listeners.clear()
        self._wildcard.clear()

    async def emit(
        self,
        event: LifecycleEvent,
        service_name: Optional[str] = None,
        error: Optional[BaseException] = None,
        **data: Any,
    ) -> ServiceEvent:
        """Build a ``ServiceEvent`` and deliver it to every listener in subscription order.

        Returns:
            The event that was delivered.
        """
        payload = ServiceEvent(event=event, service_name=service_name, error=error, data=data)
        for listener in self._subscribers(event):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener %r failed while handling '%s'", listener, event.value)
        return payload

    def publish(
        self,
        event: LifecycleEvent,
        service_name: Optional[str] = None,
        error: Optional[BaseException] = None,
        **data: Any,
    ) -> List[Coroutine[Any, Any, None]]:
        """Deliver an event from synchronous code.

        Sync listeners run immediately. Awaitables returned by async listeners
        are handed back as coroutines for the caller to schedule.
        """
        payload = ServiceEvent(event=event, service_name=service_name, error=error, data=data)
        pending = []
        for listener in self._subscribers(event):
            try:
                result = listener(payload)
            except Exception:
                logger.exception("Listener %r failed while handling '%s'", listener, event.value)
                continue
            if inspect.isawaitable(result):
                pending.append(self._guard(result, listener, event))
        return pending

    def _subscribers(self, event: LifecycleEvent) -> List[EventListener]:
        return list(self._listeners[event]) + list(self._wildcard)

    @staticmethod
    async def _guard(awaitable: Awaitable[Any], listener: EventListener, event: LifecycleEvent) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("Listener %r failed while handling '%s'", listener, event.value)

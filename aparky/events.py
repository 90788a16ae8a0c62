from enum import Enum, auto
from typing import Callable, Dict, Any, Optional
import threading
import uuid
import weakref
import inspect
import logging

logger = logging.getLogger(__name__)


class AppEvent(Enum):
    """Events emitted by the timer engine for the UI layer."""
    TIMER_SCHEDULED = auto()
    TIMER_CANCELLED = auto()
    TIMER_EXTENDED = auto()
    TIMER_REMINDER = auto()
    TIMER_EXPIRED = auto()
    TIMERS_SYNCED = auto()
    TIMERS_RESTORED = auto()
    ALERT_SCHEDULED = auto()
    ALERT_CANCELLED = auto()
    ALERT_FIRED = auto()
    ALERT_DELIVERED = auto()
    ALERT_NOT_SHOWN = auto()
    AGENT_REGISTERED = auto()
    PERMISSION_CHANGED = auto()
    IN_APP_MESSAGE = auto()
    VISIBILITY_CHANGED = auto()


class Subscription:
    """Handle returned by EventBus.subscribe().

    Holds the callback strongly when the subscription was made with
    strong=True (or for lambdas/closures), so the handle must be kept alive
    and unsubscribed when done.
    """

    def __init__(
        self,
        bus: "EventBus",
        event: AppEvent,
        subscription_id: str,
        strong_ref: Optional[Callable[[Any], None]] = None,
    ):
        self._bus = bus
        self._event = event
        self._subscription_id = subscription_id
        self._strong_ref = strong_ref
        self._active = True

    @property
    def id(self) -> str:
        return self._subscription_id

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._bus._remove(self._event, self._subscription_id)
            self._active = False
            self._strong_ref = None


def _make_ref(callback: Callable[[Any], None], on_dead: Callable[[Any], None]) -> Callable[[], Any]:
    """Weak reference for methods and functions, strong fallback for builtins."""
    if inspect.ismethod(callback):
        return weakref.WeakMethod(callback, on_dead)
    try:
        return weakref.ref(callback, on_dead)
    except TypeError:
        return lambda: callback


class EventBus:
    """Process-wide observer hub.

    Bound methods are held weakly so a destroyed listener drops out on its
    own; lambdas and closures are held strongly through their Subscription.
    A failing listener is logged and does not stop delivery to the others.
    """
    _instance: Optional["EventBus"] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> "EventBus":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._listeners: Dict[AppEvent, Dict[str, Callable[[], Any]]] = {}
        return cls._instance

    def subscribe(
        self,
        event: AppEvent,
        callback: Callable[[Any], None],
        strong: bool = False,
    ) -> Subscription:
        """Subscribe callback to event and return the Subscription handle.

        Example:
            sub = event_bus.subscribe(AppEvent.TIMER_EXPIRED, self.on_expired)
            ...
            sub.unsubscribe()
        """
        listeners = self._listeners.setdefault(event, {})
        subscription_id = str(uuid.uuid4())

        is_lambda = getattr(callback, "__name__", "") == "<lambda>"
        is_closure = not inspect.ismethod(callback) and getattr(callback, "__closure__", None) is not None
        if (is_lambda or is_closure) and not strong:
            strong = True

        def on_dead(_ref: Any) -> None:
            logger.debug(f"EventBus: listener for {event.name} was garbage collected")
            self._remove(event, subscription_id)

        listeners[subscription_id] = _make_ref(callback, on_dead)
        return Subscription(self, event, subscription_id, strong_ref=callback if strong else None)

    def _remove(self, event: AppEvent, subscription_id: str) -> None:
        listeners = self._listeners.get(event)
        if listeners is not None:
            listeners.pop(subscription_id, None)

    def emit(self, event: AppEvent, data: Any = None) -> None:
        """Call every live listener of event with data."""
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for sub_id, ref in list(listeners.items()):
            callback = ref()
            if callback is None:
                listeners.pop(sub_id, None)
                continue
            try:
                callback(data)
            except Exception as e:  # Intentionally broad: one bad listener must not block the rest
                logger.error(f"Error in event handler for {event.name}: {e}")

    def listener_count(self, event: AppEvent) -> int:
        return len(self._listeners.get(event, {}))

    def clear(self) -> None:
        """Drop every subscription. Used between tests."""
        self._listeners.clear()


event_bus = EventBus()

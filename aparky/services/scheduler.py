"""In-process alert scheduler.

Alerts are keyed by a caller-chosen logical id ("reminder-<location>",
"expiry-<location>"). Scheduling an id that is already pending replaces it, so
at most one alert per id is ever live. Local alerts ride on loop.call_later
handles; alerts handed off to the background agent are tracked only so that a
later cancel can be relayed.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from events import event_bus, AppEvent
from helpers import now_ms, run_async
from models.entities import AlertOptions, PendingAlert
from services.background_agent import AgentError, BackgroundAgentBridge
from services.delivery import NotificationDelivery

logger = logging.getLogger(__name__)


class _Entry:
    """A pending alert and the handle that fires it."""
    __slots__ = ("alert", "handle")

    def __init__(self, alert: PendingAlert) -> None:
        self.alert = alert
        self.handle: Optional[asyncio.TimerHandle] = None


class NotificationScheduler:
    """Holds pending alerts and shows them through NotificationDelivery when due."""

    def __init__(
        self,
        delivery: NotificationDelivery,
        bridge: Optional[BackgroundAgentBridge] = None,
        clock: Callable[[], int] = now_ms,
        async_scheduler: Optional[Callable] = None,
    ) -> None:
        self._delivery = delivery
        self._bridge = bridge if bridge is not None else delivery.bridge
        self._clock = clock
        self._schedule_async = async_scheduler or run_async
        self._pending: Dict[str, _Entry] = {}
        self._handed_off: Dict[str, PendingAlert] = {}

    @property
    def delivery(self) -> NotificationDelivery:
        return self._delivery

    def schedule(
        self,
        alert_id: str,
        delay_ms: int,
        title: str,
        body: str,
        options: Optional[AlertOptions] = None,
    ) -> bool:
        """Arm an alert delay_ms from now, replacing any alert with the same id.

        Must be called from within the running event loop.

        Returns:
            False when the delay is not positive (nothing is armed).
        """
        if delay_ms <= 0:
            logger.warning(f"Not scheduling {alert_id}: delay {delay_ms}ms is not in the future")
            return False

        self.cancel(alert_id)

        alert = PendingAlert(
            id=alert_id,
            fire_at=self._clock() + delay_ms,
            title=title,
            body=body,
            options=options or AlertOptions(tag=alert_id),
        )
        entry = _Entry(alert)
        loop = asyncio.get_running_loop()
        entry.handle = loop.call_later(delay_ms / 1000, self._fire, entry)
        self._pending[alert_id] = entry

        logger.debug(f"Scheduled {alert_id} in {delay_ms}ms")
        event_bus.emit(AppEvent.ALERT_SCHEDULED, {"alert_id": alert_id, "fire_at": alert.fire_at})
        return True

    def _fire(self, entry: _Entry) -> None:
        alert_id = entry.alert.id
        if self._pending.get(alert_id) is not entry:
            return
        del self._pending[alert_id]
        logger.info(f"Alert {alert_id} due")
        event_bus.emit(AppEvent.ALERT_FIRED, {"alert_id": alert_id})
        self._schedule_async(self._deliver, entry.alert)

    async def _deliver(self, alert: PendingAlert) -> None:
        await self._delivery.show(alert.title, alert.body, alert.options)

    def cancel(self, alert_id: str) -> None:
        """Disarm an alert. Unknown ids are a no-op."""
        entry = self._pending.pop(alert_id, None)
        if entry is not None:
            if entry.handle is not None:
                entry.handle.cancel()
            logger.debug(f"Cancelled {alert_id}")
            event_bus.emit(AppEvent.ALERT_CANCELLED, {"alert_id": alert_id})

        if self._handed_off.pop(alert_id, None) is not None:
            self._schedule_async(self._bridge.relay_cancel, alert_id)

    def cancel_all(self) -> None:
        for alert_id in list(self._pending) + list(self._handed_off):
            self.cancel(alert_id)

    def shutdown(self) -> None:
        """Disarm local handles. Handed-off alerts stay with the agent."""
        for entry in self._pending.values():
            if entry.handle is not None:
                entry.handle.cancel()
        if self._pending:
            logger.info(f"Disarmed {len(self._pending)} local alerts on shutdown")
        self._pending.clear()

    def get_pending(self, alert_id: str) -> Optional[PendingAlert]:
        entry = self._pending.get(alert_id)
        if entry is not None:
            return entry.alert
        return self._handed_off.get(alert_id)

    def list_pending(self) -> List[PendingAlert]:
        """Alerts still to fire, local or handed off, soonest first."""
        now = self._clock()
        for alert_id, alert in list(self._handed_off.items()):
            if alert.fire_at <= now:
                del self._handed_off[alert_id]
        alerts = [entry.alert for entry in self._pending.values()]
        alerts.extend(self._handed_off.values())
        return sorted(alerts, key=lambda a: a.fire_at)

    def list_pending_ids(self) -> List[str]:
        return [alert.id for alert in self.list_pending()]

    async def hand_off_pending(self) -> int:
        """Relay local alerts to the background agent so they fire while hidden.

        Alerts the agent rejects stay armed locally.

        Returns:
            Number of alerts handed off.
        """
        if not self._bridge.is_registered:
            return 0

        count = 0
        for alert_id, entry in list(self._pending.items()):
            alert = entry.alert
            try:
                await self._bridge.relay_schedule(
                    alert_id, alert.fire_at, alert.title, alert.body, alert.options
                )
            except AgentError as e:
                logger.warning(f"Keeping {alert_id} local, hand-off failed: {e}")
                continue

            if self._pending.get(alert_id) is not entry:
                # Replaced or cancelled while relaying; the agent copy is stale
                await self._bridge.relay_cancel(alert_id)
                continue
            if entry.handle is not None:
                entry.handle.cancel()
            del self._pending[alert_id]
            self._handed_off[alert_id] = alert
            count += 1

        if count:
            logger.info(f"Handed off {count} alerts to background agent")
        return count

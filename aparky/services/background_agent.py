"""Bridge to the platform background execution agent.

The agent is the component that can display alerts while Aparky is not the
foreground process (on Android, AlarmManager via the Flet agent control in
services/flet_agent.py). The bridge owns its registration, relays schedule and
cancel instructions to it, and checks afterwards that a relayed alert really
reached the screen.

Any object with these async methods can act as agent:
    register() -> str                     "ok" on success
    schedule_notification(alert_id, title, body, scheduled_time_ms, options) -> str
    cancel(alert_id) -> str
    get_active_notifications() -> list[str]
    check_permissions() -> str            "granted" / "denied" / "undetermined"
    request_permissions() -> str
"""
import asyncio
import logging
from typing import Any, Callable, Iterable, Optional

from config import AGENT_RETRY_SECONDS, VERIFY_DELAY_SECONDS, PermissionResult
from events import event_bus, AppEvent
from helpers import run_async
from models.entities import AlertOptions

logger = logging.getLogger(__name__)

# Registration attempts before the bridge gives up until the next explicit call
AGENT_MAX_ATTEMPTS = 12


class AgentError(Exception):
    """Raised when the background agent is unavailable or rejects a request."""
    pass


def _is_ok(result: Any) -> bool:
    return str(result).lower() in ("ok", "true")


def _to_permission(result: Any) -> PermissionResult:
    value = str(result).lower()
    if value in ("granted", "true"):
        return PermissionResult.GRANTED
    if value in ("denied", "false"):
        return PermissionResult.DENIED
    return PermissionResult.UNDETERMINED


class BackgroundAgentBridge:
    """Registration and message relay for the background agent."""

    def __init__(
        self,
        agent: Any = None,
        async_scheduler: Optional[Callable[..., Any]] = None,
        retry_seconds: float = AGENT_RETRY_SECONDS,
        verify_delay_seconds: float = VERIFY_DELAY_SECONDS,
    ) -> None:
        self._agent = agent
        self._schedule_async = async_scheduler or run_async
        self._retry_seconds = retry_seconds
        self._verify_delay = verify_delay_seconds

        self._registered = False
        self._attempts = 0
        self._register_lock: Optional[asyncio.Lock] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None

    @property
    def has_agent(self) -> bool:
        return self._agent is not None

    @property
    def is_registered(self) -> bool:
        return self._registered

    # ── Registration ───────────────────────────────────────────────────

    async def register_agent(self) -> bool:
        """Register the agent; safe to call repeatedly.

        A failed attempt arms a retry after the fixed backoff interval instead
        of raising.
        """
        if self._registered:
            return True
        if self._agent is None:
            logger.info("No background agent on this platform - foreground delivery only")
            return False

        if self._register_lock is None:
            self._register_lock = asyncio.Lock()

        async with self._register_lock:
            if self._registered:
                return True
            self._attempts += 1
            try:
                result = await self._agent.register()
            except AgentError as e:
                logger.warning(f"Background agent registration failed (attempt {self._attempts}): {e}")
                result = None

            if _is_ok(result):
                self._registered = True
                self._attempts = 0
                self._cancel_retry()
                logger.info("Background agent registered")
                event_bus.emit(AppEvent.AGENT_REGISTERED, {"registered": True})
                return True

            if result is not None:
                logger.warning(f"Background agent refused registration: {result!r}")
            self._arm_retry()
            return False

    def _arm_retry(self) -> None:
        if self._retry_handle is not None:
            return
        if self._attempts >= AGENT_MAX_ATTEMPTS:
            logger.error(
                f"Background agent unavailable after {self._attempts} attempts - giving up"
            )
            return
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self._retry_seconds, self._on_retry_due)
        logger.info(f"Retrying background agent registration in {self._retry_seconds}s")

    def _on_retry_due(self) -> None:
        self._retry_handle = None
        self._schedule_async(self.register_agent)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    # ── Relay ──────────────────────────────────────────────────────────

    async def relay_schedule(
        self,
        alert_id: str,
        fire_at: int,
        title: str,
        body: str,
        options: Optional[AlertOptions] = None,
    ) -> None:
        """Ask the agent to show an alert at an absolute epoch-ms time.

        Raises:
            AgentError: agent not registered or the request was rejected
        """
        if not self._registered:
            raise AgentError("Background agent is not registered")
        opts = options or AlertOptions(tag=alert_id)
        result = await self._agent.schedule_notification(
            alert_id=alert_id,
            title=title,
            body=body,
            scheduled_time_ms=fire_at,
            options=opts.to_dict(),
        )
        if not _is_ok(result):
            raise AgentError(f"Agent rejected alert {alert_id}: {result!r}")
        logger.debug(f"Relayed alert {alert_id} to background agent for {fire_at}")

    async def relay_cancel(self, alert_id: str) -> None:
        """Ask the agent to drop an alert. Best effort - it may already be on screen."""
        if not self._registered:
            return
        try:
            result = await self._agent.cancel(alert_id)
        except AgentError as e:
            logger.warning(f"Cancel of {alert_id} not confirmed by agent: {e}")
            return
        if not _is_ok(result):
            logger.warning(f"Cancel of {alert_id} not confirmed by agent: {result!r}")

    async def verify_shown(self, alert_id: str) -> bool:
        """Poll the agent shortly after an expected fire time.

        Emits ALERT_NOT_SHOWN when the alert is absent so the caller can fall
        back to an in-process alert.
        """
        await asyncio.sleep(self._verify_delay)
        shown = False
        if self._registered:
            try:
                active: Iterable[str] = await self._agent.get_active_notifications() or []
                shown = alert_id in set(active)
            except AgentError as e:
                logger.warning(f"Could not query displayed alerts: {e}")
        if not shown:
            logger.warning(f"Alert {alert_id} not observed on screen after relay")
            event_bus.emit(AppEvent.ALERT_NOT_SHOWN, {"alert_id": alert_id})
        return shown

    # ── Permission ─────────────────────────────────────────────────────

    async def check_permission(self) -> PermissionResult:
        if not self._registered:
            return PermissionResult.UNDETERMINED
        try:
            return _to_permission(await self._agent.check_permissions())
        except AgentError as e:
            logger.warning(f"Permission check failed: {e}")
            return PermissionResult.UNDETERMINED

    async def request_permission(self) -> PermissionResult:
        if not self._registered:
            return PermissionResult.UNDETERMINED
        try:
            result = _to_permission(await self._agent.request_permissions())
        except AgentError as e:
            logger.error(f"Error requesting notification permission: {e}")
            return PermissionResult.DENIED
        logger.info(f"Notification permission request result: {result.value}")
        return result

    def cleanup(self) -> None:
        """Stop pending registration retries. Relayed alerts stay with the agent."""
        self._cancel_retry()

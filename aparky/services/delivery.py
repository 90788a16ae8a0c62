"""Notification delivery for Aparky.

Shows a single alert right now, choosing between:
- plyer (desktop): in-process toast while the app is in the foreground
- background agent (Android): relayed with fire time "now" while hidden,
  or whenever no in-process backend exists
- in-app message: passive IN_APP_MESSAGE event when neither can show it

show() never raises. Every failure degrades to the next path and ends, at
worst, in a passive message the UI renders as a snack bar.
"""
import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from config import (
    APP_NAME,
    FALLBACK_WHILE_BACKGROUNDED,
    TEST_ALERT_DELAY_MS,
    TOAST_TIMEOUT_SECONDS,
    AppVisibility,
    PermissionResult,
)
from events import event_bus, AppEvent
from helpers import now_ms, run_async
from i18n import t
from models.entities import AlertOptions
from services.background_agent import AgentError, BackgroundAgentBridge

logger = logging.getLogger(__name__)

PLYER_AVAILABLE = False

try:
    from plyer import notification as plyer_notification
    PLYER_AVAILABLE = True
    logger.info("plyer available for desktop")
except ImportError:
    logger.info("plyer not available")


class NotificationDelivery:
    """Single-alert delivery with permission handling and fallbacks."""

    def __init__(
        self,
        bridge: BackgroundAgentBridge,
        clock: Callable[[], int] = now_ms,
        async_scheduler: Optional[Callable] = None,
        fallback_while_backgrounded: bool = FALLBACK_WHILE_BACKGROUNDED,
    ) -> None:
        self._bridge = bridge
        self._clock = clock
        self._schedule_async = async_scheduler or run_async
        self._fallback_while_backgrounded = fallback_while_backgrounded
        self._visibility = AppVisibility.VISIBLE
        # DENIED is terminal for the process; the user has to change it in system settings
        self._permission_denied = False

    @property
    def bridge(self) -> BackgroundAgentBridge:
        return self._bridge

    @property
    def foreground(self) -> bool:
        return self._visibility == AppVisibility.VISIBLE

    @property
    def is_supported(self) -> bool:
        """True when some path can put an alert on screen."""
        return PLYER_AVAILABLE or self._bridge.is_registered

    def set_visibility(self, visibility: AppVisibility) -> None:
        self._visibility = visibility

    # ── Permission ─────────────────────────────────────────────────────

    async def permission_status(self) -> PermissionResult:
        if self._permission_denied:
            return PermissionResult.DENIED
        if self._bridge.is_registered:
            return await self._bridge.check_permission()
        if PLYER_AVAILABLE:
            return PermissionResult.NOT_REQUIRED
        return PermissionResult.UNDETERMINED

    async def _ensure_permission(self) -> bool:
        status = await self.permission_status()
        if status in (PermissionResult.GRANTED, PermissionResult.NOT_REQUIRED):
            return True
        if status == PermissionResult.UNDETERMINED and self._bridge.is_registered:
            status = await self._bridge.request_permission()
            event_bus.emit(AppEvent.PERMISSION_CHANGED, {"status": status.value})
            if status in (PermissionResult.GRANTED, PermissionResult.NOT_REQUIRED):
                return True
        if status == PermissionResult.DENIED and not self._permission_denied:
            self._permission_denied = True
            logger.warning("Notification permission denied - alerts fall back to in-app messages")
        return False

    # ── Delivery ───────────────────────────────────────────────────────

    async def show(
        self,
        title: str,
        body: str,
        options: Optional[AlertOptions] = None,
    ) -> bool:
        """Show an alert now through the best available path.

        Returns:
            True if a system notification was (or is being) shown, False if
            the alert degraded to an in-app message.
        """
        options = options or AlertOptions()

        if not self.is_supported:
            self._passive(title, body, t("notifications_unsupported"))
            return False

        if not await self._ensure_permission():
            self._passive(title, body, t("notifications_denied"))
            return False

        use_agent = self._bridge.is_registered and (not self.foreground or not PLYER_AVAILABLE)
        if not use_agent:
            return await self._show_immediate(title, body)

        alert_id = options.tag or f"alert-{uuid.uuid4().hex[:12]}"
        try:
            await self._bridge.relay_schedule(alert_id, self._clock(), title, body, options)
        except AgentError as e:
            logger.warning(f"Agent delivery of {alert_id} failed, falling back: {e}")
            if self.foreground or self._fallback_while_backgrounded:
                return await self._show_immediate(title, body)
            self._passive(title, body)
            return False

        event_bus.emit(AppEvent.ALERT_DELIVERED, {"alert_id": alert_id, "path": "agent"})
        self._schedule_async(self._verify_or_fallback, alert_id, title, body)
        return True

    async def _verify_or_fallback(self, alert_id: str, title: str, body: str) -> None:
        if await self._bridge.verify_shown(alert_id):
            return
        if not self.foreground and not self._fallback_while_backgrounded:
            logger.warning(f"Alert {alert_id} missing and app is backgrounded - no fallback")
            return
        logger.info(f"Re-showing alert {alert_id} in-process")
        await self._show_immediate(title, body)

    async def _show_immediate(self, title: str, body: str) -> bool:
        if await self._deliver_plyer_notification(title, body):
            event_bus.emit(AppEvent.ALERT_DELIVERED, {"title": title, "path": "immediate"})
            return True
        self._passive(title, body)
        return False

    async def _deliver_plyer_notification(self, title: str, body: str) -> bool:
        """Deliver notification via plyer.

        Returns:
            True if notification was delivered successfully, False otherwise.
        """
        if not PLYER_AVAILABLE:
            return False

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: plyer_notification.notify(
                    title=title,
                    message=body,
                    app_name=APP_NAME,
                    timeout=TOAST_TIMEOUT_SECONDS,
                )
            )
            return True
        except (OSError, RuntimeError, NotImplementedError) as e:
            logger.error(f"Error showing plyer notification: {e}")
            return False

    # ── Diagnostics ────────────────────────────────────────────────────

    async def send_test_alert(self, scheduler: Any, delay_ms: int = TEST_ALERT_DELAY_MS) -> bool:
        """Show one alert now and schedule a second one delay_ms later.

        The second alert goes through the scheduler so it exercises the same
        timer and hand-off path as parking alerts.

        Returns:
            True if the immediate alert reached a system notification.
        """
        shown = await self.show(t("test_title"), t("test_body"), AlertOptions(tag="test-now"))
        logger.info(f"Test alert delivered={shown}, backgrounded={not self.foreground}")

        alert_id = f"test-scheduled-{self._clock()}"
        scheduler.schedule(
            alert_id,
            delay_ms,
            t("test_scheduled_title"),
            t("test_scheduled_body").format(seconds=delay_ms // 1000),
            AlertOptions(tag=alert_id),
        )
        return shown

    async def capabilities(self) -> Dict[str, Any]:
        """Summary of what this device can do, with hints for the user."""
        permission = await self.permission_status()
        background = self._bridge.is_registered

        recommendations: List[str] = []
        if not self.is_supported:
            recommendations.append(t("hint_unsupported"))
        if permission == PermissionResult.DENIED:
            recommendations.append(t("hint_enable_permission"))
        elif permission == PermissionResult.UNDETERMINED and background:
            recommendations.append(t("hint_grant_permission"))
        if not background:
            recommendations.append(t("hint_keep_open"))

        return {
            "plyer_available": PLYER_AVAILABLE,
            "agent_available": self._bridge.has_agent,
            "agent_registered": background,
            "background_available": background,
            "permission": permission.value,
            "foreground": self.foreground,
            "recommendations": recommendations,
        }

    def _passive(self, title: str, body: str, reason: Optional[str] = None) -> None:
        logger.info(f"Showing in-app message instead of notification: {title}")
        event_bus.emit(AppEvent.IN_APP_MESSAGE, {
            "title": title,
            "body": body,
            "reason": reason,
        })

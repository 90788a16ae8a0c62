import flet as ft
import logging

from typing import Any, List, Optional

from config import COLORS, SNACK_DURATION_MS, AppVisibility
from core import ServiceContainer, shutdown
from events import event_bus, AppEvent, Subscription
from i18n import t

logger = logging.getLogger(__name__)


class SnackService:
    def __init__(self, page: ft.Page) -> None:
        self.page = page
        self.snack = ft.SnackBar(
            content=ft.Text(""),
            bgcolor=COLORS["card"],
            duration=SNACK_DURATION_MS,
        )
        page.overlay.append(self.snack)

    def show(
        self,
        message: str,
        color: Optional[str] = None,
        update: bool = True,
    ) -> None:
        self.snack.content = ft.Text(message, color=COLORS["white"])
        self.snack.bgcolor = color or COLORS["card"]
        self.snack.open = True
        if update:
            self.page.update()


class AparkyApp:
    """Wires the timer engine to the Flet page: lifecycle in, alerts out."""

    def __init__(self, page: ft.Page, services: ServiceContainer) -> None:
        self.page = page
        self.services = services
        self.snack = SnackService(page)
        self._subscriptions: List[Subscription] = []

        self._subscribe_to_events()

        self.page.on_close = self._on_page_close
        # Hand alerts to the background agent when hidden, re-arm on resume
        self.page.on_app_lifecycle_state_change = self._on_app_lifecycle_state_change

    def _subscribe_to_events(self) -> None:
        self._subscriptions = [
            event_bus.subscribe(AppEvent.IN_APP_MESSAGE, self._on_in_app_message),
            event_bus.subscribe(AppEvent.TIMER_REMINDER, self._on_timer_reminder),
            event_bus.subscribe(AppEvent.TIMER_EXPIRED, self._on_timer_expired),
            event_bus.subscribe(AppEvent.TIMER_EXTENDED, self._on_timer_extended),
        ]

    def _unsubscribe_all(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()

    def _on_page_close(self, e: ft.ControlEvent) -> None:
        self._unsubscribe_all()
        self.page.run_task(shutdown, self.services)

    def _on_app_lifecycle_state_change(self, e: ft.AppLifecycleStateChangeEvent) -> None:
        if e.state in (ft.AppLifecycleState.RESUME, ft.AppLifecycleState.SHOW):
            visibility = AppVisibility.VISIBLE
        elif e.state in (ft.AppLifecycleState.HIDE, ft.AppLifecycleState.PAUSE):
            visibility = AppVisibility.HIDDEN
        else:
            return
        logger.debug(f"Lifecycle {e.state} -> {visibility.value}")
        self.page.run_task(self.services.timers.handle_visibility, visibility)

    def _on_in_app_message(self, data: Any) -> None:
        message = f"{data['title']}: {data['body']}"
        if data.get("reason"):
            message = f"{message} ({data['reason']})"
        self.snack.show(message, COLORS["warning"])

    def _on_timer_reminder(self, data: Any) -> None:
        self.snack.show(
            f"{t('reminder_title')} - {data['note']} ({data['minutes_left']} min)",
            COLORS["warning"],
        )

    def _on_timer_expired(self, data: Any) -> None:
        self.snack.show(f"{t('expiry_title')} - {data['note']}", COLORS["danger"])

    def _on_timer_extended(self, data: Any) -> None:
        self.snack.show(data["message"])


def create_app(page: ft.Page, services: ServiceContainer) -> AparkyApp:
    """Factory function to create the application."""
    return AparkyApp(page, services)

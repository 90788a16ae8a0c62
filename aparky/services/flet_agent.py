"""Flet service control talking to the Android background alarm agent.

The Dart side registers alarms with AlarmManager so alerts fire while the app
is suspended or killed, and reports which alerts are currently displayed.
Only main.py imports this module; everything else sees the agent through
BackgroundAgentBridge.
"""
import json
import zlib
from typing import Any, Dict, List, Optional

import flet as ft

from config import AGENT_CHANNEL_DESCRIPTION, AGENT_CHANNEL_ID, AGENT_CHANNEL_NAME, DEFAULT_ICON
from services.background_agent import AgentError


def agent_notification_id(alert_id: str) -> int:
    """Stable positive int id for the platform, derived from the logical alert id."""
    return zlib.crc32(alert_id.encode("utf-8")) & 0x7FFFFFFF


@ft.control("flet_parking_agent")
class FletParkingAgent(ft.Service):
    on_notification_tap: Optional[ft.ControlEventHandler["FletParkingAgent"]] = None

    async def _call(self, method_name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        try:
            result = await self._invoke_method(method_name=method_name, arguments=arguments)
        except (RuntimeError, TimeoutError) as e:
            raise AgentError(f"{method_name} failed: {e}") from e
        if result is None:
            raise AgentError(f"{method_name}: no response")
        return result

    async def register(self) -> str:
        return str(await self._call("register", {
            "channel_id": AGENT_CHANNEL_ID,
            "channel_name": AGENT_CHANNEL_NAME,
            "channel_description": AGENT_CHANNEL_DESCRIPTION,
            "icon": DEFAULT_ICON,
        }))

    async def schedule_notification(
        self,
        alert_id: str,
        title: str,
        body: str,
        scheduled_time_ms: int,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        return str(await self._call("schedule_notification", {
            "id": agent_notification_id(alert_id),
            "tag": alert_id,
            "title": title,
            "body": body,
            "scheduled_time_ms": scheduled_time_ms,
            "options": json.dumps(options or {}),
        }))

    async def cancel(self, alert_id: str) -> str:
        return str(await self._call("cancel_notification", {
            "id": agent_notification_id(alert_id),
            "tag": alert_id,
        }))

    async def get_active_notifications(self) -> List[str]:
        """Tags of the alerts currently shown in the notification tray."""
        raw = await self._call("get_active_notifications")
        try:
            tags = json.loads(raw) if isinstance(raw, str) else raw
        except json.JSONDecodeError as e:
            raise AgentError(f"Unreadable active notification list: {e}") from e
        return [str(tag) for tag in tags or []]

    async def check_permissions(self) -> str:
        return str(await self._call("check_permissions"))

    async def request_permissions(self) -> str:
        return str(await self._call("request_permissions"))

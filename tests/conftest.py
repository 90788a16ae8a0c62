"""Shared fixtures for Aparky timer engine tests."""
import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

import database as db_module
import services.delivery as delivery_module
from database import db
from events import AppEvent, event_bus
from services.background_agent import AgentError, BackgroundAgentBridge
from services.delivery import NotificationDelivery
from services.scheduler import NotificationScheduler
from services.timer_manager import TimerManager

START_MS = 1_700_000_000_000


class FakeClock:
    """Frozen epoch-ms clock that only moves when told to."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeAgent:
    """In-memory background agent recording every call."""

    def __init__(self) -> None:
        self.register_results: List[Any] = ["ok"]
        self.register_calls = 0
        self.scheduled: Dict[str, Dict[str, Any]] = {}
        self.cancelled: List[str] = []
        self.active: List[str] = []
        self.permission = "granted"
        self.request_result = "granted"
        self.permission_requests = 0
        self.fail_schedule = False
        self.show_on_schedule = True

    async def register(self) -> str:
        self.register_calls += 1
        result = self.register_results.pop(0) if len(self.register_results) > 1 else self.register_results[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def schedule_notification(self, alert_id, title, body, scheduled_time_ms, options=None) -> str:
        if self.fail_schedule:
            raise AgentError("agent unreachable")
        self.scheduled[alert_id] = {
            "title": title,
            "body": body,
            "fire_at": scheduled_time_ms,
            "options": options,
        }
        if self.show_on_schedule:
            self.active.append(alert_id)
        return "ok"

    async def cancel(self, alert_id: str) -> str:
        self.cancelled.append(alert_id)
        self.scheduled.pop(alert_id, None)
        return "ok"

    async def get_active_notifications(self) -> List[str]:
        return list(self.active)

    async def check_permissions(self) -> str:
        return self.permission

    async def request_permissions(self) -> str:
        self.permission_requests += 1
        self.permission = self.request_result
        return self.request_result


class FakePlyer:
    def __init__(self) -> None:
        self.shown: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def notify(self, title: str, message: str, app_name: str, timeout: int) -> None:
        if self.error is not None:
            raise self.error
        self.shown.append({"title": title, "message": message, "app_name": app_name})


class EventCollector:
    """Subscribe to events and record them for assertions."""

    def __init__(self, *events: AppEvent) -> None:
        self.received: List[tuple] = []
        self._subs = []
        for ev in events:
            sub = event_bus.subscribe(ev, lambda data, _ev=ev: self.received.append((_ev, data)))
            self._subs.append(sub)

    def count(self, event: AppEvent) -> int:
        return sum(1 for ev, _ in self.received if ev == event)

    def payloads(self, event: AppEvent) -> List[Any]:
        return [data for ev, data in self.received if ev == event]

    def cleanup(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()


async def settle(rounds: int = 5) -> None:
    """Let tasks dispatched with create_task run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def _isolate_singletons(monkeypatch):
    """Fresh event bus and no desktop toasts for every test."""
    event_bus.clear()
    monkeypatch.setattr(delivery_module, "PLYER_AVAILABLE", False)
    yield
    event_bus.clear()


@pytest_asyncio.fixture
async def store():
    """The db singleton pointed at a fresh in-memory database."""
    await db.close()
    db._conn_lock = None
    db_module.DB_PATH = Path(":memory:")
    await db.init_db()
    yield db
    await db.close()
    db._conn_lock = None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture
def plyer(_isolate_singletons, monkeypatch) -> FakePlyer:
    fake = FakePlyer()
    monkeypatch.setattr(delivery_module, "PLYER_AVAILABLE", True)
    monkeypatch.setattr(delivery_module, "plyer_notification", fake, raising=False)
    return fake


@pytest.fixture
def collector():
    collectors: List[EventCollector] = []

    def make(*events: AppEvent) -> EventCollector:
        c = EventCollector(*events)
        collectors.append(c)
        return c

    yield make
    for c in collectors:
        c.cleanup()


@pytest.fixture
def bridge(agent: FakeAgent) -> BackgroundAgentBridge:
    return BackgroundAgentBridge(agent=agent, retry_seconds=0.01, verify_delay_seconds=0.01)


@pytest.fixture
def delivery(bridge: BackgroundAgentBridge, clock: FakeClock) -> NotificationDelivery:
    return NotificationDelivery(bridge, clock=clock)


@pytest.fixture
def scheduler(delivery: NotificationDelivery, clock: FakeClock) -> NotificationScheduler:
    return NotificationScheduler(delivery, clock=clock)


@pytest_asyncio.fixture
async def timers(scheduler: NotificationScheduler, store, clock: FakeClock):
    manager = TimerManager(scheduler, store=store, clock=clock)
    yield manager
    await manager.shutdown()
    scheduler.cancel_all()

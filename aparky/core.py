"""Headless bootstrap for the Aparky timer engine.

Wires bridge, delivery, scheduler and timer manager without any Flet
dependency, suitable for scripts and testing.

Usage:
    from core import bootstrap, shutdown

    svc = await bootstrap(db_path=Path("my.db"))
    await svc.timers.schedule_timer(session)
    await shutdown(svc)
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from database import db, configure_db_path
from helpers import now_ms, run_async
from services.background_agent import BackgroundAgentBridge
from services.delivery import NotificationDelivery
from services.scheduler import NotificationScheduler
from services.timer_manager import TimerManager


@dataclass
class ServiceContainer:
    """Container holding all initialized engine services."""
    bridge: BackgroundAgentBridge
    delivery: NotificationDelivery
    scheduler: NotificationScheduler
    timers: TimerManager


async def bootstrap(
    db_path: Optional[Path] = None,
    agent: Any = None,
    async_scheduler: Optional[Callable] = None,
    clock: Optional[Callable[[], int]] = None,
    session_store: Any = None,
    visible: bool = True,
) -> ServiceContainer:
    """Initialize the engine and bring back timers from the last run.

    Args:
        db_path: Custom database path. Uses default ("aparky.db") if None.
        agent: Background agent (FletParkingAgent on Android), or None.
        async_scheduler: page.run_task under Flet; a plain loop task otherwise.
        clock: Epoch-ms clock, for tests.
        session_store: Location store updated on extend/cancel.
        visible: Whether the app starts in the foreground; restored timers
            are re-armed right away when it does.

    Returns:
        ServiceContainer with all services ready to use.
    """
    if db_path is not None:
        configure_db_path(db_path)
    await db.init_db()

    async_scheduler = async_scheduler or run_async
    clock = clock or now_ms

    bridge = BackgroundAgentBridge(agent=agent, async_scheduler=async_scheduler)
    delivery = NotificationDelivery(bridge, clock=clock, async_scheduler=async_scheduler)
    scheduler = NotificationScheduler(delivery, clock=clock, async_scheduler=async_scheduler)
    timers = TimerManager(
        scheduler,
        store=db,
        session_store=session_store,
        clock=clock,
        async_scheduler=async_scheduler,
    )

    await bridge.register_agent()
    await timers.restore()
    if visible:
        await timers.reconcile()

    return ServiceContainer(
        bridge=bridge,
        delivery=delivery,
        scheduler=scheduler,
        timers=timers,
    )


async def shutdown(services: Optional[ServiceContainer] = None) -> None:
    """Persist timers, disarm local alerts, stop retries and close the database."""
    if services is not None:
        await services.timers.shutdown()
        services.scheduler.shutdown()
        services.bridge.cleanup()
    await db.close()

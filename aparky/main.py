import logging

import flet as ft

from app import create_app
from config import APP_NAME, LOG_LEVEL
from core import bootstrap

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _create_agent(page: ft.Page):
    """Background agent exists only where the platform can run one."""
    if page.platform != ft.PagePlatform.ANDROID:
        return None
    from services.flet_agent import FletParkingAgent
    return FletParkingAgent()


async def main(page: ft.Page) -> None:
    page.title = APP_NAME
    services = await bootstrap(
        agent=_create_agent(page),
        async_scheduler=page.run_task,
    )
    create_app(page, services)
    page.update()
    logger.info(f"{APP_NAME} started with {len(services.timers.list_active_timers())} active timers")


ft.app(target=main)

"""Tests for the headless task runner."""
import asyncio
import logging

import helpers
from conftest import settle
from helpers import run_async


async def _boom() -> None:
    raise ValueError("boom")


async def _add(target: list, value: int) -> None:
    target.append(value)


class TestRunAsync:
    async def test_runs_with_arguments_and_releases_task(self):
        seen = []
        task = run_async(_add, seen, 7)
        assert task in helpers._background_tasks

        await settle()
        assert seen == [7]
        assert task not in helpers._background_tasks

    async def test_failure_is_logged(self, caplog):
        with caplog.at_level(logging.ERROR, logger="helpers"):
            task = run_async(_boom)
            await settle()

        assert task not in helpers._background_tasks
        [record] = [r for r in caplog.records if r.name == "helpers"]
        assert record.levelno == logging.ERROR
        assert "failed" in record.getMessage()
        assert "boom" in record.getMessage()

    async def test_cancelled_task_is_released_quietly(self, caplog):
        with caplog.at_level(logging.ERROR, logger="helpers"):
            task = run_async(asyncio.sleep, 10)
            await settle()
            task.cancel()
            await settle()

        assert task not in helpers._background_tasks
        assert not [r for r in caplog.records if r.name == "helpers"]

"""Tests for BackgroundAgentBridge registration, relay and verification."""
import asyncio

import pytest

from config import DEFAULT_BADGE, PermissionResult
from conftest import settle
from events import AppEvent
from models.entities import AlertOptions
from services.background_agent import AgentError, BackgroundAgentBridge


class TestRegistration:
    async def test_register_emits_event(self, bridge, agent, collector):
        events = collector(AppEvent.AGENT_REGISTERED)
        assert await bridge.register_agent() is True
        assert bridge.is_registered
        assert events.count(AppEvent.AGENT_REGISTERED) == 1

    async def test_register_is_idempotent(self, bridge, agent):
        await bridge.register_agent()
        await bridge.register_agent()
        assert agent.register_calls == 1

    async def test_no_agent_means_no_registration(self):
        bridge = BackgroundAgentBridge(agent=None, retry_seconds=0.01)
        assert await bridge.register_agent() is False
        assert not bridge.has_agent

    async def test_failure_retries_after_backoff(self, bridge, agent):
        agent.register_results = [AgentError("not ready"), "ok"]
        assert await bridge.register_agent() is False

        await asyncio.sleep(0.05)
        await settle()
        assert bridge.is_registered
        assert agent.register_calls == 2

    async def test_refusal_also_retries(self, bridge, agent):
        agent.register_results = ["error:channel", "ok"]
        assert await bridge.register_agent() is False
        await asyncio.sleep(0.05)
        await settle()
        assert bridge.is_registered

    async def test_cleanup_stops_retry(self, bridge, agent):
        agent.register_results = [AgentError("down")]
        await bridge.register_agent()
        bridge.cleanup()
        await asyncio.sleep(0.05)
        await settle()
        assert agent.register_calls == 1


class TestRelay:
    async def test_schedule_requires_registration(self, bridge):
        with pytest.raises(AgentError):
            await bridge.relay_schedule("expiry-a", 1000, "t", "b")

    async def test_schedule_passes_alert(self, bridge, agent):
        await bridge.register_agent()
        opts = AlertOptions(tag="expiry-a", require_interaction=True)
        await bridge.relay_schedule("expiry-a", 123456, "Title", "Body", opts)
        sent = agent.scheduled["expiry-a"]
        assert sent["fire_at"] == 123456
        assert sent["options"]["requireInteraction"] is True
        assert sent["options"]["badge"] == DEFAULT_BADGE

    async def test_schedule_failure_raises(self, bridge, agent):
        await bridge.register_agent()
        agent.fail_schedule = True
        with pytest.raises(AgentError):
            await bridge.relay_schedule("expiry-a", 1, "t", "b")

    async def test_cancel_before_registration_is_noop(self, bridge, agent):
        await bridge.relay_cancel("expiry-a")
        assert agent.cancelled == []

    async def test_cancel_relayed(self, bridge, agent):
        await bridge.register_agent()
        await bridge.relay_cancel("expiry-a")
        assert agent.cancelled == ["expiry-a"]


class TestVerifyShown:
    async def test_shown_alert(self, bridge, agent, collector):
        events = collector(AppEvent.ALERT_NOT_SHOWN)
        await bridge.register_agent()
        agent.active = ["expiry-a"]
        assert await bridge.verify_shown("expiry-a") is True
        assert events.count(AppEvent.ALERT_NOT_SHOWN) == 0

    async def test_missing_alert_is_reported(self, bridge, agent, collector):
        events = collector(AppEvent.ALERT_NOT_SHOWN)
        await bridge.register_agent()
        assert await bridge.verify_shown("expiry-a") is False
        assert events.payloads(AppEvent.ALERT_NOT_SHOWN) == [{"alert_id": "expiry-a"}]


class TestPermission:
    async def test_unregistered_is_undetermined(self, bridge):
        assert await bridge.check_permission() == PermissionResult.UNDETERMINED

    @pytest.mark.parametrize("raw, expected", [
        ("granted", PermissionResult.GRANTED),
        ("denied", PermissionResult.DENIED),
        ("prompt", PermissionResult.UNDETERMINED),
    ])
    async def test_check_maps_agent_answer(self, bridge, agent, raw, expected):
        await bridge.register_agent()
        agent.permission = raw
        assert await bridge.check_permission() == expected

    async def test_request(self, bridge, agent):
        await bridge.register_agent()
        agent.request_result = "denied"
        assert await bridge.request_permission() == PermissionResult.DENIED
        assert agent.permission_requests == 1

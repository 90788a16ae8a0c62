"""Tests for timer engine data models."""
import pytest

from config import DEFAULT_BADGE, MS_PER_MINUTE
from models.entities import (
    AlertOptions,
    ParkingSession,
    PersistedBackup,
    TimerState,
    expiry_alert_id,
    reminder_alert_id,
)

NOW = 1_700_000_000_000


class TestAlertIds:
    def test_ids_are_deterministic_per_location(self):
        assert reminder_alert_id("loc-1") == "reminder-loc-1"
        assert expiry_alert_id("loc-1") == "expiry-loc-1"
        assert reminder_alert_id("loc-1") != expiry_alert_id("loc-1")


class TestParkingSession:
    def test_reminder_time_is_lead_time_before_expiry(self):
        session = ParkingSession(id="a", expiry_time=NOW + 90 * MS_PER_MINUTE, reminder_minutes=15)
        assert session.reminder_time == NOW + 75 * MS_PER_MINUTE

    @pytest.mark.parametrize("minutes", [None, 0, -5])
    def test_no_reminder_without_positive_lead_time(self, minutes):
        session = ParkingSession(id="a", expiry_time=NOW, reminder_minutes=minutes)
        assert session.reminder_time is None

    def test_no_reminder_without_expiry(self):
        assert ParkingSession(id="a", reminder_minutes=10).reminder_time is None

    def test_extended_moves_expiry_and_counts(self):
        session = ParkingSession(id="a", expiry_time=NOW, reminder_minutes=15, note="Main St")
        updated = session.extended(30)
        assert updated.expiry_time == NOW + 1_800_000
        assert updated.extension_count == 1
        assert updated.reminder_minutes == 15
        assert session.expiry_time == NOW

    def test_extended_without_expiry_raises(self):
        with pytest.raises(ValueError):
            ParkingSession(id="a").extended(30)

    def test_from_dict_uses_location_store_keys(self):
        session = ParkingSession.from_dict({
            "id": 7,
            "expiryTime": NOW,
            "reminderMinutes": 10,
            "note": "Garage",
            "latitude": 40.0,
        })
        assert session.id == "7"
        assert session.expiry_time == NOW
        assert session.reminder_minutes == 10
        assert session.extension_count == 0


class TestTimerState:
    def test_reminder_must_precede_expiry(self):
        with pytest.raises(ValueError):
            TimerState(location_id="a", expiry_time=NOW, created_at=NOW, reminder_time=NOW)

    def test_to_dict_omits_missing_reminder(self):
        state = TimerState(location_id="a", expiry_time=NOW + 1000, created_at=NOW)
        d = state.to_dict()
        assert "reminderTime" not in d
        assert d == {
            "locationId": "a",
            "expiryTime": NOW + 1000,
            "reminderScheduled": False,
            "expiryScheduled": False,
            "createdAt": NOW,
        }

    def test_from_dict_rejects_non_numeric_expiry(self):
        with pytest.raises(TypeError):
            TimerState.from_dict({"locationId": "a", "expiryTime": "soon"})

    def test_is_armed_follows_expiry_flag(self):
        state = TimerState(location_id="a", expiry_time=NOW + 1000, created_at=NOW)
        assert not state.is_armed
        state.expiry_scheduled = True
        assert state.is_armed


class TestPersistedBackup:
    def test_from_dict_skips_malformed_entries(self):
        backup = PersistedBackup.from_dict({
            "savedAt": NOW,
            "timers": [
                {"locationId": "good", "expiryTime": NOW + 5000, "createdAt": NOW},
                {"locationId": "bad", "expiryTime": None},
                {"expiryTime": NOW},
                "garbage",
                {"locationId": "inverted", "expiryTime": NOW, "reminderTime": NOW + 1},
            ],
        })
        assert backup.saved_at == NOW
        assert [s.location_id for s in backup.timers] == ["good"]

    def test_to_dict_layout(self):
        state = TimerState(location_id="a", expiry_time=NOW + 1000, created_at=NOW, reminder_time=NOW + 500)
        d = PersistedBackup(saved_at=NOW, timers=[state]).to_dict()
        assert d["savedAt"] == NOW
        assert d["timers"][0]["reminderTime"] == NOW + 500


class TestAlertOptions:
    def test_to_dict_copies_collections(self):
        opts = AlertOptions(tag="t", require_interaction=True, vibrate=[1, 2], data={"k": "v"})
        d = opts.to_dict()
        d["vibrate"].append(3)
        assert opts.vibrate == [1, 2]
        assert d["requireInteraction"] is True

    def test_to_dict_carries_default_badge(self):
        assert AlertOptions(tag="t").to_dict()["badge"] == DEFAULT_BADGE
        assert AlertOptions(tag="t", badge="icons/other.png").to_dict()["badge"] == "icons/other.png"

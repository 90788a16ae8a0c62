from dataclasses import dataclass, field, replace
from typing import Optional, List, Dict, Any

from config import DEFAULT_BADGE, AlertKind, MS_PER_MINUTE


def reminder_alert_id(location_id: str) -> str:
    return f"{AlertKind.REMINDER.value}-{location_id}"


def expiry_alert_id(location_id: str) -> str:
    return f"{AlertKind.EXPIRY.value}-{location_id}"


@dataclass
class ParkingSession:
    """Parking session as read from the external location store.

    Only the fields the timer engine needs are modelled; all times are epoch
    milliseconds. The engine never owns this record.
    """
    id: str
    expiry_time: Optional[int] = None
    reminder_minutes: Optional[int] = None
    note: Optional[str] = None
    extension_count: int = 0

    @property
    def reminder_time(self) -> Optional[int]:
        """Absolute reminder fire time, or None without a positive lead time."""
        if self.expiry_time is None or not self.reminder_minutes or self.reminder_minutes <= 0:
            return None
        return self.expiry_time - self.reminder_minutes * MS_PER_MINUTE

    def extended(self, additional_minutes: int) -> "ParkingSession":
        """Copy with the expiry pushed back and the extension counted."""
        if self.expiry_time is None:
            raise ValueError(f"Session {self.id} has no expiry time to extend")
        return replace(
            self,
            expiry_time=self.expiry_time + additional_minutes * MS_PER_MINUTE,
            extension_count=self.extension_count + 1,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the location store's camelCase layout."""
        return {
            "id": self.id,
            "expiryTime": self.expiry_time,
            "reminderMinutes": self.reminder_minutes,
            "note": self.note,
            "extensionCount": self.extension_count,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ParkingSession":
        """Create from a location store record; unknown keys are ignored."""
        return cls(
            id=str(d["id"]),
            expiry_time=d.get("expiryTime"),
            reminder_minutes=d.get("reminderMinutes"),
            note=d.get("note"),
            extension_count=d.get("extensionCount") or 0,
        )


@dataclass
class TimerState:
    """Engine-owned reminder/expiry tracking for one session."""
    location_id: str
    expiry_time: int
    created_at: int
    reminder_time: Optional[int] = None
    reminder_scheduled: bool = False
    expiry_scheduled: bool = False

    def __post_init__(self) -> None:
        if self.reminder_time is not None and self.reminder_time >= self.expiry_time:
            raise ValueError(
                f"Reminder time must precede expiry for {self.location_id}: "
                f"{self.reminder_time} >= {self.expiry_time}"
            )

    @property
    def is_armed(self) -> bool:
        return self.expiry_scheduled

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted backup layout."""
        d: Dict[str, Any] = {
            "locationId": self.location_id,
            "expiryTime": self.expiry_time,
            "reminderScheduled": self.reminder_scheduled,
            "expiryScheduled": self.expiry_scheduled,
            "createdAt": self.created_at,
        }
        if self.reminder_time is not None:
            d["reminderTime"] = self.reminder_time
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TimerState":
        """Create from a backup entry.

        Raises:
            KeyError, TypeError, ValueError: on a malformed entry
        """
        expiry = d["expiryTime"]
        if not isinstance(expiry, (int, float)) or isinstance(expiry, bool):
            raise TypeError(f"expiryTime must be a number, got {type(expiry).__name__}")
        reminder = d.get("reminderTime")
        return cls(
            location_id=str(d["locationId"]),
            expiry_time=int(expiry),
            created_at=int(d.get("createdAt") or 0),
            reminder_time=int(reminder) if reminder is not None else None,
            reminder_scheduled=bool(d.get("reminderScheduled", False)),
            expiry_scheduled=bool(d.get("expiryScheduled", False)),
        )


@dataclass
class AlertOptions:
    """Presentation hints carried with an alert to whichever path shows it."""
    tag: Optional[str] = None
    require_interaction: bool = False
    vibrate: List[int] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    badge: str = DEFAULT_BADGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "badge": self.badge,
            "requireInteraction": self.require_interaction,
            "vibrate": list(self.vibrate),
            "data": dict(self.data),
        }


@dataclass
class PendingAlert:
    """Alert armed in the scheduler, keyed by a caller-chosen logical id."""
    id: str
    fire_at: int
    title: str
    body: str
    options: AlertOptions = field(default_factory=AlertOptions)


@dataclass
class PersistedBackup:
    """Snapshot of all timer states written on hide/terminate."""
    saved_at: int
    timers: List[TimerState] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "savedAt": self.saved_at,
            "timers": [state.to_dict() for state in self.timers],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PersistedBackup":
        """Parse a backup, skipping malformed timer entries."""
        timers: List[TimerState] = []
        for raw in d.get("timers") or []:
            if not isinstance(raw, dict):
                continue
            try:
                timers.append(TimerState.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                continue
        return cls(saved_at=int(d.get("savedAt") or 0), timers=timers)

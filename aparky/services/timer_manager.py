"""Per-session reminder/expiry timers for Aparky.

TimerManager turns a ParkingSession into a TimerState, arms the matching
alerts in the NotificationScheduler and keeps its own completion handles so
reminder and expiry can be surfaced in-app. Timer states are written to the
durable store as one backup document whenever they change and when the app is
hidden, and are restored and re-armed on the next start or resume.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from config import (
    EXPIRY_VIBRATE,
    HANDOFF_ON_BACKGROUND,
    HEALTH_WARNING_DRIFT,
    REMINDER_VIBRATE,
    AlertKind,
    AppVisibility,
)
from database import DatabaseError
from events import event_bus, AppEvent
from formatters import TimeFormatter
from helpers import now_ms, run_async
from i18n import t
from models.entities import (
    AlertOptions,
    ParkingSession,
    PersistedBackup,
    TimerState,
    expiry_alert_id,
    reminder_alert_id,
)
from services.scheduler import NotificationScheduler

logger = logging.getLogger(__name__)


class TimerManager:
    """Owns the TimerStates of all active parking sessions.

    Args:
        scheduler: alert scheduler used for system notifications
        store: durable store with save/load/clear_timer_backup (the db singleton)
        session_store: optional location store with
            ``async update_session(location_id, updates)``
        clock: epoch-ms clock
        async_scheduler: runs coroutine functions from loop callbacks
    """

    def __init__(
        self,
        scheduler: NotificationScheduler,
        store: Any,
        session_store: Any = None,
        clock: Callable[[], int] = now_ms,
        async_scheduler: Optional[Callable] = None,
    ) -> None:
        self._scheduler = scheduler
        self._store = store
        self._session_store = session_store
        self._clock = clock
        self._schedule_async = async_scheduler or run_async

        self._states: Dict[str, TimerState] = {}
        self._handles: Dict[str, List[asyncio.TimerHandle]] = {}
        self._notes: Dict[str, str] = {}

    # ── Scheduling ─────────────────────────────────────────────────────

    async def schedule_timer(self, session: ParkingSession) -> bool:
        """Arm reminder and expiry alerts for a session, replacing earlier ones.

        Returns:
            False when the session has no expiry or it already passed.
        """
        now = self._clock()
        if session.expiry_time is None:
            logger.warning(f"Session {session.id} has no expiry time, nothing to schedule")
            return False
        if session.expiry_time <= now:
            logger.warning(f"Session {session.id} already expired, not scheduling")
            return False

        self._disarm(session.id)

        note = session.note or t("unnamed_location")
        state = TimerState(
            location_id=session.id,
            expiry_time=session.expiry_time,
            created_at=now,
            reminder_time=session.reminder_time,
        )
        self._states[session.id] = state
        self._notes[session.id] = note
        self._arm(state, note, now)

        await self._persist()
        logger.info(f"Timer scheduled for {session.id}: expires at {state.expiry_time}")
        event_bus.emit(AppEvent.TIMER_SCHEDULED, {
            "location_id": session.id,
            "expiry_time": state.expiry_time,
            "reminder_time": state.reminder_time,
        })
        return True

    async def cancel_timer(self, location_id: str, clear_session: bool = False) -> None:
        """Disarm a session's timers; unknown ids only get persisted again."""
        existed = location_id in self._states
        self._disarm(location_id)
        self._states.pop(location_id, None)
        self._notes.pop(location_id, None)
        await self._persist()

        if existed:
            logger.info(f"Timer cancelled for {location_id}")
            event_bus.emit(AppEvent.TIMER_CANCELLED, {"location_id": location_id})

        if clear_session:
            await self._update_session(location_id, {
                "expiryTime": None,
                "reminderMinutes": None,
                "extensionCount": 0,
            })

    async def extend_timer(
        self,
        location_id: str,
        additional_minutes: int,
        session: ParkingSession,
    ) -> Optional[ParkingSession]:
        """Push a session's expiry back and re-arm its timers.

        The reminder lead time is kept, so the reminder moves with the expiry.

        Returns:
            The updated session, or None when it cannot be extended.
        """
        if additional_minutes <= 0:
            logger.warning(f"Refusing to extend {location_id} by {additional_minutes} minutes")
            return None
        if session.id != location_id:
            logger.warning(f"Session {session.id} does not match {location_id}")
            return None
        if session.expiry_time is None:
            logger.warning(f"Session {location_id} has no expiry time to extend")
            return None

        updated = session.extended(additional_minutes)
        await self._update_session(location_id, {
            "expiryTime": updated.expiry_time,
            "extensionCount": updated.extension_count,
        })
        if not await self.schedule_timer(updated):
            # Still in the past after extending: make sure nothing stale stays armed
            await self.cancel_timer(location_id)

        logger.info(
            f"Timer extended for {location_id} by {additional_minutes} min "
            f"(extension #{updated.extension_count})"
        )
        event_bus.emit(AppEvent.TIMER_EXTENDED, {
            "location_id": location_id,
            "expiry_time": updated.expiry_time,
            "extension_count": updated.extension_count,
            "message": t("timer_extended").format(
                minutes=additional_minutes,
                note=session.note or t("unnamed_location"),
            ),
        })
        return updated

    async def sync_with_sessions(self, sessions: List[ParkingSession]) -> int:
        """Make armed timers mirror the given sessions exactly.

        Returns:
            Number of sessions armed.
        """
        self._disarm_all()
        self._states.clear()
        self._notes.clear()

        now = self._clock()
        count = 0
        for session in sessions:
            if session.expiry_time is None or session.expiry_time <= now:
                continue
            try:
                if await self.schedule_timer(session):
                    count += 1
            except ValueError as e:
                logger.error(f"Skipping session {session.id}: {e}")

        await self._persist()
        logger.info(f"Timers synced: {count} active")
        event_bus.emit(AppEvent.TIMERS_SYNCED, {"count": count})
        return count

    async def cancel_all_timers(self) -> None:
        """Disarm everything and drop the durable backup."""
        count = len(self._states)
        self._disarm_all()
        self._states.clear()
        self._notes.clear()
        try:
            await self._store.clear_timer_backup()
        except DatabaseError as e:
            logger.error(f"Failed to clear timer backup: {e}")
        logger.info(f"All timers cancelled ({count})")

    # ── Arming ─────────────────────────────────────────────────────────

    def _arm(self, state: TimerState, note: str, now: int) -> None:
        loop = asyncio.get_running_loop()
        location_id = state.location_id
        handles: List[asyncio.TimerHandle] = []

        if state.reminder_time is not None and state.reminder_time > now:
            delay = state.reminder_time - now
            minutes_left = TimeFormatter.ms_to_minutes(state.expiry_time - state.reminder_time)
            self._scheduler.schedule(
                reminder_alert_id(location_id),
                delay,
                t("reminder_title"),
                t("reminder_body").format(
                    note=note, time=TimeFormatter.minutes_to_display(minutes_left)
                ),
                AlertOptions(
                    tag=reminder_alert_id(location_id),
                    vibrate=list(REMINDER_VIBRATE),
                    data={"location_id": location_id, "kind": AlertKind.REMINDER.value},
                ),
            )
            handles.append(loop.call_later(delay / 1000, self._on_reminder, state))
            state.reminder_scheduled = True

        delay = state.expiry_time - now
        self._scheduler.schedule(
            expiry_alert_id(location_id),
            delay,
            t("expiry_title"),
            t("expiry_body").format(note=note),
            AlertOptions(
                tag=expiry_alert_id(location_id),
                require_interaction=True,
                vibrate=list(EXPIRY_VIBRATE),
                data={"location_id": location_id, "kind": AlertKind.EXPIRY.value},
            ),
        )
        handles.append(loop.call_later(delay / 1000, self._on_expiry, state))
        state.expiry_scheduled = True

        self._handles[location_id] = handles

    def _disarm(self, location_id: str) -> None:
        for handle in self._handles.pop(location_id, []):
            handle.cancel()
        self._scheduler.cancel(reminder_alert_id(location_id))
        self._scheduler.cancel(expiry_alert_id(location_id))

    def _disarm_all(self) -> None:
        for location_id in set(self._handles) | set(self._states):
            self._disarm(location_id)

    def _on_reminder(self, state: TimerState) -> None:
        location_id = state.location_id
        if self._states.get(location_id) is not state:
            return
        minutes_left = TimeFormatter.ms_to_minutes(state.expiry_time - self._clock())
        logger.info(f"Reminder for {location_id}: {minutes_left} min left")
        event_bus.emit(AppEvent.TIMER_REMINDER, {
            "location_id": location_id,
            "note": self._notes.get(location_id, t("unnamed_location")),
            "minutes_left": minutes_left,
        })

    def _on_expiry(self, state: TimerState) -> None:
        location_id = state.location_id
        if self._states.get(location_id) is not state:
            return
        note = self._notes.pop(location_id, t("unnamed_location"))
        del self._states[location_id]
        self._handles.pop(location_id, None)
        logger.info(f"Parking expired for {location_id}")
        event_bus.emit(AppEvent.TIMER_EXPIRED, {"location_id": location_id, "note": note})
        self._schedule_async(self._persist)

    # ── Persistence and lifecycle ──────────────────────────────────────

    async def _persist(self) -> None:
        backup = PersistedBackup(saved_at=self._clock(), timers=list(self._states.values()))
        try:
            await self._store.save_timer_backup(backup)
        except DatabaseError as e:
            logger.error(f"Failed to persist timers: {e}")

    async def _update_session(self, location_id: str, updates: Dict[str, Any]) -> None:
        if self._session_store is None:
            return
        try:
            await self._session_store.update_session(location_id, updates)
        except (DatabaseError, OSError, ValueError) as e:
            logger.error(f"Failed to update session {location_id}: {e}")

    async def restore(self) -> int:
        """Load persisted states; elapsed ones are dropped.

        Restored states are not armed until reconcile() runs.

        Returns:
            Number of states restored.
        """
        try:
            backup = await self._store.load_timer_backup()
        except DatabaseError as e:
            logger.error(f"Failed to restore timers: {e}")
            return 0
        if backup is None:
            return 0

        now = self._clock()
        restored = 0
        for state in backup.timers:
            if state.expiry_time <= now:
                logger.info(f"Dropping elapsed timer for {state.location_id}")
                continue
            if state.location_id in self._states:
                continue
            state.reminder_scheduled = False
            state.expiry_scheduled = False
            self._states[state.location_id] = state
            restored += 1

        logger.info(f"Restored {restored} timers from backup saved at {backup.saved_at}")
        event_bus.emit(AppEvent.TIMERS_RESTORED, {"count": restored})
        return restored

    async def reconcile(self) -> int:
        """Drop elapsed timers and re-arm any that are not armed.

        Returns:
            Number of timers re-armed.
        """
        now = self._clock()
        expired = [lid for lid, s in self._states.items() if s.expiry_time <= now]
        for location_id in expired:
            logger.info(f"Timer for {location_id} elapsed while away")
            self._disarm(location_id)
            del self._states[location_id]
            self._notes.pop(location_id, None)

        rearmed = 0
        for state in list(self._states.values()):
            if state.is_armed:
                continue
            note = self._notes.setdefault(state.location_id, t("unnamed_location"))
            self._disarm(state.location_id)
            self._arm(state, note, now)
            rearmed += 1

        if expired or rearmed:
            logger.info(f"Reconciled timers: {len(expired)} dropped, {rearmed} re-armed")
            await self._persist()
        return rearmed

    async def on_app_hidden(self) -> None:
        await self._persist()
        if HANDOFF_ON_BACKGROUND:
            await self._scheduler.hand_off_pending()

    async def on_app_visible(self) -> None:
        await self.reconcile()

    async def handle_visibility(self, visibility: AppVisibility) -> None:
        """Entry point for platform lifecycle changes."""
        self._scheduler.delivery.set_visibility(visibility)
        event_bus.emit(AppEvent.VISIBILITY_CHANGED, {"visibility": visibility.value})
        if visibility == AppVisibility.HIDDEN:
            await self.on_app_hidden()
        else:
            await self.on_app_visible()

    async def shutdown(self) -> None:
        """Persist states and drop in-process handles. Handed-off alerts survive."""
        await self._persist()
        for handles in self._handles.values():
            for handle in handles:
                handle.cancel()
        self._handles.clear()

    # ── Introspection ──────────────────────────────────────────────────

    def list_active_timers(self) -> List[str]:
        now = self._clock()
        active = [s for s in self._states.values() if s.expiry_time > now]
        return [s.location_id for s in sorted(active, key=lambda s: s.expiry_time)]

    def is_active(self, location_id: str) -> bool:
        state = self._states.get(location_id)
        return state is not None and state.expiry_time > self._clock()

    def get_remaining_time(self, location_id: str) -> Optional[int]:
        """Milliseconds until expiry, clamped at 0; None for unknown sessions."""
        state = self._states.get(location_id)
        if state is None:
            return None
        return max(0, state.expiry_time - self._clock())

    def get_timer_info(self) -> List[Dict[str, Any]]:
        now = self._clock()
        info = []
        for state in sorted(self._states.values(), key=lambda s: s.expiry_time):
            remaining = max(0, state.expiry_time - now)
            info.append({
                "location_id": state.location_id,
                "note": self._notes.get(state.location_id),
                "expiry_time": state.expiry_time,
                "reminder_time": state.reminder_time,
                "remaining_ms": remaining,
                "remaining_display": TimeFormatter.ms_to_countdown(remaining),
                "reminder_scheduled": state.reminder_scheduled,
                "expiry_scheduled": state.expiry_scheduled,
                "is_expired": remaining == 0,
            })
        return info

    def get_system_stats(self) -> Dict[str, Any]:
        """Health summary comparing armed timers with tracked states."""
        states = len(self._states)
        armed = len(self._handles)
        pending = len(self._scheduler.list_pending())
        upcoming = [s.expiry_time for s in self._states.values() if s.expiry_time > self._clock()]
        if states and not armed:
            health = "error"
        elif abs(states - armed) > HEALTH_WARNING_DRIFT:
            health = "warning"
        else:
            health = "good"
        return {
            "active_timers": armed,
            "timer_states": states,
            "pending_alerts": pending,
            "next_expiration": min(upcoming) if upcoming else None,
            "agent_registered": self._scheduler.delivery.bridge.is_registered,
            "foreground": self._scheduler.delivery.foreground,
            "health": health,
        }

    async def cleanup_expired_timers(self) -> int:
        """Drop states whose expiry passed without firing (e.g. while suspended).

        Returns:
            Number of states removed.
        """
        now = self._clock()
        expired = [lid for lid, s in self._states.items() if s.expiry_time <= now]
        for location_id in expired:
            self._disarm(location_id)
            del self._states[location_id]
            self._notes.pop(location_id, None)
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired timers")
            await self._persist()
        return len(expired)

"""Time formatting utilities for alert bodies and timer introspection.

All engine timestamps are epoch milliseconds; these helpers turn remaining
durations into short human text like "15 min", "1h 30m" or "01:29:59".
"""
from datetime import datetime


class TimeFormatter:
    """Duration formatting shared by alerts and timer info."""

    @staticmethod
    def minutes_to_display(minutes: int) -> str:
        """Convert minutes to '5 min', '1h' or '1h 30m'."""
        if minutes < 60:
            return f"{minutes} min"
        h, m = divmod(minutes, 60)
        return f"{h}h" if m == 0 else f"{h}h {m}m"

    @staticmethod
    def ms_to_minutes(ms: int) -> int:
        """Round a millisecond duration to whole minutes (never negative)."""
        return max(0, round(ms / 60_000))

    @staticmethod
    def ms_to_display(ms: int) -> str:
        return TimeFormatter.minutes_to_display(TimeFormatter.ms_to_minutes(ms))

    @staticmethod
    def ms_to_countdown(ms: int) -> str:
        """Convert a remaining duration to 'H:MM:SS' or 'MM:SS'."""
        seconds = max(0, ms // 1000)
        hours, rest = divmod(seconds, 3600)
        minutes, secs = divmod(rest, 60)
        if hours > 0:
            return f"{hours}:{minutes:02d}:{secs:02d}"
        return f"{minutes:02d}:{secs:02d}"

    @staticmethod
    def epoch_ms_to_clock(epoch_ms: int) -> str:
        """Local wall clock 'YYYY-MM-DD HH:MM' for an epoch timestamp."""
        return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M")

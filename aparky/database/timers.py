import logging
from typing import Optional

from config import TIMER_BACKUP_KEY
from database.helpers import DatabaseError
from models.entities import PersistedBackup

logger = logging.getLogger(__name__)


class TimerBackupMixin:
    """Persisted timer backup operations mixin.

    The backup lives under a single settings key and is always written in
    full, so a reader never observes a partially updated document.
    """

    async def save_timer_backup(self, backup: PersistedBackup) -> None:
        await self.set_setting(TIMER_BACKUP_KEY, backup.to_dict())
        logger.debug(f"Timer backup saved: {len(backup.timers)} timers")

    async def load_timer_backup(self) -> Optional[PersistedBackup]:
        """Load the backup, or None when nothing (valid) is stored.

        Raises:
            DatabaseError: if the store cannot be read
        """
        raw = await self.get_setting(TIMER_BACKUP_KEY)
        if raw is None:
            return None
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring timer backup with unexpected type {type(raw).__name__}")
            return None
        try:
            return PersistedBackup.from_dict(raw)
        except (TypeError, ValueError) as e:
            raise DatabaseError(f"Corrupt timer backup: {e}") from e

    async def clear_timer_backup(self) -> None:
        await self.delete_setting(TIMER_BACKUP_KEY)

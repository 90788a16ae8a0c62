import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


def encode_json(value: Any) -> str:
    """Serialize a settings value; raises DatabaseError on unserializable input."""
    try:
        return json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise DatabaseError(f"Value is not JSON serializable: {e}") from e


def decode_json(raw: str, default: Any = None) -> Any:
    """Parse a stored settings value, returning default for corrupt rows."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Discarding corrupt settings value: {e}")
        return default

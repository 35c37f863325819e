import logging
from typing import Any, Dict, Optional, Tuple

import jsonschema

logger = logging.getLogger(__name__)


# --- Custom Logging Filter ---
# Records coming from the relay, the executor and third-party libraries (aiohttp,
# playwright) do not all carry a session id; the formatter needs one on every record.
class SessionLogFilter(logging.Filter):
    """
    A logging filter that ensures 'session_id' and a normalized 'name'
    are present on log records for consistent formatting.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        current_session_id = getattr(record, "session_id", None)
        if current_session_id is None:
            record.session_id = "system"
        else:
            record.session_id = str(current_session_id)

        current_logger_name = getattr(record, "name", None)
        if not current_logger_name or current_logger_name == "root":
            record.name = "DefaultLogger"
        else:
            record.name = str(current_logger_name)

        return True


def init_logging(level: int = logging.INFO, clear_existing_handlers: bool = True) -> None:
    """
    Sets up a standardized console logging configuration for webpilot.

    Args:
        level: The desired logging level for the root logger (e.g., logging.INFO).
        clear_existing_handlers: If True, removes any handlers already attached to the
                                 root logger so re-running setup does not duplicate output.
    """
    root_logger = logging.getLogger()

    if clear_existing_handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - [%(name)s] [%(session_id)s] %(message)s"
    )
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(SessionLogFilter())

    root_logger.addHandler(stream_handler)
    root_logger.setLevel(level)

    logging.getLogger(__name__).info(
        f"Logging setup complete. Root logger level set to {logging.getLevelName(level)}."
    )


def session_extra(session_id: Optional[str]) -> Dict[str, Any]:
    """Build the ``extra`` mapping for session-scoped log records."""
    return {"session_id": session_id or "system"}


def truncate_text(text: str, limit: Optional[int], marker: str = "... [truncated]") -> str:
    """Cut ``text`` to ``limit`` characters, appending a marker when anything was dropped."""
    if limit is None or limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + marker


# --- Schema Utility Functions ---

def validate_data(data: Any, schema: Optional[Dict[str, Any]]) -> Tuple[bool, Optional[str]]:
    """
    Validates data against a JSON schema.

    Returns:
        ``(True, None)`` when valid, otherwise ``(False, message)`` naming the failing path.
    """
    if schema is None:
        return True, None

    try:
        jsonschema.validate(instance=data, schema=schema)
        return True, None
    except jsonschema.exceptions.ValidationError as e:
        error_path = " -> ".join(map(str, e.path))
        if error_path:
            error_msg = f"Validation Error at '{error_path}': {e.message}"
        else:
            error_msg = f"Validation Error: {e.message}"
        logger.debug(f"Schema validation failed: {error_msg}\nData: {data}")
        return False, error_msg

import json
import logging
from enum import Enum
from typing import Any, Dict

from swotapp.utils.logging_helpers import MATCH_LOG_FIELDS
from swotapp.utils.time_utils import now_utc

# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

_TOP_LEVEL_FIELDS = MATCH_LOG_FIELDS + ("round_status", "error_type")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return repr(value)


class MatchJsonFormatter(logging.Formatter):
    """One JSON object per record.

    Envelope fields, the round status and the error type sit at the top
    level so a round can be followed with a single filter; any other extras
    are nested under ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        fields = vars(record)
        entry: Dict[str, Any] = {
            "timestamp": now_utc().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _TOP_LEVEL_FIELDS:
            if key in fields:
                entry[key] = _jsonable(fields[key])

        extra = {
            key: _jsonable(value)
            for key, value in fields.items()
            if key not in _RECORD_ATTRS and key not in entry and not key.startswith("_")
        }
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(debug: bool = False) -> None:
    """Send root logging through :class:`MatchJsonFormatter`."""

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(MatchJsonFormatter())
        root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

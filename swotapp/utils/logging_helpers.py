"""Match-scoped log context.

Every engine record carries the same envelope: which room, match and team
it concerns, the round it happened in, the action attempted and how it
ended. Adapters pre-fill the envelope so call sites only pass what they
learn along the way.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, MutableMapping, Tuple, Union

#: Fields present on every record logged through a :class:`MatchLogAdapter`.
MATCH_LOG_FIELDS: Tuple[str, ...] = (
    "component",
    "room_id",
    "match_id",
    "team_id",
    "round",
    "action",
    "outcome",
    "event_type",
)


class MatchLogAdapter(logging.LoggerAdapter):
    """Attach the match envelope to each record, letting per-call extras win."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "MatchLogAdapter":
        return MatchLogAdapter(self.logger, {**self.extra, **context})

    def getChild(self, suffix: str) -> "MatchLogAdapter":  # noqa: N802
        return MatchLogAdapter(self.logger.getChild(suffix), dict(self.extra))


def match_logger(
    logger: Union[logging.Logger, logging.LoggerAdapter], **context: Any
) -> MatchLogAdapter:
    """Wrap ``logger`` so its records carry the full match envelope.

    Context bound on an adapter passed in is kept; ``context`` is layered on
    top and unset envelope fields are logged as ``None``.
    """

    envelope: Dict[str, Any] = dict.fromkeys(MATCH_LOG_FIELDS)
    if isinstance(logger, logging.LoggerAdapter):
        envelope.update(logger.extra or {})
        logger = logger.logger
    envelope.update(context)
    return MatchLogAdapter(logger, envelope)

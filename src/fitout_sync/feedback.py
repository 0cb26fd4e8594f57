"""
User feedback surface for mutation outcomes.
"""

from __future__ import annotations

import logging
import os
import time
from collections import deque
from typing import Any, Protocol

logger = logging.getLogger(__name__)

FEEDBACK_HISTORY = int(os.getenv("FITOUT_SYNC_FEEDBACK_HISTORY", "50"))


class FeedbackSink(Protocol):
    """Fire-and-forget success/failure signals. Implementations must not raise."""

    def notify_success(self, message: str) -> None: ...

    def notify_failure(self, message: str) -> None: ...


class LoggingFeedback:
    """Logs every signal and keeps the most recent ones for display."""

    def __init__(self, history: int | None = None):
        self._recent: deque[dict[str, Any]] = deque(maxlen=history or FEEDBACK_HISTORY)

    def _record(self, level: str, message: str) -> None:
        self._recent.append({"level": level, "message": message, "at": time.time()})

    def notify_success(self, message: str) -> None:
        logger.info("%s", message)
        self._record("success", message)

    def notify_failure(self, message: str) -> None:
        logger.warning("%s", message)
        self._record("error", message)

    def recent(self, limit: int | None = None) -> list[dict[str, Any]]:
        items = list(self._recent)
        if limit is not None and limit > 0:
            items = items[-limit:]
        return items

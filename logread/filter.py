"""Regex message filter, compiled once at startup."""

import logging
import re

logger = logging.getLogger(__name__)


class MessageFilter:
    """Accepts messages matching a pattern anywhere in the text.

    With no pattern, or a pattern that fails to compile, every message is
    accepted.
    """

    def __init__(self, pattern: str | None = None):
        self._pattern: re.Pattern | None = None
        if pattern is None:
            return
        try:
            self._pattern = re.compile(pattern)
        except re.error as e:
            logger.error(
                "Invalid filter pattern %r: %s; accepting all messages", pattern, e
            )

    @property
    def active(self) -> bool:
        return self._pattern is not None

    @property
    def pattern(self) -> str | None:
        return self._pattern.pattern if self._pattern else None

    def accepts(self, message: str) -> bool:
        if self._pattern is None:
            return True
        return self._pattern.search(message) is not None

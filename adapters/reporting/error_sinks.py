from __future__ import annotations

import logging

from domain.errors import BlockEngineError, Severity

logger = logging.getLogger(__name__)

_LEVELS = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.ERROR,
}


class LoggingErrorSink:
    def __init__(self, log: logging.Logger | None = None) -> None:
        self._logger = log or logger

    def report(self, error: BlockEngineError) -> None:
        self._logger.log(
            _LEVELS.get(error.severity, logging.WARNING),
            "%s: %s %s",
            error.kind,
            error.message,
            error.context or "",
        )


class CollectingErrorSink:
    def __init__(self) -> None:
        self.errors: list[BlockEngineError] = []

    def report(self, error: BlockEngineError) -> None:
        self.errors.append(error)

    @property
    def kinds(self) -> list[str]:
        return [error.kind for error in self.errors]

    def clear(self) -> None:
        self.errors.clear()

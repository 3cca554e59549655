from __future__ import annotations

from typing import Protocol

from domain.errors import BlockEngineError


class ErrorSink(Protocol):
    def report(self, error: BlockEngineError) -> None: ...

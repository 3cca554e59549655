from __future__ import annotations

from enum import Enum
from typing import Any


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class BlockEngineError(Exception):
    """Base class for every failure raised or reported by the block engine.

    Each error carries a stable ``kind`` string, a severity and a context
    mapping so that an ``ErrorSink`` can report it without parsing messages.
    """

    kind = "block_engine_error"
    default_severity = Severity.MEDIUM

    def __init__(self, message: str, *, severity: Severity | None = None, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.context = {key: value for key, value in context.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "severity": self.severity.value,
            "context": dict(self.context),
        }


class NotFoundError(BlockEngineError, LookupError):
    kind = "not_found"


class StructuralError(BlockEngineError, ValueError):
    kind = "structural"


class SlotOccupiedError(StructuralError):
    kind = "slot_occupied"
    default_severity = Severity.LOW


class InvalidBlockError(BlockEngineError, ValueError):
    kind = "invalid_block"


class InternalInvariantViolation(BlockEngineError, RuntimeError):
    kind = "internal_invariant_violation"
    default_severity = Severity.HIGH

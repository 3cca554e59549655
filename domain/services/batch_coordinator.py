from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from domain.errors import InternalInvariantViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchOperation:
    apply: Callable[[], object]
    rollback: Callable[[], object]
    label: str = ""


@dataclass
class BatchStats:
    batches_started: int = 0
    batches_committed: int = 0
    batches_rolled_back: int = 0
    operations_recorded: int = 0
    operations_rolled_back: int = 0


class BatchOperationCoordinator:
    """Records reversible store mutations so a multi-step edit commits or rolls back as one."""

    def __init__(self) -> None:
        self._scope_id: str | None = None
        self._operations: list[BatchOperation] = []
        self.stats = BatchStats()

    @property
    def is_active(self) -> bool:
        return self._scope_id is not None

    @property
    def scope_id(self) -> str | None:
        return self._scope_id

    @property
    def operations(self) -> tuple[BatchOperation, ...]:
        return tuple(self._operations)

    def start_batch(self, scope_id: str) -> None:
        if self.is_active:
            logger.warning("Batch %s still open when starting %s; committing it", self._scope_id, scope_id)
            self.end_batch(True)
        self._scope_id = scope_id
        self._operations = []
        self.stats.batches_started += 1
        logger.debug("Started batch %s", scope_id)

    def add_operation(
        self,
        apply: Callable[[], object],
        rollback: Callable[[], object],
        label: str = "",
    ) -> None:
        if not self.is_active:
            msg = "No batch is open"
            raise RuntimeError(msg)
        try:
            apply()
        except Exception:
            logger.warning("Operation %r failed in batch %s; undoing it", label, self._scope_id)
            try:
                rollback()
            except Exception:
                logger.exception("Undo of failed operation %r raised", label)
            raise
        self._operations.append(BatchOperation(apply=apply, rollback=rollback, label=label))
        self.stats.operations_recorded += 1

    def end_batch(self, success: bool) -> bool:
        if not self.is_active:
            return False
        scope_id = self._scope_id
        operations = self._operations
        self._scope_id = None
        self._operations = []
        if success:
            self.stats.batches_committed += 1
            logger.debug("Committed batch %s with %s operations", scope_id, len(operations))
            return True

        for operation in reversed(operations):
            try:
                operation.rollback()
            except Exception as exc:
                msg = f"Rollback of {operation.label or 'operation'} failed in batch {scope_id}"
                raise InternalInvariantViolation(msg, scope_id=scope_id) from exc
            self.stats.operations_rolled_back += 1
        self.stats.batches_rolled_back += 1
        logger.debug("Rolled back batch %s (%s operations)", scope_id, len(operations))
        return False

    def replay(self) -> None:
        for operation in self._operations:
            operation.apply()

    @contextmanager
    def batch(self, scope_id: str) -> Iterator[BatchOperationCoordinator]:
        self.start_batch(scope_id)
        try:
            yield self
        except Exception:
            self.end_batch(False)
            raise
        self.end_batch(True)

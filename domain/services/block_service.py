from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from domain.errors import BlockEngineError, InternalInvariantViolation, NotFoundError
from domain.models import Block, BlockType, ConnectionKind, Position
from domain.ports.reporting import ErrorSink
from domain.services.block_graph_store import BlockGraphStore

logger = logging.getLogger(__name__)


class BlockService:
    """Boundary over the store that reports failures instead of raising them.

    Structural and lookup failures go to the error sink and surface as a
    ``False`` or ``None`` return. ``update_block`` on a missing id still raises
    ``NotFoundError``; invariant violations are reported and re-raised.
    """

    def __init__(self, store: BlockGraphStore, error_sink: ErrorSink | None = None) -> None:
        self.store = store
        self._error_sink = error_sink

    def report(self, error: BlockEngineError) -> None:
        logger.debug("Reporting %s: %s", error.kind, error.message)
        if self._error_sink is not None:
            self._error_sink.report(error)

    def get_block(self, block_id: str) -> Block | None:
        return self.store.get_block(block_id)

    def get_all_blocks(self) -> list[Block]:
        return self.store.get_all_blocks()

    def create_block(
        self,
        block_type: BlockType | str,
        position: Position | None = None,
        **fields: Any,
    ) -> str:
        return self._guard(self.store.create_block, block_type, position, **fields)

    def update_block(self, block_id: str, patch: Mapping[str, Any]) -> None:
        try:
            self._guard(self.store.update_block, block_id, patch)
        except NotFoundError as exc:
            self.report(exc)
            raise

    def delete_block(self, block_id: str) -> None:
        self._guard(self.store.delete_block, block_id)

    def remove_block_with_children(self, block_id: str) -> None:
        self._guard(self.store.remove_block_with_children, block_id)

    def connect_blocks(self, parent_id: str, child_id: str, is_loop: bool = False) -> bool:
        try:
            self._guard(self.store.connect_blocks, parent_id, child_id, is_loop)
        except InternalInvariantViolation:
            raise
        except BlockEngineError as exc:
            self.report(exc)
            return False
        return True

    def disconnect_block(self, block_id: str) -> None:
        block = self.store.get_block(block_id)
        if block is None or block.parent_id is None:
            return
        self._guard(self.store.disconnect_blocks, block.parent_id, block_id)

    def connect_value(self, value_id: str, target_id: str, content_id: str | None = None) -> str | None:
        try:
            return self._guard(self.store.connect_value, value_id, target_id, content_id)
        except InternalInvariantViolation:
            raise
        except BlockEngineError as exc:
            self.report(exc)
            return None

    def disconnect_value(self, value_id: str) -> None:
        self._guard(self.store.disconnect_value, value_id)

    def validate_block_connection(
        self,
        parent_id: str,
        child_id: str,
        kind: ConnectionKind | None = None,
    ) -> bool:
        return self.store.validate_block_connection(parent_id, child_id, kind)

    def _guard(self, operation: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return operation(*args, **kwargs)
        except InternalInvariantViolation as exc:
            self.report(exc)
            raise

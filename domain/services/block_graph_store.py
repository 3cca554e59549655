from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from domain.errors import InvalidBlockError, NotFoundError, SlotOccupiedError, StructuralError
from domain.models import (
    RELATIONSHIP_FIELDS,
    Block,
    BlockType,
    ConnectionKind,
    Position,
    default_connection,
    generate_block_id,
)
from domain.services import block_chains
from domain.services.connection_validator import check_connection
from domain.services.graph_invariants import assert_graph_invariants

logger = logging.getLogger(__name__)

BlockSnapshot = Mapping[str, Block]


def _validate_block(data: Mapping[str, Any]) -> Block:
    try:
        return Block.model_validate(data)
    except ValidationError as exc:
        raise InvalidBlockError(str(exc), block_id=data.get("id")) from exc


class BlockGraphStore:
    """Authoritative map of blocks and the relationships between them.

    Blocks are immutable; every mutation replaces the stored entry, so a
    snapshot is a shallow copy of the map. With ``strict=True`` every public
    mutation re-checks the whole graph and raises ``InternalInvariantViolation``
    on the first broken invariant.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self._blocks: dict[str, Block] = {}
        self.strict = strict

    def __len__(self) -> int:
        return len(self._blocks)

    def get_block(self, block_id: str | None) -> Block | None:
        if block_id is None:
            return None
        return self._blocks.get(block_id)

    def require_block(self, block_id: str) -> Block:
        block = self._blocks.get(block_id)
        if block is None:
            raise NotFoundError(f"Block not found: {block_id}", block_id=block_id)
        return block

    def get_all_blocks(self) -> list[Block]:
        return list(self._blocks.values())

    def has_block(self, block_id: str) -> bool:
        return block_id in self._blocks

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    def create_block(
        self,
        block_type: BlockType | str,
        position: Position | None = None,
        **fields: Any,
    ) -> str:
        forbidden = (RELATIONSHIP_FIELDS | {"id"}) & fields.keys()
        if forbidden:
            msg = f"Relationship fields cannot be set on creation: {sorted(forbidden)}"
            raise StructuralError(msg)
        block_id = generate_block_id()
        while block_id in self._blocks:
            block_id = generate_block_id()
        data = {**fields, "id": block_id, "type": block_type, "position": position or Position()}
        block = _validate_block(data)
        if fields.get("connection") is None:
            block = block.model_copy(update={"connection": default_connection(block.type)})
        if block.value_bindings():
            msg = "Value slots must be empty on creation"
            raise StructuralError(msg, block_id=block_id)
        self._blocks[block_id] = block
        logger.debug("Created %s block %s", block.type.value, block_id)
        self._verify("create_block")
        return block_id

    def restore_block(self, block: Block) -> None:
        """Re-insert a previously exported block under its own id.

        Relationships are taken as-is; the caller is responsible for restoring
        a consistent set of blocks.
        """
        self._blocks[block.id] = block
        self._verify("restore_block")

    def update_block(self, block_id: str, patch: Mapping[str, Any]) -> Block:
        current = self.require_block(block_id)
        forbidden = (RELATIONSHIP_FIELDS | {"id"}) & patch.keys()
        if forbidden:
            msg = f"Relationship fields are managed by connect/disconnect: {sorted(forbidden)}"
            raise StructuralError(msg, block_id=block_id)
        merged = current.model_dump()
        merged.update(patch)
        updated = _validate_block(merged)
        if updated.value_bindings() != current.value_bindings():
            msg = "Value slot bindings are managed by connect_value/disconnect_value"
            raise StructuralError(msg, block_id=block_id)
        if updated.type is not current.type:
            if current.is_loop and current.loop_first_child_id:
                msg = "Cannot change the type of a Loop that has an interior"
                raise StructuralError(msg, block_id=block_id)
            if current.value_target_id:
                msg = "Cannot change the type of a plugged Value block"
                raise StructuralError(msg, block_id=block_id)
        self._blocks[block_id] = updated
        self._verify("update_block")
        return updated

    def delete_block(self, block_id: str) -> None:
        block = self._blocks.get(block_id)
        if block is None:
            return
        if block.is_loop and block.loop_first_child_id:
            self._remove_cascade(block.loop_first_child_id)
        self._detach(block_id)
        del self._blocks[block_id]
        logger.debug("Deleted block %s", block_id)
        self._verify("delete_block")

    def remove_block_with_children(self, block_id: str) -> None:
        if block_id not in self._blocks:
            return
        removed = self._remove_cascade(block_id)
        logger.debug("Removed %s blocks starting at %s", removed, block_id)
        self._verify("remove_block_with_children")

    def connect_blocks(self, parent_id: str, child_id: str, is_loop: bool = False) -> None:
        kind = ConnectionKind.LOOP if is_loop else ConnectionKind.OUTPUT
        if is_loop and self._in_interior(parent_id, child_id):
            logger.debug("Block %s is already inside loop %s", child_id, parent_id)
            return
        rejection = check_connection(self, parent_id, child_id, kind)
        if rejection is not None:
            raise rejection

        child = self._blocks[child_id]
        if child.parent_id is not None:
            if not is_loop and self._blocks[parent_id].child_id == child_id:
                return
            self._disconnect(child.parent_id, child_id)

        if is_loop:
            self._append_to_interior(parent_id, child_id)
        else:
            self._replace(parent_id, child_id=child_id)
            self._replace(child_id, parent_id=parent_id)
            self._refresh_enclosing_tail(parent_id)
        logger.debug("Connected %s -> %s (%s)", parent_id, child_id, kind.value)
        self._verify("connect_blocks")

    def disconnect_blocks(self, parent_id: str, child_id: str) -> None:
        child = self._blocks.get(child_id)
        if child is None or child.parent_id != parent_id or parent_id not in self._blocks:
            logger.debug("Blocks %s and %s are not connected", parent_id, child_id)
            return
        self._disconnect(parent_id, child_id)
        logger.debug("Disconnected %s -> %s", parent_id, child_id)
        self._verify("disconnect_blocks")

    def connect_value(self, value_id: str, target_id: str, content_id: str | None = None) -> str:
        value = self.require_block(value_id)
        target = self.require_block(target_id)
        if value.value_target_id == target_id and content_id is not None:
            slot = target.find_content(content_id)
            if slot is not None and slot.data.variables == value_id:
                return content_id
        rejection = check_connection(self, target_id, value_id, ConnectionKind.VALUE, content_id)
        if rejection is not None:
            raise rejection
        if value.value_target_id is not None:
            self._unplug(value_id)
        target = self._blocks[target_id]
        slot = target.free_value_slot(content_id)
        if slot is None:
            msg = f"Block {target_id} has no free value slot"
            raise SlotOccupiedError(msg, target_id=target_id, content_id=content_id)
        content = tuple(
            item.with_variables(value_id) if item.id == slot.id else item for item in target.content
        )
        self._replace(target_id, content=content)
        self._replace(value_id, value_target_id=target_id)
        logger.debug("Plugged value %s into %s[%s]", value_id, target_id, slot.id)
        self._verify("connect_value")
        return slot.id

    def disconnect_value(self, value_id: str) -> None:
        value = self._blocks.get(value_id)
        if value is None or value.value_target_id is None:
            return
        self._unplug(value_id)
        logger.debug("Unplugged value %s", value_id)
        self._verify("disconnect_value")

    def validate_block_connection(
        self,
        parent_id: str,
        child_id: str,
        kind: ConnectionKind | None = None,
        content_id: str | None = None,
    ) -> bool:
        return (
            check_connection(self, parent_id, child_id, kind or ConnectionKind.OUTPUT, content_id)
            is None
        )

    def snapshot(self) -> BlockSnapshot:
        return dict(self._blocks)

    def restore_snapshot(self, snapshot: BlockSnapshot) -> None:
        self._blocks = dict(snapshot)
        self._verify("restore_snapshot")

    def clear(self) -> None:
        self._blocks.clear()

    def root_ancestor(self, block_id: str) -> Block | None:
        return block_chains.root_ancestor(self, block_id)

    def enclosing_loop(self, block_id: str) -> Block | None:
        return block_chains.enclosing_loop(self, block_id)

    def interior_chain(self, loop_id: str) -> list[Block]:
        return block_chains.interior_chain(self, loop_id)

    def _replace(self, block_id: str, **changes: Any) -> None:
        self._blocks[block_id] = self._blocks[block_id].model_copy(update=changes)

    def _in_interior(self, loop_id: str, block_id: str) -> bool:
        return any(member.id == block_id for member in self.interior_chain(loop_id))

    def _disconnect(self, parent_id: str, child_id: str) -> None:
        if self.enclosing_loop(child_id) is not None:
            self._splice_out(child_id)
        else:
            self._cut(parent_id, child_id)

    def _cut(self, parent_id: str, child_id: str) -> None:
        """Detach ``child_id`` from its parent; the child keeps its own chain."""
        parent = self._blocks[parent_id]
        if parent.is_loop and parent.loop_first_child_id == child_id:
            self._replace(parent_id, loop_first_child_id=None, loop_last_child_id=None)
        elif parent.child_id == child_id:
            self._replace(parent_id, child_id=None)
        self._replace(child_id, parent_id=None)
        self._refresh_enclosing_tail(parent_id)

    def _splice_out(self, block_id: str) -> None:
        """Remove a single block from a loop interior, joining its neighbours."""
        block = self._blocks[block_id]
        loop = self.enclosing_loop(block_id)
        parent_id = block.parent_id
        next_id = block.child_id
        if parent_id is None or loop is None:
            return
        if loop.id == parent_id:
            self._replace(loop.id, loop_first_child_id=next_id)
        else:
            self._replace(parent_id, child_id=next_id)
        if next_id is not None:
            self._replace(next_id, parent_id=parent_id)
        self._replace(block_id, parent_id=None, child_id=None)
        self._recompute_loop_tail(loop.id)

    def _append_to_interior(self, loop_id: str, child_id: str) -> None:
        members = self.interior_chain(loop_id)
        if not members:
            self._replace(loop_id, loop_first_child_id=child_id)
            self._replace(child_id, parent_id=loop_id)
        else:
            tail_id = members[-1].id
            self._replace(tail_id, child_id=child_id)
            self._replace(child_id, parent_id=tail_id)
        previous_id = child_id
        for member in block_chains.iter_chain(self, self._blocks[child_id].child_id):
            if member.parent_id != previous_id:
                self._replace(member.id, parent_id=previous_id)
            previous_id = member.id
        self._recompute_loop_tail(loop_id)

    def _recompute_loop_tail(self, loop_id: str) -> None:
        members = self.interior_chain(loop_id)
        if members:
            self._replace(loop_id, loop_last_child_id=members[-1].id)
        else:
            self._replace(loop_id, loop_first_child_id=None, loop_last_child_id=None)

    def _refresh_enclosing_tail(self, block_id: str) -> None:
        loop = self._blocks[block_id] if self._blocks[block_id].is_loop else None
        if loop is not None and loop.loop_first_child_id:
            self._recompute_loop_tail(loop.id)
        enclosing = self.enclosing_loop(block_id)
        if enclosing is not None:
            self._recompute_loop_tail(enclosing.id)

    def _unplug(self, value_id: str) -> None:
        value = self._blocks[value_id]
        host = self._blocks.get(value.value_target_id) if value.value_target_id else None
        if host is not None:
            content = tuple(
                item.with_variables(None) if item.data.variables == value_id else item
                for item in host.content
            )
            self._replace(host.id, content=content)
        self._replace(value_id, value_target_id=None)

    def _release_value_slots(self, block_id: str) -> None:
        for plugged_id in self._blocks[block_id].value_bindings().values():
            plugged = self._blocks.get(plugged_id)
            if plugged is not None and plugged.value_target_id == block_id:
                self._replace(plugged_id, value_target_id=None)

    def _detach(self, block_id: str) -> None:
        block = self._blocks[block_id]
        if block.parent_id is not None and block.parent_id in self._blocks:
            self._disconnect(block.parent_id, block_id)
        block = self._blocks[block_id]
        if block.child_id is not None and block.child_id in self._blocks:
            self._cut(block_id, block.child_id)
        if block.value_target_id is not None:
            self._unplug(block_id)
        self._release_value_slots(block_id)

    def _remove_cascade(self, root_id: str) -> int:
        doomed = block_chains.collect_subtree_ids(self, root_id, include_values=False)
        root = self._blocks[root_id]
        if root.parent_id is not None and root.parent_id in self._blocks:
            self._cut(root.parent_id, root_id)
        doomed_set = set(doomed)
        for block_id in doomed:
            block = self._blocks[block_id]
            if block.value_target_id is not None and block.value_target_id not in doomed_set:
                self._unplug(block_id)
            self._release_value_slots(block_id)
        for block_id in doomed:
            del self._blocks[block_id]
        return len(doomed)

    def _verify(self, operation: str) -> None:
        if self.strict:
            assert_graph_invariants(self._blocks.values(), operation=operation)

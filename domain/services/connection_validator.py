from __future__ import annotations

from domain.errors import BlockEngineError, NotFoundError, SlotOccupiedError, StructuralError
from domain.models import Block, ConnectionCapability, ConnectionKind
from domain.ports.repositories import BlockReader
from domain.services.block_chains import is_descendant

_CANNOT_HAVE_CHILDREN = {ConnectionCapability.INPUT, ConnectionCapability.NONE}
_CANNOT_HAVE_PARENT = {ConnectionCapability.OUTPUT, ConnectionCapability.NONE}


def check_self_connection(parent_id: str, child_id: str) -> StructuralError | None:
    if parent_id == child_id:
        return StructuralError("A block cannot connect to itself", block_id=parent_id)
    return None


def check_capabilities(parent: Block, child: Block, kind: ConnectionKind) -> StructuralError | None:
    if kind is ConnectionKind.VALUE:
        return None
    if parent.connection in _CANNOT_HAVE_CHILDREN:
        return StructuralError(
            f"Block {parent.id} cannot have children",
            parent_id=parent.id,
            connection=parent.connection.value,
        )
    if child.connection in _CANNOT_HAVE_PARENT:
        return StructuralError(
            f"Block {child.id} cannot have a parent",
            child_id=child.id,
            connection=child.connection.value,
        )
    return None


def would_create_cycle(reader: BlockReader, parent_id: str, child_id: str) -> bool:
    visited: set[str] = set()
    current_id: str | None = parent_id
    while current_id is not None and current_id not in visited:
        if current_id == child_id:
            return True
        visited.add(current_id)
        block = reader.get_block(current_id)
        current_id = block.parent_id if block else None
    return is_descendant(reader, child_id, parent_id)


def would_create_value_cycle(reader: BlockReader, target_id: str, value_id: str) -> bool:
    visited: set[str] = set()
    current_id: str | None = target_id
    while current_id is not None and current_id not in visited:
        if current_id == value_id:
            return True
        visited.add(current_id)
        block = reader.get_block(current_id)
        current_id = block.value_target_id if block else None
    return False


def check_cycle(reader: BlockReader, parent_id: str, child_id: str) -> StructuralError | None:
    if would_create_cycle(reader, parent_id, child_id):
        return StructuralError(
            "Connection would create a cycle", parent_id=parent_id, child_id=child_id
        )
    return None


def check_kind_rules(
    reader: BlockReader,
    parent: Block,
    child: Block,
    kind: ConnectionKind,
    content_id: str | None = None,
) -> StructuralError | None:
    if kind is ConnectionKind.VALUE:
        if not child.is_value:
            return StructuralError(
                "Only Value blocks can be plugged into value slots", child_id=child.id
            )
        if parent.free_value_slot(content_id) is None:
            return SlotOccupiedError(
                f"Block {parent.id} has no free value slot",
                target_id=parent.id,
                content_id=content_id,
            )
        if would_create_value_cycle(reader, parent.id, child.id):
            return StructuralError(
                "Value connection would create a cycle", target_id=parent.id, value_id=child.id
            )
        return None
    if kind is ConnectionKind.LOOP:
        if not parent.is_loop:
            return StructuralError(f"Block {parent.id} is not a Loop", parent_id=parent.id)
        return None
    if parent.child_id is not None and parent.child_id != child.id:
        return StructuralError(
            f"Block {parent.id} already has a child",
            parent_id=parent.id,
            existing_child_id=parent.child_id,
        )
    return None


def check_connection(
    reader: BlockReader,
    parent_id: str,
    child_id: str,
    kind: ConnectionKind = ConnectionKind.OUTPUT,
    content_id: str | None = None,
) -> BlockEngineError | None:
    """Return the first rule the connection breaks, or ``None`` when it is allowed.

    For ``value`` connections ``parent_id`` names the host block and ``child_id``
    the Value block being plugged in.
    """
    parent = reader.get_block(parent_id)
    if parent is None:
        return NotFoundError(f"Block not found: {parent_id}", block_id=parent_id)
    child = reader.get_block(child_id)
    if child is None:
        return NotFoundError(f"Block not found: {child_id}", block_id=child_id)

    rejection = check_self_connection(parent_id, child_id)
    if rejection is None:
        rejection = check_capabilities(parent, child, kind)
    if rejection is None and kind is not ConnectionKind.VALUE:
        rejection = check_cycle(reader, parent_id, child_id)
    if rejection is None:
        rejection = check_kind_rules(reader, parent, child, kind, content_id)
    return rejection


def can_connect(
    reader: BlockReader,
    parent_id: str,
    child_id: str,
    kind: ConnectionKind = ConnectionKind.OUTPUT,
    content_id: str | None = None,
) -> bool:
    return check_connection(reader, parent_id, child_id, kind, content_id) is None

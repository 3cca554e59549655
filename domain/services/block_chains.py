from __future__ import annotations

import logging
from collections.abc import Iterator

from domain.models import Block
from domain.ports.repositories import BlockReader

logger = logging.getLogger(__name__)


def iter_chain(reader: BlockReader, start_id: str | None) -> Iterator[Block]:
    visited: set[str] = set()
    current_id = start_id
    while current_id is not None and current_id not in visited:
        block = reader.get_block(current_id)
        if block is None:
            return
        visited.add(current_id)
        yield block
        current_id = block.child_id
    if current_id is not None:
        logger.warning("Chain starting at %s revisits block %s", start_id, current_id)


def interior_chain(reader: BlockReader, loop_id: str) -> list[Block]:
    loop = reader.get_block(loop_id)
    if loop is None or not loop.is_loop:
        return []
    return list(iter_chain(reader, loop.loop_first_child_id))


def enclosing_loop(reader: BlockReader, block_id: str) -> Block | None:
    """Return the Loop whose interior chain contains ``block_id``, if any."""
    visited: set[str] = set()
    current = reader.get_block(block_id)
    while current is not None and current.parent_id is not None:
        if current.id in visited:
            return None
        visited.add(current.id)
        parent = reader.get_block(current.parent_id)
        if parent is None:
            return None
        if parent.is_loop and parent.loop_first_child_id == current.id:
            return parent
        current = parent
    return None


def root_ancestor(reader: BlockReader, block_id: str) -> Block | None:
    visited: set[str] = set()
    current = reader.get_block(block_id)
    while current is not None and current.id not in visited:
        visited.add(current.id)
        upward = current.parent_id
        if upward is None and current.is_value:
            upward = current.value_target_id
        if upward is None:
            return current
        parent = reader.get_block(upward)
        if parent is None:
            return current
        current = parent
    return current


def attached_ids(block: Block, *, include_values: bool = True) -> list[str]:
    linked: list[str] = []
    if block.child_id:
        linked.append(block.child_id)
    if block.is_loop and block.loop_first_child_id:
        linked.append(block.loop_first_child_id)
    if include_values:
        linked.extend(block.value_bindings().values())
    return linked


def collect_subtree_ids(
    reader: BlockReader,
    root_id: str,
    *,
    include_values: bool = True,
    include_root: bool = True,
) -> list[str]:
    """Collect ids reachable below ``root_id`` through chains, loop interiors and value slots."""
    collected: list[str] = []
    seen: set[str] = set()
    stack = [root_id]
    while stack:
        current_id = stack.pop()
        if current_id in seen:
            continue
        block = reader.get_block(current_id)
        if block is None:
            continue
        seen.add(current_id)
        collected.append(current_id)
        stack.extend(
            linked
            for linked in reversed(attached_ids(block, include_values=include_values))
            if linked not in seen
        )
    if not include_root and collected:
        collected.remove(root_id)
    return collected


def is_descendant(reader: BlockReader, ancestor_id: str, target_id: str) -> bool:
    return target_id in collect_subtree_ids(
        reader, ancestor_id, include_values=False, include_root=False
    )

from __future__ import annotations

import logging
from dataclasses import dataclass

from domain.constants import DEFAULT_LAYOUT_CONSTANTS, LayoutConstants
from domain.models import Block, ConnectionKind, Position
from domain.ports.repositories import BlockReader
from domain.services.anchor_geometry import value_slot_origin
from domain.services.block_chains import interior_chain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedPlacement:
    block_id: str
    position: Position
    z_index: int


class DescendantLayoutPlanner:
    """Computes where every block attached below a root should sit.

    Chain successors go directly beneath their parent, loop interiors are
    indented under the loop header and plugged values sit on their host's
    input field. The planner never writes; callers apply the placements.
    """

    def __init__(self, reader: BlockReader, constants: LayoutConstants = DEFAULT_LAYOUT_CONSTANTS) -> None:
        self._reader = reader
        self._constants = constants

    @property
    def constants(self) -> LayoutConstants:
        return self._constants

    def chain_extent(self, block: Block, loop_heights: dict[str, float] | None = None) -> float:
        if block.is_loop:
            return self.loop_height(block.id, loop_heights)
        return self._constants.chain_step

    def loop_height(self, loop_id: str, cache: dict[str, float] | None = None) -> float:
        heights = cache if cache is not None else {}
        spacing = self._constants.vertical_spacing
        in_progress: set[str] = set()
        stack: list[tuple[str, bool]] = [(loop_id, False)]
        while stack:
            current_id, expanded = stack.pop()
            if current_id in heights:
                continue
            members = interior_chain(self._reader, current_id)
            if expanded:
                total = sum(
                    heights.get(member.id, spacing) if member.is_loop else self._constants.chain_step
                    for member in members
                )
                heights[current_id] = spacing + max(total, spacing) + self._constants.loop_close_height
                continue
            if current_id in in_progress:
                logger.warning("Loop %s nests inside itself", current_id)
                continue
            in_progress.add(current_id)
            stack.append((current_id, True))
            stack.extend(
                (member.id, False)
                for member in members
                if member.is_loop and member.id not in heights and member.id not in in_progress
            )
        return heights.get(loop_id, spacing * 2 + self._constants.loop_close_height)

    def plan(self, root_id: str, root_position: Position | None = None) -> list[PlannedPlacement]:
        root = self._reader.get_block(root_id)
        if root is None:
            return []
        loop_heights: dict[str, float] = {}
        placed: dict[str, tuple[Position, int]] = {root_id: (root_position or root.position, root.z_index)}
        placements: list[PlannedPlacement] = []
        stack = [root_id]
        while stack:
            current = self._reader.get_block(stack.pop())
            if current is None:
                continue
            origin, depth = placed[current.id]
            for attached_id, position in self._attachments(current, origin, loop_heights):
                if attached_id in placed:
                    logger.warning("Block %s reached twice while laying out %s", attached_id, root_id)
                    continue
                if self._reader.get_block(attached_id) is None:
                    continue
                placed[attached_id] = (position, depth + 1)
                placements.append(PlannedPlacement(attached_id, position, depth + 1))
                stack.append(attached_id)
        return placements

    def canonical_position(
        self,
        parent_id: str,
        child_id: str,
        kind: ConnectionKind,
    ) -> Position | None:
        """Position ``child_id`` takes once attached to ``parent_id`` through ``kind``."""
        parent = self._reader.get_block(parent_id)
        if parent is None:
            return None
        if kind is ConnectionKind.VALUE:
            for index, item in enumerate(parent.value_slots()):
                if item.data.variables == child_id:
                    return value_slot_origin(parent.position, index, self._constants)
            return None
        if kind is ConnectionKind.LOOP:
            loop_heights: dict[str, float] = {}
            y = parent.position.y + self._constants.vertical_spacing
            for member in interior_chain(self._reader, parent_id):
                if member.id == child_id:
                    break
                y += self.chain_extent(member, loop_heights)
            return Position(x=parent.position.x + self._constants.loop_indent, y=y)
        return Position(x=parent.position.x, y=parent.position.y + self.chain_extent(parent))

    def _attachments(
        self,
        block: Block,
        origin: Position,
        loop_heights: dict[str, float],
    ) -> list[tuple[str, Position]]:
        attached: list[tuple[str, Position]] = []
        if block.child_id:
            attached.append(
                (block.child_id, Position(x=origin.x, y=origin.y + self.chain_extent(block, loop_heights)))
            )
        if block.is_loop and block.loop_first_child_id:
            attached.append(
                (
                    block.loop_first_child_id,
                    Position(
                        x=origin.x + self._constants.loop_indent,
                        y=origin.y + self._constants.vertical_spacing,
                    ),
                )
            )
        for index, item in enumerate(block.value_slots()):
            if item.data.variables:
                attached.append((item.data.variables, value_slot_origin(origin, index, self._constants)))
        return attached


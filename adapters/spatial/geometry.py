from __future__ import annotations

from domain.constants import DEFAULT_LAYOUT_CONSTANTS, LayoutConstants
from domain.models import AnchorKind, Rect
from domain.ports.repositories import BlockReader
from domain.services import anchor_geometry
from domain.services.descendant_layout import DescendantLayoutPlanner


class GeometrySpatialQuery:
    """Anchor rectangles derived from stored positions and fixed layout constants."""

    def __init__(self, reader: BlockReader, constants: LayoutConstants = DEFAULT_LAYOUT_CONSTANTS) -> None:
        self._reader = reader
        self._constants = constants
        self._planner = DescendantLayoutPlanner(reader, constants)

    def anchor_rect(self, block_id: str, kind: AnchorKind) -> Rect | None:
        block = self._reader.get_block(block_id)
        if block is None:
            return None
        if kind is AnchorKind.INPUT:
            point = anchor_geometry.input_point(block, self._constants)
        elif kind is AnchorKind.OUTPUT:
            point = anchor_geometry.output_point(block, self._constants, self._planner.chain_extent(block))
        elif kind is AnchorKind.LOOP:
            if not block.is_loop:
                return None
            point = anchor_geometry.loop_point(block, self._constants)
        elif kind is AnchorKind.VALUE_BODY:
            return anchor_geometry.value_body_rect(block, self._constants)
        else:
            slots = anchor_geometry.value_slot_rects(block, self._constants)
            return slots[0][1] if slots else None
        return anchor_geometry.anchor_rect_at(point, self._constants)

    def value_slots(self, block_id: str) -> list[tuple[str, Rect]] | None:
        block = self._reader.get_block(block_id)
        if block is None:
            return None
        return anchor_geometry.value_slot_rects(block, self._constants)


class UnavailableSpatialQuery:
    """Stands in for a renderer that has nothing on screen."""

    def anchor_rect(self, block_id: str, kind: AnchorKind) -> Rect | None:
        return None

    def value_slots(self, block_id: str) -> list[tuple[str, Rect]] | None:
        return None

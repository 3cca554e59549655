from __future__ import annotations

from domain.constants import LayoutConstants
from domain.models import Block, Position, Rect


def block_width(block: Block, constants: LayoutConstants) -> float:
    if block.size is not None:
        return block.size.width
    if block.is_value:
        return constants.value_block_width
    return constants.block_min_width


def block_height(block: Block, constants: LayoutConstants) -> float:
    if block.size is not None:
        return block.size.height
    if block.is_value:
        return constants.value_block_height
    return constants.block_min_height


def input_point(block: Block, constants: LayoutConstants, position: Position | None = None) -> Position:
    origin = position or block.position
    return Position(x=origin.x + block_width(block, constants) / 2, y=origin.y)


def output_point(block: Block, constants: LayoutConstants, extent: float) -> Position:
    """Bottom-center of a block whose vertical extent in the chain is ``extent``."""
    return Position(
        x=block.position.x + block_width(block, constants) / 2,
        y=block.position.y + extent,
    )


def loop_point(block: Block, constants: LayoutConstants) -> Position:
    return Position(
        x=block.position.x + constants.loop_indent + block_width(block, constants) / 2,
        y=block.position.y + constants.vertical_spacing,
    )


def anchor_rect_at(point: Position, constants: LayoutConstants) -> Rect:
    return Rect.around(point, constants.anchor_width, constants.anchor_height)


def value_slot_origin(origin: Position, index: int, constants: LayoutConstants) -> Position:
    return Position(
        x=origin.x + constants.value_input_offset_x
        + index * (constants.value_input_width + constants.value_input_gap),
        y=origin.y + constants.value_input_offset_y,
    )


def value_slot_rects(block: Block, constants: LayoutConstants) -> list[tuple[str, Rect]]:
    rects: list[tuple[str, Rect]] = []
    for index, item in enumerate(block.value_slots()):
        origin = value_slot_origin(block.position, index, constants)
        rects.append(
            (item.id, Rect(origin.x, origin.y, constants.value_input_width, constants.value_input_height))
        )
    return rects


def value_body_rect(block: Block, constants: LayoutConstants, position: Position | None = None) -> Rect:
    origin = position or block.position
    return Rect(origin.x, origin.y, block_width(block, constants), block_height(block, constants))

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LayoutConstants:
    block_min_width: float = 200.0
    block_min_height: float = 56.0
    vertical_spacing: float = 56.0
    vertical_spacing_offset: float = 0.0
    loop_indent: float = 8.0
    loop_close_height: float = 24.0
    anchor_width: float = 32.0
    anchor_height: float = 16.0
    value_block_width: float = 150.0
    value_block_height: float = 40.0
    value_input_offset_x: float = 60.0
    value_input_offset_y: float = 14.0
    value_input_width: float = 100.0
    value_input_height: float = 28.0
    value_input_gap: float = 8.0
    snap_radius: float = 12.0
    value_snap_radius: float = 10.0

    @property
    def chain_step(self) -> float:
        return self.vertical_spacing + self.vertical_spacing_offset


DEFAULT_LAYOUT_CONSTANTS = LayoutConstants()

from __future__ import annotations

import logging
import math
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace

from domain.models import Block, ContainerSize, Rect, Viewport

logger = logging.getLogger(__name__)

FULLY_VISIBLE_RATIO = 0.99


@dataclass(frozen=True)
class VirtualScrollConfig:
    margin: float = 200.0
    default_block_width: float = 200.0
    default_block_height: float = 60.0
    performance_monitoring: bool = True
    priority_max_distance: float = 1000.0


@dataclass(frozen=True)
class VisibilityInfo:
    block_id: str
    is_visible: bool
    intersection_ratio: float
    fully_visible: bool
    partially_visible: bool


@dataclass(frozen=True)
class PerformanceStats:
    total_blocks: int = 0
    visible_blocks: int = 0
    culled_blocks: int = 0
    last_calculation_ms: float = 0.0
    culling_efficiency: float = 0.0


class VirtualScrollCuller:
    def __init__(self, config: VirtualScrollConfig | None = None) -> None:
        self._config = config or VirtualScrollConfig()
        self._stats = PerformanceStats()

    @property
    def config(self) -> VirtualScrollConfig:
        return self._config

    def update_config(self, **changes: object) -> VirtualScrollConfig:
        self._config = replace(self._config, **changes)
        return self._config

    def visible_rect(self, viewport: Viewport, container: ContainerSize) -> Rect | None:
        """Canvas-space rectangle on screen, widened by the margin; ``None`` if nothing is on screen."""
        if container.width <= 0 or container.height <= 0:
            return None
        if not math.isfinite(viewport.zoom) or viewport.zoom <= 0:
            return None
        margin = self._config.margin
        left = (-viewport.x - margin) / viewport.zoom
        top = (-viewport.y - margin) / viewport.zoom
        right = (container.width - viewport.x + margin) / viewport.zoom
        bottom = (container.height - viewport.y + margin) / viewport.zoom
        return Rect(left, top, right - left, bottom - top)

    def block_rect(self, block: Block) -> Rect:
        width = block.size.width if block.size else self._config.default_block_width
        height = block.size.height if block.size else self._config.default_block_height
        return Rect(block.position.x, block.position.y, width, height)

    def calculate_visible_blocks(
        self,
        blocks: Sequence[Block],
        viewport: Viewport,
        container: ContainerSize,
    ) -> list[Block]:
        started = time.perf_counter()
        visible_area = self.visible_rect(viewport, container)
        if visible_area is None:
            visible: list[Block] = []
        else:
            visible = [block for block in blocks if self.block_rect(block).intersects(visible_area)]
        if self._config.performance_monitoring:
            self._record_stats(len(blocks), len(visible), started)
        return visible

    def calculate_block_visibility(
        self,
        blocks: Sequence[Block],
        viewport: Viewport,
        container: ContainerSize,
    ) -> list[VisibilityInfo]:
        visible_area = self.visible_rect(viewport, container)
        results: list[VisibilityInfo] = []
        for block in blocks:
            rect = self.block_rect(block)
            ratio = 0.0
            if visible_area is not None and rect.area > 0:
                ratio = rect.intersection_area(visible_area) / rect.area
            results.append(
                VisibilityInfo(
                    block_id=block.id,
                    is_visible=ratio > 0,
                    intersection_ratio=ratio,
                    fully_visible=ratio >= FULLY_VISIBLE_RATIO,
                    partially_visible=ratio > 0,
                )
            )
        return results

    def calculate_block_priority(self, block: Block, viewport: Viewport, container: ContainerSize) -> float:
        """Score in [0, 1]; blocks nearer the viewport center score higher."""
        if container.width <= 0 or container.height <= 0 or viewport.zoom <= 0:
            return 0.0
        center_x = (container.width / 2 - viewport.x) / viewport.zoom
        center_y = (container.height / 2 - viewport.y) / viewport.zoom
        block_center = self.block_rect(block).center
        distance = math.hypot(block_center.x - center_x, block_center.y - center_y)
        return max(0.0, 1.0 - distance / self._config.priority_max_distance)

    def get_performance_stats(self) -> PerformanceStats:
        return self._stats

    def reset_performance_stats(self) -> None:
        self._stats = PerformanceStats()

    def _record_stats(self, total: int, visible: int, started: float) -> None:
        culled = total - visible
        efficiency = culled / total if total else 0.0
        self._stats = PerformanceStats(
            total_blocks=total,
            visible_blocks=visible,
            culled_blocks=culled,
            last_calculation_ms=(time.perf_counter() - started) * 1000,
            culling_efficiency=efficiency,
        )
        logger.debug("Culled %s of %s blocks", culled, total)

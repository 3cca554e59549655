from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from domain.models import AnchorKind, Rect


class SpatialQuery(Protocol):
    """Locates connection anchors of rendered blocks.

    Both methods may return ``None`` when the anchor geometry is unavailable,
    in which case callers fall back to position-only heuristics.
    """

    def anchor_rect(self, block_id: str, kind: AnchorKind) -> Rect | None: ...

    def value_slots(self, block_id: str) -> Sequence[tuple[str, Rect]] | None: ...

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from domain.models import Block


class BlockReader(Protocol):
    def get_block(self, block_id: str | None) -> Block | None: ...

    def get_all_blocks(self) -> Sequence[Block]: ...

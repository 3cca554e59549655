from __future__ import annotations

import logging
import re

from domain.models import Block, ContentType
from domain.ports.repositories import BlockReader

logger = logging.getLogger(__name__)

INDENT = "  "
DEFAULT_CLOSE_OUTPUT = "}"
_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def substitute_placeholders(reader: BlockReader, block: Block, template: str) -> str:
    def _resolve(match: re.Match[str]) -> str:
        item = block.find_content(match.group(1))
        if item is None:
            return match.group(0)
        if item.type is ContentType.CONTENT_VALUE and item.data.variables:
            plugged = reader.get_block(item.data.variables)
            if plugged is not None:
                return plugged.title or plugged.name
        if item.type in (ContentType.CONTENT_VALUE, ContentType.CONTENT_SELECTOR):
            return item.data.value
        return match.group(0)

    return _PLACEHOLDER.sub(_resolve, template)


def render_chain_output(reader: BlockReader, start_id: str) -> list[str]:
    """Render the code lines produced by the chain that starts at ``start_id``."""
    lines: list[str] = []
    visited: set[str] = set()
    stack: list[tuple[str, str, int]] = [("block", start_id, 0)]
    while stack:
        action, block_id, depth = stack.pop()
        block = reader.get_block(block_id)
        if block is None:
            continue
        prefix = INDENT * depth
        if action == "close":
            template = block.close_output if block.close_output is not None else DEFAULT_CLOSE_OUTPUT
            lines.extend(prefix + line for line in substitute_placeholders(reader, block, template).split("\n"))
            continue
        if block_id in visited:
            logger.warning("Block %s already rendered; stopping at a cycle", block_id)
            continue
        visited.add(block_id)
        rendered = substitute_placeholders(reader, block, block.output)
        lines.extend(prefix + line for line in rendered.split("\n"))
        if block.child_id:
            stack.append(("block", block.child_id, depth))
        if block.is_loop:
            stack.append(("close", block_id, depth))
            if block.loop_first_child_id:
                stack.append(("block", block.loop_first_child_id, depth + 1))
    return lines

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from domain.errors import InternalInvariantViolation
from domain.models import Block


@dataclass(frozen=True)
class InvariantIssue:
    rule: str
    block_id: str
    detail: str


def check_graph_invariants(blocks: Iterable[Block]) -> list[InvariantIssue]:
    by_id: dict[str, Block] = {}
    issues: list[InvariantIssue] = []
    for block in blocks:
        if block.id in by_id:
            issues.append(InvariantIssue("unique_id", block.id, "duplicate block id"))
        by_id[block.id] = block

    issues.extend(_dangling_references(by_id))
    issues.extend(_bidirectional_links(by_id))
    issues.extend(_loop_bounds(by_id))
    issues.extend(_value_links(by_id))
    cycle = find_chain_cycle(by_id)
    if cycle:
        issues.append(InvariantIssue("acyclic", cycle[0], " -> ".join(cycle)))
    return issues


def assert_graph_invariants(blocks: Iterable[Block], operation: str | None = None) -> None:
    issues = check_graph_invariants(blocks)
    if issues:
        first = issues[0]
        raise InternalInvariantViolation(
            f"Graph invariant '{first.rule}' violated at {first.block_id}: {first.detail}",
            operation=operation,
            issues=[f"{issue.rule}:{issue.block_id}" for issue in issues],
        )


def find_chain_cycle(by_id: Mapping[str, Block]) -> list[str] | None:
    adjacency: dict[str, list[str]] = {}
    for block in by_id.values():
        targets = [block.child_id] if block.child_id else []
        if block.loop_first_child_id:
            targets.append(block.loop_first_child_id)
        adjacency[block.id] = [target for target in targets if target in by_id]

    color: dict[str, int] = {node: 0 for node in adjacency}
    for start in adjacency:
        if color[start]:
            continue
        path: list[str] = [start]
        iterators = [iter(adjacency[start])]
        color[start] = 1
        while iterators:
            neighbor = next(iterators[-1], None)
            if neighbor is None:
                color[path.pop()] = 2
                iterators.pop()
                continue
            if color[neighbor] == 1:
                return path[path.index(neighbor) :] + [neighbor]
            if color[neighbor] == 0:
                color[neighbor] = 1
                path.append(neighbor)
                iterators.append(iter(adjacency[neighbor]))
    return None


def _dangling_references(by_id: Mapping[str, Block]) -> list[InvariantIssue]:
    issues: list[InvariantIssue] = []
    for block in by_id.values():
        references = {
            "parent_id": block.parent_id,
            "child_id": block.child_id,
            "loop_first_child_id": block.loop_first_child_id,
            "loop_last_child_id": block.loop_last_child_id,
            "value_target_id": block.value_target_id,
        }
        references.update(
            {f"content[{content_id}]": target for content_id, target in block.value_bindings().items()}
        )
        for field_name, target in references.items():
            if target is not None and target not in by_id:
                issues.append(
                    InvariantIssue("dangling_reference", block.id, f"{field_name} -> {target}")
                )
    return issues


def _bidirectional_links(by_id: Mapping[str, Block]) -> list[InvariantIssue]:
    issues: list[InvariantIssue] = []
    for block in by_id.values():
        child = by_id.get(block.child_id) if block.child_id else None
        if child is not None and child.parent_id != block.id:
            issues.append(
                InvariantIssue("bidirectional", block.id, f"child {child.id} has parent {child.parent_id}")
            )
        parent = by_id.get(block.parent_id) if block.parent_id else None
        if parent is None:
            continue
        is_chain_child = parent.child_id == block.id
        is_loop_head = parent.is_loop and parent.loop_first_child_id == block.id
        if not (is_chain_child or is_loop_head):
            issues.append(
                InvariantIssue("bidirectional", block.id, f"parent {parent.id} does not link back")
            )
    return issues


def _loop_bounds(by_id: Mapping[str, Block]) -> list[InvariantIssue]:
    issues: list[InvariantIssue] = []
    for block in by_id.values():
        if not block.is_loop:
            if block.loop_first_child_id or block.loop_last_child_id:
                issues.append(InvariantIssue("loop_bounds", block.id, "non-loop block has an interior"))
            continue
        if (block.loop_first_child_id is None) != (block.loop_last_child_id is None):
            issues.append(InvariantIssue("loop_bounds", block.id, "interior head and tail disagree"))
            continue
        if block.loop_first_child_id is None:
            continue
        head = by_id.get(block.loop_first_child_id)
        if head is None:
            continue
        if head.parent_id != block.id:
            issues.append(
                InvariantIssue("loop_bounds", block.id, f"head {head.id} has parent {head.parent_id}")
            )
        tail_id = head.id
        seen = {head.id}
        while True:
            current = by_id.get(tail_id)
            if current is None or current.child_id is None or current.child_id in seen:
                break
            seen.add(current.child_id)
            tail_id = current.child_id
        if block.loop_last_child_id != tail_id:
            issues.append(
                InvariantIssue(
                    "loop_bounds",
                    block.id,
                    f"tail is {block.loop_last_child_id}, interior ends at {tail_id}",
                )
            )
    return issues


def _value_links(by_id: Mapping[str, Block]) -> list[InvariantIssue]:
    issues: list[InvariantIssue] = []
    hosts: dict[str, list[str]] = {}
    for block in by_id.values():
        for target in block.value_bindings().values():
            hosts.setdefault(target, []).append(block.id)

    for value_id, host_ids in hosts.items():
        value = by_id.get(value_id)
        if value is None:
            continue
        if len(host_ids) > 1:
            issues.append(
                InvariantIssue("value_symmetry", value_id, f"plugged into {len(host_ids)} slots")
            )
        if value.value_target_id != host_ids[0]:
            issues.append(
                InvariantIssue(
                    "value_symmetry",
                    value_id,
                    f"slot on {host_ids[0]} holds it but target is {value.value_target_id}",
                )
            )

    for block in by_id.values():
        if block.value_target_id is None or block.value_target_id not in by_id:
            continue
        if block.value_target_id not in hosts.get(block.id, []):
            issues.append(
                InvariantIssue(
                    "value_symmetry",
                    block.id,
                    f"target {block.value_target_id} has no slot holding it",
                )
            )
    return issues

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from domain.constants import DEFAULT_LAYOUT_CONSTANTS, LayoutConstants
from domain.errors import BlockEngineError, InternalInvariantViolation, NotFoundError, StructuralError
from domain.models import AnchorKind, Block, ConnectionKind, Position, Rect
from domain.ports.layout import SpatialQuery
from domain.services import anchor_geometry
from domain.services.batch_coordinator import BatchOperationCoordinator
from domain.services.block_chains import collect_subtree_ids, root_ancestor
from domain.services.block_service import BlockService
from domain.services.connection_validator import check_connection
from domain.services.descendant_layout import DescendantLayoutPlanner

logger = logging.getLogger(__name__)


class DragPhase(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    EVALUATING = "evaluating"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SnapTarget:
    block_id: str
    kind: ConnectionKind
    position: Position
    valid: bool
    content_id: str | None = None
    overlap_area: float = 0.0
    distance: float = 0.0


@dataclass(frozen=True)
class DragState:
    phase: DragPhase = DragPhase.IDLE
    block_id: str | None = None
    start_position: Position | None = None
    pointer: Position | None = None
    offset: Position | None = None
    snap_target: SnapTarget | None = None
    detached_parent_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.phase in (DragPhase.ARMED, DragPhase.EVALUATING)


IDLE_DRAG_STATE = DragState()

_TARGET_ANCHORS = {
    ConnectionKind.OUTPUT: AnchorKind.OUTPUT,
    ConnectionKind.LOOP: AnchorKind.LOOP,
}


class DragConnectionEngine:
    """Drives one drag at a time from pickup to drop.

    Every store mutation made during a drag goes through the batch
    coordinator, so a failed drop rolls the graph back to exactly what it was
    before ``start_drag``.
    """

    def __init__(
        self,
        blocks: BlockService,
        batch: BatchOperationCoordinator | None = None,
        spatial_query: SpatialQuery | None = None,
        constants: LayoutConstants = DEFAULT_LAYOUT_CONSTANTS,
    ) -> None:
        self._blocks = blocks
        self._store = blocks.store
        self._batch = batch or BatchOperationCoordinator()
        self._spatial_query = spatial_query
        self._constants = constants
        self._planner = DescendantLayoutPlanner(self._store, constants)
        self._state = IDLE_DRAG_STATE
        self.last_outcome: DragPhase | None = None

    @property
    def batch(self) -> BatchOperationCoordinator:
        return self._batch

    @property
    def planner(self) -> DescendantLayoutPlanner:
        return self._planner

    def get_drag_state(self) -> DragState:
        return self._state

    def start_drag(self, block_id: str, pointer_offset: Position | None = None) -> bool:
        if self._state.is_active:
            logger.warning("Drag of %s still active; committing it before %s", self._state.block_id, block_id)
            self._batch.end_batch(True)
            self.clear_drag()

        block = self._store.get_block(block_id)
        if block is None:
            self._blocks.report(NotFoundError(f"Block not found: {block_id}", block_id=block_id))
            return False

        offset = pointer_offset or Position()
        detached_parent_id = block.parent_id
        self._batch.start_batch(f"drag-{block_id}")
        try:
            if block.is_value and block.value_target_id is not None:
                self._record_structural(
                    lambda: self._store.disconnect_value(block_id), f"unplug {block_id}"
                )
            if detached_parent_id is not None:
                self._record_structural(
                    lambda: self._store.disconnect_blocks(detached_parent_id, block_id),
                    f"detach {block_id}",
                )
                self._relayout_from(detached_parent_id)
        except InternalInvariantViolation:
            self._batch.end_batch(False)
            raise
        except BlockEngineError as exc:
            self._blocks.report(exc)
            self._batch.end_batch(False)
            return False

        self._state = DragState(
            phase=DragPhase.ARMED,
            block_id=block_id,
            start_position=block.position,
            pointer=block.position.shifted(offset.x, offset.y),
            offset=offset,
            detached_parent_id=detached_parent_id,
        )
        logger.debug("Drag armed for %s", block_id)
        return True

    def update_drag_position(self, pointer: Position) -> None:
        state = self._state
        if not state.is_active or state.block_id is None or state.offset is None:
            return
        block = self._store.get_block(state.block_id)
        if block is None:
            logger.warning("Dragged block %s disappeared", state.block_id)
            return

        persisted = pointer.shifted(-state.offset.x, -state.offset.y)
        try:
            if persisted != block.position:
                self._record_position(block.id, persisted, block.position, block.z_index)
                self._relayout_subtree(block.id)
        except InternalInvariantViolation:
            raise
        except BlockEngineError as exc:
            self._blocks.report(exc)
            return

        self._state = replace(
            state,
            phase=DragPhase.EVALUATING,
            pointer=pointer,
            snap_target=self.find_drop_target(pointer),
        )

    def find_drop_target(self, pointer: Position) -> SnapTarget | None:
        state = self._state
        if not state.is_active or state.block_id is None or state.offset is None:
            return None
        dragged = self._store.get_block(state.block_id)
        if dragged is None:
            return None

        dragged_position = pointer.shifted(-state.offset.x, -state.offset.y)
        excluded = set(collect_subtree_ids(self._store, dragged.id))
        candidates = self._overlap_candidates(dragged, dragged_position, excluded)
        if candidates is None:
            candidates = self._radius_candidates(dragged, dragged_position, excluded)
        if not candidates:
            return None

        best = min(candidates, key=lambda candidate: (-candidate.overlap_area, candidate.distance))
        valid = self.validate_drop(dragged.id, best.block_id, best.kind, best.content_id)
        return replace(best, valid=valid)

    def validate_drop(
        self,
        dragged_id: str,
        target_id: str,
        kind: ConnectionKind = ConnectionKind.OUTPUT,
        content_id: str | None = None,
    ) -> bool:
        return check_connection(self._store, target_id, dragged_id, kind, content_id) is None

    def end_drag(self, target_id: str | None = None) -> bool:
        state = self._state
        if not state.is_active or state.block_id is None:
            return False

        dragged_id = state.block_id
        success = True
        outcome = DragPhase.CANCELLED
        try:
            snap = state.snap_target
            if target_id is not None:
                snap = self._explicit_target(dragged_id, target_id, snap)
                success = snap is not None
            if success and snap is not None and snap.valid:
                success = self._execute_connection(dragged_id, snap)
                outcome = DragPhase.COMMITTED
            self._batch.end_batch(success)
        except InternalInvariantViolation:
            self._batch.end_batch(False)
            raise
        except Exception:
            logger.exception("Drag of %s failed; rolling back", dragged_id)
            self._batch.end_batch(False)
            success = False
        finally:
            self.clear_drag()

        if not success:
            self._restore_start_position(dragged_id, state.start_position)
            outcome = DragPhase.CANCELLED
        self.last_outcome = outcome
        logger.debug("Drag of %s ended: %s (success=%s)", dragged_id, outcome.value, success)
        return success

    def cancel_drag(self) -> None:
        state = self._state
        if not state.is_active or state.block_id is None:
            return
        self._batch.end_batch(False)
        self.clear_drag()
        self._restore_start_position(state.block_id, state.start_position)
        self.last_outcome = DragPhase.CANCELLED

    def clear_drag(self) -> None:
        if self._batch.is_active:
            logger.debug("Closing batch %s while clearing drag", self._batch.scope_id)
            self._batch.end_batch(True)
        self._state = IDLE_DRAG_STATE

    def _explicit_target(
        self,
        dragged_id: str,
        target_id: str,
        snap: SnapTarget | None,
    ) -> SnapTarget | None:
        target = self._store.get_block(target_id)
        if snap is not None and snap.block_id == target_id:
            kind, content_id = snap.kind, snap.content_id
        else:
            dragged = self._store.get_block(dragged_id)
            kind = ConnectionKind.VALUE if dragged is not None and dragged.is_value else ConnectionKind.OUTPUT
            content_id = None
        rejection = check_connection(self._store, target_id, dragged_id, kind, content_id)
        if target is None or rejection is not None:
            self._blocks.report(
                rejection or NotFoundError(f"Block not found: {target_id}", block_id=target_id)
            )
            return None
        return SnapTarget(
            block_id=target_id,
            kind=kind,
            position=target.position,
            valid=True,
            content_id=content_id,
        )

    def _execute_connection(self, dragged_id: str, snap: SnapTarget) -> bool:
        rejection = check_connection(self._store, snap.block_id, dragged_id, snap.kind, snap.content_id)
        if rejection is not None:
            self._blocks.report(rejection)
            return False
        try:
            if snap.kind is ConnectionKind.VALUE:
                self._record_structural(
                    lambda: self._store.connect_value(dragged_id, snap.block_id, snap.content_id),
                    f"plug {dragged_id}",
                )
            else:
                self._record_structural(
                    lambda: self._store.connect_blocks(
                        snap.block_id, dragged_id, is_loop=snap.kind is ConnectionKind.LOOP
                    ),
                    f"connect {dragged_id}",
                )
            self._position_after_connection(dragged_id, snap)
        except InternalInvariantViolation:
            raise
        except BlockEngineError as exc:
            self._blocks.report(exc)
            return False
        return True

    def _position_after_connection(self, dragged_id: str, snap: SnapTarget) -> None:
        position = self._planner.canonical_position(snap.block_id, dragged_id, snap.kind)
        dragged = self._store.get_block(dragged_id)
        if position is None or dragged is None:
            msg = f"Cannot place {dragged_id} after connecting to {snap.block_id}"
            raise StructuralError(msg, block_id=dragged_id, target_id=snap.block_id)
        if position != dragged.position:
            self._record_position(dragged_id, position, dragged.position, dragged.z_index)
        self._relayout_from(snap.block_id)

    def _relayout_from(self, block_id: str) -> None:
        root = root_ancestor(self._store, block_id)
        if root is not None:
            self._relayout_subtree(root.id)

    def _relayout_subtree(self, root_id: str) -> None:
        for placement in self._planner.plan(root_id):
            block = self._store.get_block(placement.block_id)
            if block is None:
                continue
            if block.position == placement.position and block.z_index == placement.z_index:
                continue
            self._record_position(
                block.id,
                placement.position,
                block.position,
                block.z_index,
                placement.z_index,
            )

    def _record_position(
        self,
        block_id: str,
        position: Position,
        previous: Position,
        previous_z: int,
        z_index: int | None = None,
    ) -> None:
        target_z = previous_z if z_index is None else z_index
        self._batch.add_operation(
            lambda: self._store.update_block(block_id, {"position": position, "z_index": target_z}),
            lambda: self._store.update_block(block_id, {"position": previous, "z_index": previous_z}),
            f"move {block_id}",
        )

    def _record_structural(self, apply: Callable[[], object], label: str) -> None:
        before = self._store.snapshot()
        self._batch.add_operation(apply, lambda: self._store.restore_snapshot(before), label)

    def _restore_start_position(self, block_id: str, start_position: Position | None) -> None:
        block = self._store.get_block(block_id)
        if block is None or start_position is None or block.position == start_position:
            return
        logger.warning("Restoring %s to its pre-drag position", block_id)
        self._store.update_block(block_id, {"position": start_position})

    def _overlap_candidates(
        self,
        dragged: Block,
        dragged_position: Position,
        excluded: set[str],
    ) -> list[SnapTarget] | None:
        if self._spatial_query is None:
            return None
        own_kind = AnchorKind.VALUE_BODY if dragged.is_value else AnchorKind.INPUT
        own = self._spatial_query.anchor_rect(dragged.id, own_kind)
        if own is None:
            return None
        own = own.translated(
            dragged_position.x - dragged.position.x, dragged_position.y - dragged.position.y
        )

        candidates: list[SnapTarget] = []
        for target in self._store.get_all_blocks():
            if target.id in excluded:
                continue
            for kind, content_id, rect in self._target_rects(self._spatial_query, dragged, target):
                area = own.intersection_area(rect)
                if area <= 0:
                    continue
                candidates.append(
                    SnapTarget(
                        block_id=target.id,
                        kind=kind,
                        position=rect.center,
                        valid=False,
                        content_id=content_id,
                        overlap_area=area,
                        distance=own.center.distance_to(rect.center),
                    )
                )
        return candidates

    def _target_rects(
        self,
        spatial_query: SpatialQuery,
        dragged: Block,
        target: Block,
    ) -> list[tuple[ConnectionKind, str | None, Rect]]:
        rects: list[tuple[ConnectionKind, str | None, Rect]] = []
        if dragged.is_value:
            free = {item.id for item in target.value_slots() if not item.data.variables}
            for content_id, rect in spatial_query.value_slots(target.id) or ():
                if content_id in free:
                    rects.append((ConnectionKind.VALUE, content_id, rect))
            return rects
        for kind in self._chain_kinds(target):
            rect = spatial_query.anchor_rect(target.id, _TARGET_ANCHORS[kind])
            if rect is not None:
                rects.append((kind, None, rect))
        return rects

    def _radius_candidates(
        self,
        dragged: Block,
        dragged_position: Position,
        excluded: set[str],
    ) -> list[SnapTarget]:
        candidates: list[SnapTarget] = []
        if dragged.is_value:
            radius = self._constants.value_snap_radius
            for target in self._store.get_all_blocks():
                if target.id in excluded:
                    continue
                for content_id, rect in anchor_geometry.value_slot_rects(target, self._constants):
                    slot = target.find_content(content_id)
                    if slot is None or slot.data.variables:
                        continue
                    corner = Position(x=rect.left, y=rect.top)
                    distance = dragged_position.distance_to(corner)
                    if distance <= radius:
                        candidates.append(
                            SnapTarget(target.id, ConnectionKind.VALUE, corner, False, content_id, 0.0, distance)
                        )
            return candidates

        radius = self._constants.snap_radius
        own = anchor_geometry.input_point(dragged, self._constants, dragged_position)
        for target in self._store.get_all_blocks():
            if target.id in excluded:
                continue
            for kind in self._chain_kinds(target):
                if kind is ConnectionKind.LOOP:
                    point = anchor_geometry.loop_point(target, self._constants)
                else:
                    point = anchor_geometry.output_point(
                        target, self._constants, self._planner.chain_extent(target)
                    )
                distance = own.distance_to(point)
                if distance <= radius:
                    candidates.append(SnapTarget(target.id, kind, point, False, None, 0.0, distance))
        return candidates

    @staticmethod
    def _chain_kinds(target: Block) -> list[ConnectionKind]:
        if target.is_value:
            return []
        if target.is_loop:
            return [ConnectionKind.OUTPUT, ConnectionKind.LOOP]
        return [ConnectionKind.OUTPUT]

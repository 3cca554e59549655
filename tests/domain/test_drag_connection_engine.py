from __future__ import annotations

from collections.abc import Callable

import pytest

from adapters.reporting.error_sinks import CollectingErrorSink
from adapters.spatial.geometry import UnavailableSpatialQuery
from domain.constants import DEFAULT_LAYOUT_CONSTANTS as LAYOUT
from domain.errors import StructuralError
from domain.models import Block, BlockType, ConnectionKind, ContentItem, Position
from domain.services.batch_coordinator import BatchOperationCoordinator
from domain.services.block_graph_store import BlockGraphStore
from domain.services.block_service import BlockService
from domain.services.drag_connection_engine import DragConnectionEngine, DragPhase


def _graph(store: BlockGraphStore) -> dict[str, Block]:
    return {block.id: block for block in store.get_all_blocks()}


def _drop(engine: DragConnectionEngine, block_id: str, position: Position) -> bool:
    assert engine.start_drag(block_id, Position())
    engine.update_drag_position(position)
    return engine.end_drag()


def test_drop_on_output_anchor_connects_below_parent(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    a = make_block(x=0, y=0)
    b = make_block(x=400, y=400)

    assert drag_engine.start_drag(b, Position(x=10, y=10))
    drag_engine.update_drag_position(Position(x=10, y=LAYOUT.chain_step + 10))
    snap = drag_engine.get_drag_state().snap_target

    assert snap is not None
    assert (snap.block_id, snap.kind, snap.valid) == (a, ConnectionKind.OUTPUT, True)
    assert drag_engine.end_drag() is True
    assert store.require_block(a).child_id == b
    assert store.require_block(b).position == Position(x=0, y=LAYOUT.chain_step)
    assert drag_engine.get_drag_state().phase is DragPhase.IDLE
    assert drag_engine.last_outcome is DragPhase.COMMITTED


def test_drop_on_loop_anchor_joins_interior(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    loop = make_block(BlockType.LOOP, x=0, y=0)
    first = make_block(x=900, y=900)
    second = make_block(x=1200, y=900)

    assert _drop(drag_engine, first, Position(x=LAYOUT.loop_indent, y=LAYOUT.vertical_spacing))
    assert _drop(
        drag_engine,
        second,
        Position(x=LAYOUT.loop_indent, y=LAYOUT.vertical_spacing + LAYOUT.chain_step),
    )

    loop_block = store.require_block(loop)
    assert loop_block.loop_first_child_id == first
    assert loop_block.loop_last_child_id == second
    assert store.require_block(second).position == Position(
        x=LAYOUT.loop_indent, y=LAYOUT.vertical_spacing + LAYOUT.chain_step
    )


def test_value_drop_fills_content_slot(
    make_block: Callable[..., str],
    store: BlockGraphStore,
    drag_engine: DragConnectionEngine,
    value_slot: Callable[[str], ContentItem],
) -> None:
    target = make_block(x=0, y=0, content=[value_slot("s1")])
    value = make_block(BlockType.VALUE, x=500, y=500)

    assert drag_engine.start_drag(value, Position())
    drag_engine.update_drag_position(Position(x=LAYOUT.value_input_offset_x, y=LAYOUT.value_input_offset_y))
    snap = drag_engine.get_drag_state().snap_target
    assert snap is not None
    assert (snap.kind, snap.content_id, snap.valid) == (ConnectionKind.VALUE, "s1", True)

    assert drag_engine.end_drag() is True
    assert store.require_block(target).find_content("s1").data.variables == value
    assert store.require_block(value).value_target_id == target


def test_drop_in_empty_space_after_detach_closes_gap(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    parent = make_block(x=0, y=0)
    child = make_block(x=700, y=700)
    store.connect_blocks(parent, child)

    assert drag_engine.start_drag(child, Position())
    assert store.require_block(parent).child_id is None
    drag_engine.update_drag_position(Position(x=3000, y=3000))

    assert drag_engine.end_drag() is True
    assert store.require_block(child).parent_id is None
    assert store.require_block(child).position == Position(x=3000, y=3000)
    assert drag_engine.last_outcome is DragPhase.CANCELLED


def test_dragging_out_of_loop_pulls_next_member_up(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    loop = make_block(BlockType.LOOP, x=0, y=0)
    x, y, z = make_block(x=1000, y=0), make_block(x=1000, y=500), make_block(x=1000, y=900)
    for member in (x, y, z):
        store.connect_blocks(loop, member, is_loop=True)

    assert _drop(drag_engine, y, Position(x=3000, y=3000)) is True

    assert store.require_block(x).child_id == z
    assert store.require_block(z).parent_id == x
    assert store.require_block(loop).loop_last_child_id == z
    assert store.require_block(z).position == Position(
        x=LAYOUT.loop_indent, y=LAYOUT.vertical_spacing + LAYOUT.chain_step
    )
    assert store.require_block(y).position == Position(x=3000, y=3000)


def test_invalid_explicit_target_rolls_back_everything(
    make_block: Callable[..., str],
    store: BlockGraphStore,
    drag_engine: DragConnectionEngine,
    error_sink: CollectingErrorSink,
) -> None:
    a = make_block(x=0, y=0)
    b, d = make_block(x=300, y=40), make_block(x=600, y=80)
    blocker = make_block(BlockType.VALUE, x=900, y=900)
    store.connect_blocks(a, b)
    store.connect_blocks(b, d)
    before = _graph(store)

    assert drag_engine.start_drag(b, Position(x=5, y=5))
    drag_engine.update_drag_position(Position(x=705, y=705))
    assert store.require_block(d).position == Position(x=700, y=700 + LAYOUT.chain_step)

    assert drag_engine.end_drag(blocker) is False
    assert _graph(store) == before
    assert "structural" in error_sink.kinds
    assert drag_engine.get_drag_state().phase is DragPhase.IDLE


def test_failed_value_drop_restores_previous_plug(
    make_block: Callable[..., str],
    store: BlockGraphStore,
    drag_engine: DragConnectionEngine,
    value_slot: Callable[[str], ContentItem],
) -> None:
    host = make_block(x=0, y=0, content=[value_slot("s1")])
    value = make_block(BlockType.VALUE, x=10, y=10)
    store.connect_value(value, host)
    before = _graph(store)

    assert drag_engine.start_drag(value, Position())
    assert store.require_block(value).value_target_id is None
    drag_engine.update_drag_position(Position(x=2000, y=2000))

    assert drag_engine.end_drag("missing") is False
    assert _graph(store) == before


def test_execution_failure_rolls_back(
    make_block: Callable[..., str],
    store: BlockGraphStore,
    drag_engine: DragConnectionEngine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    a = make_block(x=0, y=0)
    old_parent = make_block(x=500, y=0)
    b = make_block(x=500, y=LAYOUT.chain_step)
    store.connect_blocks(old_parent, b)
    before = _graph(store)

    assert drag_engine.start_drag(b, Position())
    drag_engine.update_drag_position(Position(x=0, y=LAYOUT.chain_step))

    def _refuse(*args: object, **kwargs: object) -> None:
        raise StructuralError("refused")

    monkeypatch.setattr(store, "connect_blocks", _refuse)

    assert drag_engine.end_drag() is False
    assert _graph(store) == before
    assert store.require_block(a).child_id is None


def test_unexpected_error_is_logged_and_rolled_back(
    make_block: Callable[..., str],
    store: BlockGraphStore,
    drag_engine: DragConnectionEngine,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    make_block(x=0, y=0)
    b = make_block(x=500, y=500)
    before = _graph(store)

    assert drag_engine.start_drag(b, Position())
    drag_engine.update_drag_position(Position(x=0, y=LAYOUT.chain_step))

    def _explode(*args: object, **kwargs: object) -> None:
        raise RuntimeError("renderer went away")

    monkeypatch.setattr(store, "connect_blocks", _explode)

    assert drag_engine.end_drag() is False
    assert _graph(store) == before
    assert "rolling back" in caplog.text


def test_invalid_snap_commits_position_only(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    a = make_block(x=0, y=0)
    occupant = make_block(x=800, y=800)
    store.connect_blocks(a, occupant)
    store.update_block(occupant, {"position": Position(x=1500, y=0)})
    b = make_block(x=400, y=400)

    assert drag_engine.start_drag(b, Position())
    drag_engine.update_drag_position(Position(x=0, y=LAYOUT.chain_step))
    snap = drag_engine.get_drag_state().snap_target
    assert snap is not None
    assert snap.block_id == a
    assert snap.valid is False

    assert drag_engine.end_drag() is True
    assert store.require_block(b).parent_id is None
    assert store.require_block(a).child_id == occupant
    assert store.require_block(b).position == Position(x=0, y=LAYOUT.chain_step)


def test_larger_overlap_wins(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    near = make_block(x=0, y=0)
    make_block(x=20, y=0)
    b = make_block(x=400, y=400)

    assert drag_engine.start_drag(b, Position())
    snap = drag_engine.find_drop_target(Position(x=5, y=LAYOUT.chain_step))

    assert snap is not None
    assert snap.block_id == near


def test_dragged_subtree_is_never_a_candidate(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    a = make_block(x=0, y=0)
    b = make_block(x=0, y=LAYOUT.chain_step)
    store.connect_blocks(a, b)

    assert drag_engine.start_drag(a, Position())

    assert drag_engine.find_drop_target(Position(x=0, y=2 * LAYOUT.chain_step)) is None


def test_moving_block_drags_its_subtree(
    make_block: Callable[..., str],
    store: BlockGraphStore,
    drag_engine: DragConnectionEngine,
    value_slot: Callable[[str], ContentItem],
) -> None:
    a = make_block(x=0, y=0, content=[value_slot("s1")])
    b = make_block(x=0, y=LAYOUT.chain_step)
    value = make_block(BlockType.VALUE, x=900, y=900)
    store.connect_blocks(a, b)
    store.connect_value(value, a)

    assert drag_engine.start_drag(a, Position(x=20, y=20))
    drag_engine.update_drag_position(Position(x=220, y=320))

    assert store.require_block(a).position == Position(x=200, y=300)
    assert store.require_block(b).position == Position(x=200, y=300 + LAYOUT.chain_step)
    assert store.require_block(value).position == Position(
        x=200 + LAYOUT.value_input_offset_x, y=300 + LAYOUT.value_input_offset_y
    )
    assert store.require_block(b).z_index == store.require_block(a).z_index + 1


def test_start_drag_on_missing_block_fails(
    drag_engine: DragConnectionEngine, error_sink: CollectingErrorSink, batch: BatchOperationCoordinator
) -> None:
    assert drag_engine.start_drag("missing", Position()) is False
    assert error_sink.kinds == ["not_found"]
    assert batch.is_active is False


def test_second_start_drag_commits_first(
    make_block: Callable[..., str],
    store: BlockGraphStore,
    drag_engine: DragConnectionEngine,
    batch: BatchOperationCoordinator,
) -> None:
    first, second = make_block(x=0, y=0), make_block(x=800, y=800)
    assert drag_engine.start_drag(first, Position())
    drag_engine.update_drag_position(Position(x=100, y=100))

    assert drag_engine.start_drag(second, Position())

    assert store.require_block(first).position == Position(x=100, y=100)
    assert batch.scope_id == f"drag-{second}"
    assert batch.stats.batches_committed == 1


def test_cancel_drag_restores_state(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    a, b = make_block(x=0, y=0), make_block(x=0, y=LAYOUT.chain_step)
    store.connect_blocks(a, b)
    before = _graph(store)

    drag_engine.start_drag(b, Position())
    drag_engine.update_drag_position(Position(x=999, y=999))
    drag_engine.cancel_drag()

    assert _graph(store) == before
    assert drag_engine.end_drag() is False


def test_fallback_radius_snaps_without_spatial_query(
    make_block: Callable[..., str], store: BlockGraphStore, fallback_drag_engine: DragConnectionEngine
) -> None:
    a = make_block(x=0, y=0)
    b = make_block(x=400, y=400)

    assert fallback_drag_engine.start_drag(b, Position())
    fallback_drag_engine.update_drag_position(Position(x=5, y=LAYOUT.chain_step + 4))
    snap = fallback_drag_engine.get_drag_state().snap_target

    assert snap is not None
    assert snap.block_id == a
    assert snap.distance <= LAYOUT.snap_radius
    assert fallback_drag_engine.end_drag() is True
    assert store.require_block(a).child_id == b


def test_fallback_ignores_anchors_beyond_radius(
    make_block: Callable[..., str], fallback_drag_engine: DragConnectionEngine
) -> None:
    make_block(x=0, y=0)
    b = make_block(x=400, y=400)

    assert fallback_drag_engine.start_drag(b, Position())

    assert fallback_drag_engine.find_drop_target(Position(x=30, y=LAYOUT.chain_step)) is None


def test_unavailable_spatial_query_falls_back_for_values(
    make_block: Callable[..., str],
    store: BlockGraphStore,
    blocks: BlockService,
    value_slot: Callable[[str], ContentItem],
) -> None:
    engine = DragConnectionEngine(blocks, spatial_query=UnavailableSpatialQuery())
    host = make_block(x=0, y=0, content=[value_slot("s1")])
    value = make_block(BlockType.VALUE, x=500, y=500)

    assert engine.start_drag(value, Position())
    engine.update_drag_position(
        Position(x=LAYOUT.value_input_offset_x + 3, y=LAYOUT.value_input_offset_y + 4)
    )
    snap = engine.get_drag_state().snap_target

    assert snap is not None
    assert (snap.block_id, snap.content_id) == (host, "s1")
    assert engine.end_drag() is True
    assert store.require_block(value).value_target_id == host


def test_validate_drop_matches_connection_rules(
    make_block: Callable[..., str], store: BlockGraphStore, drag_engine: DragConnectionEngine
) -> None:
    a, b = make_block(), make_block()
    store.connect_blocks(a, b)

    assert drag_engine.validate_drop(a, b) is False
    assert drag_engine.validate_drop(b, a) is True
    assert drag_engine.validate_drop(a, a) is False

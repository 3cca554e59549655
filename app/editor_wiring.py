from __future__ import annotations

from dataclasses import dataclass

from adapters.reporting.error_sinks import LoggingErrorSink
from adapters.spatial.geometry import GeometrySpatialQuery
from app.config import AppSettings
from domain.constants import LayoutConstants
from domain.ports.reporting import ErrorSink
from domain.services.batch_coordinator import BatchOperationCoordinator
from domain.services.block_graph_store import BlockGraphStore
from domain.services.block_service import BlockService
from domain.services.drag_connection_engine import DragConnectionEngine
from domain.services.virtual_scroll import VirtualScrollCuller


@dataclass
class EditorSession:
    store: BlockGraphStore
    blocks: BlockService
    batch: BatchOperationCoordinator
    drag: DragConnectionEngine
    culler: VirtualScrollCuller
    constants: LayoutConstants


def build_editor_session(settings: AppSettings, error_sink: ErrorSink | None = None) -> EditorSession:
    constants = settings.layout_constants()
    store = BlockGraphStore(strict=settings.engine.strict_invariants)
    blocks = BlockService(store, error_sink or LoggingErrorSink())
    batch = BatchOperationCoordinator()
    spatial_query = GeometrySpatialQuery(store, constants) if settings.drag.use_geometry_anchors else None
    drag = DragConnectionEngine(blocks, batch, spatial_query, constants)
    culler = VirtualScrollCuller(settings.virtual_scroll.to_config())
    return EditorSession(
        store=store,
        blocks=blocks,
        batch=batch,
        drag=drag,
        culler=culler,
        constants=constants,
    )

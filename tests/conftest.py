from __future__ import annotations

import os
from collections.abc import Callable, Generator
from typing import Any

import pytest

from adapters.reporting.error_sinks import CollectingErrorSink
from adapters.spatial.geometry import GeometrySpatialQuery
from app.config import AppSettings, LayoutSettings, VirtualScrollSettings
from domain.models import BlockType, ContentItem, ContentType, Position
from domain.services.batch_coordinator import BatchOperationCoordinator
from domain.services.block_graph_store import BlockGraphStore
from domain.services.block_service import BlockService
from domain.services.drag_connection_engine import DragConnectionEngine


def _clear_blocks_env() -> None:
    for key in list(os.environ):
        if key.startswith("BLOCKS_"):
            os.environ.pop(key, None)


_clear_blocks_env()


@pytest.fixture(autouse=True)
def clear_blocks_env() -> Generator[None, None, None]:
    _clear_blocks_env()
    yield
    _clear_blocks_env()


@pytest.fixture
def store() -> BlockGraphStore:
    return BlockGraphStore(strict=True)


@pytest.fixture
def error_sink() -> CollectingErrorSink:
    return CollectingErrorSink()


@pytest.fixture
def blocks(store: BlockGraphStore, error_sink: CollectingErrorSink) -> BlockService:
    return BlockService(store, error_sink)


@pytest.fixture
def batch() -> BatchOperationCoordinator:
    return BatchOperationCoordinator()


@pytest.fixture
def drag_engine(
    blocks: BlockService, batch: BatchOperationCoordinator, store: BlockGraphStore
) -> DragConnectionEngine:
    return DragConnectionEngine(blocks, batch, GeometrySpatialQuery(store))


@pytest.fixture
def fallback_drag_engine(blocks: BlockService, batch: BatchOperationCoordinator) -> DragConnectionEngine:
    return DragConnectionEngine(blocks, batch, spatial_query=None)


@pytest.fixture
def make_block(store: BlockGraphStore) -> Callable[..., str]:
    def _factory(
        block_type: BlockType = BlockType.WORKS,
        x: float = 0.0,
        y: float = 0.0,
        **fields: Any,
    ) -> str:
        return store.create_block(block_type, Position(x=x, y=y), **fields)

    return _factory


@pytest.fixture
def value_slot() -> Callable[[str], ContentItem]:
    def _factory(content_id: str) -> ContentItem:
        return ContentItem(id=content_id, type=ContentType.CONTENT_VALUE)

    return _factory


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(layout=LayoutSettings(), virtual_scroll=VirtualScrollSettings())


@pytest.fixture
def app_settings_factory(app_settings: AppSettings) -> Callable[..., AppSettings]:
    def _factory(**overrides: object) -> AppSettings:
        return app_settings.model_copy(update=overrides)

    return _factory

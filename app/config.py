from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource, YamlConfigSettingsSource

from domain.constants import LayoutConstants
from domain.services.virtual_scroll import VirtualScrollConfig

DEFAULT_CONFIG_PATH = Path("config/editor.yaml")


class LayoutSettings(BaseModel):
    block_min_width: float = Field(200.0, gt=0)
    block_min_height: float = Field(56.0, gt=0)
    vertical_spacing: float = Field(56.0, gt=0)
    vertical_spacing_offset: float = 0.0
    loop_indent: float = Field(8.0, ge=0)
    loop_close_height: float = Field(24.0, ge=0)
    anchor_width: float = Field(32.0, gt=0)
    anchor_height: float = Field(16.0, gt=0)
    value_block_width: float = Field(150.0, gt=0)
    value_block_height: float = Field(40.0, gt=0)
    value_input_offset_x: float = 60.0
    value_input_offset_y: float = 14.0
    value_input_width: float = Field(100.0, gt=0)
    value_input_height: float = Field(28.0, gt=0)
    value_input_gap: float = Field(8.0, ge=0)

    def to_constants(self, drag: DragSettings | None = None) -> LayoutConstants:
        drag = drag or DragSettings()
        return LayoutConstants(
            **self.model_dump(),
            snap_radius=drag.snap_radius,
            value_snap_radius=drag.value_snap_radius,
        )


class VirtualScrollSettings(BaseModel):
    margin: float = Field(200.0, ge=0)
    default_block_width: float = Field(200.0, gt=0)
    default_block_height: float = Field(60.0, gt=0)
    performance_monitoring: bool = True
    priority_max_distance: float = Field(1000.0, gt=0)

    def to_config(self) -> VirtualScrollConfig:
        return VirtualScrollConfig(**self.model_dump())


class DragSettings(BaseModel):
    snap_radius: float = Field(12.0, gt=0)
    value_snap_radius: float = Field(10.0, gt=0)
    use_geometry_anchors: bool = True


class EngineSettings(BaseModel):
    strict_invariants: bool = False
    log_level: str = "WARNING"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: object) -> str:
        level = str(value or "WARNING").upper()
        if not isinstance(logging.getLevelName(level), int):
            msg = f"Unknown log level: {value}"
            raise ValueError(msg)
        return level


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BLOCKS_", env_nested_delimiter="__")

    engine: EngineSettings = EngineSettings()
    layout: LayoutSettings = LayoutSettings()
    virtual_scroll: VirtualScrollSettings = VirtualScrollSettings()
    drag: DragSettings = DragSettings()

    _yaml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        ]
        if cls._yaml_path:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_path))
        return tuple(sources)

    def layout_constants(self) -> LayoutConstants:
        return self.layout.to_constants(self.drag)


def load_settings(config_path: Path | None = None) -> AppSettings:
    env_path = os.getenv("BLOCKS_CONFIG_PATH")
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = config_path
    elif env_path:
        resolved_path = Path(env_path)
    elif DEFAULT_CONFIG_PATH.exists():
        resolved_path = DEFAULT_CONFIG_PATH

    previous = AppSettings._yaml_path
    try:
        if resolved_path is not None:
            if not resolved_path.exists():
                msg = f"Config file not found: {resolved_path}"
                raise FileNotFoundError(msg)
            AppSettings._yaml_path = resolved_path
        return AppSettings()
    finally:
        AppSettings._yaml_path = previous

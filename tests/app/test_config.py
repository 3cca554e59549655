from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from pydantic import ValidationError

from app.config import AppSettings, DragSettings, EngineSettings, LayoutSettings, load_settings
from domain.constants import DEFAULT_LAYOUT_CONSTANTS


def _write_yaml(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "editor.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_match_layout_constants(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)

    settings = load_settings()

    assert settings.layout_constants() == DEFAULT_LAYOUT_CONSTANTS
    assert settings.engine.strict_invariants is False
    assert settings.virtual_scroll.to_config().margin == 200


def test_yaml_file_from_env_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = _write_yaml(
        tmp_path,
        "engine:\n  strict_invariants: true\n  log_level: debug\nlayout:\n  loop_indent: 4\n"
        "virtual_scroll:\n  margin: 50\n",
    )
    monkeypatch.setenv("BLOCKS_CONFIG_PATH", str(path))

    settings = load_settings()

    assert settings.engine.strict_invariants is True
    assert settings.engine.log_level == "DEBUG"
    assert settings.layout.loop_indent == 4
    assert settings.virtual_scroll.margin == 50


def test_env_overrides_yaml(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = _write_yaml(tmp_path, "layout:\n  loop_indent: 4\n")
    monkeypatch.setenv("BLOCKS_LAYOUT__LOOP_INDENT", "12")
    monkeypatch.setenv("BLOCKS_DRAG__SNAP_RADIUS", "20")

    settings = load_settings(path)

    assert settings.layout.loop_indent == 12
    assert settings.layout_constants().snap_radius == 20


def test_missing_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "absent.yaml")


def test_yaml_path_is_not_left_behind(tmp_path: Path) -> None:
    load_settings(_write_yaml(tmp_path, "layout:\n  loop_indent: 4\n"))

    assert AppSettings._yaml_path is None


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        EngineSettings(log_level="loud")
    with pytest.raises(ValidationError):
        LayoutSettings(vertical_spacing=0)


def test_to_constants_carries_snap_radii(app_settings_factory: Callable[..., AppSettings]) -> None:
    settings = app_settings_factory(drag=DragSettings(snap_radius=30, value_snap_radius=15))

    constants = settings.layout_constants()

    assert (constants.snap_radius, constants.value_snap_radius) == (30, 15)
    assert constants.chain_step == constants.vertical_spacing + constants.vertical_spacing_offset

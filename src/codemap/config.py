"""Configuration management for codemap.

Every tuned constant of the layout engine lives here as a default so it can
be overridden from a YAML file.  None of them is derived; they were tuned
by eye against real projects.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigError

CONFIG_ENV_VAR = "CODEMAP_CONFIG"


class SimulationConfig(BaseModel):
    """Alpha schedule and integration settings."""

    alpha_decay: float = 0.02
    alpha_min: float = 0.001
    alpha_target: float = 0.0
    velocity_decay: float = 0.6  # fraction of velocity kept each tick
    interval_ms: float = 16.0
    fallback_x: float = 400.0
    fallback_y: float = 300.0
    drag_alpha: float = 0.3
    max_ticks: int = 3000


class ForceConfig(BaseModel):
    """Per-kind force tables."""

    link_distance: dict[str, float] = Field(
        default_factory=lambda: {
            "contains": 100.0,
            "defines": 70.0,
            "external-uses": 80.0,
            "imports": 250.0,
        }
    )
    default_link_distance: float = 120.0
    link_strength: dict[str, float] = Field(
        default_factory=lambda: {
            "contains": 0.2,
            "defines": 0.3,
            "external-uses": 0.15,
        }
    )
    default_link_strength: float = 0.05
    link_bias: float = 0.5
    charge: dict[str, float] = Field(
        default_factory=lambda: {
            "component": -4000.0,
            "directory": -2500.0,
            "external": -1500.0,
            "file": -1200.0,
        }
    )
    default_charge: float = -800.0
    charge_distance_min: float = 1.0
    charge_distance_max: Optional[float] = None
    max_charge_nodes: int = 2000
    collision_radius: dict[str, float] = Field(
        default_factory=lambda: {
            "component": 150.0,
            "directory": 100.0,
            "external": 80.0,
            "file": 60.0,
        }
    )
    default_collision_radius: float = 30.0
    collision_strength: float = 1.0
    collision_iterations: int = 3
    center_strength: float = 0.05
    position_strength: float = 0.02
    orbit_stiffness: float = 0.3
    orbit_max_stiffness: float = 1.0


class PackingConfig(BaseModel):
    """Component box sizing and brick-packing placement."""

    header_height: float = 50.0
    content_padding: float = 15.0
    file_box_height: float = 30.0
    file_min_width: float = 80.0
    file_char_width: float = 7.0
    file_text_padding: float = 20.0
    file_spacing_x: float = 10.0
    file_spacing_y: float = 10.0
    min_columns: int = 2
    max_columns: int = 4
    external_box_width: float = 140.0
    external_box_height: float = 50.0
    external_spacing_y: float = 65.0
    external_gap: float = 15.0
    min_box_width: float = 300.0
    min_box_height: float = 200.0
    gap_x: float = 60.0
    gap_y: float = 60.0
    start_x: float = 40.0
    start_y: float = 40.0
    search_width: float = 2500.0
    search_height: float = 3000.0
    search_step: float = 20.0
    width_tie: float = 50.0
    early_exit_aspect: float = 0.7
    early_exit_dx: float = 300.0
    early_exit_dy: float = 200.0


class RoutingConfig(BaseModel):
    """Elbow connector routing."""

    margin: float = 5.0
    clearance: float = 10.0
    corner_radius: float = 8.0
    default_source_width: float = 140.0
    default_target_width: float = 100.0


class ViewportConfig(BaseModel):
    """Pan/zoom limits and semantic zoom."""

    width: float = 1200.0
    height: float = 800.0
    min_scale: float = 0.1
    max_scale: float = 10.0
    zoom_threshold: float = 0.3
    wheel_in: float = 1.03
    wheel_out: float = 0.97
    fast_wheel_in: float = 1.09
    fast_wheel_out: float = 0.91
    fit_fraction: float = 0.8
    animation_ms: float = 750.0
    animation_steps: int = 30
    label_padding: float = 20.0
    label_max_font: float = 72.0
    label_min_font: float = 8.0
    label_char_width: float = 0.6
    label_line_height: float = 1.2
    detail_font: float = 18.0
    collapsed_opacity: float = 0.9
    drag_deadzone: float = 10.0


class CodemapConfig(BaseModel):
    """Full codemap configuration."""

    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    forces: ForceConfig = Field(default_factory=ForceConfig)
    packing: PackingConfig = Field(default_factory=PackingConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)


def load_config(path: str | Path | None = None) -> CodemapConfig:
    """Load configuration from a YAML file.

    Falls back to the ``CODEMAP_CONFIG`` environment variable, then to the
    defaults.  A missing explicit path is an error; a missing path from the
    environment is ignored.
    """
    explicit = path is not None
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return CodemapConfig()
        path = env_path

    config_path = Path(path)
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        return CodemapConfig()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {config_path}")

    try:
        return CodemapConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {config_path}: {e}") from e


def save_config(path: str | Path, config: CodemapConfig) -> Path:
    """Save configuration as YAML and return the written path."""
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(yaml.dump(config.model_dump(), sort_keys=False))
    return config_path

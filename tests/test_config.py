"""Tests for configuration loading."""

import pytest

from codemap.config import CONFIG_ENV_VAR, CodemapConfig, load_config, save_config
from codemap.exceptions import ConfigError


def test_defaults(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    config = load_config()
    assert config.simulation.alpha_decay == 0.02
    assert config.simulation.velocity_decay == 0.6
    assert config.viewport.zoom_threshold == 0.3
    assert config.forces.link_distance["imports"] == 250
    assert config.packing.min_box_width == 300


def test_partial_override(tmp_path):
    path = tmp_path / "codemap.yaml"
    path.write_text("viewport:\n  zoom_threshold: 0.5\nforces:\n  charge:\n    file: -50\n")
    config = load_config(path)
    assert config.viewport.zoom_threshold == 0.5
    assert config.viewport.max_scale == 10
    assert config.forces.charge == {"file": -50}


def test_env_var(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text("simulation:\n  alpha_min: 0.01\n")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    assert load_config().simulation.alpha_min == 0.01


def test_env_var_pointing_nowhere_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "missing.yaml"))
    assert load_config() == CodemapConfig()


def test_explicit_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.yaml")


@pytest.mark.parametrize(
    "content",
    [
        "simulation: [",
        "- a\n- b\n",
        "simulation:\n  alpha_decay: fast\n",
    ],
)
def test_invalid_files(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path)


def test_save_and_reload(tmp_path):
    config = CodemapConfig()
    config.routing.clearance = 25
    path = save_config(tmp_path / "out" / "codemap.yaml", config)
    assert load_config(path).routing.clearance == 25

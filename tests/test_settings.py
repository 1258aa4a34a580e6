from __future__ import annotations

import pytest

from mosh.settings import EngineSettings


def test_defaults():
    settings = EngineSettings()

    assert settings.max_runtime_ms == 900_000
    assert settings.worker_concurrency == 4
    assert settings.algorithm_version == "raptor-1.0"


def test_environment_overrides_take_precedence(tmp_path):
    path = tmp_path / "engine.yaml"
    EngineSettings(max_runtime_ms=1000, worker_concurrency=2).to_yaml(path)

    settings = EngineSettings.load(path, environ={"WORKER_CONCURRENCY": "8", "MAX_SIMULATION_RUNTIME_MS": ""})

    assert settings.worker_concurrency == 8
    assert settings.max_runtime_ms == 1000


def test_invalid_environment_value():
    with pytest.raises(ValueError, match="WORKER_CONCURRENCY"):
        EngineSettings().with_env_overrides({"WORKER_CONCURRENCY": "many"})


@pytest.mark.parametrize(
    "mapping",
    [
        {"worker_concurrency": 0},
        {"max_runtime_ms": -1},
        {"snap_tolerance_deg": 0},
        {"threads": 2},
    ],
)
def test_invalid_settings(mapping):
    with pytest.raises(ValueError):
        EngineSettings.from_mapping(mapping)


def test_missing_yaml(tmp_path):
    with pytest.raises(FileNotFoundError):
        EngineSettings.from_yaml(tmp_path / "absent.yaml")

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict, Mapping

import yaml

logger = logging.getLogger(__name__)

ALGORITHM_VERSION = "raptor-1.0"

# environment variable -> (field, type)
ENV_OVERRIDES = {
    "MAX_SIMULATION_RUNTIME_MS": ("max_runtime_ms", int),
    "WORKER_CONCURRENCY": ("worker_concurrency", int),
}


@dataclass(frozen=True)
class EngineSettings:
    """Engine-wide knobs shared by every job: runtime budget, pool size, graph build tolerances."""

    max_runtime_ms: int = 900_000
    worker_concurrency: int = 4
    dispatch_threads: int = 1
    algorithm_version: str = ALGORITHM_VERSION
    transfer_radius_m: float = 400.0
    snap_tolerance_deg: float = 1e-5
    processing_node: str | None = None

    def __post_init__(self) -> None:
        if int(self.max_runtime_ms) < 0:
            raise ValueError("max_runtime_ms must be non-negative")
        if int(self.worker_concurrency) < 1:
            raise ValueError("worker_concurrency must be at least 1")
        if int(self.dispatch_threads) < 1:
            raise ValueError("dispatch_threads must be at least 1")
        if float(self.transfer_radius_m) < 0:
            raise ValueError("transfer_radius_m must be non-negative")
        if float(self.snap_tolerance_deg) <= 0:
            raise ValueError("snap_tolerance_deg must be positive")
        object.__setattr__(self, "max_runtime_ms", int(self.max_runtime_ms))
        object.__setattr__(self, "worker_concurrency", int(self.worker_concurrency))
        object.__setattr__(self, "dispatch_threads", int(self.dispatch_threads))
        object.__setattr__(self, "transfer_radius_m", float(self.transfer_radius_m))
        object.__setattr__(self, "snap_tolerance_deg", float(self.snap_tolerance_deg))

    @classmethod
    def from_mapping(cls, data: Mapping[str, object] | None) -> "EngineSettings":
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(str(key) for key in data if key not in known)
        if unknown:
            raise ValueError(f"Unknown engine settings: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "EngineSettings":
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Engine settings YAML not found at {config_path}")
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, Mapping):
            raise TypeError("Engine settings YAML must contain a mapping at the top level")
        return cls.from_mapping(data)

    def with_env_overrides(self, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        environ = os.environ if environ is None else environ
        updates: Dict[str, object] = {}
        for variable, (name, caster) in ENV_OVERRIDES.items():
            raw = environ.get(variable)
            if raw is None or str(raw).strip() == "":
                continue
            try:
                updates[name] = caster(raw)
            except ValueError as exc:
                raise ValueError(f"Environment variable {variable} is not a valid {caster.__name__}: {raw!r}") from exc
            logger.debug("Engine setting %s overridden by %s=%s", name, variable, raw)
        return replace(self, **updates) if updates else self

    @classmethod
    def load(cls, path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        settings = cls.from_yaml(path) if path is not None else cls()
        return settings.with_env_overrides(environ)

    def to_yaml(self, path: str | Path) -> None:
        output = {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}
        dest = Path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with dest.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(output, handle, sort_keys=True)


__all__ = ["ALGORITHM_VERSION", "ENV_OVERRIDES", "EngineSettings"]

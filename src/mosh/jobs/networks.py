"""Network lookup contract plus a cache of built graphs keyed by (network id, version)."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Tuple

from mosh.errors import NetworkNotFound
from mosh.network.graph_builder import GraphBuildOptions, NetworkBuildResult, NetworkGraphBuilder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkRecord:
    id: str
    type: str
    version: int
    geojson: Mapping[str, object]
    name: Optional[str] = None


class NetworkRepository(Protocol):
    def get_network_graph(self, network_id: str) -> NetworkRecord: ...


class InMemoryNetworkRepository:
    def __init__(self, records: Mapping[str, NetworkRecord] | None = None):
        self._lock = threading.Lock()
        self._records: Dict[str, NetworkRecord] = dict(records or {})

    def add(self, record: NetworkRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def add_file(
        self, network_id: str, path: str | Path, network_type: str, *, version: int = 1
    ) -> NetworkRecord:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        record = NetworkRecord(id=network_id, type=network_type, version=version, geojson=payload, name=Path(path).stem)
        self.add(record)
        return record

    def get_network_graph(self, network_id: str) -> NetworkRecord:
        with self._lock:
            record = self._records.get(network_id)
        if record is None:
            raise NetworkNotFound(f"Network {network_id} not found")
        return record


class NetworkGraphCache:
    """Builds each (network id, version) once; later jobs reuse the immutable graph."""

    def __init__(self, options: GraphBuildOptions | None = None):
        self.builder = NetworkGraphBuilder(options)
        self._lock = threading.Lock()
        self._built: Dict[Tuple[str, int], NetworkBuildResult] = {}

    def get(self, record: NetworkRecord) -> NetworkBuildResult:
        key = (record.id, record.version)
        with self._lock:
            cached = self._built.get(key)
            if cached is not None:
                return cached
            logger.info("Building %s graph for network %s v%s", record.type, record.id, record.version)
            result = self.builder.build(
                record.geojson,
                record.type,
                network_id=record.id,
                version=record.version,
            )
            self._built[key] = result
            return result

    def __len__(self) -> int:
        with self._lock:
            return len(self._built)


__all__ = ["InMemoryNetworkRepository", "NetworkGraphCache", "NetworkRecord", "NetworkRepository"]

"""Read GeoJSON FeatureCollections into a pandas DataFrame of shapely geometries."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pandas as pd
from shapely.geometry import LineString, MultiLineString, Point

from mosh.errors import MalformedGeometry

from .geodesy import is_valid_coordinate

logger = logging.getLogger(__name__)

FEATURE_COLUMNS = ["feature_index", "feature_id", "geometry_type", "geometry", "properties", "issue"]


def read_feature_collection(source: str | Path | Mapping[str, object]) -> Mapping[str, object]:
    """Return the FeatureCollection mapping stored at ``source`` (path or mapping)."""
    if isinstance(source, Mapping):
        payload = source
    else:
        with open(source, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    if not isinstance(payload, Mapping) or payload.get("type") != "FeatureCollection":
        raise MalformedGeometry("GeoJSON payload must be a FeatureCollection")
    features = payload.get("features")
    if not isinstance(features, list):
        raise MalformedGeometry("FeatureCollection must carry a 'features' list")
    return payload


def features_dataframe(source: str | Path | Mapping[str, object]) -> pd.DataFrame:
    """Parse every feature into a row; unusable geometries keep ``geometry=None`` and an ``issue``."""
    payload = read_feature_collection(source)
    rows: List[Dict[str, object]] = []
    for idx, feature in enumerate(payload.get("features") or []):
        if not isinstance(feature, Mapping):
            rows.append(_row(idx, None, None, None, {}, "feature is not a mapping"))
            continue
        properties = feature.get("properties") or {}
        if not isinstance(properties, Mapping):
            properties = {}
        feature_id = feature.get("id")
        if feature_id is None:
            feature_id = properties.get("id")
        geometry = feature.get("geometry")
        geom_type = geometry.get("type") if isinstance(geometry, Mapping) else None
        geom, issue = _parse_geometry(geometry)
        rows.append(
            _row(
                idx,
                str(feature_id) if feature_id is not None else None,
                geom_type,
                geom,
                dict(properties),
                issue,
            )
        )
    frame = pd.DataFrame(rows, columns=FEATURE_COLUMNS)
    logger.debug(
        "Parsed %d GeoJSON features (%d unusable)", len(frame), sum(row["geometry"] is None for row in rows)
    )
    return frame


def _row(
    idx: int,
    feature_id: Optional[str],
    geom_type: Optional[str],
    geom: object,
    properties: Mapping[str, object],
    issue: Optional[str],
) -> Dict[str, object]:
    return {
        "feature_index": idx,
        "feature_id": feature_id,
        "geometry_type": geom_type,
        "geometry": geom,
        "properties": properties,
        "issue": issue,
    }


def _parse_geometry(geometry: object):
    if not isinstance(geometry, Mapping):
        return None, "feature has no geometry"
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates")
    if geom_type == "Point":
        if not is_valid_coordinate(coords):
            return None, "Point has invalid coordinates"
        return Point(float(coords[0]), float(coords[1])), None
    if geom_type == "LineString":
        line = _parse_line(coords)
        if line is None:
            return None, "LineString needs at least two valid coordinates"
        return line, None
    if geom_type == "MultiLineString":
        if not isinstance(coords, list):
            return None, "MultiLineString has invalid coordinates"
        parts = [_parse_line(part) for part in coords]
        if not parts or any(part is None for part in parts):
            return None, "MultiLineString has an invalid part"
        return MultiLineString(parts), None
    return None, f"unsupported geometry type {geom_type!r}"


def _parse_line(coords: object) -> Optional[LineString]:
    if not isinstance(coords, list) or len(coords) < 2:
        return None
    if not all(is_valid_coordinate(c) for c in coords):
        return None
    return LineString([(float(c[0]), float(c[1])) for c in coords])


__all__ = ["features_dataframe", "read_feature_collection"]

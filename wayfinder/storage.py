from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from wayfinder.geometry import Vec3
from wayfinder.graph import SpatialGraph
from wayfinder.poi import PointOfInterest

logger = logging.getLogger(__name__)

GRAPH_SUFFIX = ".navgraph.json"
POIS_SUFFIX = ".pois.json"
PATH_SUFFIX = ".path.json"
POINT_CLOUD_SUFFIX = ".pointcloud.json"
ALL_SUFFIXES = (GRAPH_SUFFIX, POIS_SUFFIX, PATH_SUFFIX, POINT_CLOUD_SUFFIX)

_MAP_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 _.-]{0,63}$")


def is_valid_map_name(name: str) -> bool:
    return bool(_MAP_NAME_RE.match(name or "")) and ".." not in name


class MapStore:
    """
    Per-map JSON sidecars in one directory.

    A sidecar that is missing, unreadable or structurally invalid loads as
    empty; it is logged, never raised.
    """

    def __init__(self, maps_dir: Path) -> None:
        self.maps_dir = Path(maps_dir)

    def _path(self, map_name: str, suffix: str) -> Path:
        if not is_valid_map_name(map_name):
            raise ValueError(f"Invalid map name: {map_name!r}")
        return self.maps_dir / f"{map_name}{suffix}"

    def list_maps(self) -> List[str]:
        if not self.maps_dir.exists():
            return []
        names = set()
        for entry in self.maps_dir.iterdir():
            for suffix in ALL_SUFFIXES:
                if entry.name.endswith(suffix):
                    names.add(entry.name[: -len(suffix)])
        return sorted(names)

    def delete_map(self, map_name: str) -> bool:
        removed = False
        for suffix in ALL_SUFFIXES:
            path = self._path(map_name, suffix)
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Failed deleting %s: %s", path.name, exc)
        return removed

    def file_size_bytes(self, map_name: str, suffix: str = POINT_CLOUD_SUFFIX) -> Optional[int]:
        try:
            return self._path(map_name, suffix).stat().st_size
        except OSError:
            return None

    def load_graph(self, map_name: str) -> SpatialGraph:
        raw = self._read_json(self._path(map_name, GRAPH_SUFFIX))
        if raw is None:
            return SpatialGraph()
        try:
            return SpatialGraph.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Corrupt graph sidecar for map %r: %s", map_name, exc)
            return SpatialGraph()

    def save_graph(self, graph: SpatialGraph, map_name: str) -> Tuple[bool, str]:
        return self._write_json(self._path(map_name, GRAPH_SUFFIX), graph.to_dict())

    def load_pois(self, map_name: str) -> List[PointOfInterest]:
        raw = self._read_json(self._path(map_name, POIS_SUFFIX))
        if raw is None:
            return []
        try:
            if not isinstance(raw, list):
                raise ValueError("POI sidecar must contain a JSON array.")
            return [PointOfInterest.from_dict(item) for item in raw]
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Corrupt POI sidecar for map %r: %s", map_name, exc)
            return []

    def save_pois(self, pois: Sequence[PointOfInterest], map_name: str) -> Tuple[bool, str]:
        return self._write_json(self._path(map_name, POIS_SUFFIX), [poi.to_dict() for poi in pois])

    def load_path(self, map_name: str) -> List[Vec3]:
        return self._load_triples(self._path(map_name, PATH_SUFFIX))

    def save_path(self, points: Sequence[Vec3], map_name: str) -> Tuple[bool, str]:
        return self._write_json(self._path(map_name, PATH_SUFFIX), _triples_payload(points))

    def load_point_cloud(self, map_name: str) -> List[Vec3]:
        return self._load_triples(self._path(map_name, POINT_CLOUD_SUFFIX))

    def save_point_cloud(self, points: Sequence[Vec3], map_name: str) -> Tuple[bool, str]:
        return self._write_json(self._path(map_name, POINT_CLOUD_SUFFIX), _triples_payload(points))

    def _load_triples(self, path: Path) -> List[Vec3]:
        raw = self._read_json(path)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("%s must contain a JSON array.", path.name)
            return []

        points: List[Vec3] = []
        for item in raw:
            if not isinstance(item, list) or len(item) < 3:
                continue
            try:
                points.append((float(item[0]), float(item[1]), float(item[2])))
            except (TypeError, ValueError):
                continue
        return points

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            logger.warning("Failed reading %s: %s", path.name, exc)
        except json.JSONDecodeError as exc:
            logger.warning("Invalid JSON in %s: %s", path.name, exc)
        return None

    def _write_json(self, path: Path, payload: Any) -> Tuple[bool, str]:
        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=str(path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.warning("Failed writing %s: %s", path.name, exc)
            return False, f"Failed writing {path.name}: {exc}"
        return True, ""


def _triples_payload(points: Sequence[Vec3]) -> List[List[float]]:
    return [[float(p[0]), float(p[1]), float(p[2])] for p in points]

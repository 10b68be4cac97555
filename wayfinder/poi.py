from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from wayfinder.geometry import Vec3, distance, vec3
from wayfinder.graph import new_id


@dataclass(frozen=True)
class PointOfInterest:
    poi_id: str
    name: str
    position: Vec3

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.poi_id, "name": self.name, "position": list(self.position)}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PointOfInterest":
        return cls(
            poi_id=str(payload["id"]),
            name=str(payload["name"]),
            position=vec3(payload["position"]),
        )


class PoiRegistry:
    """Named destinations of one map, keyed by stable id."""

    def __init__(self, pois: Optional[Iterable[PointOfInterest]] = None) -> None:
        self._pois: Dict[str, PointOfInterest] = {}
        self._deleted_ids: Set[str] = set()
        for poi in pois or []:
            self._pois[poi.poi_id] = poi

    def __len__(self) -> int:
        return len(self._pois)

    def all(self) -> List[PointOfInterest]:
        return list(self._pois.values())

    def get(self, poi_id: str) -> Optional[PointOfInterest]:
        return self._pois.get(poi_id)

    def add(self, name: str, position: Vec3) -> PointOfInterest:
        poi = PointOfInterest(poi_id=new_id(), name=name.strip(), position=vec3(position))
        self._pois[poi.poi_id] = poi
        return poi

    def rename(self, poi_id: str, name: str) -> Optional[PointOfInterest]:
        poi = self._pois.get(poi_id)
        if poi is None:
            return None
        updated = replace(poi, name=name.strip())
        self._pois[poi_id] = updated
        return updated

    def move(self, poi_id: str, position: Vec3) -> Optional[PointOfInterest]:
        poi = self._pois.get(poi_id)
        if poi is None:
            return None
        updated = replace(poi, position=vec3(position))
        self._pois[poi_id] = updated
        return updated

    def delete(self, poi_id: str) -> bool:
        if self._pois.pop(poi_id, None) is None:
            return False
        self._deleted_ids.add(poi_id)
        return True

    def replace_all(self, pois: Iterable[PointOfInterest]) -> None:
        self._pois = {poi.poi_id: poi for poi in pois}
        self._deleted_ids.clear()

    def merged_with(self, on_disk: Iterable[PointOfInterest]) -> List[PointOfInterest]:
        """Union with a stored list; in-memory edits and deletions win per id."""
        merged: Dict[str, PointOfInterest] = {}
        for poi in on_disk:
            if poi.poi_id in self._deleted_ids:
                continue
            merged[poi.poi_id] = poi
        for poi_id, poi in self._pois.items():
            merged[poi_id] = poi
        return list(merged.values())

    def find_by_name(self, search_text: str) -> Optional[PointOfInterest]:
        search = " ".join(search_text.lower().split())
        if not search:
            return None

        pois = self.all()
        for poi in pois:
            if poi.name.lower() == search:
                return poi

        for poi in pois:
            if search in poi.name.lower():
                return poi

        search_words = search.split()
        for poi in pois:
            poi_words = poi.name.lower().split()
            match_count = sum(
                1
                for word in search_words
                if any(word in poi_word or poi_word in word for poi_word in poi_words)
            )
            if match_count > 0 and match_count >= len(search_words) // 2:
                return poi

        return None

    def nearest(self, position: Vec3) -> Optional[Tuple[PointOfInterest, float]]:
        best: Optional[PointOfInterest] = None
        best_dist = float("inf")
        for poi in self._pois.values():
            dist = distance(position, poi.position)
            if dist < best_dist:
                best = poi
                best_dist = dist
        if best is None:
            return None
        return best, best_dist

# streetlights/services/lights.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from streetlights.config import GROUP_RADIUS_METERS
from streetlights.services.geo import distance_meters


@dataclass
class CommunityLight:
    """Derived cluster of community reports. Never persisted."""
    lat: float
    lng: float
    reports: List[Any] = field(default_factory=list)
    light_id: Optional[str] = None

    @property
    def report_ids(self) -> List[str]:
        return [r.id for r in self.reports]


def _frac5(x: float) -> str:
    parts = format(abs(float(x)), ".5f").split(".")
    return parts[1] if len(parts) > 1 else "00000"


def make_light_id(lat: float, lng: float) -> str:
    """Short display code: SL + 5 decimals of |lng| + 5 decimals of |lat|."""
    return f"SL{_frac5(lng)}{_frac5(lat)}"


def light_id_for(lat: float, lng: float) -> str:
    """Fallback identity for a coordinate that carries no light id."""
    return f"{float(lat):.5f}:{float(lng):.5f}"


def resolve_light_id(report: Any, official_ids: Set[str]) -> Optional[str]:
    """Exact path: an official id on the report is authoritative."""
    lid = (getattr(report, "light_id", None) or "").strip()
    return lid if lid in official_ids else None


def community_reports(reports: Iterable[Any], official_ids: Set[str]) -> List[Any]:
    return [r for r in reports if r.light_id not in official_ids]


def group_into_lights(reports: Iterable[Any], radius_m: float = GROUP_RADIUS_METERS) -> List[CommunityLight]:
    """
    Sequential single-linkage grouping, in arrival order.

    Each report joins the *first* existing cluster whose running centroid is
    within `radius_m`, otherwise it starts a new one. Order-sensitive on
    purpose: the same list always gives the same clusters, a different order
    may not. Downstream ids depend on this exact behaviour.
    """
    lights: List[CommunityLight] = []

    for r in reports:
        placed = False
        for light in lights:
            if distance_meters((r.lat, r.lng), (light.lat, light.lng)) <= radius_m:
                light.reports.append(r)
                n = len(light.reports)
                light.lat = (light.lat * (n - 1) + r.lat) / n
                light.lng = (light.lng * (n - 1) + r.lng) / n
                placed = True
                break
        if not placed:
            lights.append(CommunityLight(lat=r.lat, lng=r.lng, reports=[r]))

    for light in lights:
        # plurality light id, ties -> first seen
        counts: Dict[str, int] = {}
        for r in light.reports:
            lid = r.light_id or light_id_for(r.lat, r.lng)
            counts[lid] = counts.get(lid, 0) + 1
        best_n = -1
        for lid, n in counts.items():
            if n > best_n:
                best_n = n
                light.light_id = lid

    return lights


def _nearest(items: Iterable[Any], lat: float, lng: float, radius_m: float) -> Optional[Any]:
    best = None
    best_dist = float("inf")
    for it in items:
        dist = distance_meters((lat, lng), (it.lat, it.lng))
        if dist <= radius_m and dist < best_dist:
            best_dist = dist
            best = it
    return best


def find_nearest_light_within_radius(
    lights: Iterable[CommunityLight], lat: float, lng: float, radius_m: float = GROUP_RADIUS_METERS
) -> Optional[CommunityLight]:
    return _nearest(lights, lat, lng, radius_m)


def find_nearest_official_within_radius(
    officials: Iterable[Any], lat: float, lng: float, radius_m: float = GROUP_RADIUS_METERS
) -> Optional[Any]:
    return _nearest(officials, lat, lng, radius_m)


def unique_light_ids_for_cluster(light: CommunityLight) -> List[str]:
    """Every light id a cluster-wide fix/reopen must touch."""
    ids: List[str] = []
    if light.light_id:
        ids.append(light.light_id)
    for r in light.reports:
        lid = r.light_id or light_id_for(r.lat, r.lng)
        if lid not in ids:
            ids.append(lid)
    return ids


def coords_for_light_id(
    light_id: str, reports: Iterable[Any], officials: Iterable[Any]
) -> Optional[Tuple[float, float, bool]]:
    """(lat, lng, is_official). Community coords are the mean of the light's reports."""
    for ol in officials:
        if ol.id == light_id:
            return ol.lat, ol.lng, True
    rows = [r for r in reports if r.light_id == light_id]
    if not rows:
        return None
    return (
        sum(r.lat for r in rows) / len(rows),
        sum(r.lng for r in rows) / len(rows),
        False,
    )

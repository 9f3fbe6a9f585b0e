# streetlights/services/status.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

from streetlights.schemas import LightAction, LightStatus
from streetlights.services.identity import extract_row_identity
from streetlights.services.lifecycle import (
    OPERATIONAL,
    LightLifecycle,
    cycle_boundaries,
    cycle_boundary,
    replay,
)
from streetlights.services.lights import community_reports, group_into_lights, unique_light_ids_for_cluster

REPORT_TYPE_LABELS = {
    "out": "Light is out",
    "flickering": "Dim / Flickering",
    "dayburner": "On during daytime",
    "downed_pole": "Pole down",
    "working": "Reported Working",
    "other": "Other",
}


class Tier(NamedTuple):
    label: str
    color: str


OPERATIONAL_TIER = Tier("Operational", "#111")
FIXED_COMMUNITY = Tier("Fixed", "#2e7d32")
# Sole reporter looking at their own single report
MUTED_REPORTED = Tier("Reported", "#f1c40f")


def official_tier(count: int) -> Tier:
    """Official lights: 0 / 1-4 / 5-6 / 7+ open-cycle reports."""
    if count >= 7:
        return Tier("Confirmed Out", "#b71c1c")
    if count >= 5:
        return Tier("Likely Out", "#f57c00")
    if count >= 1:
        return Tier("Reported", "#fbc02d")
    return OPERATIONAL_TIER


def community_tier(count: int) -> Tier:
    """Community lights use a coarser scale (1 / 2-3 / 4+). Not the official one."""
    if count >= 4:
        return Tier("Confirmed Out", "#b71c1c")
    if count >= 2:
        return Tier("Likely Out", "#f57c00")
    return Tier("Reported", "#616161")


def majority_type(reports: Iterable[Any]) -> Optional[str]:
    """Most frequent report type; equal counts -> the type seen first."""
    counts: Dict[str, int] = {}
    for r in reports:
        t = getattr(r.type, "value", r.type)
        counts[t] = counts.get(t, 0) + 1
    best = None
    best_n = -1
    for t, n in counts.items():
        if n > best_n:
            best_n = n
            best = t
    return best


def public_status(life: LightLifecycle) -> Dict[str, Any]:
    is_fixed = life.state == OPERATIONAL
    key = majority_type(life.open_reports)
    label = REPORT_TYPE_LABELS.get(key, key) if key else "Operational"
    return {
        "is_fixed": is_fixed,
        "since_fix_count": life.open_count,
        "majority_key": key,
        "majority_label": "Operational" if is_fixed else label,
    }


# =========================
#  Viewer-relative (official lights)
# =========================

def is_sole_reporter(life: LightLifecycle, viewer_key: Optional[str]) -> bool:
    if not viewer_key or life.open_count != 1:
        return False
    return extract_row_identity(life.open_reports[0]) == viewer_key


def viewer_acknowledged_working(
    life: LightLifecycle, reports: Iterable[Any], actions: Iterable[Any], viewer_key: Optional[str]
) -> bool:
    """The viewer said "working" after the latest open outage report."""
    if not viewer_key:
        return False
    last_report = max((r.ts for r in life.open_reports), default=0)
    min_ts = max(life.cycle_start, last_report)
    for r in reports:
        if r.light_id == life.light_id and r.is_working and r.ts > min_ts:
            if extract_row_identity(r) == viewer_key:
                return True
    for a in actions:
        if a.light_id == life.light_id and a.action == LightAction.working and a.ts > min_ts:
            if extract_row_identity(a) == viewer_key:
                return True
    return False


def official_marker(
    life: LightLifecycle,
    reports: Iterable[Any],
    actions: Iterable[Any],
    viewer_key: Optional[str] = None,
    is_admin: bool = False,
) -> Tier:
    if life.resolved_by_consensus or not life.open_reports:
        return OPERATIONAL_TIER
    if is_admin:
        return official_tier(life.open_count)
    if viewer_acknowledged_working(life, reports, actions, viewer_key):
        return OPERATIONAL_TIER
    if is_sole_reporter(life, viewer_key):
        return MUTED_REPORTED
    return official_tier(life.open_count)


# =========================
#  Whole-map derivation
# =========================

def derive_status(
    officials: Iterable[Any],
    reports: Iterable[Any],
    actions: Iterable[Any],
    fixed_cache: Mapping[str, int],
    viewer_key: Optional[str] = None,
    is_admin: bool = False,
) -> Dict[str, LightStatus]:
    """
    light_id -> LightStatus for every official light and community cluster.

    Pure function of its inputs; recomputed from scratch on every call.
    """
    officials = list(officials)
    reports = list(reports)
    actions = list(actions)
    official_ids = {ol.id for ol in officials}
    boundaries = cycle_boundaries(actions, fixed_cache)
    out: Dict[str, LightStatus] = {}

    for ol in officials:
        life = replay(ol.id, reports, actions, cycle_boundary(ol.id, boundaries))
        tier = official_marker(life, reports, actions, viewer_key, is_admin)
        out[ol.id] = LightStatus(
            light_id=ol.id,
            is_official=True,
            lat=ol.lat,
            lng=ol.lng,
            label=tier.label,
            color=tier.color,
            state=life.state,
            resolved_by_consensus=life.resolved_by_consensus,
            cycle_start=life.cycle_start,
            mine_only=tier is MUTED_REPORTED,
            report_ids=[r.id for r in life.open_reports],
            **public_status(life),
        )

    for light in group_into_lights(community_reports(reports, official_ids)):
        lid = light.light_id
        if lid in out:
            continue
        life = replay(
            lid, light.reports, actions, cycle_boundary(lid, boundaries),
            member_ids=set(unique_light_ids_for_cluster(light)), community=True,
        )
        if life.state == OPERATIONAL:
            tier = FIXED_COMMUNITY
        else:
            tier = community_tier(life.open_count)
        out[lid] = LightStatus(
            light_id=lid,
            is_official=False,
            lat=light.lat,
            lng=light.lng,
            label=tier.label,
            color=tier.color,
            state=life.state,
            resolved_by_consensus=life.resolved_by_consensus,
            cycle_start=life.cycle_start,
            report_ids=[r.id for r in life.open_reports],
            **public_status(life),
        )

    return out


def light_history(light_id: str, reports: Iterable[Any], actions: Iterable[Any]) -> List[Dict[str, Any]]:
    """Full timeline of one light (reports + fix/reopen/working), newest first."""
    items: List[Dict[str, Any]] = []
    for r in reports:
        if r.light_id != light_id:
            continue
        items.append({
            "kind": "working" if r.is_working else "report",
            "ts": r.ts,
            "label": "Reported Working" if r.is_working else REPORT_TYPE_LABELS.get(r.type.value, r.type.value),
            "note": r.note,
            "type": r.type.value,
        })
    labels = {LightAction.fix: "Marked fixed", LightAction.reopen: "Re-opened", LightAction.working: "Reported Working"}
    for a in actions:
        if a.light_id != light_id:
            continue
        items.append({"kind": a.action.value, "ts": a.ts, "label": labels[a.action], "note": "", "type": ""})
    items.sort(key=lambda it: it["ts"], reverse=True)
    return items

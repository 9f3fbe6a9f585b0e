# streetlights/services/lifecycle.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from streetlights.schemas import LightAction

OPERATIONAL = "operational"
REPORTED = "reported"
LIKELY = "likely"
CONFIRMED = "confirmed"

# Open-report counts where a light becomes likely / confirmed out
OFFICIAL_THRESHOLDS = (5, 7)
COMMUNITY_THRESHOLDS = (2, 4)

# Working signals in a row (no outage report in between) that resolve a light
CONSENSUS_STREAK = 3


@dataclass
class LightLifecycle:
    light_id: str
    cycle_start: int = 0                  # 0 = never fixed
    open_reports: List[Any] = field(default_factory=list)
    working_streak: int = 0
    resolved_by_consensus: bool = False
    community: bool = False               # community cluster: lower thresholds

    @property
    def is_open(self) -> bool:
        return bool(self.open_reports) and not self.resolved_by_consensus

    @property
    def state(self) -> str:
        if not self.is_open:
            return OPERATIONAL
        likely, confirmed = COMMUNITY_THRESHOLDS if self.community else OFFICIAL_THRESHOLDS
        n = self.open_count
        if n >= confirmed:
            return CONFIRMED
        if n >= likely:
            return LIKELY
        return REPORTED

    @property
    def open_count(self) -> int:
        return len(self.open_reports)


def _by_ts(items: Iterable[Any]) -> List[Any]:
    # sorted() is stable: equal timestamps keep arrival order
    return sorted(items, key=lambda x: x.ts)


def fix_boundaries(actions: Iterable[Any]) -> Dict[str, int]:
    """Fold the action log: fix -> boundary = ts, reopen -> boundary cleared."""
    out: Dict[str, int] = {}
    for a in _by_ts(actions):
        if a.action == LightAction.fix:
            out[a.light_id] = a.ts
        elif a.action == LightAction.reopen:
            out.pop(a.light_id, None)
    return out


def last_reopens(actions: Iterable[Any]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for a in actions:
        if a.action == LightAction.reopen and a.ts > out.get(a.light_id, 0):
            out[a.light_id] = a.ts
    return out


def cycle_boundaries(actions: Iterable[Any], fixed_cache: Mapping[str, int]) -> Dict[str, int]:
    """
    light_id -> start of the current cycle, max(action-log fix, fixed cache).

    The fixed cache only mirrors the log: an entry that is not newer than the
    light's last reopen is stale and ignored.
    """
    actions = list(actions)
    out = fix_boundaries(actions)
    reopened = last_reopens(actions)
    for lid, ts in (fixed_cache or {}).items():
        if not ts or ts <= reopened.get(lid, 0):
            continue
        if ts > out.get(lid, 0):
            out[lid] = ts
    return out


def cycle_boundary(light_id: str, boundaries: Mapping[str, int]) -> int:
    return int(boundaries.get(light_id, 0) or 0)


def in_cycle(ts: int, boundary: int) -> bool:
    return not boundary or ts > boundary


def replay(
    light_id: str,
    reports: Iterable[Any],
    actions: Iterable[Any],
    boundary: int,
    member_ids: Optional[Set[str]] = None,
    community: bool = False,
) -> LightLifecycle:
    """
    Current cycle of one light.

    `member_ids` widens membership to every light id of a community cluster;
    the cycle boundary stays the one of `light_id`. `community` switches the
    state to the community scale.

    Events strictly after the boundary are cycle members. The consensus
    streak is one forward scan: a working report or working action adds one,
    an outage report resets it to zero.
    """
    ids = member_ids or {light_id}
    life = LightLifecycle(light_id=light_id, cycle_start=boundary, community=community)
    events = []
    for r in reports:
        if r.light_id not in ids or not in_cycle(r.ts, boundary):
            continue
        events.append(r)
        if not r.is_working:
            life.open_reports.append(r)
    for a in actions:
        if a.light_id in ids and a.action == LightAction.working and in_cycle(a.ts, boundary):
            events.append(a)

    streak = 0
    for ev in _by_ts(events):
        working = ev.is_working if hasattr(ev, "is_working") else True
        if not working:
            streak = 0
            continue
        streak += 1
        if streak >= CONSENSUS_STREAK:
            life.resolved_by_consensus = True
            break
    life.working_streak = streak
    life.open_reports = _by_ts(life.open_reports)
    return life


def replay_all(
    light_ids: Iterable[str], reports: Iterable[Any], actions: Iterable[Any], fixed_cache: Mapping[str, int]
) -> Dict[str, LightLifecycle]:
    reports = list(reports)
    actions = list(actions)
    boundaries = cycle_boundaries(actions, fixed_cache)
    return {
        lid: replay(lid, reports, actions, cycle_boundary(lid, boundaries))
        for lid in light_ids
    }

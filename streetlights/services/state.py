# streetlights/services/state.py
from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from streetlights.config import LOG_ENGINE
from streetlights.errors import ValidationError
from streetlights.schemas import FeedEvent, LightActionEvent, OfficialLight, Report, to_ms
from streetlights.services.identity import extract_row_identity

# How far apart a local row and the store row it stands for may be stamped
LOCAL_MATCH_WINDOW_MS = 10 * 60 * 1000


class Snapshot(NamedTuple):
    officials: List[OfficialLight]
    reports: List[Report]
    actions: List[LightActionEvent]
    fixed: Dict[str, int]


# =========================
#  Optimistic writes
# =========================

PENDING = "pending"
CONFIRMED = "confirmed"
ROLLED_BACK = "rolled_back"


class PendingWrite:
    """Pending(temp_id) -> Confirmed(real_id) | RolledBack. One per optimistic write."""

    def __init__(self, temp_id: str, record: Any = None, kind: str = "insert"):
        self.temp_id = temp_id
        self.record = record
        self.kind = kind
        self.status = PENDING
        self.real_id: Optional[str] = None

    def confirm(self, real_id: str) -> None:
        if self.status != PENDING:
            raise ValueError(f"cannot confirm a {self.status} write")
        self.status = CONFIRMED
        self.real_id = real_id

    def roll_back(self) -> None:
        if self.status != PENDING:
            raise ValueError(f"cannot roll back a {self.status} write")
        self.status = ROLLED_BACK

    def __repr__(self) -> str:
        return f"PendingWrite({self.kind} {self.temp_id} {self.status} real={self.real_id})"


# =========================
#  Engine state
# =========================

def _parse(factory, rows: Iterable[Dict[str, Any]], tag: str) -> List[Any]:
    out = []
    for row in rows or []:
        try:
            out.append(factory(row))
        except ValidationError as e:
            print(f"[{tag}] invalid row ignored: {e}")
    return out


def _action_key(a: LightActionEvent) -> Tuple:
    if a.id:
        return ("id", a.id)
    return ("row", a.light_id, a.action.value, a.ts, a.actor_user_id, a.actor_email, a.actor_phone)


class EngineState:
    """
    In-memory reports / official lights / actions / fixed cache.

    Every mutation is idempotent under replay: a realtime insert of a row we
    already hold, or a delete of a row we never had, changes nothing.
    """

    def __init__(self) -> None:
        self.reports: Dict[str, Report] = {}
        self.officials: Dict[str, OfficialLight] = {}
        self.actions: Dict[Tuple, LightActionEvent] = {}
        self.fixed: Dict[str, int] = {}
        self.loaded_at: Optional[float] = None
        # local_* reports waiting for the feed to deliver the stored row
        self.pending_reports: Dict[str, PendingWrite] = {}

    # ---- bulk load ----
    def load_snapshot(
        self,
        report_rows: Iterable[Dict[str, Any]] = (),
        official_rows: Iterable[Dict[str, Any]] = (),
        action_rows: Iterable[Dict[str, Any]] = (),
        fixed_rows: Iterable[Dict[str, Any]] = (),
    ) -> None:
        reports: Dict[str, Report] = {}
        for r in _parse(Report.from_row, report_rows, "reports"):
            reports[r.id] = r
        officials = {ol.id: ol for ol in _parse(OfficialLight.from_row, official_rows, "official_lights")}
        actions = {_action_key(a): a for a in _parse(LightActionEvent.from_row, action_rows, "light_actions")}
        fixed: Dict[str, int] = {}
        for row in fixed_rows or []:
            lid, ts = self._fixed_row(row)
            if lid:
                fixed[lid] = ts

        self.reports, self.officials, self.actions, self.fixed = reports, officials, actions, fixed
        self.pending_reports = {}
        self.loaded_at = time.time()
        if LOG_ENGINE:
            print(f"[state] loaded reports={len(reports)} officials={len(officials)} "
                  f"actions={len(actions)} fixed={len(fixed)}")

    @staticmethod
    def _fixed_row(row: Dict[str, Any]) -> Tuple[Optional[str], int]:
        lid = str((row or {}).get("light_id") or "").strip()
        if not lid:
            return None, 0
        try:
            return lid, to_ms(row.get("fixed_at"))
        except ValidationError as e:
            print(f"[fixed_lights] invalid row ignored: {e}")
            return None, 0

    # ---- single mutations ----
    def add_report(self, report: Report) -> bool:
        if report.id in self.reports:
            return False
        self.reports[report.id] = report
        return True

    def remove_report(self, report_id: str) -> bool:
        return self.reports.pop(report_id, None) is not None

    def add_action(self, action: LightActionEvent) -> bool:
        key = _action_key(action)
        if key in self.actions:
            return False
        self.actions[key] = action
        return True

    def upsert_official(self, light: OfficialLight) -> None:
        self.officials[light.id] = light

    def remove_official(self, light_id: str) -> bool:
        return self.officials.pop(light_id, None) is not None

    def set_fixed(self, light_id: str, ts: int) -> None:
        self.fixed[light_id] = ts

    def clear_fixed(self, light_id: str) -> bool:
        return self.fixed.pop(light_id, None) is not None

    # ---- push feed ----
    def apply_event(self, ev: FeedEvent) -> bool:
        """Apply one realtime notification. Returns True when the state changed."""
        new, old = ev.new or {}, ev.old or {}
        try:
            if ev.table == "reports":
                if ev.event == "delete":
                    return self.remove_report(str(old.get("id") or ""))
                report = Report.from_row(new)
                if report.id in self.reports:
                    if ev.event != "update":
                        return False
                    changed = self.reports[report.id] != report
                    self.reports[report.id] = report
                    return changed
                pw = self.match_local_report(report)
                if pw is not None:
                    self.confirm_report(pw, report)
                    return True
                return self.add_report(report)

            if ev.table == "official_lights":
                if ev.event == "delete":
                    return self.remove_official(str(old.get("id") or ""))
                light = OfficialLight.from_row(new)
                changed = self.officials.get(light.id) != light
                self.upsert_official(light)
                return changed

            if ev.table == "fixed_lights":
                if ev.event == "delete":
                    lid = str(old.get("light_id") or "").strip()
                    if not lid:
                        print("[feed] fixed_lights delete without light_id, ignored")
                        return False
                    return self.clear_fixed(lid)
                lid, ts = self._fixed_row(new)
                if not lid or self.fixed.get(lid) == ts:
                    return False
                self.set_fixed(lid, ts)
                return True

            if ev.table == "light_actions":
                if ev.event == "delete":
                    aid = str(old.get("id") or "")
                    return self.actions.pop(("id", aid), None) is not None
                return self.add_action(LightActionEvent.from_row(new))
        except ValidationError as e:
            print(f"[feed] {ev.table}/{ev.event} ignored: {e}")
            return False
        return False

    # ---- local reports (store could not echo the row) ----
    def stage_report(self, local: Report) -> PendingWrite:
        self.add_report(local)
        pw = PendingWrite(local.id, local, kind="report")
        self.pending_reports[local.id] = pw
        return pw

    def match_local_report(self, report: Report) -> Optional[PendingWrite]:
        """The pending local row this stored row stands for, if any."""
        who = extract_row_identity(report)
        for pw in self.pending_reports.values():
            local = pw.record
            if (
                local.light_id == report.light_id
                and local.type == report.type
                and extract_row_identity(local) == who
                and abs(local.ts - report.ts) <= LOCAL_MATCH_WINDOW_MS
            ):
                return pw
        return None

    def confirm_report(self, pw: PendingWrite, real: Report) -> None:
        pw.confirm(real.id)
        self.pending_reports.pop(pw.temp_id, None)
        self.reports.pop(pw.temp_id, None)
        self.reports[real.id] = real
        if LOG_ENGINE:
            print(f"[feed] local report {pw.temp_id} -> {real.id}")

    # ---- optimistic official lights ----
    def stage_official(self, temp: OfficialLight) -> PendingWrite:
        self.officials[temp.id] = temp
        return PendingWrite(temp.id, temp, kind="insert")

    def confirm_official(self, pw: PendingWrite, real: OfficialLight) -> None:
        pw.confirm(real.id)
        self.officials.pop(pw.temp_id, None)
        self.officials[real.id] = real

    def stage_official_delete(self, light_id: str) -> Optional[PendingWrite]:
        light = self.officials.pop(light_id, None)
        if light is None:
            return None
        return PendingWrite(light_id, light, kind="delete")

    def roll_back(self, pw: PendingWrite) -> None:
        pw.roll_back()
        if pw.kind == "report":
            self.pending_reports.pop(pw.temp_id, None)
            self.reports.pop(pw.temp_id, None)
        elif pw.kind == "insert":
            self.officials.pop(pw.temp_id, None)
        elif pw.record is not None:
            self.officials[pw.temp_id] = pw.record

    # ---- views ----
    def report_list(self) -> List[Report]:
        # stable on ts: same input rows -> same order, whatever the feed order
        return sorted(self.reports.values(), key=lambda r: (r.ts, r.id))

    def snapshot(self) -> Snapshot:
        return Snapshot(
            officials=sorted(self.officials.values(), key=lambda ol: ol.id),
            reports=self.report_list(),
            actions=sorted(self.actions.values(), key=lambda a: a.ts),
            fixed=dict(self.fixed),
        )

    def official_ids(self) -> set:
        return set(self.officials)

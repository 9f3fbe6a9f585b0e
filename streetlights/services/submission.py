# streetlights/services/submission.py
from __future__ import annotations

import inspect
import math
import secrets
import time
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Protocol, Tuple, Union

from streetlights.config import LOG_ENGINE
from streetlights.errors import (
    CooldownDenied,
    IdentityMissingError,
    MissingColumnError,
    StoreConstraintError,
    StoreError,
    StoreReadDenied,
    StoreUnavailableError,
    ValidationError,
)
from streetlights.schemas import (
    BulkResult,
    GuestInfo,
    LightActionEvent,
    OfficialLight,
    OutageType,
    Report,
    ReportDraft,
    Session,
    quality_for,
)
from streetlights.services import identity
from streetlights.services.cooldown import AnonymousCooldowns, can_report
from streetlights.services.lifecycle import cycle_boundaries, cycle_boundary
from streetlights.services.lights import (
    community_reports,
    find_nearest_light_within_radius,
    find_nearest_official_within_radius,
    group_into_lights,
    light_id_for,
    make_light_id,
    unique_light_ids_for_cluster,
)
from streetlights.services.state import EngineState

# Spellings the store accepted over time, tried in order
REPORT_TYPE_FALLBACKS = {
    "downed_pole": ["downed_pole", "pole_down", "downed-pole"],
    "working": ["working", "is_working", "reported_working"],
}

ContactCallback = Callable[[], Union[Optional[GuestInfo], Awaitable[Optional[GuestInfo]]]]


class ReportStore(Protocol):
    """What the pipeline needs from the backend. Raises StoreError subclasses only."""

    async def insert_report(self, payload: Dict[str, Any], returning: bool = True) -> Optional[Dict[str, Any]]: ...

    async def insert_actions(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]: ...

    async def upsert_fixed(self, light_ids: List[str], fixed_at_ms: int) -> None: ...

    async def delete_fixed(self, light_ids: List[str]) -> None: ...

    async def insert_official_lights(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]: ...

    async def delete_official_light(self, light_id: str) -> None: ...


class Submitted(NamedTuple):
    report: Report
    report_type: str        # literal the store finally accepted


def _now_ms() -> int:
    return int(time.time() * 1000)


def guest_contact_ok(guest: Optional[GuestInfo], strict: bool = False) -> bool:
    """Reports: name + (phone or email). Working acknowledgments (strict): all three."""
    if guest is None or not (guest.name or "").strip():
        return False
    email = identity.normalize_email(guest.email)
    phone = identity.normalize_phone(guest.phone)
    if strict:
        return bool(email and phone)
    return bool(email or phone)


class SubmissionPipeline:
    def __init__(
        self,
        state: EngineState,
        store: ReportStore,
        request_contact: Optional[ContactCallback] = None,
        cooldowns: Optional[AnonymousCooldowns] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.state = state
        self.store = store
        self.request_contact = request_contact
        self.cooldowns = cooldowns if cooldowns is not None else AnonymousCooldowns(path=None, clock=clock)
        self.clock = clock

    # =========================
    #  Helpers
    # =========================

    @staticmethod
    def validate(draft: ReportDraft) -> str:
        """Checks the draft; returns the light id it names, or "" when it names none."""
        for name in ("lat", "lng"):
            v = getattr(draft, name)
            if v is None or not math.isfinite(v):
                raise ValidationError(f"invalid {name}")
        if not -90 <= draft.lat <= 90 or not -180 <= draft.lng <= 180:
            raise ValidationError("coordinates out of range")
        if draft.type == OutageType.other and not (draft.note or "").strip():
            raise ValidationError("note required for 'other'")
        return (draft.light_id or "").strip()

    def locate(self, lat: float, lng: float) -> str:
        """
        Light a bare coordinate belongs to: nearest official light within the
        group radius, else the nearest community cluster, else a fresh id.
        """
        official = find_nearest_official_within_radius(self.state.officials.values(), lat, lng)
        if official is not None:
            return official.id
        clusters = group_into_lights(community_reports(self.state.report_list(), self.state.official_ids()))
        light = find_nearest_light_within_radius(clusters, lat, lng)
        if light is not None and light.light_id:
            return light.light_id
        return light_id_for(lat, lng)

    async def _contact(
        self, session: Optional[Session], guest: Optional[GuestInfo], strict: bool = False
    ) -> Tuple[str, Optional[GuestInfo]]:
        """Identity key of the submitter; asks the contact collaborator when a guest has none."""
        if session is not None and session.user_id:
            return identity.resolve(session, None), None
        if not guest_contact_ok(guest, strict) and self.request_contact is not None:
            captured = self.request_contact()
            if inspect.isawaitable(captured):
                captured = await captured
            guest = captured
        if not guest_contact_ok(guest, strict):
            raise IdentityMissingError("contact required")
        key = identity.resolve(None, guest)
        if not key:
            raise IdentityMissingError("contact required")
        return key, guest

    def _boundary(self, light_id: str) -> int:
        snap = self.state.snapshot()
        return cycle_boundary(light_id, cycle_boundaries(snap.actions, snap.fixed))

    def _payload(
        self, lat: float, lng: float, light_id: str, rtype: OutageType, note: Optional[str],
        session: Optional[Session], guest: Optional[GuestInfo],
    ) -> Dict[str, Any]:
        authed = session is not None and bool(session.user_id)
        if authed:
            name, phone, email = identity.display_name(session, None), session.phone, session.email
        else:
            name, phone, email = guest.name, guest.phone, guest.email
        return {
            "lat": lat,
            "lng": lng,
            "report_type": rtype.value,
            "report_quality": quality_for(rtype).value,
            "note": (note or "").strip() or None,
            "light_id": light_id,
            "reporter_user_id": session.user_id if authed else None,
            "reporter_name": (name or "").strip() or None,
            "reporter_phone": (phone or "").strip() or None,
            "reporter_email": (email or "").strip() or None,
        }

    def _local_row(self, attempt: Dict[str, Any]) -> Dict[str, Any]:
        now = self.clock()
        return {**attempt, "id": f"local_{now}_{secrets.token_hex(6)}", "created_at": now}

    async def _insert_tolerant(self, attempt: Dict[str, Any], returning: bool) -> Optional[Dict[str, Any]]:
        try:
            return await self.store.insert_report(attempt, returning=returning)
        except MissingColumnError as e:
            if e.column != "report_quality":
                raise
            # older schema without report_quality
            stripped = {k: v for k, v in attempt.items() if k != "report_quality"}
            return await self.store.insert_report(stripped, returning=returning)

    async def _insert_once(self, attempt: Dict[str, Any]) -> Dict[str, Any]:
        # anonymous rows are not readable back under row-level security
        returning = bool(attempt.get("reporter_user_id"))
        row = None
        try:
            row = await self._insert_tolerant(attempt, returning)
        except StoreReadDenied:
            if LOG_ENGINE:
                print("[submit] RETURNING denied, retrying plain insert")
            returning = False
            row = await self._insert_tolerant(attempt, returning)
        if row is None:
            row = self._local_row(attempt)
        return row

    async def insert_with_fallback(self, payload: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
        """Insert, retrying known historical enum spellings when the store rejects one."""
        candidates = REPORT_TYPE_FALLBACKS.get(payload["report_type"], [payload["report_type"]])
        last_err: Optional[StoreError] = None
        for rt in candidates:
            attempt = {**payload, "report_type": rt}
            try:
                row = await self._insert_once(attempt)
            except StoreConstraintError as e:
                if LOG_ENGINE:
                    print(f"[submit] report_type={rt} rejected: {e}")
                last_err = e
                continue
            except MissingColumnError as e:
                raise StoreUnavailableError(str(e)) from e
            return row, rt
        raise last_err or StoreConstraintError("no accepted report_type")

    def _accept(self, row: Dict[str, Any], light_id: str, anonymous: bool) -> Report:
        if not row.get("light_id"):
            row = {**row, "light_id": light_id}
        report = Report.from_row(row)
        if report.id.startswith("local_"):
            self.state.stage_report(report)
        else:
            self.state.add_report(report)
        if anonymous:
            self.cooldowns.record(light_id)
        return report

    # =========================
    #  Single report
    # =========================

    async def submit_report(
        self, draft: ReportDraft, session: Optional[Session] = None, guest: Optional[GuestInfo] = None
    ) -> Submitted:
        light_id = self.validate(draft) or self.locate(draft.lat, draft.lng)
        if not light_id:
            raise ValidationError("missing light id")
        key, guest = await self._contact(session, guest)

        if not can_report(light_id, key, self.state.report_list(), self._boundary(light_id)):
            raise CooldownDenied(light_id)

        payload = self._payload(draft.lat, draft.lng, light_id, draft.type, draft.note, session, guest)
        row, used = await self.insert_with_fallback(payload)
        report = self._accept(row, light_id, anonymous=not (session and session.user_id))
        if LOG_ENGINE:
            print(f"[submit] {report.id} light={light_id} type={used}")
        return Submitted(report, used)

    # =========================
    #  Bulk (best-effort, per light)
    # =========================

    async def submit_bulk(
        self,
        light_ids: List[str],
        rtype: OutageType = OutageType.out,
        note: Optional[str] = None,
        session: Optional[Session] = None,
        guest: Optional[GuestInfo] = None,
    ) -> BulkResult:
        result = BulkResult()
        if not light_ids:
            return result
        if rtype == OutageType.other and not (note or "").strip():
            raise ValidationError("note required for 'other'")

        key, guest = await self._contact(session, guest)

        for lid in light_ids:
            lid = (lid or "").strip()
            light = self.state.officials.get(lid)
            if light is None:
                print(f"[bulk] unknown light {lid!r}, skipped")
                result.failed += 1
                continue
            if not can_report(lid, key, self.state.report_list(), self._boundary(lid)):
                result.skipped += 1
                continue

            payload = self._payload(light.lat, light.lng, lid, rtype, note, session, guest)
            try:
                row, _ = await self.insert_with_fallback(payload)
            except StoreError as e:
                # one light failing never fails the batch
                print(f"[bulk] {lid} failed: {e}")
                result.failed += 1
                continue

            report = self._accept(row, lid, anonymous=not (session and session.user_id))
            result.ok += 1
            result.report_ids.append(report.id)

        if LOG_ENGINE:
            print(f"[bulk] ok={result.ok} skipped={result.skipped} failed={result.failed}")
        return result

    # =========================
    #  Working acknowledgment
    # =========================

    async def submit_working(
        self, light_id: str, session: Optional[Session] = None, guest: Optional[GuestInfo] = None
    ) -> Submitted:
        lid = (light_id or "").strip()
        light = self.state.officials.get(lid)
        if light is None:
            raise ValidationError("could not locate this light")
        _, guest = await self._contact(session, guest, strict=True)

        payload = self._payload(light.lat, light.lng, lid, OutageType.working, None, session, guest)
        if guest is not None:
            payload["reporter_email"] = identity.normalize_email(guest.email) or None
            payload["reporter_phone"] = identity.normalize_phone(guest.phone) or None
        row, used = await self.insert_with_fallback(payload)
        report = self._accept(row, lid, anonymous=False)
        return Submitted(report, used)

    # =========================
    #  Fix / reopen (admin)
    # =========================

    def ids_for_light(self, light_id: str) -> List[str]:
        """An official light is one id; a community light is every id of its cluster."""
        if light_id in self.state.officials:
            return [light_id]
        reports = community_reports(self.state.report_list(), self.state.official_ids())
        for light in group_into_lights(reports):
            if light.light_id == light_id:
                return unique_light_ids_for_cluster(light)
        return [light_id]

    async def _record_actions(self, ids: List[str], action: str, actor: Optional[Session]) -> List[LightActionEvent]:
        rows = await self.store.insert_actions([
            {"light_id": lid, "action": action, "actor_user_id": actor.user_id if actor else None}
            for lid in ids
        ])
        now = self.clock()
        events = []
        for i, lid in enumerate(ids):
            row = rows[i] if i < len(rows or []) else {}
            merged = {"light_id": lid, "action": action,
                      "actor_user_id": actor.user_id if actor else None, **(row or {})}
            if merged.get("created_at") is None:
                merged["created_at"] = now
            ev = LightActionEvent.from_row(merged)
            self.state.add_action(ev)
            events.append(ev)
        return events

    async def mark_fixed(self, light_id: str, actor: Optional[Session] = None) -> int:
        ids = self.ids_for_light(light_id)
        events = await self._record_actions(ids, "fix", actor)
        # one server time for every id of the batch: the newest insert
        fixed_ms = max((ev.ts for ev in events), default=self.clock())
        await self.store.upsert_fixed(ids, fixed_ms)
        for lid in ids:
            self.state.set_fixed(lid, fixed_ms)
        if LOG_ENGINE:
            print(f"[fix] {light_id} ids={ids} at={fixed_ms}")
        return fixed_ms

    async def reopen_light(self, light_id: str, actor: Optional[Session] = None) -> List[str]:
        ids = self.ids_for_light(light_id)
        try:
            await self._record_actions(ids, "reopen", actor)
        except StoreError as e:
            # history is best-effort here, clearing the cache is what reopens
            print(f"[reopen] history not recorded for {ids}: {e}")
        await self.store.delete_fixed(ids)
        for lid in ids:
            self.state.clear_fixed(lid)
        return ids

    # =========================
    #  Official light mapping (admin, optimistic)
    # =========================

    async def add_official_lights(self, points: List[Tuple[float, float]], actor: Optional[Session] = None) -> List[OfficialLight]:
        known = {ol.sl_id for ol in self.state.officials.values()}
        rows: List[Dict[str, Any]] = []
        for lat, lng in points:
            sl_id = make_light_id(lat, lng)
            if sl_id in known:
                continue
            known.add(sl_id)
            rows.append({"sl_id": sl_id, "lat": float(lat), "lng": float(lng),
                         "created_by": actor.user_id if actor else None})
        if not rows:
            return []

        pending = {
            row["sl_id"]: self.state.stage_official(
                OfficialLight(id=f"tmp_{secrets.token_hex(6)}", sl_id=row["sl_id"], lat=row["lat"], lng=row["lng"])
            )
            for row in rows
        }
        try:
            saved = await self.store.insert_official_lights(rows)
        except StoreError:
            for pw in pending.values():
                self.state.roll_back(pw)
            raise

        out = []
        for row in saved or []:
            light = OfficialLight.from_row(row)
            pw = pending.pop(light.sl_id, None)
            if pw is not None:
                self.state.confirm_official(pw, light)
            else:
                self.state.upsert_official(light)
            out.append(light)
        # rows the store did not echo back are not on the map
        for pw in pending.values():
            self.state.roll_back(pw)
        return out

    async def delete_official_light(self, light_id: str) -> bool:
        pw = self.state.stage_official_delete(light_id)
        if pw is None:
            return False
        try:
            await self.store.delete_official_light(light_id)
        except StoreError:
            self.state.roll_back(pw)
            raise
        pw.confirm(light_id)
        return True
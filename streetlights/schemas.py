# streetlights/schemas.py
from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from streetlights.errors import ValidationError
from streetlights.services.identity import normalize_email, normalize_phone
from streetlights.services.lights import light_id_for, make_light_id


class OutageType(str, Enum):
    out = "out"
    flickering = "flickering"
    dayburner = "dayburner"
    downed_pole = "downed_pole"
    working = "working"
    other = "other"


class ReportQuality(str, Enum):
    good = "good"
    bad = "bad"


class LightAction(str, Enum):
    fix = "fix"
    reopen = "reopen"
    working = "working"


# Historical spellings still present in the store
TYPE_SYNONYMS = {
    "pole_down": OutageType.downed_pole,
    "downed-pole": OutageType.downed_pole,
    "is_working": OutageType.working,
    "reported_working": OutageType.working,
}


def normalize_report_type(value: Any) -> OutageType:
    t = str(getattr(value, "value", value) or "").strip().lower()
    if t in TYPE_SYNONYMS:
        return TYPE_SYNONYMS[t]
    try:
        return OutageType(t)
    except ValueError:
        return OutageType.other


def normalize_quality(value: Any) -> Optional[ReportQuality]:
    q = str(getattr(value, "value", value) or "").strip().lower()
    if q in ("good", "bad"):
        return ReportQuality(q)
    return None


def quality_for(rtype: OutageType) -> ReportQuality:
    return ReportQuality.good if rtype == OutageType.working else ReportQuality.bad


def to_ms(value: Any) -> int:
    """created_at (ISO string, datetime or epoch ms) -> epoch milliseconds, UTC."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValidationError(f"invalid timestamp: {value!r}")
        return int(value)
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"invalid timestamp: {value!r}") from e
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    raise ValidationError(f"invalid timestamp: {value!r}")


def _coord(row: Dict[str, Any], key: str) -> float:
    try:
        v = float(row.get(key))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"invalid {key}: {row.get(key)!r}") from e
    if not math.isfinite(v):
        raise ValidationError(f"invalid {key}: {v!r}")
    return v


def _clean(v: Any) -> Optional[str]:
    s = str(v or "").strip()
    return s or None


def contact_from_note(note: Any) -> Dict[str, Optional[str]]:
    """Working acknowledgments stored the actor contact as a JSON blob in `note`."""
    empty = {"name": None, "email": None, "phone": None}
    raw = str(note or "").strip()
    if not raw:
        return empty
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return empty
    if not isinstance(parsed, dict):
        return empty
    return {
        "name": _clean(parsed.get("reporter_name") or parsed.get("actor_name")),
        "email": normalize_email(parsed.get("reporter_email") or parsed.get("actor_email")) or None,
        "phone": normalize_phone(parsed.get("reporter_phone") or parsed.get("actor_phone")) or None,
    }


# =========================
#  Domain records
# =========================

class Report(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    lat: float
    lng: float
    type: OutageType
    quality: ReportQuality
    note: str = ""
    ts: int
    light_id: str
    reporter_user_id: Optional[str] = None
    reporter_name: Optional[str] = None
    reporter_phone: Optional[str] = None
    reporter_email: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _derive_quality(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("quality") and data.get("type"):
            data = dict(data)
            data["quality"] = quality_for(normalize_report_type(data["type"]))
        return data

    @property
    def is_working(self) -> bool:
        return self.quality == ReportQuality.good

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Report":
        """Store row (`reports` table / realtime payload) -> Report."""
        lat = _coord(row, "lat")
        lng = _coord(row, "lng")
        rtype = normalize_report_type(row.get("report_type") or row.get("type"))
        quality = normalize_quality(row.get("report_quality") or row.get("quality")) or quality_for(rtype)
        ts = row.get("ts") if row.get("created_at") is None else row.get("created_at")
        try:
            return cls(
                id=str(row.get("id") or ""),
                lat=lat,
                lng=lng,
                type=rtype,
                quality=quality,
                note=str(row.get("note") or ""),
                ts=to_ms(ts),
                light_id=_clean(row.get("light_id")) or light_id_for(lat, lng),
                reporter_user_id=_clean(row.get("reporter_user_id")),
                reporter_name=_clean(row.get("reporter_name")),
                reporter_phone=_clean(row.get("reporter_phone")),
                reporter_email=_clean(row.get("reporter_email")),
            )
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e


class OfficialLight(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sl_id: str
    lat: float
    lng: float

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OfficialLight":
        lid = _clean(row.get("id"))
        if not lid:
            raise ValidationError("official light without id")
        lat = _coord(row, "lat")
        lng = _coord(row, "lng")
        return cls(id=lid, sl_id=_clean(row.get("sl_id")) or make_light_id(lat, lng), lat=lat, lng=lng)


class LightActionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    light_id: str
    action: LightAction
    ts: int
    actor_user_id: Optional[str] = None
    actor_name: Optional[str] = None
    actor_email: Optional[str] = None
    actor_phone: Optional[str] = None
    note: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LightActionEvent":
        lid = _clean(row.get("light_id"))
        if not lid:
            raise ValidationError("action without light_id")
        action = str(row.get("action") or "").strip().lower()
        if action not in LightAction.__members__:
            raise ValidationError(f"unknown action: {action!r}")

        # actor_* > reporter_* > contact JSON in note
        from_note = contact_from_note(row.get("note"))
        email = _clean(row.get("actor_email") or row.get("reporter_email")) or from_note["email"]
        phone = _clean(row.get("actor_phone") or row.get("reporter_phone")) or from_note["phone"]
        name = _clean(row.get("actor_name") or row.get("reporter_name")) or from_note["name"]
        if not name and email:
            name = email.split("@")[0]

        ts = row.get("ts") if row.get("created_at") is None else row.get("created_at")
        return cls(
            id=_clean(row.get("id")),
            light_id=lid,
            action=LightAction(action),
            ts=to_ms(ts),
            actor_user_id=_clean(row.get("actor_user_id") or row.get("reporter_user_id")),
            actor_name=name,
            actor_email=email,
            actor_phone=phone,
            note=_clean(row.get("note")),
        )


class FeedEvent(BaseModel):
    """One push-feed notification (realtime insert/update/delete)."""
    table: Literal["reports", "official_lights", "fixed_lights", "light_actions"]
    event: Literal["insert", "update", "delete"]
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None


# =========================
#  Identity inputs
# =========================

class Session(BaseModel):
    """
    Signed-in user as the client describes it. Nothing here is verified:
    see dependencies.check_session for the forwarded x-user-id check.
    """
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


class GuestInfo(BaseModel):
    name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None


# =========================
#  API in/out
# =========================

class ReportDraft(BaseModel):
    lat: float
    lng: float
    light_id: Optional[str] = None
    type: OutageType = OutageType.out
    note: Optional[str] = None


class ReportIn(ReportDraft):
    session: Optional[Session] = None
    guest: Optional[GuestInfo] = None


class BulkReportIn(BaseModel):
    light_ids: List[str] = Field(default_factory=list)
    type: OutageType = OutageType.out
    note: Optional[str] = None
    session: Optional[Session] = None
    guest: Optional[GuestInfo] = None


class WorkingIn(BaseModel):
    session: Optional[Session] = None
    guest: Optional[GuestInfo] = None


class OfficialLightIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class LightStatus(BaseModel):
    light_id: str
    is_official: bool
    lat: float
    lng: float
    label: str
    color: str
    state: str
    since_fix_count: int = 0
    majority_key: Optional[str] = None
    majority_label: str = "Operational"
    is_fixed: bool = True
    resolved_by_consensus: bool = False
    mine_only: bool = False
    cycle_start: int = 0
    report_ids: List[str] = Field(default_factory=list)


class BulkResult(BaseModel):
    ok: int = 0
    skipped: int = 0
    failed: int = 0
    report_ids: List[str] = Field(default_factory=list)

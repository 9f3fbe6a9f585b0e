"""
Shared fixtures: an in-memory store standing in for Postgres, and small
record builders.
"""

import pytest

from streetlights.errors import (
    MissingColumnError,
    StoreConstraintError,
    StoreReadDenied,
    StoreUnavailableError,
)
from streetlights.schemas import LightAction, LightActionEvent, OfficialLight, OutageType, Report
from streetlights.services.lights import light_id_for, make_light_id
from streetlights.services.state import EngineState


class FakeStore:
    """Store contract over plain lists. Every write gets a strictly increasing created_at."""

    def __init__(self, reject_types=(), deny_returning=False, missing_quality=False,
                 fail_lights=(), fail_actions=False, fail_officials=False):
        self.reject_types = set(reject_types)
        self.deny_returning = deny_returning
        self.missing_quality = missing_quality
        self.fail_lights = set(fail_lights)
        self.fail_actions = fail_actions
        self.fail_officials = fail_officials

        self.calls = []           # (report_type, returning) per insert attempt
        self.reports = []
        self.actions = []
        self.fixed = {}
        self.officials = []
        self.deleted_officials = []
        self._t = 1_000_000
        self._n = 0

    def _tick(self):
        self._t += 1
        self._n += 1
        return self._t

    async def insert_report(self, payload, returning=True):
        self.calls.append((payload["report_type"], returning))
        if payload["report_type"] in self.reject_types:
            raise StoreConstraintError(f'invalid input value for enum report_type: "{payload["report_type"]}"')
        if self.missing_quality and "report_quality" in payload:
            raise MissingColumnError("report_quality")
        if payload.get("light_id") in self.fail_lights:
            raise StoreUnavailableError("connection reset")
        if returning and self.deny_returning:
            raise StoreReadDenied("new row violates row-level security policy")
        t = self._tick()
        row = {**payload, "id": f"r{self._n}", "created_at": t}
        self.reports.append(row)
        return row if returning else None

    async def insert_actions(self, rows):
        if self.fail_actions:
            raise StoreUnavailableError("light_actions unavailable")
        out = []
        for row in rows:
            t = self._tick()
            saved = {**row, "id": f"a{self._n}", "created_at": t}
            self.actions.append(saved)
            out.append(saved)
        return out

    async def upsert_fixed(self, light_ids, fixed_at_ms):
        for lid in light_ids:
            self.fixed[lid] = fixed_at_ms

    async def delete_fixed(self, light_ids):
        for lid in light_ids:
            self.fixed.pop(lid, None)

    async def insert_official_lights(self, rows):
        if self.fail_officials:
            raise StoreUnavailableError("official_lights unavailable")
        out = []
        for row in rows:
            self._tick()
            saved = {"id": f"db-{self._n}", "sl_id": row["sl_id"], "lat": row["lat"], "lng": row["lng"]}
            self.officials.append(saved)
            out.append(saved)
        return out

    async def delete_official_light(self, light_id):
        if self.fail_officials:
            raise StoreUnavailableError("official_lights unavailable")
        self.deleted_officials.append(light_id)


def make_report(rid, lat=41.8651, lng=-80.7898, rtype="out", ts=1000, light_id=None, **reporter):
    return Report(
        id=rid,
        lat=lat,
        lng=lng,
        type=OutageType(rtype),
        ts=ts,
        light_id=light_id or light_id_for(lat, lng),
        **reporter,
    )


def make_action(light_id, action, ts, **actor):
    return LightActionEvent(light_id=light_id, action=LightAction(action), ts=ts, **actor)


def make_official(oid, lat=41.8651, lng=-80.7898):
    return OfficialLight(id=oid, sl_id=make_light_id(lat, lng), lat=lat, lng=lng)


@pytest.fixture
def state():
    return EngineState()

# streetlights/crud.py
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from streetlights.config import MAX_REPORTS
from streetlights.errors import (
    MissingColumnError,
    StoreConstraintError,
    StoreError,
    StoreReadDenied,
    StoreUnavailableError,
)

# =========================
#  Introspection helpers
# =========================

async def get_column_typename(db: AsyncSession, table: str, column: str) -> Optional[str]:
    q = text("""
        SELECT t.typname
        FROM pg_attribute a
        JOIN pg_class c ON a.attrelid = c.oid
        JOIN pg_type  t ON a.atttypid = t.oid
        JOIN pg_namespace n ON c.relnamespace = n.oid
        WHERE n.nspname = 'public' AND c.relname = :table AND a.attname = :col
    """)
    r = await db.execute(q, {"table": table, "col": column})
    return r.scalar_one_or_none()


async def is_enum_typename(db: AsyncSession, typname: str) -> bool:
    q = text("""
        SELECT EXISTS (
          SELECT 1
          FROM pg_type t
          JOIN pg_enum e ON e.enumtypid = t.oid
          WHERE t.typname = :t
        )
    """)
    r = await db.execute(q, {"t": typname})
    return bool(r.scalar_one())


# =========================
#  Store errors -> engine errors
# =========================

_MISSING_COLUMN = re.compile(r'column "?(?:\w+\.)?(\w+)"? (?:of relation "?\w+"? )?does not exist')


def to_store_error(e: Exception) -> StoreError:
    msg = str(getattr(e, "orig", None) or e).lower()
    m = _MISSING_COLUMN.search(msg)
    if m:
        return MissingColumnError(m.group(1), msg)
    if "invalid input value for enum" in msg or "violates check constraint" in msg:
        return StoreConstraintError(msg)
    if "row-level security" in msg or "permission denied" in msg:
        return StoreReadDenied(msg)
    return StoreUnavailableError(msg)


def _utc(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


REPORT_COLUMNS = (
    "lat", "lng", "report_type", "report_quality", "note", "light_id",
    "reporter_user_id", "reporter_name", "reporter_phone", "reporter_email",
)


class SqlStore:
    """Report store / official light directory / action log / fixed cache over Postgres."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._type_cast: Optional[str] = None

    async def _report_type_cast(self) -> str:
        if self._type_cast is None:
            try:
                typ = await get_column_typename(self.db, "reports", "report_type")
                is_enum = bool(typ) and await is_enum_typename(self.db, typ)
            except SQLAlchemyError as e:
                raise to_store_error(e) from e
            self._type_cast = typ if is_enum else "text"
        return self._type_cast

    async def _run(self, q, params: Any = None):
        try:
            res = await self.db.execute(q, params or {})
            await self.db.commit()
            return res
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise to_store_error(e) from e
        except OSError as e:
            raise StoreUnavailableError(str(e)) from e

    # ---- reads (bulk load) ----
    async def _fetch(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        res = await self._run(text(sql), params)
        return [dict(r._mapping) for r in res.fetchall()]

    async def fetch_reports(self, limit: int = MAX_REPORTS) -> List[Dict[str, Any]]:
        return await self._fetch(
            "SELECT * FROM reports ORDER BY created_at DESC LIMIT :limit", {"limit": int(limit)}
        )

    async def fetch_official_lights(self) -> List[Dict[str, Any]]:
        return await self._fetch("SELECT id::text AS id, sl_id, lat, lng FROM official_lights")

    async def fetch_actions(self) -> List[Dict[str, Any]]:
        return await self._fetch("SELECT * FROM light_actions ORDER BY created_at DESC")

    async def fetch_fixed(self) -> List[Dict[str, Any]]:
        return await self._fetch("SELECT light_id, fixed_at FROM fixed_lights")

    # ---- reports ----
    async def insert_report(self, payload: Dict[str, Any], returning: bool = True) -> Optional[Dict[str, Any]]:
        """
        Insert one report. report_type is cast to the column's enum when it is
        one (older databases still use text).
        """
        cols = [c for c in REPORT_COLUMNS if c in payload]
        cast = await self._report_type_cast()
        values = [f"CAST(:{c} AS {cast})" if c == "report_type" else f":{c}" for c in cols]
        sql = f"INSERT INTO reports ({', '.join(cols)}) VALUES ({', '.join(values)})"
        if returning:
            sql += " RETURNING *"
        res = await self._run(text(sql), {c: payload[c] for c in cols})
        if not returning:
            return None
        row = res.first()
        return dict(row._mapping) if row else None

    # ---- action log / fixed cache ----
    async def insert_actions(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        out = []
        q = text("""
            INSERT INTO light_actions (light_id, action, actor_user_id)
            VALUES (:light_id, :action, :actor_user_id)
            RETURNING id::text AS id, light_id, action, actor_user_id, created_at
        """)
        try:
            for row in rows:
                res = await self.db.execute(q, {
                    "light_id": row["light_id"],
                    "action": row["action"],
                    "actor_user_id": row.get("actor_user_id"),
                })
                out.append(dict(res.first()._mapping))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise to_store_error(e) from e
        return out

    async def upsert_fixed(self, light_ids: List[str], fixed_at_ms: int) -> None:
        q = text("""
            INSERT INTO fixed_lights (light_id, fixed_at)
            SELECT lid, :fixed_at FROM unnest(CAST(:ids AS text[])) AS lid
            ON CONFLICT (light_id) DO UPDATE SET fixed_at = EXCLUDED.fixed_at
        """)
        await self._run(q, {"ids": list(light_ids), "fixed_at": _utc(fixed_at_ms)})

    async def delete_fixed(self, light_ids: List[str]) -> None:
        q = text("DELETE FROM fixed_lights WHERE light_id IN :ids").bindparams(bindparam("ids", expanding=True))
        await self._run(q, {"ids": list(light_ids)})

    # ---- official lights ----
    async def insert_official_lights(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        out = []
        q = text("""
            INSERT INTO official_lights (sl_id, lat, lng, created_by)
            VALUES (:sl_id, :lat, :lng, :created_by)
            RETURNING id::text AS id, sl_id, lat, lng
        """)
        try:
            for row in rows:
                res = await self.db.execute(q, row)
                out.append(dict(res.first()._mapping))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise to_store_error(e) from e
        return out

    async def delete_official_light(self, light_id: str) -> None:
        await self._run(text("DELETE FROM official_lights WHERE id::text = :id"), {"id": light_id})


async def load_state(db: AsyncSession, state) -> None:
    """Periodic bulk load: replace the engine state with the current row sets."""
    store = SqlStore(db)
    state.load_snapshot(
        report_rows=await store.fetch_reports(),
        official_rows=await store.fetch_official_lights(),
        action_rows=await store.fetch_actions(),
        fixed_rows=await store.fetch_fixed(),
    )

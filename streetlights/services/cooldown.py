# streetlights/services/cooldown.py
import json
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from streetlights.config import ANON_COOLDOWNS_PATH, LOG_ENGINE, REPORT_COOLDOWN_HOURS
from streetlights.services.identity import extract_row_identity


def can_report(light_id: str, identity_key: Optional[str], reports: Iterable[Any], cycle_boundary: int) -> bool:
    """
    One report per light per identity per cycle.

    No identity -> allowed: contact capture happens earlier in the submit
    flow, never here. Otherwise the identity's latest report on this light
    must belong to an already closed cycle (ts <= boundary). A boundary of 0
    means the light was never fixed, so any earlier report blocks.
    """
    if not identity_key:
        return True

    last_ts = None
    for r in reports:
        if r.light_id != light_id:
            continue
        if extract_row_identity(r) != identity_key:
            continue
        if last_ts is None or r.ts > last_ts:
            last_ts = r.ts

    if last_ts is None:
        return True
    return bool(cycle_boundary) and last_ts <= cycle_boundary


class AnonymousCooldowns:
    """
    Per-light timestamps for submitters with no durable identity.

    Best-effort only: lives on this process (and optionally a JSON file).
    The real rate limit belongs to the backend.
    """

    def __init__(self, path: Optional[str] = ANON_COOLDOWNS_PATH, window_hours: int = REPORT_COOLDOWN_HOURS, clock=None):
        self.path = Path(path) if path else None
        self.window_ms = int(window_hours) * 3600 * 1000
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._items: Dict[str, int] = self._load()

    def _load(self) -> Dict[str, int]:
        if not self.path or not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            print(f"[cooldowns] unreadable {self.path}: {e}")
            return {}
        if not isinstance(raw, dict):
            return {}
        out = {}
        for lid, ts in raw.items():
            try:
                out[str(lid)] = int(ts)
            except (TypeError, ValueError):
                continue
        return out

    def _save(self) -> None:
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._items, sort_keys=True), encoding="utf-8")
        except OSError as e:
            print(f"[cooldowns] save failed {self.path}: {e}")

    def prune(self) -> Dict[str, int]:
        now = self._clock()
        kept = {lid: ts for lid, ts in self._items.items() if now - ts <= self.window_ms}
        if len(kept) != len(self._items):
            self._items = kept
            self._save()
        return dict(kept)

    def record(self, light_id: str) -> None:
        self.prune()
        self._items[light_id] = self._clock()
        self._save()
        if LOG_ENGINE:
            print(f"[cooldowns] recorded {light_id}")

    def is_cooling(self, light_id: str) -> bool:
        return light_id in self.prune()

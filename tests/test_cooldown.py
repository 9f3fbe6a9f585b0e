"""
Tests for services/cooldown.py - per-cycle gate and anonymous cooldowns.
"""

from conftest import make_action, make_report
from streetlights.services.cooldown import AnonymousCooldowns, can_report
from streetlights.services.lifecycle import cycle_boundaries, cycle_boundary

L = "ol-1"
ME = "email:jane@mail.com"
HOUR = 3600 * 1000


def _boundary(actions):
    return cycle_boundary(L, cycle_boundaries(actions, {}))


class TestCanReport:
    def test_first_report_allowed(self):
        assert can_report(L, ME, [], 0)

    def test_second_report_same_cycle_denied(self):
        rs = [make_report("1", ts=100, light_id=L, reporter_email="jane@mail.com")]
        assert not can_report(L, ME, rs, _boundary([]))

    def test_allowed_again_after_fix(self):
        """true -> false -> true once a fix starts a new cycle."""
        rs = []
        assert can_report(L, ME, rs, _boundary([]))
        rs.append(make_report("1", ts=100, light_id=L, reporter_email="jane@mail.com"))
        assert not can_report(L, ME, rs, _boundary([]))
        acts = [make_action(L, "fix", 200)]
        assert can_report(L, ME, rs, _boundary(acts))

    def test_denied_again_after_reopen(self):
        rs = [make_report("1", ts=100, light_id=L, reporter_email="jane@mail.com")]
        acts = [make_action(L, "fix", 200), make_action(L, "reopen", 300)]
        assert not can_report(L, ME, rs, _boundary(acts))

    def test_other_identity_and_light(self):
        rs = [make_report("1", ts=100, light_id=L, reporter_email="jane@mail.com")]
        assert can_report(L, "email:bob@mail.com", rs, 0)
        assert can_report("ol-2", ME, rs, 0)

    def test_no_identity_allowed(self):
        rs = [make_report("1", ts=100, light_id=L)]
        assert can_report(L, None, rs, 0)


class FakeClock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


class TestAnonymousCooldowns:
    def test_window(self):
        clock = FakeClock(10 * HOUR)
        cd = AnonymousCooldowns(path=None, window_hours=24, clock=clock)
        cd.record(L)
        assert cd.is_cooling(L)
        assert not cd.is_cooling("ol-2")
        clock.now += 25 * HOUR
        assert not cd.is_cooling(L)

    def test_persisted(self, tmp_path):
        path = tmp_path / "cooldowns.json"
        clock = FakeClock(10 * HOUR)
        AnonymousCooldowns(path=str(path), clock=clock).record(L)
        assert path.exists()

        clock.now += HOUR
        assert AnonymousCooldowns(path=str(path), clock=clock).is_cooling(L)

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "cooldowns.json"
        path.write_text("{not json", encoding="utf-8")
        cd = AnonymousCooldowns(path=str(path), clock=FakeClock(0))
        assert cd.prune() == {}

"""
Tests for services/lifecycle.py - cycle boundaries and the working-consensus streak.
"""

from conftest import make_action, make_report
from streetlights.services.lifecycle import (
    CONFIRMED,
    LIKELY,
    OPERATIONAL,
    REPORTED,
    cycle_boundaries,
    fix_boundaries,
    in_cycle,
    replay,
    replay_all,
)

L = "ol-1"


def _r(rid, rtype, ts):
    return make_report(rid, rtype=rtype, ts=ts, light_id=L)


class TestBoundaries:
    """Fold of the action log, merged with the fixed cache."""

    def test_fix_sets(self):
        assert fix_boundaries([make_action(L, "fix", 100)]) == {L: 100}

    def test_reopen_clears(self):
        acts = [make_action(L, "fix", 100), make_action(L, "reopen", 200)]
        assert fix_boundaries(acts) == {}

    def test_fix_after_reopen(self):
        acts = [make_action(L, "fix", 100), make_action(L, "reopen", 200), make_action(L, "fix", 300)]
        assert fix_boundaries(acts) == {L: 300}

    def test_arrival_order_does_not_matter(self):
        """The feed may deliver the reopen before the fix it follows."""
        acts = [make_action(L, "reopen", 200), make_action(L, "fix", 100)]
        assert fix_boundaries(acts) == {}

    def test_stale_cache_ignored(self):
        """A cache entry not newer than the last reopen does not restore the boundary."""
        acts = [make_action(L, "fix", 100), make_action(L, "reopen", 200)]
        assert cycle_boundaries(acts, {L: 100}) == {}

    def test_fresh_cache_wins(self):
        acts = [make_action(L, "fix", 100), make_action(L, "reopen", 200)]
        assert cycle_boundaries(acts, {L: 250}) == {L: 250}

    def test_max_of_log_and_cache(self):
        assert cycle_boundaries([make_action(L, "fix", 100)], {L: 150}) == {L: 150}
        assert cycle_boundaries([make_action(L, "fix", 300)], {L: 150}) == {L: 300}

    def test_in_cycle(self):
        assert in_cycle(5, 0)
        assert not in_cycle(100, 100)
        assert in_cycle(101, 100)


class TestReplay:
    def test_open_cycle_counts_after_boundary(self):
        life = replay(L, [_r("1", "out", 50), _r("2", "out", 150)], [], boundary=100)
        assert life.open_count == 1
        assert life.state == REPORTED
        assert life.cycle_start == 100

    def test_no_reports_is_operational(self):
        assert replay(L, [], [], 0).state == OPERATIONAL

    def test_other_lights_ignored(self):
        other = make_report("x", ts=10, light_id="ol-2")
        assert replay(L, [other], [], 0).open_count == 0

    def test_three_working_resolve(self):
        """Three working events in a row resolve the light."""
        rs = [_r("1", "out", 10), _r("2", "working", 20), _r("3", "working", 30), _r("4", "working", 40)]
        life = replay(L, rs, [], 0)
        assert life.resolved_by_consensus
        assert life.state == OPERATIONAL
        assert life.open_count == 1

    def test_outage_resets_streak(self):
        """An outage report between working #2 and #3 prevents resolution."""
        rs = [
            _r("1", "out", 10), _r("2", "working", 20), _r("3", "working", 30),
            _r("4", "out", 35), _r("5", "working", 40),
        ]
        life = replay(L, rs, [], 0)
        assert not life.resolved_by_consensus
        assert life.working_streak == 1
        assert life.open_count == 2

    def test_working_actions_count(self):
        rs = [_r("1", "out", 10), _r("2", "working", 20)]
        acts = [make_action(L, "working", 30), make_action(L, "working", 40)]
        assert replay(L, rs, acts, 0).resolved_by_consensus

    def test_streak_before_boundary_ignored(self):
        rs = [_r("1", "working", 10), _r("2", "working", 20), _r("3", "out", 150), _r("4", "working", 160)]
        life = replay(L, rs, [], boundary=100)
        assert not life.resolved_by_consensus

    def test_member_ids_widen_membership(self):
        rs = [make_report("1", ts=10, light_id="a"), make_report("2", ts=20, light_id="b")]
        assert replay("a", rs, [], 0, member_ids={"a", "b"}).open_count == 2

    def test_replay_all(self):
        rs = [_r("1", "out", 10), make_report("2", ts=20, light_id="ol-2")]
        out = replay_all([L, "ol-2"], rs, [make_action("ol-2", "fix", 30)], {})
        assert out[L].state == REPORTED
        assert out["ol-2"].state == OPERATIONAL


class TestTieredState:
    """Open-report count sets how sure we are the light is out."""

    def _outs(self, n, light_id=L):
        return [make_report(str(i), ts=10 + i, light_id=light_id, reporter_email=f"u{i}@mail.com") for i in range(n)]

    def test_official_scale(self):
        assert replay(L, self._outs(4), [], 0).state == REPORTED
        assert replay(L, self._outs(5), [], 0).state == LIKELY
        assert replay(L, self._outs(6), [], 0).state == LIKELY
        assert replay(L, self._outs(7), [], 0).state == CONFIRMED

    def test_community_scale(self):
        assert replay("c", self._outs(1, "c"), [], 0, community=True).state == REPORTED
        assert replay("c", self._outs(2, "c"), [], 0, community=True).state == LIKELY
        assert replay("c", self._outs(4, "c"), [], 0, community=True).state == CONFIRMED

    def test_consensus_overrides_count(self):
        rs = self._outs(7) + [_r(f"w{i}", "working", 100 + i) for i in range(3)]
        life = replay(L, rs, [], 0)
        assert life.state == OPERATIONAL
        assert not life.is_open

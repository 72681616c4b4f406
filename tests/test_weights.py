"""Tests for the weight model and the decay pass."""

import datetime
import math

import pytest

from vigil.config import DecayConfig
from vigil.manifest_types import ManifestConfig, ManifestState, TrackedArtifact
from vigil.weights import (
    check_floors,
    decay_artifact,
    effective_weight,
    frequency_boost,
    recency_boost,
    run_decay,
    weight_floor,
)

TODAY = datetime.date(2026, 3, 10)


def _artifact(**kw):
    defaults = {
        "path": "memory/topics/x.md",
        "base_weight": 0.5,
        "type": "topic",
        "last_access": TODAY,
        "access_count": 0,
        "decay_rate": 1.0,
    }
    defaults.update(kw)
    return TrackedArtifact(**defaults)


class TestEffectiveWeight:
    def test_core_artifact_accessed_today(self):
        art = _artifact(base_weight=0.9, type="core", access_count=4, decay_rate=0.0)
        expected = 0.9 * 1.0 * (math.log10(5) + 1) * 1.5
        assert effective_weight(art, TODAY) == pytest.approx(expected)
        assert effective_weight(art, TODAY) == pytest.approx(2.2936, abs=1e-4)

    def test_recency_floor(self):
        art = _artifact(last_access=TODAY - datetime.timedelta(days=100))
        assert recency_boost(art, TODAY) == 0.1

    def test_recency_linear(self):
        art = _artifact(last_access=TODAY - datetime.timedelta(days=3), decay_rate=0.1)
        assert recency_boost(art, TODAY) == pytest.approx(0.7)

    def test_frequency_boost_zero_accesses(self):
        assert frequency_boost(_artifact()) == 1.0

    def test_core_clamped_to_min_core_weight(self):
        art = _artifact(
            base_weight=0.1,
            type="core",
            last_access=TODAY - datetime.timedelta(days=365),
        )
        assert effective_weight(art, TODAY, min_core_weight=0.5) == 0.5

    def test_non_core_not_clamped(self):
        art = _artifact(base_weight=0.1, last_access=TODAY - datetime.timedelta(days=365))
        assert effective_weight(art, TODAY, min_core_weight=0.5) == pytest.approx(0.01)

    def test_accepts_datetime(self):
        art = _artifact()
        now = datetime.datetime(2026, 3, 10, 23, 59, tzinfo=datetime.UTC)
        assert effective_weight(art, now) == effective_weight(art, TODAY)


class TestFloors:
    def test_default_floors_hold_invariant(self):
        check_floors(ManifestConfig(), DecayConfig())

    def test_core_floor_must_exceed_type_floors(self):
        with pytest.raises(ValueError, match="minCoreWeight"):
            check_floors(ManifestConfig(min_core_weight=0.15), DecayConfig())

    def test_weight_floor_by_type(self):
        mc, dc = ManifestConfig(), DecayConfig()
        assert weight_floor(_artifact(type="core"), mc, dc) == 0.5
        assert weight_floor(_artifact(type="people"), mc, dc) == 0.15
        assert weight_floor(_artifact(type="draft"), mc, dc) == 0.05

    def test_structural_floor_raises_type_floor(self):
        dc = DecayConfig(structural_floors={"memory/index.md": 0.3})
        art = _artifact(path="memory/index.md", type="recent")
        assert weight_floor(art, ManifestConfig(), dc) == 0.3


class TestDecayArtifact:
    def test_touched_today_unchanged(self):
        weight, reason = decay_artifact(_artifact(), TODAY, ManifestConfig(), DecayConfig())
        assert weight == 0.5
        assert reason == "touched"

    def test_linear_decay(self):
        art = _artifact(last_access=TODAY - datetime.timedelta(days=5))
        weight, _ = decay_artifact(art, TODAY, ManifestConfig(), DecayConfig())
        assert weight == pytest.approx(0.5 - 5 * 0.02)

    def test_frequency_shield_halves_decay(self):
        art = _artifact(last_access=TODAY - datetime.timedelta(days=5), access_count=10)
        weight, reason = decay_artifact(art, TODAY, ManifestConfig(), DecayConfig())
        assert weight == pytest.approx(0.5 - 5 * 0.01)
        assert "freq-shielded" in reason

    def test_zero_rate_never_decays(self):
        art = _artifact(last_access=TODAY - datetime.timedelta(days=50), decay_rate=0.0)
        weight, _ = decay_artifact(art, TODAY, ManifestConfig(), DecayConfig())
        assert weight == 0.5

    def test_clamped_to_floor(self):
        art = _artifact(type="people", last_access=TODAY - datetime.timedelta(days=90))
        weight, reason = decay_artifact(art, TODAY, ManifestConfig(), DecayConfig())
        assert weight == 0.15
        assert "floor" in reason


class TestRunDecay:
    def _state(self):
        return ManifestState(
            artifacts={
                "MEMORY.md": _artifact(
                    path="MEMORY.md",
                    type="core",
                    base_weight=0.9,
                    last_access=TODAY - datetime.timedelta(days=2),
                ),
                "memory/old.md": _artifact(
                    path="memory/old.md",
                    type="recent",
                    base_weight=0.2,
                    last_access=TODAY - datetime.timedelta(days=30),
                ),
                "memory/fresh.md": _artifact(path="memory/fresh.md"),
            }
        )

    def test_report_and_archival(self):
        state = self._state()
        report = run_decay(state, TODAY, DecayConfig())
        assert not report.skipped
        assert report.decayed == 2
        assert report.unchanged == 1
        assert report.archival_candidates == ["memory/old.md"]
        assert state.artifacts["memory/old.md"].base_weight == 0.05
        assert state.last_decay_run == TODAY

    def test_once_per_day(self):
        state = self._state()
        run_decay(state, TODAY, DecayConfig())
        weight = state.artifacts["MEMORY.md"].base_weight
        report = run_decay(state, TODAY, DecayConfig())
        assert report.skipped
        assert state.artifacts["MEMORY.md"].base_weight == weight

    def test_force_reruns(self):
        state = self._state()
        run_decay(state, TODAY, DecayConfig())
        report = run_decay(state, TODAY, DecayConfig(), force=True)
        assert not report.skipped

    def test_dry_run_changes_nothing(self):
        state = self._state()
        report = run_decay(state, TODAY, DecayConfig(), dry_run=True)
        assert report.changes
        assert state.artifacts["memory/old.md"].base_weight == 0.2
        assert state.last_decay_run is None

    def test_core_never_below_min_core_weight_over_many_cycles(self):
        state = self._state()
        core = state.artifacts["MEMORY.md"]
        for day in range(1, 200):
            run_decay(state, TODAY + datetime.timedelta(days=day), DecayConfig())
            assert core.base_weight >= state.config.min_core_weight
            assert effective_weight(
                core, TODAY + datetime.timedelta(days=day), state.config.min_core_weight
            ) >= state.config.min_core_weight

    def test_broken_floors_refused(self):
        state = self._state()
        state.config.min_core_weight = 0.1
        with pytest.raises(ValueError):
            run_decay(state, TODAY, DecayConfig())

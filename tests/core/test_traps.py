"""Tests for orbit trap geometry."""

import math

import numpy as np
import pytest

from matterhorn.core.traps import (
    NO_TRAP,
    OrbitTrap,
    TrapKind,
    grid_trap_distance,
    trap_distance,
    trap_strength,
)


class TestTrapDistance:
    def test_none_trap_has_no_distance(self):
        assert trap_distance(None) is None
        assert trap_distance(NO_TRAP) is None
        assert grid_trap_distance(NO_TRAP) is None

    def test_point(self):
        distance = trap_distance(OrbitTrap.point(complex(1, 1)))
        assert distance(complex(4, 5)) == pytest.approx(5.0)

    def test_circle_is_zero_on_ring(self):
        distance = trap_distance(OrbitTrap.circle(0j, 2.0))
        assert distance(complex(0, 2)) == pytest.approx(0.0)
        assert distance(complex(0.5, 0)) == pytest.approx(1.5)
        assert distance(complex(3, 0)) == pytest.approx(1.0)

    def test_cross_uses_nearer_axis(self):
        distance = trap_distance(OrbitTrap.cross(0j, arm_width=1.0))
        assert distance(complex(0.3, 0.7)) == pytest.approx(0.3)
        assert distance(complex(0.9, -0.2)) == pytest.approx(0.2)

    def test_cross_capped_at_arm_width(self):
        distance = trap_distance(OrbitTrap.cross(0j, arm_width=0.1))
        assert distance(complex(5, 5)) == pytest.approx(0.1)

    @pytest.mark.parametrize(
        "trap",
        [
            OrbitTrap.point(complex(0.2, -0.1)),
            OrbitTrap.circle(complex(-0.5, 0.0), 0.4),
            OrbitTrap.cross(complex(0.1, 0.1), 0.25),
        ],
        ids=lambda t: t.kind.value,
    )
    def test_grid_matches_scalar(self, trap):
        xs = np.linspace(-1.0, 1.0, 11)
        ys = np.linspace(-0.8, 0.8, 11)
        scalar = trap_distance(trap)
        grid = grid_trap_distance(trap)(xs, ys)
        for i in range(len(xs)):
            assert grid[i] == pytest.approx(scalar(complex(xs[i], ys[i])))


class TestTrapStrength:
    def test_on_trap_is_one(self):
        assert trap_strength(0.0, OrbitTrap.point(0j)) == pytest.approx(1.0)

    def test_decays_with_distance(self):
        trap = OrbitTrap.point(0j, softness=5.0)
        near, far = trap_strength(np.array([0.1, 1.0]), trap)
        assert 0.0 < far < near < 1.0
        assert near == pytest.approx(math.exp(-0.5))

    def test_infinite_distance_has_no_strength(self):
        for softness in (0.0, 5.0):
            trap = OrbitTrap.point(0j, softness=softness)
            assert trap_strength(np.inf, trap) == 0.0

    def test_zero_softness_is_full_strength(self):
        trap = OrbitTrap.point(0j, softness=0.0)
        assert trap_strength(3.0, trap) == pytest.approx(1.0)


class TestTrapValidate:
    def test_default_is_disabled(self):
        assert NO_TRAP.kind == TrapKind.NONE
        assert not NO_TRAP.enabled
        NO_TRAP.validate()

    def test_cross_needs_positive_arm(self):
        with pytest.raises(ValueError):
            OrbitTrap.cross(0j, arm_width=0.0).validate()

    def test_circle_rejects_negative_radius(self):
        with pytest.raises(ValueError):
            OrbitTrap.circle(0j, radius=-1.0).validate()

    def test_rejects_non_finite_center(self):
        with pytest.raises(ValueError):
            OrbitTrap.point(complex(math.nan, 0.0)).validate()

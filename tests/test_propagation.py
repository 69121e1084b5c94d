"""
tests/test_propagation.py

Test fire propagation strategies (Slow / Fast).

Validates:
- Ignition probability bounds and exact values
- Wind alignment and reach limit
- Simultaneous (pre-tick) ignition selection
- Same-tick burn accounting of freshly ignited cells
- Wind-biased spread, deterministic (Fast) and statistical (Slow)
"""

import pytest
import sys
import numpy as np
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from constants import CellState, StrategyKind
from fire_grid import Cell, ForestGrid
from propagation import (
    PropagationStrategy, SLOW_PARAMS, FAST_PARAMS, create_strategy
)


class FixedDrawRng:
    """Random source returning the same uniform draw every time."""

    def __init__(self, value: float):
        self.value = value

    def rand(self):
        return self.value


def tree(row, col, humidity=50.0):
    return Cell(row=row, col=col, state=CellState.TREE, humidity=humidity)


def burning(row, col):
    return Cell(row=row, col=col, state=CellState.BURNING, fire_intensity=0.5)


def full_forest(width=20, height=20, humidity=50.0) -> ForestGrid:
    grid = ForestGrid(width, height, base_humidity=humidity)
    for cell in grid.iter_cells():
        cell.set_state(CellState.TREE)
    return grid


@pytest.fixture
def slow():
    return PropagationStrategy(StrategyKind.SLOW)


@pytest.fixture
def fast():
    return PropagationStrategy(StrategyKind.FAST)


class TestIgnitionProbability:
    """Test the per-pair ignition probability."""

    def test_calm_value(self, slow):
        """Without wind: base / distance - humidity penalty."""
        p = slow.ignition_probability(burning(5, 5), tree(5, 6), 0.0, 0.0)
        assert p == pytest.approx(0.30 - 0.20 * 0.5)

    def test_downwind_bonus(self, slow):
        """A fully aligned target gets the whole wind bonus."""
        p = slow.ignition_probability(burning(5, 5), tree(5, 6), 5.0, 0.0)
        assert p == pytest.approx(0.30 + 0.05 * 5.0 - 0.10)

    def test_upwind_no_bonus(self, slow):
        """An opposed target (180° off) gets no wind bonus."""
        p = slow.ignition_probability(burning(5, 5), tree(5, 4), 5.0, 0.0)
        assert p == pytest.approx(0.30 - 0.10)

    def test_crosswind_half_bonus(self, slow):
        """Bearing 90° off the wind gives half the bonus."""
        p = slow.ignition_probability(burning(5, 5), tree(6, 5), 5.0, 0.0)
        assert p == pytest.approx(0.30 + 0.05 * 5.0 * 0.5 - 0.10)

    def test_direction_wraps(self, slow):
        """Wind at 350° and 10° should be symmetric around the +column axis."""
        p1 = slow.ignition_probability(burning(5, 5), tree(5, 6), 5.0, 350.0)
        p2 = slow.ignition_probability(burning(5, 5), tree(5, 6), 5.0, 10.0)
        assert p1 == pytest.approx(p2)

    def test_non_tree_target(self, fast):
        """Only trees can ignite."""
        for state in (CellState.EMPTY, CellState.BURNING, CellState.BURNT):
            target = Cell(row=5, col=6, state=state)
            assert fast.ignition_probability(burning(5, 5), target, 5.0, 0.0) == 0.0

    def test_reach_limit(self, fast):
        """Targets beyond 1.5 cells never ignite, even in Fast's wider ring."""
        assert fast.ignition_probability(burning(5, 5), tree(5, 7), 10.0, 0.0) == 0.0
        assert fast.ignition_probability(burning(5, 5), tree(7, 5), 10.0, 90.0) == 0.0
        assert fast.ignition_probability(burning(5, 5), tree(6, 6), 10.0, 45.0) > 0.0

    def test_always_in_unit_interval(self, slow, fast):
        """Probability stays in [0, 1] for any input combination."""
        rng = np.random.RandomState(7)
        for strategy in (slow, fast):
            for _ in range(500):
                dr, dc = rng.randint(-2, 3, size=2)
                target = tree(5 + dr, 5 + dc, humidity=rng.uniform(0, 100))
                p = strategy.ignition_probability(
                    burning(5, 5), target, rng.uniform(0, 10), rng.uniform(0, 360)
                )
                assert 0.0 <= p <= 1.0

    def test_dry_fast_saturates(self, fast):
        """Fast with strong wind and dry fuel is clamped at 1."""
        p = fast.ignition_probability(burning(5, 5), tree(5, 6, humidity=0.0), 10.0, 0.0)
        assert p == 1.0


class TestIgnitionSelection:
    """Test simultaneous ignition selection."""

    def test_calm_wind_direction_irrelevant(self, slow):
        """With zero wind, selection does not depend on wind direction."""
        grid = full_forest(10, 10)
        grid.ignite(5, 5)

        results = [
            slow.select_ignitions(grid, 0.0, direction, np.random.RandomState(11))
            for direction in (0.0, 90.0, 180.0, 270.0)
        ]
        assert all(r == results[0] for r in results)

        probs = {
            direction: slow.ignition_probability(grid.cell(5, 5), grid.cell(4, 6), 0.0, direction)
            for direction in (0.0, 123.0, 300.0)
        }
        assert len(set(probs.values())) == 1

    def test_neighborhood_size(self, slow, fast):
        """Slow reaches only the 4 orthogonal neighbors, Fast all 8 adjacent cells."""
        grid = full_forest(9, 9, humidity=0.0)
        grid.ignite(4, 4)

        slow_targets = slow.select_ignitions(grid, 0.0, 0.0, FixedDrawRng(0.0))
        fast_targets = fast.select_ignitions(grid, 0.0, 0.0, FixedDrawRng(0.0))

        # Diagonals (distance 1.41) lie outside the Slow check radius of 1.0
        assert slow_targets == {(3, 4), (4, 3), (4, 5), (5, 4)}
        # Distance-2 ring cells are scanned but beyond the reach limit
        assert len(fast_targets) == 8

    def test_no_same_tick_cascade(self, slow):
        """A cell ignited this tick cannot spread until the next tick."""
        grid = ForestGrid(5, 1, base_humidity=0.0)
        for col in range(5):
            grid.set_state(0, col, CellState.TREE)
        grid.ignite(0, 0)

        slow.advance(grid, 0.5, 0.0, 0.0, FixedDrawRng(0.0))

        states = [grid.cell(0, c).state for c in range(5)]
        assert states[:3] == [CellState.BURNING, CellState.BURNING, CellState.TREE]

    def test_pure_forest_never_self_ignites(self, slow):
        """Without a burning cell nothing ignites."""
        grid = full_forest(10, 10)
        ignited, burnt = slow.advance(grid, 0.5, 0.0, 0.0, FixedDrawRng(0.0))
        assert (ignited, burnt) == (0, 0)
        assert grid.count_by_state()[CellState.BURNING] == 0


class TestAdvance:
    """Test the per-tick grid update."""

    def test_fresh_ignition_accrues_same_tick(self, fast):
        """Newly ignited cells already burn for the tick they ignite in."""
        grid = ForestGrid(3, 1, base_humidity=0.0)
        grid.set_state(0, 0, CellState.TREE)
        grid.set_state(0, 1, CellState.TREE)
        grid.ignite(0, 0)

        fast.advance(grid, 0.5, 0.0, 0.0, FixedDrawRng(0.0))

        cell = grid.cell(0, 1)
        assert cell.state == CellState.BURNING
        assert cell.burning_time == pytest.approx(0.5)
        assert cell.fire_intensity == pytest.approx(FAST_PARAMS.initial_intensity + 0.10 * 0.5)

    def test_burnt_cells_stay_burnt(self, slow):
        """BURNT is never re-ignited automatically."""
        grid = ForestGrid(2, 1)
        grid.set_state(0, 0, CellState.TREE)
        grid.ignite(0, 0)
        grid.cell(0, 1).set_state(CellState.BURNT)

        for _ in range(50):
            slow.advance(grid, 0.5, 10.0, 0.0, FixedDrawRng(0.0))

        assert grid.cell(0, 0).state == CellState.BURNT
        assert grid.cell(0, 1).state == CellState.BURNT

    def test_intensity_zero_outside_burning(self, fast):
        """Intensity is nonzero only for burning cells after any tick."""
        grid = ForestGrid(15, 15)
        grid.generate_random_forest(0.7, np.random.RandomState(5))
        trees = [c for c in grid.iter_cells() if c.state == CellState.TREE]
        grid.ignite(trees[0].row, trees[0].col)

        rng = np.random.RandomState(5)
        for _ in range(60):
            fast.advance(grid, 0.5, 3.0, 30.0, rng)
            for cell in grid.iter_cells():
                if cell.state != CellState.BURNING:
                    assert cell.fire_intensity == 0.0

    def test_humidity_scaled_burn_time(self):
        """A burn-time function overrides the table threshold per cell."""
        strategy = PropagationStrategy(StrategyKind.SLOW, burn_time_fn=lambda h: 8.0 + 7.0 * h / 100.0)
        assert strategy.burn_threshold(tree(0, 0, humidity=0.0)) == pytest.approx(8.0)
        assert strategy.burn_threshold(tree(0, 0, humidity=100.0)) == pytest.approx(15.0)
        assert PropagationStrategy(StrategyKind.SLOW).burn_threshold(tree(0, 0)) == SLOW_PARAMS.burn_time_s


class TestWindBiasedSpread:
    """End-to-end wind bias."""

    def test_fast_spread_follows_wind(self, fast):
        """
        Fast, wind 5 m/s toward +column, single fire at (10, 10).

        With saturated fuel moisture and a fixed draw of 0.99 the outcome is
        deterministic: downwind and crosswind neighbors ignite, the three
        upwind ones never do.
        """
        grid = full_forest(20, 20, humidity=100.0)
        grid.ignite(10, 10)
        rng = FixedDrawRng(0.99)

        for _ in range(2000):  # 1000 simulated seconds
            fast.advance(grid, 0.5, 5.0, 0.0, rng)

        row = [grid.cell(10, c).state for c in range(20)]
        east_burnt = sum(1 for s in row[11:] if s == CellState.BURNT)
        west_burnt = sum(1 for s in row[:10] if s == CellState.BURNT)

        assert east_burnt == 9
        assert west_burnt == 0
        assert east_burnt > west_burnt

    def test_slow_spread_biased_downwind(self, slow):
        """Slow spread reaches more cells downwind, over several seeds."""
        downwind = upwind = 0
        for seed in range(10):
            grid = full_forest(20, 20)
            grid.ignite(10, 10)
            rng = np.random.RandomState(seed)
            for _ in range(12):
                slow.advance(grid, 0.5, 5.0, 0.0, rng)

            for cell in grid.iter_cells():
                if cell.state in (CellState.BURNING, CellState.BURNT):
                    if cell.col > 10:
                        downwind += 1
                    elif cell.col < 10:
                        upwind += 1

        assert downwind > upwind


class TestStrategyFactory:
    """Test strategy selection by name."""

    def test_by_name(self):
        assert create_strategy("fast").kind == StrategyKind.FAST
        assert create_strategy(" SLOW ").kind == StrategyKind.SLOW
        assert create_strategy(StrategyKind.FAST).params is FAST_PARAMS

    def test_unknown_falls_back_to_slow(self):
        assert create_strategy("medium").kind == StrategyKind.SLOW


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

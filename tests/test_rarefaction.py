import numpy as np
import pytest

from sdm_ensemble.core.grid import OUT_OF_BOUNDS
from sdm_ensemble.core.points import PointSet
from sdm_ensemble.core.rarefaction import rarefy
from sdm_ensemble.exceptions import InsufficientPoints


class TestRarefy:
    def test_first_point_in_cell_wins(self, grid):
        points = PointSet.from_xy("sp", [1.2, 1.8, 2.5, 1.5], [5.5, 5.1, 5.5, 5.9])
        result = rarefy(points, grid)
        assert result.points == (points.points[0], points.points[2])

    def test_unique_cells_and_subsequence(self, grid):
        rng = np.random.default_rng(42)
        points = PointSet.from_xy("sp", rng.uniform(-1, 11, 500), rng.uniform(-1, 11, 500))
        result = rarefy(points, grid)

        cells = grid.cells_of(result.xs, result.ys)
        assert len(set(cells)) == len(cells)
        assert OUT_OF_BOUNDS not in cells
        assert grid.is_valid(cells).all()

        # result is an ordered subsequence of the input
        positions = [points.points.index(p) for p in result.points]
        assert positions == sorted(positions)

        # every retained point is the first valid point seen in its cell
        all_cells = grid.cells_of(points.xs, points.ys)
        for pos, cell in zip(positions, cells):
            assert np.flatnonzero(all_cells == cell)[0] == pos

    def test_invalid_and_outside_points_dropped(self, grid):
        points = PointSet.from_xy("sp", [0.5, 20.0, 3.5], [9.5, 5.0, 3.5])
        result = rarefy(points, grid)
        assert result.points == (points.points[2],)

    def test_insufficient_points(self, grid):
        points = PointSet.from_xy("Rare species", [1.5, 2.5, 3.5], [1.5, 2.5, 3.5])
        with pytest.raises(InsufficientPoints) as exc_info:
            rarefy(points, grid, min_points=20)
        assert exc_info.value.count == 3
        assert exc_info.value.minimum == 20
        assert exc_info.value.species == "Rare species"

    def test_duplicates_count_once_against_minimum(self, grid):
        points = PointSet.from_xy("sp", [1.5] * 30, [1.5] * 30)
        with pytest.raises(InsufficientPoints) as exc_info:
            rarefy(points, grid, min_points=2)
        assert exc_info.value.count == 1

    def test_empty_input(self, grid):
        result = rarefy(PointSet("sp"), grid)
        assert len(result) == 0

    def test_metadata_kept(self, grid, fifty_presences):
        result = rarefy(fifty_presences, grid, min_points=20)
        assert result.species == fifty_presences.species
        assert len(result) == 50

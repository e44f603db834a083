import numpy as np
import pytest
from rasterio.transform import Affine, from_origin

from sdm_ensemble.core.grid import OUT_OF_BOUNDS, ReferenceGrid, cell_of
from sdm_ensemble.exceptions import GridMismatch, OutOfBounds


class TestCellOf:
    def test_corners(self, grid):
        assert cell_of((0.5, 9.5), grid) == 0
        assert cell_of((9.5, 9.5), grid) == 9
        assert cell_of((0.5, 0.5), grid) == 90
        assert cell_of((9.5, 0.5), grid) == 99

    def test_left_and_top_edges_belong_to_grid(self, grid):
        assert cell_of((0.0, 10.0), grid) == 0
        assert cell_of((5.0, 5.0), grid) == 55

    def test_outside_extent(self, grid):
        assert cell_of((10.0, 5.0), grid) == OUT_OF_BOUNDS
        assert cell_of((5.0, 0.0), grid) == OUT_OF_BOUNDS
        assert cell_of((-0.1, 5.0), grid) == OUT_OF_BOUNDS
        assert cell_of((5.0, 10.1), grid) == OUT_OF_BOUNDS

    def test_nan_coordinate(self, grid):
        assert cell_of((np.nan, 5.0), grid) == OUT_OF_BOUNDS

    def test_deterministic(self, grid):
        rng = np.random.default_rng(1)
        xs, ys = rng.uniform(0, 10, 200), rng.uniform(0, 10, 200)
        np.testing.assert_array_equal(grid.cells_of(xs, ys), grid.cells_of(xs, ys))

    def test_center_round_trip(self, grid):
        for cell in (0, 13, 57, 99):
            assert cell_of(grid.cell_center(cell), grid) == cell


class TestReferenceGrid:
    def test_shape(self, grid):
        assert grid.shape == (10, 10)
        assert grid.n_cells == 100
        assert grid.bounds == (0.0, 0.0, 10.0, 10.0)

    def test_validity(self, grid):
        assert list(grid.is_valid([0, 1, OUT_OF_BOUNDS, 100])) == [False, True, False, False]
        assert len(grid.valid_cells()) == 99

    def test_mask_is_read_only(self, grid):
        with pytest.raises(ValueError):
            grid.valid_mask[1, 1] = False

    def test_mask_shape_mismatch(self):
        with pytest.raises(GridMismatch):
            ReferenceGrid(0, 10, 0, 10, 1.0, np.ones((5, 5), dtype=bool))

    def test_bad_resolution(self):
        with pytest.raises(ValueError):
            ReferenceGrid(0, 10, 0, 10, 0.0)

    def test_cell_out_of_bounds(self, grid):
        with pytest.raises(OutOfBounds):
            grid.cell_center(100)

    def test_from_stack(self):
        band1 = np.ones((4, 6), dtype="float32")
        band2 = np.ones((4, 6), dtype="float32")
        band1[0, 0] = np.nan
        band2[3, 5] = np.nan
        grid = ReferenceGrid.from_stack(np.stack([band1, band2]), from_origin(100.0, 50.0, 0.5, 0.5))

        assert grid.bounds == (100.0, 48.0, 103.0, 50.0)
        assert grid.shape == (4, 6)
        assert not grid.valid_mask[0, 0]
        assert not grid.valid_mask[3, 5]
        assert grid.valid_mask.sum() == 22
        assert grid.transform == from_origin(100.0, 50.0, 0.5, 0.5)

    def test_from_stack_rejects_rotation(self):
        rotated = Affine(1.0, 0.2, 0.0, 0.0, -1.0, 10.0)
        with pytest.raises(GridMismatch):
            ReferenceGrid.from_stack(np.ones((2, 2)), rotated)

    def test_same_geometry(self, grid):
        assert grid.same_geometry(ReferenceGrid(0, 10, 0, 10, 1.0))
        assert not grid.same_geometry(ReferenceGrid(0, 10, 0, 10, 0.5))

"""Shared fixtures: a 10x10 unit grid, two ecoregions and toy suitability rasters."""

import numpy as np
import pytest
from shapely.geometry import box

from sdm_ensemble.core.ensemble import SuitabilityRaster
from sdm_ensemble.core.grid import ReferenceGrid
from sdm_ensemble.core.points import PointSet
from sdm_ensemble.core.spatial import Ecoregion


@pytest.fixture
def grid():
    """10x10 grid over [0, 10] x [0, 10]; the top-left cell has no data."""
    mask = np.ones((10, 10), dtype=bool)
    mask[0, 0] = False
    return ReferenceGrid(0.0, 10.0, 0.0, 10.0, 1.0, mask)


@pytest.fixture
def ecoregions():
    return [Ecoregion("west", box(0, 0, 5, 10)), Ecoregion("east", box(5, 0, 10, 10))]


@pytest.fixture
def fifty_presences(grid):
    """50 presences, one per valid cell, spread over both ecoregions."""
    xs, ys = zip(*(grid.cell_center(c) for c in range(1, 51)))
    return PointSet.from_xy("Species fifty", xs, ys)


@pytest.fixture
def west_presences():
    rng = np.random.default_rng(0)
    return PointSet.from_xy("Species west", rng.uniform(1, 4, 10), rng.uniform(1, 9, 10))


@pytest.fixture
def make_raster():
    def _make(values, model, scenario="present", species="Species fifty", transform=None):
        return SuitabilityRaster(np.asarray(values, dtype="float32"), species, model, scenario, transform)
    return _make


@pytest.fixture
def write_band():
    """Writes a single-band float32 GeoTIFF with NaN as nodata."""
    from rasterio.transform import from_origin

    from sdm_ensemble.utils.helpers import save_geotiff

    def _write(path, array, transform=None, crs="EPSG:4326"):
        array = np.asarray(array, dtype="float32")
        profile = {
            "driver": "GTiff",
            "height": array.shape[0],
            "width": array.shape[1],
            "count": 1,
            "dtype": "float32",
            "crs": crs,
            "transform": transform if transform is not None else from_origin(0, array.shape[0], 1, 1),
            "nodata": np.nan,
        }
        save_geotiff(str(path), array, profile)
        return str(path)
    return _write

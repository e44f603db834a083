import numpy as np
import pytest
from shapely.geometry import box

from sdm_ensemble.core.points import PointSet
from sdm_ensemble.core.spatial import Ecoregion, WithinBufferOf, WithinPolygonSet, intersecting_polygons


class TestWithinPolygonSet:
    def test_union_of_polygons(self, ecoregions):
        region = WithinPolygonSet(ecoregions)
        assert region.area == pytest.approx(100.0)
        assert region.bounds == (0.0, 0.0, 10.0, 10.0)
        assert list(region([1.0, 9.0, 11.0], [1.0, 9.0, 1.0])) == [True, True, False]

    def test_empty(self):
        region = WithinPolygonSet([])
        assert region.is_empty
        assert region.area == 0.0
        assert not region([1.0], [1.0]).any()


class TestWithinBufferOf:
    def test_distances(self):
        points = PointSet.from_xy("sp", [0.0, 10.0], [0.0, 0.0])
        buffer = WithinBufferOf(points, 2.0)
        np.testing.assert_allclose(buffer.distances([1.0, 6.0], [0.0, 0.0]), [1.0, 4.0])
        assert list(buffer([1.0, 6.0], [0.0, 0.0])) == [True, False]

    def test_exact_buffer_distance_is_outside(self):
        buffer = WithinBufferOf(PointSet.from_xy("sp", [0.0], [0.0]), 2.0)
        assert not buffer([2.0], [0.0])[0]

    def test_empty_point_set(self):
        buffer = WithinBufferOf(PointSet("sp"), 2.0)
        assert not buffer([0.0], [0.0]).any()

    def test_negative_buffer(self):
        with pytest.raises(ValueError):
            WithinBufferOf(PointSet("sp"), -1.0)


class TestIntersectingPolygons:
    def test_only_polygons_with_presences(self, ecoregions, west_presences):
        eligible = intersecting_polygons(ecoregions, west_presences)
        assert [p.id for p in eligible] == ["west"]

    def test_point_on_boundary_counts(self):
        polygons = [Ecoregion("a", box(0, 0, 1, 1)), Ecoregion("b", box(2, 2, 3, 3))]
        eligible = intersecting_polygons(polygons, PointSet.from_xy("sp", [1.0], [0.5]))
        assert [p.id for p in eligible] == ["a"]

    def test_no_points(self, ecoregions):
        assert intersecting_polygons(ecoregions, PointSet("sp")) == []

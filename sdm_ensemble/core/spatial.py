# sdm_ensemble/core/spatial.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import shapely
from scipy.spatial import cKDTree

from .points import PointSet


@dataclass(frozen=True)
class Ecoregion:
    """Полигон экорегиона с идентификатором (имя или код)."""
    id: object
    geometry: object

    @property
    def area(self) -> float:
        return float(self.geometry.area)


class SpatialPredicate(ABC):
    """Пространственное условие над набором координат: возвращает булеву маску."""

    @abstractmethod
    def test(self, xs, ys) -> np.ndarray:
        ...

    def __call__(self, xs, ys) -> np.ndarray:
        return self.test(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float))


class WithinPolygonSet(SpatialPredicate):
    """Точка лежит внутри объединения полигонов."""

    def __init__(self, polygons: Sequence[Ecoregion]):
        self.polygons = list(polygons)
        if self.polygons:
            self.union = shapely.union_all([p.geometry for p in self.polygons])
        else:
            self.union = shapely.Polygon()
        shapely.prepare(self.union)

    @property
    def area(self) -> float:
        return float(self.union.area)

    @property
    def bounds(self) -> tuple:
        return tuple(self.union.bounds)

    @property
    def is_empty(self) -> bool:
        return self.union.is_empty

    def test(self, xs, ys) -> np.ndarray:
        if self.is_empty:
            return np.zeros(np.shape(xs), dtype=bool)
        return np.asarray(shapely.contains_xy(self.union, xs, ys), dtype=bool)


class WithinBufferOf(SpatialPredicate):
    """
    Точка ближе чем buffer к какой-либо точке набора.

    Для поиска ближайшего соседа используется KD-дерево по точкам набора.
    Точка ровно на расстоянии buffer в буфер не входит.
    """

    def __init__(self, points: PointSet, buffer: float):
        if buffer < 0:
            raise ValueError(f"Радиус буфера не может быть отрицательным: {buffer}")
        self.buffer = float(buffer)
        self.tree = cKDTree(points.coords) if len(points) else None

    def distances(self, xs, ys) -> np.ndarray:
        """Расстояние до ближайшей точки набора (inf, если набор пуст)."""
        xs = np.atleast_1d(np.asarray(xs, dtype=float))
        ys = np.atleast_1d(np.asarray(ys, dtype=float))
        if self.tree is None:
            return np.full(xs.shape, np.inf)
        dist, _ = self.tree.query(np.column_stack((xs, ys)), k=1)
        return dist

    def test(self, xs, ys) -> np.ndarray:
        return self.distances(xs, ys) < self.buffer


def intersecting_polygons(polygons: Sequence[Ecoregion], points: PointSet) -> list:
    """
    Пространственное соединение: экорегионы, в которые попадает хотя бы одна точка.

    Точка на границе полигона считается попавшей в него.
    """
    if not len(points):
        return []
    xs, ys = points.xs, points.ys
    eligible = []
    for polygon in polygons:
        if np.any(shapely.intersects_xy(polygon.geometry, xs, ys)):
            eligible.append(polygon)
    return eligible

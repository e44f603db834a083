# sdm_ensemble/core/points.py
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import NamedTuple, Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd


class GeoPoint(NamedTuple):
    x: float
    y: float


class PointSource(str, Enum):
    PRESENCE = "presence"
    BACKGROUND = "background"
    PSEUDOABSENCE = "pseudoabsence"


@dataclass(frozen=True)
class PointSet:
    """
    Упорядоченный набор точек одного вида.

    Args:
        species (str): Название вида.
        points (tuple[GeoPoint]): Точки в порядке поступления.
        source (PointSource): Происхождение точек (присутствия, фон, псевдоотсутствия).
        seed (int | None): Зерно генератора, которым получены сэмплированные точки (для аудита).
        requested (int | None): Сколько точек запрашивалось у сэмплера.
    """
    species: str
    points: tuple = field(default_factory=tuple)
    source: PointSource = PointSource.PRESENCE
    seed: Optional[int] = None
    requested: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "points", tuple(GeoPoint(float(x), float(y)) for x, y in self.points))
        object.__setattr__(self, "source", PointSource(self.source))

    @classmethod
    def from_xy(cls, species: str, xs: Sequence[float], ys: Sequence[float], **kwargs) -> "PointSet":
        if len(xs) != len(ys):
            raise ValueError(f"Разная длина массивов координат: {len(xs)} и {len(ys)}")
        return cls(species, tuple(zip(xs, ys)), **kwargs)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, species: str, x_col: str = "x", y_col: str = "y", **kwargs) -> "PointSet":
        return cls.from_xy(species, df[x_col].to_numpy(dtype=float), df[y_col].to_numpy(dtype=float), **kwargs)

    def __len__(self):
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    @property
    def xs(self) -> np.ndarray:
        return np.array([p.x for p in self.points], dtype=float)

    @property
    def ys(self) -> np.ndarray:
        return np.array([p.y for p in self.points], dtype=float)

    @property
    def coords(self) -> np.ndarray:
        """Координаты в виде массива (n, 2)."""
        if not self.points:
            return np.empty((0, 2), dtype=float)
        return np.asarray(self.points, dtype=float)

    @property
    def is_partial(self) -> bool:
        return self.requested is not None and len(self.points) < self.requested

    def subset(self, indices) -> "PointSet":
        """Новый набор из точек с указанными индексами (порядок индексов сохраняется)."""
        return replace(self, points=tuple(self.points[i] for i in indices))

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            "species": [self.species] * len(self.points),
            "x": self.xs,
            "y": self.ys,
            "source": [self.source.value] * len(self.points),
        })

    def to_geodataframe(self, crs=None) -> gpd.GeoDataFrame:
        df = self.to_dataframe()
        return gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(df["x"], df["y"]), crs=crs)

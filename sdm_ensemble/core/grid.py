# sdm_ensemble/core/grid.py
from dataclasses import dataclass
from typing import Optional

import numpy as np
from rasterio.transform import from_origin

from ..exceptions import GridMismatch, OutOfBounds

# Идентификатор клетки для точек вне экстента сетки
OUT_OF_BOUNDS = -1


@dataclass(frozen=True, eq=False)
class ReferenceGrid:
    """
    Опорная сетка области моделирования: экстент, шаг и маска валидных клеток.

    Клетка невалидна, если хотя бы в одном слое-предикторе в ней нет данных.
    Нумерация клеток растровая: строка 0 - верхняя (ymax), столбец 0 - левый (xmin),
    идентификатор клетки = row * width + col. Клетка включает левую и верхнюю границы.

    Args:
        xmin, xmax, ymin, ymax (float): Экстент в координатах исследования.
        resolution (float): Размер клетки.
        valid_mask (np.ndarray | None): Булева маска (height, width); None - все клетки валидны.
        crs: Система координат (только для записи результатов).
    """
    xmin: float
    xmax: float
    ymin: float
    ymax: float
    resolution: float
    valid_mask: Optional[np.ndarray] = None
    crs: object = None

    def __post_init__(self):
        if self.resolution <= 0:
            raise ValueError(f"Шаг сетки должен быть положительным, сейчас: {self.resolution}")
        if self.xmax <= self.xmin or self.ymax <= self.ymin:
            raise ValueError(f"Некорректный экстент: ({self.xmin}, {self.xmax}, {self.ymin}, {self.ymax})")

        width = int(round((self.xmax - self.xmin) / self.resolution))
        height = int(round((self.ymax - self.ymin) / self.resolution))
        if self.valid_mask is None:
            mask = np.ones((height, width), dtype=bool)
        else:
            mask = np.asarray(self.valid_mask, dtype=bool)
            if mask.shape != (height, width):
                raise GridMismatch(f"Маска валидности {mask.shape} не совпадает с размером сетки {(height, width)}")
        mask = mask.copy()
        mask.setflags(write=False)
        object.__setattr__(self, "valid_mask", mask)

    @classmethod
    def from_stack(cls, stack: np.ndarray, transform, crs=None) -> "ReferenceGrid":
        """Строит сетку по стеку предикторов (bands, H, W) или одному слою (H, W) и его трансформации."""
        stack = np.asarray(stack, dtype="float32")
        if stack.ndim == 2:
            stack = stack[np.newaxis, ...]
        _, height, width = stack.shape
        if transform.b != 0 or transform.d != 0 or not np.isclose(transform.a, -transform.e):
            raise GridMismatch("Поддерживаются только неповёрнутые растры с квадратными пикселями")
        res = float(transform.a)
        xmin, ymax = float(transform.c), float(transform.f)
        # Маска валидных пикселей: валиден, если нет NaN во всех слоях
        valid_mask = np.all(~np.isnan(stack), axis=0)
        return cls(xmin, xmin + width * res, ymax - height * res, ymax, res, valid_mask, crs)

    @property
    def width(self) -> int:
        return self.valid_mask.shape[1]

    @property
    def height(self) -> int:
        return self.valid_mask.shape[0]

    @property
    def shape(self) -> tuple:
        return self.valid_mask.shape

    @property
    def n_cells(self) -> int:
        return self.valid_mask.size

    @property
    def transform(self):
        return from_origin(self.xmin, self.ymax, self.resolution, self.resolution)

    @property
    def bounds(self) -> tuple:
        return self.xmin, self.ymin, self.xmax, self.ymax

    def cells_of(self, xs, ys) -> np.ndarray:
        """Векторный вариант cell_of: массив идентификаторов клеток, OUT_OF_BOUNDS для точек вне сетки."""
        xs = np.atleast_1d(np.asarray(xs, dtype=float))
        ys = np.atleast_1d(np.asarray(ys, dtype=float))
        cols = np.floor((xs - self.xmin) / self.resolution)
        rows = np.floor((self.ymax - ys) / self.resolution)
        # NaN-координаты не проходят ни одно сравнение и попадают в OUT_OF_BOUNDS
        inside = (rows >= 0) & (rows < self.height) & (cols >= 0) & (cols < self.width)
        cells = np.full(xs.shape, OUT_OF_BOUNDS, dtype=np.int64)
        cells[inside] = rows[inside].astype(np.int64) * self.width + cols[inside].astype(np.int64)
        return cells

    def is_valid(self, cells) -> np.ndarray:
        """True для клеток внутри сетки, где определены все предикторы."""
        cells = np.atleast_1d(np.asarray(cells, dtype=np.int64))
        inside = (cells >= 0) & (cells < self.n_cells)
        valid = np.zeros(cells.shape, dtype=bool)
        valid[inside] = self.valid_mask.ravel()[cells[inside]]
        return valid

    def valid_cells(self) -> np.ndarray:
        return np.flatnonzero(self.valid_mask.ravel())

    def cell_rowcol(self, cell: int) -> tuple:
        if not 0 <= cell < self.n_cells:
            raise OutOfBounds(f"Клетка {cell} вне сетки {self.shape}")
        return divmod(int(cell), self.width)

    def cell_center(self, cell: int) -> tuple:
        row, col = self.cell_rowcol(cell)
        return (self.xmin + (col + 0.5) * self.resolution,
                self.ymax - (row + 0.5) * self.resolution)

    def same_geometry(self, other: "ReferenceGrid") -> bool:
        return (self.shape == other.shape
                and np.allclose(self.bounds, other.bounds)
                and np.isclose(self.resolution, other.resolution))


def cell_of(point, grid: ReferenceGrid) -> int:
    """
    Возвращает идентификатор клетки сетки, в которую попадает точка.

    Args:
        point: Пара координат (x, y).
        grid (ReferenceGrid): Опорная сетка.

    Returns:
        int: Идентификатор клетки или OUT_OF_BOUNDS, если точка вне экстента.
    """
    x, y = point
    return int(grid.cells_of([x], [y])[0])

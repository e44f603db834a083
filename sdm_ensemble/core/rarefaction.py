# sdm_ensemble/core/rarefaction.py
import logging

import numpy as np
import pandas as pd

from ..exceptions import InsufficientPoints
from .grid import OUT_OF_BOUNDS, ReferenceGrid
from .points import PointSet

logger = logging.getLogger(__name__)


def rarefy(points: PointSet, grid: ReferenceGrid, min_points: int = 0) -> PointSet:
    """
    Дедупликация по клетке сетки: оставляем по одному наблюдению на клетку.

    Выигрывает первая точка в порядке поступления. Точки вне сетки и на невалидных
    клетках (нет данных в предикторах) отбрасываются.

    Args:
        points (PointSet): Исходные присутствия вида.
        grid (ReferenceGrid): Опорная сетка с маской валидности.
        min_points (int): Минимальное число уникальных точек для дальнейшего моделирования.

    Returns:
        PointSet: Подпоследовательность исходного набора, не более одной точки на клетку.

    Raises:
        InsufficientPoints: Уникальных точек осталось меньше min_points.
    """
    cells = grid.cells_of(points.xs, points.ys)

    outside = cells == OUT_OF_BOUNDS
    if outside.any():
        logger.warning("Вид '%s': %d точек вне области моделирования отброшено", points.species, int(outside.sum()))

    valid_here = grid.is_valid(cells)
    n_invalid = int((~valid_here & ~outside).sum())
    if n_invalid:
        logger.info("Вид '%s': %d точек на пикселях без данных отброшено", points.species, n_invalid)

    # drop_duplicates сохраняет первое вхождение и исходный порядок
    candidates = pd.DataFrame({"cell": cells[valid_here]}, index=np.flatnonzero(valid_here))
    keep = candidates.drop_duplicates(subset="cell", keep="first").index.to_numpy()

    rarefied = points.subset(keep)
    logger.info("Вид '%s': уникальных присутствий (по пикселю): %d из %d",
                points.species, len(rarefied), len(points))

    if len(rarefied) < min_points:
        raise InsufficientPoints(points.species, len(rarefied), min_points)
    return rarefied

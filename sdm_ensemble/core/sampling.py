# sdm_ensemble/core/sampling.py
import logging
import warnings
from typing import Optional, Sequence

import numpy as np

from ..exceptions import PartialSample
from .grid import ReferenceGrid
from .points import GeoPoint, PointSet, PointSource
from .spatial import Ecoregion, WithinBufferOf, WithinPolygonSet, intersecting_polygons

logger = logging.getLogger(__name__)

DENSITY = "density"
ABSOLUTE = "absolute"

# Минимальный размер пачки кандидатов за одну итерацию
MIN_BATCH = 64


def target_count(dens_abs: str, value: float, area: float) -> int:
    """Сколько точек нужно: фиксированное число или плотность * площадь допустимых экорегионов."""
    if value < 0:
        raise ValueError(f"Количество/плотность точек не может быть отрицательной: {value}")
    if dens_abs == ABSOLUTE:
        return int(value)
    if dens_abs == DENSITY:
        return int(round(value * area))
    raise ValueError(f"dens_abs должен быть '{DENSITY}' или '{ABSOLUTE}', сейчас: '{dens_abs}'")


def new_seed() -> int:
    return int(np.random.SeedSequence().generate_state(1)[0])


def sample(species_points: PointSet, polygons: Sequence[Ecoregion], target: float,
           sample_type=PointSource.BACKGROUND, dens_abs: str = ABSOLUTE, buffer: Optional[float] = None,
           grid: Optional[ReferenceGrid] = None, seed: Optional[int] = None,
           max_attempts_factor: int = 100) -> PointSet:
    """
    Сэмплирует фоновые точки или точки псевдоотсутствия внутри экорегионов вида.

    1. Допустимые регионы - экорегионы, в которые попадает хотя бы одно присутствие.
    2. Кандидаты равномерно разыгрываются в охватывающем прямоугольнике и отбрасываются,
       если лежат вне объединения допустимых регионов.
    3. Для псевдоотсутствий дополнительно отбрасываются кандидаты ближе buffer к любому присутствию.
    4. Если передана сетка, отбрасываются кандидаты вне сетки и на клетках без данных.

    Args:
        species_points (PointSet): Прореженные присутствия вида.
        polygons (Sequence[Ecoregion]): Все экорегионы области исследования.
        target (float): Число точек (dens_abs='absolute') или плотность на единицу площади (dens_abs='density').
        sample_type (PointSource): BACKGROUND или PSEUDOABSENCE.
        dens_abs (str): Способ задания target.
        buffer (float | None): Радиус исключения вокруг присутствий (обязателен для псевдоотсутствий).
        grid (ReferenceGrid | None): Опорная сетка с маской валидности.
        seed (int | None): Зерно генератора; если не задано, генерируется и сохраняется в результате.
        max_attempts_factor (int): Бюджет попыток = требуемое число точек * max_attempts_factor.

    Returns:
        PointSet: Сэмплированные точки; seed и requested записаны в набор.
    """
    sample_type = PointSource(sample_type)
    if sample_type == PointSource.PRESENCE:
        raise ValueError("Сэмплер генерирует только фоновые точки и псевдоотсутствия")
    species = species_points.species

    exclusion = None
    if sample_type == PointSource.PSEUDOABSENCE:
        if buffer is None:
            raise ValueError("Для псевдоотсутствий нужно задать радиус буфера")
        exclusion = WithinBufferOf(species_points, buffer)

    eligible = intersecting_polygons(polygons, species_points)
    region = WithinPolygonSet(eligible)
    logger.info("Вид '%s': допустимых экорегионов %d из %d, площадь %.4f",
                species, len(eligible), len(polygons), region.area)

    n_target = target_count(dens_abs, target, region.area)
    if seed is None:
        seed = new_seed()
    rng = np.random.default_rng(seed)

    xs_acc, ys_acc = [], []
    n_accepted = 0
    attempts = 0
    budget = n_target * max_attempts_factor

    if not region.is_empty:
        minx, miny, maxx, maxy = region.bounds
        while n_accepted < n_target and attempts < budget:
            needed = n_target - n_accepted
            batch = min(max(needed * 2, MIN_BATCH), budget - attempts)
            xs = rng.uniform(minx, maxx, batch)
            ys = rng.uniform(miny, maxy, batch)
            attempts += batch

            accept = region(xs, ys)
            if exclusion is not None:
                accept &= ~exclusion(xs, ys)
            if grid is not None:
                accept &= grid.is_valid(grid.cells_of(xs, ys))

            idx = np.flatnonzero(accept)[:needed]
            xs_acc.append(xs[idx])
            ys_acc.append(ys[idx])
            n_accepted += len(idx)
    else:
        logger.warning("Вид '%s': ни одно присутствие не попало в экорегионы", species)

    points = ()
    if xs_acc:
        points = tuple(GeoPoint(x, y) for x, y in zip(np.concatenate(xs_acc), np.concatenate(ys_acc)))

    result = PointSet(species, points, source=sample_type, seed=seed, requested=n_target)
    logger.info("Вид '%s': сэмплировано точек (%s): %d, попыток: %d",
                species, sample_type.value, len(result), attempts)

    if result.is_partial:
        logger.warning("ВНИМАНИЕ: вид '%s': сгенерировано %d точек (%s) вместо желаемых %d",
                       species, len(result), sample_type.value, n_target)
        warnings.warn(PartialSample(species, n_target, len(result)), stacklevel=2)
    return result


def sample_background(species_points, polygons, target, dens_abs=ABSOLUTE, **kwargs) -> PointSet:
    return sample(species_points, polygons, target, PointSource.BACKGROUND, dens_abs, **kwargs)


def sample_pseudoabsence(species_points, polygons, target, buffer, dens_abs=ABSOLUTE, **kwargs) -> PointSet:
    return sample(species_points, polygons, target, PointSource.PSEUDOABSENCE, dens_abs, buffer=buffer, **kwargs)

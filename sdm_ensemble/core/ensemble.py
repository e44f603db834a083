# sdm_ensemble/core/ensemble.py
import logging
import math
from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence

import numpy as np

from ..exceptions import ConfigurationError, GridMismatch, ScenarioMismatch
from .evaluation import PRESENT

logger = logging.getLogger(__name__)

MAJORITY_PA = "majority_pa"
WEIGHTED = "weighted"
METHODS = (MAJORITY_PA, WEIGHTED)


def _frozen_array(data) -> np.ndarray:
    arr = np.array(data, dtype="float32")
    if arr.ndim != 2:
        raise ValueError(f"Ожидался двумерный растр, получено измерений: {arr.ndim}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class SuitabilityRaster:
    """Карта пригодности одной модели: непрерывные оценки, NaN - нет данных."""
    data: np.ndarray
    species: str
    model: str
    scenario: str = PRESENT
    transform: object = None
    crs: object = None

    def __post_init__(self):
        object.__setattr__(self, "data", _frozen_array(self.data))

    @property
    def shape(self) -> tuple:
        return self.data.shape

    def same_grid(self, other: "SuitabilityRaster") -> bool:
        if self.shape != other.shape:
            return False
        if self.transform is None or other.transform is None:
            return self.transform is None and other.transform is None
        return self.transform.almost_equals(other.transform)


@dataclass(frozen=True, eq=False)
class EnsembleRaster:
    """Ансамблевая карта: 0/1 (majority_pa) или взвешенная оценка 0..1 (weighted), NaN - нет данных."""
    data: np.ndarray
    species: str
    scenario: str
    method: str
    models: tuple = ()
    transform: object = None
    crs: object = None

    def __post_init__(self):
        object.__setattr__(self, "data", _frozen_array(self.data))

    @property
    def shape(self) -> tuple:
        return self.data.shape

    def profile(self) -> dict:
        """Профиль для сохранения в GeoTIFF."""
        height, width = self.shape
        return {
            "driver": "GTiff",
            "height": height,
            "width": width,
            "count": 1,
            "dtype": "float32",
            "crs": self.crs,
            "transform": self.transform,
            "compress": "lzw",
            "nodata": np.nan,
        }


class ModelOutput(NamedTuple):
    raster: SuitabilityRaster
    threshold: float
    weight: float


def binarize(raster: SuitabilityRaster, threshold: float) -> np.ndarray:
    """Присутствие (1), если оценка >= порога, иначе 0; NaN остаётся NaN."""
    data = raster.data
    out = (data >= threshold).astype("float32")
    out[np.isnan(data)] = np.nan
    return out


def _check_inputs(species, model_outputs, scenario):
    first = model_outputs[0].raster
    scenario = first.scenario if scenario is None else scenario
    for output in model_outputs:
        raster = output.raster
        if raster.species != species:
            raise ValueError(f"Растр модели '{raster.model}' относится к виду '{raster.species}', а не '{species}'")
        if raster.scenario != scenario:
            raise ScenarioMismatch(
                f"Вид '{species}': растр модели '{raster.model}' из сценария '{raster.scenario}', ожидался '{scenario}'"
            )
        if not raster.same_grid(first):
            raise GridMismatch(
                f"Вид '{species}', сценарий '{scenario}': растр модели '{raster.model}' {raster.shape} "
                f"не совпадает по геометрии с растром модели '{first.model}' {first.shape}"
            )
        if not math.isfinite(output.weight) or output.weight < 0:
            raise ValueError(f"Вес модели '{raster.model}' должен быть неотрицательным числом: {output.weight}")
    return scenario


def majority_vote(binary: np.ndarray) -> np.ndarray:
    """
    Голосование большинством по стеку (n, H, W) бинарных карт.

    Присутствие, если голосов >= ceil(n/2), где n - число моделей с данными в клетке;
    ровно половина голосов при чётном n - отсутствие.
    """
    valid = ~np.isnan(binary)
    n_valid = valid.sum(axis=0)
    votes = np.nansum(binary, axis=0)
    needed = np.ceil(n_valid / 2)
    tie = 2 * votes == n_valid
    out = ((votes >= needed) & ~tie).astype("float32")
    out[n_valid == 0] = np.nan
    return out


def weighted_mean(binary: np.ndarray, weights: Sequence[float]) -> np.ndarray:
    """Взвешенное среднее бинарных карт по моделям с данными в клетке; нулевой суммарный вес - NaN."""
    valid = ~np.isnan(binary)
    w = np.asarray(weights, dtype="float64").reshape(-1, 1, 1)
    total = np.sum(w * valid, axis=0)
    score = np.sum(w * np.nan_to_num(binary, nan=0.0), axis=0)
    out = np.full(total.shape, np.nan, dtype="float64")
    np.divide(score, total, out=out, where=total > 0)
    return out.astype("float32")


def combine(species: str, model_outputs: Sequence[ModelOutput], method: str,
            scenario: Optional[str] = None) -> EnsembleRaster:
    """
    Объединяет карты пригодности нескольких моделей одного вида и одного сценария.

    Каждая карта бинаризуется своим порогом, затем карты объединяются голосованием
    большинством (majority_pa) или средним, взвешенным по AUC (weighted).

    Args:
        species (str): Вид.
        model_outputs (Sequence[ModelOutput]): (растр, порог, вес) для каждой модели.
        method (str): 'majority_pa' или 'weighted'.
        scenario (str | None): Сценарий; по умолчанию берётся из первого растра.

    Raises:
        GridMismatch: Растры не совпадают по геометрии.
        ScenarioMismatch: Растры из разных сценариев.
    """
    if method not in METHODS:
        raise ConfigurationError(f"Неизвестный метод ансамбля: '{method}'. Допустимые: {', '.join(METHODS)}")
    model_outputs = [ModelOutput(*o) for o in model_outputs]
    if not model_outputs:
        raise ValueError(f"Вид '{species}': нет моделей для объединения")

    scenario = _check_inputs(species, model_outputs, scenario)
    binary = np.stack([binarize(o.raster, o.threshold) for o in model_outputs], axis=0)

    if method == MAJORITY_PA:
        data = majority_vote(binary)
    else:
        data = weighted_mean(binary, [o.weight for o in model_outputs])

    first = model_outputs[0].raster
    models = tuple(o.raster.model for o in model_outputs)
    logger.info("Вид '%s', сценарий '%s': ансамбль %s из моделей %s, клеток с данными: %d",
                species, scenario, method, ", ".join(models), int(np.sum(~np.isnan(data))))
    return EnsembleRaster(data, species, scenario, method, models, first.transform, first.crs)

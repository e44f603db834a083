# sdm_ensemble/sdm.py

import logging
import zlib
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .config import OutputPaths, SDMConfig
from .core.ensemble import EnsembleRaster, ModelOutput, SuitabilityRaster, combine
from .core.evaluation import EvaluationRecord, parse_criterion, select_threshold
from .core.grid import ReferenceGrid
from .core.points import PointSet, PointSource
from .core.rarefaction import rarefy
from .core.sampling import sample
from .exceptions import ConfigurationError, GridMismatch, InsufficientPoints, PipelineCancelled
from .utils.data_loader import load_reference_grid
from .utils.helpers import save_ensemble, save_evaluation_rows, save_point_set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelUnit:
    """Единица работы: одна модель одного вида в одном климатическом сценарии."""
    species: str
    scenario: str
    model: str


@dataclass(frozen=True)
class TrainingData:
    presence: PointSet
    background: Optional[PointSet] = None
    pseudoabsence: Optional[PointSet] = None


@dataclass(frozen=True)
class UnitFailure:
    species: str
    scenario: Optional[str]
    model: Optional[str]
    error: str


@dataclass
class BatchResult:
    rarefied: Dict[str, PointSet] = field(default_factory=dict)
    training: Dict[str, TrainingData] = field(default_factory=dict)
    evaluation_rows: List[dict] = field(default_factory=list)
    ensembles: List[EnsembleRaster] = field(default_factory=list)
    excluded: Dict[str, int] = field(default_factory=dict)
    failures: List[UnitFailure] = field(default_factory=list)

    def ensemble(self, species, scenario, method) -> Optional[EnsembleRaster]:
        for e in self.ensembles:
            if (e.species, e.scenario, e.method) == (species, scenario, method):
                return e
        return None


# Внешний шаг обучения классификатора: (единица, обучающие точки) -> (карта пригодности, оценка)
FitModel = Callable[[ModelUnit, TrainingData], Tuple[SuitabilityRaster, EvaluationRecord]]


def check_cancelled(should_stop: Optional[Callable[[], bool]]) -> None:
    if should_stop and should_stop():
        raise PipelineCancelled("Прогон остановлен по запросу пользователя.")


class EnsembleSDM:
    """
    Пакетный прогон: прореживание, фон/псевдоотсутствия, обучение (внешнее) и ансамбль.

    Единицы работы вид x сценарий x тип модели выполняются в пуле потоков; ансамбль
    для пары (вид, сценарий) строится, когда завершились все её типы моделей.

    Args:
        config (SDMConfig): Конфигурация прогона.
        grid (ReferenceGrid): Опорная сетка (только чтение, общая для всех единиц).
        ecoregions (list[Ecoregion]): Полигоны экорегионов (только чтение).
        write_outputs (bool): Сохранять ли результаты в config.output_dir.
    """

    def __init__(self, config: SDMConfig, grid: ReferenceGrid, ecoregions, write_outputs: bool = False):
        self.config = config
        self.grid = grid
        self.ecoregions = list(ecoregions)
        self.write_outputs = write_outputs
        # неизвестный критерий прерывает весь прогон
        self.criterion = parse_criterion(config.ensemble.threshold_criterion)

        area = config.study_area
        if not (np.isclose(grid.resolution, area.resolution)
                and np.allclose(grid.bounds, (area.xmin, area.ymin, area.xmax, area.ymax))):
            logger.warning("Опорная сетка %s (шаг %s) не совпадает с областью из конфигурации %s",
                           grid.bounds, grid.resolution, area)

        self.paths = OutputPaths(config.output_dir)
        if write_outputs:
            self.paths.ensure()

        logger.info("-- Прогон '%s': сетка %d x %d, экорегионов: %d, модели: %s, сценарии: %s",
                    config.name, grid.height, grid.width, len(self.ecoregions),
                    ", ".join(config.model_types), ", ".join(config.scenarios))

    @classmethod
    def from_rasters(cls, config: SDMConfig, raster_paths, ecoregions, write_outputs: bool = False):
        """Строит опорную сетку по растрам-предикторам, выбранным в config.predictors."""
        logger.info("-- 1. Загрузка предикторов (%s)",
                    config.predictors if isinstance(config.predictors, str) else ", ".join(config.predictors))
        grid, _, _ = load_reference_grid(raster_paths, config.predictors)
        return cls(config, grid, ecoregions, write_outputs)

    def unit_seed(self, *parts) -> int:
        """Зерно, которое зависит только от базового зерна и идентификаторов единицы работы."""
        key = zlib.crc32("|".join(str(p) for p in parts).encode("utf-8"))
        return int(np.random.SeedSequence([self.config.sampling.seed, key]).generate_state(1)[0])

    def prepare_species(self, species_points: Dict[str, PointSet]):
        """
        Прореживает присутствия каждого вида.

        Returns:
            tuple: ({вид: PointSet}, {исключённый вид: число уникальных точек})
        """
        rarefied, excluded = {}, {}
        for species, points in species_points.items():
            logger.info("-- 2. Прореживание присутствий (%s)", species)
            try:
                rarefied[species] = rarefy(points, self.grid, self.config.min_occurrences)
            except InsufficientPoints as e:
                logger.warning("%s Вид исключён из моделирования.", e)
                excluded[species] = e.count
                continue
            if self.write_outputs:
                save_point_set(self.paths.rarefied(species), rarefied[species])
        return rarefied, excluded

    def sample_training_points(self, presence: PointSet) -> TrainingData:
        """Фоновые точки и псевдоотсутствия для одного вида (по настройкам sampling)."""
        cfg = self.config.sampling
        sets = {}
        for sample_type in cfg.types:
            logger.info("-- 3. Генерация точек '%s' (%s)", sample_type, presence.species)
            sets[sample_type] = sample(
                presence, self.ecoregions, cfg.target,
                sample_type=sample_type,
                dens_abs=cfg.dens_abs,
                buffer=cfg.buffer if sample_type == PointSource.PSEUDOABSENCE.value else None,
                grid=self.grid,
                seed=self.unit_seed(presence.species, sample_type),
                max_attempts_factor=cfg.max_attempts_factor,
            )
            if self.write_outputs:
                save_point_set(self.paths.training(presence.species, sample_type), sets[sample_type])
        return TrainingData(presence, sets.get("background"), sets.get("pseudoabsence"))

    def fit_unit(self, unit: ModelUnit, training: TrainingData, fit_model: FitModel):
        raster, record = fit_model(unit, training)
        if (raster.species, raster.scenario, raster.model) != (unit.species, unit.scenario, unit.model):
            raise ValueError(f"Классификатор вернул растр ({raster.species}, {raster.scenario}, {raster.model}) "
                             f"для единицы {unit}")
        if raster.shape != self.grid.shape:
            raise GridMismatch(f"Растр {unit} размером {raster.shape} не совпадает с опорной сеткой {self.grid.shape}")
        return raster, record

    def combine_scenario(self, species: str, scenario: str, fitted) -> List[EnsembleRaster]:
        """Строит ансамбли всех настроенных методов для одного вида и одного сценария."""
        logger.info("-- 5. Ансамбль (%s, %s)", species, scenario)
        outputs = []
        for raster, record in fitted:
            cutoff, weight = select_threshold(record, self.criterion, self.config.ensemble.sensitivity)
            outputs.append(ModelOutput(raster, cutoff, weight))

        ensembles = []
        for method in self.config.ensemble.methods:
            ensemble = combine(species, outputs, method, scenario)
            if self.write_outputs:
                path = self.paths.ensemble(species, scenario, method)
                save_ensemble(path, ensemble)
                logger.info("Ансамбль сохранён: %s", path)
            ensembles.append(ensemble)
        return ensembles

    def run(self, species_points: Dict[str, PointSet], fit_model: FitModel,
            should_stop: Optional[Callable[[], bool]] = None) -> BatchResult:
        """
        Полный прогон для всех видов, сценариев и типов моделей.

        Ошибки отдельных видов и единиц работы записываются в result.failures и не
        останавливают остальные; ошибки конфигурации прерывают прогон.
        """
        result = BatchResult()
        result.rarefied, result.excluded = self.prepare_species(species_points)

        for species, presence in result.rarefied.items():
            check_cancelled(should_stop)
            try:
                result.training[species] = self.sample_training_points(presence)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.error("Вид '%s': ошибка генерации фоновых точек: %s", species, e)
                result.failures.append(UnitFailure(species, None, None, str(e)))

        groups = {}
        for species in result.training:
            for scenario in self.config.scenarios:
                groups[(species, scenario)] = [ModelUnit(species, scenario, m) for m in self.config.model_types]

        logger.info("-- 4. Обучение моделей: единиц работы %d", sum(len(u) for u in groups.values()))
        fitted = {key: [] for key in groups}
        evaluated = []
        remaining = {key: len(units) for key, units in groups.items()}

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            futures = {
                pool.submit(self.fit_unit, unit, result.training[unit.species], fit_model): unit
                for units in groups.values() for unit in units
            }
            pending = set(futures)
            try:
                while pending:
                    check_cancelled(should_stop)
                    done, pending = wait(pending, timeout=1.0, return_when=FIRST_COMPLETED)
                    for future in done:
                        unit = futures[future]
                        key = (unit.species, unit.scenario)
                        try:
                            raster, record = future.result()
                            fitted[key].append((raster, record))
                            evaluated.append((unit, record))
                        except ConfigurationError:
                            raise
                        except Exception as e:
                            logger.error("Единица (%s, %s, %s) завершилась с ошибкой: %s",
                                         unit.species, unit.scenario, unit.model, e)
                            result.failures.append(UnitFailure(unit.species, unit.scenario, unit.model, str(e)))

                        remaining[key] -= 1
                        if remaining[key] == 0:
                            self._combine_group(key, fitted.pop(key), result)
            except (PipelineCancelled, ConfigurationError):
                for future in pending:
                    future.cancel()
                raise

        # результаты приходят в порядке завершения; упорядочиваем для воспроизводимости
        species_order = {s: i for i, s in enumerate(result.training)}
        scenario_order = {s: i for i, s in enumerate(self.config.scenarios)}
        model_order = {m: i for i, m in enumerate(self.config.model_types)}
        method_order = {m: i for i, m in enumerate(self.config.ensemble.methods)}
        evaluated.sort(key=lambda ur: (species_order[ur[0].species], scenario_order[ur[0].scenario],
                                       model_order[ur[0].model]))
        # строка оценки относится к сценарию единицы работы, а не к тому, что записал классификатор
        result.evaluation_rows = [{**record.to_row(), "scenario": unit.scenario} for unit, record in evaluated]
        result.ensembles.sort(key=lambda e: (species_order[e.species], scenario_order[e.scenario],
                                             method_order[e.method]))

        if self.write_outputs:
            save_evaluation_rows(self.paths.evaluation_csv, result.evaluation_rows)
            save_evaluation_rows(self.paths.excluded_csv,
                                 [{"species": s, "n_unique": n} for s, n in result.excluded.items()])

        logger.info("-- Прогон завершён: ансамблей %d, исключено видов %d, ошибок %d",
                    len(result.ensembles), len(result.excluded), len(result.failures))
        return result

    def _combine_group(self, key, fitted, result: BatchResult) -> None:
        species, scenario = key
        if not fitted:
            logger.error("Вид '%s', сценарий '%s': нет ни одной обученной модели, ансамбль не строится",
                         species, scenario)
            return
        if len(fitted) < len(self.config.model_types):
            logger.warning("Вид '%s', сценарий '%s': ансамбль строится по %d из %d моделей",
                           species, scenario, len(fitted), len(self.config.model_types))
        # порядок моделей как в конфигурации, а не в порядке завершения
        order = {m: i for i, m in enumerate(self.config.model_types)}
        fitted = sorted(fitted, key=lambda rr: order[rr[0].model])
        try:
            result.ensembles.extend(self.combine_scenario(species, scenario, fitted))
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Вид '%s', сценарий '%s': ошибка построения ансамбля: %s", species, scenario, e)
            result.failures.append(UnitFailure(species, scenario, None, str(e)))

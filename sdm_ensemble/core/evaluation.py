# sdm_ensemble/core/evaluation.py
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, NamedTuple, Optional

import numpy as np
from sklearn.metrics import roc_auc_score

from ..exceptions import MissingStatistic, UnknownCriterion

PRESENT = "present"
DEFAULT_SENSITIVITY = 0.9


class Criterion(str, Enum):
    KAPPA = "kappa"                      # максимум каппы Коэна
    SPEC_SENS = "spec_sens"              # максимум суммы чувствительности и специфичности
    NO_OMISSION = "no_omission"          # наибольший порог без пропущенных присутствий
    PREVALENCE = "prevalence"            # модельная встречаемость ближе всего к наблюдаемой
    EQUAL_SENS_SPEC = "equal_sens_spec"  # чувствительность ~ специфичность
    SENSITIVITY = "sensitivity"          # заданная чувствительность


def parse_criterion(name) -> Criterion:
    try:
        return Criterion(name)
    except ValueError:
        raise UnknownCriterion(name) from None


@dataclass(frozen=True, eq=False)
class ThresholdCurve:
    """
    Статистики классификации для каждого кандидата в пороги.

    Порог t означает: оценка >= t -> присутствие.
    """
    cutoffs: np.ndarray
    tpr: np.ndarray            # чувствительность
    tnr: np.ndarray            # специфичность
    kappa: np.ndarray
    prevalence: np.ndarray     # модельная встречаемость
    observed_prevalence: float

    def cutoff_for(self, criterion, sensitivity: float = DEFAULT_SENSITIVITY) -> float:
        criterion = parse_criterion(criterion)
        if criterion == Criterion.KAPPA:
            i = np.argmax(self.kappa)
        elif criterion == Criterion.SPEC_SENS:
            i = np.argmax(self.tpr + self.tnr)
        elif criterion == Criterion.NO_OMISSION:
            # tpr не возрастает с ростом порога: берём последний порог с tpr == 1
            i = np.flatnonzero(self.tpr >= 1.0)[-1]
        elif criterion == Criterion.PREVALENCE:
            i = np.argmin(np.abs(self.prevalence - self.observed_prevalence))
        elif criterion == Criterion.EQUAL_SENS_SPEC:
            i = np.argmin(np.abs(self.tpr - self.tnr))
        else:
            i = np.argmin(np.abs(self.tpr - sensitivity))
        return float(self.cutoffs[i])


def threshold_curve(presence_scores, absence_scores) -> ThresholdCurve:
    """Строит кривую порогов по оценкам модели в тестовых присутствиях и отсутствиях."""
    p = np.asarray(presence_scores, dtype=float)
    a = np.asarray(absence_scores, dtype=float)
    p = p[~np.isnan(p)]
    a = a[~np.isnan(a)]
    if p.size == 0 or a.size == 0:
        raise ValueError("Для оценки нужны хотя бы одно присутствие и одно отсутствие")

    cutoffs = np.unique(np.concatenate((p, a)))
    n_p, n_a = p.size, a.size
    n = n_p + n_a

    # число оценок >= порога через сортировку
    tp = n_p - np.searchsorted(np.sort(p), cutoffs, side="left")
    fp = n_a - np.searchsorted(np.sort(a), cutoffs, side="left")
    fn = n_p - tp
    tn = n_a - fp

    pr_a = (tp + tn) / n
    pr_y = ((tp + fp) * (tp + fn) + (fn + tn) * (fp + tn)) / n ** 2
    with np.errstate(divide="ignore", invalid="ignore"):
        kappa = np.where(pr_y < 1, (pr_a - pr_y) / (1 - pr_y), 0.0)

    return ThresholdCurve(
        cutoffs=cutoffs,
        tpr=tp / n_p,
        tnr=tn / n_a,
        kappa=kappa,
        prevalence=(tp + fp) / n,
        observed_prevalence=n_p / n,
    )


@dataclass(frozen=True, eq=False)
class EvaluationRecord:
    """
    Результат оценки одной модели одного вида.

    Args:
        species (str): Вид.
        model (str): Тип модели (envelope, glm, rf, ...).
        auc (float | None): ROC AUC на отложенной выборке.
        thresholds (Mapping[str, float]): Порог для каждого критерия.
        scenario (str): Климатический сценарий, на котором оценивалась модель.
        curve (ThresholdCurve | None): Полная кривая порогов, если доступна.
        sensitivity_target (float): Целевая чувствительность, для которой посчитан порог 'sensitivity'.
    """
    species: str
    model: str
    auc: Optional[float]
    thresholds: Mapping[str, float] = field(default_factory=dict)
    scenario: str = PRESENT
    curve: Optional[ThresholdCurve] = None
    sensitivity_target: float = DEFAULT_SENSITIVITY
    n_presence: Optional[int] = None
    n_absence: Optional[int] = None

    def to_row(self) -> dict:
        row = {
            "species": self.species,
            "model": self.model,
            "scenario": self.scenario,
            "auc": self.auc,
            "n_presence": self.n_presence,
            "n_absence": self.n_absence,
        }
        for criterion in Criterion:
            row[criterion.value] = self.thresholds.get(criterion.value)
        return row


def evaluate(presence_scores, absence_scores, species: str, model: str, scenario: str = PRESENT,
             sensitivity: float = DEFAULT_SENSITIVITY) -> EvaluationRecord:
    """
    Считает AUC и пороги по всем критериям из оценок модели в тестовых точках.

    Модель не переобучается: на вход идут готовые предсказания.
    """
    curve = threshold_curve(presence_scores, absence_scores)
    p = np.asarray(presence_scores, dtype=float)
    a = np.asarray(absence_scores, dtype=float)
    p = p[~np.isnan(p)]
    a = a[~np.isnan(a)]

    y_true = np.hstack([np.ones(p.size, dtype=int), np.zeros(a.size, dtype=int)])
    auc = float(roc_auc_score(y_true, np.concatenate((p, a))))
    thresholds = {c.value: curve.cutoff_for(c, sensitivity) for c in Criterion}

    return EvaluationRecord(species, model, auc, thresholds, scenario, curve, sensitivity,
                            n_presence=int(p.size), n_absence=int(a.size))


class ThresholdSelection(NamedTuple):
    cutoff: float
    weight: float


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, (float, np.floating)) and math.isnan(value))


def select_threshold(record: EvaluationRecord, criterion, sensitivity: Optional[float] = None) -> ThresholdSelection:
    """
    Выбирает порог классификации по критерию и возвращает его вместе с весом модели (AUC).

    Args:
        record (EvaluationRecord): Оценка модели.
        criterion (str | Criterion): Название критерия.
        sensitivity (float | None): Целевая чувствительность для критерия 'sensitivity';
            если отличается от той, что записана в оценке, порог пересчитывается по кривой.

    Raises:
        UnknownCriterion: Неизвестное название критерия.
        MissingStatistic: В записи нет AUC или данных для критерия.
    """
    criterion = parse_criterion(criterion)
    weight = record.auc
    if _is_missing(weight):
        raise MissingStatistic(criterion.value, "auc")

    recompute = (criterion == Criterion.SENSITIVITY and sensitivity is not None
                 and not math.isclose(sensitivity, record.sensitivity_target))
    cutoff = None if recompute else record.thresholds.get(criterion.value)

    if _is_missing(cutoff):
        if record.curve is None:
            raise MissingStatistic(criterion.value, "threshold curve" if recompute else criterion.value)
        target = sensitivity if sensitivity is not None else record.sensitivity_target
        cutoff = record.curve.cutoff_for(criterion, target)

    return ThresholdSelection(float(cutoff), float(weight))

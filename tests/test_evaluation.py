import math

import numpy as np
import pytest

from sdm_ensemble.core.evaluation import (Criterion, EvaluationRecord, evaluate, parse_criterion, select_threshold,
                                          threshold_curve)
from sdm_ensemble.exceptions import ConfigurationError, MissingStatistic, UnknownCriterion

PRESENCE = [0.7, 0.8, 0.9]
ABSENCE = [0.1, 0.2, 0.3]


@pytest.fixture
def record():
    return evaluate(PRESENCE, ABSENCE, "sp", "glm")


class TestThresholdCurve:
    def test_rates(self):
        curve = threshold_curve(PRESENCE, ABSENCE)
        np.testing.assert_allclose(curve.cutoffs, [0.1, 0.2, 0.3, 0.7, 0.8, 0.9])
        np.testing.assert_allclose(curve.tpr, [1, 1, 1, 1, 2 / 3, 1 / 3])
        np.testing.assert_allclose(curve.tnr, [0, 1 / 3, 2 / 3, 1, 1, 1])
        assert curve.observed_prevalence == pytest.approx(0.5)
        assert curve.kappa[3] == pytest.approx(1.0)

    def test_nan_scores_ignored(self):
        curve = threshold_curve(PRESENCE + [np.nan], ABSENCE)
        assert len(curve.cutoffs) == 6

    def test_needs_both_classes(self):
        with pytest.raises(ValueError):
            threshold_curve(PRESENCE, [])


class TestEvaluate:
    def test_auc_and_counts(self, record):
        assert record.auc == pytest.approx(1.0)
        assert (record.n_presence, record.n_absence) == (3, 3)
        assert record.scenario == "present"

    @pytest.mark.parametrize("criterion, expected", [
        ("kappa", 0.7),
        ("spec_sens", 0.7),
        ("no_omission", 0.7),
        ("prevalence", 0.7),
        ("equal_sens_spec", 0.7),
        ("sensitivity", 0.1),
    ])
    def test_thresholds(self, record, criterion, expected):
        assert record.thresholds[criterion] == pytest.approx(expected)

    def test_to_row(self, record):
        row = record.to_row()
        assert row["species"] == "sp"
        assert row["model"] == "glm"
        assert set(c.value for c in Criterion) <= set(row)


class TestSelectThreshold:
    def test_returns_cutoff_and_auc(self, record):
        cutoff, weight = select_threshold(record, "spec_sens")
        assert cutoff == pytest.approx(0.7)
        assert weight == pytest.approx(1.0)

    def test_idempotent(self, record):
        assert select_threshold(record, Criterion.KAPPA) == select_threshold(record, Criterion.KAPPA)

    def test_sensitivity_recomputed_for_other_target(self, record):
        assert select_threshold(record, "sensitivity", 0.6).cutoff == pytest.approx(0.8)
        assert select_threshold(record, "sensitivity", 0.9).cutoff == pytest.approx(0.1)

    def test_unknown_criterion(self, record):
        with pytest.raises(UnknownCriterion) as exc_info:
            select_threshold(record, "youden")
        assert exc_info.value.name == "youden"
        assert isinstance(exc_info.value, ConfigurationError)

    def test_missing_threshold(self):
        record = EvaluationRecord("sp", "rf", 0.8, {"spec_sens": 0.4})
        with pytest.raises(MissingStatistic) as exc_info:
            select_threshold(record, "kappa")
        assert exc_info.value.criterion == "kappa"

    @pytest.mark.parametrize("auc", [None, float("nan")])
    def test_missing_auc(self, auc):
        record = EvaluationRecord("sp", "rf", auc, {"spec_sens": 0.4})
        with pytest.raises(MissingStatistic):
            select_threshold(record, "spec_sens")

    def test_sensitivity_without_curve(self):
        record = EvaluationRecord("sp", "rf", 0.8, {"sensitivity": 0.4})
        assert select_threshold(record, "sensitivity", 0.9).cutoff == pytest.approx(0.4)
        with pytest.raises(MissingStatistic):
            select_threshold(record, "sensitivity", 0.6)

    def test_nan_threshold_falls_back_to_curve(self, record):
        patched = EvaluationRecord("sp", "glm", record.auc, {"kappa": math.nan}, curve=record.curve)
        assert select_threshold(patched, "kappa").cutoff == pytest.approx(0.7)


def test_parse_criterion():
    assert parse_criterion("no_omission") is Criterion.NO_OMISSION
    with pytest.raises(UnknownCriterion):
        parse_criterion("max_tss")

# sdm_ensemble/config.py
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .core.ensemble import METHODS
from .core.evaluation import DEFAULT_SENSITIVITY, PRESENT, Criterion, parse_criterion
from .exceptions import ConfigurationError


class StudyArea(BaseModel):
    xmin: float
    xmax: float
    ymin: float
    ymax: float
    resolution: float = Field(gt=0)

    @model_validator(mode="after")
    def validate_extent(self) -> "StudyArea":
        if self.xmin >= self.xmax or self.ymin >= self.ymax:
            raise ValueError(f"Некорректный экстент области: x [{self.xmin}, {self.xmax}], y [{self.ymin}, {self.ymax}]")
        return self


class SamplingConfig(BaseModel):
    dens_abs: Literal["density", "absolute"] = "absolute"
    count: int = Field(default=10000, ge=0)
    density: float = Field(default=0.0, ge=0)
    buffer: float = Field(default=0.0, ge=0)
    types: List[Literal["background", "pseudoabsence"]] = ["background", "pseudoabsence"]
    max_attempts_factor: int = Field(default=100, gt=0)
    seed: int = 42

    @property
    def target(self) -> float:
        return self.count if self.dens_abs == "absolute" else self.density


class EnsembleConfig(BaseModel):
    methods: List[str] = list(METHODS)
    threshold_criterion: str = Criterion.SPEC_SENS.value
    sensitivity: float = Field(default=DEFAULT_SENSITIVITY, gt=0, le=1)

    @field_validator("methods")
    @classmethod
    def methods_known(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("Список методов ансамбля не может быть пустым")
        unknown = [m for m in value if m not in METHODS]
        if unknown:
            raise ValueError(f"Неизвестные методы ансамбля: {unknown}. Допустимые: {list(METHODS)}")
        return value

    @field_validator("threshold_criterion")
    @classmethod
    def criterion_known(cls, value: str) -> str:
        # UnknownCriterion проходит через pydantic без обёртки в ValidationError
        return parse_criterion(value).value


class SDMConfig(BaseModel):
    name: str
    study_area: StudyArea
    min_occurrences: int = Field(default=20, ge=0)
    predictors: List[str] | Literal["all"] = "all"
    model_types: List[str] = ["envelope", "glm", "rf"]
    scenarios: List[str] = [PRESENT]
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    ensemble: EnsembleConfig = Field(default_factory=EnsembleConfig)
    output_dir: str = "output"
    workers: int = Field(default=os.cpu_count() or 1, gt=0)

    @field_validator("model_types", "scenarios")
    @classmethod
    def not_empty_unique(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("Список не может быть пустым")
        if len(set(value)) != len(value):
            raise ValueError(f"Значения не должны повторяться: {value}")
        return value


class OutputPaths:
    """Все пути результатов определяются один раз при старте; у каждого (вид, сценарий, метод) свой файл."""

    def __init__(self, output_dir):
        self.root = Path(output_dir)
        self.rarefied_dir = self.root / "rarefied"
        self.training_dir = self.root / "background"
        self.ensemble_dir = self.root / "ensemble"
        self.evaluation_csv = self.root / "evaluation.csv"
        self.excluded_csv = self.root / "excluded_species.csv"

    @staticmethod
    def safe_name(name: str) -> str:
        return re.sub(r"[^\w.-]+", "_", str(name).strip())

    def ensure(self) -> "OutputPaths":
        for d in (self.rarefied_dir, self.training_dir, self.ensemble_dir):
            d.mkdir(parents=True, exist_ok=True)
        return self

    def rarefied(self, species: str) -> Path:
        return self.rarefied_dir / f"{self.safe_name(species)}.csv"

    def training(self, species: str, sample_type: str) -> Path:
        return self.training_dir / f"{self.safe_name(species)}_{sample_type}.csv"

    def ensemble(self, species: str, scenario: str, method: str) -> Path:
        return self.ensemble_dir / self.safe_name(species) / f"{self.safe_name(scenario)}_{method}.tif"


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _merge(base_defaults: Dict[str, Any], section: Dict[str, Any]) -> SDMConfig:
    merged = dict(base_defaults)
    for key, value in section.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    try:
        return SDMConfig(**merged)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


def load_config(config_path: str, base_config_path: str | None = None) -> Tuple[SDMConfig, Dict[str, Any]]:
    """
    Загружает конфигурацию прогона из YAML.

    Файл содержит секцию `sdm` и, опционально, `logging`. Общие значения по умолчанию
    можно вынести в базовый файл с секцией `defaults`.
    """
    data = _load_yaml(Path(config_path))
    base_data = _load_yaml(Path(base_config_path)) if base_config_path else {}
    logging_cfg = {**base_data.get("logging", {}), **data.get("logging", {})}
    return _merge(base_data.get("defaults", {}), data.get("sdm", {})), logging_cfg


def load_config_from_dict(section: Dict[str, Any], base_config_path: str | None = None) -> Tuple[SDMConfig, Dict[str, Any]]:
    """То же, что load_config, но секция `sdm` передаётся словарём."""
    base_path = Path(base_config_path) if base_config_path else None
    base_data = _load_yaml(base_path) if base_path and base_path.exists() else {}
    return _merge(base_data.get("defaults", {}), section), base_data.get("logging", {})

import pytest
import yaml

from sdm_ensemble.config import EnsembleConfig, OutputPaths, SDMConfig, load_config, load_config_from_dict
from sdm_ensemble.exceptions import ConfigurationError, UnknownCriterion

SECTION = {
    "name": "test_run",
    "study_area": {"xmin": 0, "xmax": 10, "ymin": 0, "ymax": 10, "resolution": 1.0},
    "model_types": ["glm", "rf"],
    "scenarios": ["present", "rcp85"],
    "sampling": {"count": 100, "buffer": 0.5},
}


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        config, logging_cfg = load_config(write_yaml(tmp_path / "run.yml", {"sdm": SECTION}))
        assert isinstance(config, SDMConfig)
        assert config.min_occurrences == 20
        assert config.sampling.count == 100
        assert config.sampling.dens_abs == "absolute"
        assert config.sampling.target == 100
        assert config.ensemble.methods == ["majority_pa", "weighted"]
        assert config.ensemble.threshold_criterion == "spec_sens"
        assert logging_cfg == {}

    def test_base_defaults_merged(self, tmp_path):
        base = write_yaml(tmp_path / "base.yml", {
            "defaults": {"min_occurrences": 5, "sampling": {"seed": 7, "count": 10}},
            "logging": {"level": "DEBUG"},
        })
        run = write_yaml(tmp_path / "run.yml", {"sdm": SECTION, "logging": {"format": "%(message)s"}})
        config, logging_cfg = load_config(run, base)
        assert config.min_occurrences == 5
        assert config.sampling.seed == 7
        assert config.sampling.count == 100
        assert logging_cfg == {"level": "DEBUG", "format": "%(message)s"}

    def test_from_dict(self):
        config, _ = load_config_from_dict({**SECTION, "ensemble": {"methods": ["weighted"]}})
        assert config.ensemble.methods == ["weighted"]
        assert config.scenarios == ["present", "rcp85"]

    def test_density_target(self):
        config, _ = load_config_from_dict({**SECTION, "sampling": {"dens_abs": "density", "density": 0.5}})
        assert config.sampling.target == 0.5

    def test_unknown_criterion(self):
        with pytest.raises(UnknownCriterion):
            load_config_from_dict({**SECTION, "ensemble": {"threshold_criterion": "max_tss"}})

    def test_unknown_criterion_in_models(self):
        with pytest.raises(UnknownCriterion) as exc_info:
            EnsembleConfig(threshold_criterion="max_tss")
        assert exc_info.value.name == "max_tss"
        with pytest.raises(UnknownCriterion):
            SDMConfig(**{**SECTION, "ensemble": {"threshold_criterion": "youden"}})

    def test_unknown_criterion_in_yaml(self, tmp_path):
        section = {**SECTION, "ensemble": {"threshold_criterion": "max_tss"}}
        with pytest.raises(UnknownCriterion):
            load_config(write_yaml(tmp_path / "run.yml", {"sdm": section}))

    @pytest.mark.parametrize("patch", [
        {"study_area": {"xmin": 10, "xmax": 0, "ymin": 0, "ymax": 10, "resolution": 1.0}},
        {"study_area": {"xmin": 0, "xmax": 10, "ymin": 0, "ymax": 10, "resolution": 0}},
        {"ensemble": {"methods": ["mean"]}},
        {"model_types": []},
        {"scenarios": ["present", "present"]},
        {"sampling": {"dens_abs": "area"}},
    ])
    def test_invalid(self, patch):
        with pytest.raises(ConfigurationError):
            load_config_from_dict({**SECTION, **patch})


class TestOutputPaths:
    def test_unique_per_species_scenario_method(self, tmp_path):
        paths = OutputPaths(tmp_path)
        combos = [(sp, sc, m) for sp in ("Lynx lynx", "Ursus arctos")
                  for sc in ("present", "rcp85") for m in ("majority_pa", "weighted")]
        files = {paths.ensemble(*c) for c in combos}
        assert len(files) == len(combos)
        assert paths.ensemble("Lynx lynx", "present", "weighted") == \
            tmp_path / "ensemble" / "Lynx_lynx" / "present_weighted.tif"

    def test_ensure(self, tmp_path):
        paths = OutputPaths(tmp_path / "out").ensure()
        assert paths.rarefied_dir.is_dir()
        assert paths.training_dir.is_dir()
        assert paths.ensemble_dir.is_dir()
        assert paths.training("Lynx lynx", "background").name == "Lynx_lynx_background.csv"

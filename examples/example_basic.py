# examples/example_basic.py
#
# Полный прогон на синтетических данных: два экорегиона, один предиктор,
# две модели (случайный лес и логистическая регрессия) и два сценария.

import numpy as np
from rasterio.transform import from_origin
from shapely.geometry import box
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import train_test_split

from sdm_ensemble import Ecoregion, EnsembleSDM, PointSet, ReferenceGrid, SuitabilityRaster, evaluate
from sdm_ensemble.config import load_config_from_dict
from sdm_ensemble.utils.logging import setup_logging

RANDOM_SEED = 42
H, W, RES = 50, 100, 0.1

config, logging_cfg = load_config_from_dict({
    "name": "example",
    "study_area": {"xmin": 0.0, "xmax": W * RES, "ymin": 0.0, "ymax": H * RES, "resolution": RES},
    "min_occurrences": 20,
    "model_types": ["rf", "glm"],
    "scenarios": ["present", "SSP245_2041-2060"],
    "sampling": {"dens_abs": "absolute", "count": 300, "buffer": 0.3, "seed": RANDOM_SEED},
    "ensemble": {"methods": ["majority_pa", "weighted"], "threshold_criterion": "spec_sens"},
    "output_dir": "output/example",
    "workers": 2,
})
setup_logging(logging_cfg)

# температура растёт с запада на восток; в будущем сценарии на 1.5 градуса теплее
transform = from_origin(0.0, H * RES, RES, RES)
temperature = np.tile(np.linspace(0, 20, W, dtype="float32"), (H, 1))
temperature[:5, :5] = np.nan  # клетки без данных
stacks = {"present": temperature[np.newaxis], "SSP245_2041-2060": (temperature + 1.5)[np.newaxis]}
grid = ReferenceGrid.from_stack(stacks["present"], transform)

ecoregions = [Ecoregion("west", box(0, 0, 5, 5)), Ecoregion("east", box(5, 0, 10, 5))]

rng = np.random.default_rng(RANDOM_SEED)
xs = rng.uniform(3.0, 6.0, 200)
ys = rng.uniform(0.5, 4.5, 200)
occurrences = {"Species exemplaris": PointSet.from_xy("Species exemplaris", xs, ys)}


def extract(stack, points):
    cells = grid.cells_of(points.xs, points.ys)
    rows, cols = np.divmod(cells, grid.width)
    return stack[:, rows, cols].T


def fit_model(unit, training):
    """Внешний классификатор: обучение на текущем климате, прогноз на климат сценария."""
    stack = stacks["present"]
    X_pres = extract(stack, training.presence)
    X_abs = extract(stack, training.pseudoabsence)
    X = np.vstack([X_pres, X_abs])
    y = np.hstack([np.ones(len(X_pres), dtype=int), np.zeros(len(X_abs), dtype=int)])
    X_train, X_test, y_train, y_test = train_test_split(X, y, test_size=0.2, stratify=y, random_state=RANDOM_SEED)

    if unit.model == "rf":
        model = RandomForestClassifier(n_estimators=200, random_state=RANDOM_SEED, class_weight="balanced_subsample")
    else:
        model = LogisticRegression(max_iter=1000)
    model.fit(X_train, y_train)

    prob = model.predict_proba(X_test)[:, 1]
    record = evaluate(prob[y_test == 1], prob[y_test == 0], unit.species, unit.model, unit.scenario)

    future = stacks[unit.scenario]
    suitability = np.full(grid.shape, np.nan, dtype="float32")
    flat = future.reshape(future.shape[0], -1).T
    valid_idx = grid.valid_cells()
    suitability.ravel()[valid_idx] = model.predict_proba(flat[valid_idx])[:, 1]
    raster = SuitabilityRaster(suitability, unit.species, unit.model, unit.scenario, transform)
    return raster, record


if __name__ == "__main__":
    sdm = EnsembleSDM(config, grid, ecoregions, write_outputs=True)
    result = sdm.run(occurrences, fit_model)

    print("\nМоделирование завершено. Результаты сохранены в:", config.output_dir)
    for ensemble in result.ensembles:
        presence = np.nanmean(ensemble.data)
        print(f"- {ensemble.species} / {ensemble.scenario} / {ensemble.method}: среднее {presence:.3f}")
    for failure in result.failures:
        print(f"! {failure}")

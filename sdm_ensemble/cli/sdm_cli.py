# sdm_ensemble/cli/sdm_cli.py
import argparse
import logging
import sys
import warnings
from pathlib import Path

from ..config import OutputPaths
from ..core.ensemble import METHODS, ModelOutput, combine
from ..core.evaluation import Criterion, select_threshold
from ..core.points import PointSource
from ..core.rarefaction import rarefy
from ..core.sampling import ABSOLUTE, DENSITY, sample
from ..exceptions import ConfigurationError, InsufficientPoints, PartialSample, SDMError
from ..utils.data_loader import (load_ecoregions, load_evaluation_table, load_occurrences, load_point_set,
                                 load_reference_grid, load_suitability_raster)
from ..utils.helpers import format_float, save_ensemble, save_point_set
from ..utils.logging import setup_logging

logger = logging.getLogger("sdm")


def cmd_rarefy(args) -> int:
    grid, _, _ = load_reference_grid(args.rasters, args.predictors)
    occurrences = load_occurrences(args.occurrences, species=args.species)
    status = 0
    for species, points in occurrences.items():
        try:
            rarefied = rarefy(points, grid, args.min_occurrences)
        except InsufficientPoints as e:
            logger.warning("%s", e)
            status = 2
            continue
        out_path = Path(args.out) / f"{OutputPaths.safe_name(species)}.csv"
        save_point_set(out_path, rarefied)
        print(f"{species}: {len(rarefied)} -> {out_path}")
    return status


def cmd_sample(args) -> int:
    presence = load_point_set(args.rarefied)
    ecoregions = load_ecoregions(args.ecoregions, args.id_column)
    grid = load_reference_grid(args.raster)[0] if args.raster else None
    if args.density is not None:
        dens_abs, target = DENSITY, args.density
    else:
        dens_abs, target = ABSOLUTE, args.count

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", PartialSample)
        points = sample(presence, ecoregions, target, args.type, dens_abs,
                        buffer=args.buffer, grid=grid, seed=args.seed)
    save_point_set(args.out, points, grid.crs if grid is not None else None)
    print(f"{presence.species}: {len(points)} ({args.type}, seed={points.seed}) -> {args.out}")
    if any(issubclass(w.category, PartialSample) for w in caught):
        print(f"Внимание: запрошено {points.requested}, получено {len(points)}")
    return 0


def find_record(records, species, model, scenario):
    """Единственная запись оценки для (вид, модель, сценарий)."""
    matches = [r for r in records if (r.species, r.model, r.scenario) == (species, model, scenario)]
    if not matches:
        raise ConfigurationError(f"В таблице оценок нет модели '{model}' для вида '{species}' "
                                 f"в сценарии '{scenario}'")
    if len(matches) > 1:
        raise ConfigurationError(f"В таблице оценок {len(matches)} строк для ({species}, {model}, {scenario})")
    return matches[0]


def cmd_ensemble(args) -> int:
    records = load_evaluation_table(args.evaluation)
    outputs = []
    for item in args.raster:
        model, _, path = item.partition("=")
        if not path:
            raise ConfigurationError(f"Ожидалось MODEL=PATH, получено: '{item}'")
        record = find_record(records, args.species, model, args.scenario)
        cutoff, weight = select_threshold(record, args.criterion, args.sensitivity)
        print(f"{model}: порог={format_float(cutoff)}, AUC={format_float(weight)}")
        raster = load_suitability_raster(path, args.species, model, args.scenario)
        outputs.append(ModelOutput(raster, cutoff, weight))

    ensemble = combine(args.species, outputs, args.method, args.scenario)
    save_ensemble(args.out, ensemble)
    print(f"Ансамбль ({args.method}) сохранён: {args.out}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="sdm", description="Прореживание, фоновые точки и ансамбли моделей ареалов")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("rarefy", help="оставить по одной точке на клетку сетки")
    p.add_argument("occurrences")
    p.add_argument("rasters", nargs="+", help="GeoTIFF-предикторы, задающие сетку и маску")
    p.add_argument("--predictors", default="all", help="имена слоёв через запятую или 'all'")
    p.add_argument("--species", default=None)
    p.add_argument("--min-occurrences", type=int, default=20)
    p.add_argument("--out", required=True, help="папка для CSV")
    p.set_defaults(func=cmd_rarefy)

    p = sub.add_parser("sample", help="фоновые точки или псевдоотсутствия в экорегионах вида")
    p.add_argument("rarefied")
    p.add_argument("ecoregions")
    p.add_argument("--id-column", required=True)
    p.add_argument("--type", choices=[PointSource.BACKGROUND.value, PointSource.PSEUDOABSENCE.value],
                   default=PointSource.BACKGROUND.value)
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--count", type=int)
    target.add_argument("--density", type=float)
    p.add_argument("--buffer", type=float, default=None)
    p.add_argument("--raster", default=None, help="GeoTIFF для маски валидных клеток")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--out", required=True, help="CSV или векторный слой (.gpkg, .geojson, .shp)")
    p.set_defaults(func=cmd_sample)

    p = sub.add_parser("ensemble", help="объединить карты пригодности нескольких моделей")
    p.add_argument("evaluation", help="CSV с колонками species, model, auc и порогами по критериям")
    p.add_argument("--species", required=True)
    p.add_argument("--scenario", default="present")
    p.add_argument("--method", choices=METHODS, default=METHODS[0])
    p.add_argument("--criterion", choices=[c.value for c in Criterion], default=Criterion.SPEC_SENS.value)
    p.add_argument("--sensitivity", type=float, default=None)
    p.add_argument("--raster", action="append", required=True, metavar="MODEL=PATH")
    p.add_argument("--out", required=True)
    p.set_defaults(func=cmd_ensemble)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging({"level": args.log_level})
    try:
        return args.func(args)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2
    except (SDMError, FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())

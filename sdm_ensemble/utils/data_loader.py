import logging
import os

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio

from ..core.ensemble import SuitabilityRaster
from ..core.evaluation import PRESENT, Criterion, EvaluationRecord
from ..core.grid import ReferenceGrid
from ..core.points import PointSet, PointSource
from ..core.spatial import Ecoregion
from ..exceptions import ConfigurationError, GridMismatch

logger = logging.getLogger(__name__)

# Пары (широта, долгота) в порядке приоритета: последняя найденная побеждает
COORD_COLUMNS = [
    ("lat", "lon"),
    ("Latitude", "Longitude"),
    ("latitude", "longitude"),
    ("decimalLatitude", "decimalLongitude"),
]


def detect_coordinate_columns(df):
    """Определяет названия колонок с координатами. Возвращает (LAT_COL, LON_COL)."""
    found = None
    for lat_col, lon_col in COORD_COLUMNS:
        if lat_col in df.columns and lon_col in df.columns:
            found = (lat_col, lon_col)
    if found is None:
        raise ValueError("Ошибка обработки csv: не найдены колонки с координатами. "
                         f"Ожидались пары: {', '.join('/'.join(p) for p in COORD_COLUMNS)}")
    return found


def read_occurrence_table(source):
    """Читает таблицу наблюдений из файла (табуляция или запятая) или возвращает копию DataFrame."""
    if isinstance(source, pd.DataFrame):
        return source.copy()
    if not os.path.isfile(source):
        raise FileNotFoundError(f"Файл наблюдений не найден: {source}")
    df = pd.read_csv(source, sep=None, engine="python", index_col=False, on_bad_lines="skip")
    if df.empty:
        raise ValueError(f"Входной файл пустой: {source}")
    return df


def load_occurrences(source, species=None):
    """
    Загружает наблюдения и возвращает по набору присутствий на каждый вид.

    Фильтрует мусорные записи GBIF (неопределённость координат >= 1000 м, коллекция EOA)
    и некорректные координаты.

    Args:
        source: Путь к CSV/TSV или DataFrame.
        species (str | None): Название вида, если в таблице нет колонки species.

    Returns:
        dict: {вид: PointSet}, в порядке первого появления вида в таблице.
    """
    df = read_occurrence_table(source)
    lat_col, lon_col = detect_coordinate_columns(df)
    logger.info("Всего загружено записей: %d", len(df))

    # Фильтрация мусорных данных из GBIF
    if "coordinateUncertaintyInMeters" in df.columns:
        uncertainty = pd.to_numeric(df["coordinateUncertaintyInMeters"], errors="coerce").fillna(0)
        df = df[uncertainty < 1000]
    if "collectionCode" in df.columns:
        df = df[df["collectionCode"] != "EOA"]

    df = df.assign(**{
        lat_col: pd.to_numeric(df[lat_col], errors="coerce"),
        lon_col: pd.to_numeric(df[lon_col], errors="coerce"),
    })
    df = df.dropna(subset=[lon_col, lat_col])
    # Базовая фильтрация координат
    df = df[(df[lon_col] >= -180) & (df[lon_col] <= 180) & (df[lat_col] >= -90) & (df[lat_col] <= 90)]
    df = df.reset_index(drop=True)
    logger.info("Осталось записей после фильтрации: %d", len(df))

    if species is not None:
        return {species: PointSet.from_dataframe(df, species, lon_col, lat_col)}
    if "species" not in df.columns:
        raise ValueError("В таблице нет колонки species; передайте название вида явно")

    df = df.dropna(subset=["species"])
    return {
        name: PointSet.from_dataframe(group, name, lon_col, lat_col)
        for name, group in df.groupby("species", sort=False)
    }


def load_point_set(path, species=None, source=PointSource.PRESENCE):
    """Читает набор точек, записанный save_point_set (колонки species, x, y)."""
    df = pd.read_csv(path)
    if species is None:
        names = df["species"].dropna().unique() if "species" in df.columns else []
        if len(names) != 1:
            raise ValueError(f"В файле {path} должен быть ровно один вид, найдено: {len(names)}")
        species = names[0]
    seed = int(df["seed"].iloc[0]) if "seed" in df.columns and len(df) else None
    return PointSet.from_dataframe(df, species, "x", "y", source=source, seed=seed)


def _read_band(path):
    with rasterio.open(path) as ds:
        arr = ds.read(1, masked=True).astype("float32")  # masked -> маскирует nodata
        arr = np.ma.filled(arr, np.nan)                  # превращаем masked в np.nan
        return arr, ds.transform, ds.crs


def select_predictors(raster_paths, predictors="all"):
    """
    Фильтрует растры по списку предикторов (имя файла без .tif) и сохраняет порядок из списка.

    Args:
        raster_paths (list[str]): Пути ко всем доступным растрам.
        predictors (str | list[str]): 'all', список имён или строка имён через запятую.
    """
    if isinstance(predictors, str):
        if predictors.strip().lower() == "all":
            return list(raster_paths)
        predictors = predictors.split(",")
    by_name = {os.path.splitext(os.path.basename(fp))[0]: fp for fp in raster_paths}
    names = [p.strip() for p in predictors]
    if not names:
        raise ConfigurationError("Список предикторов пуст")
    missing = [name for name in names if name not in by_name]
    if missing:
        raise ConfigurationError(f"Не найдены растры предикторов: {', '.join(missing)}. "
                                 f"Доступны: {', '.join(by_name)}")
    return [by_name[name] for name in names]


def load_reference_grid(raster_paths, predictors="all"):
    """
    Считывает GeoTIFF-предикторы и строит опорную сетку с маской валидности.

    Все растры должны совпадать по трансформации, размеру и CRS. Если задан список
    predictors, берутся только эти слои и в этом порядке.

    Returns:
        tuple: (ReferenceGrid, stack (bands, H, W), band_names)
    """
    if isinstance(raster_paths, (str, os.PathLike)):
        raster_paths = [raster_paths]
    if not raster_paths:
        raise FileNotFoundError("Не передано ни одного растра-предиктора")
    raster_paths = select_predictors(raster_paths, predictors)

    band_arrays = []
    band_names = []
    ref_transform = ref_crs = ref_shape = None
    for i, fp in enumerate(raster_paths):
        arr, transform, crs = _read_band(fp)
        if i == 0:
            ref_transform, ref_crs, ref_shape = transform, crs, arr.shape
        else:
            # Проверки согласованности
            if transform != ref_transform or arr.shape != ref_shape:
                raise GridMismatch(f"Растр {fp} не согласован по геометрии с первым растром")
            if crs != ref_crs:
                raise GridMismatch(f"Растр {fp} имеет другой CRS: {crs} vs {ref_crs}")
        band_arrays.append(arr)
        band_names.append(os.path.splitext(os.path.basename(fp))[0])

    stack = np.stack(band_arrays, axis=0)
    grid = ReferenceGrid.from_stack(stack, ref_transform, ref_crs)
    logger.info("Загружено предикторов: %d | Размер: %d x %d | CRS: %s | валидных клеток: %d",
                len(band_names), grid.height, grid.width, ref_crs, int(grid.valid_mask.sum()))
    return grid, stack, band_names


def load_suitability_raster(path, species, model, scenario=PRESENT):
    arr, transform, crs = _read_band(path)
    return SuitabilityRaster(arr, species, model, scenario, transform, crs)


def load_ecoregions(source, id_column):
    """Читает полигоны экорегионов (путь к векторному файлу или GeoDataFrame)."""
    gdf = source if isinstance(source, gpd.GeoDataFrame) else gpd.read_file(source)
    if id_column not in gdf.columns:
        raise ValueError(f"В слое экорегионов нет колонки '{id_column}'")
    gdf = gdf[~(gdf.geometry.isna() | gdf.geometry.is_empty)]
    return [Ecoregion(row_id, geom) for row_id, geom in zip(gdf[id_column], gdf.geometry)]


def load_evaluation_table(source):
    """
    Читает таблицу оценок моделей (формат EvaluationRecord.to_row) в список записей.

    Пустые ячейки критериев считаются отсутствующей статистикой.
    """
    df = source.copy() if isinstance(source, pd.DataFrame) else pd.read_csv(source)
    missing = {"species", "model", "auc"} - set(df.columns)
    if missing:
        raise ValueError(f"В таблице оценок нет колонок: {sorted(missing)}")

    records = []
    for row in df.to_dict("records"):
        thresholds = {c.value: row[c.value] for c in Criterion
                      if c.value in row and not pd.isna(row[c.value])}
        auc = None if pd.isna(row["auc"]) else float(row["auc"])
        scenario = row.get("scenario")
        records.append(EvaluationRecord(
            species=row["species"],
            model=row["model"],
            auc=auc,
            thresholds=thresholds,
            scenario=PRESENT if scenario is None or pd.isna(scenario) else scenario,
        ))
    return records

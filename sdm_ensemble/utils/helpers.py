import os

import numpy as np
import pandas as pd
import rasterio

VECTOR_EXTENSIONS = (".gpkg", ".geojson", ".shp")


def save_geotiff(output_path, array2d, profile):
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    prof = profile.copy()
    with rasterio.open(output_path, "w", **prof) as dst:
        dst.write(np.asarray(array2d).astype("float32"), 1)


def save_ensemble(output_path, ensemble):
    """Записывает ансамблевую карту в GeoTIFF; NaN - nodata."""
    save_geotiff(output_path, ensemble.data, ensemble.profile())


def save_point_set(output_path, point_set, crs=None):
    """
    Сохраняет набор точек: CSV с колонками species, x, y, source или векторный слой
    (.gpkg, .geojson, .shp) с точечной геометрией. Зерно сэмплера пишется в отдельную колонку.
    """
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    vector = os.path.splitext(str(output_path))[1].lower() in VECTOR_EXTENSIONS
    df = point_set.to_geodataframe(crs) if vector else point_set.to_dataframe()
    if point_set.seed is not None:
        df["seed"] = point_set.seed
    if vector:
        df.to_file(output_path)
    else:
        df.to_csv(output_path, index=False)


def save_evaluation_rows(output_path, rows):
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    pd.DataFrame(list(rows)).to_csv(output_path, index=False)


def format_float(value: float) -> str:
    """
    Форматирует число с плавающей точкой для отображения (убирает лишние нули).
    """
    return f"{value:.4f}".rstrip('0').rstrip('.')

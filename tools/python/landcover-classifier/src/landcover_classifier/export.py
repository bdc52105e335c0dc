"""
Exporters
=========
Output writers for a finished classification:

* classified GeoTIFF (integer codes, nodata value, colour map, class
  names in tags) and its reader,
* polygon vectors of the classified raster,
* a point CSV (``PLOTID``, ``LON``, ``LAT`` plus class fields) for
  photo-interpretation tools,
* a JSON run report.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
import pyproj
import rasterio
from rasterio.errors import RasterioIOError
from rasterio.features import shapes
from shapely.geometry import shape

from shared.python.exceptions import OutputWriteError, RasterError
from shared.python.validators import Validators

from landcover_classifier.raster import Raster
from landcover_classifier.sampling import SampleTable

logger = logging.getLogger("geoclassify.landcover_classifier.export")

# Band types for class codes, narrowest first.  Nodata is the maximum of an
# unsigned type and the minimum of a signed one.
CODE_DTYPES = ("uint8", "int16", "uint16", "int32")

VECTOR_DRIVERS = {
    ".geojson": "GeoJSON",
    ".json": "GeoJSON",
    ".gpkg": "GPKG",
    ".shp": "ESRI Shapefile",
}


def _code_dtype(codes: np.ndarray, path: Path) -> tuple[str, int]:
    """Narrowest integer type holding *codes* plus a nodata value none of them uses."""
    if codes.size == 0:
        return "uint8", int(np.iinfo("uint8").max)
    low, high = codes.min(), codes.max()
    for dtype in CODE_DTYPES:
        info = np.iinfo(dtype)
        if info.min == 0:
            if low >= 0 and high < info.max:
                return dtype, int(info.max)
        elif low > info.min and high <= info.max:
            return dtype, int(info.min)
    raise OutputWriteError(
        str(path),
        f"class codes {low:g}..{high:g} do not fit a 32-bit integer band with a free nodata value",
    )


def _hex_to_rgba(colour: str) -> tuple[int, int, int, int]:
    value = colour.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Palette colour '{colour}' is not RRGGBB hex.")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16), 255


# ---------------------------------------------------------------------------
# Classified raster
# ---------------------------------------------------------------------------


def write_classified(
    classified: Raster,
    path: Path,
    *,
    palette: Mapping[int, str] | None = None,
    class_names: Mapping[int, str] | None = None,
) -> Path:
    """Write *classified* as a single-band LZW GeoTIFF.

    The band type is the narrowest of ``uint8``, ``int16``, ``uint16`` and
    ``int32`` that holds every valid code while leaving a nodata value
    (the type's maximum when unsigned, its minimum when signed) unused.
    Codes 0..254 therefore give ``uint8`` with nodata 255, the only type
    that also carries the colour map.

    Args:
        classified: Classified raster (invalid pixels become nodata).
        path: Destination ``.tif``.
        palette: Class code → ``"#RRGGBB"``.
        class_names: Class code → label, stored as ``CLASS_<code>`` tags.

    Raises:
        OutputWriteError: If the codes fit no supported band type or the
            file cannot be written.
    """
    path = Path(path)
    Validators.assert_output_dir_writable(path.parent)

    codes = classified.data[classified.mask]
    dtype, nodata = _code_dtype(codes, path)
    out = np.where(classified.mask, classified.data, nodata).astype(dtype)

    profile = {
        "driver": "GTiff",
        "height": classified.height,
        "width": classified.width,
        "count": 1,
        "dtype": dtype,
        "crs": classified.crs,
        "transform": classified.transform,
        "nodata": nodata,
        "compress": "lzw",
    }
    try:
        with rasterio.open(path, "w", **profile) as dst:
            dst.write(out, 1)
            if class_names:
                dst.update_tags(**{f"CLASS_{k}": v for k, v in class_names.items()})
            if palette and dtype == "uint8":
                dst.write_colormap(1, {int(k): _hex_to_rgba(v) for k, v in palette.items()})
    except (RasterioIOError, OSError, ValueError) as exc:
        raise OutputWriteError(str(path), str(exc)) from exc

    logger.info("Classified raster written → %s (%s, nodata=%s)", path, dtype, nodata)
    return path


def read_classified(path: Path) -> tuple[Raster, dict[int, str]]:
    """Read a raster written by :func:`write_classified`.

    Returns:
        The classified raster and its ``{code: name}`` table.
    """
    path = Path(path)
    Validators.assert_file_exists(path)
    try:
        with rasterio.open(path) as src:
            array = src.read(1, masked=True)
            raster = Raster.from_array(array, src.transform, src.crs, nodata=src.nodata)
            tags = src.tags()
    except RasterioIOError as exc:
        raise RasterError(f"Could not read classified raster '{path}': {exc}") from exc
    names = {
        int(key[len("CLASS_"):]): value
        for key, value in tags.items()
        if key.startswith("CLASS_") and key[len("CLASS_"):].lstrip("-").isdigit()
    }
    return raster, names


# ---------------------------------------------------------------------------
# Vectors
# ---------------------------------------------------------------------------


def vectorize(
    classified: Raster,
    class_values: Iterable[int] | None = None,
    class_names: Mapping[int, str] | None = None,
) -> gpd.GeoDataFrame:
    """Polygonise connected regions of equal class.

    Returns a GeoDataFrame with ``class`` (and ``name`` when
    *class_names* is given) in the raster CRS.
    """
    wanted = None if class_values is None else {int(v) for v in class_values}
    codes = np.where(classified.mask, classified.data, 0).astype(np.int32)

    records: list[dict[str, Any]] = []
    for geom, value in shapes(codes, mask=classified.mask, transform=classified.transform):
        code = int(value)
        if wanted is not None and code not in wanted:
            continue
        record: dict[str, Any] = {"class": code, "geometry": shape(geom)}
        if class_names is not None:
            record["name"] = class_names.get(code, str(code))
        records.append(record)

    columns = ["class", "name", "geometry"] if class_names is not None else ["class", "geometry"]
    crs = classified.crs.to_wkt() if classified.crs is not None else None
    if not records:
        return gpd.GeoDataFrame(columns=columns, geometry="geometry", crs=crs)
    logger.info("Vectorised %d polygon(s)", len(records))
    return gpd.GeoDataFrame(records, columns=columns, geometry="geometry", crs=crs)


def write_vectors(gdf: gpd.GeoDataFrame, path: Path) -> Path | None:
    """Write *gdf*; the driver follows the file extension.

    An empty frame is skipped (``None`` is returned).
    """
    path = Path(path)
    Validators.assert_supported_extension(path, list(VECTOR_DRIVERS))
    Validators.assert_output_dir_writable(path.parent)
    if gdf.empty:
        logger.warning("No features to write; skipping %s", path.name)
        return None
    try:
        gdf.to_file(path, driver=VECTOR_DRIVERS[path.suffix.lower()])
    except (OSError, ValueError) as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    logger.info("Vectors written → %s (%d features)", path, len(gdf))
    return path


# ---------------------------------------------------------------------------
# Point CSV
# ---------------------------------------------------------------------------


def export_points_csv(
    source: SampleTable | gpd.GeoDataFrame,
    path: Path,
    class_fields: Sequence[str] = (),
) -> Path:
    """Write sample locations as ``PLOTID, LON, LAT, <class_fields...>``.

    ``PLOTID`` numbers rows from 1.  Coordinates are WGS84 degrees.
    Non-point geometries contribute a representative interior point.

    Raises:
        ColumnNotFoundError: If a class field is missing.
        OutputWriteError: If the CSV cannot be written.
    """
    path = Path(path)
    Validators.assert_output_dir_writable(path.parent)

    if isinstance(source, SampleTable):
        frame = source.frame
        xs = frame["x"].to_numpy(dtype=float)
        ys = frame["y"].to_numpy(dtype=float)
        crs = source.crs.to_wkt() if source.crs is not None else "EPSG:4326"
    else:
        frame = pd.DataFrame(source.drop(columns=source.geometry.name))
        points = source.geometry.representative_point()
        xs = points.x.to_numpy(dtype=float)
        ys = points.y.to_numpy(dtype=float)
        crs = source.crs if source.crs is not None else "EPSG:4326"

    Validators.assert_columns_exist(frame, list(class_fields))
    transformer = pyproj.Transformer.from_crs(crs, "EPSG:4326", always_xy=True)
    lon, lat = transformer.transform(xs, ys)

    out = pd.DataFrame({
        "PLOTID": np.arange(1, len(frame) + 1),
        "LON": np.asarray(lon, dtype=float),
        "LAT": np.asarray(lat, dtype=float),
    })
    for name in class_fields:
        out[name] = frame[name].to_numpy()

    try:
        out.to_csv(path, index=False)
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    logger.info("Point CSV written → %s (%d plots)", path, len(out))
    return path


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serialisable")


def write_report(report: Mapping[str, Any], path: Path) -> Path:
    """Dump *report* as indented JSON."""
    path = Path(path)
    Validators.assert_output_dir_writable(path.parent)
    try:
        with path.open("w", encoding="utf-8") as fh:
            json.dump(report, fh, indent=2, default=_json_default)
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    logger.info("Report written → %s", path)
    return path

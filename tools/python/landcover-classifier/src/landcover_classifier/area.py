"""
Area Reducer
============
Projection-aware area sums over class masks.

Pixel area is never assumed constant unless the projection guarantees it:

* projected CRS: every cell has the same area, ``|a·e - b·d|`` times the
  square of the linear unit's metre factor;
* geographic CRS: each row gets its own geodesic cell area, computed on
  the CRS ellipsoid with :class:`pyproj.Geod`.
"""

from __future__ import annotations

import logging
from typing import Iterable, Union

import geopandas as gpd
import numpy as np
import numpy.typing as npt
import pyproj
from rasterio.features import geometry_mask
from shapely.geometry.base import BaseGeometry

from shared.python.exceptions import ConfigurationError, InputValidationError

from landcover_classifier.raster import Raster

logger = logging.getLogger("geoclassify.landcover_classifier.area")

UNITS: dict[str, float] = {
    "m2": 1.0,
    "ha": 10_000.0,
    "km2": 1_000_000.0,
}

Region = Union[BaseGeometry, gpd.GeoDataFrame, gpd.GeoSeries]


def _unit_divisor(units: str) -> float:
    try:
        return UNITS[units]
    except KeyError:
        raise ConfigurationError(
            f"Unknown area unit '{units}'. Valid options: {', '.join(UNITS)}"
        ) from None


def pixel_area(raster: Raster) -> npt.NDArray[np.float64]:
    """Per-pixel area in square metres, shape ``raster.shape``.

    Raises:
        InputValidationError: If the raster has no CRS.
    """
    if raster.crs is None:
        raise InputValidationError("Raster has no CRS; pixel area is undefined.")
    crs = pyproj.CRS.from_user_input(raster.crs.to_wkt())
    t = raster.transform

    if not crs.is_geographic:
        factor = crs.axis_info[0].unit_conversion_factor if crs.axis_info else 1.0
        cell = abs(t.a * t.e - t.b * t.d) * factor * factor
        return np.full(raster.shape, cell, dtype=np.float64)

    geod = crs.get_geod() or pyproj.Geod(ellps="WGS84")
    rows = np.empty(raster.height, dtype=np.float64)
    for row in range(raster.height):
        corners = [t * (0, row), t * (1, row), t * (1, row + 1), t * (0, row + 1)]
        lons = [c[0] for c in corners]
        lats = [c[1] for c in corners]
        area, _ = geod.polygon_area_perimeter(lons, lats)
        rows[row] = abs(area)
    return np.repeat(rows[:, None], raster.width, axis=1)


def pixel_width(raster: Raster) -> float:
    """Ground width of one pixel in metres.

    Geographic grids use the geodesic width of the pixel at the centre of
    the raster, so the value is only representative near that latitude.

    Raises:
        InputValidationError: If the raster has no CRS.
    """
    if raster.crs is None:
        raise InputValidationError("Raster has no CRS; pixel size is undefined.")
    crs = pyproj.CRS.from_user_input(raster.crs.to_wkt())
    t = raster.transform

    if not crs.is_geographic:
        factor = crs.axis_info[0].unit_conversion_factor if crs.axis_info else 1.0
        return float(np.hypot(t.a, t.d)) * factor

    geod = crs.get_geod() or pyproj.Geod(ellps="WGS84")
    row, col = raster.height // 2, raster.width // 2
    lon0, lat0 = t * (col, row + 0.5)
    lon1, lat1 = t * (col + 1, row + 0.5)
    _, _, distance = geod.inv(lon0, lat0, lon1, lat1)
    return float(distance)


def region_mask(raster: Raster, region: Region) -> npt.NDArray[np.bool_]:
    """``True`` for pixels whose centre lies inside *region*.

    GeoDataFrames / GeoSeries are reprojected to the raster CRS; a bare
    shapely geometry is taken to be in the raster CRS already.
    """
    if isinstance(region, (gpd.GeoDataFrame, gpd.GeoSeries)):
        if region.crs is not None and raster.crs is not None:
            region = region.to_crs(raster.crs.to_wkt())
        geometries = [g for g in region.geometry if g is not None and not g.is_empty]
    else:
        geometries = [region]
    if not geometries:
        return np.zeros(raster.shape, dtype=bool)
    return geometry_mask(
        geometries, out_shape=raster.shape, transform=raster.transform, invert=True
    )


def class_area(
    classified: Raster,
    class_value: int,
    region: Region | None = None,
    units: str = "ha",
    *,
    areas: npt.NDArray[np.float64] | None = None,
) -> float:
    """Area of valid pixels of *class_value*, optionally inside *region*.

    Args:
        classified: Classified raster.
        class_value: Class code to sum.
        region: Restrict to pixels whose centre is inside this geometry.
        units: ``"m2"``, ``"ha"`` or ``"km2"``.
        areas: Precomputed :func:`pixel_area` (reused across classes).
    """
    divisor = _unit_divisor(units)
    selected = classified.mask & (classified.data == class_value)
    if region is not None:
        selected &= region_mask(classified, region)
    if areas is None:
        areas = pixel_area(classified)
    return float(areas[selected].sum() / divisor)


def area_by_class(
    classified: Raster,
    classes: Iterable[int] | None = None,
    region: Region | None = None,
    units: str = "ha",
) -> dict[int, float]:
    """:func:`class_area` for every class (default: every class present)."""
    _unit_divisor(units)
    if classes is None:
        classes = np.unique(classified.data[classified.mask]).astype(np.int64).tolist()
    areas = pixel_area(classified)
    mask = region_mask(classified, region) if region is not None else None
    result: dict[int, float] = {}
    for code in classes:
        selected = classified.mask & (classified.data == code)
        if mask is not None:
            selected &= mask
        result[int(code)] = float(areas[selected].sum() / UNITS[units])
        logger.info("  class %d: %.4f %s", code, result[int(code)], units)
    return result

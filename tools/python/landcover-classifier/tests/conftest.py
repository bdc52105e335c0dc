"""
Shared fixtures for the land-cover classifier tests.

All rasters are synthetic: small numpy arrays on a 30 m UTM zone 36N grid
(the Cairo zone), written to ``tmp_path`` with rasterio where a test
needs real files.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Callable

import geopandas as gpd
import numpy as np
import numpy.typing as npt
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import Affine, from_origin
from shapely.geometry import box

from landcover_classifier.raster import BandStack, Raster, Scene

UTM36N = CRS.from_epsg(32636)
ORIGIN_X, ORIGIN_Y = 300000.0, 3330600.0
PIXEL = 30.0
SIZE = 20

GRID: Affine = from_origin(ORIGIN_X, ORIGIN_Y, PIXEL, PIXEL)


def pixel_box(col0: int, row0: int, col1: int, row1: int):
    """Polygon covering pixel columns ``col0..col1-1`` and rows ``row0..row1-1``."""
    return box(
        ORIGIN_X + col0 * PIXEL,
        ORIGIN_Y - row1 * PIXEL,
        ORIGIN_X + col1 * PIXEL,
        ORIGIN_Y - row0 * PIXEL,
    )


@pytest.fixture
def make_raster() -> Callable[..., Raster]:
    """Factory: ``make_raster(values, mask=None, transform=GRID, crs=UTM36N)``."""

    def _make(
        values: npt.ArrayLike,
        mask: npt.ArrayLike | None = None,
        transform: Affine = GRID,
        crs: CRS | None = UTM36N,
    ) -> Raster:
        return Raster.from_array(np.asarray(values, dtype=float), transform, crs, mask=mask)

    return _make


@pytest.fixture
def two_class_stack() -> BandStack:
    """20×20 stack: left half bright red / dark NIR (class 0), right half
    dark red / bright NIR (class 1), with a little deterministic noise."""
    rng = np.random.default_rng(7)
    red = np.where(np.arange(SIZE)[None, :] < SIZE // 2, 0.30, 0.05) * np.ones((SIZE, SIZE))
    nir = np.where(np.arange(SIZE)[None, :] < SIZE // 2, 0.10, 0.50) * np.ones((SIZE, SIZE))
    red = red + rng.normal(0, 0.005, red.shape)
    nir = nir + rng.normal(0, 0.005, nir.shape)
    return BandStack.from_arrays({"red": red, "nir": nir}, GRID, UTM36N)


@pytest.fixture
def two_class_training() -> gpd.GeoDataFrame:
    """One polygon per half of :func:`two_class_stack` (8×18 px each)."""
    return gpd.GeoDataFrame(
        {"landcover": [0, 1]},
        geometry=[pixel_box(1, 1, 9, 19), pixel_box(11, 1, 19, 19)],
        crs="EPSG:32636",
    )


@pytest.fixture
def write_scene() -> Callable[..., Path]:
    """Factory writing one multi-band GeoTIFF scene.

    ``write_scene(directory, filename, {"red": arr, ...}, tags=None, nodata=None)``
    stores band names as band descriptions.
    """

    def _write(
        directory: Path,
        filename: str,
        bands: dict[str, npt.ArrayLike],
        tags: dict[str, str] | None = None,
        nodata: float | None = None,
        transform: Affine = GRID,
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        arrays = [np.asarray(v, dtype="float32") for v in bands.values()]
        height, width = arrays[0].shape
        path = directory / filename
        profile = {
            "driver": "GTiff",
            "dtype": "float32",
            "count": len(arrays),
            "height": height,
            "width": width,
            "crs": UTM36N,
            "transform": transform,
            "nodata": nodata,
        }
        with rasterio.open(path, "w", **profile) as dst:
            for index, (name, arr) in enumerate(zip(bands, arrays), start=1):
                dst.write(arr, index)
                dst.set_band_description(index, name)
            if tags:
                dst.update_tags(**tags)
        return path

    return _write


@pytest.fixture
def make_scene(make_raster: Callable[..., Raster]) -> Callable[..., Scene]:
    """Factory: ``make_scene(date, {"red": arr, ...}, quality=None)``."""

    def _make(
        acquired: date,
        bands: dict[str, npt.ArrayLike],
        quality: npt.ArrayLike | None = None,
    ) -> Scene:
        stack = BandStack({name: make_raster(values) for name, values in bands.items()})
        qa = make_raster(quality) if quality is not None else None
        return Scene(stack, acquired, qa)

    return _make

"""
Temporal Compositor
===================
Reduces a masked :class:`SceneCollection` to one :class:`BandStack`.

For every pixel and band the composite value is the median (or mean) of
the valid observations at that pixel; a pixel with no valid observation
stays invalid.  Bands are reduced on a thread pool and rows can be
processed in tiles to bound memory.  Because the reducer is strictly
per-pixel, neither tiling nor threading changes the result.
"""

from __future__ import annotations

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Literal

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import ConfigurationError, InputValidationError
from shared.python.validators import Validators

from landcover_classifier.raster import BandStack, Raster, SceneCollection

logger = logging.getLogger("geoclassify.landcover_classifier.composite")

Reducer = Literal["median", "mean"]

_REDUCERS = {
    "median": np.nanmedian,
    "mean": np.nanmean,
}


def _common_bands(collection: SceneCollection, bands: Iterable[str] | None) -> list[str]:
    """Bands to composite; every scene must carry them on the same grid."""
    first = collection[0].bands
    names = first.band_names if bands is None else list(bands)
    for scene in collection:
        Validators.assert_bands_present(names, scene.bands.band_names)
        Validators.assert_same_grid(
            first.shape, scene.bands.shape,
            first.transform, scene.bands.transform,
            first.crs, scene.bands.crs,
        )
    return names


def _reduce_band(
    collection: SceneCollection,
    band: str,
    reducer: Reducer,
    tile_rows: int | None,
) -> Raster:
    reference = collection[0].bands[band]
    height = reference.height
    step = tile_rows or height
    func = _REDUCERS[reducer]
    out = np.full(reference.shape, np.nan, dtype=np.float64)

    for top in range(0, height, step):
        rows = slice(top, min(top + step, height))
        cube = np.stack([scene.bands[band].data[rows] for scene in collection], axis=0)
        with warnings.catch_warnings():
            # All-NaN pixels are expected; they stay NaN (invalid).
            warnings.simplefilter("ignore", category=RuntimeWarning)
            out[rows] = func(cube, axis=0)

    return reference.with_data(out)


def median_composite(
    collection: SceneCollection,
    bands: Iterable[str] | None = None,
    *,
    reducer: Reducer = "median",
    tile_rows: int | None = None,
    max_workers: int | None = None,
) -> BandStack:
    """Composite *collection* into one stack.

    Args:
        collection: Scenes, already cloud-masked.
        bands: Bands to composite (default: all bands of the first scene).
        reducer: ``"median"`` or ``"mean"``.
        tile_rows: Process this many rows at a time (``None``: whole band).
        max_workers: Thread-pool size for band-parallel reduction.

    Raises:
        InputValidationError: If *collection* is empty.
        BandNotFoundError: If a scene lacks a requested band.
        GeometryMismatchError: If scenes are on different grids.
        ConfigurationError: For an unknown reducer or bad ``tile_rows``.
    """
    if reducer not in _REDUCERS:
        raise ConfigurationError(
            f"Unknown reducer '{reducer}'. Valid options: {', '.join(_REDUCERS)}"
        )
    if tile_rows is not None:
        Validators.assert_in_range("tile_rows", tile_rows, 1)
    if len(collection) == 0:
        raise InputValidationError(
            "Cannot composite an empty scene collection. "
            "Widen the date range or check the region filter."
        )

    names = _common_bands(collection, bands)
    logger.info(
        "Compositing %d scene(s), %d band(s) with %s reducer",
        len(collection), len(names), reducer,
    )

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        rasters = list(pool.map(
            lambda name: _reduce_band(collection, name, reducer, tile_rows), names
        ))

    composite = BandStack(dict(zip(names, rasters)))
    for name in names:
        logger.debug("  %s: %d valid pixel(s)", name, composite[name].valid_count)
    return composite


def observation_count(
    collection: SceneCollection,
    bands: Iterable[str] | None = None,
) -> npt.NDArray[np.int64]:
    """Number of scenes in which every band in *bands* is valid, per pixel."""
    if len(collection) == 0:
        return np.zeros((0, 0), dtype=np.int64)
    names = _common_bands(collection, bands)
    counts = np.zeros(collection[0].bands.shape, dtype=np.int64)
    for scene in collection:
        counts += scene.bands.valid_mask(names)
    return counts

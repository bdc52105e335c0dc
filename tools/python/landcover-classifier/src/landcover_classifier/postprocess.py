"""
Post-classification Filter
==========================
Masks applied to a classified raster after prediction:

* connected-component cleanup (pixels of identical class joined by 4- or
  8-connectivity; components at or below a size threshold are dropped),
* class keep / exclude masks,
* threshold masks against an auxiliary raster (``elevation < 80``,
  ``NDVI > 0.15``).

Masks only ever remove pixels.  Several masks combine with logical AND.
"""

from __future__ import annotations

import logging
import operator
from typing import Callable, Iterable

import numpy as np
import numpy.typing as npt
from scipy.ndimage import generate_binary_structure, label as ndi_label

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators

from landcover_classifier.raster import Raster

logger = logging.getLogger("geoclassify.landcover_classifier.postprocess")

BoolArray = npt.NDArray[np.bool_]

COMPARISONS: dict[str, Callable[[np.ndarray, float], np.ndarray]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


def _structure(connectivity: int) -> np.ndarray:
    if connectivity == 4:
        return generate_binary_structure(2, 1)
    if connectivity == 8:
        return generate_binary_structure(2, 2)
    raise ConfigurationError(f"connectivity must be 4 or 8 (got {connectivity}).")


def _class_codes(classified: Raster) -> npt.NDArray[np.int64]:
    return np.unique(classified.data[classified.mask]).astype(np.int64)


# ---------------------------------------------------------------------------
# Connected components
# ---------------------------------------------------------------------------


def connected_pixel_count(
    classified: Raster,
    connectivity: int = 8,
    max_size: int | None = None,
) -> npt.NDArray[np.int64]:
    """Size of the same-class component each valid pixel belongs to.

    Invalid pixels get 0.  With *max_size* the count is capped, so
    ``count <= threshold`` tests stay exact for any threshold below it.
    """
    structure = _structure(connectivity)
    counts = np.zeros(classified.shape, dtype=np.int64)
    for code in _class_codes(classified):
        members = classified.mask & (classified.data == code)
        labelled, n_components = ndi_label(members, structure=structure)
        if n_components == 0:
            continue
        sizes = np.bincount(labelled.ravel())
        counts[members] = sizes[labelled[members]]
    if max_size is not None:
        np.minimum(counts, max_size, out=counts)
    return counts


def remove_small_components(
    classified: Raster,
    min_size: int,
    connectivity: int = 8,
) -> Raster:
    """Invalidate pixels whose component has ``<= min_size`` pixels.

    Example::

        cleaned = remove_small_components(classified, 25)  # drops specks of 1..25 px
    """
    Validators.assert_in_range("min_size", min_size, 0)
    counts = connected_pixel_count(classified, connectivity)
    keep = counts > min_size
    removed = int((classified.mask & ~keep).sum())
    logger.info(
        "Removed %d pixel(s) in components of <= %d pixel(s) (%d-connectivity)",
        removed, min_size, connectivity,
    )
    return classified.masked(keep)


# ---------------------------------------------------------------------------
# Class and threshold masks
# ---------------------------------------------------------------------------


def keep_classes(classified: Raster, classes: Iterable[int]) -> Raster:
    """Keep only pixels whose class is in *classes*."""
    keep = np.isin(classified.data, list(classes)) & classified.mask
    return classified.masked(keep)


def exclude_classes(classified: Raster, classes: Iterable[int]) -> Raster:
    """Drop pixels whose class is in *classes*."""
    drop = np.isin(classified.data, list(classes))
    return classified.masked(~drop)


def threshold_mask(raster: Raster, op: str, value: float) -> BoolArray:
    """``True`` where ``raster <op> value`` holds and *raster* is valid."""
    try:
        compare = COMPARISONS[op]
    except KeyError:
        raise ConfigurationError(
            f"Unknown comparison '{op}'. Valid options: {', '.join(COMPARISONS)}"
        ) from None
    with np.errstate(invalid="ignore"):
        result = compare(raster.data, value)
    return np.asarray(result, dtype=bool) & raster.mask


def apply_threshold_mask(classified: Raster, raster: Raster, op: str, value: float) -> Raster:
    """Keep classified pixels where ``raster <op> value``.

    Raises:
        GeometryMismatchError: If *raster* is on a different grid.
        ConfigurationError: For an unknown operator.
    """
    classified.assert_same_grid(raster)
    keep = threshold_mask(raster, op, value)
    logger.info(
        "Threshold mask %s %s: %d of %d pixel(s) kept",
        op, value, int((classified.mask & keep).sum()), classified.valid_count,
    )
    return classified.masked(keep)


def combine_masks(*masks: npt.ArrayLike) -> BoolArray:
    """Logical AND of all *masks* (at least one)."""
    if not masks:
        raise ConfigurationError("combine_masks() needs at least one mask.")
    arrays = [np.asarray(m, dtype=bool) for m in masks]
    for other in arrays[1:]:
        Validators.assert_same_grid(arrays[0].shape, other.shape)
    return np.logical_and.reduce(arrays)

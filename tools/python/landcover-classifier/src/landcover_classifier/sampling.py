"""
Sampling and Train/Test Split
=============================
Turns labelled training geometries into a :class:`SampleTable` and splits
it reproducibly.

* Polygons contribute every pixel whose centre lies inside them; points
  contribute the pixel that contains them.
* Pixels that are invalid in any selected band, or that fall outside the
  grid, are dropped.  They are never zero-filled.
* Every sample gets a ``random`` key in [0, 1) drawn once from a seeded
  generator.  :func:`split_samples` filters on that key, so the split is
  reproducible and training ∪ testing is exactly the full table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import geopandas as gpd
import numpy as np
import numpy.typing as npt
import pandas as pd
import rasterio.transform
from rasterio.crs import CRS
from rasterio.features import geometry_mask
from rasterio.transform import Affine

from shared.python.exceptions import InputValidationError, TrainingDataError
from shared.python.validators import Validators

from landcover_classifier.area import pixel_width
from landcover_classifier.raster import BandStack, Raster

logger = logging.getLogger("geoclassify.landcover_classifier.sampling")

RANDOM_COLUMN = "random"
GEOMETRY_ID_COLUMN = "geometry_id"


# ---------------------------------------------------------------------------
# Sample table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SampleTable:
    """Labelled feature vectors.

    Attributes:
        frame: One row per sample.  Columns: one per band, the label
            column, ``random``, ``geometry_id`` and the pixel-centre ``x`` /
            ``y`` in :attr:`crs`.
        bands: Feature column names, in order.
        label: Name of the integer label column.
        crs: CRS of the ``x`` / ``y`` columns.
    """

    frame: pd.DataFrame
    bands: tuple[str, ...]
    label: str
    crs: CRS | None = None

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def classes(self) -> list[int]:
        return sorted(int(c) for c in self.frame[self.label].unique())

    def features(self, bands: Iterable[str] | None = None) -> npt.NDArray[np.float64]:
        cols = list(self.bands if bands is None else bands)
        Validators.assert_columns_exist(self.frame, cols)
        return self.frame[cols].to_numpy(dtype=np.float64)

    def labels(self) -> npt.NDArray[np.int64]:
        return self.frame[self.label].to_numpy(dtype=np.int64)

    def subset(self, rows: npt.ArrayLike) -> SampleTable:
        """Table restricted to the boolean row selector *rows*."""
        selected = self.frame.loc[np.asarray(rows, dtype=bool)]
        return SampleTable(selected, self.bands, self.label, self.crs)

    def class_counts(self) -> dict[int, int]:
        counts = self.frame[self.label].value_counts().sort_index()
        return {int(k): int(v) for k, v in counts.items()}


# ---------------------------------------------------------------------------
# Sampler
# ---------------------------------------------------------------------------


def aggregate_to_scale(stack: BandStack, factor: int) -> BandStack:
    """Block-average *stack* by an integer *factor* (valid pixels only).

    Trailing rows / columns that do not fill a whole block are dropped.
    A block is valid when at least one of its pixels is valid.
    """
    if factor <= 1:
        return stack
    height, width = stack.shape
    h, w = (height // factor) * factor, (width // factor) * factor
    if h == 0 or w == 0:
        raise InputValidationError(
            f"Raster of {height}x{width} px is smaller than one {factor}x{factor} block."
        )
    transform = stack.transform * Affine.scale(factor, factor)

    out: dict[str, Raster] = {}
    for name in stack:
        band = stack[name]
        blocks = band.data[:h, :w].reshape(h // factor, factor, w // factor, factor)
        valid = band.mask[:h, :w].reshape(h // factor, factor, w // factor, factor)
        counts = valid.sum(axis=(1, 3))
        sums = np.where(valid, blocks, 0.0).sum(axis=(1, 3))
        with np.errstate(invalid="ignore", divide="ignore"):
            means = sums / counts
        out[name] = Raster.from_array(means, transform, band.crs, mask=counts > 0)
    return BandStack(out)


class Sampler:
    """Extract labelled pixels from a composite.

    Args:
        bands: Bands to sample, in order.
        label_property: Integer class property of the training geometries.
        scale: Target ground sample distance in metres.  When coarser
            than the native pixel (measured in metres, geodesically on
            geographic grids) the stack is block-averaged first.
        seed: Seed for the per-sample ``random`` key.
        geometry_crs: CRS assumed for training geometries without one.

    Example::

        table = Sampler(["red", "nir", "NDVI"], "landcover", seed=42).sample(
            composite, gpd.read_file("training.geojson")
        )
    """

    def __init__(
        self,
        bands: Iterable[str],
        label_property: str = "landcover",
        *,
        scale: float | None = None,
        seed: int = 0,
        geometry_crs: str = "EPSG:4326",
    ) -> None:
        self.bands = list(bands)
        self.label_property = label_property
        self.scale = scale
        self.seed = seed
        self.geometry_crs = geometry_crs
        if scale is not None:
            Validators.assert_in_range("scale", scale, 0, low_inclusive=False)

    def sample(self, stack: BandStack, geometries: gpd.GeoDataFrame) -> SampleTable:
        """Sample *stack* under every geometry.

        Raises:
            ColumnNotFoundError: If the label property is missing.
            BandNotFoundError: If a selected band is missing.
            InputValidationError: If labels are not integers.
            TrainingDataError: If no valid pixel falls under any geometry.
        """
        Validators.assert_columns_exist(geometries, [self.label_property])
        selected = stack.select(self.bands)
        selected = aggregate_to_scale(selected, self._scale_factor(selected))

        geometries = self._to_stack_crs(geometries, selected.crs)
        labels = self._labels(geometries)

        valid = selected.valid_mask()
        height, width = selected.shape
        rows_all: list[npt.NDArray[np.int64]] = []
        cols_all: list[npt.NDArray[np.int64]] = []
        ids_all: list[npt.NDArray[np.int64]] = []
        dropped = 0

        for position, geom in enumerate(geometries.geometry):
            if geom is None or geom.is_empty:
                continue
            if geom.geom_type in ("Point", "MultiPoint"):
                points = [geom] if geom.geom_type == "Point" else list(geom.geoms)
                xs = [p.x for p in points]
                ys = [p.y for p in points]
                r, c = rasterio.transform.rowcol(selected.transform, xs, ys)
                r, c = np.atleast_1d(r).astype(np.int64), np.atleast_1d(c).astype(np.int64)
                inside = (r >= 0) & (r < height) & (c >= 0) & (c < width)
                dropped += int((~inside).sum())
                r, c = r[inside], c[inside]
                ok = valid[r, c]
            else:
                covered = geometry_mask(
                    [geom], out_shape=(height, width),
                    transform=selected.transform, invert=True,
                )
                r, c = np.nonzero(covered)
                ok = valid[r, c]
            dropped += int((~ok).sum())
            rows_all.append(r[ok])
            cols_all.append(c[ok])
            ids_all.append(np.full(int(ok.sum()), position, dtype=np.int64))

        rows = np.concatenate(rows_all) if rows_all else np.empty(0, dtype=np.int64)
        cols = np.concatenate(cols_all) if cols_all else np.empty(0, dtype=np.int64)
        ids = np.concatenate(ids_all) if ids_all else np.empty(0, dtype=np.int64)

        if rows.size == 0:
            raise TrainingDataError(
                "No valid pixels fall inside the training geometries. "
                "Check that they overlap the composite and its valid region."
            )

        data = {name: selected[name].data[rows, cols] for name in self.bands}
        data[self.label_property] = labels[ids]
        xs, ys = rasterio.transform.xy(selected.transform, rows, cols)
        data["x"] = np.asarray(xs, dtype=np.float64)
        data["y"] = np.asarray(ys, dtype=np.float64)
        data[GEOMETRY_ID_COLUMN] = ids
        data[RANDOM_COLUMN] = np.random.default_rng(self.seed).random(rows.size)

        frame = pd.DataFrame(data)
        table = SampleTable(frame, tuple(self.bands), self.label_property, selected.crs)
        logger.info(
            "Sampled %d pixel(s) from %d geometr(y/ies); %d invalid/outside dropped",
            len(table), len(geometries), dropped,
        )
        logger.debug("  Class counts: %s", table.class_counts())
        return table

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _scale_factor(self, stack: BandStack) -> int:
        if self.scale is None:
            return 1
        # Grids without a CRS are taken to be in metres.
        if stack.crs is None:
            native = abs(stack.transform.a)
        else:
            native = pixel_width(stack[stack.band_names[0]])
        factor = max(1, int(round(self.scale / native)))
        logger.debug("Native pixel %.2f m, sample scale %.2f m → factor %d", native, self.scale, factor)
        return factor

    def _to_stack_crs(self, geometries: gpd.GeoDataFrame, crs: CRS | None) -> gpd.GeoDataFrame:
        if geometries.crs is None:
            Validators.assert_crs_valid(self.geometry_crs)
            geometries = geometries.set_crs(self.geometry_crs)
        if crs is not None and geometries.crs != crs:
            geometries = geometries.to_crs(crs.to_wkt())
        return geometries

    def _labels(self, geometries: gpd.GeoDataFrame) -> npt.NDArray[np.int64]:
        try:
            values = pd.to_numeric(geometries[self.label_property], errors="raise")
        except (ValueError, TypeError) as exc:
            raise InputValidationError(
                f"Label property '{self.label_property}' must hold integer class codes: {exc}"
            ) from exc
        if values.isna().any() or not np.all(np.asarray(values) == np.round(values)):
            raise InputValidationError(
                f"Label property '{self.label_property}' must hold integer class codes."
            )
        return np.asarray(values, dtype=np.int64)


# ---------------------------------------------------------------------------
# Split
# ---------------------------------------------------------------------------


def split_samples(table: SampleTable, fraction: float = 0.8) -> tuple[SampleTable, SampleTable]:
    """Split on the stored random key: training ``< fraction``, testing ``>= fraction``.

    Raises:
        ConfigurationError: If *fraction* is not strictly between 0 and 1.
    """
    Validators.assert_in_range(
        "split fraction", fraction, 0.0, 1.0, low_inclusive=False, high_inclusive=False
    )
    key = table.frame[RANDOM_COLUMN].to_numpy()
    training = table.subset(key < fraction)
    testing = table.subset(key >= fraction)
    logger.info("Split %d sample(s): %d training / %d testing", len(table), len(training), len(testing))
    if len(testing) == 0:
        logger.warning("Testing set is empty at split fraction %.2f.", fraction)
    return training, testing

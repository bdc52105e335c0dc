"""
Raster Data Model
=================
Typed value objects the whole pipeline passes around.

Classes:
    Raster           One 2-D band with a validity mask, geotransform and CRS.
    BandStack        Named bands sharing a single grid.
    Scene            One acquisition: a BandStack, its date and QA band.
    SceneCollection  Date-ordered, filterable sequence of scenes.

Invalid pixels are tracked twice: ``mask`` is ``False`` and ``data`` holds
NaN.  Every helper returns a new object; nothing mutates in place.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

import numpy as np
import numpy.typing as npt
from rasterio.crs import CRS
from rasterio.transform import Affine, array_bounds
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from shared.python.exceptions import BandNotFoundError, InputValidationError
from shared.python.validators import Validators

logger = logging.getLogger("geoclassify.landcover_classifier.raster")


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Raster:
    """One band of pixel values on a georeferenced grid.

    Attributes:
        data: 2-D float64 array.  Invalid pixels are NaN.
        mask: 2-D bool array, ``True`` where the pixel is valid.
        transform: Affine geotransform (pixel → CRS coordinates).
        crs: Coordinate reference system, or ``None`` when unknown.
    """

    data: npt.NDArray[np.float64]
    mask: npt.NDArray[np.bool_]
    transform: Affine
    crs: CRS | None = None

    @classmethod
    def from_array(
        cls,
        array: npt.ArrayLike,
        transform: Affine,
        crs: CRS | str | None = None,
        *,
        mask: npt.ArrayLike | None = None,
        nodata: float | None = None,
    ) -> Raster:
        """Build a raster from any 2-D array.

        A pixel is valid when it is finite, differs from *nodata* and is
        ``True`` in *mask* (if given).  Masked numpy arrays contribute
        their own mask.
        """
        if isinstance(array, np.ma.MaskedArray):
            extra = ~np.ma.getmaskarray(array)
            array = array.filled(np.nan) if array.dtype.kind == "f" else array.filled(0)
        else:
            extra = None

        values = np.asarray(array, dtype=np.float64)
        if values.ndim != 2:
            raise InputValidationError(
                f"Raster data must be 2-D, got an array of shape {values.shape}."
            )

        valid = np.isfinite(values)
        if nodata is not None:
            valid &= values != nodata
        if mask is not None:
            valid &= np.asarray(mask, dtype=bool)
        if extra is not None:
            valid &= extra

        if isinstance(crs, str):
            crs = CRS.from_user_input(crs)

        return cls(np.where(valid, values, np.nan), valid, transform, crs)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape  # type: ignore[return-value]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def resolution(self) -> tuple[float, float]:
        """Pixel size ``(x, y)`` in CRS units (always positive)."""
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """``(left, bottom, right, top)`` in CRS units."""
        west, south, east, north = array_bounds(self.height, self.width, self.transform)
        return west, south, east, north

    def footprint(self) -> BaseGeometry:
        """Bounding box of the grid as a shapely polygon."""
        return box(*self.bounds)

    def assert_same_grid(self, other: Raster) -> None:
        """Raise :class:`GeometryMismatchError` unless *other* shares this grid."""
        Validators.assert_same_grid(
            self.shape, other.shape,
            self.transform, other.transform,
            self.crs, other.crs,
        )

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    @property
    def valid_count(self) -> int:
        return int(self.mask.sum())

    def with_data(
        self,
        data: npt.ArrayLike,
        mask: npt.ArrayLike | None = None,
    ) -> Raster:
        """New raster on the same grid with *data* (and optional *mask*)."""
        return Raster.from_array(data, self.transform, self.crs, mask=mask)

    def masked(self, keep: npt.ArrayLike) -> Raster:
        """New raster whose mask is this mask AND *keep*."""
        keep = np.asarray(keep, dtype=bool)
        if keep.shape != self.shape:
            Validators.assert_same_grid(self.shape, keep.shape)
        return self.with_data(self.data, self.mask & keep)

    def masked_array(self) -> np.ma.MaskedArray:
        return np.ma.MaskedArray(self.data, mask=~self.mask)

    def __repr__(self) -> str:
        return (
            f"Raster(shape={self.shape}, valid={self.valid_count}, "
            f"crs={self.crs.to_string() if self.crs else None})"
        )


# ---------------------------------------------------------------------------
# Band stack
# ---------------------------------------------------------------------------


class BandStack(Mapping[str, Raster]):
    """Named bands that all share one grid and projection.

    Band order is kept for display but carries no meaning.  Adding a band
    on a different grid raises :class:`GeometryMismatchError`; looking up
    a missing band raises :class:`BandNotFoundError`.

    Example::

        stack = BandStack({"red": red, "nir": nir})
        ndvi_stack = stack.with_bands({"NDVI": ndvi})
    """

    def __init__(self, bands: Mapping[str, Raster] | None = None) -> None:
        self._bands: dict[str, Raster] = {}
        reference: Raster | None = None
        for name, raster in (bands or {}).items():
            if reference is None:
                reference = raster
            else:
                reference.assert_same_grid(raster)
            self._bands[str(name)] = raster

    @classmethod
    def from_arrays(
        cls,
        arrays: Mapping[str, npt.ArrayLike],
        transform: Affine,
        crs: CRS | str | None = None,
        *,
        nodata: float | None = None,
    ) -> BandStack:
        """Build a stack from plain arrays sharing *transform* and *crs*."""
        return cls({
            name: Raster.from_array(arr, transform, crs, nodata=nodata)
            for name, arr in arrays.items()
        })

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __getitem__(self, name: str) -> Raster:
        try:
            return self._bands[name]
        except KeyError:
            raise BandNotFoundError(name, list(self._bands)) from None

    def __contains__(self, name: object) -> bool:
        return name in self._bands

    def __iter__(self) -> Iterator[str]:
        return iter(self._bands)

    def __len__(self) -> int:
        return len(self._bands)

    def get(self, name: str, default: Any = None) -> Any:  # type: ignore[override]
        return self._bands.get(name, default)

    # ------------------------------------------------------------------
    # Grid
    # ------------------------------------------------------------------

    def _reference(self) -> Raster:
        if not self._bands:
            raise InputValidationError("Band stack is empty.")
        return next(iter(self._bands.values()))

    @property
    def band_names(self) -> list[str]:
        return list(self._bands)

    @property
    def shape(self) -> tuple[int, int]:
        return self._reference().shape

    @property
    def transform(self) -> Affine:
        return self._reference().transform

    @property
    def crs(self) -> CRS | None:
        return self._reference().crs

    def footprint(self) -> BaseGeometry:
        return self._reference().footprint()

    # ------------------------------------------------------------------
    # Non-destructive operations
    # ------------------------------------------------------------------

    def select(self, names: Iterable[str]) -> BandStack:
        """Stack containing only *names*, in that order."""
        names = list(names)
        Validators.assert_bands_present(names, self.band_names)
        return BandStack({n: self._bands[n] for n in names})

    def with_bands(self, bands: Mapping[str, Raster]) -> BandStack:
        """Stack with *bands* added (or replaced) on the same grid."""
        return BandStack({**self._bands, **dict(bands)})

    def merge(self, other: BandStack) -> BandStack:
        """Combine two stacks on the same grid; names must not collide."""
        clash = set(self._bands) & set(other.band_names)
        if clash:
            raise InputValidationError(
                f"Cannot merge stacks: duplicate band name(s) {sorted(clash)}."
            )
        return self.with_bands(other)

    def rename(self, aliases: Mapping[str, str]) -> BandStack:
        """Stack with bands renamed via *aliases* (unlisted names kept)."""
        return BandStack({aliases.get(n, n): r for n, r in self._bands.items()})

    def map(self, func: Callable[[Raster], Raster]) -> BandStack:
        return BandStack({n: func(r) for n, r in self._bands.items()})

    def valid_mask(self, names: Iterable[str] | None = None) -> npt.NDArray[np.bool_]:
        """``True`` where every band in *names* (default: all) is valid."""
        names = self.band_names if names is None else list(names)
        Validators.assert_bands_present(names, self.band_names)
        mask = np.ones(self.shape, dtype=bool)
        for name in names:
            mask &= self._bands[name].mask
        return mask

    def to_array(self, names: Iterable[str] | None = None) -> npt.NDArray[np.float64]:
        """``(bands, rows, cols)`` float array of *names* (default: all)."""
        names = self.band_names if names is None else list(names)
        Validators.assert_bands_present(names, self.band_names)
        return np.stack([self._bands[n].data for n in names], axis=0)

    def __repr__(self) -> str:
        return f"BandStack(bands={self.band_names})"


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Scene:
    """One acquisition of a sensor.

    Attributes:
        bands: Reflectance / backscatter bands.
        acquired: Acquisition date.
        quality: Integer QA band, or ``None`` for sensors without one.
        metadata: Free-form properties (source file, cloud cover, ...).
    """

    bands: BandStack
    acquired: date
    quality: Raster | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def replace_bands(self, bands: BandStack) -> Scene:
        return Scene(bands, self.acquired, self.quality, self.metadata)


class SceneCollection:
    """Date-ordered sequence of :class:`Scene` objects.

    Filters return new collections, so a collection can be narrowed in a
    chain::

        window = collection.filter_date("2019-01-01", "2020-01-01")
        clear = window.filter(lambda s: s.metadata.get("CLOUD_COVER", 0) < 30)
    """

    def __init__(self, scenes: Iterable[Scene] = ()) -> None:
        self._scenes: tuple[Scene, ...] = tuple(sorted(scenes, key=lambda s: s.acquired))

    def __iter__(self) -> Iterator[Scene]:
        return iter(self._scenes)

    def __len__(self) -> int:
        return len(self._scenes)

    def __getitem__(self, index: int) -> Scene:
        return self._scenes[index]

    @property
    def dates(self) -> list[date]:
        return [s.acquired for s in self._scenes]

    def filter(self, predicate: Callable[[Scene], bool]) -> SceneCollection:
        return SceneCollection(s for s in self._scenes if predicate(s))

    def filter_date(self, start: date | str | None, end: date | str | None) -> SceneCollection:
        """Scenes acquired in ``[start, end)``.  ``None`` leaves a side open."""
        lo = date.fromisoformat(start) if isinstance(start, str) else start
        hi = date.fromisoformat(end) if isinstance(end, str) else end
        return self.filter(
            lambda s: (lo is None or s.acquired >= lo) and (hi is None or s.acquired < hi)
        )

    def filter_bounds(self, region: BaseGeometry) -> SceneCollection:
        """Scenes whose footprint intersects *region* (same CRS as the scenes)."""
        return self.filter(lambda s: s.bands.footprint().intersects(region))

    def map(self, func: Callable[[Scene], Scene]) -> SceneCollection:
        return SceneCollection(func(s) for s in self._scenes)

    def __repr__(self) -> str:
        if not self._scenes:
            return "SceneCollection(0 scenes)"
        return (
            f"SceneCollection({len(self)} scenes, "
            f"{self._scenes[0].acquired} → {self._scenes[-1].acquired})"
        )

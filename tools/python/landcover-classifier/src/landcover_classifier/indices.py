"""
Spectral Indices
================
Derives index bands from existing bands of a :class:`BandStack`.

Each index is an :class:`IndexStrategy` subclass following the Strategy
design pattern.  :func:`derive_indices` runs any list of strategies and
appends every result as a new band; source bands are left untouched.

Strategies:
    NormalizedDifference  ``(A - B) / (A + B)``, invalid where ``A + B == 0``
    SimpleRatio           ``A / B``, invalid where ``B == 0``
    ExpressionIndex       any named formula over named operand bands
    SAVI                  ``((NIR - Red) / (NIR + Red + L)) * (1 + L)``
    EVI                   ``2.5 * (NIR - Red) / (NIR + 6*Red - 7.5*Blue + 1)``

Canonical band names are ``blue, green, red, nir, swir1, swir2`` for
optical sensors and ``VV, VH`` for C-band radar.

Usage::

    from landcover_classifier.indices import derive_indices, get_index

    stack = derive_indices(composite, [get_index("NDVI"), get_index("MNDWI")])
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import SpectralIndexError

from landcover_classifier.raster import BandStack, Raster

logger = logging.getLogger("geoclassify.landcover_classifier.indices")

FloatArray = npt.NDArray[np.float64]


# ---------------------------------------------------------------------------
# Index strategy ABC + concrete implementations
# ---------------------------------------------------------------------------


class IndexStrategy(ABC):
    """Abstract base for a single spectral index computation.

    Subclasses implement :attr:`required_bands` to declare their inputs
    and :meth:`formula` to run the arithmetic on numpy arrays.  Pixels
    where the formula is not finite (zero denominators, NaN inputs) come
    out invalid rather than raising.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Band name of the derived index (e.g. ``"NDVI"``)."""

    @property
    @abstractmethod
    def required_bands(self) -> list[str]:
        """Band names this index reads, e.g. ``["nir", "red"]``."""

    @abstractmethod
    def formula(self, bands: dict[str, FloatArray]) -> FloatArray:
        """Compute the index from a dict of band arrays."""

    def compute(self, stack: BandStack) -> Raster:
        """Evaluate the index over *stack*.

        Raises:
            SpectralIndexError: If a required band is missing.
        """
        missing = [b for b in self.required_bands if b not in stack]
        if missing:
            raise SpectralIndexError(
                self.name,
                f"required band(s) {', '.join(missing)} not in stack "
                f"(bands: {', '.join(stack.band_names)})",
            )
        arrays = {b: stack[b].data for b in self.required_bands}
        with np.errstate(invalid="ignore", divide="ignore"):
            values = np.asarray(self.formula(arrays), dtype=np.float64)
        valid = stack.valid_mask(self.required_bands) & np.isfinite(values)
        return stack[self.required_bands[0]].with_data(values, valid)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r}, bands={self.required_bands})"


class NormalizedDifference(IndexStrategy):
    """Normalized difference ``(A - B) / (A + B)``.

    Range: -1 to +1 for non-negative inputs.

    Args:
        name: Output band name.
        first: Band ``A``.
        second: Band ``B``.
    """

    def __init__(self, name: str, first: str, second: str) -> None:
        self._name = name
        self.first = first
        self.second = second

    @property
    def name(self) -> str:
        return self._name

    @property
    def required_bands(self) -> list[str]:
        return [self.first, self.second]

    def formula(self, bands: dict[str, FloatArray]) -> FloatArray:
        a, b = bands[self.first], bands[self.second]
        denominator = a + b
        return np.where(denominator == 0, np.nan, (a - b) / denominator)


class SimpleRatio(IndexStrategy):
    """Band ratio ``A / B``.

    Args:
        name: Output band name.
        numerator: Band ``A``.
        denominator: Band ``B``.
    """

    def __init__(self, name: str, numerator: str, denominator: str) -> None:
        self._name = name
        self.numerator = numerator
        self.denominator = denominator

    @property
    def name(self) -> str:
        return self._name

    @property
    def required_bands(self) -> list[str]:
        return [self.numerator, self.denominator]

    def formula(self, bands: dict[str, FloatArray]) -> FloatArray:
        b = bands[self.denominator]
        return np.where(b == 0, np.nan, bands[self.numerator] / b)


class ExpressionIndex(IndexStrategy):
    """Arbitrary arithmetic over named operand bands.

    The formula receives each band as a keyword argument::

        ExpressionIndex("NBR2", ["swir1", "swir2"],
                        lambda swir1, swir2: (swir1 - swir2) / (swir1 + swir2))

    Args:
        name: Output band name.
        bands: Operand band names, passed to *formula* by keyword.
        formula: Callable returning an array of the band shape.
    """

    def __init__(
        self,
        name: str,
        bands: Iterable[str],
        formula: Callable[..., FloatArray],
    ) -> None:
        self._name = name
        self._bands = list(bands)
        self._formula = formula

    @property
    def name(self) -> str:
        return self._name

    @property
    def required_bands(self) -> list[str]:
        return list(self._bands)

    def formula(self, bands: dict[str, FloatArray]) -> FloatArray:
        return self._formula(**bands)


class SAVI(IndexStrategy):
    """SAVI — Soil-Adjusted Vegetation Index.

    Formula: ``SAVI = ((NIR - Red) / (NIR + Red + L)) * (1 + L)``

    Args:
        soil_factor: The ``L`` correction factor.  0.5 suits intermediate
            cover, 0.25 dense vegetation, 1.0 very sparse cover (desert
            fringes around Cairo).
    """

    def __init__(self, soil_factor: float = 0.5) -> None:
        self.soil_factor = soil_factor

    @property
    def name(self) -> str:
        return "SAVI"

    @property
    def required_bands(self) -> list[str]:
        return ["nir", "red"]

    def formula(self, bands: dict[str, FloatArray]) -> FloatArray:
        nir, red = bands["nir"], bands["red"]
        L = self.soil_factor
        denominator = nir + red + L
        return np.where(denominator == 0, np.nan, ((nir - red) / denominator) * (1.0 + L))


class EVI(IndexStrategy):
    """EVI — Enhanced Vegetation Index.

    Formula: ``EVI = 2.5 * (NIR - Red) / (NIR + 6*Red - 7.5*Blue + 1)``

    Expects reflectance in [0, 1].
    """

    @property
    def name(self) -> str:
        return "EVI"

    @property
    def required_bands(self) -> list[str]:
        return ["nir", "red", "blue"]

    def formula(self, bands: dict[str, FloatArray]) -> FloatArray:
        nir, red, blue = bands["nir"], bands["red"], bands["blue"]
        denominator = nir + 6.0 * red - 7.5 * blue + 1.0
        return np.where(denominator == 0, np.nan, 2.5 * (nir - red) / denominator)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

STANDARD_INDICES: dict[str, IndexStrategy] = {
    "NDVI": NormalizedDifference("NDVI", "nir", "red"),
    "NDWI": NormalizedDifference("NDWI", "green", "nir"),
    "MNDWI": NormalizedDifference("MNDWI", "green", "swir1"),
    "NDBI": NormalizedDifference("NDBI", "swir1", "nir"),
    "NDMI": NormalizedDifference("NDMI", "nir", "swir1"),
    "SR": SimpleRatio("SR", "nir", "red"),
    "SAVI": SAVI(),
    "EVI": EVI(),
    "VV_VH": SimpleRatio("VV_VH", "VV", "VH"),
}


def get_index(name: str) -> IndexStrategy:
    """Look up a standard index by (case-insensitive) name.

    Raises:
        SpectralIndexError: If *name* is not a standard index.
    """
    key = name.strip().upper()
    try:
        return STANDARD_INDICES[key]
    except KeyError:
        raise SpectralIndexError(
            name, f"unknown index. Valid options: {', '.join(STANDARD_INDICES)}"
        ) from None


def derive_indices(
    stack: BandStack,
    strategies: Iterable[IndexStrategy | str],
) -> BandStack:
    """Append one band per strategy to *stack*.

    Strategies may be given by name (see :data:`STANDARD_INDICES`).

    Raises:
        SpectralIndexError: If a required band is missing or an index
            name collides with an existing band.
    """
    derived: dict[str, Raster] = {}
    for item in strategies:
        strategy = get_index(item) if isinstance(item, str) else item
        if strategy.name in stack or strategy.name in derived:
            raise SpectralIndexError(
                strategy.name, "a band with this name already exists in the stack"
            )
        logger.info("Computing %s...", strategy.name)
        raster = strategy.compute(stack)
        derived[strategy.name] = raster
        if raster.valid_count:
            valid = raster.data[raster.mask]
            logger.debug(
                "  %s: min=%.4f max=%.4f mean=%.4f",
                strategy.name, valid.min(), valid.max(), valid.mean(),
            )
    return stack.with_bands(derived)

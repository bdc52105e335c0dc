"""
GeoClassify — Custom Exception Hierarchy
=========================================
Every error raised by GeoClassify code comes from this module.  The CLI
catches the root class, prints it and exits with status 1.

Hierarchy::

    GeoClassifyError                     ← catch-all base
    ├── InputValidationError             ← bad inputs, empty data, missing bands
    │   ├── ColumnNotFoundError          ← table / GeoDataFrame column missing
    │   ├── BandNotFoundError            ← requested band not in a stack
    │   ├── SpectralIndexError           ← unsupported index or bad bands
    │   └── TrainingDataError            ← empty or single-class training set
    ├── GeometryMismatchError            ← raster grids / projections differ
    ├── ConfigurationError               ← invalid parameters
    ├── CRSError                         ← invalid / unknown CRS string
    ├── RasterError                      ← rasterio read failures
    └── OutputWriteError                 ← cannot write to output path

Every error carries an optional ``stage`` naming the pipeline stage that
raised it.  The pipeline fills it in when an error escapes a stage.

Usage::

    from shared.python.exceptions import ConfigurationError

    raise ConfigurationError("number_of_trees must be >= 1 (got 0).")
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class GeoClassifyError(Exception):
    """Base exception for all GeoClassify tools.

    Args:
        message: Human-readable description of the error.
        stage: Name of the pipeline stage that failed, if known.
    """

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message: str = message
        self.stage: str | None = stage

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(GeoClassifyError):
    """Raised when a tool's inputs fail validation.

    Missing files, empty collections and unusable training data all land
    here or in a subclass.
    """


class ColumnNotFoundError(InputValidationError):
    """Raised when a sample table or vector layer lacks a required column.

    Args:
        column: Missing column (class property or predictor).
        available: Columns the table does have.

    Example::

        raise ColumnNotFoundError("landcover", gdf.columns.tolist())
    """

    def __init__(self, column: str, available: list[str]) -> None:
        listed = ", ".join(map(str, available)) or "none"
        super().__init__(f"No column '{column}' in table (columns: {listed}).")
        self.column: str = column
        self.available: list[str] = available


class BandNotFoundError(InputValidationError):
    """Raised when a requested band name does not exist in a band stack.

    Args:
        band: The band name that was requested.
        available: Band names that ARE present.

    Example::

        raise BandNotFoundError("swir1", ["blue", "green", "red", "nir"])
    """

    def __init__(self, band: str, available: list[str]) -> None:
        available_str = ", ".join(f"'{b}'" for b in available) or "none"
        super().__init__(
            f"Band '{band}' does not exist. Available bands: {available_str}"
        )
        self.band: str = band
        self.available: list[str] = available


class SpectralIndexError(InputValidationError):
    """Raised when a spectral index cannot be calculated.

    Common causes: unsupported index name, missing required band, or an
    index name that would overwrite an existing band.

    Args:
        index_name: Index being computed, e.g. ``"NDBI"``.
        reason: What prevented it.

    Example::

        raise SpectralIndexError("NDVI", "required band 'nir' not in stack")
    """

    def __init__(self, index_name: str, reason: str) -> None:
        super().__init__(f"{index_name}: {reason}")
        self.index_name: str = index_name
        self.reason: str = reason


class TrainingDataError(InputValidationError):
    """Raised when a sample table cannot train or evaluate a classifier.

    Empty tables and tables with a single class carry no class variance,
    so training on them is always rejected.
    """


# ---------------------------------------------------------------------------
# Grids and projections
# ---------------------------------------------------------------------------


class GeometryMismatchError(GeoClassifyError):
    """Raised when rasters that must share a grid do not.

    Args:
        what: Short description of the mismatching property
              (``"shape"``, ``"transform"`` or ``"crs"``).
        first: Value on the reference grid.
        second: Value on the offending grid.
    """

    def __init__(self, what: str, first: object, second: object) -> None:
        super().__init__(
            f"Raster {what} mismatch: {first} vs {second}. "
            "All bands in a stack must share one grid and projection."
        )
        self.what: str = what


class CRSError(GeoClassifyError):
    """Raised when a coordinate reference system string cannot be parsed.

    Args:
        crs_string: Value that pyproj rejected.
    """

    def __init__(self, crs_string: str) -> None:
        super().__init__(
            f"Unknown coordinate reference system '{crs_string}'; "
            "expected an authority code such as 'EPSG:32636', WKT or PROJ."
        )
        self.crs_string: str = crs_string


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(GeoClassifyError):
    """Raised for invalid parameters: non-positive tree counts, split
    fractions outside (0, 1), unknown units, and the like.
    """


# ---------------------------------------------------------------------------
# Raster I/O
# ---------------------------------------------------------------------------


class RasterError(GeoClassifyError):
    """Raised for raster read failures (rasterio / numpy)."""


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(GeoClassifyError):
    """Raised when a map, table, model or report cannot be written.

    Args:
        output_path: Destination that failed.
        reason: OS or driver message.

    Example::

        raise OutputWriteError("/read-only/dir/classified.tif", "Permission denied")
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(f"Cannot write '{output_path}': {reason}")
        self.output_path: str = output_path
        self.reason: str = reason

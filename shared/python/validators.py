"""
GeoClassify — Shared Input Validators
======================================
Precondition checks run by each tool's ``validate_inputs`` (and by the
library entry points that accept user parameters) before any raster is
read.

Every check either returns ``None`` or raises a typed error from
:mod:`shared.python.exceptions`, so a validation step is a flat list of
calls::

    class LandCoverClassifier(GeoTool):
        def validate_inputs(self) -> None:
            Validators.assert_directory_exists(self.scene_dirs["landsat8"])
            Validators.assert_supported_extension(self.training_path, VECTOR_EXTENSIONS)
            Validators.assert_crs_valid(self.training_crs)
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from shared.python.exceptions import (
    BandNotFoundError,
    ColumnNotFoundError,
    ConfigurationError,
    CRSError,
    GeometryMismatchError,
    InputValidationError,
    OutputWriteError,
)


class Validators:
    """Namespace of ``assert_*`` checks.  Never instantiated."""

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Require *path* to be an existing file (scene, training vector, model).

        Raises:
            InputValidationError: Missing path, or a directory in its place.
        """
        target = Path(path)
        if target.is_dir():
            raise InputValidationError(f"'{target}' is a directory; a file was expected.")
        if not target.is_file():
            raise InputValidationError(f"File not found: '{target}'.")

    @staticmethod
    def assert_directory_exists(path: Path) -> None:
        """Require *path* to be an existing directory (e.g. a scene folder)."""
        target = Path(path)
        if not target.exists():
            raise InputValidationError(f"Directory not found: '{target}'.")
        if not target.is_dir():
            raise InputValidationError(f"'{target}' is a file; a directory was expected.")

    @staticmethod
    def assert_output_dir_writable(output_path: Path) -> None:
        """Create *output_path* (with parents) if needed.

        Raises:
            OutputWriteError: The directory could not be created.
        """
        try:
            Path(output_path).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Require the suffix of *path* to be one of *extensions* (case-insensitive).

        Args:
            path: File whose suffix is checked.
            extensions: Accepted suffixes including the dot, e.g. ``[".gpkg"]``.
        """
        suffix = Path(path).suffix.lower()
        accepted = {ext.lower() for ext in extensions}
        if suffix not in accepted:
            raise InputValidationError(
                f"Unsupported format '{suffix or '<none>'}' for '{Path(path).name}'; "
                f"use one of {', '.join(sorted(accepted))}."
            )

    # ------------------------------------------------------------------
    # Coordinate reference systems
    # ------------------------------------------------------------------

    @staticmethod
    def assert_crs_valid(crs_string: str) -> None:
        """Require *crs_string* to resolve through ``pyproj.CRS.from_user_input``.

        Raises:
            CRSError: pyproj rejected the value.
        """
        from pyproj import CRS  # noqa: PLC0415
        from pyproj.exceptions import CRSError as ProjCRSError  # noqa: PLC0415

        try:
            CRS.from_user_input(crs_string)
        except ProjCRSError as exc:
            raise CRSError(str(crs_string)) from exc

    # ------------------------------------------------------------------
    # Attribute tables
    # ------------------------------------------------------------------

    @staticmethod
    def assert_columns_exist(
        df: object,  # DataFrame or GeoDataFrame
        required_columns: Sequence[str],
    ) -> None:
        """Require every name in *required_columns* among ``df.columns``.

        Raises:
            ColumnNotFoundError: Names the first absent column.
        """
        available = [str(c) for c in df.columns]  # type: ignore[union-attr]
        for col in required_columns:
            if col not in available:
                raise ColumnNotFoundError(col, available)

    # ------------------------------------------------------------------
    # Raster grids
    # ------------------------------------------------------------------

    @staticmethod
    def assert_bands_present(requested: Sequence[str], available: Sequence[str]) -> None:
        """Assert that every band in *requested* exists in *available*.

        Raises:
            BandNotFoundError: On the first missing band.

        Example::

            Validators.assert_bands_present(["nir", "red"], stack.band_names)
        """
        available = list(available)
        for band in requested:
            if band not in available:
                raise BandNotFoundError(band, available)

    @staticmethod
    def assert_same_grid(
        shape_a: tuple[int, int],
        shape_b: tuple[int, int],
        transform_a: object = None,
        transform_b: object = None,
        crs_a: object = None,
        crs_b: object = None,
    ) -> None:
        """Assert that two rasters share shape, geotransform and CRS.

        This is required before any pixel-wise arithmetic (e.g. NDVI) or
        before stacking bands from different sources.

        Raises:
            GeometryMismatchError: On the first property that differs.
        """
        if tuple(shape_a) != tuple(shape_b):
            raise GeometryMismatchError("shape", tuple(shape_a), tuple(shape_b))
        if transform_a is not None and transform_b is not None:
            if not transform_a.almost_equals(transform_b):  # type: ignore[attr-defined]
                raise GeometryMismatchError("transform", transform_a, transform_b)
        if crs_a is not None and crs_b is not None and crs_a != crs_b:
            raise GeometryMismatchError("crs", crs_a, crs_b)

    # ------------------------------------------------------------------
    # Numeric parameters
    # ------------------------------------------------------------------

    @staticmethod
    def assert_in_range(
        name: str,
        value: float,
        low: float | None = None,
        high: float | None = None,
        *,
        low_inclusive: bool = True,
        high_inclusive: bool = True,
    ) -> None:
        """Assert that a numeric parameter lies within ``[low, high]``.

        Either bound may be ``None`` (unbounded).  Bounds are inclusive
        unless the matching ``*_inclusive`` flag is ``False``.

        Raises:
            ConfigurationError: If *value* falls outside the range.

        Example::

            Validators.assert_in_range("split_fraction", 0.8, 0.0, 1.0,
                                       low_inclusive=False, high_inclusive=False)
        """
        too_low = low is not None and (value < low if low_inclusive else value <= low)
        too_high = high is not None and (value > high if high_inclusive else value >= high)
        if too_low or too_high:
            lo = "-inf" if low is None else f"{low}"
            hi = "inf" if high is None else f"{high}"
            left = "[" if low_inclusive else "("
            right = "]" if high_inclusive else ")"
            raise ConfigurationError(
                f"{name} must be in {left}{lo}, {hi}{right} (got {value})."
            )

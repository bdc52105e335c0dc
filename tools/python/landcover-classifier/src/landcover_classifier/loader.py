"""
Scene Loader
============
Local stand-in for the imagery archive: reads a directory of multi-band
GeoTIFFs (one file per acquisition) into a :class:`SceneCollection`.

Band names come from the GeoTIFF band descriptions (falling back to
``B1 .. Bn``) and may be overridden.  The acquisition date is read from
the ``ACQUIRED`` dataset tag or, failing that, from the first
``YYYYMMDD`` run of digits in the file name (e.g.
``LC08_176039_20190412.tif``).
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Sequence

import rasterio
from rasterio.errors import RasterioIOError

from shared.python.exceptions import InputValidationError, RasterError
from shared.python.validators import Validators

from landcover_classifier.raster import BandStack, Raster, Scene, SceneCollection

logger = logging.getLogger("geoclassify.landcover_classifier.loader")

RASTER_EXTENSIONS = [".tif", ".tiff", ".img", ".vrt"]


def read_raster(path: Path, band: int = 1) -> Raster:
    """Read one band of a raster file (DEM, reference map, ...).

    Raises:
        InputValidationError: If the file is missing.
        RasterError: If rasterio cannot read it.
    """
    path = Path(path)
    Validators.assert_file_exists(path)
    try:
        with rasterio.open(path) as src:
            array = src.read(band, masked=True)
            return Raster.from_array(array, src.transform, src.crs, nodata=src.nodata)
    except (RasterioIOError, IndexError) as exc:
        raise RasterError(f"Could not read band {band} of '{path}': {exc}") from exc


class SceneLoader:
    """Load every raster in a directory as one :class:`Scene` each.

    Args:
        directory: Folder holding one GeoTIFF per acquisition.
        quality_band: Name of the QA band to split off into
            :attr:`Scene.quality`, or ``None`` when the sensor has none.
        band_names: Explicit band names in file order.  Overrides the
            band descriptions stored in the files.
        date_pattern: Regex whose first group captures ``YYYYMMDD``.
    """

    def __init__(
        self,
        directory: Path,
        *,
        quality_band: str | None = None,
        band_names: Sequence[str] | None = None,
        date_pattern: str = r"(\d{8})",
    ) -> None:
        self.directory = Path(directory)
        self.quality_band = quality_band
        self.band_names = list(band_names) if band_names else None
        self.date_pattern = re.compile(date_pattern)

    def files(self) -> list[Path]:
        Validators.assert_directory_exists(self.directory)
        return sorted(
            p for p in self.directory.iterdir()
            if p.is_file() and p.suffix.lower() in RASTER_EXTENSIONS
        )

    def load(self) -> SceneCollection:
        """Read all scenes.

        Raises:
            InputValidationError: If the directory holds no rasters, or a
                file has no recognisable date.
            RasterError: If a file cannot be opened.
        """
        paths = self.files()
        if not paths:
            raise InputValidationError(
                f"No raster files ({', '.join(RASTER_EXTENSIONS)}) in '{self.directory}'."
            )
        scenes = [self.load_scene(p) for p in paths]
        logger.info("Loaded %d scene(s) from %s", len(scenes), self.directory)
        return SceneCollection(scenes)

    def load_scene(self, path: Path) -> Scene:
        try:
            with rasterio.open(path) as src:
                names = self._band_names(src.count, src.descriptions, path)
                tags = src.tags()
                bands: dict[str, Raster] = {}
                for index, name in enumerate(names, start=1):
                    array = src.read(index, masked=True)
                    bands[name] = Raster.from_array(
                        array, src.transform, src.crs, nodata=src.nodata
                    )
        except RasterioIOError as exc:
            raise RasterError(f"Could not open raster '{path}': {exc}") from exc

        quality = None
        if self.quality_band is not None:
            if self.quality_band not in bands:
                raise InputValidationError(
                    f"Quality band '{self.quality_band}' not found in '{path.name}' "
                    f"(bands: {', '.join(bands)})."
                )
            quality = bands.pop(self.quality_band)

        acquired = self._acquired(tags, path)
        logger.debug("  %s → %s, %d band(s)", path.name, acquired, len(bands))
        return Scene(
            bands=BandStack(bands),
            acquired=acquired,
            quality=quality,
            metadata={**tags, "source": str(path)},
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _band_names(
        self, count: int, descriptions: Sequence[str | None], path: Path
    ) -> list[str]:
        if self.band_names is not None:
            if len(self.band_names) != count:
                raise InputValidationError(
                    f"'{path.name}' has {count} band(s) but {len(self.band_names)} "
                    "band name(s) were configured."
                )
            return list(self.band_names)
        names = [d if d else f"B{i}" for i, d in enumerate(descriptions, start=1)]
        if len(set(names)) != len(names):
            raise InputValidationError(f"Duplicate band descriptions in '{path.name}': {names}")
        return names

    def _acquired(self, tags: dict[str, str], path: Path) -> date:
        if "ACQUIRED" in tags:
            try:
                return date.fromisoformat(tags["ACQUIRED"][:10])
            except ValueError:
                logger.warning("Ignoring malformed ACQUIRED tag %r in %s", tags["ACQUIRED"], path.name)

        match = self.date_pattern.search(path.stem)
        if match is None:
            raise InputValidationError(
                f"Cannot determine the acquisition date of '{path.name}'. "
                "Add an ACQUIRED tag or a YYYYMMDD stamp to the file name."
            )
        try:
            return datetime.strptime(match.group(1), "%Y%m%d").date()
        except ValueError as exc:
            raise InputValidationError(
                f"'{match.group(1)}' in '{path.name}' is not a valid YYYYMMDD date."
            ) from exc

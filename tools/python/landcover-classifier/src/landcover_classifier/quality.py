"""
Cloud / Quality Filter
======================
Bit-flag cloud masking from an integer QA band, plus linear rescaling of
digital numbers to reflectance.

A pixel is usable when both configured QA bits (cloud and cloud shadow)
are zero.  A pixel whose QA value is itself missing is never usable.

Presets::

    LANDSAT8_SR_PIXEL_QA   Landsat 8 SR ``pixel_qa``: shadow bit 3, cloud bit 5
    LANDSAT_C2_QA_PIXEL    Landsat C2 ``QA_PIXEL``: cloud bit 3, shadow bit 4
    SENTINEL2_QA60         Sentinel-2 ``QA60``: opaque bit 10, cirrus bit 11
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import InputValidationError
from shared.python.validators import Validators

from landcover_classifier.raster import BandStack, Raster, Scene, SceneCollection

logger = logging.getLogger("geoclassify.landcover_classifier.quality")


@dataclass(frozen=True)
class QualityBits:
    """Bit positions of the two flags that disqualify a pixel.

    Attributes:
        cloud_bit: 0-based position of the cloud flag.
        shadow_bit: 0-based position of the cloud-shadow (or second) flag.
    """

    cloud_bit: int
    shadow_bit: int

    def __post_init__(self) -> None:
        Validators.assert_in_range("cloud_bit", self.cloud_bit, 0, 62)
        Validators.assert_in_range("shadow_bit", self.shadow_bit, 0, 62)

    @property
    def bitmask(self) -> int:
        return (1 << self.cloud_bit) | (1 << self.shadow_bit)


LANDSAT8_SR_PIXEL_QA = QualityBits(cloud_bit=5, shadow_bit=3)
LANDSAT_C2_QA_PIXEL = QualityBits(cloud_bit=3, shadow_bit=4)
SENTINEL2_QA60 = QualityBits(cloud_bit=10, shadow_bit=11)

QUALITY_PRESETS: dict[str, QualityBits] = {
    "landsat8_sr": LANDSAT8_SR_PIXEL_QA,
    "landsat_c2": LANDSAT_C2_QA_PIXEL,
    "sentinel2": SENTINEL2_QA60,
}


def clear_mask(quality: Raster, bits: QualityBits) -> npt.NDArray[np.bool_]:
    """``True`` where both flags are unset and the QA value is present."""
    qa = np.where(quality.mask, quality.data, 0).astype(np.int64)
    return ((qa & bits.bitmask) == 0) & quality.mask


def mask_scene(scene: Scene, bits: QualityBits) -> Scene:
    """Apply the QA clear mask to every band of *scene*.

    Raises:
        InputValidationError: If the scene carries no QA band.
    """
    if scene.quality is None:
        raise InputValidationError(
            f"Scene {scene.acquired} has no quality band to mask with."
        )
    clear = clear_mask(scene.quality, bits)
    logger.debug(
        "Scene %s: %.1f%% clear pixels", scene.acquired, 100.0 * clear.mean() if clear.size else 0.0
    )
    return scene.replace_bands(scene.bands.map(lambda r: r.masked(clear)))


def mask_collection(collection: SceneCollection, bits: QualityBits) -> SceneCollection:
    return collection.map(lambda s: mask_scene(s, bits))


def apply_scale(
    stack: BandStack,
    scale: float,
    offset: float = 0.0,
    bands: Iterable[str] | None = None,
) -> BandStack:
    """Rescale ``value * scale + offset`` for *bands* (default: all).

    Landsat 8 Collection 1 SR uses ``scale=0.0001``; Collection 2 L2 uses
    ``scale=0.0000275, offset=-0.2``.
    """
    names = stack.band_names if bands is None else list(bands)
    Validators.assert_bands_present(names, stack.band_names)
    return stack.with_bands({
        name: stack[name].with_data(stack[name].data * scale + offset, stack[name].mask)
        for name in names
    })

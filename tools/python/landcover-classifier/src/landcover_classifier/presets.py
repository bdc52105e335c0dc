"""
Study Presets
=============
Ready-made :class:`ClassificationConfig` objects for the two reference
studies.  Every number here is a parameter, not a constant of the
engine; copy a preset with :meth:`ClassificationConfig.with_overrides`
to change it.

Presets:
    cairo     Landsat 8 SR land cover: urban / vegetation / water / bare.
    guyana    Landsat 8 SR + Sentinel-1 VV/VH mangrove extent in hectares.
"""

from __future__ import annotations

import copy

from shared.python.exceptions import ConfigurationError

from landcover_classifier.pipeline import (
    ClassificationConfig,
    CollectionConfig,
    ThresholdMask,
)

# Landsat 8 Collection 1 surface reflectance, bands in file order.
LANDSAT8_SR_BANDS = ["B1", "B2", "B3", "B4", "B5", "B6", "B7", "pixel_qa"]
LANDSAT8_SR_ALIASES = {
    "B2": "blue",
    "B3": "green",
    "B4": "red",
    "B5": "nir",
    "B6": "swir1",
    "B7": "swir2",
}
OPTICAL_BANDS = ["blue", "green", "red", "nir", "swir1", "swir2"]


def _landsat8_sr(name: str = "landsat8") -> CollectionConfig:
    return CollectionConfig(
        name=name,
        bands=list(OPTICAL_BANDS),
        band_names=list(LANDSAT8_SR_BANDS),
        band_aliases=dict(LANDSAT8_SR_ALIASES),
        quality_band="pixel_qa",
        quality_bits="landsat8_sr",
        scale=0.0001,
    )


CAIRO_LANDCOVER = ClassificationConfig(
    name="cairo",
    collections=[_landsat8_sr()],
    start_date="2019-01-01",
    end_date="2020-01-01",
    indices=["NDVI", "NDBI", "MNDWI"],
    predictors=[*OPTICAL_BANDS, "NDVI", "NDBI", "MNDWI"],
    label_property="landcover",
    sample_scale=30.0,
    split_fraction=0.8,
    seed=42,
    number_of_trees=50,
    area_units="km2",
    class_names={0: "urban", 1: "vegetation", 2: "water", 3: "bare"},
    palette={0: "#d63000", 1: "#38a800", 2: "#0070ff", 3: "#f5deb3"},
)

GUYANA_MANGROVES = ClassificationConfig(
    name="guyana",
    collections=[
        _landsat8_sr(),
        CollectionConfig(name="sentinel1", bands=["VV", "VH"]),
    ],
    start_date="2020-01-01",
    end_date="2021-01-01",
    indices=["NDVI", "MNDWI", "SR", "VV_VH"],
    predictors=[*OPTICAL_BANDS, "VV", "VH", "NDVI", "MNDWI", "SR", "VV_VH"],
    label_property="landcover",
    sample_scale=30.0,
    split_fraction=0.8,
    seed=42,
    number_of_trees=100,
    threshold_masks=[
        ThresholdMask("elevation", "<", 80.0),
        ThresholdMask("NDVI", ">", 0.15),
    ],
    target_classes=[1],
    min_connected_pixels=25,
    connectivity=8,
    area_units="ha",
    class_names={0: "non-mangrove", 1: "mangrove"},
    palette={1: "#006400"},
)

PRESETS: dict[str, ClassificationConfig] = {
    "cairo": CAIRO_LANDCOVER,
    "guyana": GUYANA_MANGROVES,
}


def get_preset(name: str) -> ClassificationConfig:
    """Return an independent copy of the preset *name*.

    Raises:
        ConfigurationError: If *name* is not a known preset.
    """
    try:
        return copy.deepcopy(PRESETS[name.strip().lower()])
    except KeyError:
        raise ConfigurationError(
            f"Unknown preset '{name}'. Valid options: {', '.join(PRESETS)}"
        ) from None

"""
Tests for post-classification filters
=====================================

Test classes:
    TestConnectedComponents  Component sizes and speck removal.
    TestClassMasks           Keep / exclude by class code.
    TestThresholdMasks       Comparisons against an auxiliary raster.
"""

from __future__ import annotations

import numpy as np
import pytest
from rasterio.transform import from_origin

from landcover_classifier.postprocess import (
    apply_threshold_mask,
    combine_masks,
    connected_pixel_count,
    exclude_classes,
    keep_classes,
    remove_small_components,
    threshold_mask,
)
from shared.python.exceptions import ConfigurationError, GeometryMismatchError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _speck_and_blob() -> np.ndarray:
    """Class 1 background with a 30-pixel class-2 blob and one class-2 speck."""
    values = np.ones((12, 12))
    values[1:6, 1:7] = 2  # 5 × 6 = 30 px
    values[10, 10] = 2
    return values


class TestConnectedComponents:
    def test_counts_per_component(self, make_raster) -> None:
        counts = connected_pixel_count(make_raster(_speck_and_blob()))
        assert counts[3, 3] == 30
        assert counts[10, 10] == 1
        assert counts[0, 0] == 144 - 31

    def test_isolated_pixel_removed_blob_kept(self, make_raster) -> None:
        cleaned = remove_small_components(make_raster(_speck_and_blob()), 25)
        assert not cleaned.mask[10, 10]
        assert cleaned.mask[3, 3]
        assert cleaned.valid_count == 143

    def test_threshold_is_inclusive(self, make_raster) -> None:
        cleaned = remove_small_components(make_raster(_speck_and_blob()), 30)
        assert not cleaned.mask[3, 3]

    def test_diagonal_connectivity(self, make_raster) -> None:
        values = np.array([[1.0, 0.0], [0.0, 1.0]])
        raster = make_raster(values)
        assert connected_pixel_count(raster, connectivity=8)[0, 0] == 2
        assert connected_pixel_count(raster, connectivity=4)[0, 0] == 1

    def test_invalid_pixels_do_not_join(self, make_raster) -> None:
        raster = make_raster([[1.0, 1.0, 1.0]], mask=[[True, False, True]])
        counts = connected_pixel_count(raster)
        assert counts.tolist() == [[1, 0, 1]]

    def test_max_size_caps(self, make_raster) -> None:
        counts = connected_pixel_count(make_raster(_speck_and_blob()), max_size=10)
        assert counts.max() == 10

    def test_bad_connectivity(self, make_raster) -> None:
        with pytest.raises(ConfigurationError, match="connectivity"):
            connected_pixel_count(make_raster([[1.0]]), connectivity=6)


class TestClassMasks:
    def test_keep_classes(self, make_raster) -> None:
        kept = keep_classes(make_raster([[0.0, 1.0, 2.0]]), [1])
        assert kept.mask.tolist() == [[False, True, False]]

    def test_exclude_classes(self, make_raster) -> None:
        kept = exclude_classes(make_raster([[0.0, 1.0, 2.0]]), [0, 2])
        assert kept.mask.tolist() == [[False, True, False]]


class TestThresholdMasks:
    def test_elevation_below_80(self, make_raster) -> None:
        classified = make_raster([[1.0, 1.0, 1.0, 1.0]])
        dem = make_raster([[5.0, 79.9, 80.0, np.nan]])
        out = apply_threshold_mask(classified, dem, "<", 80)
        assert out.mask.tolist() == [[True, True, False, False]]

    def test_threshold_mask_values(self, make_raster) -> None:
        ndvi = make_raster([[0.1, 0.15, 0.2]])
        assert threshold_mask(ndvi, ">", 0.15).tolist() == [[False, False, True]]
        assert threshold_mask(ndvi, ">=", 0.15).tolist() == [[False, True, True]]

    def test_unknown_operator(self, make_raster) -> None:
        with pytest.raises(ConfigurationError, match="comparison"):
            threshold_mask(make_raster([[1.0]]), "=>", 0)

    def test_grid_mismatch(self, make_raster) -> None:
        with pytest.raises(GeometryMismatchError):
            apply_threshold_mask(
                make_raster([[1.0]]),
                make_raster([[1.0]], transform=from_origin(0, 0, 30, 30)),
                "<", 80,
            )

    def test_combine_masks(self) -> None:
        a = np.array([[True, True, False]])
        b = np.array([[True, False, False]])
        assert combine_masks(a, b).tolist() == [[True, False, False]]
        with pytest.raises(ConfigurationError):
            combine_masks()

"""
Tests for the temporal compositor
=================================

Test classes:
    TestMedianComposite   Per-pixel reduction over valid observations.
    TestObservationCount  Clear-observation counts.
"""

from __future__ import annotations

from datetime import date

import numpy as np
import pytest
from rasterio.transform import from_origin

from landcover_classifier.composite import median_composite, observation_count
from landcover_classifier.raster import BandStack, Raster, Scene, SceneCollection
from shared.python.exceptions import (
    BandNotFoundError,
    ConfigurationError,
    GeometryMismatchError,
    InputValidationError,
)

from conftest import UTM36N


@pytest.fixture
def three_scenes(make_scene) -> SceneCollection:
    """Three 2×2 scenes; pixel (0, 1) is clouded in the middle scene and
    pixel (1, 1) is never observed."""
    nan = np.nan
    return SceneCollection([
        make_scene(date(2019, 1, 1), {"red": [[1.0, 1.0], [4.0, nan]]}),
        make_scene(date(2019, 2, 1), {"red": [[2.0, nan], [5.0, nan]]}),
        make_scene(date(2019, 3, 1), {"red": [[9.0, 3.0], [6.0, nan]]}),
    ])


class TestMedianComposite:
    def test_median_of_valid_observations(self, three_scenes: SceneCollection) -> None:
        red = median_composite(three_scenes)["red"]
        assert red.data[0, 0] == 2.0
        assert red.data[0, 1] == 2.0
        assert red.data[1, 0] == 5.0

    def test_never_observed_pixel_stays_invalid(self, three_scenes: SceneCollection) -> None:
        red = median_composite(three_scenes)["red"]
        assert not red.mask[1, 1]
        assert red.valid_count == 3

    def test_mean_reducer(self, three_scenes: SceneCollection) -> None:
        red = median_composite(three_scenes, reducer="mean")["red"]
        assert red.data[0, 0] == pytest.approx(4.0)

    def test_tiling_and_threads_do_not_change_result(self, make_scene) -> None:
        rng = np.random.default_rng(11)
        scenes = []
        for day in range(1, 6):
            values = rng.random((17, 9))
            values[rng.random((17, 9)) < 0.3] = np.nan
            scenes.append(make_scene(date(2019, 1, day), {"red": values, "nir": values * 2}))
        collection = SceneCollection(scenes)
        whole = median_composite(collection)
        tiled = median_composite(collection, tile_rows=4, max_workers=2)
        for band in ("red", "nir"):
            np.testing.assert_array_equal(whole[band].data, tiled[band].data)
            np.testing.assert_array_equal(whole[band].mask, tiled[band].mask)

    def test_band_subset(self, make_scene) -> None:
        collection = SceneCollection([
            make_scene(date(2019, 1, 1), {"red": [[1.0]], "nir": [[2.0]]}),
        ])
        assert median_composite(collection, ["nir"]).band_names == ["nir"]

    def test_empty_collection_raises(self) -> None:
        with pytest.raises(InputValidationError, match="empty"):
            median_composite(SceneCollection())

    def test_missing_band_raises(self, make_scene) -> None:
        collection = SceneCollection([
            make_scene(date(2019, 1, 1), {"red": [[1.0]], "nir": [[2.0]]}),
            make_scene(date(2019, 1, 2), {"red": [[1.0]]}),
        ])
        with pytest.raises(BandNotFoundError):
            median_composite(collection)

    def test_grid_mismatch_raises(self, make_scene) -> None:
        other = Raster.from_array([[1.0]], from_origin(0, 30, 30, 30), UTM36N)
        collection = SceneCollection([
            make_scene(date(2019, 1, 1), {"red": [[1.0]]}),
            Scene(BandStack({"red": other}), date(2019, 1, 2)),
        ])
        with pytest.raises(GeometryMismatchError):
            median_composite(collection)

    def test_unknown_reducer(self, three_scenes: SceneCollection) -> None:
        with pytest.raises(ConfigurationError, match="reducer"):
            median_composite(three_scenes, reducer="max")  # type: ignore[arg-type]


class TestObservationCount:
    def test_counts(self, three_scenes: SceneCollection) -> None:
        assert observation_count(three_scenes).tolist() == [[3, 2], [3, 0]]

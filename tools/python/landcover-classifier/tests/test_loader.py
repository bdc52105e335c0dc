"""
Tests for the scene loader
==========================

Test classes:
    TestSceneLoader   Band names, dates, QA split-off.
    TestReadRaster    Single-band reads with nodata.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path

import numpy as np
import pytest

from landcover_classifier.loader import SceneLoader, read_raster
from shared.python.exceptions import InputValidationError

from conftest import UTM36N

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ONES = np.ones((3, 4))


class TestSceneLoader:
    def test_names_from_descriptions_and_date_from_filename(
        self, tmp_path: Path, write_scene
    ) -> None:
        write_scene(tmp_path, "LC08_176039_20190412.tif", {"red": _ONES, "nir": 2 * _ONES})
        collection = SceneLoader(tmp_path).load()
        assert len(collection) == 1
        scene = collection[0]
        assert scene.acquired == date(2019, 4, 12)
        assert scene.bands.band_names == ["red", "nir"]
        assert scene.bands["nir"].data[0, 0] == 2.0
        assert scene.bands.crs == UTM36N
        assert scene.quality is None

    def test_acquired_tag_wins_over_filename(self, tmp_path: Path, write_scene) -> None:
        write_scene(tmp_path, "scene_20190101.tif", {"red": _ONES}, tags={"ACQUIRED": "2019-07-15"})
        assert SceneLoader(tmp_path).load()[0].acquired == date(2019, 7, 15)

    def test_malformed_tag_falls_back_to_filename(self, tmp_path: Path, write_scene) -> None:
        write_scene(tmp_path, "scene_20190101.tif", {"red": _ONES}, tags={"ACQUIRED": "July"})
        assert SceneLoader(tmp_path).load()[0].acquired == date(2019, 1, 1)

    def test_scenes_sorted_by_date(self, tmp_path: Path, write_scene) -> None:
        write_scene(tmp_path, "a_20190601.tif", {"red": _ONES})
        write_scene(tmp_path, "b_20190101.tif", {"red": _ONES})
        assert SceneLoader(tmp_path).load().dates == [date(2019, 1, 1), date(2019, 6, 1)]

    def test_quality_band_split_off(self, tmp_path: Path, write_scene) -> None:
        write_scene(tmp_path, "s_20190101.tif", {"red": _ONES, "pixel_qa": 32 * _ONES})
        scene = SceneLoader(tmp_path, quality_band="pixel_qa").load()[0]
        assert scene.bands.band_names == ["red"]
        assert scene.quality is not None
        assert scene.quality.data[0, 0] == 32.0

    def test_missing_quality_band_raises(self, tmp_path: Path, write_scene) -> None:
        write_scene(tmp_path, "s_20190101.tif", {"red": _ONES})
        with pytest.raises(InputValidationError, match="pixel_qa"):
            SceneLoader(tmp_path, quality_band="pixel_qa").load()

    def test_band_name_override(self, tmp_path: Path, write_scene) -> None:
        write_scene(tmp_path, "s_20190101.tif", {"x": _ONES, "y": _ONES})
        scene = SceneLoader(tmp_path, band_names=["VV", "VH"]).load()[0]
        assert scene.bands.band_names == ["VV", "VH"]

    def test_band_name_count_mismatch(self, tmp_path: Path, write_scene) -> None:
        write_scene(tmp_path, "s_20190101.tif", {"x": _ONES, "y": _ONES})
        with pytest.raises(InputValidationError, match="band name"):
            SceneLoader(tmp_path, band_names=["VV"]).load()

    def test_no_date_raises(self, tmp_path: Path, write_scene) -> None:
        write_scene(tmp_path, "undated.tif", {"red": _ONES})
        with pytest.raises(InputValidationError, match="acquisition date"):
            SceneLoader(tmp_path).load()

    def test_empty_directory_raises(self, tmp_path: Path) -> None:
        with pytest.raises(InputValidationError, match="No raster files"):
            SceneLoader(tmp_path).load()

    def test_missing_directory_raises(self, tmp_path: Path) -> None:
        with pytest.raises(InputValidationError):
            SceneLoader(tmp_path / "nope").load()

    def test_nodata_is_masked(self, tmp_path: Path, write_scene) -> None:
        values = np.array([[1.0, -9999.0]])
        write_scene(tmp_path, "s_20190101.tif", {"red": values}, nodata=-9999.0)
        red = SceneLoader(tmp_path).load()[0].bands["red"]
        assert red.mask.tolist() == [[True, False]]


class TestReadRaster:
    def test_reads_band_with_nodata(self, tmp_path: Path, write_scene) -> None:
        path = write_scene(tmp_path, "dem.tif", {"elevation": [[5.0, 0.0], [120.0, 7.0]]}, nodata=0.0)
        dem = read_raster(path)
        assert dem.mask.tolist() == [[True, False], [True, True]]
        assert dem.data[1, 0] == 120.0

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(InputValidationError, match="not found"):
            read_raster(tmp_path / "missing.tif")

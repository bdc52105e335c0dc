"""
Tests for the area reducer
==========================

Test classes:
    TestPixelArea   Projected and geographic cell areas.
    TestPixelWidth  Ground pixel size in metres.
    TestClassArea   Sums per class, region and unit.
"""

from __future__ import annotations

import math

import numpy as np
import pytest
from rasterio.crs import CRS
from rasterio.transform import from_origin

from landcover_classifier.area import area_by_class, class_area, pixel_area, pixel_width
from landcover_classifier.raster import Raster
from shared.python.exceptions import ConfigurationError, InputValidationError

from conftest import GRID, pixel_box

WGS84 = CRS.from_epsg(4326)


class TestPixelArea:
    def test_projected_constant(self, make_raster) -> None:
        areas = pixel_area(make_raster(np.zeros((3, 4))))
        assert areas.shape == (3, 4)
        assert np.all(areas == pytest.approx(900.0))

    def test_geographic_shrinks_with_latitude(self) -> None:
        size = 0.01
        equator = Raster.from_array([[1.0]], from_origin(31.0, 0.5 + size / 2, size, size), WGS84)
        north = Raster.from_array([[1.0]], from_origin(31.0, 60.5 + size / 2, size, size), WGS84)
        ratio = pixel_area(north)[0, 0] / pixel_area(equator)[0, 0]
        expected = math.cos(math.radians(60.5)) / math.cos(math.radians(0.5))
        assert ratio == pytest.approx(expected, rel=0.02)

    def test_geographic_rows_differ(self) -> None:
        raster = Raster.from_array(np.zeros((3, 2)), from_origin(31.0, 30.0, 1.0, 1.0), WGS84)
        areas = pixel_area(raster)
        assert areas[0, 0] < areas[2, 0]
        assert areas[0, 0] == areas[0, 1]

    def test_no_crs(self) -> None:
        with pytest.raises(InputValidationError, match="CRS"):
            pixel_area(Raster.from_array([[1.0]], GRID, None))


class TestPixelWidth:
    def test_projected(self, make_raster) -> None:
        assert pixel_width(make_raster(np.zeros((2, 2)))) == pytest.approx(30.0)

    def test_geographic_in_metres(self) -> None:
        raster = Raster.from_array(np.zeros((3, 3)), from_origin(-58.2, 0.0015, 0.001, 0.001), WGS84)
        # One thousandth of a degree of longitude at the equator.
        assert pixel_width(raster) == pytest.approx(111.32, rel=1e-3)

    def test_no_crs(self) -> None:
        with pytest.raises(InputValidationError, match="CRS"):
            pixel_width(Raster.from_array([[1.0]], GRID, None))


class TestClassArea:
    def test_hectares(self, make_raster) -> None:
        classified = make_raster([[1.0, 1.0, 0.0], [1.0, np.nan, 0.0]])
        assert class_area(classified, 1) == pytest.approx(3 * 900 / 1e4)
        assert class_area(classified, 1, units="m2") == pytest.approx(2700.0)
        assert class_area(classified, 1, units="km2") == pytest.approx(0.0027)

    def test_region_restriction(self, make_raster) -> None:
        classified = make_raster(np.ones((10, 10)))
        assert class_area(classified, 1, region=pixel_box(0, 0, 4, 5), units="m2") == pytest.approx(
            20 * 900.0
        )

    def test_region_geodataframe_reprojected(self, make_raster) -> None:
        import geopandas as gpd

        classified = make_raster(np.ones((10, 10)))
        region = gpd.GeoDataFrame(geometry=[pixel_box(0, 0, 4, 5)], crs="EPSG:32636").to_crs("EPSG:4326")
        assert class_area(classified, 1, region=region, units="m2") == pytest.approx(20 * 900.0)

    def test_area_by_class(self, make_raster) -> None:
        classified = make_raster([[0.0, 1.0, 1.0, 2.0]])
        assert area_by_class(classified, units="m2") == pytest.approx({0: 900.0, 1: 1800.0, 2: 900.0})
        assert area_by_class(classified, classes=[1, 5], units="m2") == pytest.approx({1: 1800.0, 5: 0.0})

    def test_unknown_units(self, make_raster) -> None:
        with pytest.raises(ConfigurationError, match="acres"):
            class_area(make_raster([[1.0]]), 1, units="acres")

"""
Tests for spectral index derivation
===================================

Test classes:
    TestNormalizedDifference  Values and zero-denominator handling.
    TestOtherStrategies       Ratios, SAVI, EVI and expressions.
    TestRegistry              Name lookup.
    TestDeriveIndices         Appending bands to a stack.
"""

from __future__ import annotations

import numpy as np
import pytest

from landcover_classifier.indices import (
    EVI,
    SAVI,
    ExpressionIndex,
    NormalizedDifference,
    derive_indices,
    get_index,
)
from landcover_classifier.raster import BandStack
from shared.python.exceptions import SpectralIndexError

from conftest import GRID, UTM36N


def _stack(**bands) -> BandStack:
    return BandStack.from_arrays(bands, GRID, UTM36N)


class TestNormalizedDifference:
    def test_ndvi_value(self) -> None:
        stack = _stack(nir=[[0.5]], red=[[0.1]])
        ndvi = get_index("NDVI").compute(stack)
        assert ndvi.data[0, 0] == pytest.approx(0.4 / 0.6)

    def test_zero_denominator_is_invalid(self) -> None:
        stack = _stack(nir=[[0.0, 0.2]], red=[[0.0, 0.2]])
        ndvi = get_index("NDVI").compute(stack)
        assert ndvi.mask.tolist() == [[False, True]]
        assert ndvi.data[0, 1] == 0.0

    def test_invalid_input_pixel_propagates(self) -> None:
        stack = _stack(nir=[[np.nan, 0.5]], red=[[0.1, 0.1]])
        assert get_index("NDVI").compute(stack).mask.tolist() == [[False, True]]

    def test_range_bounded(self) -> None:
        rng = np.random.default_rng(3)
        stack = _stack(nir=rng.random((10, 10)), red=rng.random((10, 10)))
        values = get_index("NDVI").compute(stack).data
        assert np.nanmin(values) >= -1.0
        assert np.nanmax(values) <= 1.0

    def test_missing_band_raises(self) -> None:
        with pytest.raises(SpectralIndexError, match="swir1"):
            get_index("MNDWI").compute(_stack(green=[[0.1]]))


class TestOtherStrategies:
    def test_simple_ratio_and_radar_ratio(self) -> None:
        stack = _stack(VV=[[-10.0, 1.0]], VH=[[-20.0, 0.0]])
        ratio = get_index("VV_VH").compute(stack)
        assert ratio.data[0, 0] == pytest.approx(0.5)
        assert not ratio.mask[0, 1]

    def test_savi(self) -> None:
        stack = _stack(nir=[[0.5]], red=[[0.1]])
        value = SAVI(soil_factor=0.5).compute(stack).data[0, 0]
        assert value == pytest.approx((0.4 / 1.1) * 1.5)

    def test_evi(self) -> None:
        stack = _stack(nir=[[0.5]], red=[[0.1]], blue=[[0.05]])
        value = EVI().compute(stack).data[0, 0]
        assert value == pytest.approx(2.5 * 0.4 / (0.5 + 0.6 - 0.375 + 1.0))

    def test_expression_index_gets_bands_by_keyword(self) -> None:
        nbr2 = ExpressionIndex(
            "NBR2", ["swir1", "swir2"], lambda swir1, swir2: (swir1 - swir2) / (swir1 + swir2)
        )
        stack = _stack(swir1=[[0.3]], swir2=[[0.1]])
        assert nbr2.compute(stack).data[0, 0] == pytest.approx(0.5)


class TestRegistry:
    def test_case_insensitive(self) -> None:
        assert get_index("ndbi").name == "NDBI"

    def test_unknown_index(self) -> None:
        with pytest.raises(SpectralIndexError, match="unknown index"):
            get_index("FOO")


class TestDeriveIndices:
    def test_appends_bands_and_keeps_sources(self) -> None:
        stack = _stack(nir=[[0.5]], red=[[0.1]], green=[[0.2]], swir1=[[0.3]])
        out = derive_indices(stack, ["NDVI", NormalizedDifference("GNDVI", "nir", "green")])
        assert out.band_names == ["nir", "red", "green", "swir1", "NDVI", "GNDVI"]
        assert out["red"].data[0, 0] == 0.1
        assert stack.band_names == ["nir", "red", "green", "swir1"]

    def test_name_collision_raises(self) -> None:
        stack = _stack(nir=[[0.5]], red=[[0.1]], NDVI=[[0.0]])
        with pytest.raises(SpectralIndexError, match="already exists"):
            derive_indices(stack, ["NDVI"])

    def test_duplicate_request_raises(self) -> None:
        stack = _stack(nir=[[0.5]], red=[[0.1]])
        with pytest.raises(SpectralIndexError):
            derive_indices(stack, ["NDVI", "ndvi"])

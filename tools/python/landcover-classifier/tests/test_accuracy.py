"""
Tests for accuracy assessment
=============================

Test classes:
    TestConfusionMatrix   Counts, overall accuracy, kappa, per-class figures.
    TestAssess            Evaluation of a trained model on a test table.
    TestCompareReference  Pixel agreement with a reference map.
"""

from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest
from rasterio.transform import from_origin

from landcover_classifier.accuracy import ConfusionMatrix, assess, compare_reference
from landcover_classifier.sampling import SampleTable
from shared.python.exceptions import (
    GeometryMismatchError,
    InputValidationError,
    TrainingDataError,
)


class _ConstantModel:
    """Predicts one class for every row."""

    classes = (0, 1)

    def __init__(self, value: int) -> None:
        self.value = value

    def predict_table(self, table: SampleTable) -> np.ndarray:
        return np.full(len(table), self.value)


class TestConfusionMatrix:
    @pytest.fixture
    def matrix(self) -> ConfusionMatrix:
        return ConfusionMatrix.from_labels([0, 0, 1, 1], [0, 1, 1, 1])

    def test_counts(self, matrix: ConfusionMatrix) -> None:
        assert matrix.classes == (0, 1)
        assert matrix.matrix.tolist() == [[1, 1], [0, 2]]
        assert matrix.total == 4

    def test_overall_accuracy(self, matrix: ConfusionMatrix) -> None:
        assert matrix.overall_accuracy() == pytest.approx(0.75)

    def test_kappa(self, matrix: ConfusionMatrix) -> None:
        assert matrix.kappa() == pytest.approx(0.5)

    def test_kappa_three_classes(self) -> None:
        rng = np.random.default_rng(11)
        true = rng.integers(0, 3, 200)
        predicted = np.where(rng.random(200) < 0.7, true, rng.integers(0, 3, 200))
        matrix = ConfusionMatrix.from_labels(true, predicted)
        n = matrix.total
        observed = np.trace(matrix.matrix) / n
        expected = (matrix.matrix.sum(axis=0) * matrix.matrix.sum(axis=1)).sum() / n**2
        assert matrix.kappa() == pytest.approx((observed - expected) / (1 - expected))

    def test_labels_rebuild_the_matrix(self, matrix: ConfusionMatrix) -> None:
        true, predicted = matrix.labels()
        rebuilt = ConfusionMatrix.from_labels(true, predicted)
        assert rebuilt.matrix.tolist() == matrix.matrix.tolist()

    def test_producers_and_consumers(self, matrix: ConfusionMatrix) -> None:
        assert matrix.producers_accuracy() == pytest.approx({0: 0.5, 1: 1.0})
        assert matrix.consumers_accuracy() == pytest.approx({0: 1.0, 1: 2 / 3})

    def test_declared_class_never_seen(self) -> None:
        matrix = ConfusionMatrix.from_labels([0, 1], [0, 1], classes=[0, 1, 2])
        assert matrix.classes == (0, 1, 2)
        assert matrix.matrix[2].tolist() == [0, 0, 0]
        assert math.isnan(matrix.producers_accuracy()[2])

    def test_predicted_only_class_gets_a_column(self) -> None:
        matrix = ConfusionMatrix.from_labels([0, 0], [0, 3])
        assert matrix.classes == (0, 3)
        assert matrix.matrix.tolist() == [[1, 1], [0, 0]]

    def test_kappa_undefined(self) -> None:
        matrix = ConfusionMatrix.from_labels([1, 1, 1], [1, 1, 1])
        assert matrix.overall_accuracy() == 1.0
        assert math.isnan(matrix.kappa())
        assert matrix.to_dict()["kappa"] is None

    def test_empty_raises(self) -> None:
        with pytest.raises(TrainingDataError, match="empty"):
            ConfusionMatrix.from_labels([], [])

    def test_length_mismatch(self) -> None:
        with pytest.raises(InputValidationError, match="length"):
            ConfusionMatrix.from_labels([0, 1], [0])

    def test_to_frame_uses_class_names(self, matrix: ConfusionMatrix) -> None:
        frame = matrix.to_frame({0: "urban", 1: "vegetation"})
        assert list(frame.index) == ["urban", "vegetation"]
        assert frame.loc["urban", "vegetation"] == 1

    def test_to_dict(self, matrix: ConfusionMatrix) -> None:
        data = matrix.to_dict()
        assert data["matrix"] == [[1, 1], [0, 2]]
        assert data["producers_accuracy"] == pytest.approx({"0": 0.5, "1": 1.0})


class TestAssess:
    def _table(self, labels) -> SampleTable:
        frame = pd.DataFrame({"red": np.zeros(len(labels)), "landcover": labels})
        return SampleTable(frame, ("red",), "landcover")

    def test_assess(self) -> None:
        matrix = assess(_ConstantModel(1), self._table([0, 1, 1, 1]))
        assert matrix.overall_accuracy() == pytest.approx(0.75)

    def test_empty_testing_set(self) -> None:
        with pytest.raises(TrainingDataError):
            assess(_ConstantModel(1), self._table([]))


class TestCompareReference:
    def test_agreement_over_common_valid_pixels(self, make_raster) -> None:
        classified = make_raster([[0, 1, 1, np.nan]])
        reference = make_raster([[0, 1, 0, 1]])
        matrix = compare_reference(classified, reference)
        assert matrix.total == 3
        assert matrix.overall_accuracy() == pytest.approx(2 / 3)
        # Rows are reference classes.
        assert matrix.matrix.tolist() == [[1, 1], [0, 1]]

    def test_grid_mismatch(self, make_raster) -> None:
        with pytest.raises(GeometryMismatchError):
            compare_reference(
                make_raster([[0, 1]]),
                make_raster([[0, 1]], transform=from_origin(0, 0, 30, 30)),
            )

"""
Accuracy Evaluator
==================
Confusion matrix and the usual map-accuracy figures for a held-out test
table.

Rows are true classes and columns are predicted classes.  The class list
is the union of the declared classes and every class observed in either
vector, so a class never predicted still gets its (zero) column.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import numpy as np
import numpy.typing as npt
import pandas as pd
from sklearn.metrics import cohen_kappa_score, confusion_matrix

from shared.python.exceptions import InputValidationError, TrainingDataError

from landcover_classifier.raster import Raster
from landcover_classifier.sampling import SampleTable

logger = logging.getLogger("geoclassify.landcover_classifier.accuracy")


@dataclass(frozen=True, eq=False)
class ConfusionMatrix:
    """Square count matrix over :attr:`classes`.

    Attributes:
        classes: Sorted class codes.
        matrix: ``matrix[i, j]`` counts samples of true class
            ``classes[i]`` predicted as ``classes[j]``.
    """

    classes: tuple[int, ...]
    matrix: npt.NDArray[np.int64]

    @classmethod
    def from_labels(
        cls,
        true: npt.ArrayLike,
        predicted: npt.ArrayLike,
        classes: Iterable[int] | None = None,
    ) -> ConfusionMatrix:
        """Tabulate *true* against *predicted*.

        Raises:
            InputValidationError: If the vectors differ in length.
            TrainingDataError: If there are no samples.
        """
        t = np.asarray(true, dtype=np.int64).ravel()
        p = np.asarray(predicted, dtype=np.int64).ravel()
        if t.shape != p.shape:
            raise InputValidationError(
                f"True and predicted labels differ in length ({t.size} vs {p.size})."
            )
        if t.size == 0:
            raise TrainingDataError(
                "Testing set is empty; lower the split fraction or add samples."
            )
        labels = set(int(c) for c in (classes or ())) | set(t.tolist()) | set(p.tolist())
        ordered = sorted(labels)
        matrix = confusion_matrix(t, p, labels=ordered)
        return cls(tuple(ordered), matrix.astype(np.int64))

    @property
    def total(self) -> int:
        return int(self.matrix.sum())

    def overall_accuracy(self) -> float:
        """Share of samples on the diagonal."""
        return float(np.trace(self.matrix) / self.total)

    def kappa(self) -> float:
        """Cohen's kappa.  NaN when expected agreement is 1."""
        n = self.total
        expected = float((self.matrix.sum(axis=0) * self.matrix.sum(axis=1)).sum()) / (n * n)
        if expected == 1.0:
            return float("nan")
        true, predicted = self.labels()
        return float(cohen_kappa_score(true, predicted, labels=list(self.classes)))

    def labels(self) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
        """Expand the counts back into ``(true, predicted)`` label vectors."""
        codes = np.asarray(self.classes, dtype=np.int64)
        rows, cols = np.indices(self.matrix.shape)
        counts = self.matrix.ravel()
        return np.repeat(codes[rows.ravel()], counts), np.repeat(codes[cols.ravel()], counts)

    def producers_accuracy(self) -> dict[int, float]:
        """Per-class recall: diagonal over row total (NaN for empty rows)."""
        return self._ratio(self.matrix.sum(axis=1))

    def consumers_accuracy(self) -> dict[int, float]:
        """Per-class precision: diagonal over column total (NaN for empty columns)."""
        return self._ratio(self.matrix.sum(axis=0))

    def _ratio(self, totals: npt.NDArray[np.int64]) -> dict[int, float]:
        diagonal = np.diag(self.matrix).astype(np.float64)
        with np.errstate(invalid="ignore", divide="ignore"):
            values = np.where(totals > 0, diagonal / totals, np.nan)
        return {c: float(v) for c, v in zip(self.classes, values)}

    def to_frame(self, class_names: dict[int, str] | None = None) -> pd.DataFrame:
        names = [class_names.get(c, str(c)) if class_names else str(c) for c in self.classes]
        return pd.DataFrame(
            self.matrix,
            index=pd.Index(names, name="true"),
            columns=pd.Index(names, name="predicted"),
        )

    def to_dict(self) -> dict[str, object]:
        def _clean(value: float) -> float | None:
            return None if np.isnan(value) else value

        return {
            "classes": list(self.classes),
            "matrix": self.matrix.tolist(),
            "overall_accuracy": self.overall_accuracy(),
            "kappa": _clean(self.kappa()),
            "producers_accuracy": {str(k): _clean(v) for k, v in self.producers_accuracy().items()},
            "consumers_accuracy": {str(k): _clean(v) for k, v in self.consumers_accuracy().items()},
        }


def assess(model: object, testing: SampleTable) -> ConfusionMatrix:
    """Predict *testing* with *model* and tabulate against its labels.

    *model* is anything with ``predict_table`` and ``classes``
    (normally a :class:`~landcover_classifier.classifier.RandomForestModel`).
    """
    if len(testing) == 0:
        raise TrainingDataError(
            "Testing set is empty; lower the split fraction or add samples."
        )
    predicted = model.predict_table(testing)  # type: ignore[attr-defined]
    matrix = ConfusionMatrix.from_labels(
        testing.labels(), predicted, classes=model.classes  # type: ignore[attr-defined]
    )
    logger.info(
        "Overall accuracy %.4f (kappa %.4f) on %d test sample(s)",
        matrix.overall_accuracy(), matrix.kappa(), matrix.total,
    )
    return matrix


def compare_reference(classified: Raster, reference: Raster) -> ConfusionMatrix:
    """Pixel-wise agreement between *classified* and a reference map.

    Only pixels valid in both rasters are tabulated; rows are reference
    classes, columns classified ones.

    Raises:
        GeometryMismatchError: If the rasters are on different grids.
        TrainingDataError: If no pixel is valid in both.
    """
    classified.assert_same_grid(reference)
    both = classified.mask & reference.mask
    matrix = ConfusionMatrix.from_labels(
        reference.data[both].astype(np.int64), classified.data[both].astype(np.int64)
    )
    logger.info(
        "Agreement with reference map: %.4f over %d pixel(s)",
        matrix.overall_accuracy(), matrix.total,
    )
    return matrix

"""
Random Forest Classifier
========================
An ensemble of CART decision trees, each grown on a bootstrap resample of
the training table.

* Trees are scikit-learn ``DecisionTreeClassifier`` objects (Gini
  impurity, ``variables_per_split`` candidate features per split).
* Bootstrap indices and tree seeds come from one seeded numpy generator,
  so a fixed ``seed`` gives the same forest for any ``n_jobs``.
* Prediction is a majority vote over trees.  Ties go to the lowest class
  code.

Usage::

    forest = RandomForest(number_of_trees=10, seed=42)
    model = forest.train(training, predictors=["red", "nir", "NDVI"])
    classified = model.classify(composite)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

import joblib
import numpy as np
import numpy.typing as npt
from joblib import Parallel, delayed
from sklearn.tree import DecisionTreeClassifier

from shared.python.exceptions import (
    InputValidationError,
    OutputWriteError,
    TrainingDataError,
)
from shared.python.validators import Validators

from landcover_classifier.raster import BandStack, Raster
from landcover_classifier.sampling import SampleTable

logger = logging.getLogger("geoclassify.landcover_classifier.classifier")

_SEED_LIMIT = 2**31 - 1


def _fit_tree(
    features: npt.NDArray[np.float64],
    labels: npt.NDArray[np.int64],
    rows: npt.NDArray[np.int64],
    tree_seed: int,
    variables_per_split: int,
    min_leaf_population: int,
    max_nodes: int | None,
) -> DecisionTreeClassifier:
    tree = DecisionTreeClassifier(
        criterion="gini",
        max_features=variables_per_split,
        min_samples_leaf=min_leaf_population,
        max_leaf_nodes=max_nodes,
        random_state=tree_seed,
    )
    tree.fit(features[rows], labels[rows])
    return tree


# ---------------------------------------------------------------------------
# Trained model
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class RandomForestModel:
    """A trained forest.  Immutable; produced by :meth:`RandomForest.train`.

    Attributes:
        trees: Fitted decision trees.
        predictors: Feature band names, in column order.
        classes: Sorted class codes seen in training.
        params: Hyper-parameters the forest was grown with.
    """

    trees: tuple[DecisionTreeClassifier, ...]
    predictors: tuple[str, ...]
    classes: tuple[int, ...]
    params: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def votes(self, features: npt.ArrayLike) -> npt.NDArray[np.int64]:
        """Per-class vote counts, shape ``(n_samples, n_classes)``."""
        x = np.asarray(features, dtype=np.float64)
        if x.ndim != 2 or x.shape[1] != len(self.predictors):
            raise InputValidationError(
                f"Expected features of shape (n, {len(self.predictors)}), got {x.shape}."
            )
        if not np.isfinite(x).all():
            raise InputValidationError("Features must be finite; drop invalid pixels first.")

        classes = np.asarray(self.classes, dtype=np.int64)
        counts = np.zeros((x.shape[0], classes.size), dtype=np.int64)
        if x.shape[0] == 0:
            return counts
        rows = np.arange(x.shape[0])
        for tree in self.trees:
            predicted = tree.predict(x).astype(np.int64)
            counts[rows, np.searchsorted(classes, predicted)] += 1
        return counts

    def predict(self, features: npt.ArrayLike) -> npt.NDArray[np.int64]:
        """Majority-vote class code per row of *features*."""
        counts = self.votes(features)
        # argmax returns the first maximum, i.e. the lowest class code.
        return np.asarray(self.classes, dtype=np.int64)[counts.argmax(axis=1)]

    def predict_table(self, table: SampleTable) -> npt.NDArray[np.int64]:
        Validators.assert_columns_exist(table.frame, self.predictors)
        return self.predict(table.features(self.predictors))

    def classify(self, stack: BandStack, *, tile_rows: int | None = None) -> Raster:
        """Classify every pixel valid in all predictor bands.

        Pixels invalid in any predictor stay invalid.  Row tiling bounds
        memory and does not change the result.

        Raises:
            BandNotFoundError: If a predictor band is missing from *stack*.
        """
        Validators.assert_bands_present(self.predictors, stack.band_names)
        if tile_rows is not None:
            Validators.assert_in_range("tile_rows", tile_rows, 1)

        valid = stack.valid_mask(self.predictors)
        height = stack.shape[0]
        step = tile_rows or max(height, 1)
        out = np.full(stack.shape, np.nan, dtype=np.float64)
        bands = [stack[name].data for name in self.predictors]

        for top in range(0, height, step):
            rows = slice(top, min(top + step, height))
            tile_valid = valid[rows]
            if not tile_valid.any():
                continue
            features = np.column_stack([band[rows][tile_valid] for band in bands])
            tile = out[rows]
            tile[tile_valid] = self.predict(features)

        logger.info(
            "Classified %d pixel(s) into %d class(es)", int(valid.sum()), len(self.classes)
        )
        return stack[self.predictors[0]].with_data(out, valid)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def feature_importances(self) -> dict[str, float]:
        """Mean Gini importance of each predictor across trees."""
        stacked = np.vstack([tree.feature_importances_ for tree in self.trees])
        return {name: float(v) for name, v in zip(self.predictors, stacked.mean(axis=0))}

    def explain(self) -> dict[str, Any]:
        return {
            "numberOfTrees": len(self.trees),
            "variablesPerSplit": self.params.get("variables_per_split"),
            "minLeafPopulation": self.params.get("min_leaf_population"),
            "bagFraction": self.params.get("bag_fraction"),
            "maxNodes": self.params.get("max_nodes"),
            "seed": self.params.get("seed"),
            "predictors": list(self.predictors),
            "classes": list(self.classes),
            "importance": self.feature_importances(),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        path = Path(path)
        Validators.assert_output_dir_writable(path.parent)
        try:
            joblib.dump(self, path)
        except OSError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        logger.info("Model saved → %s", path)
        return path

    @classmethod
    def load(cls, path: Path) -> RandomForestModel:
        path = Path(path)
        Validators.assert_file_exists(path)
        model = joblib.load(path)
        if not isinstance(model, cls):
            raise InputValidationError(f"'{path}' does not contain a {cls.__name__}.")
        return model

    def __repr__(self) -> str:
        return (
            f"RandomForestModel(trees={len(self.trees)}, "
            f"predictors={list(self.predictors)}, classes={list(self.classes)})"
        )


# ---------------------------------------------------------------------------
# Trainer
# ---------------------------------------------------------------------------


@dataclass
class RandomForest:
    """Random-forest hyper-parameters.

    Attributes:
        number_of_trees: Trees in the ensemble.
        variables_per_split: Candidate predictors per split; ``None``
            means ``ceil(sqrt(p))``.
        min_leaf_population: Minimum samples per leaf.
        bag_fraction: Bootstrap size as a fraction of the training set.
        max_nodes: Maximum leaves per tree (``None``: unlimited).
        seed: Seed for bootstraps and split candidates.
        n_jobs: Parallel tree fits (``joblib``).  Does not affect results.
    """

    number_of_trees: int = 10
    variables_per_split: int | None = None
    min_leaf_population: int = 1
    bag_fraction: float = 1.0
    max_nodes: int | None = None
    seed: int = 0
    n_jobs: int = 1

    def __post_init__(self) -> None:
        Validators.assert_in_range("number_of_trees", self.number_of_trees, 1)
        Validators.assert_in_range("min_leaf_population", self.min_leaf_population, 1)
        Validators.assert_in_range("bag_fraction", self.bag_fraction, 0.0, 1.0, low_inclusive=False)
        if self.variables_per_split is not None:
            Validators.assert_in_range("variables_per_split", self.variables_per_split, 1)
        if self.max_nodes is not None:
            Validators.assert_in_range("max_nodes", self.max_nodes, 2)

    def train(
        self,
        table: SampleTable,
        predictors: Sequence[str] | None = None,
        label: str | None = None,
    ) -> RandomForestModel:
        """Grow the forest on *table*.

        Raises:
            TrainingDataError: If *table* is empty or holds a single class.
            ColumnNotFoundError: If a predictor or the label is missing.
            ConfigurationError: If ``variables_per_split`` exceeds the
                number of predictors.
            InputValidationError: If any feature value is not finite.
        """
        names = list(table.bands if predictors is None else predictors)
        label = label or table.label
        Validators.assert_columns_exist(table.frame, [*names, label])
        if len(table) == 0:
            raise TrainingDataError("Training table is empty.")

        features = table.frame[names].to_numpy(dtype=np.float64)
        labels = table.frame[label].to_numpy(dtype=np.int64)
        if not np.isfinite(features).all():
            raise InputValidationError(
                "Training features contain NaN or infinite values."
            )
        classes = np.unique(labels)
        if classes.size < 2:
            raise TrainingDataError(
                f"Training table holds a single class ({classes.tolist()}); "
                "at least two are required."
            )

        p = len(names)
        k = self.variables_per_split or max(1, math.ceil(math.sqrt(p)))
        Validators.assert_in_range("variables_per_split", k, 1, p)

        n = len(labels)
        bag_size = max(1, int(round(self.bag_fraction * n)))
        rng = np.random.default_rng(self.seed)
        draws = [
            (rng.integers(0, n, size=bag_size), int(rng.integers(0, _SEED_LIMIT)))
            for _ in range(self.number_of_trees)
        ]

        logger.info(
            "Training %d tree(s) on %d sample(s), %d predictor(s), %d class(es)",
            self.number_of_trees, n, p, classes.size,
        )
        trees = Parallel(n_jobs=self.n_jobs)(
            delayed(_fit_tree)(
                features, labels, rows, tree_seed, k, self.min_leaf_population, self.max_nodes
            )
            for rows, tree_seed in draws
        )

        params = {
            "number_of_trees": self.number_of_trees,
            "variables_per_split": k,
            "min_leaf_population": self.min_leaf_population,
            "bag_fraction": self.bag_fraction,
            "max_nodes": self.max_nodes,
            "seed": self.seed,
        }
        return RandomForestModel(
            trees=tuple(trees),
            predictors=tuple(names),
            classes=tuple(int(c) for c in classes),
            params=params,
        )

"""
Land-Cover Classification Pipeline
==================================
End-to-end run of one study: load scenes → cloud mask → rescale →
composite → indices → (DEM) → sample → split → train → assess →
classify → post-filter → area → export.

Classes:
    CollectionConfig      One sensor's scenes: QA bits, aliases, scaling.
    ThresholdMask         ``band <op> value`` mask on the classified map.
    ClassificationConfig  Everything a run needs; dataclass, JSON or preset.
    ClassificationResult  Immutable outputs of :meth:`LandCoverClassifier.classify_stack`.
    LandCoverClassifier   Primary tool class (inherits GeoTool).

Every step runs inside :meth:`GeoTool.stage`, so an error escaping the
pipeline carries the name of the step that raised it in ``exc.stage``.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Mapping

import geopandas as gpd

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    ConfigurationError,
    InputValidationError,
    TrainingDataError,
)
from shared.python.validators import Validators

from landcover_classifier.accuracy import ConfusionMatrix, assess, compare_reference
from landcover_classifier.area import UNITS, area_by_class
from landcover_classifier.classifier import RandomForest, RandomForestModel
from landcover_classifier.composite import median_composite
from landcover_classifier.export import (
    export_points_csv,
    vectorize,
    write_classified,
    write_report,
    write_vectors,
)
from landcover_classifier.indices import derive_indices, get_index
from landcover_classifier.loader import SceneLoader, read_raster
from landcover_classifier.postprocess import (
    COMPARISONS,
    apply_threshold_mask,
    keep_classes,
    remove_small_components,
)
from landcover_classifier.quality import QUALITY_PRESETS, apply_scale, mask_collection
from landcover_classifier.raster import BandStack, Raster, Scene, SceneCollection
from landcover_classifier.sampling import SampleTable, Sampler, split_samples

logger = logging.getLogger("geoclassify.landcover_classifier.pipeline")

VECTOR_EXTENSIONS = [".geojson", ".json", ".gpkg", ".shp"]
ELEVATION_BAND = "elevation"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class CollectionConfig:
    """One image collection (one sensor) feeding the composite.

    Attributes:
        name: Key of the scene directory passed to the tool.
        bands: Bands to composite, after renaming (``None``: all).
        band_names: Explicit band names in file order (overrides the
            GeoTIFF band descriptions).
        band_aliases: Renames applied after loading, e.g. ``{"B5": "nir"}``.
        quality_band: QA band name, split off from the reflectance bands.
        quality_bits: Key of :data:`~landcover_classifier.quality.QUALITY_PRESETS`;
            ``None`` skips cloud masking.
        scale: Multiplier applied to ``scaled_bands``.
        offset: Additive term applied after *scale*.
        scaled_bands: Bands to rescale (``None``: all composited bands).
        reducer: ``"median"`` or ``"mean"``.
    """

    name: str
    bands: list[str] | None = None
    band_names: list[str] | None = None
    band_aliases: dict[str, str] = field(default_factory=dict)
    quality_band: str | None = None
    quality_bits: str | None = None
    scale: float = 1.0
    offset: float = 0.0
    scaled_bands: list[str] | None = None
    reducer: str = "median"


@dataclass
class ThresholdMask:
    """Keep classified pixels where ``<band> <op> <value>`` holds.

    *band* names a band of the final stack (including ``elevation`` when a
    DEM is supplied).
    """

    band: str
    op: str
    value: float


@dataclass
class ClassificationConfig:
    """Configuration bundle for :class:`LandCoverClassifier`.

    Build one directly, take a preset from
    :data:`landcover_classifier.presets.PRESETS`, or load JSON with
    :meth:`from_json`.  Keys of ``class_names`` and ``palette`` are class
    codes.
    """

    collections: list[CollectionConfig]
    name: str = "custom"
    start_date: str | None = None
    end_date: str | None = None
    indices: list[str] = field(default_factory=list)
    predictors: list[str] | None = None
    label_property: str = "landcover"
    sample_scale: float | None = None
    training_crs: str = "EPSG:4326"
    split_fraction: float = 0.8
    seed: int = 0
    number_of_trees: int = 10
    variables_per_split: int | None = None
    min_leaf_population: int = 1
    bag_fraction: float = 1.0
    max_nodes: int | None = None
    n_jobs: int = 1
    tile_rows: int | None = None
    threshold_masks: list[ThresholdMask] = field(default_factory=list)
    target_classes: list[int] | None = None
    min_connected_pixels: int | None = None
    connectivity: int = 8
    area_units: str = "ha"
    class_names: dict[int, str] = field(default_factory=dict)
    palette: dict[int, str] = field(default_factory=dict)
    export_vectors: bool = True
    export_points: bool = True

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ClassificationConfig:
        """Build from plain JSON-style data.

        Raises:
            ConfigurationError: On unknown or missing keys.
        """
        values = dict(data)
        try:
            values["collections"] = [CollectionConfig(**c) for c in values.get("collections", [])]
            values["threshold_masks"] = [
                ThresholdMask(**t) for t in values.get("threshold_masks", [])
            ]
            values["class_names"] = {int(k): v for k, v in values.get("class_names", {}).items()}
            values["palette"] = {int(k): v for k, v in values.get("palette", {}).items()}
            return cls(**values)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid classification config: {exc}") from exc

    @classmethod
    def from_json(cls, path: Path) -> ClassificationConfig:
        path = Path(path)
        Validators.assert_file_exists(path)
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"'{path}' is not valid JSON: {exc}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    def with_overrides(self, **overrides: Any) -> ClassificationConfig:
        """Copy with the non-``None`` *overrides* applied."""
        return dataclasses.replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def forest(self) -> RandomForest:
        return RandomForest(
            number_of_trees=self.number_of_trees,
            variables_per_split=self.variables_per_split,
            min_leaf_population=self.min_leaf_population,
            bag_fraction=self.bag_fraction,
            max_nodes=self.max_nodes,
            seed=self.seed,
            n_jobs=self.n_jobs,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check every parameter before any data is read.

        Raises:
            ConfigurationError: For any invalid value.
            SpectralIndexError: For an unknown index name.
        """
        if not self.collections:
            raise ConfigurationError("At least one image collection must be configured.")
        names = [c.name for c in self.collections]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate collection names: {names}")
        for coll in self.collections:
            if coll.quality_bits is not None:
                if coll.quality_bits not in QUALITY_PRESETS:
                    raise ConfigurationError(
                        f"Unknown quality preset '{coll.quality_bits}'. "
                        f"Valid options: {', '.join(QUALITY_PRESETS)}"
                    )
                if coll.quality_band is None:
                    raise ConfigurationError(
                        f"Collection '{coll.name}' sets quality_bits without a quality_band."
                    )
            if coll.reducer not in ("median", "mean"):
                raise ConfigurationError(f"Unknown reducer '{coll.reducer}' for '{coll.name}'.")

        start, end = self._parse_date(self.start_date), self._parse_date(self.end_date)
        if start is not None and end is not None and start >= end:
            raise ConfigurationError(
                f"start_date {start} must be before end_date {end} (end is exclusive)."
            )

        for index in self.indices:
            get_index(index)
        Validators.assert_in_range(
            "split_fraction", self.split_fraction, 0.0, 1.0,
            low_inclusive=False, high_inclusive=False,
        )
        if self.sample_scale is not None:
            Validators.assert_in_range("sample_scale", self.sample_scale, 0.0, low_inclusive=False)
        if self.tile_rows is not None:
            Validators.assert_in_range("tile_rows", self.tile_rows, 1)
        self.forest()
        if self.predictors is not None and self.variables_per_split is not None:
            Validators.assert_in_range(
                "variables_per_split", self.variables_per_split, 1, len(self.predictors)
            )
        Validators.assert_crs_valid(self.training_crs)

        for mask in self.threshold_masks:
            if mask.op not in COMPARISONS:
                raise ConfigurationError(
                    f"Unknown comparison '{mask.op}'. Valid options: {', '.join(COMPARISONS)}"
                )
        if self.min_connected_pixels is not None:
            Validators.assert_in_range("min_connected_pixels", self.min_connected_pixels, 0)
        if self.connectivity not in (4, 8):
            raise ConfigurationError(f"connectivity must be 4 or 8 (got {self.connectivity}).")
        if self.area_units not in UNITS:
            raise ConfigurationError(
                f"Unknown area unit '{self.area_units}'. Valid options: {', '.join(UNITS)}"
            )

    @staticmethod
    def _parse_date(value: str | None) -> date | None:
        if value is None:
            return None
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ConfigurationError(f"'{value}' is not an ISO date (YYYY-MM-DD).") from exc


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class ClassificationResult:
    """Everything one classification produced.

    Attributes:
        composite: Final predictor stack (bands, indices, elevation).
        samples: Full sample table.
        training: Training subset.
        testing: Testing subset.
        model: Trained forest.
        confusion: Confusion matrix on the testing subset.
        classified: Post-filtered classified raster.
        areas: Class code → area in ``units``.
        units: Area unit.
        reference_agreement: Agreement with a reference map, if one was given.
    """

    composite: BandStack
    samples: SampleTable
    training: SampleTable
    testing: SampleTable
    model: RandomForestModel
    confusion: ConfusionMatrix
    classified: Raster
    areas: dict[int, float]
    units: str
    reference_agreement: ConfusionMatrix | None = None

    def summary(self) -> str:
        """Return a human-readable summary string for logging or display."""
        areas = ", ".join(f"{k}={v:.2f}" for k, v in self.areas.items())
        return (
            f"{len(self.training)} training / {len(self.testing)} testing sample(s) | "
            f"accuracy {self.confusion.overall_accuracy():.4f} | "
            f"area ({self.units}): {areas}"
        )


# ---------------------------------------------------------------------------
# Main tool class
# ---------------------------------------------------------------------------


class LandCoverClassifier(GeoTool):
    """Composite, classify and measure land cover for one study area.

    Inherits the Template Method pipeline from :class:`~shared.python.GeoTool`:
    ``validate_inputs`` → ``process`` → ``_report_success``.

    Args:
        scene_dirs: Collection name → directory of scene GeoTIFFs.
        training_path: Labelled training geometries (GeoJSON, GPKG, SHP).
        output_dir: Directory for the classified raster, vectors, CSV,
            model and report.
        config: A :class:`ClassificationConfig`.
        dem_path: Optional elevation raster on the composite grid; added
            as the ``elevation`` band.
        region_path: Optional study-area polygon(s).  Scenes not
            intersecting it are dropped and areas are summed inside it.
        reference_path: Optional reference class map on the composite grid.
        verbose: Enable DEBUG-level logging.

    Example::

        from landcover_classifier.presets import get_preset

        tool = LandCoverClassifier(
            {"landsat8": Path("scenes/landsat8")},
            Path("training/cairo.geojson"),
            Path("output/cairo"),
            get_preset("cairo"),
        )
        tool.run()
        print(tool.result.summary())
    """

    def __init__(
        self,
        scene_dirs: Mapping[str, Path],
        training_path: Path,
        output_dir: Path,
        config: ClassificationConfig,
        *,
        dem_path: Path | None = None,
        region_path: Path | None = None,
        reference_path: Path | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(Path(training_path), Path(output_dir), verbose=verbose)
        self.scene_dirs: dict[str, Path] = {k: Path(v) for k, v in scene_dirs.items()}
        self.training_path: Path = Path(training_path)
        self.output_dir: Path = Path(output_dir)
        self.config: ClassificationConfig = config
        self.dem_path: Path | None = Path(dem_path) if dem_path else None
        self.region_path: Path | None = Path(region_path) if region_path else None
        self.reference_path: Path | None = Path(reference_path) if reference_path else None

        self._result: ClassificationResult | None = None
        self._outputs: dict[str, Path] = {}

    @property
    def result(self) -> ClassificationResult:
        if self._result is None:
            raise RuntimeError("Call run() before accessing the result.")
        return self._result

    @property
    def outputs(self) -> dict[str, Path]:
        return dict(self._outputs)

    # ------------------------------------------------------------------
    # GeoTool abstract method implementations
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Check the configuration and that every input path exists.

        Raises:
            ConfigurationError: For invalid parameters or a collection
                without a scene directory.
            InputValidationError: On a missing file or directory.
            OutputWriteError: If the output directory cannot be created.
        """
        self.config.validate()
        for coll in self.config.collections:
            if coll.name not in self.scene_dirs:
                raise ConfigurationError(
                    f"No scene directory given for collection '{coll.name}' "
                    f"(given: {', '.join(self.scene_dirs) or 'none'})."
                )
            Validators.assert_directory_exists(self.scene_dirs[coll.name])

        Validators.assert_file_exists(self.training_path)
        Validators.assert_supported_extension(self.training_path, VECTOR_EXTENSIONS)
        if self.region_path is not None:
            Validators.assert_file_exists(self.region_path)
            Validators.assert_supported_extension(self.region_path, VECTOR_EXTENSIONS)
        for path in (self.dem_path, self.reference_path):
            if path is not None:
                Validators.assert_file_exists(path)
        Validators.assert_output_dir_writable(self.output_dir)
        logger.debug("Inputs validated: %d collection(s).", len(self.config.collections))

    def process(self) -> None:
        cfg = self.config
        region = None
        if self.region_path is not None:
            with self.stage("region"):
                region = self._read_vectors(self.region_path)
                if region.crs is None:
                    logger.warning(
                        "Region '%s' has no CRS; assuming %s.", self.region_path, cfg.training_crs
                    )
                    region = region.set_crs(cfg.training_crs)

        with self.stage("load"):
            collections = {
                coll.name: self._load_collection(coll, region) for coll in cfg.collections
            }

        with self.stage("mask"):
            for coll in cfg.collections:
                if coll.quality_bits is not None:
                    bits = QUALITY_PRESETS[coll.quality_bits]
                    collections[coll.name] = mask_collection(collections[coll.name], bits)

        with self.stage("scale"):
            for coll in cfg.collections:
                collections[coll.name] = self._rename_and_scale(collections[coll.name], coll)

        with self.stage("composite"):
            composites = [
                median_composite(
                    collections[coll.name],
                    coll.bands,
                    reducer=coll.reducer,  # type: ignore[arg-type]
                    tile_rows=cfg.tile_rows,
                )
                for coll in cfg.collections
            ]
            stack = composites[0]
            for composite in composites[1:]:
                stack = stack.merge(composite)

        with self.stage("indices"):
            stack = derive_indices(stack, cfg.indices)

        if self.dem_path is not None:
            with self.stage("dem"):
                dem = read_raster(self.dem_path)
                stack[stack.band_names[0]].assert_same_grid(dem)
                stack = stack.with_bands({ELEVATION_BAND: dem})

        reference = None
        if self.reference_path is not None:
            with self.stage("reference"):
                reference = read_raster(self.reference_path)

        with self.stage("training"):
            training = self._read_vectors(self.training_path)

        self._result = self.classify_stack(stack, training, region=region, reference=reference)
        logger.info(self._result.summary())

        with self.stage("export"):
            self._export(self._result)

    # ------------------------------------------------------------------
    # Classification from an in-memory stack
    # ------------------------------------------------------------------

    def classify_stack(
        self,
        stack: BandStack,
        training: gpd.GeoDataFrame,
        *,
        region: gpd.GeoDataFrame | None = None,
        reference: Raster | None = None,
    ) -> ClassificationResult:
        """Run sample → split → train → assess → classify → filter → area.

        Usable without scene files: pass any composite stack and training
        geometries.
        """
        cfg = self.config
        predictors = cfg.predictors or stack.band_names

        with self.stage("sample"):
            sampler = Sampler(
                predictors,
                cfg.label_property,
                scale=cfg.sample_scale,
                seed=cfg.seed,
                geometry_crs=cfg.training_crs,
            )
            samples = sampler.sample(stack, training)

        with self.stage("split"):
            train_table, test_table = split_samples(samples, cfg.split_fraction)
            if len(train_table) == 0:
                raise TrainingDataError(
                    f"Training set is empty at split fraction {cfg.split_fraction}."
                )

        with self.stage("train"):
            model = cfg.forest().train(train_table, predictors, cfg.label_property)

        with self.stage("assess"):
            confusion = assess(model, test_table)

        with self.stage("classify"):
            classified = model.classify(stack, tile_rows=cfg.tile_rows)

        with self.stage("postprocess"):
            classified = self.postprocess(classified, stack)

        agreement = None
        if reference is not None:
            with self.stage("reference"):
                agreement = compare_reference(classified, reference)

        with self.stage("area"):
            classes = cfg.target_classes if cfg.target_classes is not None else model.classes
            areas = area_by_class(classified, classes, region=region, units=cfg.area_units)

        return ClassificationResult(
            composite=stack,
            samples=samples,
            training=train_table,
            testing=test_table,
            model=model,
            confusion=confusion,
            classified=classified,
            areas=areas,
            units=cfg.area_units,
            reference_agreement=agreement,
        )

    def postprocess(self, classified: Raster, stack: BandStack) -> Raster:
        """Threshold masks, then target classes, then small-component cleanup."""
        cfg = self.config
        for mask in cfg.threshold_masks:
            if mask.band not in stack:
                raise InputValidationError(
                    f"Threshold mask band '{mask.band}' is not in the stack "
                    f"(bands: {', '.join(stack.band_names)})."
                )
            classified = apply_threshold_mask(classified, stack[mask.band], mask.op, mask.value)
        if cfg.target_classes is not None:
            classified = keep_classes(classified, cfg.target_classes)
        if cfg.min_connected_pixels is not None:
            classified = remove_small_components(
                classified, cfg.min_connected_pixels, cfg.connectivity
            )
        return classified

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load_collection(
        self, coll: CollectionConfig, region: gpd.GeoDataFrame | None
    ) -> SceneCollection:
        loader = SceneLoader(
            self.scene_dirs[coll.name],
            quality_band=coll.quality_band,
            band_names=coll.band_names,
        )
        scenes = loader.load().filter_date(self.config.start_date, self.config.end_date)
        if region is not None and len(scenes):
            crs = scenes[0].bands.crs
            area = region.to_crs(crs.to_wkt()) if crs is not None else region
            scenes = scenes.filter_bounds(area.geometry.union_all())
        if len(scenes) == 0:
            raise InputValidationError(
                f"No '{coll.name}' scenes between {self.config.start_date} and "
                f"{self.config.end_date} inside the study region."
            )
        logger.info("  %s: %d scene(s) %s → %s", coll.name, len(scenes), scenes.dates[0], scenes.dates[-1])
        return scenes

    @staticmethod
    def _rename_and_scale(collection: SceneCollection, coll: CollectionConfig) -> SceneCollection:
        def _prepare(scene: Scene) -> Scene:
            bands = scene.bands.rename(coll.band_aliases)
            if coll.scale != 1.0 or coll.offset != 0.0:
                targets = coll.scaled_bands or coll.bands or bands.band_names
                bands = apply_scale(bands, coll.scale, coll.offset, targets)
            return scene.replace_bands(bands)

        return collection.map(_prepare)

    @staticmethod
    def _read_vectors(path: Path) -> gpd.GeoDataFrame:
        gdf = gpd.read_file(path)
        if gdf.empty:
            raise InputValidationError(f"'{path}' contains no features.")
        return gdf

    def _export(self, result: ClassificationResult) -> None:
        cfg = self.config
        out = self.output_dir

        self._outputs["classified"] = write_classified(
            result.classified,
            out / "classified.tif",
            palette=cfg.palette,
            class_names=cfg.class_names,
        )
        if cfg.export_vectors:
            polygons = vectorize(result.classified, cfg.target_classes, cfg.class_names)
            written = write_vectors(polygons, out / "classified.geojson")
            if written is not None:
                self._outputs["polygons"] = written
        if cfg.export_points:
            self._outputs["points"] = export_points_csv(
                result.samples, out / "samples.csv", [cfg.label_property]
            )
        self._outputs["model"] = result.model.save(out / "model.joblib")
        self._outputs["report"] = write_report(self._report(result), out / "report.json")

    def _report(self, result: ClassificationResult) -> dict[str, Any]:
        names = self.config.class_names
        report: dict[str, Any] = {
            "name": self.config.name,
            "config": self.config.to_dict(),
            "samples": {
                "total": len(result.samples),
                "training": len(result.training),
                "testing": len(result.testing),
                "class_counts": {str(k): v for k, v in result.samples.class_counts().items()},
            },
            "accuracy": result.confusion.to_dict(),
            "classifier": result.model.explain(),
            "area": {
                "units": result.units,
                "by_class": {names.get(k, str(k)): v for k, v in result.areas.items()},
            },
            # Stages finished before export; export itself is still running.
            "stage_seconds": {k: round(v, 3) for k, v in self.timings.items()},
        }
        if result.reference_agreement is not None:
            report["reference_agreement"] = result.reference_agreement.to_dict()
        return report

    def _report_success(self, elapsed: float) -> None:
        super()._report_success(elapsed)
        for kind, path in self._outputs.items():
            logger.info("  %-10s %s", kind, path)

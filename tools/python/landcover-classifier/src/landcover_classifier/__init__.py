"""
Land-Cover Classifier
=====================
Cloud-free compositing, spectral indices and random-forest land-cover
classification with accuracy assessment, post-filtering and area
statistics.

Public API::

    from landcover_classifier import LandCoverClassifier, get_preset
"""

from landcover_classifier.accuracy import ConfusionMatrix, assess, compare_reference
from landcover_classifier.area import area_by_class, class_area, pixel_area
from landcover_classifier.classifier import RandomForest, RandomForestModel
from landcover_classifier.composite import median_composite, observation_count
from landcover_classifier.indices import STANDARD_INDICES, IndexStrategy, derive_indices, get_index
from landcover_classifier.loader import SceneLoader, read_raster
from landcover_classifier.pipeline import (
    ClassificationConfig,
    ClassificationResult,
    CollectionConfig,
    LandCoverClassifier,
    ThresholdMask,
)
from landcover_classifier.presets import PRESETS, get_preset
from landcover_classifier.quality import QualityBits, clear_mask, mask_scene
from landcover_classifier.raster import BandStack, Raster, Scene, SceneCollection
from landcover_classifier.sampling import SampleTable, Sampler, split_samples

__all__ = [
    "LandCoverClassifier",
    "ClassificationConfig",
    "ClassificationResult",
    "CollectionConfig",
    "ThresholdMask",
    "PRESETS",
    "get_preset",
    "Raster",
    "BandStack",
    "Scene",
    "SceneCollection",
    "SceneLoader",
    "read_raster",
    "QualityBits",
    "clear_mask",
    "mask_scene",
    "IndexStrategy",
    "STANDARD_INDICES",
    "get_index",
    "derive_indices",
    "median_composite",
    "observation_count",
    "SampleTable",
    "Sampler",
    "split_samples",
    "RandomForest",
    "RandomForestModel",
    "ConfusionMatrix",
    "assess",
    "compare_reference",
    "pixel_area",
    "class_area",
    "area_by_class",
]
__version__ = "1.0.0"

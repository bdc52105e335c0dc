"""
GeoClassify — Shared Python Package
====================================
One import point for the tool base class, the error types and the
precondition checks::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import GeometryMismatchError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    BandNotFoundError,
    ColumnNotFoundError,
    ConfigurationError,
    CRSError,
    GeoClassifyError,
    GeometryMismatchError,
    InputValidationError,
    OutputWriteError,
    RasterError,
    SpectralIndexError,
    TrainingDataError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "GeoClassifyError",
    "InputValidationError",
    "ColumnNotFoundError",
    "BandNotFoundError",
    "SpectralIndexError",
    "TrainingDataError",
    "GeometryMismatchError",
    "ConfigurationError",
    "CRSError",
    "RasterError",
    "OutputWriteError",
]

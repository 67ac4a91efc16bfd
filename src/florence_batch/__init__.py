"""florence_batch package

High-level goal: run a Florence-2 vision task over a batch of images, stream each result to
a JSON array, a flattened CSV or one JSON file per image, and later crop the detected regions
out of the source images into one folder per image.

Most users interact through the CLI (`florence-batch`).
"""
from .errors import (
    DestinationNotSelected,
    FlorenceBatchError,
    InferenceFailure,
    InvalidCropGeometry,
    UnknownBBoxFormat,
    WriterNotInitialized,
)
from .schemas import (  # re-export core models
    AxisBox,
    BatchSummary,
    CropStats,
    DetectionRecord,
    ImageInput,
    ProgressEvent,
    QuadBox,
    ResultItem,
    RunConfig,
)

__all__ = [
    "AxisBox",
    "BatchSummary",
    "CropStats",
    "DetectionRecord",
    "ImageInput",
    "ProgressEvent",
    "QuadBox",
    "ResultItem",
    "RunConfig",
    "DestinationNotSelected",
    "FlorenceBatchError",
    "InferenceFailure",
    "InvalidCropGeometry",
    "UnknownBBoxFormat",
    "WriterNotInitialized",
]

from conductor.helpers.base import HelperError
from conductor.helpers.capture import CapturedFrame, CaptureHelper
from conductor.helpers.recognition import (
    BoundingBox,
    RecognitionHelper,
    RecognizedText,
    parse_recognition_output,
)

__all__ = [
    "BoundingBox",
    "CaptureHelper",
    "CapturedFrame",
    "HelperError",
    "RecognitionHelper",
    "RecognizedText",
    "parse_recognition_output",
]

"""picshift - image format transcoding library and CLI tool."""

from picshift.codec.color import CanonicalBuffer, ColorModel
from picshift.codec.formats import FormatRegistry, ImageFormat
from picshift.errors import RejectionKind, TranscodeError
from picshift.gateway import TranscodeGateway
from picshift.pipeline import (
    PipelineStage,
    TranscodePipeline,
    TranscodeRequest,
    TranscodeResult,
)

__version__ = "0.1.0"

__all__ = [
    "CanonicalBuffer",
    "ColorModel",
    "FormatRegistry",
    "ImageFormat",
    "PipelineStage",
    "RejectionKind",
    "TranscodeError",
    "TranscodeGateway",
    "TranscodePipeline",
    "TranscodeRequest",
    "TranscodeResult",
]

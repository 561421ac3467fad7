"""Codec module for picshift.

フォーマットレジストリ、デコーダー/エンコーダーアダプタ、カラーモデル変換を提供するモジュール。
"""

from picshift.codec.color import CanonicalBuffer, ColorModel
from picshift.codec.convert import ColorModelConverter
from picshift.codec.decoder import ImageDecoder, get_decoder
from picshift.codec.encoder import ImageEncoder, get_encoder
from picshift.codec.formats import (
    CapabilityDescriptor,
    EncodeParams,
    FormatRegistry,
    ImageFormat,
)
from picshift.codec.pam import PAMCodec
from picshift.codec.plugins import plugin_available

__all__ = [
    "CanonicalBuffer",
    "CapabilityDescriptor",
    "ColorModel",
    "ColorModelConverter",
    "EncodeParams",
    "FormatRegistry",
    "ImageDecoder",
    "ImageEncoder",
    "ImageFormat",
    "PAMCodec",
    "get_decoder",
    "get_encoder",
    "plugin_available",
]

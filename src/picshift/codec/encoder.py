"""エンコーダーアダプタ

正準バッファを出力フォーマットのバイト列に変換する。
エンコーダーは能力記述子で宣言したカラーモデルのみを受け付け、
カラーモデル変換は行わない（変換はディスパッチャの責務）。
"""

from __future__ import annotations

import io
from typing import Any, Protocol

from PIL import Image

from picshift.codec.color import PALETTE_ENTRY_SIZE, CanonicalBuffer
from picshift.codec.convert import to_pillow_image
from picshift.codec.decoder import PILLOW_FORMAT_NAMES
from picshift.codec.formats import (
    CapabilityDescriptor,
    EncodeParams,
    FormatRegistry,
    ImageFormat,
)
from picshift.codec.pam import PAMCodec
from picshift.codec.plugins import plugin_available
from picshift.errors import EncodeError, EncodeFailureReason


class ImageEncoder(Protocol):
    """エンコーダーインターフェース"""

    def encode(self, buffer: CanonicalBuffer, params: EncodeParams) -> bytes:
        """バッファをエンコードする

        Args:
            buffer: エンコードするバッファ（能力記述子が許可するカラーモデル）
            params: エンコードパラメータ

        Returns:
            エンコード済みのバイト列

        Raises:
            EncodeError: エンコードできない場合
        """
        ...


def _save_options(
    fmt: ImageFormat, buffer: CanonicalBuffer, params: EncodeParams
) -> dict[str, Any]:
    """フォーマットごとのPillow保存オプションを組み立てる"""
    match fmt:
        case ImageFormat.JPEG:
            return {"quality": params.quality, "optimize": params.optimize}
        case ImageFormat.WEBP:
            return {
                "quality": params.quality,
                "method": params.method,
                "lossless": params.lossless,
            }
        case ImageFormat.AVIF:
            return {"quality": params.quality, "speed": params.speed}
        case ImageFormat.JXL:
            return {"quality": params.quality, "lossless": params.lossless}
        case ImageFormat.PNG:
            options: dict[str, Any] = {
                "compress_level": params.compress_level,
                "optimize": params.optimize,
            }
            alphas = _palette_alphas(buffer)
            if alphas is not None:
                options["transparency"] = alphas
            return options
        case ImageFormat.GIF:
            index = _transparent_index(buffer)
            return {} if index is None else {"transparency": index}
        case ImageFormat.ICO:
            # 既定では縮小版も生成されるため、元のサイズのみを書き出す
            return {"sizes": [buffer.size]}
        case _:
            return {}


def _palette_alphas(buffer: CanonicalBuffer) -> bytes | None:
    """パレットのアルファ値列を返す（すべて不透明ならNone）"""
    if buffer.palette is None or not buffer.has_palette_alpha:
        return None
    return bytes(buffer.palette[3::PALETTE_ENTRY_SIZE])


def _transparent_index(buffer: CanonicalBuffer) -> int | None:
    """完全に透明な最初のパレットインデックスを返す"""
    alphas = _palette_alphas(buffer)
    if alphas is None:
        return None
    index = alphas.find(b"\x00")
    return index if index >= 0 else None


class PillowEncoder:
    """Pillowを使うエンコーダーアダプタ"""

    def __init__(self, fmt: ImageFormat, descriptor: CapabilityDescriptor) -> None:
        """エンコーダーを初期化する

        Args:
            fmt: 出力フォーマット
            descriptor: 出力フォーマットの能力記述子
        """
        self._format = fmt
        self._descriptor = descriptor
        self._pillow_name = PILLOW_FORMAT_NAMES[fmt]

    @property
    def format(self) -> ImageFormat:
        return self._format

    def encode(self, buffer: CanonicalBuffer, params: EncodeParams) -> bytes:
        """バッファをエンコードする

        Args:
            buffer: エンコードするバッファ
            params: エンコードパラメータ

        Returns:
            エンコード済みのバイト列

        Raises:
            EncodeError: 対応していないカラーモデル、サイズ上限超過、またはコーデックエラーの場合
        """
        _validate(self._format, self._descriptor, buffer)
        if not plugin_available(self._format):
            raise EncodeError(
                EncodeFailureReason.INTERNAL, f"{self._format.value}エンコーダーが利用できません"
            )

        try:
            image = to_pillow_image(buffer)
            if self._format == ImageFormat.PBM:
                # PBMは1bitのため、ディザなしで2値化する（128以上が白）
                image = image.convert("1", dither=Image.Dither.NONE)
            output = io.BytesIO()
            options = _save_options(self._format, buffer, params)
            image.save(output, format=self._pillow_name, **options)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise EncodeError(EncodeFailureReason.INTERNAL, f"{self._format.value}: {e}") from e
        return output.getvalue()


class PAMEncoder:
    """PAM形式のエンコーダーアダプタ"""

    def __init__(self, descriptor: CapabilityDescriptor) -> None:
        self._descriptor = descriptor
        self._codec = PAMCodec()

    def encode(self, buffer: CanonicalBuffer, params: EncodeParams) -> bytes:
        _validate(ImageFormat.PAM, self._descriptor, buffer)
        return self._codec.encode(buffer)


def _validate(fmt: ImageFormat, descriptor: CapabilityDescriptor, buffer: CanonicalBuffer) -> None:
    """カラーモデルとサイズがフォーマットの制約を満たすか検証する"""
    if not descriptor.can_encode(buffer.model):
        raise EncodeError(
            EncodeFailureReason.UNSUPPORTED_COLOR_MODEL,
            f"{fmt.value}は{buffer.model.value}をエンコードできません",
        )
    limit = descriptor.max_dimension
    if limit is not None and (buffer.width > limit or buffer.height > limit):
        raise EncodeError(
            EncodeFailureReason.INVALID_DIMENSIONS,
            f"{fmt.value}の最大サイズは{limit}x{limit}です: {buffer.width}x{buffer.height}",
        )


def get_encoder(fmt: ImageFormat, registry: FormatRegistry) -> ImageEncoder:
    """フォーマットに対応するエンコーダーを返す

    Args:
        fmt: 出力フォーマット
        registry: フォーマットレジストリ

    Returns:
        エンコーダーアダプタ
    """
    descriptor = registry.capabilities(fmt)
    if fmt == ImageFormat.PAM:
        return PAMEncoder(descriptor)
    return PillowEncoder(fmt, descriptor)

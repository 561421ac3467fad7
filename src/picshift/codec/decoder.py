"""デコーダーアダプタ

フォーマットごとのバイト列を正準バッファに変換する。
PAM以外はPillowでデコードし、Pillowのモードを閉じたカラーモデル集合に分類する。
分類できないチャンネル構成は誤ったタグを付けずにエラーとする。
"""

from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from typing import Protocol

from PIL import Image

from picshift.codec.color import CanonicalBuffer, ColorModel
from picshift.codec.convert import palette_as_rgba
from picshift.codec.formats import CapabilityDescriptor, FormatRegistry, ImageFormat
from picshift.codec.pam import PAMCodec
from picshift.codec.plugins import plugin_available
from picshift.errors import DecodeError, DecodeFailureReason


class ImageDecoder(Protocol):
    """デコーダーインターフェース"""

    def decode(self, data: bytes) -> CanonicalBuffer:
        """バイト列をデコードする

        Args:
            data: エンコード済み画像のバイト列

        Returns:
            デコードされたバッファ

        Raises:
            DecodeError: デコードできない場合
        """
        ...


@dataclass(frozen=True)
class FormatSignature:
    """フォーマットのヘッダー判定情報

    Attributes:
        magics: (オフセット, マジックバイト)の候補。空の場合は判定しない
        min_header: ヘッダーとして最低限必要なバイト数
        require_all: すべてのマジックが一致する必要があるか
    """

    magics: tuple[tuple[int, bytes], ...]
    min_header: int
    require_all: bool = False

    def matches(self, data: bytes) -> bool:
        if not self.magics:
            return True
        check = all if self.require_all else any
        return check(data[offset : offset + len(magic)] == magic for offset, magic in self.magics)


# Pillowのフォーマット名（PBM/PGM/PPMはPillowのPPMプラグインが共通で扱う）
PILLOW_FORMAT_NAMES: dict[ImageFormat, str] = {
    ImageFormat.PNG: "PNG",
    ImageFormat.JPEG: "JPEG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.AVIF: "AVIF",
    ImageFormat.JXL: "JXL",
    ImageFormat.GIF: "GIF",
    ImageFormat.BMP: "BMP",
    ImageFormat.TIFF: "TIFF",
    ImageFormat.ICO: "ICO",
    ImageFormat.TGA: "TGA",
    ImageFormat.PBM: "PPM",
    ImageFormat.PGM: "PPM",
    ImageFormat.PPM: "PPM",
}

_PNM_MAGICS = tuple((0, b"P%d" % n) for n in range(1, 7))

SIGNATURES: dict[ImageFormat, FormatSignature] = {
    # シグネチャ(8) + IHDRチャンク(25)
    ImageFormat.PNG: FormatSignature(((0, b"\x89PNG\r\n\x1a\n"),), 33),
    ImageFormat.JPEG: FormatSignature(((0, b"\xff\xd8\xff"),), 4),
    # RIFFヘッダー(12) + 先頭チャンクヘッダー(8)
    ImageFormat.WEBP: FormatSignature(((0, b"RIFF"), (8, b"WEBP")), 20, require_all=True),
    ImageFormat.AVIF: FormatSignature(((4, b"ftyp"),), 12),
    # 裸のコードストリーム、またはISOBMFFコンテナ
    ImageFormat.JXL: FormatSignature(
        ((0, b"\xff\x0a"), (0, b"\x00\x00\x00\x0cJXL \r\n\x87\n")), 2
    ),
    ImageFormat.GIF: FormatSignature(((0, b"GIF87a"), (0, b"GIF89a")), 13),
    # ファイルヘッダー(14) + 最小のDIBヘッダー(12)
    ImageFormat.BMP: FormatSignature(((0, b"BM"),), 26),
    ImageFormat.TIFF: FormatSignature(((0, b"II*\x00"), (0, b"MM\x00*")), 8),
    # ICONDIR(6) + ICONDIRENTRY(16)
    ImageFormat.ICO: FormatSignature(((0, b"\x00\x00\x01\x00"),), 22),
    ImageFormat.TGA: FormatSignature((), 18),
    ImageFormat.PBM: FormatSignature(_PNM_MAGICS, 7),
    ImageFormat.PGM: FormatSignature(_PNM_MAGICS, 7),
    ImageFormat.PPM: FormatSignature(_PNM_MAGICS, 7),
}

# Pillowのモード -> カラーモデル
# "1"（1bit白黒）はLに展開してから分類する
PILLOW_MODE_MODELS: dict[str, ColorModel] = {
    "L": ColorModel.GRAY8,
    "LA": ColorModel.GRAY_ALPHA8,
    "RGB": ColorModel.RGB8,
    "RGBA": ColorModel.RGBA8,
    "P": ColorModel.INDEXED,
    "CMYK": ColorModel.CMYK8,
    "YCbCr": ColorModel.YCBCR8,
}

# Pillowのデコード処理が送出し得る例外
_CODEC_ERRORS = (
    OSError,
    ValueError,
    SyntaxError,
    EOFError,
    IndexError,
    struct.error,
    Image.DecompressionBombError,
)


class PillowDecoder:
    """Pillowを使うデコーダーアダプタ

    ヘッダー長とマジックバイトを事前に検証し、Pillowの対応プラグインのみで開く。
    画像は必ず全体を読み込み、部分的な出力は返さない。
    """

    def __init__(self, fmt: ImageFormat, descriptor: CapabilityDescriptor) -> None:
        """デコーダーを初期化する

        Args:
            fmt: 対象フォーマット
            descriptor: 対象フォーマットの能力記述子
        """
        self._format = fmt
        self._descriptor = descriptor
        self._pillow_name = PILLOW_FORMAT_NAMES[fmt]
        self._signature = SIGNATURES[fmt]

    @property
    def format(self) -> ImageFormat:
        return self._format

    def is_valid(self, data: bytes) -> bool:
        """ヘッダーが対象フォーマットのものかを判定する"""
        return len(data) >= self._signature.min_header and self._signature.matches(data)

    def decode(self, data: bytes) -> CanonicalBuffer:
        """バイト列をデコードして正準バッファを返す

        Args:
            data: エンコード済み画像のバイト列

        Returns:
            デコードされたバッファ

        Raises:
            DecodeError: ヘッダー不足、破損、または分類できないチャンネル構成の場合
        """
        if len(data) < self._signature.min_header:
            raise DecodeError(
                DecodeFailureReason.TRUNCATED_HEADER,
                f"{self._format.value}ヘッダーには最低{self._signature.min_header}バイト必要です",
            )
        if not self._signature.matches(data):
            raise DecodeError(
                DecodeFailureReason.CORRUPT,
                f"{self._format.value}形式のシグネチャと一致しません",
            )
        if not plugin_available(self._format):
            raise DecodeError(
                DecodeFailureReason.CORRUPT,
                f"{self._format.value}デコーダーが利用できません",
            )

        try:
            image = Image.open(io.BytesIO(data), formats=[self._pillow_name])
        except _CODEC_ERRORS as e:
            raise DecodeError(DecodeFailureReason.CORRUPT, str(e)) from e

        try:
            return self._materialize(image)
        finally:
            image.close()

    def _materialize(self, image: Image.Image) -> CanonicalBuffer:
        """画像全体を読み込んで正準バッファを構築する"""
        try:
            image.load()
            if image.mode == "1":
                image = image.convert("L")
        except _CODEC_ERRORS as e:
            raise DecodeError(DecodeFailureReason.CORRUPT, str(e)) from e

        model = PILLOW_MODE_MODELS.get(image.mode)
        if model is None or model not in self._descriptor.decodable_models:
            raise DecodeError(
                DecodeFailureReason.UNSUPPORTED_COLOR_MODEL,
                f"{self._format.value}のモード{image.mode}は扱えません",
            )

        width, height = image.size
        palette = palette_as_rgba(image) if model == ColorModel.INDEXED else None
        try:
            return CanonicalBuffer(
                data=image.tobytes(),
                width=width,
                height=height,
                model=model,
                palette=palette,
            )
        except ValueError as e:
            raise DecodeError(DecodeFailureReason.CORRUPT, str(e)) from e


class PAMDecoder:
    """PAM形式のデコーダーアダプタ"""

    def __init__(self, descriptor: CapabilityDescriptor) -> None:
        self._descriptor = descriptor
        self._codec = PAMCodec()

    def decode(self, data: bytes) -> CanonicalBuffer:
        buffer = self._codec.decode(data)
        if buffer.model not in self._descriptor.decodable_models:
            raise DecodeError(
                DecodeFailureReason.UNSUPPORTED_COLOR_MODEL,
                f"pamの{buffer.model.value}は扱えません",
            )
        return buffer


def get_decoder(fmt: ImageFormat, registry: FormatRegistry) -> ImageDecoder:
    """フォーマットに対応するデコーダーを返す

    Args:
        fmt: 入力フォーマット
        registry: フォーマットレジストリ

    Returns:
        デコーダーアダプタ
    """
    descriptor = registry.capabilities(fmt)
    if fmt == ImageFormat.PAM:
        return PAMDecoder(descriptor)
    return PillowDecoder(fmt, descriptor)

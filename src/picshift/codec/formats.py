"""フォーマットレジストリ

対応フォーマットの閉じた集合と、フォーマットごとの能力記述子を定義する。
デコード・エンコードのディスパッチとMIMEタイプ解決は
すべてこのモジュールのテーブルを参照する。
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any

from picshift.codec.color import ColorModel
from picshift.errors import UnsupportedFormatError


class ImageFormat(Enum):
    """対応画像フォーマット

    値は出力形式指定に使うトークン（小文字）。
    """

    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    AVIF = "avif"
    JXL = "jxl"
    GIF = "gif"
    BMP = "bmp"
    TIFF = "tiff"
    ICO = "ico"
    TGA = "tga"
    PBM = "pbm"
    PGM = "pgm"
    PPM = "ppm"
    PAM = "pam"


@dataclass(frozen=True)
class EncodeParams:
    """エンコード時のパラメータ

    クライアントからは指定できず、設定ファイルでのみ調整する。

    Attributes:
        quality: 非可逆圧縮の品質（0-100）
        speed: AVIFエンコード速度（0-10、大きいほど高速）
        method: WebPの圧縮努力量（0-6、大きいほど低速・高圧縮）
        lossless: WebPをロスレスで出力するか
        compress_level: PNGのzlib圧縮レベル（0-9）
        optimize: JPEG/PNGの最適化パスを有効にするか
    """

    quality: int = 95
    speed: int = 6
    method: int = 4
    lossless: bool = False
    compress_level: int = 6
    optimize: bool = True


ENCODE_PARAM_FIELDS: tuple[str, ...] = (
    "quality",
    "speed",
    "method",
    "lossless",
    "compress_level",
    "optimize",
)


@dataclass(frozen=True)
class CapabilityDescriptor:
    """フォーマットの能力記述子

    Attributes:
        mime_type: 出力時のMIMEタイプ
        extension: 出力ファイルの拡張子（ドット付き）
        decodable_models: デコード結果として取り得るカラーモデル
        encodable_models: エンコード可能なカラーモデル（先頭ほど変換先として優先）
        default_params: エンコードパラメータの既定値
        lossless: 可逆フォーマットか
        max_dimension: 幅・高さの上限（Noneは制限なし）
        palette_alpha: INDEXEDのパレットアルファを保存できるか
    """

    mime_type: str
    extension: str
    decodable_models: frozenset[ColorModel]
    encodable_models: tuple[ColorModel, ...]
    default_params: EncodeParams = field(default_factory=EncodeParams)
    lossless: bool = True
    max_dimension: int | None = None
    palette_alpha: bool = False

    def can_encode(self, model: ColorModel) -> bool:
        return model in self.encodable_models


_G8 = ColorModel.GRAY8
_GA8 = ColorModel.GRAY_ALPHA8
_GA16 = ColorModel.GRAY_ALPHA16
_RGB = ColorModel.RGB8
_RGBA = ColorModel.RGBA8
_IDX = ColorModel.INDEXED
_CMYK = ColorModel.CMYK8
_YCC = ColorModel.YCBCR8

DEFAULT_CAPABILITIES: Mapping[ImageFormat, CapabilityDescriptor] = MappingProxyType(
    {
        ImageFormat.PNG: CapabilityDescriptor(
            mime_type="image/png",
            extension=".png",
            decodable_models=frozenset({_G8, _GA8, _RGB, _RGBA, _IDX}),
            encodable_models=(_RGBA, _RGB, _GA8, _G8, _IDX),
            palette_alpha=True,
        ),
        ImageFormat.JPEG: CapabilityDescriptor(
            mime_type="image/jpeg",
            extension=".jpg",
            decodable_models=frozenset({_G8, _RGB, _CMYK, _YCC}),
            encodable_models=(_RGB, _G8, _CMYK, _YCC),
            lossless=False,
            max_dimension=65535,
        ),
        # PillowのWebPライターはLを内部でRGBに展開して書き出す（読み戻すとRGB8になる）
        ImageFormat.WEBP: CapabilityDescriptor(
            mime_type="image/webp",
            extension=".webp",
            decodable_models=frozenset({_RGB, _RGBA}),
            encodable_models=(_RGBA, _RGB, _G8),
            lossless=False,
            max_dimension=16383,
        ),
        ImageFormat.AVIF: CapabilityDescriptor(
            mime_type="image/avif",
            extension=".avif",
            decodable_models=frozenset({_RGB, _RGBA}),
            encodable_models=(_RGBA, _RGB),
            lossless=False,
            max_dimension=65535,
        ),
        ImageFormat.JXL: CapabilityDescriptor(
            mime_type="image/jxl",
            extension=".jxl",
            decodable_models=frozenset({_G8, _GA8, _RGB, _RGBA}),
            encodable_models=(_RGBA, _RGB, _GA8, _G8),
            default_params=EncodeParams(quality=90),
            lossless=False,
        ),
        ImageFormat.GIF: CapabilityDescriptor(
            mime_type="image/gif",
            extension=".gif",
            decodable_models=frozenset({_IDX, _G8}),
            encodable_models=(_IDX, _G8),
            max_dimension=65535,
            # 透過は完全透明な1エントリのみ（半透明は不透明として書き出す）
            palette_alpha=True,
        ),
        # 32bitはBI_RGBで書かれ、一般的なリーダーはアルファを無視するためRGBAは書き出さない
        ImageFormat.BMP: CapabilityDescriptor(
            mime_type="image/bmp",
            extension=".bmp",
            decodable_models=frozenset({_G8, _RGB, _RGBA, _IDX}),
            encodable_models=(_RGB, _G8, _IDX),
        ),
        ImageFormat.TIFF: CapabilityDescriptor(
            mime_type="image/tiff",
            extension=".tiff",
            decodable_models=frozenset({_G8, _GA8, _RGB, _RGBA, _IDX, _CMYK, _YCC}),
            encodable_models=(_RGBA, _RGB, _GA8, _G8, _IDX, _CMYK),
        ),
        ImageFormat.ICO: CapabilityDescriptor(
            mime_type="image/x-icon",
            extension=".ico",
            decodable_models=frozenset({_RGB, _RGBA, _IDX}),
            encodable_models=(_RGBA, _RGB),
            max_dimension=256,
        ),
        ImageFormat.TGA: CapabilityDescriptor(
            mime_type="image/x-tga",
            extension=".tga",
            decodable_models=frozenset({_G8, _GA8, _RGB, _RGBA, _IDX}),
            encodable_models=(_RGBA, _RGB, _GA8, _G8, _IDX),
            max_dimension=65535,
        ),
        # PBM/PGM/PPMは同じPNMリーダーで読むため、デコード可能なモデルは共通
        ImageFormat.PBM: CapabilityDescriptor(
            mime_type="image/x-portable-anymap",
            extension=".pbm",
            decodable_models=frozenset({_G8, _RGB}),
            encodable_models=(_G8,),
            lossless=False,
        ),
        ImageFormat.PGM: CapabilityDescriptor(
            mime_type="image/x-portable-anymap",
            extension=".pgm",
            decodable_models=frozenset({_G8, _RGB}),
            encodable_models=(_G8,),
        ),
        ImageFormat.PPM: CapabilityDescriptor(
            mime_type="image/x-portable-anymap",
            extension=".ppm",
            decodable_models=frozenset({_G8, _RGB}),
            encodable_models=(_RGB,),
        ),
        ImageFormat.PAM: CapabilityDescriptor(
            mime_type="image/x-portable-anymap",
            extension=".pam",
            decodable_models=frozenset({_G8, _GA8, _GA16, _RGB, _RGBA}),
            encodable_models=(_RGBA, _RGB, _GA8, _G8, _GA16),
        ),
    }
)

# フォーマットトークン以外に受け付ける識別子（MIMEサブタイプ・拡張子）
IDENTIFIER_ALIASES: Mapping[str, ImageFormat] = MappingProxyType(
    {
        "jpg": ImageFormat.JPEG,
        "jpe": ImageFormat.JPEG,
        "pjpeg": ImageFormat.JPEG,
        "tif": ImageFormat.TIFF,
        "x-bmp": ImageFormat.BMP,
        "x-ms-bmp": ImageFormat.BMP,
        "x-icon": ImageFormat.ICO,
        "vnd.microsoft.icon": ImageFormat.ICO,
        "x-tga": ImageFormat.TGA,
        "x-targa": ImageFormat.TGA,
        "x-portable-bitmap": ImageFormat.PBM,
        "x-portable-graymap": ImageFormat.PGM,
        "x-portable-pixmap": ImageFormat.PPM,
        "x-portable-anymap": ImageFormat.PPM,
        "x-portable-arbitrarymap": ImageFormat.PAM,
    }
)


class FormatRegistry:
    """フォーマットレジストリ

    識別子からフォーマットと能力記述子を引く読み取り専用のテーブル。
    起動時に一度だけ構築し、以後は変更しない。

    使用例:
        >>> registry = FormatRegistry()
        >>> fmt = registry.resolve("PNG")
        >>> registry.mime_type(fmt)
        'image/png'
    """

    def __init__(
        self,
        capabilities: Mapping[ImageFormat, CapabilityDescriptor] = DEFAULT_CAPABILITIES,
        aliases: Mapping[str, ImageFormat] = IDENTIFIER_ALIASES,
    ) -> None:
        """レジストリを初期化する

        Args:
            capabilities: フォーマットごとの能力記述子
            aliases: フォーマットトークン以外の識別子

        Raises:
            ValueError: 能力記述子が欠けているフォーマットがある場合
        """
        missing = [fmt.value for fmt in ImageFormat if fmt not in capabilities]
        if missing:
            raise ValueError(f"能力記述子が定義されていません: {', '.join(missing)}")

        lookup: dict[str, ImageFormat] = {fmt.value: fmt for fmt in ImageFormat}
        for alias, fmt in aliases.items():
            lookup[alias.lower()] = fmt

        self._capabilities = MappingProxyType(dict(capabilities))
        self._lookup = MappingProxyType(lookup)

    def resolve(self, identifier: str) -> ImageFormat:
        """識別子をフォーマットに解決する

        大文字小文字を区別しない完全一致のみ。前方一致などの曖昧な照合はしない。

        Args:
            identifier: MIMEサブタイプまたは出力形式トークン

        Returns:
            解決されたフォーマット

        Raises:
            UnsupportedFormatError: 識別子が登録されていない場合
        """
        fmt = self._lookup.get(identifier.strip().lower())
        if fmt is None:
            raise UnsupportedFormatError(identifier)
        return fmt

    def capabilities(self, fmt: ImageFormat) -> CapabilityDescriptor:
        """フォーマットの能力記述子を返す"""
        return self._capabilities[fmt]

    def mime_type(self, fmt: ImageFormat) -> str:
        """フォーマットのMIMEタイプを返す"""
        return self._capabilities[fmt].mime_type

    def formats(self) -> tuple[ImageFormat, ...]:
        """登録フォーマットを宣言順に返す"""
        return tuple(ImageFormat)

    def identifiers(self, fmt: ImageFormat) -> tuple[str, ...]:
        """フォーマットに解決されるすべての識別子を返す"""
        return tuple(key for key, value in self._lookup.items() if value == fmt)

    def with_params(
        self, overrides: Mapping[ImageFormat, Mapping[str, Any]]
    ) -> FormatRegistry:
        """エンコードパラメータを上書きした新しいレジストリを返す

        Args:
            overrides: フォーマットごとの上書き値（EncodeParamsのフィールド名をキーとする）

        Returns:
            上書き済みの新しいレジストリ

        Raises:
            ValueError: 未知のパラメータ名が含まれる場合
        """
        capabilities = dict(self._capabilities)
        for fmt, values in overrides.items():
            unknown = set(values) - set(ENCODE_PARAM_FIELDS)
            if unknown:
                raise ValueError(f"未知のエンコードパラメータです: {', '.join(sorted(unknown))}")
            descriptor = capabilities[fmt]
            params = replace(descriptor.default_params, **values)
            capabilities[fmt] = replace(descriptor, default_params=params)

        aliases = {
            key: value for key, value in self._lookup.items() if key != value.value
        }
        return FormatRegistry(capabilities, aliases)

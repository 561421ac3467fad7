"""カラーモデル変換モジュール

出力フォーマットが入力のカラーモデルをエンコードできない場合に使う、
明示的な変換規則のテーブルを提供する。
テーブルは方向付きで非対称であり、定義されていない組み合わせは変換できない。
ピクセル演算はすべてPillowのconvert/merge/quantizeに任せる。
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType

from PIL import Image

from picshift.codec.color import (
    MAX_PALETTE_ENTRIES,
    PALETTE_ENTRY_SIZE,
    CanonicalBuffer,
    ColorModel,
)
from picshift.errors import UnsupportedConversionError

ConversionRule = Callable[[CanonicalBuffer], CanonicalBuffer]

_OPAQUE = 0xFF
# パレット外のインデックスが指す色（不透明な黒）
_PALETTE_FILL = b"\x00\x00\x00\xff"

# カラーモデル -> Pillowのモード（GRAY_ALPHA16に対応するモードはない）
PILLOW_MODES: dict[ColorModel, str] = {
    ColorModel.GRAY8: "L",
    ColorModel.GRAY_ALPHA8: "LA",
    ColorModel.RGB8: "RGB",
    ColorModel.RGBA8: "RGBA",
    ColorModel.INDEXED: "P",
    ColorModel.CMYK8: "CMYK",
    ColorModel.YCBCR8: "YCbCr",
}


def to_pillow_image(buffer: CanonicalBuffer, palette_alpha: bool = False) -> Image.Image:
    """正準バッファをPIL.Imageに変換する

    Args:
        buffer: 変換元バッファ
        palette_alpha: INDEXEDのときパレットをRGBAのまま載せるか
            （Falseの場合はRGBのみで、透過は保存オプション側で扱う）

    Returns:
        同じピクセルを持つPIL.Image

    Raises:
        ValueError: Pillowで表現できないカラーモデルの場合
    """
    mode = PILLOW_MODES.get(buffer.model)
    if mode is None:
        raise ValueError(f"{buffer.model.value}はPillowで表現できません")
    image = Image.frombytes(mode, buffer.size, buffer.data)
    if buffer.palette is not None:
        if palette_alpha:
            image.putpalette(buffer.palette, rawmode="RGBA")
        else:
            rgb = bytearray()
            for i in range(0, len(buffer.palette), PALETTE_ENTRY_SIZE):
                rgb.extend(buffer.palette[i : i + 3])
            image.putpalette(bytes(rgb), rawmode="RGB")
    return image


def _from_image(buffer: CanonicalBuffer, image: Image.Image, model: ColorModel) -> CanonicalBuffer:
    return CanonicalBuffer(
        data=image.tobytes(), width=buffer.width, height=buffer.height, model=model
    )


def _convert_mode(buffer: CanonicalBuffer, model: ColorModel) -> CanonicalBuffer:
    """Pillowのモード変換でbufferをmodelに変換する"""
    image = to_pillow_image(buffer).convert(PILLOW_MODES[model])
    return _from_image(buffer, image, model)


def gray_to_rgb(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """グレーをR,G,Bに複製する"""
    return _convert_mode(buffer, ColorModel.RGB8)


def gray_to_rgba(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """グレーをR,G,Bに複製し、不透明アルファを付与する"""
    return _convert_mode(buffer, ColorModel.RGBA8)


def gray_alpha_to_rgba(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """グレーを複製し、アルファを引き継ぐ"""
    return _convert_mode(buffer, ColorModel.RGBA8)


def gray_alpha_to_rgb(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """グレーを複製し、アルファを捨てる（透過情報は失われる）"""
    return _convert_mode(buffer, ColorModel.RGB8)


def gray_alpha_to_gray(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """アルファを捨てる（透過情報は失われる）"""
    return _convert_mode(buffer, ColorModel.GRAY8)


def _gray_alpha16_planes(buffer: CanonicalBuffer) -> tuple[Image.Image, Image.Image]:
    """16bitグレー+αをグレーとアルファの8bitプレーンに分ける

    サンプルはビッグエンディアンのため、各サンプルの先頭バイト（上位バイト）を使う。
    """
    gray = Image.frombytes("L", buffer.size, buffer.data[0::4])
    alpha = Image.frombytes("L", buffer.size, buffer.data[2::4])
    return gray, alpha


def gray_alpha16_to_rgba(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """上位バイトのグレーを複製し、上位バイトのアルファを引き継ぐ"""
    gray, alpha = _gray_alpha16_planes(buffer)
    return _from_image(buffer, Image.merge("RGBA", (gray, gray, gray, alpha)), ColorModel.RGBA8)


def gray_alpha16_to_rgb(buffer: CanonicalBuffer) -> CanonicalBuffer:
    gray, _ = _gray_alpha16_planes(buffer)
    return _from_image(buffer, Image.merge("RGB", (gray, gray, gray)), ColorModel.RGB8)


def gray_alpha16_to_gray(buffer: CanonicalBuffer) -> CanonicalBuffer:
    gray, _ = _gray_alpha16_planes(buffer)
    return _from_image(buffer, gray, ColorModel.GRAY8)


def rgba_to_rgb(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """アルファを捨てる（透過情報は失われる）"""
    return _convert_mode(buffer, ColorModel.RGB8)


def rgba_to_gray(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """アルファを捨ててBT.601の輝度に変換する"""
    return _convert_mode(buffer, ColorModel.GRAY8)


def rgb_to_rgba(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """不透明アルファを付与する"""
    return _convert_mode(buffer, ColorModel.RGBA8)


def rgb_to_gray(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """BT.601の輝度式（L = R*299/1000 + G*587/1000 + B*114/1000）でグレーに変換する"""
    return _convert_mode(buffer, ColorModel.GRAY8)


def cmyk_to_rgb(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """CMYKをRGBに変換する

    R = (255 - C) * (255 - K) / 255 の標準式。カラーマネジメントは行わない。
    """
    return _convert_mode(buffer, ColorModel.RGB8)


def ycbcr_to_rgb(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """BT.601（JFIFのフルレンジ）でYCbCrをRGBに変換する"""
    return _convert_mode(buffer, ColorModel.RGB8)


def ycbcr_to_gray(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """輝度成分Yをそのままグレーとして使う"""
    return _convert_mode(buffer, ColorModel.GRAY8)


def _expand_palette(buffer: CanonicalBuffer, model: ColorModel) -> CanonicalBuffer:
    """パレットを256エントリに埋めてから展開する"""
    palette = buffer.palette or b""
    padding = MAX_PALETTE_ENTRIES - len(palette) // PALETTE_ENTRY_SIZE
    padded = CanonicalBuffer(
        data=buffer.data,
        width=buffer.width,
        height=buffer.height,
        model=ColorModel.INDEXED,
        palette=palette + _PALETTE_FILL * padding,
    )
    image = to_pillow_image(padded, palette_alpha=True).convert(PILLOW_MODES[model])
    return _from_image(buffer, image, model)


def indexed_to_rgb(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """パレットを展開する（パレットのアルファは捨てる）"""
    return _expand_palette(buffer, ColorModel.RGB8)


def indexed_to_rgba(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """パレットを展開する（範囲外のインデックスは不透明な黒）"""
    return _expand_palette(buffer, ColorModel.RGBA8)


def indexed_to_gray(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """パレット色の輝度に展開する（パレットのアルファは捨てる）"""
    return _expand_palette(buffer, ColorModel.GRAY8)


def palette_as_rgba(image: Image.Image) -> bytes:
    """PモードのPIL.ImageからRGBAパレットを取り出す

    tRNSなどでinfo["transparency"]に格納された透過情報もアルファに反映する。

    Args:
        image: Pモードの画像

    Returns:
        4バイト/エントリのRGBAパレット
    """
    mode = image.palette.mode if image.palette is not None else "RGB"
    entries = image.getpalette(mode) or []
    if mode == "RGBA":
        return bytes(entries)

    rgba = bytearray()
    for i in range(0, len(entries), 3):
        rgba.extend(entries[i : i + 3])
        rgba.append(_OPAQUE)

    transparency = image.info.get("transparency")
    if isinstance(transparency, int):
        if transparency * PALETTE_ENTRY_SIZE < len(rgba):
            rgba[transparency * PALETTE_ENTRY_SIZE + 3] = 0
    elif isinstance(transparency, bytes):
        for index, alpha in enumerate(transparency[: len(rgba) // PALETTE_ENTRY_SIZE]):
            rgba[index * PALETTE_ENTRY_SIZE + 3] = alpha
    return bytes(rgba)


def _quantize(buffer: CanonicalBuffer, method: Image.Quantize) -> CanonicalBuffer:
    quantized = to_pillow_image(buffer).quantize(colors=MAX_PALETTE_ENTRIES, method=method)
    return CanonicalBuffer(
        data=quantized.tobytes(),
        width=buffer.width,
        height=buffer.height,
        model=ColorModel.INDEXED,
        palette=palette_as_rgba(quantized),
    )


def rgb_to_indexed(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """メディアンカットで256色以下に減色する"""
    return _quantize(buffer, Image.Quantize.MEDIANCUT)


def rgba_to_indexed(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """高速オクトツリーでアルファを保ったまま256色以下に減色する"""
    return _quantize(buffer, Image.Quantize.FASTOCTREE)


def cmyk_to_gray(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """RGBを経由して輝度に変換する"""
    return rgb_to_gray(cmyk_to_rgb(buffer))


def cmyk_to_indexed(buffer: CanonicalBuffer) -> CanonicalBuffer:
    """RGBを経由してメディアンカットで減色する"""
    return rgb_to_indexed(cmyk_to_rgb(buffer))


def ycbcr_to_indexed(buffer: CanonicalBuffer) -> CanonicalBuffer:
    return rgb_to_indexed(ycbcr_to_rgb(buffer))


def gray_alpha16_to_indexed(buffer: CanonicalBuffer) -> CanonicalBuffer:
    return rgba_to_indexed(gray_alpha16_to_rgba(buffer))


DEFAULT_RULES: Mapping[tuple[ColorModel, ColorModel], ConversionRule] = MappingProxyType(
    {
        (ColorModel.GRAY8, ColorModel.RGB8): gray_to_rgb,
        (ColorModel.GRAY8, ColorModel.RGBA8): gray_to_rgba,
        (ColorModel.GRAY_ALPHA8, ColorModel.RGBA8): gray_alpha_to_rgba,
        (ColorModel.GRAY_ALPHA8, ColorModel.RGB8): gray_alpha_to_rgb,
        (ColorModel.GRAY_ALPHA8, ColorModel.GRAY8): gray_alpha_to_gray,
        (ColorModel.GRAY_ALPHA16, ColorModel.RGBA8): gray_alpha16_to_rgba,
        (ColorModel.GRAY_ALPHA16, ColorModel.RGB8): gray_alpha16_to_rgb,
        (ColorModel.GRAY_ALPHA16, ColorModel.GRAY8): gray_alpha16_to_gray,
        (ColorModel.GRAY_ALPHA16, ColorModel.INDEXED): gray_alpha16_to_indexed,
        (ColorModel.RGBA8, ColorModel.RGB8): rgba_to_rgb,
        (ColorModel.RGBA8, ColorModel.GRAY8): rgba_to_gray,
        (ColorModel.RGBA8, ColorModel.INDEXED): rgba_to_indexed,
        (ColorModel.RGB8, ColorModel.RGBA8): rgb_to_rgba,
        (ColorModel.RGB8, ColorModel.GRAY8): rgb_to_gray,
        (ColorModel.RGB8, ColorModel.INDEXED): rgb_to_indexed,
        (ColorModel.CMYK8, ColorModel.RGB8): cmyk_to_rgb,
        (ColorModel.CMYK8, ColorModel.GRAY8): cmyk_to_gray,
        (ColorModel.CMYK8, ColorModel.INDEXED): cmyk_to_indexed,
        (ColorModel.INDEXED, ColorModel.RGB8): indexed_to_rgb,
        (ColorModel.INDEXED, ColorModel.RGBA8): indexed_to_rgba,
        (ColorModel.INDEXED, ColorModel.GRAY8): indexed_to_gray,
        (ColorModel.YCBCR8, ColorModel.RGB8): ycbcr_to_rgb,
        (ColorModel.YCBCR8, ColorModel.GRAY8): ycbcr_to_gray,
        (ColorModel.YCBCR8, ColorModel.INDEXED): ycbcr_to_indexed,
    }
)


class ColorModelConverter:
    """カラーモデル変換器

    (変換元, 変換先)をキーとする変換規則テーブルに従ってバッファを変換する。
    規則の追加や差し替えはコンストラクタ引数で行い、生成後は変更しない。
    """

    def __init__(
        self,
        rules: Mapping[tuple[ColorModel, ColorModel], ConversionRule] = DEFAULT_RULES,
    ) -> None:
        self._rules = MappingProxyType(dict(rules))

    def has_rule(self, source: ColorModel, target: ColorModel) -> bool:
        """変換規則が存在するかを返す（同一モデルは常に変換可能）"""
        return source == target or (source, target) in self._rules

    def select_target(self, source: ColorModel, candidates: Iterable[ColorModel]) -> ColorModel:
        """候補のうち最初に変換可能なカラーモデルを返す

        候補の順序はフォーマットの能力記述子が決める優先順位であり、
        ハッシュ構造の反復順序には依存しない。

        Args:
            source: 変換元カラーモデル
            candidates: 変換先の候補（優先順）

        Returns:
            変換先カラーモデル

        Raises:
            UnsupportedConversionError: 変換可能な候補がない場合
        """
        ordered = tuple(candidates)
        for target in ordered:
            if self.has_rule(source, target):
                return target
        raise UnsupportedConversionError(source, ordered)

    def convert(self, buffer: CanonicalBuffer, target: ColorModel) -> CanonicalBuffer:
        """バッファを指定カラーモデルに変換する

        Args:
            buffer: 変換元バッファ
            target: 変換先カラーモデル

        Returns:
            変換後のバッファ（同一モデルの場合は入力をそのまま返す）

        Raises:
            UnsupportedConversionError: 変換規則が定義されていない場合
        """
        if buffer.model == target:
            return buffer
        rule = self._rules.get((buffer.model, target))
        if rule is None:
            raise UnsupportedConversionError(buffer.model, (target,))
        return rule(buffer)

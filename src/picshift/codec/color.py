"""カラーモデルと正準バッファ

パイプライン全体で共通に扱うピクセル表現を定義する。
ColorModelはチャンネル数とチャンネルあたりのバイト数を固定で持ち、
CanonicalBufferは生成時にバッファ長の不変条件を検証する。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# パレットは最大256エントリ、各エントリRGBAの4バイト
PALETTE_ENTRY_SIZE = 4
MAX_PALETTE_ENTRIES = 256


class ColorModel(Enum):
    """ピクセルレイアウトを表す閉じたタグ集合

    値はレジストリ表示やエラーメッセージに使う名前。
    GRAY_ALPHA16のサンプルはビッグエンディアンで格納する。
    """

    GRAY8 = "gray8"
    GRAY_ALPHA8 = "gray_alpha8"
    GRAY_ALPHA16 = "gray_alpha16"
    RGB8 = "rgb8"
    RGBA8 = "rgba8"
    INDEXED = "indexed"
    CMYK8 = "cmyk8"
    YCBCR8 = "ycbcr8"

    @property
    def channel_count(self) -> int:
        """1ピクセルあたりのチャンネル数"""
        return _LAYOUT[self][0]

    @property
    def bytes_per_channel(self) -> int:
        """1チャンネルあたりのバイト数"""
        return _LAYOUT[self][1]

    @property
    def bytes_per_pixel(self) -> int:
        return self.channel_count * self.bytes_per_channel

    @property
    def has_alpha(self) -> bool:
        return self in (ColorModel.GRAY_ALPHA8, ColorModel.GRAY_ALPHA16, ColorModel.RGBA8)


_LAYOUT: dict[ColorModel, tuple[int, int]] = {
    ColorModel.GRAY8: (1, 1),
    ColorModel.GRAY_ALPHA8: (2, 1),
    ColorModel.GRAY_ALPHA16: (2, 2),
    ColorModel.RGB8: (3, 1),
    ColorModel.RGBA8: (4, 1),
    ColorModel.INDEXED: (1, 1),
    ColorModel.CMYK8: (4, 1),
    ColorModel.YCBCR8: (3, 1),
}


def expected_length(width: int, height: int, model: ColorModel) -> int:
    """指定サイズ・カラーモデルのバッファ長を計算する

    Args:
        width: 画像の幅（ピクセル）
        height: 画像の高さ（ピクセル）
        model: カラーモデル

    Returns:
        バッファのバイト数
    """
    return width * height * model.channel_count * model.bytes_per_channel


@dataclass(frozen=True)
class CanonicalBuffer:
    """デコード済みピクセルの正準表現

    デコーダーが一括で生成し、部分的に埋まった状態では存在しない不変データクラス。

    Attributes:
        data: ピクセルバイト列（行優先、チャンネルインターリーブ）
        width: 画像の幅（ピクセル）
        height: 画像の高さ（ピクセル）
        model: カラーモデル
        palette: INDEXEDのときのRGBAパレット（4バイト/エントリ）、それ以外はNone
    """

    data: bytes
    width: int
    height: int
    model: ColorModel
    palette: bytes | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"画像サイズが不正です: {self.width}x{self.height}")

        expected = expected_length(self.width, self.height, self.model)
        if len(self.data) != expected:
            raise ValueError(
                f"バッファ長が一致しません: {len(self.data)} != {expected} "
                f"({self.width}x{self.height} {self.model.value})"
            )

        if self.model == ColorModel.INDEXED:
            if self.palette is None:
                raise ValueError("INDEXEDバッファにはパレットが必要です")
            entries, remainder = divmod(len(self.palette), PALETTE_ENTRY_SIZE)
            if remainder or not 1 <= entries <= MAX_PALETTE_ENTRIES:
                raise ValueError(f"パレット長が不正です: {len(self.palette)}")
        elif self.palette is not None:
            raise ValueError(f"{self.model.value}バッファはパレットを持てません")

    @property
    def size(self) -> tuple[int, int]:
        """(幅, 高さ)のタプル"""
        return (self.width, self.height)

    @property
    def palette_entries(self) -> int:
        """パレットのエントリ数（パレットがない場合は0）"""
        if self.palette is None:
            return 0
        return len(self.palette) // PALETTE_ENTRY_SIZE

    @property
    def has_palette_alpha(self) -> bool:
        """パレットに不透明でないエントリがあるか"""
        if self.palette is None:
            return False
        return any(alpha != 0xFF for alpha in self.palette[3::PALETTE_ENTRY_SIZE])

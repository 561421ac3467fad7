"""PAM（Portable Arbitrary Map）コーデック

Pillowが扱えないP7形式を読み書きする。
テキストヘッダーと非圧縮のラスタで構成される単純な形式のため、純Pythonで実装する。

PAM形式の構造:
- ヘッダー: "P7\\n" に続き WIDTH/HEIGHT/DEPTH/MAXVAL/TUPLTYPE 行、"ENDHDR\\n" で終端
- データ: 行優先・チャンネルインターリーブのサンプル列（MAXVAL > 255 はビッグエンディアン16bit）
"""

from __future__ import annotations

from dataclasses import dataclass

from picshift.codec.color import CanonicalBuffer, ColorModel
from picshift.errors import (
    DecodeError,
    DecodeFailureReason,
    EncodeError,
    EncodeFailureReason,
)


@dataclass(frozen=True)
class PAMHeader:
    """PAMヘッダー情報

    Attributes:
        width: 画像の幅（ピクセル）
        height: 画像の高さ（ピクセル）
        depth: チャンネル数
        maxval: サンプルの最大値
        tupltype: タプル種別（省略時は空文字列）
        data_offset: ラスタの開始位置
    """

    width: int
    height: int
    depth: int
    maxval: int
    tupltype: str
    data_offset: int


# (TUPLTYPE, DEPTH, MAXVAL) -> カラーモデル
_LAYOUTS: dict[tuple[str, int, int], ColorModel] = {
    ("BLACKANDWHITE", 1, 1): ColorModel.GRAY8,
    ("GRAYSCALE", 1, 255): ColorModel.GRAY8,
    ("BLACKANDWHITE_ALPHA", 2, 1): ColorModel.GRAY_ALPHA8,
    ("GRAYSCALE_ALPHA", 2, 255): ColorModel.GRAY_ALPHA8,
    ("GRAYSCALE_ALPHA", 2, 65535): ColorModel.GRAY_ALPHA16,
    ("RGB", 3, 255): ColorModel.RGB8,
    ("RGB_ALPHA", 4, 255): ColorModel.RGBA8,
}

# TUPLTYPE省略時にDEPTHから推定する種別
_DEFAULT_TUPLTYPE: dict[int, str] = {
    1: "GRAYSCALE",
    2: "GRAYSCALE_ALPHA",
    3: "RGB",
    4: "RGB_ALPHA",
}

_ENCODE_TUPLTYPE: dict[ColorModel, tuple[str, int]] = {
    ColorModel.GRAY8: ("GRAYSCALE", 255),
    ColorModel.GRAY_ALPHA8: ("GRAYSCALE_ALPHA", 255),
    ColorModel.GRAY_ALPHA16: ("GRAYSCALE_ALPHA", 65535),
    ColorModel.RGB8: ("RGB", 255),
    ColorModel.RGBA8: ("RGB_ALPHA", 255),
}


class PAMCodec:
    """PAM画像コーデック"""

    MAGIC: bytes = b"P7"
    """PAM形式のマジックバイト"""

    END_MARKER: bytes = b"ENDHDR"

    def is_valid(self, data: bytes) -> bool:
        """PAM形式のマジックで始まるかを判定する"""
        return data[:3] in (b"P7\n", b"P7\r", b"P7 ")

    def parse_header(self, data: bytes) -> PAMHeader:
        """PAMヘッダーを解析する

        Args:
            data: PAM形式の画像バイト列

        Returns:
            解析されたヘッダー情報

        Raises:
            DecodeError: ヘッダーが途中で終わっている、または不正な場合
        """
        if len(data) < len(self.MAGIC) + 1:
            raise DecodeError(DecodeFailureReason.TRUNCATED_HEADER, "データが短すぎます")
        if not self.is_valid(data):
            raise DecodeError(DecodeFailureReason.CORRUPT, "PAM形式ではありません")

        fields: dict[str, str] = {}
        tupltypes: list[str] = []
        offset = len(self.MAGIC) + 1

        while True:
            newline = data.find(b"\n", offset)
            if newline < 0:
                raise DecodeError(DecodeFailureReason.TRUNCATED_HEADER, "ENDHDRが見つかりません")
            line = data[offset:newline].strip()
            offset = newline + 1

            if not line or line.startswith(b"#"):
                continue
            if line == self.END_MARKER:
                break

            try:
                key, _, value = line.decode("ascii").partition(" ")
            except UnicodeDecodeError as e:
                raise DecodeError(DecodeFailureReason.CORRUPT, "ヘッダーが不正です") from e
            if key == "TUPLTYPE":
                tupltypes.append(value.strip())
            else:
                fields[key] = value.strip()

        try:
            width = int(fields["WIDTH"])
            height = int(fields["HEIGHT"])
            depth = int(fields["DEPTH"])
            maxval = int(fields["MAXVAL"])
        except (KeyError, ValueError) as e:
            raise DecodeError(DecodeFailureReason.CORRUPT, f"ヘッダー項目が不正です: {e}") from e

        if width <= 0 or height <= 0 or depth <= 0 or not 1 <= maxval <= 65535:
            raise DecodeError(DecodeFailureReason.CORRUPT, "ヘッダーの値が範囲外です")

        return PAMHeader(
            width=width,
            height=height,
            depth=depth,
            maxval=maxval,
            tupltype=" ".join(tupltypes),
            data_offset=offset,
        )

    def decode(self, data: bytes) -> CanonicalBuffer:
        """PAM形式のバイト列をデコードする

        Args:
            data: PAM形式の画像バイト列

        Returns:
            デコードされたバッファ

        Raises:
            DecodeError: 不正なデータ、または対応していないタプル種別の場合
        """
        header = self.parse_header(data)
        tupltype = header.tupltype or _DEFAULT_TUPLTYPE.get(header.depth, "")
        model = _LAYOUTS.get((tupltype, header.depth, header.maxval))
        if model is None:
            raise DecodeError(
                DecodeFailureReason.UNSUPPORTED_COLOR_MODEL,
                f"TUPLTYPE={tupltype or '-'} DEPTH={header.depth} MAXVAL={header.maxval}",
            )

        sample_size = 2 if header.maxval > 255 else 1
        length = header.width * header.height * header.depth * sample_size
        raster = data[header.data_offset : header.data_offset + length]
        if len(raster) < length:
            raise DecodeError(
                DecodeFailureReason.CORRUPT,
                f"ラスタが不完全です: {len(raster)} < {length}",
            )

        # 1bitの白黒は0/255に展開する
        if header.maxval == 1:
            if any(sample > 1 for sample in raster):
                raise DecodeError(DecodeFailureReason.CORRUPT, "MAXVALを超えるサンプルがあります")
            raster = bytes(sample * 255 for sample in raster)

        try:
            return CanonicalBuffer(
                data=bytes(raster),
                width=header.width,
                height=header.height,
                model=model,
            )
        except ValueError as e:
            raise DecodeError(DecodeFailureReason.CORRUPT, str(e)) from e

    def encode(self, buffer: CanonicalBuffer) -> bytes:
        """バッファをPAM形式にエンコードする

        Args:
            buffer: エンコードするバッファ

        Returns:
            PAM形式のバイト列

        Raises:
            EncodeError: PAMで表現できないカラーモデルの場合
        """
        layout = _ENCODE_TUPLTYPE.get(buffer.model)
        if layout is None:
            raise EncodeError(
                EncodeFailureReason.UNSUPPORTED_COLOR_MODEL,
                f"PAMは{buffer.model.value}を出力できません",
            )
        tupltype, maxval = layout
        header = (
            f"P7\n"
            f"WIDTH {buffer.width}\n"
            f"HEIGHT {buffer.height}\n"
            f"DEPTH {buffer.model.channel_count}\n"
            f"MAXVAL {maxval}\n"
            f"TUPLTYPE {tupltype}\n"
            f"ENDHDR\n"
        )
        return header.encode("ascii") + buffer.data

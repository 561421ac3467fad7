"""トランスコードパイプラインのテスト"""

import io

import pytest
from PIL import Image

from picshift.codec.color import ColorModel
from picshift.codec.convert import DEFAULT_RULES, ColorModelConverter
from picshift.codec.decoder import get_decoder
from picshift.codec.formats import FormatRegistry, ImageFormat
from picshift.codec.plugins import plugin_available
from picshift.errors import (
    DecodeError,
    EncodeError,
    EncodeFailureReason,
    RejectionKind,
    UnsupportedConversionError,
    UnsupportedFormatError,
)
from picshift.pipeline import (
    PipelineStage,
    TranscodePipeline,
    TranscodeRequest,
)


def _gradient_png(mode: str, size: tuple[int, int]) -> bytes:
    channels = len(Image.new(mode, (1, 1)).getbands())
    data = bytes((i * 7) % 256 for i in range(size[0] * size[1] * channels))
    image = Image.frombytes(mode, size, data)
    output = io.BytesIO()
    image.save(output, format="PNG")
    return output.getvalue()


@pytest.fixture
def pipeline(registry: FormatRegistry) -> TranscodePipeline:
    return TranscodePipeline(registry)


class TestTranscodeSuccess:
    """正常系の変換テスト"""

    def test_rgba_png_to_jpeg(self, pipeline: TranscodePipeline, registry: FormatRegistry) -> None:
        """RGBAのPNGはRGB8を経由してJPEGになる"""
        data = _gradient_png("RGBA", (2, 2))
        result = pipeline.run(TranscodeRequest(data, "png", "jpeg"))

        assert result.success
        assert result.stage == PipelineStage.DELIVERED
        assert result.mime_type == "image/jpeg"
        assert result.statistics["source_model"] == "rgba8"
        assert result.statistics["target_model"] == "rgb8"
        assert result.statistics["converted"] is True

        assert result.data is not None
        decoded = get_decoder(ImageFormat.JPEG, registry).decode(result.data)
        assert decoded.model == ColorModel.RGB8
        assert decoded.size == (2, 2)

    def test_gray_png_to_webp_without_conversion(self, pipeline: TranscodePipeline) -> None:
        """グレーのPNGはWebPがそのまま受け付けるため変換しない"""
        data = _gradient_png("L", (4, 4))
        result = pipeline.run(TranscodeRequest(data, "png", "webp"))

        assert result.success
        assert result.mime_type == "image/webp"
        assert result.statistics["source_model"] == "gray8"
        assert result.statistics["target_model"] == "gray8"
        assert result.statistics["converted"] is False

    def test_stages_in_order(self, pipeline: TranscodePipeline) -> None:
        seen: list[PipelineStage] = []
        result = pipeline.run(
            TranscodeRequest(_gradient_png("RGB", (2, 2)), "png", "bmp"),
            stage_callback=seen.append,
        )

        expected = [
            PipelineStage.RECEIVED,
            PipelineStage.FORMAT_IDENTIFIED,
            PipelineStage.DECODED,
            PipelineStage.COLOR_NORMALIZED,
            PipelineStage.ENCODED,
            PipelineStage.DELIVERED,
        ]
        assert seen == expected
        assert result.stages_completed == expected

    @pytest.mark.parametrize(
        "mode,output,target_model",
        [
            pytest.param("RGB", "gif", "indexed", id="正常系: RGB→GIFは減色"),
            pytest.param("RGB", "pbm", "gray8", id="正常系: RGB→PBMは輝度"),
            pytest.param("LA", "pgm", "gray8", id="正常系: グレー+α→PGMはα除去"),
            pytest.param("L", "ppm", "rgb8", id="正常系: グレー→PPMは複製"),
            pytest.param("RGBA", "ico", "rgba8", id="正常系: RGBA→ICO"),
            pytest.param("LA", "pam", "gray_alpha8", id="正常系: グレー+α→PAM"),
        ],
    )
    def test_normalization_targets(
        self, pipeline: TranscodePipeline, mode: str, output: str, target_model: str
    ) -> None:
        result = pipeline.run(TranscodeRequest(_gradient_png(mode, (8, 8)), "png", output))
        assert result.success, result.message
        assert result.statistics["target_model"] == target_model

    @pytest.mark.parametrize(
        "output",
        [
            pytest.param(fmt.value, id=f"正常系: {fmt.value}")
            for fmt in ImageFormat
            if plugin_available(fmt)
        ],
    )
    def test_dimensions_are_preserved(
        self, pipeline: TranscodePipeline, registry: FormatRegistry, output: str
    ) -> None:
        """どの出力形式でも幅と高さは変わらない"""
        result = pipeline.run(TranscodeRequest(_gradient_png("RGB", (7, 5)), "png", output))

        assert result.success, result.message
        assert result.data is not None
        decoded = get_decoder(registry.resolve(output), registry).decode(result.data)
        assert decoded.size == (7, 5)

    @pytest.mark.parametrize(
        "output",
        [
            pytest.param("png", id="正常系: PNG"),
            pytest.param("tiff", id="正常系: TIFF"),
            pytest.param("tga", id="正常系: TGA"),
            pytest.param("pam", id="正常系: PAM"),
        ],
    )
    def test_lossless_round_trip(
        self, pipeline: TranscodePipeline, registry: FormatRegistry, output: str
    ) -> None:
        """可逆形式では二度目の変換でピクセルが変わらない"""
        first = pipeline.transcode(TranscodeRequest(_gradient_png("RGBA", (6, 3)), "png", output))
        second = pipeline.transcode(TranscodeRequest(first[0], output, output))

        fmt = registry.resolve(output)
        decoder = get_decoder(fmt, registry)
        assert decoder.decode(second[0]) == decoder.decode(first[0])

    def test_cmyk_jpeg_to_png(self, pipeline: TranscodePipeline) -> None:
        image = Image.new("CMYK", (3, 3), (0, 255, 255, 0))
        output = io.BytesIO()
        image.save(output, format="JPEG", quality=100)

        result = pipeline.run(TranscodeRequest(output.getvalue(), "jpeg", "png"))

        assert result.success
        assert result.statistics["source_model"] == "cmyk8"
        assert result.statistics["target_model"] == "rgb8"


class TestTranscodeRejection:
    """拒否系の変換テスト"""

    def test_unknown_input_type(self, pipeline: TranscodePipeline) -> None:
        result = pipeline.run(TranscodeRequest(b"data", "heic", "png"))

        assert not result.success
        assert result.stage == PipelineStage.REJECTED
        assert result.failed_stage == PipelineStage.RECEIVED
        assert result.rejection == RejectionKind.BAD_INPUT
        assert isinstance(result.error, UnsupportedFormatError)
        assert result.data is None

    def test_unknown_output_type(self, pipeline: TranscodePipeline) -> None:
        result = pipeline.run(TranscodeRequest(_gradient_png("L", (2, 2)), "png", "psd"))

        assert result.rejection == RejectionKind.BAD_OUTPUT_REQUEST
        assert "psd" in result.message

    def test_corrupt_input(self, pipeline: TranscodePipeline) -> None:
        result = pipeline.run(TranscodeRequest(b"\x89PNG\r\n\x1a\n" + bytes(40), "png", "jpeg"))

        assert result.failed_stage == PipelineStage.FORMAT_IDENTIFIED
        assert result.rejection == RejectionKind.BAD_INPUT
        assert isinstance(result.error, DecodeError)

    def test_no_conversion_path(self, registry: FormatRegistry) -> None:
        """16bitグレー+αの規則を外した変換器ではJPEGへの変換経路がない"""
        rules = {
            key: rule for key, rule in DEFAULT_RULES.items() if key[0] != ColorModel.GRAY_ALPHA16
        }
        pipeline = TranscodePipeline(registry, ColorModelConverter(rules))
        header = b"P7\nWIDTH 1\nHEIGHT 1\nDEPTH 2\nMAXVAL 65535\nTUPLTYPE GRAYSCALE_ALPHA\nENDHDR\n"
        result = pipeline.run(TranscodeRequest(header + bytes(4), "pam", "jpeg"))

        assert result.failed_stage == PipelineStage.DECODED
        assert result.rejection == RejectionKind.CONVERSION_IMPOSSIBLE
        assert isinstance(result.error, UnsupportedConversionError)

    def test_cmyk_without_rule(self, registry: FormatRegistry) -> None:
        """CMYK→RGBの規則がない変換器ではCMYKのJPEGをPNGにできない"""
        rules = {key: rule for key, rule in DEFAULT_RULES.items() if key[0] != ColorModel.CMYK8}
        pipeline = TranscodePipeline(registry, ColorModelConverter(rules))
        image = Image.new("CMYK", (2, 2), (0, 0, 0, 0))
        output = io.BytesIO()
        image.save(output, format="JPEG")

        for _ in range(2):
            result = pipeline.run(TranscodeRequest(output.getvalue(), "jpeg", "png"))
            assert result.rejection == RejectionKind.CONVERSION_IMPOSSIBLE
            assert result.failed_stage == PipelineStage.DECODED

    def test_dimensions_too_large(self, pipeline: TranscodePipeline) -> None:
        result = pipeline.run(TranscodeRequest(_gradient_png("RGBA", (300, 2)), "png", "ico"))

        assert result.failed_stage == PipelineStage.COLOR_NORMALIZED
        assert result.rejection == RejectionKind.CONVERSION_IMPOSSIBLE
        assert isinstance(result.error, EncodeError)
        assert result.error.reason == EncodeFailureReason.INVALID_DIMENSIONS

    def test_rejected_callback(self, pipeline: TranscodePipeline) -> None:
        seen: list[PipelineStage] = []
        pipeline.run(TranscodeRequest(b"", "png", "jpeg"), stage_callback=seen.append)
        assert seen[-1] == PipelineStage.REJECTED
        assert PipelineStage.DECODED not in seen

    def test_transcode_raises(self, pipeline: TranscodePipeline) -> None:
        with pytest.raises(UnsupportedFormatError):
            pipeline.transcode(TranscodeRequest(b"", "png", "unknown"))


def _transparent_palette_png() -> bytes:
    """赤（完全透明）と緑（不透明）の2色パレットを持つPNG"""
    image = Image.new("P", (2, 1))
    image.putpalette([255, 0, 0, 0, 255, 0])
    image.putdata([0, 1])
    output = io.BytesIO()
    image.save(output, format="PNG", transparency=b"\x00\xff")
    return output.getvalue()


def _encode_with_pillow(mode: str, fmt: str, **options: object) -> bytes:
    channels = len(Image.new(mode, (1, 1)).getbands())
    data = bytes((i * 13) % 256 for i in range(8 * 8 * channels))
    image = Image.frombytes(mode, (8, 8), data)
    if mode == "P":
        image.putpalette(bytes(range(256)) * 3)
    output = io.BytesIO()
    image.save(output, format=fmt, **options)
    return output.getvalue()


def _gray_alpha16_pam() -> bytes:
    header = b"P7\nWIDTH 8\nHEIGHT 8\nDEPTH 2\nMAXVAL 65535\nTUPLTYPE GRAYSCALE_ALPHA\nENDHDR\n"
    return header + bytes(i % 256 for i in range(8 * 8 * 4))


class TestPaletteAlpha:
    """透過パレットを持つINDEXEDの正規化テスト"""

    @pytest.mark.parametrize(
        "output",
        [
            pytest.param("tiff", id="正常系: TIFFはRGBA8に展開"),
            pytest.param("tga", id="正常系: TGAはRGBA8に展開"),
        ],
    )
    def test_alpha_kept_by_expanding(
        self, pipeline: TranscodePipeline, registry: FormatRegistry, output: str
    ) -> None:
        result = pipeline.run(TranscodeRequest(_transparent_palette_png(), "png", output))

        assert result.success, result.message
        assert result.statistics["source_model"] == "indexed"
        assert result.statistics["target_model"] == "rgba8"
        assert result.statistics["converted"] is True
        assert result.data is not None
        decoded = get_decoder(registry.resolve(output), registry).decode(result.data)
        assert decoded.model == ColorModel.RGBA8
        assert decoded.data == b"\xff\x00\x00\x00\x00\xff\x00\xff"

    def test_bmp_drops_alpha_explicitly(self, pipeline: TranscodePipeline) -> None:
        """BMPはアルファを書けないため、黙ってINDEXEDのまま書かずRGB8に変換する"""
        result = pipeline.run(TranscodeRequest(_transparent_palette_png(), "png", "bmp"))

        assert result.success, result.message
        assert result.statistics["target_model"] == "rgb8"
        assert result.statistics["converted"] is True

    @pytest.mark.parametrize(
        "output",
        [
            pytest.param("png", id="正常系: PNGはtRNSで保存"),
            pytest.param("gif", id="正常系: GIFは透過インデックスで保存"),
        ],
    )
    def test_palette_alpha_formats_keep_indexed(
        self, pipeline: TranscodePipeline, registry: FormatRegistry, output: str
    ) -> None:
        result = pipeline.run(TranscodeRequest(_transparent_palette_png(), "png", output))

        assert result.success, result.message
        assert result.statistics["target_model"] == "indexed"
        assert result.statistics["converted"] is False
        assert result.data is not None
        decoded = get_decoder(registry.resolve(output), registry).decode(result.data)
        assert decoded.has_palette_alpha

    def test_opaque_palette_stays_indexed(self, pipeline: TranscodePipeline) -> None:
        """透過のないパレットはTIFFでもそのままINDEXEDで書き出す"""
        data = _encode_with_pillow("P", "PNG")
        result = pipeline.run(TranscodeRequest(data, "png", "tiff"))

        assert result.success, result.message
        assert result.statistics["target_model"] == "indexed"


class TestConversionMatrix:
    """入力カラーモデルと出力フォーマットの全組み合わせのテスト"""

    SOURCES = [
        pytest.param(_gradient_png("L", (8, 8)), "png", id="png-L"),
        pytest.param(_gradient_png("LA", (8, 8)), "png", id="png-LA"),
        pytest.param(_gradient_png("RGB", (8, 8)), "png", id="png-RGB"),
        pytest.param(_gradient_png("RGBA", (8, 8)), "png", id="png-RGBA"),
        pytest.param(_encode_with_pillow("P", "PNG", transparency=0), "png", id="png-P-tRNS"),
        pytest.param(_encode_with_pillow("P", "GIF"), "gif", id="gif-P"),
        pytest.param(_encode_with_pillow("CMYK", "JPEG"), "jpeg", id="jpeg-CMYK"),
        pytest.param(_gray_alpha16_pam(), "pam", id="pam-GA16"),
    ]

    @pytest.mark.parametrize("data,input_type", SOURCES)
    @pytest.mark.parametrize(
        "output", [fmt.value for fmt in ImageFormat if plugin_available(fmt)]
    )
    def test_every_pair_converts(
        self,
        pipeline: TranscodePipeline,
        registry: FormatRegistry,
        data: bytes,
        input_type: str,
        output: str,
    ) -> None:
        result = pipeline.run(TranscodeRequest(data, input_type, output))

        assert result.success, f"{input_type}->{output}: {result.message}"
        assert result.data is not None
        fmt = registry.resolve(output)
        assert registry.capabilities(fmt).can_encode(ColorModel(result.statistics["target_model"]))
        decoded = get_decoder(fmt, registry).decode(result.data)
        assert decoded.size == (8, 8)

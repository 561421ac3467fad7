"""フォーマットレジストリのテスト"""

import pytest

from picshift.codec.color import ColorModel
from picshift.codec.formats import (
    DEFAULT_CAPABILITIES,
    EncodeParams,
    FormatRegistry,
    ImageFormat,
)
from picshift.errors import RejectionKind, UnsupportedFormatError


class TestResolve:
    """識別子解決のテスト"""

    @pytest.mark.parametrize(
        "identifier,expected",
        [
            pytest.param("png", ImageFormat.PNG, id="正常系: トークン"),
            pytest.param("PNG", ImageFormat.PNG, id="正常系: 大文字"),
            pytest.param(" WebP ", ImageFormat.WEBP, id="正常系: 前後の空白"),
            pytest.param("jpg", ImageFormat.JPEG, id="正常系: jpg別名"),
            pytest.param("tif", ImageFormat.TIFF, id="正常系: tif別名"),
            pytest.param("x-icon", ImageFormat.ICO, id="正常系: ICOのMIMEサブタイプ"),
            pytest.param("vnd.microsoft.icon", ImageFormat.ICO, id="正常系: ICOの登録MIME"),
            pytest.param("x-tga", ImageFormat.TGA, id="正常系: TGAのMIMEサブタイプ"),
            pytest.param("x-portable-pixmap", ImageFormat.PPM, id="正常系: PPMのMIMEサブタイプ"),
            pytest.param("x-portable-anymap", ImageFormat.PPM, id="正常系: anymapはPPM"),
            pytest.param("JXL", ImageFormat.JXL, id="正常系: JPEG XL"),
        ],
    )
    def test_resolve(
        self, registry: FormatRegistry, identifier: str, expected: ImageFormat
    ) -> None:
        assert registry.resolve(identifier) == expected

    @pytest.mark.parametrize(
        "identifier",
        [
            pytest.param("heic", id="異常系: 未対応形式"),
            pytest.param("pn", id="異常系: 前方一致はしない"),
            pytest.param("image/png", id="異常系: MIMEタイプ全体は受け付けない"),
            pytest.param("", id="異常系: 空文字列"),
        ],
    )
    def test_resolve_unknown(self, registry: FormatRegistry, identifier: str) -> None:
        with pytest.raises(UnsupportedFormatError) as exc_info:
            registry.resolve(identifier)
        assert exc_info.value.kind == RejectionKind.BAD_INPUT

    def test_every_format_round_trips(self, registry: FormatRegistry) -> None:
        """すべてのフォーマットがトークンと全識別子から自身に解決される"""
        for fmt in registry.formats():
            assert registry.resolve(fmt.value) == fmt
            for identifier in registry.identifiers(fmt):
                assert registry.resolve(identifier) == fmt


class TestCapabilities:
    """能力記述子のテスト"""

    def test_capabilities_total(self, registry: FormatRegistry) -> None:
        """すべてのフォーマットに能力記述子がある"""
        for fmt in ImageFormat:
            descriptor = registry.capabilities(fmt)
            assert descriptor.encodable_models
            assert descriptor.decodable_models

    @pytest.mark.parametrize(
        "fmt,mime_type",
        [
            pytest.param(ImageFormat.PNG, "image/png", id="正常系: PNG"),
            pytest.param(ImageFormat.JPEG, "image/jpeg", id="正常系: JPEG"),
            pytest.param(ImageFormat.WEBP, "image/webp", id="正常系: WEBP"),
            pytest.param(ImageFormat.AVIF, "image/avif", id="正常系: AVIF"),
            pytest.param(ImageFormat.JXL, "image/jxl", id="正常系: JXL"),
            pytest.param(ImageFormat.ICO, "image/x-icon", id="正常系: ICO"),
            pytest.param(ImageFormat.TGA, "image/x-tga", id="正常系: TGA"),
            pytest.param(ImageFormat.PBM, "image/x-portable-anymap", id="正常系: PBM"),
            pytest.param(ImageFormat.PAM, "image/x-portable-anymap", id="正常系: PAM"),
        ],
    )
    def test_mime_type(self, registry: FormatRegistry, fmt: ImageFormat, mime_type: str) -> None:
        assert registry.mime_type(fmt) == mime_type

    def test_jpeg_cannot_encode_alpha(self, registry: FormatRegistry) -> None:
        descriptor = registry.capabilities(ImageFormat.JPEG)
        assert not descriptor.can_encode(ColorModel.RGBA8)
        assert descriptor.encodable_models[0] == ColorModel.RGB8

    def test_palette_alpha_formats(self, registry: FormatRegistry) -> None:
        """パレットアルファを保存できるのはPNGとGIFのみ"""
        formats = {fmt for fmt in registry.formats() if registry.capabilities(fmt).palette_alpha}
        assert formats == {ImageFormat.PNG, ImageFormat.GIF}
        for fmt in formats:
            assert registry.capabilities(fmt).can_encode(ColorModel.INDEXED)

    def test_bmp_does_not_encode_alpha(self, registry: FormatRegistry) -> None:
        descriptor = registry.capabilities(ImageFormat.BMP)
        assert not descriptor.can_encode(ColorModel.RGBA8)
        assert ColorModel.RGBA8 in descriptor.decodable_models

    def test_jxl_extension(self, registry: FormatRegistry) -> None:
        descriptor = registry.capabilities(ImageFormat.JXL)
        assert descriptor.extension == ".jxl"
        assert descriptor.encodable_models[0] == ColorModel.RGBA8

    def test_default_capabilities_are_read_only(self) -> None:
        with pytest.raises(TypeError):
            DEFAULT_CAPABILITIES[ImageFormat.PNG] = DEFAULT_CAPABILITIES[ImageFormat.JPEG]  # type: ignore[index]


class TestWithParams:
    """エンコードパラメータ上書きのテスト"""

    def test_override_creates_new_registry(self, registry: FormatRegistry) -> None:
        """上書きは新しいレジストリを返し、元のレジストリは変わらない"""
        updated = registry.with_params({ImageFormat.JPEG: {"quality": 80}})

        assert updated.capabilities(ImageFormat.JPEG).default_params.quality == 80
        assert updated.capabilities(ImageFormat.JPEG).default_params.optimize is True
        assert registry.capabilities(ImageFormat.JPEG).default_params == EncodeParams()

    def test_override_keeps_aliases(self, registry: FormatRegistry) -> None:
        updated = registry.with_params({ImageFormat.WEBP: {"method": 6}})
        assert updated.resolve("jpg") == ImageFormat.JPEG
        assert updated.resolve("x-icon") == ImageFormat.ICO

    def test_unknown_param(self, registry: FormatRegistry) -> None:
        with pytest.raises(ValueError):
            registry.with_params({ImageFormat.PNG: {"colors": 16}})

"""共通フィクスチャ"""

import io
from collections.abc import Callable
from typing import Any

import pytest
from PIL import Image

from picshift.codec.formats import FormatRegistry

ImageFactory = Callable[..., bytes]


@pytest.fixture
def registry() -> FormatRegistry:
    """既定のフォーマットレジストリ"""
    return FormatRegistry()


@pytest.fixture
def make_image() -> ImageFactory:
    """Pillowでテスト用の画像バイト列を生成する"""

    def factory(
        mode: str,
        size: tuple[int, int],
        fmt: str,
        color: Any = 0,
        **save_options: Any,
    ) -> bytes:
        image = Image.new(mode, size, color)
        output = io.BytesIO()
        image.save(output, format=fmt, **save_options)
        return output.getvalue()

    return factory

"""設定ファイル読み込みのテスト"""

from pathlib import Path

import pytest

from picshift.codec.formats import EncodeParams, ImageFormat
from picshift.config import (
    DEFAULT_MAX_UPLOAD_BYTES,
    ConfigError,
    LimitsConfig,
    PicshiftConfig,
    WorkerConfig,
    get_default_config,
    load_config,
)


class TestDefaultConfig:
    """デフォルト設定のテスト"""

    def test_get_default_config_returns_picshift_config(self) -> None:
        config = get_default_config()
        assert isinstance(config, PicshiftConfig)

    def test_default_values(self) -> None:
        config = get_default_config()
        assert config.limits == LimitsConfig(max_upload_bytes=DEFAULT_MAX_UPLOAD_BYTES)
        assert config.workers == WorkerConfig(max_workers=None)
        assert config.encoders == {}

    def test_default_registry(self) -> None:
        registry = get_default_config().build_registry()
        assert registry.capabilities(ImageFormat.JPEG).default_params == EncodeParams()


class TestLoadConfig:
    """設定読み込みのテスト"""

    def test_load_config_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nonexistent.yml")

    def test_load_config_invalid_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "invalid.yml"
        config_file.write_text("this is not valid yaml: [")

        with pytest.raises(ConfigError):
            load_config(config_file)

    def test_load_config_empty_file(self, tmp_path: Path) -> None:
        """空のファイルはデフォルト設定を返す"""
        config_file = tmp_path / "empty.yml"
        config_file.write_text("")

        assert load_config(config_file) == get_default_config()

    def test_load_config_nested_settings(self, tmp_path: Path) -> None:
        config_content = """
limits:
  max_upload_bytes: 1048576
workers:
  max_workers: 4
encoders:
  jpeg:
    quality: 80
  WebP:
    quality: 70
    method: 6
    lossless: true
"""
        config_file = tmp_path / "picshift.yml"
        config_file.write_text(config_content)

        config = load_config(config_file)

        assert config.limits.max_upload_bytes == 1048576
        assert config.workers.max_workers == 4
        assert config.encoders == {
            ImageFormat.JPEG: {"quality": 80},
            ImageFormat.WEBP: {"quality": 70, "method": 6, "lossless": True},
        }

    def test_load_config_merges_with_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "partial.yml"
        config_file.write_text("workers:\n  max_workers: 2\n")

        config = load_config(config_file)
        assert config.workers.max_workers == 2
        assert config.limits.max_upload_bytes == DEFAULT_MAX_UPLOAD_BYTES

    def test_build_registry_applies_overrides(self, tmp_path: Path) -> None:
        config_file = tmp_path / "encoders.yml"
        config_file.write_text("encoders:\n  png:\n    compress_level: 9\n")

        registry = load_config(config_file).build_registry()

        assert registry.capabilities(ImageFormat.PNG).default_params.compress_level == 9
        assert registry.capabilities(ImageFormat.JPEG).default_params.quality == 95

    @pytest.mark.parametrize(
        "content",
        [
            pytest.param("- a\n- b\n", id="異常系: ルートがリスト"),
            pytest.param("limits: 10\n", id="異常系: limitsがマッピングでない"),
            pytest.param("limits:\n  max_upload_bytes: 0\n", id="異常系: 上限が0"),
            pytest.param("limits:\n  max_upload_bytes: big\n", id="異常系: 上限が文字列"),
            pytest.param("workers:\n  max_workers: -1\n", id="異常系: ワーカー数が負"),
            pytest.param("workers:\n  max_workers: true\n", id="異常系: ワーカー数が真偽値"),
            pytest.param("encoders:\n  heic:\n    quality: 80\n", id="異常系: 未知のフォーマット"),
            pytest.param("encoders:\n  jpeg: 80\n", id="異常系: エンコーダー設定がマッピングでない"),
            pytest.param("encoders:\n  jpeg:\n    colors: 8\n", id="異常系: 未知のパラメータ"),
            pytest.param("encoders:\n  jpeg:\n    quality: 101\n", id="異常系: 品質が範囲外"),
            pytest.param("encoders:\n  avif:\n    speed: 11\n", id="異常系: 速度が範囲外"),
            pytest.param("encoders:\n  webp:\n    lossless: 1\n", id="異常系: losslessが整数"),
            pytest.param("encoders:\n  png:\n    compress_level: fast\n", id="異常系: 圧縮レベルが文字列"),
        ],
    )
    def test_load_config_invalid_values(self, tmp_path: Path, content: str) -> None:
        config_file = tmp_path / "invalid.yml"
        config_file.write_text(content)

        with pytest.raises(ConfigError):
            load_config(config_file)

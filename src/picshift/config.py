"""Configuration module for picshift."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from picshift.codec.formats import ENCODE_PARAM_FIELDS, FormatRegistry, ImageFormat

# 25 MiB
DEFAULT_MAX_UPLOAD_BYTES = 25 * 1024 * 1024

# パラメータ名 -> (型, 最小値, 最大値)
_PARAM_RANGES: dict[str, tuple[type, int, int]] = {
    "quality": (int, 0, 100),
    "speed": (int, 0, 10),
    "method": (int, 0, 6),
    "compress_level": (int, 0, 9),
    "lossless": (bool, 0, 1),
    "optimize": (bool, 0, 1),
}


class ConfigError(Exception):
    """設定ファイル読み込みエラー"""

    pass


@dataclass(frozen=True)
class LimitsConfig:
    """受け付けサイズの設定"""

    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES


@dataclass(frozen=True)
class WorkerConfig:
    """並列変換の設定"""

    max_workers: int | None = None


@dataclass(frozen=True)
class PicshiftConfig:
    """ルート設定

    Attributes:
        limits: 受け付けサイズの設定
        workers: 並列変換の設定
        encoders: フォーマットごとのエンコードパラメータ上書き
    """

    limits: LimitsConfig = field(default_factory=LimitsConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)
    encoders: dict[ImageFormat, dict[str, Any]] = field(default_factory=dict)

    def build_registry(self) -> FormatRegistry:
        """エンコードパラメータを反映したフォーマットレジストリを構築する"""
        return FormatRegistry().with_params(self.encoders)


def load_config(path: Path) -> PicshiftConfig:
    """設定ファイルを読み込む

    Args:
        path: 設定ファイルパス

    Returns:
        PicshiftConfig: 読み込んだ設定（デフォルトとマージ済み）

    Raises:
        ConfigError: ファイル読み込み、パース、または値の検証エラー
    """
    if not path.exists():
        raise ConfigError(f"設定ファイルが見つかりません: {path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML解析エラー: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("設定ファイルはYAMLのマッピング形式である必要があります")

    default = get_default_config()

    return PicshiftConfig(
        limits=_merge_limits_config(data.get("limits", {}), default.limits),
        workers=_merge_worker_config(data.get("workers", {}), default.workers),
        encoders=_parse_encoder_overrides(data.get("encoders", {})),
    )


def get_default_config() -> PicshiftConfig:
    """デフォルト設定を取得する"""
    return PicshiftConfig()


def _merge_limits_config(data: dict[str, Any], default: LimitsConfig) -> LimitsConfig:
    """サイズ上限設定をマージする"""
    if not isinstance(data, dict):
        raise ConfigError("limitsはマッピングである必要があります")
    max_upload_bytes = data.get("max_upload_bytes", default.max_upload_bytes)
    if not isinstance(max_upload_bytes, int) or isinstance(max_upload_bytes, bool):
        raise ConfigError(f"max_upload_bytesは整数である必要があります: {max_upload_bytes!r}")
    if max_upload_bytes <= 0:
        raise ConfigError(f"max_upload_bytesは正の値である必要があります: {max_upload_bytes}")
    return LimitsConfig(max_upload_bytes=max_upload_bytes)


def _merge_worker_config(data: dict[str, Any], default: WorkerConfig) -> WorkerConfig:
    """並列変換設定をマージする"""
    if not isinstance(data, dict):
        raise ConfigError("workersはマッピングである必要があります")
    max_workers = data.get("max_workers", default.max_workers)
    if max_workers is not None and (
        not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers <= 0
    ):
        raise ConfigError(f"max_workersは正の整数である必要があります: {max_workers!r}")
    return WorkerConfig(max_workers=max_workers)


def _parse_encoder_overrides(data: dict[str, Any]) -> dict[ImageFormat, dict[str, Any]]:
    """エンコードパラメータの上書きをパースする"""
    if not isinstance(data, dict):
        raise ConfigError("encodersはマッピングである必要があります")

    overrides: dict[ImageFormat, dict[str, Any]] = {}
    for key, values in data.items():
        try:
            fmt = ImageFormat(str(key).lower())
        except ValueError as e:
            raise ConfigError(f"未知のフォーマットです: {key}") from e
        if not isinstance(values, dict):
            raise ConfigError(f"encoders.{key}はマッピングである必要があります")

        params: dict[str, Any] = {}
        for name, value in values.items():
            if name not in ENCODE_PARAM_FIELDS:
                raise ConfigError(f"未知のエンコードパラメータです: encoders.{key}.{name}")
            params[name] = _validate_param(f"encoders.{key}.{name}", name, value)
        overrides[fmt] = params
    return overrides


def _validate_param(label: str, name: str, value: Any) -> Any:
    """エンコードパラメータの型と範囲を検証する"""
    expected, lower, upper = _PARAM_RANGES[name]
    if expected is bool:
        if not isinstance(value, bool):
            raise ConfigError(f"{label}は真偽値である必要があります: {value!r}")
        return value
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"{label}は整数である必要があります: {value!r}")
    if not lower <= value <= upper:
        raise ConfigError(f"{label}は{lower}〜{upper}の範囲である必要があります: {value}")
    return value

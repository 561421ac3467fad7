"""Pillowプラグインの利用可否

AVIFはPillow本体の機能フラグ、JPEG XLはpillow-jxl-pluginの有無で判定する。
pillow-jxl-pluginはインポート時にPillowへ"JXL"形式を登録する。
"""

from __future__ import annotations

from PIL import features

from picshift.codec.formats import ImageFormat


def _load_jxl_plugin() -> bool:
    """pillow-jxl-pluginを読み込む

    インストールされている場合のみ動作する。

    Returns:
        読み込めた場合True
    """
    try:
        import pillow_jxl  # noqa: F401
    except ImportError:
        return False
    return True


def plugin_available(fmt: ImageFormat) -> bool:
    """フォーマットのコーデックが現在の環境で使えるかを返す

    Args:
        fmt: 対象フォーマット

    Returns:
        デコード・エンコードできる場合True（Pillow本体で扱う形式は常にTrue）
    """
    match fmt:
        case ImageFormat.AVIF:
            return bool(features.check("avif"))
        case ImageFormat.JXL:
            return _load_jxl_plugin()
        case _:
            return True

"""変換エラー定義モジュール

トランスコードパイプラインが送出する型付きエラーを定義する。
すべてのエラーはTranscodeErrorを基底とし、境界層（CLI/HTTP層）が
利用者向けの理由を判別できるようにRejectionKindを保持する。
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from picshift.codec.color import ColorModel


class RejectionKind(Enum):
    """リクエスト拒否の分類

    利用者に提示する拒否理由の大分類。
    「入力が不正」「出力指定が不正」「この組み合わせでは変換不可能」を区別する。
    """

    BAD_INPUT = "bad_input"
    BAD_OUTPUT_REQUEST = "bad_output_request"
    CONVERSION_IMPOSSIBLE = "conversion_impossible"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    INTERNAL = "internal"


class DecodeFailureReason(Enum):
    """デコード失敗の詳細理由"""

    CORRUPT = "corrupt"
    TRUNCATED_HEADER = "truncated_header"
    UNSUPPORTED_COLOR_MODEL = "unsupported_color_model"


class EncodeFailureReason(Enum):
    """エンコード失敗の詳細理由"""

    UNSUPPORTED_COLOR_MODEL = "unsupported_color_model"
    INVALID_DIMENSIONS = "invalid_dimensions"
    INTERNAL = "internal"


class TranscodeError(Exception):
    """トランスコード処理エラーの基底クラス

    Attributes:
        kind: 利用者向けの拒否分類
    """

    def __init__(self, message: str, kind: RejectionKind = RejectionKind.INTERNAL) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind


class UnsupportedFormatError(TranscodeError):
    """フォーマットレジストリに存在しない識別子が指定された

    Attributes:
        identifier: 解決できなかった識別子
        role: "input" または "output"
    """

    def __init__(self, identifier: str, role: str = "input") -> None:
        label = "入力" if role == "input" else "出力"
        kind = RejectionKind.BAD_OUTPUT_REQUEST if role == "output" else RejectionKind.BAD_INPUT
        super().__init__(f"未対応の{label}形式です: {identifier!r}", kind)
        self.identifier = identifier
        self.role = role

    def for_role(self, role: str) -> UnsupportedFormatError:
        """役割を指定し直したエラーを返す"""
        return UnsupportedFormatError(self.identifier, role)


class DecodeError(TranscodeError):
    """入力画像のデコードに失敗した

    Attributes:
        reason: 失敗理由
    """

    def __init__(self, reason: DecodeFailureReason, detail: str = "") -> None:
        message = f"デコードに失敗しました ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, RejectionKind.BAD_INPUT)
        self.reason = reason
        self.detail = detail


class UnsupportedConversionError(TranscodeError):
    """カラーモデルの変換経路が存在しない

    Attributes:
        source: 変換元カラーモデル
        targets: 試行した変換先カラーモデル
    """

    def __init__(self, source: ColorModel, targets: tuple[ColorModel, ...]) -> None:
        names = ", ".join(t.value for t in targets) or "-"
        super().__init__(
            f"{source.value} から変換可能なカラーモデルがありません (候補: {names})",
            RejectionKind.CONVERSION_IMPOSSIBLE,
        )
        self.source = source
        self.targets = targets


class EncodeError(TranscodeError):
    """出力画像のエンコードに失敗した

    Attributes:
        reason: 失敗理由
    """

    def __init__(self, reason: EncodeFailureReason, detail: str = "") -> None:
        message = f"エンコードに失敗しました ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        if reason == EncodeFailureReason.INTERNAL:
            kind = RejectionKind.INTERNAL
        else:
            kind = RejectionKind.CONVERSION_IMPOSSIBLE
        super().__init__(message, kind)
        self.reason = reason
        self.detail = detail


class PayloadTooLargeError(TranscodeError):
    """アップロードサイズが上限を超えている

    Attributes:
        size: 受信したバイト数
        limit: 上限バイト数
    """

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"アップロードサイズが上限を超えています: {size} > {limit} バイト",
            RejectionKind.PAYLOAD_TOO_LARGE,
        )
        self.size = size
        self.limit = limit

"""変換境界（ゲートウェイ）

外部の受け口（CLIやHTTP層）からバイト列と識別子を受け取り、
サイズ上限を確認してからパイプラインに渡す。
上限を超えたペイロードはパイプラインに入る前に拒否する。
"""

from __future__ import annotations

import logging

from picshift.config import DEFAULT_MAX_UPLOAD_BYTES
from picshift.errors import PayloadTooLargeError
from picshift.pipeline import (
    PipelineStage,
    TranscodePipeline,
    TranscodeRequest,
    TranscodeResult,
)

logger = logging.getLogger(__name__)


def parse_type_hint(content_type: str) -> str:
    """Content-Type風の文字列からサブタイプを取り出す

    "image/png; charset=binary" -> "png"、"png" -> "png"

    Args:
        content_type: MIMEタイプ、MIMEサブタイプ、または形式トークン

    Returns:
        サブタイプ部分（前後の空白を除去したもの）
    """
    media_type = content_type.split(";", 1)[0].strip()
    _, slash, subtype = media_type.partition("/")
    return subtype.strip() if slash else media_type


class TranscodeGateway:
    """変換リクエストの受け口

    Attributes:
        max_upload_bytes: 受け付ける最大バイト数
    """

    def __init__(
        self,
        pipeline: TranscodePipeline,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ) -> None:
        """ゲートウェイを初期化する

        Args:
            pipeline: 変換パイプライン
            max_upload_bytes: 受け付ける最大バイト数
        """
        if max_upload_bytes <= 0:
            raise ValueError(f"アップロード上限は正の値である必要があります: {max_upload_bytes}")
        self._pipeline = pipeline
        self.max_upload_bytes = max_upload_bytes

    @property
    def pipeline(self) -> TranscodePipeline:
        return self._pipeline

    def admit(self, data: bytes) -> None:
        """ペイロードサイズを検査する

        Raises:
            PayloadTooLargeError: 上限を超えている場合
        """
        if len(data) > self.max_upload_bytes:
            raise PayloadTooLargeError(len(data), self.max_upload_bytes)

    def handle(self, data: bytes, input_type: str, output_type: str) -> TranscodeResult:
        """リクエストを処理して結果を返す

        Args:
            data: アップロードされたバイト列
            input_type: アップロードのContent-Typeまたはサブタイプ
            output_type: 要求された出力形式

        Returns:
            変換結果（失敗時もREJECTEDの結果として返す）
        """
        try:
            self.admit(data)
        except PayloadTooLargeError as e:
            logger.warning(e.message)
            return TranscodeResult(success=False, stage=PipelineStage.REJECTED, error=e)

        request = TranscodeRequest(
            data=data,
            input_type=parse_type_hint(input_type),
            output_type=output_type,
        )
        return self._pipeline.run(request)

    def convert(self, data: bytes, input_type: str, output_type: str) -> tuple[bytes, str]:
        """リクエストを処理し、失敗時は型付きエラーを送出する

        Returns:
            (出力バイト列, MIMEタイプ)

        Raises:
            TranscodeError: 拒否された場合
        """
        self.admit(data)
        request = TranscodeRequest(
            data=data,
            input_type=parse_type_hint(input_type),
            output_type=output_type,
        )
        return self._pipeline.transcode(request)

"""トランスコードパイプライン

入力形式の特定 -> デコード -> カラーモデル正規化 -> エンコード の各段階を
一方向に一度だけ実行するディスパッチャを定義する。
どの段階で失敗してもREJECTEDで終端し、部分的な出力は返さない。
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from picshift.codec.color import CanonicalBuffer, ColorModel
from picshift.codec.convert import ColorModelConverter
from picshift.codec.decoder import get_decoder
from picshift.codec.encoder import get_encoder
from picshift.codec.formats import FormatRegistry, ImageFormat
from picshift.errors import RejectionKind, TranscodeError, UnsupportedFormatError

logger = logging.getLogger(__name__)


class PipelineStage(Enum):
    """パイプラインの状態

    RECEIVED -> FORMAT_IDENTIFIED -> DECODED -> COLOR_NORMALIZED -> ENCODED -> DELIVERED
    の順に遷移し、どの状態からでもREJECTEDへ遷移し得る。
    """

    RECEIVED = "received"
    FORMAT_IDENTIFIED = "format_identified"
    DECODED = "decoded"
    COLOR_NORMALIZED = "color_normalized"
    ENCODED = "encoded"
    DELIVERED = "delivered"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TranscodeRequest:
    """変換リクエスト

    Attributes:
        data: 入力画像のバイト列
        input_type: 入力形式の識別子（アップロードのMIMEサブタイプ等）
        output_type: 出力形式の識別子（大文字小文字を区別しない）
    """

    data: bytes
    input_type: str
    output_type: str


@dataclass
class TranscodeResult:
    """変換結果

    Attributes:
        success: 変換が成功したか
        data: 出力画像のバイト列（失敗時はNone）
        mime_type: 出力のMIMEタイプ（失敗時はNone）
        stage: 最終状態（DELIVEREDまたはREJECTED）
        error: 失敗時のエラー
        failed_stage: 失敗した時点の状態
        stages_completed: 完了した状態のリスト
        statistics: 処理統計（サイズ、カラーモデル、処理時間など）
    """

    success: bool
    data: bytes | None = None
    mime_type: str | None = None
    stage: PipelineStage = PipelineStage.RECEIVED
    error: TranscodeError | None = None
    failed_stage: PipelineStage | None = None
    stages_completed: list[PipelineStage] = field(default_factory=list)
    statistics: dict[str, Any] = field(default_factory=dict)

    @property
    def rejection(self) -> RejectionKind | None:
        """拒否分類（成功時はNone）"""
        return self.error.kind if self.error is not None else None

    @property
    def message(self) -> str:
        """利用者向けのメッセージ"""
        return self.error.message if self.error is not None else ""


class StageCallback(Protocol):
    """状態遷移の通知を受け取るコールバック"""

    def __call__(self, stage: PipelineStage) -> None: ...


class TranscodePipeline:
    """トランスコードパイプライン

    フォーマットレジストリとカラーモデル変換器だけを共有状態として持ち、
    リクエストごとのバッファは実行中のみ保持する。
    複数スレッドから同時にrun()を呼び出してよい。

    使用例:
        >>> pipeline = TranscodePipeline(FormatRegistry())
        >>> result = pipeline.run(TranscodeRequest(data, "png", "webp"))
        >>> if result.success:
        ...     body, mime = result.data, result.mime_type
    """

    def __init__(
        self,
        registry: FormatRegistry,
        converter: ColorModelConverter | None = None,
    ) -> None:
        """パイプラインを初期化する

        Args:
            registry: フォーマットレジストリ
            converter: カラーモデル変換器（Noneの場合は既定の変換規則）
        """
        self._registry = registry
        self._converter = converter or ColorModelConverter()

    @property
    def registry(self) -> FormatRegistry:
        return self._registry

    def run(
        self,
        request: TranscodeRequest,
        stage_callback: StageCallback | None = None,
    ) -> TranscodeResult:
        """パイプラインを実行する

        失敗は例外ではなくREJECTEDの結果として返す。

        Args:
            request: 変換リクエスト
            stage_callback: 状態遷移ごとに呼ばれるコールバック（オプション）

        Returns:
            変換結果
        """
        start_time = time.perf_counter()
        stages_completed: list[PipelineStage] = [PipelineStage.RECEIVED]
        statistics: dict[str, Any] = {"input_bytes": len(request.data)}

        def advance(stage: PipelineStage) -> None:
            stages_completed.append(stage)
            if stage_callback is not None:
                stage_callback(stage)

        if stage_callback is not None:
            stage_callback(PipelineStage.RECEIVED)

        try:
            input_format, output_format = self._identify(request)
            statistics["input_format"] = input_format.value
            statistics["output_format"] = output_format.value
            advance(PipelineStage.FORMAT_IDENTIFIED)

            buffer = self._decode(input_format, request.data)
            statistics["width"] = buffer.width
            statistics["height"] = buffer.height
            statistics["source_model"] = buffer.model.value
            advance(PipelineStage.DECODED)

            normalized = self._normalize(buffer, output_format)
            statistics["target_model"] = normalized.model.value
            statistics["converted"] = normalized.model != buffer.model
            advance(PipelineStage.COLOR_NORMALIZED)

            data = self._encode(normalized, output_format)
            statistics["output_bytes"] = len(data)
            advance(PipelineStage.ENCODED)

            mime_type = self._registry.mime_type(output_format)
            advance(PipelineStage.DELIVERED)
        except TranscodeError as e:
            failed_stage = stages_completed[-1]
            logger.debug(f"{failed_stage.value}の次の段階で拒否しました: {e.message}")
            if stage_callback is not None:
                stage_callback(PipelineStage.REJECTED)
            return TranscodeResult(
                success=False,
                stage=PipelineStage.REJECTED,
                error=e,
                failed_stage=failed_stage,
                stages_completed=stages_completed,
                statistics=statistics,
            )

        statistics["total_time_seconds"] = round(time.perf_counter() - start_time, 4)
        return TranscodeResult(
            success=True,
            data=data,
            mime_type=mime_type,
            stage=PipelineStage.DELIVERED,
            stages_completed=stages_completed,
            statistics=statistics,
        )

    def transcode(self, request: TranscodeRequest) -> tuple[bytes, str]:
        """パイプラインを実行し、失敗時は型付きエラーを送出する

        Args:
            request: 変換リクエスト

        Returns:
            (出力バイト列, MIMEタイプ)

        Raises:
            TranscodeError: いずれかの段階で失敗した場合
        """
        result = self.run(request)
        if result.error is not None:
            raise result.error
        assert result.data is not None and result.mime_type is not None
        return result.data, result.mime_type

    def _identify(self, request: TranscodeRequest) -> tuple[ImageFormat, ImageFormat]:
        """RECEIVED -> FORMAT_IDENTIFIED: 入出力の識別子を解決する"""
        input_format = self._registry.resolve(request.input_type)
        try:
            output_format = self._registry.resolve(request.output_type)
        except UnsupportedFormatError as e:
            raise e.for_role("output") from e
        return input_format, output_format

    def _decode(self, fmt: ImageFormat, data: bytes) -> CanonicalBuffer:
        """FORMAT_IDENTIFIED -> DECODED"""
        buffer = get_decoder(fmt, self._registry).decode(data)
        logger.debug(
            f"{fmt.value}をデコードしました: {buffer.width}x{buffer.height} {buffer.model.value}"
        )
        return buffer

    def _normalize(self, buffer: CanonicalBuffer, fmt: ImageFormat) -> CanonicalBuffer:
        """DECODED -> COLOR_NORMALIZED

        出力フォーマットがそのままエンコードできる場合は何もしない。
        それ以外は能力記述子の優先順で最初に変換規則がある先へ変換する。
        パレットアルファを保存できない形式では、透過パレットのINDEXEDを
        エンコード可能とみなさない。
        """
        descriptor = self._registry.capabilities(fmt)
        encodable = descriptor.encodable_models
        if buffer.has_palette_alpha and not descriptor.palette_alpha:
            encodable = tuple(model for model in encodable if model != ColorModel.INDEXED)
        if buffer.model in encodable:
            return buffer
        target: ColorModel = self._converter.select_target(buffer.model, encodable)
        logger.debug(f"カラーモデルを変換します: {buffer.model.value} -> {target.value}")
        return self._converter.convert(buffer, target)

    def _encode(self, buffer: CanonicalBuffer, fmt: ImageFormat) -> bytes:
        """COLOR_NORMALIZED -> ENCODED"""
        params = self._registry.capabilities(fmt).default_params
        return get_encoder(fmt, self._registry).encode(buffer, params)

"""ConversionManager モジュール

複数ファイルの並列変換と進捗管理を行うConversionManagerを提供する。
各ファイルは独立したパイプライン実行として処理し、失敗してもリトライしない。
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock

from picshift.codec.formats import ImageFormat
from picshift.errors import RejectionKind
from picshift.gateway import TranscodeGateway

logger = logging.getLogger(__name__)


class ConversionStatus(Enum):
    """変換ステータス"""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class ConversionTask:
    """変換タスク

    Attributes:
        source: 変換元ファイルのパス
        dest: 変換先ファイルのパス
        input_type: 入力形式の識別子
        output_format: 出力フォーマット
    """

    source: Path
    dest: Path
    input_type: str
    output_format: ImageFormat


@dataclass(frozen=True)
class ConversionResult:
    """単一ファイルの変換結果

    Attributes:
        source_path: 変換元ファイルのパス
        dest_path: 変換先ファイルのパス（失敗時はNone）
        status: 変換ステータス
        message: 追加メッセージ（エラー詳細等）
        rejection: 拒否分類（成功時やファイル入出力エラー時はNone）
        bytes_before: 変換前のファイルサイズ（バイト）
        bytes_after: 変換後のファイルサイズ（バイト）
    """

    source_path: Path
    dest_path: Path | None
    status: ConversionStatus
    message: str = ""
    rejection: RejectionKind | None = None
    bytes_before: int = 0
    bytes_after: int = 0

    @property
    def is_success(self) -> bool:
        return self.status == ConversionStatus.SUCCESS


@dataclass
class ConversionSummary:
    """変換サマリー

    Attributes:
        total: 変換対象の総ファイル数
        success: 変換成功数
        failed: 変換失敗数
        results: 個々の変換結果のリスト（完了順）
    """

    total: int = 0
    success: int = 0
    failed: int = 0
    results: list[ConversionResult] = field(default_factory=list)

    @property
    def output_bytes(self) -> int:
        """出力ファイルの合計サイズ"""
        return sum(result.bytes_after for result in self.results)

    def add(self, result: ConversionResult) -> None:
        self.results.append(result)
        if result.is_success:
            self.success += 1
        else:
            self.failed += 1


# 進捗コールバックの型エイリアス（完了した結果, 完了件数, 総数）
ProgressCallback = Callable[[ConversionResult, int, int], None]


def build_tasks(
    files: Iterable[Path],
    output_format: ImageFormat,
    output_dir: Path | None,
    extension: str,
    input_type: str | None = None,
) -> list[ConversionTask]:
    """入力ファイルから変換タスクを組み立てる

    Args:
        files: 入力ファイルのパス
        output_format: 出力フォーマット
        output_dir: 出力先ディレクトリ（Noneの場合は入力ファイルと同じディレクトリ）
        extension: 出力ファイルの拡張子（ドット付き）
        input_type: 入力形式の識別子（Noneの場合は拡張子から推定）

    Returns:
        変換タスクのリスト
    """
    tasks: list[ConversionTask] = []
    for source in files:
        dest_dir = output_dir if output_dir is not None else source.parent
        tasks.append(
            ConversionTask(
                source=source,
                dest=dest_dir / f"{source.stem}{extension}",
                input_type=input_type or source.suffix.lstrip("."),
                output_format=output_format,
            )
        )
    return tasks


class ConversionManager:
    """変換マネージャー

    複数ファイルの並列変換を管理するクラス。
    共有するのは読み取り専用のゲートウェイ（とその先のレジストリ）のみ。

    Attributes:
        gateway: 変換リクエストの受け口
        max_workers: 最大ワーカー数
        progress_callback: 進捗報告用コールバック
    """

    def __init__(
        self,
        gateway: TranscodeGateway,
        max_workers: int | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """ConversionManagerを初期化する

        Args:
            gateway: 変換リクエストの受け口
            max_workers: 最大ワーカー数（Noneの場合はCPUコア数）
            progress_callback: 進捗報告用コールバック関数
        """
        self.gateway = gateway
        self.max_workers = max_workers or self.calculate_workers()
        self.progress_callback = progress_callback

    def convert_files(self, tasks: list[ConversionTask]) -> ConversionSummary:
        """複数ファイルを変換する

        Args:
            tasks: 変換タスクのリスト

        Returns:
            変換結果のサマリー
        """
        summary = ConversionSummary(total=len(tasks))
        completed_count = 0
        lock = Lock()

        def process_file(task: ConversionTask) -> ConversionResult:
            """ファイルを処理し、進捗を報告する"""
            nonlocal completed_count
            result = self.convert_one(task)

            with lock:
                completed_count += 1
                if self.progress_callback:
                    self.progress_callback(result, completed_count, summary.total)

            return result

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(process_file, task) for task in tasks]
            for future in as_completed(futures):
                summary.add(future.result())

        return summary

    def convert_one(self, task: ConversionTask) -> ConversionResult:
        """単一ファイルを変換して書き出す

        Args:
            task: 変換タスク

        Returns:
            変換結果
        """
        try:
            data = task.source.read_bytes()
        except OSError as e:
            logger.warning(f"読み込みに失敗しました: {task.source}: {e}")
            return ConversionResult(
                source_path=task.source,
                dest_path=None,
                status=ConversionStatus.FAILED,
                message=f"読み込みに失敗しました: {e}",
            )

        result = self.gateway.handle(data, task.input_type, task.output_format.value)
        if not result.success or result.data is None:
            return ConversionResult(
                source_path=task.source,
                dest_path=None,
                status=ConversionStatus.FAILED,
                message=result.message,
                rejection=result.rejection,
                bytes_before=len(data),
            )

        try:
            task.dest.parent.mkdir(parents=True, exist_ok=True)
            task.dest.write_bytes(result.data)
        except OSError as e:
            logger.warning(f"書き込みに失敗しました: {task.dest}: {e}")
            return ConversionResult(
                source_path=task.source,
                dest_path=None,
                status=ConversionStatus.FAILED,
                message=f"書き込みに失敗しました: {e}",
                bytes_before=len(data),
            )

        logger.debug(f"{task.source} -> {task.dest} ({result.statistics})")
        return ConversionResult(
            source_path=task.source,
            dest_path=task.dest,
            status=ConversionStatus.SUCCESS,
            bytes_before=len(data),
            bytes_after=len(result.data),
        )

    @staticmethod
    def calculate_workers() -> int:
        """CPUコア数からワーカー数を決める（最小1）"""
        return max(1, os.cpu_count() or 1)

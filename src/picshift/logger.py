"""一括変換のコンソール出力

picshiftの各モジュールは標準のloggingにレコードを出す。
CLIはConsoleLoggerを"picshift"ロガーへ接続し、そのレコードと
変換結果・サマリを同じ出力先（コンソールとログファイル）へまとめる。
"""

from __future__ import annotations

import logging
import re
import sys
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, TextIO

if TYPE_CHECKING:
    from picshift.manager import ConversionResult, ConversionSummary

# パッケージ全体のロガー名
ROOT_LOGGER_NAME = "picshift"


class VerboseLevel(IntEnum):
    """詳細ログレベル

    QUIET: エラーのみ出力
    NORMAL: 進捗とサマリ
    VERBOSE: ファイルごとの変換結果も出力（-v）
    DEBUG: デコード結果やカラーモデル変換も出力（-vv）
    """

    QUIET = -1
    NORMAL = 0
    VERBOSE = 1
    DEBUG = 2


class ProgressDisplay(Protocol):
    """一括変換の進捗表示"""

    def start(self, total: int) -> None: ...

    def advance(self, result: ConversionResult, current: int) -> None: ...

    def finish(self, summary: ConversionSummary) -> None: ...


@dataclass
class LogConfig:
    """ログ設定

    Attributes:
        verbose_level: ログの詳細度レベル
        log_file: ログ出力先ファイルパス（Noneの場合はファイル出力なし）
        use_emoji: 絵文字を使用するか
    """

    verbose_level: VerboseLevel = VerboseLevel.NORMAL
    log_file: Path | None = None
    use_emoji: bool = True


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    return f"{size / 1024:.1f} KB"


class ConsoleLogger:
    """変換ログ出力クラス

    withブロックの間は"picshift"ロガーにConsoleLogHandlerを取り付け、
    パイプラインやマネージャーのレコードもVerboseLevelで絞り込んで出力する。
    ログファイルにはレベルに関係なくすべて書き込む。

    使用例:
        >>> with ConsoleLogger(LogConfig(verbose_level=VerboseLevel.VERBOSE)) as log:
        ...     summary = manager.convert_files(tasks)
        ...     log.log_summary(summary)
    """

    _ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

    def __init__(self, config: LogConfig) -> None:
        self._config = config
        self._handler: ConsoleLogHandler | None = None
        self._saved_level = logging.NOTSET
        self._log_file: TextIO | None = None
        if config.log_file:
            # __exit__で閉じる
            self._log_file = open(config.log_file, "w", encoding="utf-8")  # noqa: SIM115

    def __enter__(self) -> ConsoleLogger:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        self._saved_level = root.level
        self._handler = ConsoleLogHandler(self)
        root.addHandler(self._handler)
        root.setLevel(logging.DEBUG)
        return self

    def __exit__(self, *args: object) -> None:
        if self._handler is not None:
            root = logging.getLogger(ROOT_LOGGER_NAME)
            root.removeHandler(self._handler)
            root.setLevel(self._saved_level)
            self._handler = None
        if self._log_file:
            self._log_file.close()
            self._log_file = None

    def _emit(self, visible: bool, level: str, message: str, file: TextIO | None = None) -> None:
        if visible:
            print(message, file=file or sys.stdout)
        if self._log_file:
            timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            clean_message = self._ANSI_ESCAPE_PATTERN.sub("", message)
            self._log_file.write(f"[{timestamp}] {level}: {clean_message}\n")
            self._log_file.flush()

    def info(self, message: str) -> None:
        self._emit(self._config.verbose_level >= VerboseLevel.NORMAL, "INFO", message)

    def verbose(self, message: str) -> None:
        self._emit(self._config.verbose_level >= VerboseLevel.VERBOSE, "VERBOSE", message)

    def debug(self, message: str) -> None:
        self._emit(self._config.verbose_level >= VerboseLevel.DEBUG, "DEBUG", message)

    def warning(self, message: str) -> None:
        self._emit(self._config.verbose_level > VerboseLevel.QUIET, "WARNING", f"警告: {message}")

    def error(self, message: str) -> None:
        """エラーメッセージを標準エラーに出力する（常に出力）"""
        self._emit(True, "ERROR", f"エラー: {message}", file=sys.stderr)

    def create_progress(self) -> ProgressDisplay:
        """進捗表示を作成する（QUIETでは何も表示しない）"""
        if self._config.verbose_level <= VerboseLevel.QUIET:
            return NullProgressDisplay()
        return ConsoleProgressDisplay(use_emoji=self._config.use_emoji)

    def log_result(self, result: ConversionResult) -> None:
        """1ファイルの変換結果を出力する

        成功はVERBOSE以上で、入出力のサイズとともに表示する。
        失敗は拒否分類つきのエラーとして常に表示する。
        """
        dest_name = result.dest_path.name if result.dest_path is not None else "-"
        line = f"変換: {result.source_path.name} -> {dest_name} [{result.status.value}]"
        if result.is_success:
            self.verbose(
                f"{line} {_format_size(result.bytes_before)} -> {_format_size(result.bytes_after)}"
            )
            return
        self.verbose(line)
        kind = f"[{result.rejection.value}] " if result.rejection is not None else ""
        self.error(f"{result.source_path.name}: {kind}{result.message}")

    def log_summary(self, summary: ConversionSummary) -> None:
        """一括変換のサマリを出力する（NORMAL以上）

        失敗があれば拒否分類ごとの件数も出す。
        ファイル入出力の失敗は"io"として数える。
        """
        if summary.failed:
            mark = "⚠️" if self._config.use_emoji else "[NG]"
            self.info(f"{mark} Conversion finished with errors")
        else:
            mark = "✅" if self._config.use_emoji else "[OK]"
            self.info(f"{mark} Conversion complete!")
        self.info(f"   Files: {summary.success}/{summary.total} succeeded")

        bytes_before = sum(r.bytes_before for r in summary.results if r.is_success)
        if bytes_before:
            ratio = summary.output_bytes / bytes_before * 100
            self.info(
                f"   Output: {_format_size(summary.output_bytes)} ({ratio:.0f}% of input)"
            )

        rejections = Counter(
            r.rejection.value if r.rejection is not None else "io"
            for r in summary.results
            if not r.is_success
        )
        if rejections:
            counts = ", ".join(f"{kind}={count}" for kind, count in sorted(rejections.items()))
            self.info(f"   Rejected: {counts}")


class ConsoleLogHandler(logging.Handler):
    """loggingのレコードをConsoleLoggerへ転送するハンドラ

    DEBUGはdebug、INFOはverbose、WARNINGはwarning、ERROR以上はerrorに対応する。
    """

    def __init__(self, console: ConsoleLogger) -> None:
        super().__init__(logging.DEBUG)
        self._console = console
        self.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        if record.levelno >= logging.ERROR:
            self._console.error(message)
        elif record.levelno >= logging.WARNING:
            self._console.warning(message)
        elif record.levelno >= logging.INFO:
            self._console.verbose(message)
        else:
            self._console.debug(message)


class NullProgressDisplay:
    """何も表示しない進捗表示"""

    def start(self, total: int) -> None:
        pass

    def advance(self, result: ConversionResult, current: int) -> None:
        pass

    def finish(self, summary: ConversionSummary) -> None:
        pass


class ConsoleProgressDisplay:
    """コンソール進捗表示

    完了件数のバーと失敗件数、直前に完了したファイル名を1行で更新する。
    """

    BAR_WIDTH = 30

    def __init__(self, use_emoji: bool = True) -> None:
        self._use_emoji = use_emoji
        self._total = 0
        self._failed = 0

    def _bar(self, current: int) -> str:
        filled = self.BAR_WIDTH * current // self._total if self._total else self.BAR_WIDTH
        return "█" * filled + "░" * (self.BAR_WIDTH - filled)

    def start(self, total: int) -> None:
        self._total = total
        self._failed = 0
        prefix = "\U0001f504 " if self._use_emoji else ""
        noun = "image" if total == 1 else "images"
        print(f"{prefix}Converting {total} {noun}...")

    def advance(self, result: ConversionResult, current: int) -> None:
        if not result.is_success:
            self._failed += 1
        failed_part = f" failed:{self._failed}" if self._failed else ""
        print(
            f"\r   [{self._bar(current)}] {current}/{self._total}{failed_part} "
            f"{result.source_path.name}",
            end="",
            flush=True,
        )

    def finish(self, summary: ConversionSummary) -> None:
        full_bar = "█" * self.BAR_WIDTH
        if summary.failed == 0:
            mark = "✓" if self._use_emoji else "done"
            print(f"\r   [{full_bar}] {summary.total}/{summary.total} {mark}")
        else:
            mark = "✗" if self._use_emoji else "failed"
            print(f"\r   [{full_bar}] {mark}: {summary.failed}/{summary.total}")

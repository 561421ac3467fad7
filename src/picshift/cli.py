"""CLI entry point for picshift."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from picshift import __version__
from picshift.codec.formats import FormatRegistry
from picshift.codec.plugins import plugin_available
from picshift.config import ConfigError, PicshiftConfig, get_default_config, load_config
from picshift.errors import UnsupportedFormatError
from picshift.gateway import TranscodeGateway
from picshift.logger import ConsoleLogger, LogConfig, VerboseLevel
from picshift.manager import ConversionManager, build_tasks
from picshift.pipeline import TranscodePipeline

app = typer.Typer(help="画像を別のフォーマットに変換するCLIツール")
console = Console()


def _load_config(path: Path | None) -> PicshiftConfig:
    if path is None:
        return get_default_config()
    try:
        return load_config(path)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e


def _verbose_level(verbose: int, quiet: bool) -> VerboseLevel:
    if quiet:
        return VerboseLevel.QUIET
    return VerboseLevel(min(verbose, VerboseLevel.DEBUG))


@app.command()
def convert(
    files: Annotated[list[Path], typer.Argument(help="入力画像ファイル")],
    to: Annotated[str, typer.Option("-t", "--to", help="出力形式（png, jpeg, webp など）")],
    output_dir: Annotated[
        Path | None, typer.Option("-o", "--output-dir", help="出力先ディレクトリ")
    ] = None,
    input_type: Annotated[
        str | None, typer.Option(help="入力形式（省略時は拡張子から推定）")
    ] = None,
    config: Annotated[Path | None, typer.Option("-c", "--config", help="設定ファイル")] = None,
    verbose: Annotated[int, typer.Option("-v", "--verbose", count=True, help="詳細ログ出力")] = 0,
    quiet: Annotated[bool, typer.Option("-q", "--quiet", help="エラーのみ出力")] = False,
    log_file: Annotated[Path | None, typer.Option(help="ログファイル出力先")] = None,
    workers: Annotated[int | None, typer.Option(min=1, help="並列ワーカー数")] = None,
) -> None:
    """画像ファイルを指定した形式に変換する"""
    settings = _load_config(config)
    registry = settings.build_registry()

    try:
        output_format = registry.resolve(to)
    except UnsupportedFormatError as e:
        console.print(f"[red]Error: {e.for_role('output').message}[/red]")
        raise typer.Exit(1) from e

    level = _verbose_level(verbose, quiet)
    gateway = TranscodeGateway(
        TranscodePipeline(registry),
        max_upload_bytes=settings.limits.max_upload_bytes,
    )
    tasks = build_tasks(
        files,
        output_format,
        output_dir,
        registry.capabilities(output_format).extension,
        input_type=input_type,
    )

    with ConsoleLogger(LogConfig(verbose_level=level, log_file=log_file)) as log:
        progress = log.create_progress()
        progress.start(len(tasks))
        manager = ConversionManager(
            gateway,
            max_workers=workers or settings.workers.max_workers,
            progress_callback=lambda result, current, total: progress.advance(result, current),
        )
        summary = manager.convert_files(tasks)
        progress.finish(summary)

        for result in summary.results:
            log.log_result(result)
        log.log_summary(summary)

    if summary.failed:
        raise typer.Exit(1)
    raise typer.Exit(0)


@app.command()
def formats(
    config: Annotated[Path | None, typer.Option("-c", "--config", help="設定ファイル")] = None,
) -> None:
    """対応フォーマットの一覧を表示する"""
    registry: FormatRegistry = _load_config(config).build_registry()

    table = Table(title="対応フォーマット")
    table.add_column("形式", style="cyan")
    table.add_column("MIMEタイプ", justify="left")
    table.add_column("拡張子", justify="left")
    table.add_column("識別子", justify="left")
    table.add_column("エンコード可能", justify="left")
    table.add_column("可逆", justify="center")
    table.add_column("最大サイズ", justify="right")

    for fmt in registry.formats():
        descriptor = registry.capabilities(fmt)
        name = fmt.value
        if not plugin_available(fmt):
            name = f"{name} [dim](利用不可)[/dim]"
        lossless = "[green]✓[/green]" if descriptor.lossless else "-"
        max_dimension = str(descriptor.max_dimension) if descriptor.max_dimension else "-"
        table.add_row(
            name,
            descriptor.mime_type,
            descriptor.extension,
            ", ".join(registry.identifiers(fmt)),
            ", ".join(model.value for model in descriptor.encodable_models),
            lossless,
            max_dimension,
        )

    console.print(table)
    raise typer.Exit(0)


def version_callback(value: bool) -> None:
    """バージョン表示コールバック"""
    if value:
        typer.echo(f"picshift {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="バージョンを表示する",
        ),
    ] = False,
) -> None:
    """picshift CLI - 画像フォーマット変換"""
    pass

"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from collage_automation.core.config import (
    AIConfig,
    BatchConfig,
    CaptionConfig,
    CompositionConfig,
    ExportConfig,
    LabelMode,
    OutputConfig,
    load_api_key,
)
from collage_automation.core.exceptions import CollageAutomationError, ProcessingAborted
from collage_automation.core.models import LayoutKind
from collage_automation.core.output_manager import OutputManager, encode_png
from collage_automation.core.progress import ProgressUpdate
from collage_automation.core.scanner import discover_folders
from collage_automation.processing.compositor import CollageSource, compose_collage
from collage_automation.processing.cover import generate_cover
from collage_automation.processing.export import ExportAssembler
from collage_automation.processing.image_loader import load_image
from collage_automation.processing.pipeline import BatchSession
from collage_automation.processing.trimming import trim_borders
from collage_automation.services.captioning import build_captioner
from collage_automation.services.classification import build_classifier
from collage_automation.utils.logging import setup_logging
from collage_automation.utils.naming import build_output_name, extract_product_code

app = typer.Typer(help="电商商品图批量拼图与封面生成工具。")

LOGGER = logging.getLogger(__name__)


def _parse_layout(value: str) -> LayoutKind:
    try:
        return LayoutKind(value.lower())
    except ValueError as exc:
        choices = ", ".join(kind.value for kind in LayoutKind)
        raise typer.BadParameter(f"版式必须为 {choices} 之一") from exc


def _parse_label_mode(value: str) -> LabelMode:
    try:
        return LabelMode(value.lower())
    except ValueError as exc:
        raise typer.BadParameter("标签位置必须为 corner 或 center") from exc


def _build_progress_callback(progress: Progress, description: str):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task(description, total=update.total)
        progress.update(task_id, completed=update.completed)
        if update.message and update.folder:
            progress.log(f"{update.folder}: {update.message}")

    return callback


def cell_captions_for(label: str, captions: List[str], count: int, mode: LabelMode) -> list[Optional[str]]:
    """corner 模式下每格的标签：按顺序取 captions，不足的格子用 label；center 模式不画格内标签。"""

    if mode is not LabelMode.CORNER:
        return [None] * count
    return [captions[index] if index < len(captions) else label for index in range(count)]


def _new_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )


@app.command("run")
def run_cli(  # noqa: PLR0913
    source: Path = typer.Argument(..., help="总目录，每个子文件夹为一个商品"),
    output: Path = typer.Option(..., "--output", "-o", help="导出目录"),
    start: int = typer.Option(1, "--start", help="起始编号"),
    end: int = typer.Option(4, "--end", help="结束编号，超过后回到起始编号"),
    prefix: str = typer.Option("Set", "--prefix", help="标签前缀，例如 Set -> Set 1"),
    use_ai: bool = typer.Option(True, "--ai/--no-ai", help="是否调用 AI 识别筛图"),
    smart: bool = typer.Option(True, "--smart/--strict", help="smart 模式允许用双人图兜底"),
    width: int = typer.Option(2160, "--width", help="拼图宽度"),
    height: int = typer.Option(3840, "--height", help="拼图高度"),
    gap: int = typer.Option(0, "--gap", help="单元格间距"),
    background_color: str = typer.Option("#FFFFFF", "--background-color", help="背景色 (HEX)"),
    heal: bool = typer.Option(False, "--heal/--no-heal", help="修补识别到的水印区域"),
    trim: bool = typer.Option(True, "--trim/--no-trim", help="合成前自动裁掉白边"),
    label_mode: str = typer.Option("center", "--label-mode", help="标签位置 corner 或 center"),
    title: str = typer.Option("", "--title", help="分组文案标题"),
    product_type: str = typer.Option("", "--product-type", help="商品类型，用于生成 hook"),
    occasion: str = typer.Option("", "--occasion", help="场景/节日，用于生成 hook"),
    hashtags: str = typer.Option("#穿搭 #时尚 #ootd", "--hashtags", help="文案末尾的话题标签"),
    max_workers: int = typer.Option(1, "--workers", "-w", help="生成封面的并发进程数量"),
    conflict_strategy: str = typer.Option("rename", "--on-conflict", help="文件名冲突策略"),
) -> None:
    """批量识别、选图、拼图并按编号区间分组导出。"""

    setup_logging()
    load_dotenv()

    composition = CompositionConfig(
        output_width=width,
        output_height=height,
        gap_px=gap,
        background_color=background_color,
        heal_defects=heal,
        trim_borders=trim,
        label_mode=_parse_label_mode(label_mode),
    )
    ai_config = AIConfig(enabled=use_ai, api_key=load_api_key())
    batch_config = BatchConfig(
        composition=composition,
        ai=ai_config,
        sequence_start=start,
        sequence_end=end,
        label_prefix=prefix,
        allow_fallback=smart,
    )
    export_config = ExportConfig(
        output=OutputConfig(output_dir=output.expanduser().resolve(), conflict_strategy=conflict_strategy),
        caption=CaptionConfig(title=title, product_type=product_type, occasion=occasion, hashtags=hashtags),
        max_workers=max_workers,
    )

    items = discover_folders(source)
    if not items:
        typer.echo("没有找到包含图片的文件夹。")
        raise typer.Exit(code=1)

    progress = _new_progress()
    try:
        session = BatchSession(
            batch_config,
            build_classifier(ai_config),
            items,
            progress_callback=_build_progress_callback(progress, "处理文件夹"),
        )
    except CollageAutomationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    with progress:
        try:
            result = session.run()
        except (ProcessingAborted, KeyboardInterrupt):
            LOGGER.warning("批处理被中断，导出已完成的条目")
            result = session.result()
            result.aborted = True

    assembler = ExportAssembler(export_config, batch_config.chunk_size, build_captioner(ai_config))
    chunks = assembler.export(session.done_items(), result.all_outcomes())

    if result.aborted:
        typer.echo("批处理被中断，已导出中断前完成的条目。")
    typer.echo(
        f"处理完成：成功 {len(result.done)} 个，跳过 {len(result.skipped)} 个，失败 {len(result.failed)} 个；"
        f"导出 {len(chunks)} 个分组。"
    )
    typer.echo(f"导出目录：{export_config.output.output_dir}")


@app.command("compose")
def compose_cli(
    files: List[Path] = typer.Argument(..., help="参与拼图的图片，按顺序取用"),
    output: Path = typer.Option(..., "--output", "-o", help="输出目录"),
    layout: str = typer.Option("2x1", "--layout", help="版式 2x1/1x2/2x2/4x1/1x1"),
    label: str = typer.Option("Set 1", "--label", help="标签文字"),
    label_mode: str = typer.Option("center", "--label-mode", help="标签位置 corner 或 center"),
    width: int = typer.Option(2160, "--width", help="拼图宽度"),
    height: int = typer.Option(3840, "--height", help="拼图高度"),
    gap: int = typer.Option(0, "--gap", help="单元格间距"),
    background_color: str = typer.Option("#FFFFFF", "--background-color", help="背景色 (HEX)"),
    trim: bool = typer.Option(True, "--trim/--no-trim", help="合成前自动裁掉白边"),
    captions: Optional[List[str]] = typer.Option(
        None, "--caption", help="corner 模式下按顺序为每格指定标签，可重复；未指定的格子使用 --label"
    ),
) -> None:
    """手动指定图片与版式合成单张拼图。"""

    setup_logging()
    kind = _parse_layout(layout)
    mode = _parse_label_mode(label_mode)
    if len(files) < kind.required_count:
        raise typer.BadParameter(f"版式 {kind.value} 至少需要 {kind.required_count} 张图片")

    chosen = files[: kind.required_count]
    cell_captions = cell_captions_for(label, captions or [], len(chosen), mode)
    sources = [
        CollageSource(bitmap=load_image(path), caption=caption) for path, caption in zip(chosen, cell_captions)
    ]
    config = CompositionConfig(
        output_width=width,
        output_height=height,
        gap_px=gap,
        background_color=background_color,
        trim_borders=trim,
        label_mode=mode,
        global_label=label,
    )
    try:
        collage = compose_collage(sources, kind, config)
    except CollageAutomationError as exc:
        typer.echo(f"拼图失败：{exc}")
        raise typer.Exit(code=1) from exc

    name = build_output_name(extract_product_code(chosen[0].name), label or "Set")
    manager = OutputManager(OutputConfig(output_dir=output))
    destination = manager.write_bytes(Path(f"{name}.png"), encode_png(collage))
    typer.echo(f"已生成：{destination}")


@app.command("cover")
def cover_cli(
    file: Path = typer.Argument(..., help="源图片"),
    output: Path = typer.Option(..., "--output", "-o", help="输出目录"),
    trim: bool = typer.Option(False, "--trim/--no-trim", help="生成封面前先裁掉白边"),
) -> None:
    """生成单张 2160x3840 (9:16) 封面。"""

    setup_logging()
    image = load_image(file)
    if trim:
        image = trim_borders(image)
    cover = generate_cover(image)
    manager = OutputManager(OutputConfig(output_dir=output))
    destination = manager.write_bytes(Path(f"{file.stem}_cover.png"), encode_png(cover))
    typer.echo(f"已生成：{destination}")


if __name__ == "__main__":
    app()

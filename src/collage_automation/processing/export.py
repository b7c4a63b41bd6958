"""导出：按编号区间分组，生成合并文案、拼图与 9:16 封面。"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, TypeVar

from collage_automation.core.config import CaptionConfig, ExportConfig
from collage_automation.core.exceptions import CollageAutomationError, ExternalServiceError
from collage_automation.core.models import FolderBatchItem, FolderOutcome
from collage_automation.core.output_manager import OutputManager, encode_png
from collage_automation.core.progress import ProgressUpdate
from collage_automation.core.report import format_summary_line, render_csv_report
from collage_automation.processing.cover import generate_cover
from collage_automation.processing.image_loader import ImageLoadingError, load_image
from collage_automation.services.captioning import Captioner
from collage_automation.utils.naming import alnum_only, compact_label, extract_product_code, safe_filename

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


@dataclass(slots=True)
class ExportEntry:
    """单个条目的导出内容。"""

    folder_name: str
    label: str
    layout: str
    filename: str
    collage_png: bytes
    cover_png: Optional[bytes] = None

    @property
    def summary_line(self) -> str:
        return format_summary_line(self.folder_name, self.label, self.layout, self.filename)


@dataclass(slots=True)
class ChunkExport:
    """一个分组：合并文案与组内条目。"""

    index: int
    folder_name: str
    caption: str
    entries: list[ExportEntry] = field(default_factory=list)


def chunk_items(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    """按固定大小切分，保持原始顺序，最后一组可能不满。"""

    if chunk_size <= 0:
        raise ValueError("chunk_size 必须大于 0")
    return [list(items[start : start + chunk_size]) for start in range(0, len(items), chunk_size)]


def item_code(item: FolderBatchItem) -> str:
    """``{商品编码}_{紧凑标签}``，用于文案中的编码列表。"""

    first = item.chosen[0] if item.chosen else None
    product_code = extract_product_code(first.filename) if first else item.folder_name
    return f"{product_code}_{compact_label(item.label or '')}"


def fallback_hook(caption: CaptionConfig) -> str:
    product_type = caption.product_type or "新款套装"
    occasion = caption.occasion or "上新"
    return f"{product_type}{occasion}，美到不行！"


def build_chunk_caption(
    chunk: Sequence[FolderBatchItem],
    chunk_index: int,
    hooks: Sequence[str],
    caption: CaptionConfig,
) -> str:
    """标题 -> hook -> 分隔线 -> 编码列表 -> 话题标签。"""

    hook = hooks[chunk_index % len(hooks)] if hooks else fallback_hook(caption)
    codes = "\n".join(item_code(item) for item in chunk)
    title = f"{caption.title}\n\n" if caption.title else ""
    return f"{title}{hook}\n\n{caption.separator}\n{caption.codes_heading}\n{codes}\n\n{caption.hashtags}"


def group_folder_name(chunk_index: int, chunk: Sequence[FolderBatchItem]) -> str:
    start = alnum_only(chunk[0].label or "")
    end = alnum_only(chunk[-1].label or "")
    return f"Group_{chunk_index + 1}_Sets_{start}_to_{end}"


def render_cover_png(source_path: Path) -> Optional[bytes]:
    """读取源图并生成封面 PNG；源图无法加载时返回 None。"""

    try:
        image = load_image(source_path)
    except ImageLoadingError as exc:
        LOGGER.warning("封面源图加载失败 %s: %s", source_path, exc)
        return None
    try:
        return encode_png(generate_cover(image))
    finally:
        image.close()


class ExportAssembler:
    """把已完成的批处理条目组装为分组导出内容。"""

    def __init__(
        self,
        config: ExportConfig,
        chunk_size: int,
        captioner: Optional[Captioner] = None,
        *,
        progress_callback: ProgressCallback = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size 必须大于 0")
        self.config = config
        self.chunk_size = chunk_size
        self.captioner = captioner
        self._progress_callback = progress_callback

    def fetch_hooks(self) -> list[str]:
        """向文案协作方请求 hook 列表，任何失败都降级为空列表。"""

        caption = self.config.caption
        if self.captioner is None:
            return []
        if not caption.product_type and not caption.occasion:
            LOGGER.info("未填写商品类型与场景，跳过 hook 生成")
            return []
        try:
            hooks = self.captioner.generate_hooks(caption.product_type, caption.occasion, caption.hook_count)
        except ExternalServiceError as exc:
            LOGGER.warning("hook 生成失败，使用默认文案: %s", exc)
            return []
        LOGGER.info("获得 %d 条 hook", len(hooks))
        return hooks

    def assemble(self, items: Sequence[FolderBatchItem], hooks: Optional[Sequence[str]] = None) -> list[ChunkExport]:
        """生成全部分组的内存导出内容，只包含 done 条目。"""

        done = [item for item in items if item.is_done]
        if not done:
            return []
        if hooks is None:
            hooks = self.fetch_hooks()

        covers = self._render_covers(done)
        chunks: list[ChunkExport] = []
        completed = 0
        for chunk_index, chunk in enumerate(chunk_items(done, self.chunk_size)):
            export = ChunkExport(
                index=chunk_index,
                folder_name=group_folder_name(chunk_index, chunk),
                caption=build_chunk_caption(chunk, chunk_index, hooks, self.config.caption),
            )
            for item in chunk:
                assert item.result is not None
                filename = safe_filename(item.output_name or f"{item.folder_name}_processed")
                export.entries.append(
                    ExportEntry(
                        folder_name=item.folder_name,
                        label=item.label or "",
                        layout=item.layout.value if item.layout else "",
                        filename=filename,
                        collage_png=encode_png(item.result),
                        cover_png=covers.get(id(item)),
                    )
                )
                completed += 1
                self._emit(completed, len(done), f"导出 {filename}")
            chunks.append(export)
        return chunks

    def write(
        self,
        chunks: Sequence[ChunkExport],
        outcomes: Sequence[FolderOutcome] = (),
    ) -> list[Path]:
        """把分组内容写入输出目录，返回写入的文件列表。"""

        manager = OutputManager(self.config.output)
        written: list[Path] = []

        def record(path: Optional[Path]) -> None:
            if path is not None:
                written.append(path)

        summary = "\n".join(entry.summary_line for chunk in chunks for entry in chunk.entries)
        record(manager.write_text(Path(self.config.summary_filename), summary))
        if outcomes:
            record(manager.write_text(Path(self.config.report_filename), render_csv_report(outcomes)))

        for chunk in chunks:
            group_dir = Path(chunk.folder_name)
            record(manager.write_text(group_dir / "caption.txt", chunk.caption))
            for entry in chunk.entries:
                record(manager.write_bytes(group_dir / f"{entry.filename}.png", entry.collage_png))
                if entry.cover_png is not None:
                    record(manager.write_bytes(group_dir / f"{entry.filename}_cover.png", entry.cover_png))

        LOGGER.info("导出完成：%d 个分组，%d 个文件 -> %s", len(chunks), len(written), manager.output_dir)
        return written

    def export(
        self,
        items: Sequence[FolderBatchItem],
        outcomes: Sequence[FolderOutcome] = (),
    ) -> list[ChunkExport]:
        chunks = self.assemble(items)
        self.write(chunks, outcomes)
        return chunks

    def _render_covers(self, items: Sequence[FolderBatchItem]) -> dict[int, Optional[bytes]]:
        """为每个条目的第一张已选图生成封面；max_workers > 1 时多进程并行。"""

        jobs = {id(item): item.chosen[0].source_path for item in items if item.chosen}
        if not jobs:
            return {}

        if self.config.max_workers <= 1:
            return {key: self._safe_cover(path) for key, path in jobs.items()}

        covers: dict[int, Optional[bytes]] = {}
        with ProcessPoolExecutor(max_workers=self.config.max_workers) as executor:
            future_map = {executor.submit(render_cover_png, path): key for key, path in jobs.items()}
            for future, key in future_map.items():
                try:
                    covers[key] = future.result()
                except Exception as exc:  # noqa: BLE001
                    LOGGER.exception("封面生成异常：%s", exc)
                    covers[key] = None
        return covers

    @staticmethod
    def _safe_cover(path: Path) -> Optional[bytes]:
        try:
            return render_cover_png(path)
        except CollageAutomationError as exc:
            LOGGER.warning("封面生成失败 %s: %s", path, exc)
            return None

    def _emit(self, completed: int, total: int, message: str) -> None:
        if self._progress_callback:
            self._progress_callback(ProgressUpdate(total=total, completed=completed, message=message))

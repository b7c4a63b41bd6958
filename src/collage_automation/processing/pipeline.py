"""批处理流水线：逐个文件夹识别、选图、编号与合成。

整个会话只有 BatchSession 一个写入方：文件夹条目列表与编号计数器都由它持有，
识别调用严格串行，取消请求只在文件夹之间检查。
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

import numpy as np
from PIL import Image

from collage_automation.core.config import BatchConfig
from collage_automation.core.exceptions import (
    ClassificationError,
    CollageAutomationError,
    CompositionError,
    ProcessingAborted,
    SelectionInsufficientError,
    SessionBusyError,
    ValidationError,
)
from collage_automation.core.models import (
    BatchResult,
    CandidateImage,
    FolderBatchItem,
    FolderOutcome,
    FolderStatus,
    SequenceCounter,
)
from collage_automation.core.progress import ProgressUpdate
from collage_automation.processing.compositor import CollageSource, compose_collage
from collage_automation.processing.image_loader import ImageLoadingError, load_image
from collage_automation.processing.selection import select_for_collage
from collage_automation.services.classification import Classifier, ClassificationResult
from collage_automation.utils.naming import build_output_name, extract_product_code
from collage_automation.utils.retry import SleepFunc, call_with_retry

LOGGER = logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


class BatchSession:
    """一次批处理会话，持有全部文件夹条目与编号计数器。"""

    def __init__(
        self,
        config: BatchConfig,
        classifier: Classifier,
        items: Sequence[FolderBatchItem] = (),
        *,
        sleep: SleepFunc = time.sleep,
        progress_callback: ProgressCallback = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.classifier = classifier
        self.items: list[FolderBatchItem] = list(items)
        self.counter = SequenceCounter(start=config.sequence_start, end=config.sequence_end)
        self._sleep = sleep
        self._progress_callback = progress_callback
        self._rng = rng
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def add_folder(self, folder_name: str, source_files: Sequence[Path]) -> FolderBatchItem:
        if self._running:
            raise SessionBusyError("批处理运行中，不能添加文件夹")
        item = FolderBatchItem(folder_name=folder_name, source_files=list(source_files))
        self.items.append(item)
        return item

    def done_items(self) -> list[FolderBatchItem]:
        """按原始文件夹顺序返回已完成的条目。"""

        return [item for item in self.items if item.is_done]

    def run(self, cancel_event: Optional[threading.Event] = None) -> BatchResult:
        """处理所有未完成的文件夹。

        已 done/failed 的条目保持不变；skipped 条目会重新识别。
        cancel_event 在每个文件夹开始前检查一次，被设置时抛出 ProcessingAborted，
        已处理条目的状态保留在 ``items`` 中。
        """

        if self._running:
            raise SessionBusyError("批处理已在运行")

        self._running = True
        total = len(self.items)
        try:
            self._emit(0, total, "开始批处理")
            for index, item in enumerate(self.items):
                if item.status in (FolderStatus.DONE, FolderStatus.FAILED):
                    continue
                if cancel_event is not None and cancel_event.is_set():
                    LOGGER.warning("批处理已中断，剩余 %d 个文件夹未处理", total - index)
                    self._emit(index, total, "批处理已中断", status="aborted")
                    raise ProcessingAborted(f"批处理在第 {index + 1}/{total} 个文件夹前被中断")
                try:
                    self._process_item(item)
                except BaseException:
                    self._reset_interrupted(item)
                    raise
                self._emit(index + 1, total, item.status_message, folder=item.folder_name)
        finally:
            self._running = False

        self._emit(total, total, "处理完成", status="finished")
        return self.result()

    def result(self) -> BatchResult:
        result = BatchResult()
        for item in self.items:
            outcome = FolderOutcome(
                folder_name=item.folder_name,
                status=item.status.value,
                layout=item.layout.value if item.layout else None,
                label=item.label,
                output_name=item.output_name,
                message=item.error or item.status_message,
            )
            if item.status is FolderStatus.DONE:
                result.done.append(outcome)
            elif item.status is FolderStatus.SKIPPED:
                result.skipped.append(outcome)
            elif item.status is FolderStatus.FAILED:
                result.failed.append(outcome)
        return result

    def regenerate(self, index: int, label: str) -> FolderBatchItem:
        """人工修改标签后重新合成单个已完成条目，复用已选定的候选图。"""

        if self._running:
            raise SessionBusyError("批处理运行中，不能重新生成单个条目")

        item = self.items[index]
        label = label.strip() or self.config.label_prefix
        item.transition(FolderStatus.GENERATING, f"重新合成: {label}")
        try:
            self._compose(item, label)
        except CollageAutomationError as exc:
            LOGGER.error("重新合成失败 %s: %s", item.folder_name, exc)
            item.transition(FolderStatus.FAILED, f"重新合成失败: {exc}", error=str(exc))
            return item
        except BaseException:
            self._reset_interrupted(item)
            raise

        item.transition(FolderStatus.DONE, f"已更新: {label}")
        return item

    def _reset_interrupted(self, item: FolderBatchItem) -> None:
        """处理中途被打断（如 KeyboardInterrupt）时把条目退回 pending，清空半成品。"""

        if item.status not in (FolderStatus.ANALYZING, FolderStatus.GENERATING):
            return
        LOGGER.warning("%s 处理被中断，已退回待处理", item.folder_name)
        item.transition(FolderStatus.PENDING, "处理被中断，等待重新处理")
        item.layout = None
        item.chosen = []
        item.label = None
        item.output_name = None
        item.result = None

    # ------------------------------------------------------------------
    # 单个文件夹
    # ------------------------------------------------------------------

    def _process_item(self, item: FolderBatchItem) -> None:
        ai_enabled = self.config.ai.enabled
        item.transition(FolderStatus.ANALYZING, "AI 识别中..." if ai_enabled else "处理中（未启用 AI）...")
        item.layout = None
        item.chosen = []
        item.label = None
        item.output_name = None
        item.result = None

        try:
            item.candidates = self._analyze(item)
            decision = select_for_collage(item.candidates, allow_fallback=self.config.allow_fallback)
        except SelectionInsufficientError as exc:
            LOGGER.info("跳过 %s: %s", item.folder_name, exc)
            item.transition(FolderStatus.SKIPPED, str(exc), error=str(exc))
            return
        except CollageAutomationError as exc:
            LOGGER.error("识别失败 %s: %s", item.folder_name, exc)
            item.transition(FolderStatus.FAILED, str(exc), error=str(exc))
            return
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("识别阶段异常 %s: %s", item.folder_name, exc)
            item.transition(FolderStatus.FAILED, f"识别阶段异常: {exc}", error=str(exc))
            return

        item.layout = decision.layout
        item.chosen = decision.images
        label = self.counter.label(self.config.label_prefix)
        item.transition(FolderStatus.GENERATING, f"合成 {decision.layout.value} ({label})...")

        try:
            self._compose(item, label)
        except CollageAutomationError as exc:
            LOGGER.error("合成失败 %s: %s", item.folder_name, exc)
            item.transition(FolderStatus.FAILED, str(exc), error=str(exc))
            return
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("合成阶段异常 %s: %s", item.folder_name, exc)
            item.transition(FolderStatus.FAILED, f"合成阶段异常: {exc}", error=str(exc))
            return

        item.transition(FolderStatus.DONE, f"完成 ({label})")
        self.counter.advance()
        LOGGER.info("完成 %s -> %s (%s)", item.folder_name, item.output_name, decision.layout.value)

    def _analyze(self, item: FolderBatchItem) -> list[CandidateImage]:
        candidates: list[CandidateImage] = []
        for path in item.source_files[: self.config.scan_limit]:
            try:
                image = load_image(path)
            except ImageLoadingError as exc:
                LOGGER.warning("跳过无法加载的图片 %s: %s", path.name, exc)
                continue
            try:
                analysis = self._classify(image, path.name)
            finally:
                image.close()

            LOGGER.debug(
                "%s: 人数=%d 拼图=%s 水印=%s",
                path.name,
                analysis.subject_count,
                analysis.is_multi_panel,
                analysis.defect.is_usable,
            )
            candidates.append(
                CandidateImage(
                    source_path=path,
                    has_subject=analysis.has_subject,
                    subject_count=analysis.subject_count,
                    is_multi_panel=analysis.is_multi_panel,
                    defect=analysis.defect,
                )
            )
        return candidates

    def _classify(self, image: Image.Image, filename: str) -> ClassificationResult:
        if not self.config.ai.enabled:
            return ClassificationResult.default()

        try:
            result = call_with_retry(
                lambda: self.classifier.classify(image),
                self.config.ai.classification_retry,
                retry_on=(ClassificationError,),
                sleep=self._sleep,
                description=f"识别 {filename}",
            )
        except ClassificationError as exc:
            LOGGER.warning("识别重试耗尽，按无人像处理 %s: %s", filename, exc)
            result = ClassificationResult.no_subject()

        if self.classifier.rate_limited and self.config.ai.inter_call_delay > 0:
            self._sleep(self.config.ai.inter_call_delay)
        return result

    def _compose(self, item: FolderBatchItem, label: str) -> None:
        """加载选中图片并合成；成功后写入 label/output_name/result。"""

        if item.layout is None or len(item.chosen) < item.layout.required_count:
            raise ValidationError(f"{item.folder_name}: 没有足够的已选图片用于合成")

        sources: list[CollageSource] = []
        try:
            for candidate in item.chosen:
                sources.append(
                    CollageSource(
                        bitmap=load_image(candidate.source_path),
                        defect=candidate.defect,
                        caption=candidate.caption_text,
                    )
                )
        except ImageLoadingError as exc:
            raise CompositionError(str(exc)) from exc

        composition = self.config.composition.with_label(label)
        try:
            result = compose_collage(sources, item.layout, composition, rng=self._rng)
        finally:
            for source in sources:
                source.bitmap.close()

        first = item.chosen[0] if item.chosen else None
        product_code = extract_product_code(first.filename) if first else item.folder_name
        item.label = label
        item.output_name = build_output_name(product_code, label)
        item.result = result

    def _emit(
        self,
        completed: int,
        total: int,
        message: Optional[str] = None,
        *,
        status: str = "running",
        folder: Optional[str] = None,
    ) -> None:
        if not self._progress_callback:
            return
        self._progress_callback(
            ProgressUpdate(total=total, completed=completed, message=message, status=status, folder=folder)
        )

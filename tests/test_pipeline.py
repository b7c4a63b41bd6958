"""环节七：测试批处理会话（识别、选图、编号、重试与取消）。"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image

from collage_automation.core.config import AIConfig, BatchConfig, CompositionConfig, RetryPolicy
from collage_automation.core.exceptions import ClassificationError, ProcessingAborted, SessionBusyError
from collage_automation.core.models import FolderStatus, LayoutKind
from collage_automation.core.progress import ProgressUpdate
from collage_automation.core.scanner import discover_folders
from collage_automation.processing.pipeline import BatchSession
from collage_automation.services.classification import Classifier, ClassificationResult

SINGLE_SIZE = (40, 60)
DUAL_SIZE = (60, 40)
EMPTY_SIZE = (30, 30)


class SizeClassifier(Classifier):
    """按图片尺寸返回固定结果：40x60 单人，60x40 双人，其余无人。"""

    def __init__(self) -> None:
        self.calls = 0

    def classify(self, image: Image.Image) -> ClassificationResult:
        self.calls += 1
        if image.size == SINGLE_SIZE:
            return ClassificationResult(has_subject=True, subject_count=1)
        if image.size == DUAL_SIZE:
            return ClassificationResult(has_subject=True, subject_count=2)
        return ClassificationResult.no_subject()


class FlakyClassifier(SizeClassifier):
    rate_limited = True

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    def classify(self, image: Image.Image) -> ClassificationResult:
        if self.failures > 0:
            self.failures -= 1
            raise ClassificationError("429 quota")
        return super().classify(image)


def make_folder(root: Path, name: str, sizes: list[tuple[int, int]]) -> None:
    folder = root / name
    folder.mkdir(parents=True)
    for index, size in enumerate(sizes):
        Image.new("RGB", size, (40 * index % 255, 120, 200)).save(folder / f"{name}_{index:02d}.png")


def make_config(*, gap: int = 0, fallback: bool = True, ai: Optional[AIConfig] = None) -> BatchConfig:
    return BatchConfig(
        composition=CompositionConfig(output_width=200, output_height=400, gap_px=gap),
        ai=ai or AIConfig(enabled=True, inter_call_delay=0),
        sequence_start=1,
        sequence_end=3,
        allow_fallback=fallback,
    )


def test_batch_assigns_labels_only_to_done_folders(tmp_path: Path) -> None:
    make_folder(tmp_path, "AK0001", [SINGLE_SIZE] * 4)
    make_folder(tmp_path, "AK0002", [SINGLE_SIZE, EMPTY_SIZE])
    make_folder(tmp_path, "AK0003", [SINGLE_SIZE, DUAL_SIZE, SINGLE_SIZE])
    make_folder(tmp_path, "AK0004", [SINGLE_SIZE, DUAL_SIZE])

    session = BatchSession(make_config(), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None)
    result = session.run()

    statuses = {item.folder_name: item.status for item in session.items}
    assert statuses == {
        "AK0001": FolderStatus.DONE,
        "AK0002": FolderStatus.SKIPPED,
        "AK0003": FolderStatus.DONE,
        "AK0004": FolderStatus.DONE,
    }

    first, _, third, fourth = session.items
    assert first.layout is LayoutKind.TWO_BY_TWO
    assert first.label == "Set 1"
    assert first.output_name == "AK0001_Set1"
    assert first.result is not None and first.result.size == (200, 400)

    assert third.layout is LayoutKind.TWO_BY_ONE
    assert third.label == "Set 2"

    assert fourth.layout is LayoutKind.ONE_BY_ONE
    assert fourth.label == "Set 3"
    assert fourth.chosen[0].filename == "AK0004_01.png"

    assert len(result.done) == 3
    assert len(result.skipped) == 1
    assert result.skipped[0].message and "候选图不足" in result.skipped[0].message


def test_counter_wraps_after_end(tmp_path: Path) -> None:
    for index in range(5):
        make_folder(tmp_path, f"P{index}", [SINGLE_SIZE] * 2)

    session = BatchSession(make_config(), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None)
    session.run()

    assert [item.label for item in session.items] == ["Set 1", "Set 2", "Set 3", "Set 1", "Set 2"]


def test_strict_mode_skips_dual_only_folder(tmp_path: Path) -> None:
    make_folder(tmp_path, "DUAL", [DUAL_SIZE, DUAL_SIZE])

    session = BatchSession(
        make_config(fallback=False), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None
    )
    result = session.run()

    assert session.items[0].status is FolderStatus.SKIPPED
    assert session.counter.current == 1
    assert len(result.skipped) == 1


def test_composition_failure_marks_folder_failed(tmp_path: Path) -> None:
    make_folder(tmp_path, "WIDE", [SINGLE_SIZE] * 2)

    session = BatchSession(make_config(gap=500), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None)
    result = session.run()

    item = session.items[0]
    assert item.status is FolderStatus.FAILED
    assert item.error
    assert item.result is None
    assert session.counter.current == 1
    assert len(result.failed) == 1


def test_unloadable_files_are_ignored(tmp_path: Path) -> None:
    make_folder(tmp_path, "MIX", [SINGLE_SIZE] * 2)
    (tmp_path / "MIX" / "MIX_99.png").write_text("not an image")

    session = BatchSession(make_config(), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None)
    session.run()

    item = session.items[0]
    assert item.status is FolderStatus.DONE
    assert len(item.candidates) == 2


def test_only_first_files_are_scanned(tmp_path: Path) -> None:
    make_folder(tmp_path, "MANY", [SINGLE_SIZE] * 25)
    classifier = SizeClassifier()

    session = BatchSession(make_config(), classifier, discover_folders(tmp_path), sleep=lambda _: None)
    session.run()

    assert classifier.calls == 20


def test_retry_backs_off_then_succeeds(tmp_path: Path) -> None:
    make_folder(tmp_path, "RETRY", [SINGLE_SIZE] * 2)
    sleeps: list[float] = []
    ai = AIConfig(
        enabled=True,
        inter_call_delay=2.0,
        classification_retry=RetryPolicy(max_attempts=6, base_delay=15.0, multiplier=2.0, max_delay=120.0),
    )

    session = BatchSession(make_config(ai=ai), FlakyClassifier(failures=2), discover_folders(tmp_path), sleep=sleeps.append)
    session.run()

    assert session.items[0].status is FolderStatus.DONE
    # 第一张图：两次退避 + 调用间隔；第二张图：调用间隔
    assert sleeps == [15.0, 30.0, 2.0, 2.0]


def test_exhausted_retries_fall_back_to_no_subject(tmp_path: Path) -> None:
    make_folder(tmp_path, "DOWN", [SINGLE_SIZE] * 2)
    sleeps: list[float] = []
    ai = AIConfig(
        enabled=True,
        inter_call_delay=0,
        classification_retry=RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0, max_delay=10.0),
    )

    session = BatchSession(make_config(ai=ai), FlakyClassifier(failures=100), discover_folders(tmp_path), sleep=sleeps.append)
    session.run()

    item = session.items[0]
    assert item.status is FolderStatus.SKIPPED
    assert all(not candidate.has_subject for candidate in item.candidates)
    assert sleeps == [1.0, 2.0, 1.0, 2.0]


def test_ai_disabled_treats_every_image_as_single(tmp_path: Path) -> None:
    make_folder(tmp_path, "NOAI", [EMPTY_SIZE] * 4)
    classifier = SizeClassifier()

    session = BatchSession(
        make_config(ai=AIConfig(enabled=False)), classifier, discover_folders(tmp_path), sleep=lambda _: None
    )
    session.run()

    assert classifier.calls == 0
    assert session.items[0].layout is LayoutKind.TWO_BY_TWO


def test_cancellation_stops_between_folders(tmp_path: Path) -> None:
    make_folder(tmp_path, "A", [SINGLE_SIZE] * 2)
    make_folder(tmp_path, "B", [SINGLE_SIZE] * 2)
    cancel = threading.Event()

    def on_progress(update: ProgressUpdate) -> None:
        if update.folder == "A":
            cancel.set()

    session = BatchSession(
        make_config(), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None, progress_callback=on_progress
    )
    with pytest.raises(ProcessingAborted):
        session.run(cancel)

    assert session.items[0].status is FolderStatus.DONE
    assert session.items[1].status is FolderStatus.PENDING
    assert not session.is_running
    assert [outcome.folder_name for outcome in session.result().done] == ["A"]


def test_regenerate_updates_label_and_output(tmp_path: Path) -> None:
    make_folder(tmp_path, "AK0100", [SINGLE_SIZE] * 2)

    session = BatchSession(make_config(), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None)
    session.run()
    original = session.items[0].result

    item = session.regenerate(0, "Set 9")

    assert item.status is FolderStatus.DONE
    assert item.label == "Set 9"
    assert item.output_name == "AK0100_Set9"
    assert item.result is not None and item.result is not original
    assert session.counter.current == 2


def test_regenerate_rejected_while_running(tmp_path: Path) -> None:
    make_folder(tmp_path, "A", [SINGLE_SIZE] * 2)
    make_folder(tmp_path, "B", [SINGLE_SIZE] * 2)
    errors: list[Exception] = []
    session: Optional[BatchSession] = None

    def on_progress(update: ProgressUpdate) -> None:
        if update.folder == "A" and session is not None:
            try:
                session.regenerate(0, "Set 7")
            except SessionBusyError as exc:
                errors.append(exc)

    session = BatchSession(
        make_config(), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None, progress_callback=on_progress
    )
    session.run()

    assert len(errors) == 1
    assert session.items[0].label == "Set 1"


def test_rerun_keeps_done_items(tmp_path: Path) -> None:
    make_folder(tmp_path, "A", [SINGLE_SIZE] * 2)
    classifier = SizeClassifier()

    session = BatchSession(make_config(), classifier, discover_folders(tmp_path), sleep=lambda _: None)
    session.run()
    calls = classifier.calls
    session.run()

    assert classifier.calls == calls
    assert session.items[0].label == "Set 1"


def test_progress_reports_finish(tmp_path: Path) -> None:
    make_folder(tmp_path, "A", [SINGLE_SIZE] * 2)
    updates: list[ProgressUpdate] = []

    session = BatchSession(
        make_config(), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None, progress_callback=updates.append
    )
    session.run()

    assert updates[0].completed == 0
    assert updates[-1].status == "finished"
    assert updates[-1].completed == updates[-1].total == 1


class InterruptingClassifier(SizeClassifier):
    """第一次调用时模拟用户按下 Ctrl+C。"""

    def __init__(self) -> None:
        super().__init__()
        self.interrupted = False

    def classify(self, image: Image.Image) -> ClassificationResult:
        if not self.interrupted:
            self.interrupted = True
            raise KeyboardInterrupt
        return super().classify(image)


def test_interrupted_folder_can_be_rerun(tmp_path: Path) -> None:
    make_folder(tmp_path, "A", [SINGLE_SIZE] * 2)
    make_folder(tmp_path, "B", [SINGLE_SIZE] * 2)

    session = BatchSession(
        make_config(), InterruptingClassifier(), discover_folders(tmp_path), sleep=lambda _: None
    )
    with pytest.raises(KeyboardInterrupt):
        session.run()

    first = session.items[0]
    assert first.status is FolderStatus.PENDING
    assert first.chosen == [] and first.result is None
    assert not session.is_running

    result = session.run()

    assert [item.status for item in session.items] == [FolderStatus.DONE, FolderStatus.DONE]
    assert [item.label for item in session.items] == ["Set 1", "Set 2"]
    assert len(result.done) == 2


def test_failed_regeneration_drops_item_from_export(tmp_path: Path) -> None:
    make_folder(tmp_path, "AK0200", [SINGLE_SIZE] * 2)
    make_folder(tmp_path, "AK0201", [SINGLE_SIZE] * 2)

    session = BatchSession(make_config(), SizeClassifier(), discover_folders(tmp_path), sleep=lambda _: None)
    session.run()
    counter_before = session.counter.current

    item = session.items[0]
    item.chosen[0].source_path.unlink()
    session.regenerate(0, "Set 9")

    assert item.status is FolderStatus.FAILED
    assert item.error
    assert item.status_message.startswith("重新合成失败")
    assert session.counter.current == counter_before
    assert [done.folder_name for done in session.done_items()] == ["AK0201"]
    assert [outcome.folder_name for outcome in session.result().failed] == ["AK0200"]

"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from collage_automation.core.exceptions import StateTransitionError

if TYPE_CHECKING:
    from PIL import Image

PERMILLE = 1000


@dataclass(slots=True, frozen=True)
class DefectBox:
    """需要修补的区域（水印/Logo），坐标为相对源图的千分比。"""

    present: bool = False
    xmin: int = 0
    ymin: int = 0
    xmax: int = 0
    ymax: int = 0

    @classmethod
    def absent(cls) -> "DefectBox":
        return cls()

    @classmethod
    def from_bounds(cls, present: bool, xmin: int, ymin: int, xmax: int, ymax: int) -> "DefectBox":
        """构造并把坐标截断到 [0, 1000]。"""

        def clamp(value: int) -> int:
            return max(0, min(PERMILLE, int(value)))

        return cls(present=bool(present), xmin=clamp(xmin), ymin=clamp(ymin), xmax=clamp(xmax), ymax=clamp(ymax))

    @property
    def is_usable(self) -> bool:
        """present 且面积大于 0 才需要修补。"""

        return self.present and self.xmax > self.xmin and self.ymax > self.ymin


class LayoutKind(str, Enum):
    """拼图版式，值为 列x行。"""

    TWO_BY_ONE = "2x1"
    ONE_BY_TWO = "1x2"
    TWO_BY_TWO = "2x2"
    FOUR_BY_ONE = "4x1"
    ONE_BY_ONE = "1x1"

    @property
    def grid(self) -> tuple[int, int]:
        cols, rows = self.value.split("x")
        return int(cols), int(rows)

    @property
    def required_count(self) -> int:
        cols, rows = self.grid
        return cols * rows


@dataclass(slots=True)
class CandidateImage:
    """经过识别分析的候选图片。"""

    source_path: Path
    has_subject: bool = False
    subject_count: int = 0
    is_multi_panel: bool = False
    defect: DefectBox = field(default_factory=DefectBox)
    caption_text: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.source_path.name


class FolderStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


_ALLOWED_TRANSITIONS: dict[FolderStatus, set[FolderStatus]] = {
    FolderStatus.PENDING: {FolderStatus.ANALYZING},
    # -> pending 仅用于处理中途被中断的条目，下一次运行会重新处理
    FolderStatus.ANALYZING: {FolderStatus.GENERATING, FolderStatus.SKIPPED, FolderStatus.FAILED, FolderStatus.PENDING},
    FolderStatus.GENERATING: {FolderStatus.DONE, FolderStatus.FAILED, FolderStatus.PENDING},
    # done -> generating 为人工修改标签后的重新合成
    FolderStatus.DONE: {FolderStatus.GENERATING},
    FolderStatus.FAILED: {FolderStatus.ANALYZING},
    FolderStatus.SKIPPED: {FolderStatus.ANALYZING},
}


@dataclass(slots=True)
class FolderBatchItem:
    """单个输入文件夹在批处理中的完整生命周期记录。"""

    folder_name: str
    source_files: list[Path]
    status: FolderStatus = FolderStatus.PENDING
    candidates: list[CandidateImage] = field(default_factory=list)
    layout: Optional[LayoutKind] = None
    chosen: list[CandidateImage] = field(default_factory=list)
    label: Optional[str] = None
    output_name: Optional[str] = None
    result: Optional["Image.Image"] = None
    status_message: str = ""
    error: Optional[str] = None

    def transition(self, status: FolderStatus, message: str = "", *, error: Optional[str] = None) -> None:
        """执行一次状态迁移，非法迁移抛出 StateTransitionError。"""

        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise StateTransitionError(f"{self.folder_name}: 不允许 {self.status.value} -> {status.value}")
        self.status = status
        self.status_message = message
        self.error = error

    @property
    def is_done(self) -> bool:
        return self.status is FolderStatus.DONE and self.result is not None


@dataclass(slots=True)
class SequenceCounter:
    """循环编号计数器，超出 end 后回到 start。"""

    start: int = 1
    end: int = 4
    current: int = field(default=0)

    def __post_init__(self) -> None:
        if self.end < self.start:
            self.end = self.start
        if not self.start <= self.current <= self.end:
            self.current = self.start

    def label(self, prefix: str) -> str:
        prefix = prefix.strip()
        return f"{prefix} {self.current}" if prefix else str(self.current)

    def advance(self) -> int:
        self.current += 1
        if self.current > self.end:
            self.current = self.start
        return self.current

    def reset(self) -> None:
        self.current = self.start


@dataclass(slots=True)
class FolderOutcome:
    """记录单个文件夹的处理结果（用于报告/日志）。"""

    folder_name: str
    status: str
    layout: Optional[str] = None
    label: Optional[str] = None
    output_name: Optional[str] = None
    message: Optional[str] = None


@dataclass(slots=True)
class BatchResult:
    """一次批处理运行的产出。"""

    done: list[FolderOutcome] = field(default_factory=list)
    skipped: list[FolderOutcome] = field(default_factory=list)
    failed: list[FolderOutcome] = field(default_factory=list)
    aborted: bool = False

    def all_outcomes(self) -> list[FolderOutcome]:
        """返回所有结果记录，方便生成报告。"""

        return [*self.done, *self.skipped, *self.failed]

"""拼图任务的配置模型。"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from collage_automation.core.exceptions import InvalidConfigurationError
from collage_automation.utils.colors import parse_hex_color

DEFAULT_CANVAS_SIZE = (2160, 3840)  # 竖版 4K (9:16)
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")


class LabelMode(str, Enum):
    """标签绘制位置。"""

    CORNER = "corner"
    CENTER = "center"


@dataclass(slots=True, frozen=True)
class CompositionConfig:
    """单次拼图合成的配置，调用期间不可变。"""

    output_width: int = DEFAULT_CANVAS_SIZE[0]
    output_height: int = DEFAULT_CANVAS_SIZE[1]
    gap_px: int = 0
    background_color: str = "#FFFFFF"
    heal_defects: bool = False
    trim_borders: bool = True
    label_mode: LabelMode = LabelMode.CENTER
    global_label: Optional[str] = None

    def validate(self) -> None:
        if self.output_width <= 0 or self.output_height <= 0:
            raise InvalidConfigurationError("输出尺寸必须大于 0")
        if self.gap_px < 0:
            raise InvalidConfigurationError("gap_px 不能为负数")
        parse_hex_color(self.background_color)

    def with_label(self, label: Optional[str]) -> "CompositionConfig":
        """返回替换了全局标签的新配置。"""

        return replace(self, global_label=label)


@dataclass(slots=True)
class RetryPolicy:
    """有界重试策略：第 n 次重试前等待 base_delay * multiplier**n 秒。"""

    max_attempts: int = 6
    base_delay: float = 15.0
    multiplier: float = 2.0
    max_delay: float = 120.0

    def delay_for(self, retry_index: int) -> float:
        delay = self.base_delay * (self.multiplier**retry_index)
        return min(delay, self.max_delay)


@dataclass(slots=True)
class AIConfig:
    """图片识别与文案生成服务配置。"""

    enabled: bool = True
    api_key: Optional[str] = None
    model: str = "gemini-2.0-flash"
    inter_call_delay: float = 2.0
    classification_retry: RetryPolicy = field(default_factory=RetryPolicy)
    caption_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=5, base_delay=10.0, multiplier=2.0, max_delay=60.0)
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)


@dataclass(slots=True)
class BatchConfig:
    """批处理的选图与编号配置。"""

    composition: CompositionConfig = field(default_factory=CompositionConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    sequence_start: int = 1
    sequence_end: int = 4
    label_prefix: str = "Set"
    allow_fallback: bool = True  # smart 模式：单人图不足时允许使用双人图
    scan_limit: int = 20

    def validate(self) -> None:
        self.composition.validate()
        if self.sequence_start < 1:
            raise InvalidConfigurationError("起始编号必须 >= 1")
        if self.scan_limit <= 0:
            raise InvalidConfigurationError("scan_limit 必须大于 0")

    @property
    def effective_end(self) -> int:
        return max(self.sequence_start, self.sequence_end)

    @property
    def chunk_size(self) -> int:
        return self.effective_end - self.sequence_start + 1


@dataclass(slots=True)
class CaptionConfig:
    """分组文案配置。"""

    title: str = ""
    product_type: str = ""
    occasion: str = ""
    hashtags: str = "#穿搭 #时尚 #ootd"
    codes_heading: str = "商品编码:"
    separator: str = "------------------"
    hook_count: int = 30


@dataclass(slots=True)
class OutputConfig:
    """输出目录与冲突策略配置。"""

    output_dir: Path
    conflict_strategy: str = "rename"  # overwrite | skip | rename


@dataclass(slots=True)
class ExportConfig:
    """导出阶段配置。"""

    output: OutputConfig
    caption: CaptionConfig = field(default_factory=CaptionConfig)
    max_workers: int = 1
    summary_filename: str = "summary.txt"
    report_filename: str = "report.csv"


def load_api_key() -> Optional[str]:
    """从环境变量读取 API Key，未配置时返回 None。"""

    for name in API_KEY_ENV_VARS:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return None

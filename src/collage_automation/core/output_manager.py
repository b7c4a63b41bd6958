"""输出写入与冲突处理模块。"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from itertools import count
from pathlib import Path
from typing import Optional

from PIL import Image

from collage_automation.core.config import OutputConfig
from collage_automation.core.exceptions import CollageAutomationError, InvalidConfigurationError

LOGGER = logging.getLogger(__name__)

CONFLICT_STRATEGIES = {"overwrite", "skip", "rename"}


class ImageWriteError(CollageAutomationError):
    """输出写入失败。"""


@dataclass(slots=True)
class DestinationDecision:
    """封装输出文件决策。"""

    destination: Optional[Path]
    action: str
    note: Optional[str] = None


def encode_png(image: Image.Image) -> bytes:
    """将图像无损编码为 PNG 字节。"""

    image_to_save = image if image.mode in {"RGB", "RGBA"} else image.convert("RGB")
    buffer = io.BytesIO()
    try:
        image_to_save.save(buffer, format="PNG", optimize=False)
    except OSError as exc:
        raise ImageWriteError("PNG 编码失败") from exc
    return buffer.getvalue()


class OutputManager:
    """负责处理输出目录、冲突策略与文件写入。"""

    def __init__(self, config: OutputConfig) -> None:
        if config.conflict_strategy not in CONFLICT_STRATEGIES:
            raise InvalidConfigurationError(f"未知的冲突策略: {config.conflict_strategy}")
        self.config = config
        self.output_dir = config.output_dir.expanduser().resolve()
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def decide_destination(self, relative: Path) -> DestinationDecision:
        """根据冲突策略确定输出路径。"""

        destination = self.output_dir / relative
        destination.parent.mkdir(parents=True, exist_ok=True)

        if not destination.exists():
            return DestinationDecision(destination=destination, action="write")

        strategy = self.config.conflict_strategy
        existing_msg = f"目标已存在: {destination.name}"

        if strategy == "overwrite":
            return DestinationDecision(destination=destination, action="overwrite", note=existing_msg)
        if strategy == "skip":
            return DestinationDecision(destination=destination, action="skip", note=existing_msg)

        new_destination = self._generate_renamed_path(destination)
        return DestinationDecision(
            destination=new_destination,
            action="rename",
            note=f"{existing_msg} -> 重命名为 {new_destination.name}",
        )

    def write_bytes(self, relative: Path, payload: bytes) -> Optional[Path]:
        """写入二进制文件，skip 策略下已存在则返回 None。"""

        decision = self.decide_destination(relative)
        if decision.action == "skip":
            LOGGER.info("跳过输出（已存在）：%s", decision.destination)
            return None
        assert decision.destination is not None
        if decision.note:
            LOGGER.info(decision.note)
        try:
            decision.destination.write_bytes(payload)
        except OSError as exc:
            raise ImageWriteError(f"写入文件失败: {decision.destination}") from exc
        return decision.destination

    def write_text(self, relative: Path, content: str) -> Optional[Path]:
        return self.write_bytes(relative, content.encode("utf-8"))

    def _generate_renamed_path(self, destination: Path) -> Path:
        """在 rename 策略下生成新的文件名。"""

        stem = destination.stem
        suffix = destination.suffix

        for idx in count(1):
            candidate = destination.with_name(f"{stem}_{idx}{suffix}")
            if not candidate.exists():
                return candidate

        # 理论上不会执行到此处
        return destination

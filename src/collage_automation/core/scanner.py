"""输入目录扫描：按父文件夹对图片分组。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

from collage_automation.core.models import FolderBatchItem

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}
ROOT_FOLDER_NAME = "Root"


def _iter_image_files(root: Path) -> Iterator[Path]:
    for candidate in root.rglob("*"):
        if candidate.is_file() and candidate.suffix.lower() in IMAGE_EXTENSIONS:
            yield candidate


def discover_folders(root: Path) -> list[FolderBatchItem]:
    """扫描总目录，每个直接包含图片的子文件夹生成一个待处理条目。

    图片按其父文件夹名称分组；直接位于 root 下的图片归入 ``Root``。
    文件夹保持首次出现的顺序（路径排序），文件夹内文件按名称排序。
    """

    resolved = root.expanduser().resolve()
    if not resolved.is_dir():
        LOGGER.warning("目录不存在或不是文件夹: %s", resolved)
        return []

    groups: dict[str, list[Path]] = {}
    for image_path in sorted(_iter_image_files(resolved), key=lambda p: str(p).lower()):
        folder_name = ROOT_FOLDER_NAME if image_path.parent == resolved else image_path.parent.name
        groups.setdefault(folder_name, []).append(image_path)

    items = [
        FolderBatchItem(
            folder_name=name,
            source_files=sorted(files, key=lambda p: p.name.lower()),
        )
        for name, files in groups.items()
    ]
    LOGGER.info("发现 %d 个商品文件夹，共 %d 张图片", len(items), sum(len(i.source_files) for i in items))
    return items

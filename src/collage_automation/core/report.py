"""报告生成工具。"""

from __future__ import annotations

import csv
import io
from typing import Iterable

from collage_automation.core.models import FolderOutcome

HEADER = ["folder", "status", "layout", "label", "output_name", "message"]


def render_csv_report(outcomes: Iterable[FolderOutcome]) -> str:
    """将各文件夹的处理结果渲染为 CSV 文本。"""

    handle = io.StringIO()
    writer = csv.writer(handle)
    writer.writerow(HEADER)
    for record in outcomes:
        writer.writerow(
            [
                record.folder_name,
                record.status,
                record.layout or "",
                record.label or "",
                record.output_name or "",
                record.message or "",
            ]
        )
    return handle.getvalue()


def format_summary_line(folder_name: str, label: str, layout: str, output_name: str) -> str:
    """单个成功导出条目的摘要行。"""

    return f"[SUCCESS] Folder: {folder_name} | Set: {label} | Layout: {layout} | Output: {output_name}.png"

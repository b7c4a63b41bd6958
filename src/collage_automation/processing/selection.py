"""候选图分层与版式选择规则。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from collage_automation.core.exceptions import SelectionInsufficientError
from collage_automation.core.models import CandidateImage, LayoutKind


@dataclass(slots=True)
class CandidateTiers:
    """按人数分层后的候选列表，保持原始顺序。"""

    single: list[CandidateImage] = field(default_factory=list)
    dual: list[CandidateImage] = field(default_factory=list)


@dataclass(slots=True)
class SelectionDecision:
    layout: LayoutKind
    images: list[CandidateImage]


def partition_candidates(candidates: Sequence[CandidateImage]) -> CandidateTiers:
    """拼图类（多格）图片直接丢弃；恰好 1 人进 single，恰好 2 人进 dual。"""

    tiers = CandidateTiers()
    for candidate in candidates:
        if candidate.is_multi_panel or not candidate.has_subject:
            continue
        if candidate.subject_count == 1:
            tiers.single.append(candidate)
        elif candidate.subject_count == 2:
            tiers.dual.append(candidate)
    return tiers


def choose_layout(tiers: CandidateTiers, *, allow_fallback: bool) -> SelectionDecision:
    """按优先级选择版式，先命中者生效。

    1. 单人图 >= 4 张：2x2，取前 4 张
    2. 单人图 >= 2 张：2x1，取前 2 张
    3. 允许兜底且双人图 >= 1 张：1x1，取第 1 张双人图
    否则抛出 SelectionInsufficientError。
    """

    if len(tiers.single) >= 4:
        return SelectionDecision(LayoutKind.TWO_BY_TWO, tiers.single[:4])
    if len(tiers.single) >= 2:
        return SelectionDecision(LayoutKind.TWO_BY_ONE, tiers.single[:2])
    if allow_fallback and tiers.dual:
        return SelectionDecision(LayoutKind.ONE_BY_ONE, tiers.dual[:1])
    raise SelectionInsufficientError(len(tiers.single), len(tiers.dual))


def select_for_collage(candidates: Sequence[CandidateImage], *, allow_fallback: bool) -> SelectionDecision:
    return choose_layout(partition_candidates(candidates), allow_fallback=allow_fallback)

"""输出文件命名工具。"""

from __future__ import annotations

import re

_COPY_SUFFIX_RE = re.compile(r"\s*\(\d+\)$")
_COPY_WORD_RE = re.compile(r"\s-\s*Copy$")
_UNSAFE_CHARS_RE = re.compile(r'[/\\?%*:|"<>]')
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def extract_product_code(filename: str) -> str:
    """从源文件名提取商品编码，例如 ``AK0535_020_02.jpg`` -> ``AK0535``。"""

    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    if not stem:
        stem = filename
    stem = _COPY_SUFFIX_RE.sub("", stem)
    stem = _COPY_WORD_RE.sub("", stem)
    if "_" in stem:
        stem = stem.split("_", 1)[0]
    return stem.strip()


def compact_label(label: str) -> str:
    """去掉标签中的空白，``Set 1`` -> ``Set1``。"""

    return _WHITESPACE_RE.sub("", label)


def safe_filename(name: str) -> str:
    return _UNSAFE_CHARS_RE.sub("-", name).strip()


def build_output_name(product_code: str, label: str) -> str:
    """生成 ``{商品编码}_{标签}`` 形式的安全文件名（不含扩展名）。"""

    return safe_filename(f"{product_code}_{compact_label(label)}")


def alnum_only(value: str) -> str:
    return _NON_ALNUM_RE.sub("", value)

"""Gemini 客户端的公共封装：创建客户端、JSON 解析与错误归类。"""

from __future__ import annotations

import io
import json
import logging
import re
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from PIL import Image

from collage_automation.core.exceptions import ExternalServiceError, ServiceBusyError
from collage_automation.processing.image_loader import flatten_alpha

LOGGER = logging.getLogger(__name__)

MAX_UPLOAD_DIMENSION = 1536
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_FENCE_RE = re.compile(r"```(?:json)?\s*|```")


def create_client(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


def strip_code_fences(text: str) -> str:
    """去掉模型偶尔包裹在 JSON 外面的 markdown 代码块。"""

    return _FENCE_RE.sub("", text or "").strip()


def parse_json_payload(text: str) -> Any:
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ExternalServiceError("模型返回内容为空")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExternalServiceError(f"模型返回的不是合法 JSON: {cleaned[:80]}") from exc


def image_to_jpeg_bytes(image: Image.Image) -> bytes:
    """缩小到上传尺寸上限并编码为 JPEG，降低接口出错概率。"""

    upload = flatten_alpha(image)
    if max(upload.size) > MAX_UPLOAD_DIMENSION:
        upload = upload.copy()
        upload.thumbnail((MAX_UPLOAD_DIMENSION, MAX_UPLOAD_DIMENSION), Image.LANCZOS)
    buffer = io.BytesIO()
    upload.save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


def translate_api_error(exc: Exception) -> ExternalServiceError:
    """把 SDK 异常归类：限流/服务端错误可重试，其余直接失败。"""

    if isinstance(exc, genai_errors.APIError):
        code = getattr(exc, "code", None)
        if code in RETRYABLE_STATUS_CODES:
            return ServiceBusyError(f"Gemini 服务繁忙 ({code}): {exc}")
        return ExternalServiceError(f"Gemini 调用失败 ({code}): {exc}")

    message = str(exc).lower()
    if "429" in message or "quota" in message or "unavailable" in message:
        return ServiceBusyError(f"Gemini 服务繁忙: {exc}")
    return ExternalServiceError(f"Gemini 调用失败: {exc}")

"""文案协作方：根据商品类型与场景生成开头引导语 (hook)。"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from google.genai import types

from collage_automation.core.config import AIConfig, RetryPolicy
from collage_automation.core.exceptions import ExternalServiceError, ServiceBusyError
from collage_automation.services.gemini import create_client, parse_json_payload, translate_api_error
from collage_automation.utils.retry import SleepFunc, call_with_retry

LOGGER = logging.getLogger(__name__)

HOOK_PROMPT_TEMPLATE = """
为服装商品写 {count} 句不同的开头引导语 (hook)。
场景: "{occasion}"
商品类型: "{product_type}"
要求:
- 每句 8 到 14 个词，风格可爱、甜美、引发好奇。
- 必须包含场景或商品类型的关键词。
- 句式多样，避免重复。
- 输出格式: 只返回一个 JSON 字符串数组。
"""


class Captioner(ABC):
    """文案协作方接口。"""

    @abstractmethod
    def generate_hooks(self, product_type: str, occasion: str, count: int = 30) -> list[str]:
        """返回有序的短文案列表；失败抛出 ExternalServiceError。"""


class GeminiCaptioner(Captioner):
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        *,
        retry: Optional[RetryPolicy] = None,
        sleep: SleepFunc = time.sleep,
    ) -> None:
        self.client = create_client(api_key)
        self.model = model
        self.retry = retry or RetryPolicy(max_attempts=5, base_delay=10.0)
        self._sleep = sleep

    def generate_hooks(self, product_type: str, occasion: str, count: int = 30) -> list[str]:
        prompt = HOOK_PROMPT_TEMPLATE.format(count=count, occasion=occasion, product_type=product_type)

        def request() -> str:
            try:
                response = self.client.models.generate_content(
                    model=self.model,
                    contents=prompt,
                    config=types.GenerateContentConfig(response_mime_type="application/json"),
                )
            except Exception as exc:  # noqa: BLE001
                raise translate_api_error(exc) from exc
            return response.text or ""

        text = call_with_retry(
            request,
            self.retry,
            retry_on=(ServiceBusyError,),
            sleep=self._sleep,
            description="生成 hook",
        )
        return normalize_hooks(parse_json_payload(text))


def normalize_hooks(payload: object) -> list[str]:
    """只接受非空字符串数组，其余格式视为服务异常。"""

    if not isinstance(payload, list):
        raise ExternalServiceError("hook 返回格式不是数组")
    hooks = [str(item).strip() for item in payload if isinstance(item, str) and item.strip()]
    if not hooks:
        raise ExternalServiceError("hook 列表为空")
    return hooks


def build_captioner(config: AIConfig, *, sleep: SleepFunc = time.sleep) -> Optional[Captioner]:
    if not config.enabled or not config.has_credentials:
        return None
    assert config.api_key is not None
    return GeminiCaptioner(config.api_key, model=config.model, retry=config.caption_retry, sleep=sleep)

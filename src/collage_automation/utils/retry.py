"""有界重试执行器。"""

from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

from collage_automation.core.config import RetryPolicy

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], None]


def call_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...],
    sleep: SleepFunc = time.sleep,
    description: str = "调用",
) -> T:
    """执行 func，遇到 retry_on 中的异常时按策略退避重试。

    重试耗尽后抛出最后一次异常；不在 retry_on 中的异常立即向上抛出。
    """

    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            if attempt + 1 >= attempts:
                LOGGER.warning("%s 失败，已重试 %d 次：%s", description, attempt, exc)
                raise
            delay = policy.delay_for(attempt)
            LOGGER.info("%s 失败（第 %d 次），%.1f 秒后重试：%s", description, attempt + 1, delay, exc)
            sleep(delay)

    # 理论上不会执行到此处
    raise RuntimeError("retry loop exited unexpectedly")

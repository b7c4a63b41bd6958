"""项目内使用的自定义异常定义。"""


class CollageAutomationError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(CollageAutomationError):
    """配置不合法时抛出。"""


class ProcessingAborted(CollageAutomationError):
    """任务被用户中断时抛出。"""


class ValidationError(CollageAutomationError):
    """传入拼图的候选图数量不足。仅影响当前一次合成。"""


class ClassificationError(CollageAutomationError):
    """图片识别服务调用失败（可重试）。"""


class SelectionInsufficientError(CollageAutomationError):
    """文件夹内合格候选图不足，属于预期结果，文件夹标记为 skipped。"""

    def __init__(self, single_count: int, dual_count: int) -> None:
        super().__init__(f"候选图不足（单人: {single_count}, 双人: {dual_count}）")
        self.single_count = single_count
        self.dual_count = dual_count


class CompositionError(CollageAutomationError):
    """绘制或编码拼图时出现意外错误。"""


class ExternalServiceError(CollageAutomationError):
    """文案生成等外部服务失败，调用方应降级处理。"""


class ServiceBusyError(ExternalServiceError):
    """外部服务限流或暂时不可用，可重试。"""


class StateTransitionError(CollageAutomationError):
    """文件夹任务的状态迁移不合法。"""


class SessionBusyError(CollageAutomationError):
    """批处理运行期间不允许重新生成单个条目。"""

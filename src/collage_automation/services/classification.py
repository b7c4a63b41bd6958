"""图片识别协作方：判断人数、是否拼图、水印位置。"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from google.genai import types
from PIL import Image
from pydantic import BaseModel, ValidationError as PydanticValidationError

from collage_automation.core.config import AIConfig
from collage_automation.core.exceptions import ClassificationError, ExternalServiceError
from collage_automation.core.models import DefectBox
from collage_automation.services.gemini import (
    create_client,
    image_to_jpeg_bytes,
    parse_json_payload,
    translate_api_error,
)

LOGGER = logging.getLogger(__name__)

CLASSIFICATION_PROMPT = """
Analyze image for fashion e-commerce.
1. isModel: Is there at least one human model? (boolean)
2. personCount: EXACT number of distinct human bodies/faces visible.
   - If there are TWO separate people (e.g. a couple, or two models standing next to each other), return 2.
   - If it's a mirror selfie of 1 person, return 1.
   - If it's one person in multiple poses (collage), return the count of figures.
3. isCollage: Is this image a collage/grid? (boolean)
4. logo: visible text watermark/logo location, coordinates in 0-1000 relative to the image.
"""


@dataclass(slots=True)
class ClassificationResult:
    """识别服务返回的单图分析结果。"""

    has_subject: bool
    subject_count: int
    is_multi_panel: bool = False
    defect: DefectBox = field(default_factory=DefectBox)

    @classmethod
    def default(cls) -> "ClassificationResult":
        """未配置凭据或关闭 AI 时的确定性结果：单人、无水印。"""

        return cls(has_subject=True, subject_count=1)

    @classmethod
    def no_subject(cls) -> "ClassificationResult":
        """重试耗尽后的保守结果，宁可少选也不混入坏图。"""

        return cls(has_subject=False, subject_count=0)


class LogoSchema(BaseModel):
    hasLogo: bool = False
    xmin: int = 0
    ymin: int = 0
    xmax: int = 0
    ymax: int = 0


class ImageAnalysisSchema(BaseModel):
    isModel: bool = False
    personCount: Optional[int] = None
    isCollage: bool = False
    logo: Optional[LogoSchema] = None

    def to_result(self) -> ClassificationResult:
        count = self.personCount if self.personCount is not None else (1 if self.isModel else 0)
        logo = self.logo or LogoSchema()
        return ClassificationResult(
            has_subject=self.isModel,
            subject_count=max(0, count),
            is_multi_panel=self.isCollage,
            defect=DefectBox.from_bounds(logo.hasLogo, logo.xmin, logo.ymin, logo.xmax, logo.ymax),
        )


class Classifier(ABC):
    """图片识别协作方接口。"""

    #: 为 True 时批处理在每次调用后等待固定间隔，以遵守服务限流
    rate_limited: bool = False

    @abstractmethod
    def classify(self, image: Image.Image) -> ClassificationResult:
        """分析单张图片；暂时性失败抛出 ClassificationError。"""


class StaticClassifier(Classifier):
    """不调用任何服务，总是返回确定性的默认结果。"""

    def classify(self, image: Image.Image) -> ClassificationResult:
        return ClassificationResult.default()


class GeminiClassifier(Classifier):
    """基于 Gemini 多模态模型的图片识别。"""

    rate_limited = True

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash") -> None:
        self.client = create_client(api_key)
        self.model = model

    def classify(self, image: Image.Image) -> ClassificationResult:
        parts = [
            types.Part.from_bytes(data=image_to_jpeg_bytes(image), mime_type="image/jpeg"),
            types.Part.from_text(text=CLASSIFICATION_PROMPT),
        ]
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=parts,
                config=types.GenerateContentConfig(
                    temperature=0.0,
                    response_mime_type="application/json",
                    response_schema=ImageAnalysisSchema,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            raise ClassificationError(str(translate_api_error(exc))) from exc

        try:
            payload = parse_json_payload(response.text or "")
            return ImageAnalysisSchema.model_validate(payload).to_result()
        except (ExternalServiceError, PydanticValidationError) as exc:
            raise ClassificationError(f"识别结果无法解析: {exc}") from exc


def build_classifier(config: AIConfig) -> Classifier:
    """根据配置选择识别实现；无凭据时降级为确定性默认结果。"""

    if not config.enabled:
        return StaticClassifier()
    if not config.has_credentials:
        LOGGER.warning("未配置 API Key，识别服务降级为默认结果（单人、无水印）")
        return StaticClassifier()
    assert config.api_key is not None
    return GeminiClassifier(config.api_key, model=config.model)

"""环节九：测试外部服务封装、重试、配置与输出管理。"""

from __future__ import annotations

import csv
import io
from pathlib import Path

import pytest
from PIL import Image

from collage_automation.core.config import AIConfig, CompositionConfig, OutputConfig, RetryPolicy, load_api_key
from collage_automation.core.exceptions import (
    ExternalServiceError,
    InvalidConfigurationError,
    ServiceBusyError,
)
from collage_automation.core.models import FolderOutcome
from collage_automation.core.output_manager import OutputManager, encode_png
from collage_automation.core.report import HEADER, render_csv_report
from collage_automation.services.captioning import build_captioner, normalize_hooks
from collage_automation.services.classification import (
    ImageAnalysisSchema,
    StaticClassifier,
    build_classifier,
)
from collage_automation.services.gemini import image_to_jpeg_bytes, parse_json_payload, translate_api_error
from collage_automation.utils.colors import parse_hex_color, with_opacity
from collage_automation.utils.retry import call_with_retry


def test_build_classifier_without_key_is_static() -> None:
    classifier = build_classifier(AIConfig(enabled=True, api_key=None))

    assert isinstance(classifier, StaticClassifier)
    result = classifier.classify(Image.new("RGB", (10, 10)))
    assert result.has_subject and result.subject_count == 1
    assert not result.defect.is_usable


def test_build_captioner_without_key_is_none() -> None:
    assert build_captioner(AIConfig(enabled=True, api_key=None)) is None
    assert build_captioner(AIConfig(enabled=False, api_key="secret")) is None


def test_load_api_key_prefers_gemini_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", " g-key ")
    monkeypatch.setenv("API_KEY", "fallback")
    assert load_api_key() == "g-key"

    monkeypatch.delenv("GEMINI_API_KEY")
    assert load_api_key() == "fallback"

    monkeypatch.delenv("API_KEY")
    assert load_api_key() is None


def test_parse_json_payload_strips_code_fences() -> None:
    assert parse_json_payload('```json\n{"isModel": true}\n```') == {"isModel": True}
    assert parse_json_payload('["a", "b"]') == ["a", "b"]

    with pytest.raises(ExternalServiceError):
        parse_json_payload("")
    with pytest.raises(ExternalServiceError):
        parse_json_payload("not json")


def test_analysis_schema_maps_to_result() -> None:
    payload = {
        "isModel": True,
        "personCount": 2,
        "isCollage": False,
        "logo": {"hasLogo": True, "xmin": -20, "ymin": 100, "xmax": 1500, "ymax": 300},
    }

    result = ImageAnalysisSchema.model_validate(payload).to_result()

    assert result.has_subject
    assert result.subject_count == 2
    assert (result.defect.xmin, result.defect.xmax) == (0, 1000)
    assert result.defect.is_usable


def test_analysis_schema_defaults_person_count_from_is_model() -> None:
    assert ImageAnalysisSchema.model_validate({"isModel": True}).to_result().subject_count == 1
    assert ImageAnalysisSchema.model_validate({"isModel": False}).to_result().subject_count == 0


def test_translate_api_error_classifies_quota_messages() -> None:
    assert isinstance(translate_api_error(RuntimeError("429 RESOURCE_EXHAUSTED quota")), ServiceBusyError)
    busy = translate_api_error(RuntimeError("invalid argument"))
    assert isinstance(busy, ExternalServiceError) and not isinstance(busy, ServiceBusyError)


def test_image_upload_is_downscaled() -> None:
    payload = image_to_jpeg_bytes(Image.new("RGBA", (3000, 1000), (0, 0, 0, 0)))

    with Image.open(io.BytesIO(payload)) as uploaded:
        assert uploaded.format == "JPEG"
        assert max(uploaded.size) == 1536


def test_normalize_hooks() -> None:
    assert normalize_hooks([" one ", "", 3, "two"]) == ["one", "two"]
    with pytest.raises(ExternalServiceError):
        normalize_hooks({"hooks": []})
    with pytest.raises(ExternalServiceError):
        normalize_hooks([])


def test_retry_policy_delays_are_capped() -> None:
    policy = RetryPolicy(max_attempts=6, base_delay=15.0, multiplier=2.0, max_delay=120.0)
    assert [policy.delay_for(i) for i in range(5)] == [15.0, 30.0, 60.0, 120.0, 120.0]


def test_call_with_retry_reraises_after_exhaustion() -> None:
    sleeps: list[float] = []
    attempts = {"count": 0}

    def always_busy() -> str:
        attempts["count"] += 1
        raise ServiceBusyError("busy")

    with pytest.raises(ServiceBusyError):
        call_with_retry(always_busy, RetryPolicy(max_attempts=3, base_delay=1.0), retry_on=(ServiceBusyError,), sleep=sleeps.append)

    assert attempts["count"] == 3
    assert sleeps == [1.0, 2.0]


def test_call_with_retry_does_not_retry_other_errors() -> None:
    sleeps: list[float] = []

    def broken() -> str:
        raise ValueError("boom")

    with pytest.raises(ValueError):
        call_with_retry(broken, RetryPolicy(), retry_on=(ServiceBusyError,), sleep=sleeps.append)
    assert sleeps == []


def test_composition_config_validation() -> None:
    with pytest.raises(InvalidConfigurationError):
        CompositionConfig(gap_px=-1).validate()
    with pytest.raises(InvalidConfigurationError):
        CompositionConfig(background_color="blue").validate()

    labelled = CompositionConfig().with_label("Set 3")
    assert labelled.global_label == "Set 3"


@pytest.mark.parametrize(
    ("strategy", "expected_names"),
    [
        ("rename", {"a.png", "a_1.png"}),
        ("overwrite", {"a.png"}),
        ("skip", {"a.png"}),
    ],
)
def test_output_manager_conflict_strategies(tmp_path: Path, strategy: str, expected_names: set[str]) -> None:
    manager = OutputManager(OutputConfig(output_dir=tmp_path, conflict_strategy=strategy))
    payload = encode_png(Image.new("RGB", (4, 4), "red"))

    first = manager.write_bytes(Path("a.png"), payload)
    second = manager.write_bytes(Path("a.png"), b"second")

    assert first == tmp_path.resolve() / "a.png"
    assert {p.name for p in tmp_path.iterdir()} == expected_names
    if strategy == "skip":
        assert second is None
        assert (tmp_path / "a.png").read_bytes() == payload
    if strategy == "overwrite":
        assert (tmp_path / "a.png").read_bytes() == b"second"


def test_output_manager_rejects_unknown_strategy(tmp_path: Path) -> None:
    with pytest.raises(InvalidConfigurationError):
        OutputManager(OutputConfig(output_dir=tmp_path, conflict_strategy="merge"))


def test_csv_report_lists_every_outcome() -> None:
    text = render_csv_report(
        [
            FolderOutcome("A", "done", "2x2", "Set 1", "A_Set1"),
            FolderOutcome("B", "skipped", message="候选图不足"),
        ]
    )

    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0] == HEADER
    assert rows[1] == ["A", "done", "2x2", "Set 1", "A_Set1", ""]
    assert rows[2][1] == "skipped"


def test_color_helpers() -> None:
    assert parse_hex_color("#fff") == (255, 255, 255)
    assert parse_hex_color("1e90ff") == (30, 144, 255)
    assert with_opacity((0, 0, 0), 0.6) == (0, 0, 0, 153)
    with pytest.raises(InvalidConfigurationError):
        with_opacity((0, 0, 0), 1.5)

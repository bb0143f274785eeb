import json
from types import SimpleNamespace

import pytest

from conftest import make_ad, make_aad
from devicerecon.llm import (
    GuidanceService,
    LLMConfig,
    _extract_json_payload,
    annotate_result,
    annotate_state,
    set_structured_client_for_testing,
)
from devicerecon.models import EnrollmentState
from devicerecon.reconciler import reconcile


class _ContentObject:
    def __init__(self, text: str):
        self.text = text


class _MessageObject:
    def __init__(self, text: str):
        self.content = [_ContentObject(text)]


class _OutputWithContent:
    def __init__(self, text: str):
        self.content = [_ContentObject(text)]


class _OutputWithMessage:
    def __init__(self, text: str):
        self.message = _MessageObject(text)


@pytest.mark.parametrize(
    "response",
    [
        SimpleNamespace(output=[_OutputWithContent('{"foo": 1}')]),
        SimpleNamespace(outputs=[_OutputWithContent('{"foo": 1}')]),
        SimpleNamespace(output=[_OutputWithMessage('{"foo": 1}')]),
        SimpleNamespace(choices=[_OutputWithContent('{"foo": 1}')]),
    ],
)
def test_extract_json_payload_handles_various_sdk_shapes(response):
    payload = _extract_json_payload(response)
    assert payload == {"foo": 1}


def test_extract_json_payload_ignores_non_json_blocks():
    response = SimpleNamespace(
        outputs=[
            _OutputWithContent("not-json"),
            _OutputWithContent(json.dumps({"foo": "bar"})),
        ]
    )

    payload = _extract_json_payload(response)
    assert payload == {"foo": "bar"}


def test_extract_json_payload_returns_none_without_outputs():
    assert _extract_json_payload(SimpleNamespace()) is None


def _unregistered_devices(count: int):
    authoritative = [make_ad(f"PC{i:02d}", f"G{i}") for i in range(count)]
    return list(reconcile(authoritative, [], []).devices)


def test_annotate_state_uses_stubbed_client():
    annotation = annotate_state(EnrollmentState.UNREGISTERED, _unregistered_devices(3))

    assert annotation.severity == "high"
    assert annotation.explanation == "3 devices in UNREGISTERED."
    assert annotation.source == "openai"
    assert annotation.confidence == 0.5


def test_annotate_state_falls_back_when_summary_missing():
    class _NoSummaryClient:
        def request(self, *, messages, schema):  # type: ignore[override]
            return {"severity": "low", "actions": []}

    set_structured_client_for_testing(_NoSummaryClient())
    try:
        annotation = annotate_state(EnrollmentState.UNREGISTERED, _unregistered_devices(2))
    finally:
        set_structured_client_for_testing(None)

    assert annotation.source == "rule"
    assert annotation.severity == "high"
    assert annotation.explanation.endswith("(2 devices).")
    assert "directory synchronisation" in annotation.explanation


def test_annotate_state_falls_back_on_invalid_severity():
    class _BadSeverityClient:
        def request(self, *, messages, schema):  # type: ignore[override]
            return {"severity": "urgent", "summary": "Fix it."}

    service = GuidanceService(config=LLMConfig("m", 0.0, None), client=_BadSeverityClient())
    annotation = service.annotate(EnrollmentState.REGISTERED_NOT_ENROLLED, [])

    assert annotation.source == "rule"
    assert annotation.severity == "medium"


def test_service_without_client_uses_rules():
    service = GuidanceService(config=LLMConfig("m", 0.0, None), client=None)

    annotation = service.annotate(EnrollmentState.ENROLLED_WITHOUT_CLOUD_RECORD, [])

    assert annotation.source == "rule"
    assert "unexpected" in annotation.explanation


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("DEVRECON_OPENAI_MODEL", "gpt-test")
    monkeypatch.setenv("DEVRECON_OPENAI_TEMPERATURE", "0.7")
    monkeypatch.delenv("DEVRECON_OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    config = LLMConfig.from_env()

    assert config == LLMConfig(model="gpt-test", temperature=0.7, api_key="sk-test")


def test_annotate_result_skips_healthy_devices():
    result = reconcile(
        [make_ad("PC01", "G1"), make_ad("PC02", "G2")],
        [make_aad("PC02", "G2")],
        [],
    )
    groups = {state: result.by_state(state) for state in EnrollmentState}

    annotations = annotate_result(groups, use_llm=False)

    assert set(annotations) == {
        EnrollmentState.UNREGISTERED,
        EnrollmentState.REGISTERED_NOT_ENROLLED,
    }
    assert all(annotation.source == "rule" for annotation in annotations.values())

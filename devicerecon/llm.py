"""LLM-backed remediation guidance for devices missing registration or enrollment."""
from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from functools import lru_cache
from typing import Any, Dict, Iterable, Sequence

from .models import EnrollmentState, ReconciledDevice, StateAnnotation

LOGGER = logging.getLogger(__name__)

SAMPLE_SIZE = 20

STATE_GUIDANCE = {
    EnrollmentState.UNREGISTERED: (
        "Devices are not hybrid joined. Troubleshoot directory synchronisation "
        "from on-premises to the cloud directory.",
        "high",
        (
            "Confirm the computer OU is in scope for directory sync",
            "Check the device registration scheduled task on the client",
        ),
    ),
    EnrollmentState.REGISTERED_NOT_ENROLLED: (
        "Devices are registered in the cloud directory but not enrolled in MDM. "
        "Troubleshoot automatic enrollment.",
        "medium",
        (
            "Verify the MDM auto-enrollment policy applies to the device",
            "Review the enrollment event log on the client",
        ),
    ),
    EnrollmentState.ENROLLED_WITHOUT_CLOUD_RECORD: (
        "Devices are enrolled in MDM without a cloud directory record. "
        "This is unexpected and needs investigation.",
        "high",
        ("Compare the MDM device identifier with the directory object",),
    ),
}

_VALID_SEVERITIES = {"low", "medium", "high"}

_JSON_SCHEMA = {
    "name": "device_enrollment_guidance",
    "schema": {
        "type": "object",
        "properties": {
            "severity": {
                "type": "string",
                "description": "Operational priority: low, medium or high.",
            },
            "summary": {
                "type": "string",
                "description": "Human readable explanation (1-2 sentences).",
            },
            "actions": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Ordered troubleshooting steps for administrators.",
            },
            "confidence": {
                "type": "number",
                "description": "Confidence score between 0 and 1.",
            },
        },
        "required": ["severity", "summary"],
        "additionalProperties": False,
    },
}


@dataclass(frozen=True)
class LLMConfig:
    """Runtime configuration for the LLM integration."""

    model: str
    temperature: float
    api_key: str | None

    @classmethod
    def from_env(cls) -> "LLMConfig":
        model = os.getenv("DEVRECON_OPENAI_MODEL", "gpt-4o-mini")
        temperature = float(os.getenv("DEVRECON_OPENAI_TEMPERATURE", "0.2"))
        api_key = os.getenv("DEVRECON_OPENAI_API_KEY") or os.getenv("OPENAI_API_KEY")
        return cls(model=model, temperature=temperature, api_key=api_key)


def _load_openai_client(api_key: str | None):
    if not api_key:
        return None

    from openai import OpenAI

    return OpenAI(api_key=api_key)


def _serialise_device(device: ReconciledDevice) -> Dict[str, Any]:
    return {
        "name": device.name,
        "enabled": device.enabled,
        "last_logon_date": device.last_logon_date.isoformat() if device.last_logon_date else None,
        "aad_os_version": device.aad_os_version,
        "mdm_os_version": device.mdm_os_version,
        "mdm_user_principal_name": device.mdm_user_principal_name,
    }


def _compose_user_payload(
    state: EnrollmentState, devices: Sequence[ReconciledDevice]
) -> dict[str, Any]:
    return {
        "state": state.value,
        "device_count": len(devices),
        "disabled_count": sum(1 for device in devices if not device.enabled),
        "sample": [_serialise_device(device) for device in devices[:SAMPLE_SIZE]],
    }


def _fallback_annotation(state: EnrollmentState, devices: Sequence[ReconciledDevice]) -> StateAnnotation:
    message, severity, actions = STATE_GUIDANCE.get(
        state,
        ("Unexpected enrollment state. Escalate to the endpoint team.", "medium", ()),
    )
    explanation = f"{message} ({len(devices)} devices)."
    return StateAnnotation(explanation=explanation, severity=severity, actions=actions, source="rule")


class GuidanceService:
    """LLM-powered agent that explains groups of unhealthy devices."""

    def __init__(self, config: LLMConfig, client: Any | None) -> None:
        self._config = config
        self._client = client

    @classmethod
    def from_env(cls) -> "GuidanceService":
        config = LLMConfig.from_env()
        client = _load_openai_client(config.api_key)
        if client is None:
            return cls(config=config, client=None)
        return cls(config=config, client=OpenAIStructuredClient(client, config))

    def annotate(self, state: EnrollmentState, devices: Sequence[ReconciledDevice]) -> StateAnnotation:
        if self._client is None:
            return _fallback_annotation(state, devices)

        payload = _compose_user_payload(state, devices)
        messages = [
            {
                "role": "system",
                "content": "You are a senior endpoint administrator specialised in hybrid join and MDM enrollment.",
            },
            {
                "role": "user",
                "content": [
                    {
                        "type": "text",
                        "text": (
                            "Explain why these devices are in the given enrollment state and how to fix it. "
                            "Return JSON that aligns with the provided schema."
                        ),
                    },
                    {"type": "text", "text": json.dumps(payload, indent=2)},
                ],
            },
        ]

        try:
            response = self._client.request(messages=messages, schema=_JSON_SCHEMA)
        except Exception as exc:  # pragma: no cover - network/runtime failure
            LOGGER.warning("LLM guidance failed; using rule-based fallback: %s", exc)
            return _fallback_annotation(state, devices)

        if not response:
            return _fallback_annotation(state, devices)

        severity = str(response.get("severity", "")).lower()
        summary = response.get("summary")
        if severity not in _VALID_SEVERITIES or not summary:
            return _fallback_annotation(state, devices)

        actions = response.get("actions") or []
        if isinstance(actions, Iterable) and not isinstance(actions, str):
            ordered_actions = [a for a in actions if isinstance(a, str)]
        else:
            ordered_actions = []

        confidence = response.get("confidence")
        return StateAnnotation(
            explanation=str(summary).strip(),
            severity=severity,
            actions=tuple(ordered_actions),
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            source="openai",
            raw_response=response,
        )


class OpenAIStructuredClient:
    """Thin adapter over the OpenAI Responses API returning parsed JSON."""

    def __init__(self, client: Any, config: LLMConfig) -> None:
        self._client = client
        self._config = config

    def request(self, *, messages, schema) -> Dict[str, Any] | None:
        response = self._client.responses.create(
            model=self._config.model,
            temperature=self._config.temperature,
            input=messages,
            text={"format": {"type": "json_schema", **schema}},
        )
        return _extract_json_payload(response)


def _extract_json_payload(response: Any) -> Dict[str, Any] | None:
    """Normalise the OpenAI client response into a Python dictionary."""

    outputs = getattr(response, "output", None) or getattr(response, "outputs", None)
    if not outputs:
        # Older SDKs use `choices`
        outputs = getattr(response, "choices", None)

    if not outputs:
        return None

    for block in outputs:
        content = getattr(block, "content", None)
        if content is None and hasattr(block, "message"):
            content = getattr(block.message, "content", None)
        if isinstance(content, str):
            texts = [content]
        elif isinstance(content, list):
            texts = [_block_text(item) for item in content]
        else:
            texts = [getattr(block, "text", None)]

        for text in texts:
            if not text:
                continue
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                return payload

    LOGGER.warning("LLM response could not be parsed as JSON. Falling back to rules.")
    return None


def _block_text(item: Any) -> str | None:
    if isinstance(item, dict):
        return item.get("text")
    return getattr(item, "text", None)


_TEST_CLIENT: Any | None = None


def set_structured_client_for_testing(client: Any | None) -> None:
    """Route guidance requests through ``client`` instead of OpenAI."""

    global _TEST_CLIENT
    _TEST_CLIENT = client
    _service.cache_clear()


@lru_cache(maxsize=1)
def _service() -> GuidanceService:
    if _TEST_CLIENT is not None:
        return GuidanceService(config=LLMConfig.from_env(), client=_TEST_CLIENT)
    return GuidanceService.from_env()


def annotate_state(state: EnrollmentState, devices: Sequence[ReconciledDevice]) -> StateAnnotation:
    """Return an explanation, severity and actions for a group of devices."""

    return _service().annotate(state, devices)


def annotate_result(
    groups: Dict[EnrollmentState, Sequence[ReconciledDevice]],
    *,
    use_llm: bool = True,
) -> Dict[EnrollmentState, StateAnnotation]:
    annotations: Dict[EnrollmentState, StateAnnotation] = {}
    for state, devices in groups.items():
        if state is EnrollmentState.HEALTHY or not devices:
            continue
        annotations[state] = (
            annotate_state(state, devices) if use_llm else _fallback_annotation(state, devices)
        )
    return annotations

import json
import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from devicerecon import llm
from devicerecon.models import (
    AuthoritativeDeviceRecord,
    CloudDirectoryRecord,
    ManagedDeviceRecord,
)


@pytest.fixture(autouse=True)
def stubbed_llm_client():
    """Provide deterministic LLM outputs for tests without network access."""

    class _StubClient:
        _SEVERITY_MAP = {
            "UNREGISTERED": "high",
            "ENROLLED_WITHOUT_CLOUD_RECORD": "high",
            "REGISTERED_NOT_ENROLLED": "medium",
        }

        def request(self, *, messages, schema):  # type: ignore[override]
            payload = self._extract_payload(messages)
            schema_name = schema.get("name")
            if schema_name != "device_enrollment_guidance":
                raise AssertionError(f"Unexpected schema requested: {schema_name!r}")
            state = payload.get("state", "")
            return {
                "severity": self._SEVERITY_MAP.get(state, "medium"),
                "summary": f"{payload.get('device_count', 0)} devices in {state}.",
                "actions": ["Review automated reconciliation output"],
                "confidence": 0.5,
            }

        def _extract_payload(self, messages):
            for block in reversed(messages):
                content = block.get("content")
                if not isinstance(content, list):
                    continue
                for item in reversed(content):
                    if not isinstance(item, dict):
                        continue
                    if item.get("type") not in {"text", "input_text"}:
                        continue
                    try:
                        return json.loads(item.get("text", ""))
                    except json.JSONDecodeError:
                        continue
            return {}

    stub = _StubClient()
    llm.set_structured_client_for_testing(stub)
    yield
    llm.set_structured_client_for_testing(None)


def make_ad(name: str, guid: str | None, *, enabled: bool = True) -> AuthoritativeDeviceRecord:
    return AuthoritativeDeviceRecord(
        name=name,
        last_logon_date=datetime(2024, 3, 29, 8, 15),
        enabled=enabled,
        canonical_id=guid,
    )


def make_aad(display_name: str, key: str | None, *, os_version: str = "10.0.19045") -> CloudDirectoryRecord:
    return CloudDirectoryRecord(
        display_name=display_name,
        os_type="Windows",
        os_version=os_version,
        last_dir_sync_time=datetime(2024, 3, 28, 22, 0),
        approximate_last_logon_timestamp=None,
        join_key=key,
    )


def make_mdm(device_name: str, key: str | None, *, upn: str = "user@example.org") -> ManagedDeviceRecord:
    return ManagedDeviceRecord(
        device_name=device_name,
        os_version="10.0.19045.4170",
        last_sync_date_time=datetime(2024, 3, 29, 6, 30),
        user_principal_name=upn,
        join_key=key,
    )

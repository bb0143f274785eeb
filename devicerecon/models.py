"""Data models used by the device reconciliation workflow."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

AAD_SENTINEL = "Not AAD Registered"
MDM_SENTINEL = "Not MDM Enrolled"


class EnrollmentState(str, Enum):
    """Enrollment health of a device, derived from which sources matched."""

    UNREGISTERED = "UNREGISTERED"
    ENROLLED_WITHOUT_CLOUD_RECORD = "ENROLLED_WITHOUT_CLOUD_RECORD"
    REGISTERED_NOT_ENROLLED = "REGISTERED_NOT_ENROLLED"
    HEALTHY = "HEALTHY"


# (cloud match present, managed match present) -> state
STATE_TABLE = {
    (False, False): EnrollmentState.UNREGISTERED,
    (False, True): EnrollmentState.ENROLLED_WITHOUT_CLOUD_RECORD,
    (True, False): EnrollmentState.REGISTERED_NOT_ENROLLED,
    (True, True): EnrollmentState.HEALTHY,
}


@dataclass(frozen=True, slots=True)
class AuthoritativeDeviceRecord:
    """One computer object from the on-premises directory."""

    name: str
    last_logon_date: Optional[datetime]
    enabled: bool
    canonical_id: Optional[str]


@dataclass(frozen=True, slots=True)
class CloudDirectoryRecord:
    display_name: str
    os_type: str
    os_version: str
    last_dir_sync_time: Optional[datetime]
    approximate_last_logon_timestamp: Optional[datetime]
    join_key: Optional[str]


@dataclass(frozen=True, slots=True)
class ManagedDeviceRecord:
    device_name: str
    os_version: str
    last_sync_date_time: Optional[datetime]
    user_principal_name: str
    join_key: Optional[str]


class DataQualityError(ValueError):
    """An authoritative record cannot be reconciled as delivered."""

    def __init__(self, record: AuthoritativeDeviceRecord, reason: str) -> None:
        super().__init__(f"{record.name or '<unnamed>'}: {reason}")
        self.record = record
        self.reason = reason


CLOUD_FIELDS = (
    "aad_display_name",
    "aad_os_type",
    "aad_os_version",
    "aad_last_dir_sync_time",
    "aad_approximate_last_logon",
)

MANAGED_FIELDS = (
    "mdm_device_name",
    "mdm_os_version",
    "mdm_last_sync_date_time",
    "mdm_user_principal_name",
)

FIELD_ORDER = ("name", "last_logon_date", "enabled", *CLOUD_FIELDS, *MANAGED_FIELDS, "canonical_id")


@dataclass(frozen=True, slots=True)
class ReconciledDevice:
    name: str
    last_logon_date: Optional[datetime]
    enabled: bool
    aad_display_name: str
    aad_os_type: str
    aad_os_version: str
    aad_last_dir_sync_time: str
    aad_approximate_last_logon: str
    mdm_device_name: str
    mdm_os_version: str
    mdm_last_sync_date_time: str
    mdm_user_principal_name: str
    canonical_id: str

    @property
    def aad_registered(self) -> bool:
        return any(getattr(self, name) != AAD_SENTINEL for name in CLOUD_FIELDS)

    @property
    def mdm_enrolled(self) -> bool:
        return any(getattr(self, name) != MDM_SENTINEL for name in MANAGED_FIELDS)

    @property
    def state(self) -> EnrollmentState:
        return STATE_TABLE[(self.aad_registered, self.mdm_enrolled)]

    def as_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "last_logon_date": self.last_logon_date.isoformat() if self.last_logon_date else "",
            "enabled": "True" if self.enabled else "False",
            **{name: getattr(self, name) for name in CLOUD_FIELDS},
            **{name: getattr(self, name) for name in MANAGED_FIELDS},
            "canonical_id": self.canonical_id,
        }

    def as_json(self) -> dict[str, object]:
        return {
            "name": self.name,
            "last_logon_date": self.last_logon_date.isoformat() if self.last_logon_date else None,
            "enabled": self.enabled,
            "aad": {name[len("aad_"):]: getattr(self, name) for name in CLOUD_FIELDS},
            "mdm": {name[len("mdm_"):]: getattr(self, name) for name in MANAGED_FIELDS},
            "canonical_id": self.canonical_id,
            "state": self.state.value,
        }


@dataclass(slots=True)
class StateAnnotation:
    """Structured remediation guidance for one group of devices."""

    explanation: str
    severity: str
    actions: Tuple[str, ...] = ()
    confidence: Optional[float] = None
    source: str = "openai"
    raw_response: Dict[str, object] | None = None

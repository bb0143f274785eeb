"""Deterministic enrollment classification and field coalescing."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from .models import (
    AAD_SENTINEL,
    MDM_SENTINEL,
    STATE_TABLE,
    CloudDirectoryRecord,
    EnrollmentState,
    ManagedDeviceRecord,
    ReconciledDevice,
)

SEPARATOR = ", "


def classify(
    cloud_matches: Sequence[CloudDirectoryRecord],
    managed_matches: Sequence[ManagedDeviceRecord],
) -> EnrollmentState:
    return STATE_TABLE[(bool(cloud_matches), bool(managed_matches))]


def state_of(device: ReconciledDevice) -> EnrollmentState:
    """Recover the state of an emitted row from its sentinel placeholders."""

    return STATE_TABLE[(device.aad_registered, device.mdm_enrolled)]


def render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def coalesce(records: Iterable[Any], field: Callable[[Any], Any], *, sentinel: str) -> str:
    """Join one field across every matched record, in source order.

    An empty match list yields the sentinel. Duplicates are kept so that
    ambiguous matches stay visible in the report.
    """

    values = [render_value(field(record)) for record in records]
    if not values:
        return sentinel
    return SEPARATOR.join(values)


def coalesce_cloud(records: Sequence[CloudDirectoryRecord]) -> dict[str, str]:
    return {
        "aad_display_name": coalesce(records, lambda r: r.display_name, sentinel=AAD_SENTINEL),
        "aad_os_type": coalesce(records, lambda r: r.os_type, sentinel=AAD_SENTINEL),
        "aad_os_version": coalesce(records, lambda r: r.os_version, sentinel=AAD_SENTINEL),
        "aad_last_dir_sync_time": coalesce(
            records, lambda r: r.last_dir_sync_time, sentinel=AAD_SENTINEL
        ),
        "aad_approximate_last_logon": coalesce(
            records, lambda r: r.approximate_last_logon_timestamp, sentinel=AAD_SENTINEL
        ),
    }


def coalesce_managed(records: Sequence[ManagedDeviceRecord]) -> dict[str, str]:
    return {
        "mdm_device_name": coalesce(records, lambda r: r.device_name, sentinel=MDM_SENTINEL),
        "mdm_os_version": coalesce(records, lambda r: r.os_version, sentinel=MDM_SENTINEL),
        "mdm_last_sync_date_time": coalesce(
            records, lambda r: r.last_sync_date_time, sentinel=MDM_SENTINEL
        ),
        "mdm_user_principal_name": coalesce(
            records, lambda r: r.user_principal_name, sentinel=MDM_SENTINEL
        ),
    }

"""Rendering utilities for machine-readable and human-readable outputs."""
from __future__ import annotations

import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Iterable, Mapping

from .models import FIELD_ORDER, DataQualityError, EnrollmentState, ReconciledDevice, StateAnnotation
from .reconciler import ReconciliationResult

COLUMN_TITLES = {
    "name": "Name",
    "last_logon_date": "LastLogonDate",
    "enabled": "Enabled",
    "aad_display_name": "AAD DisplayName",
    "aad_os_type": "AAD DeviceOSType",
    "aad_os_version": "AAD DeviceOSVersion",
    "aad_last_dir_sync_time": "AAD LastDirSyncTime",
    "aad_approximate_last_logon": "AAD ApproximateLastLogonTimeStamp",
    "mdm_device_name": "MDM DeviceName",
    "mdm_os_version": "MDM OSVersion",
    "mdm_last_sync_date_time": "MDM LastSyncDateTime",
    "mdm_user_principal_name": "MDM UserPrincipalName",
    "canonical_id": "ObjectGUID",
}

STATE_ORDER = (
    EnrollmentState.HEALTHY,
    EnrollmentState.REGISTERED_NOT_ENROLLED,
    EnrollmentState.UNREGISTERED,
    EnrollmentState.ENROLLED_WITHOUT_CLOUD_RECORD,
)


def report_basename(prefix: str, generated: datetime) -> str:
    return f"{prefix}_{generated:%Y%m%d-%H%M%S}"


def write_csv(path: Path, devices: Iterable[ReconciledDevice]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(FIELD_ORDER))
        writer.writerow(COLUMN_TITLES)
        for device in devices:
            writer.writerow(device.as_dict())


def write_json(path: Path, devices: Iterable[ReconciledDevice]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [device.as_json() for device in devices]
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)


def write_defects(path: Path, defects: Iterable[DataQualityError]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(["Name", "Enabled", "Reason"])
        for defect in defects:
            writer.writerow([defect.record.name, defect.record.enabled, defect.reason])


def _escape(text: str) -> str:
    return text.replace("|", "\\|")


def generate_markdown_summary(
    result: ReconciliationResult,
    annotations: Mapping[EnrollmentState, StateAnnotation],
    *,
    cloud_total: int,
    managed_total: int,
    generated: datetime | None = None,
) -> str:
    counts = result.counts()
    generated = generated or datetime.now()

    lines = ["# Device Enrollment Reconciliation Report", ""]
    lines.append(f"Generated: {generated.isoformat(timespec='seconds')}")
    lines.append("")
    lines.append("## Overview")
    lines.append("")
    lines.append(f"- On-premises devices processed: **{result.authoritative_total}**")
    lines.append(f"- Cloud directory devices: **{cloud_total}**")
    lines.append(f"- MDM managed devices: **{managed_total}**")
    lines.append(f"- Devices reported: **{len(result.devices)}**")
    lines.append(f"- Defective records skipped: **{len(result.defects)}**")
    lines.append("")

    lines.append("## Devices by enrollment state")
    lines.append("")
    for state in STATE_ORDER:
        lines.append(f"- {state.value}: {counts.get(state, 0)}")
    lines.append("")

    if annotations:
        lines.append("## Remediation guidance")
        lines.append("")
        lines.append("| State | Devices | Severity | Explanation | Actions | Source |")
        lines.append("| --- | --- | --- | --- | --- | --- |")
        for state in STATE_ORDER:
            annotation = annotations.get(state)
            if annotation is None:
                continue
            lines.append(
                "| {state} | {count} | {severity} | {explanation} | {actions} | {source} |".format(
                    state=state.value,
                    count=counts.get(state, 0),
                    severity=annotation.severity.title(),
                    explanation=_escape(annotation.explanation),
                    actions=_escape("; ".join(annotation.actions)),
                    source=annotation.source,
                )
            )
        lines.append("")
    else:
        lines.append("All devices are registered and enrolled.")
        lines.append("")

    if result.defects:
        lines.append("## Defective records")
        lines.append("")
        for defect in result.defects:
            lines.append(f"- {_escape(defect.record.name or '<unnamed>')}: {defect.reason}")
        lines.append("")

    return "\n".join(lines)


def write_markdown(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        handle.write(content)

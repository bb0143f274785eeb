"""Identifier selection and loading of the three inventory exports."""
from __future__ import annotations

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, TypeVar

from .models import (
    AuthoritativeDeviceRecord,
    CloudDirectoryRecord,
    DataQualityError,
    ManagedDeviceRecord,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DATETIME_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d.%m.%Y %H:%M:%S",
    "%m/%d/%Y",
    "%d.%m.%Y",
)

_TRUE_VALUES = {"true", "yes", "1"}
_FALSE_VALUES = {"false", "no", "0"}

AUTHORITATIVE_COLUMNS = {"name", "last_logon_date", "enabled", "canonical_id"}
AD_COLUMNS = {"Name", "LastLogonDate", "Enabled", "ObjectGUID"}

CLOUD_COLUMNS = {
    "display_name",
    "os_type",
    "os_version",
    "last_dir_sync_time",
    "approximate_last_logon_timestamp",
    "join_key",
}
AAD_COLUMNS = {
    "DisplayName",
    "DeviceOSType",
    "DeviceOSVersion",
    "LastDirSyncTime",
    "ApproximateLastLogonTimeStamp",
    "DeviceId",
}

MANAGED_COLUMNS = {
    "device_name",
    "os_version",
    "last_sync_date_time",
    "user_principal_name",
    "join_key",
}
INTUNE_COLUMNS = {
    "deviceName",
    "osVersion",
    "lastSyncDateTime",
    "userPrincipalName",
    "azureADDeviceId",
}


class NormalizationError(RuntimeError):
    """Raised when an export or one of its values cannot be normalised."""


def canonical_id(record: AuthoritativeDeviceRecord) -> str:
    """Return the join key of an authoritative record.

    The identifier is selected, never transformed: the on-prem, cloud and
    managed identifiers are assumed to share one value space. A record with
    no usable identifier raises :class:`DataQualityError`.
    """

    value = record.canonical_id
    if value is None or not value.strip():
        raise DataQualityError(record, "missing canonical identifier")
    return value


def join_key(record: CloudDirectoryRecord | ManagedDeviceRecord) -> str | None:
    value = record.join_key
    if value is None or not value.strip():
        return None
    return value


def parse_datetime(raw: Any) -> datetime | None:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for pattern in DATETIME_FORMATS:
        try:
            return datetime.strptime(text, pattern)
        except ValueError:
            continue
    raise NormalizationError(f"Unrecognised timestamp format: {raw}")


def parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    text = "" if raw is None else str(raw).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise NormalizationError(f"Invalid boolean: {raw}")


def _text(raw: Any) -> str:
    return "" if raw is None else str(raw).strip()


def _identifier(raw: Any) -> str | None:
    # Selected verbatim; only the cell padding written by CSV exporters is removed.
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def normalise_authoritative(row: Mapping[str, Any]) -> AuthoritativeDeviceRecord:
    return AuthoritativeDeviceRecord(
        name=_text(row.get("name")),
        last_logon_date=parse_datetime(row.get("last_logon_date")),
        enabled=parse_bool(row.get("enabled")),
        canonical_id=_identifier(row.get("canonical_id")),
    )


def normalise_cloud(row: Mapping[str, Any]) -> CloudDirectoryRecord:
    return CloudDirectoryRecord(
        display_name=_text(row.get("display_name")),
        os_type=_text(row.get("os_type")),
        os_version=_text(row.get("os_version")),
        last_dir_sync_time=parse_datetime(row.get("last_dir_sync_time")),
        approximate_last_logon_timestamp=parse_datetime(
            row.get("approximate_last_logon_timestamp")
        ),
        join_key=_identifier(row.get("join_key")),
    )


def normalise_managed(row: Mapping[str, Any]) -> ManagedDeviceRecord:
    return ManagedDeviceRecord(
        device_name=_text(row.get("device_name")),
        os_version=_text(row.get("os_version")),
        last_sync_date_time=parse_datetime(row.get("last_sync_date_time")),
        user_principal_name=_text(row.get("user_principal_name")),
        join_key=_identifier(row.get("join_key")),
    )


def _transform_ad(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "name": row.get("Name"),
        "last_logon_date": row.get("LastLogonDate"),
        "enabled": row.get("Enabled"),
        "canonical_id": row.get("ObjectGUID"),
    }


def _transform_aad(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "display_name": row.get("DisplayName"),
        "os_type": row.get("DeviceOSType"),
        "os_version": row.get("DeviceOSVersion"),
        "last_dir_sync_time": row.get("LastDirSyncTime"),
        "approximate_last_logon_timestamp": row.get("ApproximateLastLogonTimeStamp"),
        "join_key": row.get("DeviceId"),
    }


def _transform_intune(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "device_name": row.get("deviceName"),
        "os_version": row.get("osVersion"),
        "last_sync_date_time": row.get("lastSyncDateTime"),
        "user_principal_name": row.get("userPrincipalName"),
        "join_key": row.get("azureADDeviceId"),
    }


def _sniff_delimiter(sample: str) -> str:
    """Detect a CSV delimiter, defaulting to comma when uncertain."""

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",;")
        return dialect.delimiter
    except csv.Error:
        return ";" if sample.count(";") > sample.count(",") else ","


def _read_rows(path: Path) -> tuple[set[str] | None, List[Mapping[str, Any]]]:
    """Return the column names and rows of a CSV or JSON export."""

    if path.suffix.lower() == ".json":
        with path.open(encoding="utf-8-sig") as handle:
            try:
                payload = json.load(handle)
            except json.JSONDecodeError as exc:
                raise NormalizationError(f"Invalid JSON in {path}: {exc}") from exc
        if isinstance(payload, dict):
            if "value" not in payload:
                raise NormalizationError(f"Expected a list of devices or a 'value' list in {path}")
            payload = payload["value"]
        if not isinstance(payload, list):
            raise NormalizationError(f"Expected a list of devices in {path}")
        if not all(isinstance(row, dict) for row in payload):
            raise NormalizationError(f"Every device in {path} must be a JSON object")
        if not payload:
            return None, []
        return set(payload[0]), payload

    with path.open(newline="", encoding="utf-8-sig") as handle:
        sample = handle.read(1024)
        handle.seek(0)
        reader = csv.DictReader(handle, delimiter=_sniff_delimiter(sample))
        rows = list(reader)
        headers = set(reader.fieldnames) if reader.fieldnames else None
    return headers, rows


def load_file(
    path: Path,
    *,
    schemas: Iterable[tuple[set[str], Callable[[Mapping[str, Any]], Mapping[str, Any]] | None]],
    normalise: Callable[[Mapping[str, Any]], T],
) -> List[T]:
    if not path.exists():
        raise FileNotFoundError(path)

    headers, rows = _read_rows(path)
    if headers is None:
        LOGGER.info("%s contains no devices", path)
        return []

    for columns, transform in schemas:
        if columns.issubset(headers):
            if transform is not None:
                rows = [transform(row) for row in rows]
            break
    else:
        raise NormalizationError(f"Missing expected columns in {path}")

    try:
        return [normalise(row) for row in rows]
    except NormalizationError as exc:
        raise NormalizationError(f"{path}: {exc}") from exc


def load_authoritative(path: Path) -> List[AuthoritativeDeviceRecord]:
    return load_file(
        path,
        schemas=((AUTHORITATIVE_COLUMNS, None), (AD_COLUMNS, _transform_ad)),
        normalise=normalise_authoritative,
    )


def load_cloud(path: Path) -> List[CloudDirectoryRecord]:
    return load_file(
        path,
        schemas=((CLOUD_COLUMNS, None), (AAD_COLUMNS, _transform_aad)),
        normalise=normalise_cloud,
    )


def load_managed(path: Path) -> List[ManagedDeviceRecord]:
    return load_file(
        path,
        schemas=((MANAGED_COLUMNS, None), (INTUNE_COLUMNS, _transform_intune)),
        normalise=normalise_managed,
    )


def load_sources(
    ad_path: Path, aad_path: Path, mdm_path: Path
) -> tuple[
    list[AuthoritativeDeviceRecord], list[CloudDirectoryRecord], list[ManagedDeviceRecord]
]:
    authoritative = load_authoritative(ad_path)
    cloud = load_cloud(aad_path)
    managed = load_managed(mdm_path)
    return authoritative, cloud, managed

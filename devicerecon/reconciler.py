"""Correlates the on-prem inventory with the cloud directory and MDM indexes."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .checks import classify, coalesce_cloud, coalesce_managed
from .matching import DeviceIndex, build_indexes
from .models import (
    AuthoritativeDeviceRecord,
    CloudDirectoryRecord,
    DataQualityError,
    EnrollmentState,
    ManagedDeviceRecord,
    ReconciledDevice,
)
from .normalization import canonical_id
from .progress import ProgressCallback, ProgressEvent, notify, percent_complete

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    devices: Tuple[ReconciledDevice, ...]
    defects: Tuple[DataQualityError, ...]
    authoritative_total: int

    def counts(self) -> Counter[EnrollmentState]:
        return Counter(device.state for device in self.devices)

    def by_state(self, state: EnrollmentState) -> list[ReconciledDevice]:
        return [device for device in self.devices if device.state is state]


def reconcile_device(
    record: AuthoritativeDeviceRecord,
    cloud_index: DeviceIndex[CloudDirectoryRecord],
    managed_index: DeviceIndex[ManagedDeviceRecord],
) -> ReconciledDevice:
    """Build the report row for one authoritative record.

    Raises :class:`DataQualityError` when the record has no usable identifier.
    """

    key = canonical_id(record)
    cloud_matches = cloud_index.lookup(key)
    managed_matches = managed_index.lookup(key)

    if len(cloud_matches) > 1 or len(managed_matches) > 1:
        LOGGER.debug(
            "Ambiguous match for %s (%s): %d cloud, %d managed records",
            record.name,
            key,
            len(cloud_matches),
            len(managed_matches),
        )
    if LOGGER.isEnabledFor(logging.DEBUG):
        LOGGER.debug(
            "%s classified as %s", record.name, classify(cloud_matches, managed_matches).value
        )

    return ReconciledDevice(
        name=record.name,
        last_logon_date=record.last_logon_date,
        enabled=record.enabled,
        **coalesce_cloud(cloud_matches),
        **coalesce_managed(managed_matches),
        canonical_id=key,
    )


def reconcile(
    authoritative: Sequence[AuthoritativeDeviceRecord],
    cloud: Sequence[CloudDirectoryRecord],
    managed: Sequence[ManagedDeviceRecord],
    *,
    progress: Optional[ProgressCallback] = None,
) -> ReconciliationResult:
    """Produce one reconciled row per valid authoritative record, in input order.

    Records without a canonical identifier are skipped and returned as
    defects instead of aborting the pass.
    """

    cloud_index, managed_index = build_indexes(cloud, managed)
    total = len(authoritative)
    devices: List[ReconciledDevice] = []
    defects: List[DataQualityError] = []

    for position, record in enumerate(authoritative, start=1):
        try:
            devices.append(reconcile_device(record, cloud_index, managed_index))
        except DataQualityError as exc:
            LOGGER.warning("Skipping defective record: %s", exc)
            defects.append(exc)
        notify(
            progress,
            ProgressEvent(
                index=position,
                total=total,
                percent=percent_complete(position, total),
                name=record.name,
            ),
        )

    return ReconciliationResult(
        devices=tuple(devices),
        defects=tuple(defects),
        authoritative_total=total,
    )

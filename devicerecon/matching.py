"""Keyed indexes over the cloud directory and managed device exports."""
from __future__ import annotations

import logging
from collections import defaultdict
from types import MappingProxyType
from typing import Callable, Generic, Iterable, Iterator, List, Mapping, Tuple, TypeVar

from .models import CloudDirectoryRecord, ManagedDeviceRecord
from .normalization import join_key

LOGGER = logging.getLogger(__name__)

R = TypeVar("R")


class DeviceIndex(Mapping[str, Tuple[R, ...]], Generic[R]):
    """Read-only mapping of join key to every record carrying that key.

    Records sharing a key keep their input order and are never deduplicated.
    """

    def __init__(self, entries: Mapping[str, Tuple[R, ...]], *, skipped: int = 0) -> None:
        self._entries = MappingProxyType(dict(entries))
        self.skipped = skipped

    def __getitem__(self, key: str) -> Tuple[R, ...]:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: str) -> Tuple[R, ...]:
        return self._entries.get(key, ())

    def ambiguous_keys(self) -> list[str]:
        return [key for key, records in self._entries.items() if len(records) > 1]


def build_index(
    records: Iterable[R],
    *,
    key: Callable[[R], str | None] = join_key,  # type: ignore[assignment]
) -> DeviceIndex[R]:
    buckets: dict[str, List[R]] = defaultdict(list)
    skipped = 0
    for record in records:
        value = key(record)
        if value is None:
            skipped += 1
            continue
        buckets[value].append(record)

    if skipped:
        LOGGER.debug("Left %d records without a join key out of the index", skipped)
    return DeviceIndex({value: tuple(found) for value, found in buckets.items()}, skipped=skipped)


def build_indexes(
    cloud: Iterable[CloudDirectoryRecord],
    managed: Iterable[ManagedDeviceRecord],
) -> tuple[DeviceIndex[CloudDirectoryRecord], DeviceIndex[ManagedDeviceRecord]]:
    return build_index(cloud), build_index(managed)

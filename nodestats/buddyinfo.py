"""Free memory block counts per order from /proc/buddyinfo."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings

BUDDYINFO_SUBSYSTEM = "buddyinfo"


@dataclass
class BuddyInfo:
    """Free block counts of one memory zone, indexed by block order."""

    node: str
    zone: str
    sizes: list[float] = field(default_factory=list)


def parse_buddyinfo(text: str) -> list[BuddyInfo]:
    """Parse /proc/buddyinfo; every zone must list the same number of orders."""
    entries: list[BuddyInfo] = []
    bucket_count: int | None = None
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        if len(parts) < 4:
            raise ValueError("invalid number of fields when parsing buddyinfo")
        node = parts[1].rstrip(",")
        zone = parts[3].rstrip(",")
        raw_sizes = parts[4:]
        if bucket_count is None:
            bucket_count = len(raw_sizes)
        elif bucket_count != len(raw_sizes):
            raise ValueError(
                f"mismatched number of buddyinfo buckets: {bucket_count} != {len(raw_sizes)}"
            )
        try:
            sizes = [float(raw) for raw in raw_sizes]
        except ValueError as err:
            raise ValueError(f"invalid value in buddyinfo: {err}") from err
        entries.append(BuddyInfo(node, zone, sizes))
    return entries


class BuddyinfoCollector(Collector):
    """Exposes free block counts by node, zone and block order."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        if not os.path.isdir(settings.proc_path):
            raise OSError(f"failed to open procfs: {settings.proc_path} is not a directory")
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.desc = Desc(
            build_fq_name(NAMESPACE, BUDDYINFO_SUBSYSTEM, "blocks"),
            "Count of free blocks according to size.",
            ("node", "zone", "size"),
        )

    def update(self) -> Iterator[Metric]:
        try:
            with open(self.settings.proc_file("buddyinfo"), encoding="utf-8") as handle:
                buddy_info = parse_buddyinfo(handle.read())
        except (OSError, ValueError) as err:
            raise OSError(f"couldn't get buddyinfo: {err}") from err

        self.logger.debug("Set node_buddy: buddyInfo=%s", buddy_info)
        for entry in buddy_info:
            for size, value in enumerate(entry.sizes):
                yield self.desc.metric(ValueType.GAUGE, value, entry.node, entry.zone, str(size))
"""ARP table entry counts per device."""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Iterable, Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings


def parse_arp_entries(lines: Iterable[str]) -> dict[str, int]:
    """Count ARP table rows per device, skipping the header row."""
    entries: Counter[str] = Counter()
    for line in lines:
        columns = line.split()
        if len(columns) < 6:
            raise ValueError("unexpected ARP table format")
        if columns[0] != "IP":
            entries[columns[-1]] += 1
    return dict(entries)


class _DeviceFilter:
    def __init__(self, exclude: str, include: str) -> None:
        self._exclude = re.compile(exclude) if exclude else None
        self._include = re.compile(include) if include else None

    def ignored(self, name: str) -> bool:
        if self._exclude is not None and self._exclude.search(name):
            return True
        return self._include is not None and not self._include.search(name)


class ArpCollector(Collector):
    """Exposes the number of ARP entries per network device."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self._filter = _DeviceFilter(settings.arp_device_exclude, settings.arp_device_include)
        self.entries = Desc(
            build_fq_name(NAMESPACE, "arp", "entries"),
            "ARP entries by device",
            ("device",),
        )

    def update(self) -> Iterator[Metric]:
        with open(self.settings.proc_file("net/arp"), encoding="utf-8") as handle:
            entries = parse_arp_entries(handle)
        for device, count in sorted(entries.items()):
            if self._filter.ignored(device):
                continue
            yield self.entries.metric(ValueType.GAUGE, count, device)
"""Btrfs filesystem allocation statistics from /sys/fs/btrfs."""

from __future__ import annotations

import glob
import logging
import os
from dataclasses import dataclass, field
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings, read_uint_from_file

BTRFS_SUBSYSTEM = "btrfs"

# Device sizes in sysfs are given in 512-byte sectors.
_SECTOR_SIZE = 512

_FIXED_RATIOS = {
    "single": 1.0,
    "raid0": 1.0,
    "dup": 2.0,
    "raid1": 2.0,
    "raid10": 2.0,
    "raid1c3": 3.0,
    "raid1c4": 4.0,
}
_PARITY_DEVICES = {"raid5": 1, "raid6": 2}


@dataclass(frozen=True)
class BtrfsMetric:
    """A single Btrfs value together with its extra labels."""

    name: str
    help: str
    value: float
    extra_label: tuple[str, ...] = ()
    extra_label_value: tuple[str, ...] = ()


@dataclass
class LayoutUsage:
    """Space use of one data layout (RAID mode)."""

    used_bytes: int = 0
    total_bytes: int = 0
    ratio: float = 0.0


@dataclass
class AllocationStats:
    """Allocation of one block group type."""

    reserved_bytes: int = 0
    layouts: dict[str, LayoutUsage] = field(default_factory=dict)


@dataclass
class BtrfsStats:
    """Statistics of one Btrfs filesystem."""

    uuid: str
    label: str = ""
    devices: dict[str, int] = field(default_factory=dict)
    global_rsv_size: int = 0
    data: AllocationStats = field(default_factory=AllocationStats)
    metadata: AllocationStats = field(default_factory=AllocationStats)
    system: AllocationStats = field(default_factory=AllocationStats)


def _allocation_ratio(mode: str, device_count: int) -> float:
    if mode in _FIXED_RATIOS:
        return _FIXED_RATIOS[mode]
    parity = _PARITY_DEVICES.get(mode)
    if parity is None:
        return 1.0
    if device_count <= parity:
        return 0.0
    return device_count / (device_count - parity)


def _read_allocation(path: str, device_count: int) -> AllocationStats:
    stats = AllocationStats(reserved_bytes=read_uint_from_file(os.path.join(path, "bytes_reserved")))
    for entry in sorted(os.listdir(path)):
        layout = os.path.join(path, entry)
        if not os.path.isdir(layout):
            continue
        stats.layouts[entry] = LayoutUsage(
            used_bytes=read_uint_from_file(os.path.join(layout, "used_bytes")),
            total_bytes=read_uint_from_file(os.path.join(layout, "total_bytes")),
            ratio=_allocation_ratio(entry, device_count),
        )
    return stats


def _read_label(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as handle:
            return handle.read().strip()
    except FileNotFoundError:
        return ""


def read_btrfs_stats(sys_path: str) -> list[BtrfsStats]:
    """Read every Btrfs filesystem below sys_path, ordered by UUID."""
    result: list[BtrfsStats] = []
    for base in sorted(glob.glob(os.path.join(sys_path, "fs", "btrfs", "*-*-*-*-*"))):
        if not os.path.isdir(base):
            continue
        devices = {
            os.path.basename(dev): read_uint_from_file(os.path.join(dev, "size")) * _SECTOR_SIZE
            for dev in sorted(glob.glob(os.path.join(base, "devices", "*")))
        }
        allocation = os.path.join(base, "allocation")
        count = len(devices)
        result.append(
            BtrfsStats(
                uuid=os.path.basename(base),
                label=_read_label(os.path.join(base, "label")),
                devices=devices,
                global_rsv_size=read_uint_from_file(os.path.join(allocation, "global_rsv_size")),
                data=_read_allocation(os.path.join(allocation, "data"), count),
                metadata=_read_allocation(os.path.join(allocation, "metadata"), count),
                system=_read_allocation(os.path.join(allocation, "system"), count),
            )
        )
    return result


class BtrfsCollector(Collector):
    """Exposes Btrfs filesystem, device and allocation metrics."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        if not os.path.isdir(settings.sys_path):
            raise OSError(f"failed to open sysfs: {settings.sys_path} is not a directory")
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)

    def update(self) -> Iterator[Metric]:
        try:
            all_stats = read_btrfs_stats(self.settings.sys_path)
        except (OSError, ValueError) as err:
            raise RuntimeError(f"failed to retrieve Btrfs stats: {err}") from err
        for stats in all_stats:
            for entry in self.get_metrics(stats):
                desc = Desc(
                    build_fq_name(NAMESPACE, BTRFS_SUBSYSTEM, entry.name),
                    entry.help,
                    ("uuid",) + entry.extra_label,
                )
                yield desc.metric(
                    ValueType.GAUGE, entry.value, stats.uuid, *entry.extra_label_value
                )

    def get_metrics(self, stats: BtrfsStats) -> list[BtrfsMetric]:
        """All metrics of one filesystem, devices sorted by name."""
        metrics = [
            BtrfsMetric("info", "Filesystem information", 1.0, ("label",), (stats.label,)),
            BtrfsMetric("global_rsv_size_bytes", "Size of global reserve.",
                        float(stats.global_rsv_size)),
        ]
        for name, size in sorted(stats.devices.items()):
            metrics.append(
                BtrfsMetric("device_size_bytes",
                            "Size of a device that is part of the filesystem.",
                            float(size), ("device",), (name,))
            )
        for kind, allocation in (
            ("data", stats.data),
            ("metadata", stats.metadata),
            ("system", stats.system),
        ):
            metrics.extend(self._allocation_metrics(kind, allocation))
        return metrics

    @staticmethod
    def _allocation_metrics(kind: str, stats: AllocationStats) -> list[BtrfsMetric]:
        metrics = [
            BtrfsMetric("reserved_bytes", "Amount of space reserved for a data type",
                        float(stats.reserved_bytes), ("block_group_type",), (kind,)),
        ]
        labels = ("block_group_type", "mode")
        for mode, usage in sorted(stats.layouts.items()):
            values = (kind, mode)
            metrics.extend([
                BtrfsMetric("used_bytes", "Amount of used space by a layout/data type",
                            float(usage.used_bytes), labels, values),
                BtrfsMetric("size_bytes", "Amount of space allocated for a layout/data type",
                            float(usage.total_bytes), labels, values),
                BtrfsMetric("allocation_ratio", "Data allocation ratio for a layout/data type",
                            usage.ratio, labels, values),
            ])
        return metrics
"""Block device I/O statistics from /proc/diskstats."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Iterator

from nodestats.metrics import Desc, Metric, TypedDesc, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings

DISK_SUBSYSTEM = "disk"

SECONDS_PER_TICK = 1.0 / 1000.0

# Sectors in /proc/diskstats are always 512-byte units.
UNIX_SECTOR_SIZE = 512.0

_LABELS = ("device",)

READS_COMPLETED_DESC = Desc(
    build_fq_name(NAMESPACE, DISK_SUBSYSTEM, "reads_completed_total"),
    "The total number of reads completed successfully.",
    _LABELS,
)
READ_BYTES_DESC = Desc(
    build_fq_name(NAMESPACE, DISK_SUBSYSTEM, "read_bytes_total"),
    "The total number of bytes read successfully.",
    _LABELS,
)
WRITES_COMPLETED_DESC = Desc(
    build_fq_name(NAMESPACE, DISK_SUBSYSTEM, "writes_completed_total"),
    "The total number of writes completed successfully.",
    _LABELS,
)
WRITTEN_BYTES_DESC = Desc(
    build_fq_name(NAMESPACE, DISK_SUBSYSTEM, "written_bytes_total"),
    "The total number of bytes written successfully.",
    _LABELS,
)
IO_TIME_SECONDS_DESC = Desc(
    build_fq_name(NAMESPACE, DISK_SUBSYSTEM, "io_time_seconds_total"),
    "Total seconds spent doing I/Os.",
    _LABELS,
)
READ_TIME_SECONDS_DESC = Desc(
    build_fq_name(NAMESPACE, DISK_SUBSYSTEM, "read_time_seconds_total"),
    "The total number of seconds spent by all reads.",
    _LABELS,
)
WRITE_TIME_SECONDS_DESC = Desc(
    build_fq_name(NAMESPACE, DISK_SUBSYSTEM, "write_time_seconds_total"),
    "This is the total number of seconds spent by all writes.",
    _LABELS,
)

_STAT_FIELDS = (
    "read_ios",
    "read_merges",
    "read_sectors",
    "read_ticks",
    "write_ios",
    "write_merges",
    "write_sectors",
    "write_ticks",
    "ios_in_progress",
    "ios_total_ticks",
    "weighted_io_ticks",
    "discard_ios",
    "discard_merges",
    "discard_sectors",
    "discard_ticks",
    "flush_requests_completed",
    "time_spent_flushing",
)


@dataclass
class DiskStat:
    """One line of /proc/diskstats."""

    major_number: int
    minor_number: int
    device_name: str
    read_ios: int = 0
    read_merges: int = 0
    read_sectors: int = 0
    read_ticks: int = 0
    write_ios: int = 0
    write_merges: int = 0
    write_sectors: int = 0
    write_ticks: int = 0
    ios_in_progress: int = 0
    ios_total_ticks: int = 0
    weighted_io_ticks: int = 0
    discard_ios: int = 0
    discard_merges: int = 0
    discard_sectors: int = 0
    discard_ticks: int = 0
    flush_requests_completed: int = 0
    time_spent_flushing: int = 0
    io_stats_count: int = 3

    def values(self) -> list[float]:
        """Exported values in base units, limited to the fields present in the line."""
        scaled = [
            float(self.read_ios),
            float(self.read_merges),
            float(self.read_sectors) * UNIX_SECTOR_SIZE,
            float(self.read_ticks) * SECONDS_PER_TICK,
            float(self.write_ios),
            float(self.write_merges),
            float(self.write_sectors) * UNIX_SECTOR_SIZE,
            float(self.write_ticks) * SECONDS_PER_TICK,
            float(self.ios_in_progress),
            float(self.ios_total_ticks) * SECONDS_PER_TICK,
            float(self.weighted_io_ticks) * SECONDS_PER_TICK,
            float(self.discard_ios),
            float(self.discard_merges),
            float(self.discard_sectors),
            float(self.discard_ticks) * SECONDS_PER_TICK,
            float(self.flush_requests_completed),
            float(self.time_spent_flushing) * SECONDS_PER_TICK,
        ]
        return scaled[: max(self.io_stats_count - 3, 0)]


def _parse_int(raw: str, line: str) -> int:
    try:
        return int(raw)
    except ValueError as err:
        raise ValueError(f"invalid diskstats line {line!r}: {raw!r} is not an integer") from err


def parse_diskstats(text: str) -> list[DiskStat]:
    """Parse the contents of /proc/diskstats."""
    disks: list[DiskStat] = []
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        if len(parts) < 3:
            raise ValueError(f"invalid diskstats line {line!r}")
        major = _parse_int(parts[0], line)
        minor = _parse_int(parts[1], line)
        counters = [_parse_int(raw, line) for raw in parts[3 : 3 + len(_STAT_FIELDS)]]
        disks.append(
            DiskStat(
                major,
                minor,
                parts[2],
                **dict(zip(_STAT_FIELDS, counters)),
                io_stats_count=3 + len(counters),
            )
        )
    return disks


def _desc(name: str, help_text: str) -> Desc:
    return Desc(build_fq_name(NAMESPACE, DISK_SUBSYSTEM, name), help_text, _LABELS)


class DiskstatsCollector(Collector):
    """Exposes per-device disk I/O statistics."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        if not os.path.isdir(settings.proc_path):
            raise OSError(f"failed to open sysfs: {settings.proc_path} is not a directory")
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.ignored_devices = re.compile(settings.diskstats_ignored_devices)
        self.info = TypedDesc(
            Desc(
                build_fq_name(NAMESPACE, DISK_SUBSYSTEM, "info"),
                "Info of /sys/block/<block_device>.",
                ("device", "major", "minor"),
            ),
            ValueType.GAUGE,
        )
        counter, gauge = ValueType.COUNTER, ValueType.GAUGE
        self.descs = [
            TypedDesc(READS_COMPLETED_DESC, counter),
            TypedDesc(_desc("reads_merged_total", "The total number of reads merged."), counter),
            TypedDesc(READ_BYTES_DESC, counter),
            TypedDesc(READ_TIME_SECONDS_DESC, counter),
            TypedDesc(WRITES_COMPLETED_DESC, counter),
            TypedDesc(_desc("writes_merged_total", "The number of writes merged."), counter),
            TypedDesc(WRITTEN_BYTES_DESC, counter),
            TypedDesc(WRITE_TIME_SECONDS_DESC, counter),
            TypedDesc(_desc("io_now", "The number of I/Os currently in progress."), gauge),
            TypedDesc(IO_TIME_SECONDS_DESC, counter),
            TypedDesc(
                _desc("io_time_weighted_seconds_total", "The weighted # of seconds spent doing I/Os."),
                counter,
            ),
            TypedDesc(
                _desc("discards_completed_total", "The total number of discards completed successfully."),
                counter,
            ),
            TypedDesc(_desc("discards_merged_total", "The total number of discards merged."), counter),
            TypedDesc(
                _desc("discarded_sectors_total", "The total number of sectors discarded successfully."),
                counter,
            ),
            TypedDesc(
                _desc(
                    "discard_time_seconds_total",
                    "This is the total number of seconds spent by all discards.",
                ),
                counter,
            ),
            TypedDesc(
                _desc(
                    "flush_requests_total",
                    "The total number of flush requests completed successfully",
                ),
                counter,
            ),
            TypedDesc(
                _desc(
                    "flush_requests_time_seconds_total",
                    "This is the total number of seconds spent by all flush requests.",
                ),
                counter,
            ),
        ]

    def update(self) -> Iterator[Metric]:
        try:
            with open(self.settings.proc_file("diskstats"), encoding="utf-8") as handle:
                disks = parse_diskstats(handle.read())
        except OSError as err:
            raise OSError(f"couldn't get diskstats: {err}") from err

        for stats in disks:
            dev = stats.device_name
            if self.ignored_devices.search(dev):
                self.logger.debug(
                    "Ignoring device: device=%s pattern=%s", dev, self.ignored_devices.pattern
                )
                continue
            yield self.info.metric(1.0, dev, str(stats.major_number), str(stats.minor_number))
            for typed, value in zip(self.descs, stats.values()):
                yield typed.metric(value, dev)
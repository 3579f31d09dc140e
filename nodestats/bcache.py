"""Statistics of bcache caches and backing devices from /sys/fs/bcache."""

from __future__ import annotations

import glob
import logging
import os
from dataclasses import dataclass, field
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings, read_uint_from_file

BCACHE_SUBSYSTEM = "bcache"

# Suffixes bcache prints for human readable sizes, each a further factor of 1024.
_UNITS = "kMGTPEZY"


@dataclass
class PeriodStats:
    """IO statistics of a backing device over one period (stats_total)."""

    bypassed: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_bypass_hits: int = 0
    cache_bypass_misses: int = 0
    cache_miss_collisions: int = 0
    cache_readaheads: int = 0


@dataclass
class BackingDevice:
    """A backing device attached to a cache set."""

    name: str
    dirty_data: int = 0
    writeback_rate: int = 0
    writeback_target: int = 0
    writeback_proportional: int = 0
    writeback_integral: int = 0
    writeback_change: int = 0
    total: PeriodStats = field(default_factory=PeriodStats)


@dataclass
class CacheDevice:
    """A caching device of a cache set."""

    name: str
    io_errors: int = 0
    metadata_written: int = 0
    written: int = 0
    unused_percent: int = 0
    metadata_percent: int = 0


@dataclass
class BcacheStats:
    """Statistics of one cache set, identified by its UUID."""

    name: str
    average_key_size: int = 0
    btree_cache_size: int = 0
    cache_available_percent: int = 0
    congested: float = 0.0
    root_usage_percent: int = 0
    tree_depth: int = 0
    active_journal_entries: int = 0
    btree_nodes: int = 0
    btree_read_average_duration_ns: int = 0
    cache_read_races: int = 0
    bdevs: list[BackingDevice] = field(default_factory=list)
    caches: list[CacheDevice] = field(default_factory=list)


def _dehumanize(raw: str) -> int:
    text = raw.strip()
    if not text:
        raise ValueError("empty bcache value")
    multiplier = 1.0
    if text[-1] in _UNITS:
        multiplier = 1024.0 ** (_UNITS.index(text[-1]) + 1)
        text = text[:-1]
    try:
        mantissa = float(text)
    except ValueError as err:
        raise ValueError(f"invalid bcache value {raw!r}") from err
    return int(mantissa * multiplier)


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8") as handle:
        return handle.read().strip()


def _read_human(path: str) -> int:
    return _dehumanize(_read_text(path))


def _read_float(path: str) -> float:
    raw = _read_text(path)
    try:
        return float(raw)
    except ValueError as err:
        raise ValueError(f"invalid value {raw!r} in {path}") from err


def _parse_writeback_rate_debug(text: str) -> dict[str, int]:
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        if key in ("rate", "target", "proportional", "integral", "change"):
            value = value.strip()
            if value.endswith("/sec"):
                value = value[: -len("/sec")]
            values[key] = _dehumanize(value)
    return values


def _parse_priority_stats(text: str) -> tuple[int, int]:
    unused = metadata = 0
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        if key not in ("Unused", "Metadata"):
            continue
        value = value.strip().rstrip("%")
        try:
            number = int(value)
        except ValueError as err:
            raise ValueError(f"invalid priority_stats value {value!r}") from err
        if key == "Unused":
            unused = number
        else:
            metadata = number
    return unused, metadata


def _read_period_stats(path: str) -> PeriodStats:
    return PeriodStats(
        bypassed=_read_human(os.path.join(path, "bypassed")),
        cache_hits=_read_human(os.path.join(path, "cache_hits")),
        cache_misses=_read_human(os.path.join(path, "cache_misses")),
        cache_bypass_hits=_read_human(os.path.join(path, "cache_bypass_hits")),
        cache_bypass_misses=_read_human(os.path.join(path, "cache_bypass_misses")),
        cache_miss_collisions=_read_human(os.path.join(path, "cache_miss_collisions")),
        cache_readaheads=_read_human(os.path.join(path, "cache_readaheads")),
    )


def _read_bdev(path: str) -> BackingDevice:
    rates = _parse_writeback_rate_debug(_read_text(os.path.join(path, "writeback_rate_debug")))
    return BackingDevice(
        name=os.path.basename(path),
        dirty_data=_read_human(os.path.join(path, "dirty_data")),
        writeback_rate=rates.get("rate", 0),
        writeback_target=rates.get("target", 0),
        writeback_proportional=rates.get("proportional", 0),
        writeback_integral=rates.get("integral", 0),
        writeback_change=rates.get("change", 0),
        total=_read_period_stats(os.path.join(path, "stats_total")),
    )


def _read_cache(path: str, priority_stats: bool) -> CacheDevice:
    cache = CacheDevice(
        name=os.path.basename(path),
        io_errors=read_uint_from_file(os.path.join(path, "io_errors")),
        metadata_written=_read_human(os.path.join(path, "metadata_written")),
        written=_read_human(os.path.join(path, "written")),
    )
    if priority_stats:
        cache.unused_percent, cache.metadata_percent = _parse_priority_stats(
            _read_text(os.path.join(path, "priority_stats"))
        )
    return cache


def read_bcache_stats(sys_path: str, priority_stats: bool) -> list[BcacheStats]:
    """Read every cache set below sys_path; priority stats are read only on request."""
    sets = sorted(
        p for p in glob.glob(os.path.join(sys_path, "fs", "bcache", "*-*")) if os.path.isdir(p)
    )
    result: list[BcacheStats] = []
    for base in sets:
        internal = os.path.join(base, "internal")
        result.append(
            BcacheStats(
                name=os.path.basename(base),
                average_key_size=_read_human(os.path.join(base, "average_key_size")),
                btree_cache_size=_read_human(os.path.join(base, "btree_cache_size")),
                cache_available_percent=read_uint_from_file(
                    os.path.join(base, "cache_available_percent")
                ),
                congested=_read_float(os.path.join(base, "congested")),
                root_usage_percent=read_uint_from_file(os.path.join(base, "root_usage_percent")),
                tree_depth=read_uint_from_file(os.path.join(base, "tree_depth")),
                active_journal_entries=read_uint_from_file(
                    os.path.join(internal, "active_journal_entries")
                ),
                btree_nodes=read_uint_from_file(os.path.join(internal, "btree_nodes")),
                btree_read_average_duration_ns=1000
                * read_uint_from_file(os.path.join(internal, "btree_read_average_duration_us")),
                cache_read_races=read_uint_from_file(os.path.join(internal, "cache_read_races")),
                bdevs=[_read_bdev(p) for p in sorted(glob.glob(os.path.join(base, "bdev[0-9]*")))],
                caches=[
                    _read_cache(p, priority_stats)
                    for p in sorted(glob.glob(os.path.join(base, "cache[0-9]*")))
                ],
            )
        )
    return result


@dataclass(frozen=True)
class _BcacheMetric:
    name: str
    help: str
    value: float
    value_type: ValueType
    extra_label: tuple[str, ...] = ()
    extra_label_value: str = ""


def period_stats_metrics(stats: PeriodStats, label_value: str) -> list[_BcacheMetric]:
    """Counters of one stats period, labelled with the backing device."""
    label = ("backing_device",)
    counter = ValueType.COUNTER
    entries = (
        ("bypassed_bytes_total",
         "Amount of IO (both reads and writes) that has bypassed the cache.", stats.bypassed),
        ("cache_hits_total",
         "Hits counted per individual IO as bcache sees them.", stats.cache_hits),
        ("cache_misses_total",
         "Misses counted per individual IO as bcache sees them.", stats.cache_misses),
        ("cache_bypass_hits_total",
         "Hits for IO intended to skip the cache.", stats.cache_bypass_hits),
        ("cache_bypass_misses_total",
         "Misses for IO intended to skip the cache.", stats.cache_bypass_misses),
        ("cache_miss_collisions_total",
         "Instances where data insertion from cache miss raced with write "
         "(data already present).", stats.cache_miss_collisions),
        ("cache_readaheads_total",
         "Count of times readahead occurred.", stats.cache_readaheads),
    )
    return [
        _BcacheMetric(name, help_text, float(value), counter, label, label_value)
        for name, help_text, value in entries
    ]


class BcacheCollector(Collector):
    """Exposes bcache cache set, backing device and cache device statistics."""

    def __init__(
        self,
        settings: Settings,
        logger: logging.Logger | None = None,
        priority_stats: bool | None = None,
    ) -> None:
        if not os.path.isdir(settings.sys_path):
            raise OSError(f"failed to open sysfs: {settings.sys_path} is not a directory")
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        if priority_stats is None:
            priority_stats = bool(getattr(settings, "bcache_priority_stats", False))
        self.priority_stats = priority_stats

    def update(self) -> Iterator[Metric]:
        try:
            all_stats = read_bcache_stats(self.settings.sys_path, self.priority_stats)
        except (OSError, ValueError) as err:
            raise RuntimeError(f"failed to retrieve bcache stats: {err}") from err
        for stats in all_stats:
            yield from self._stats_metrics(stats)

    def _stats_metrics(self, s: BcacheStats) -> Iterator[Metric]:
        for entry in self._collect(s):
            desc = Desc(
                build_fq_name(NAMESPACE, BCACHE_SUBSYSTEM, entry.name),
                entry.help,
                ("uuid",) + entry.extra_label,
            )
            labels = [s.name]
            if entry.extra_label_value:
                labels.append(entry.extra_label_value)
            yield desc.metric(entry.value_type, entry.value, *labels)

    def _collect(self, s: BcacheStats) -> list[_BcacheMetric]:
        gauge, counter = ValueType.GAUGE, ValueType.COUNTER
        metrics = [
            _BcacheMetric("average_key_size_sectors",
                          "Average data per key in the btree (sectors).",
                          float(s.average_key_size), gauge),
            _BcacheMetric("btree_cache_size_bytes",
                          "Amount of memory currently used by the btree cache.",
                          float(s.btree_cache_size), gauge),
            _BcacheMetric("cache_available_percent",
                          "Percentage of cache device without dirty data, usable for "
                          "writeback (may contain clean cached data).",
                          float(s.cache_available_percent), gauge),
            _BcacheMetric("congested", "Congestion.", float(s.congested), gauge),
            _BcacheMetric("root_usage_percent",
                          "Percentage of the root btree node in use (tree depth increases "
                          "if too high).",
                          float(s.root_usage_percent), gauge),
            _BcacheMetric("tree_depth", "Depth of the btree.", float(s.tree_depth), gauge),
            _BcacheMetric("active_journal_entries",
                          "Number of journal entries that are newer than the index.",
                          float(s.active_journal_entries), gauge),
            _BcacheMetric("btree_nodes", "Total nodes in the btree.",
                          float(s.btree_nodes), gauge),
            _BcacheMetric("btree_read_average_duration_seconds", "Average btree read duration.",
                          float(s.btree_read_average_duration_ns) * 1e-9, gauge),
            _BcacheMetric("cache_read_races_total",
                          "Counts instances where while data was being read from the cache, "
                          "the bucket was reused and invalidated - i.e. where the pointer was "
                          "stale after the read completed.",
                          float(s.cache_read_races), counter),
        ]

        bdev_label = ("backing_device",)
        for bdev in s.bdevs:
            metrics.extend([
                _BcacheMetric("dirty_data_bytes",
                              "Amount of dirty data for this backing device in the cache.",
                              float(bdev.dirty_data), gauge, bdev_label, bdev.name),
                _BcacheMetric("dirty_target_bytes",
                              "Current dirty data target threshold for this backing device "
                              "in bytes.",
                              float(bdev.writeback_target), gauge, bdev_label, bdev.name),
                _BcacheMetric("writeback_rate",
                              "Current writeback rate for this backing device in bytes.",
                              float(bdev.writeback_rate), gauge, bdev_label, bdev.name),
                _BcacheMetric("writeback_rate_proportional_term",
                              "Current result of proportional controller, part of writeback rate",
                              float(bdev.writeback_proportional), gauge, bdev_label, bdev.name),
                _BcacheMetric("writeback_rate_integral_term",
                              "Current result of integral controller, part of writeback rate",
                              float(bdev.writeback_integral), gauge, bdev_label, bdev.name),
                _BcacheMetric("writeback_change",
                              "Last writeback rate change step for this backing device.",
                              float(bdev.writeback_change), gauge, bdev_label, bdev.name),
            ])
            metrics.extend(period_stats_metrics(bdev.total, bdev.name))

        cache_label = ("cache_device",)
        for cache in s.caches:
            metrics.extend([
                _BcacheMetric("io_errors",
                              "Number of errors that have occurred, decayed by io_error_halflife.",
                              float(cache.io_errors), gauge, cache_label, cache.name),
                _BcacheMetric("metadata_written_bytes_total",
                              "Sum of all non data writes (btree writes and all other metadata).",
                              float(cache.metadata_written), counter, cache_label, cache.name),
                _BcacheMetric("written_bytes_total",
                              "Sum of all data that has been written to the cache.",
                              float(cache.written), counter, cache_label, cache.name),
            ])
            if self.priority_stats:
                metrics.extend([
                    _BcacheMetric("priority_stats_unused_percent",
                                  "The percentage of the cache that doesn't contain any data.",
                                  float(cache.unused_percent), gauge, cache_label, cache.name),
                    _BcacheMetric("priority_stats_metadata_percent",
                                  "Bcache's metadata overhead.",
                                  float(cache.metadata_percent), gauge, cache_label, cache.name),
                ])
        return metrics
"""Connection tracking table size and statistics."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, fields
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import (
    NAMESPACE,
    Collector,
    NoDataError,
    Settings,
    read_uint_from_file,
)

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_UINT64_MAX = 2**64 - 1

# Columns of /proc/net/stat/nf_conntrack that are exported.
_COLUMNS = {
    "found": 2,
    "invalid": 4,
    "ignore": 5,
    "insert": 8,
    "insert_failed": 9,
    "drop": 10,
    "early_drop": 11,
    "search_restart": 16,
}
_MIN_COLUMNS = 17


@dataclass
class ConntrackStatistics:
    """Connection tracking counters of one CPU, or summed over all CPUs."""

    found: int = 0  # searched entries which were successful
    invalid: int = 0  # packets seen which can not be tracked
    ignore: int = 0  # packets seen which are already connected to an entry
    insert: int = 0  # entries inserted into the list
    insert_failed: int = 0  # insertions attempted but failed
    drop: int = 0  # packets dropped due to conntrack failure
    early_drop: int = 0  # entries dropped to make room when the table was full
    search_restart: int = 0  # lookups restarted due to hashtable resizes

    def __add__(self, other: "ConntrackStatistics") -> "ConntrackStatistics":
        if not isinstance(other, ConntrackStatistics):
            return NotImplemented
        return ConntrackStatistics(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )


def _parse_hex(raw: str) -> int:
    if not _HEX_RE.fullmatch(raw):
        raise ValueError(f"invalid conntrackstat value {raw!r}")
    value = int(raw, 16)
    if value > _UINT64_MAX:
        raise ValueError(f"conntrackstat value out of range: {raw!r}")
    return value


def parse_conntrack_stat(text: str) -> list[ConntrackStatistics]:
    """Parse /proc/net/stat/nf_conntrack into one entry per CPU, skipping the header."""
    stats: list[ConntrackStatistics] = []
    for line in text.splitlines()[1:]:
        columns = line.split()
        if not columns:
            continue
        if len(columns) < _MIN_COLUMNS:
            raise ValueError("invalid conntrackstat entry, missing fields")
        stats.append(
            ConntrackStatistics(
                **{name: _parse_hex(columns[index]) for name, index in _COLUMNS.items()}
            )
        )
    return stats


def _desc(name: str, help_text: str) -> Desc:
    return Desc(build_fq_name(NAMESPACE, "", name), help_text)


class ConntrackCollector(Collector):
    """Exposes netfilter connection tracking metrics."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.current = _desc(
            "nf_conntrack_entries",
            "Number of currently allocated flow entries for connection tracking.",
        )
        self.limit = _desc(
            "nf_conntrack_entries_limit",
            "Maximum size of connection tracking table.",
        )
        self.stat_descs = {
            "found": _desc(
                "nf_conntrack_stat_found",
                "Number of searched entries which were successful.",
            ),
            "invalid": _desc(
                "nf_conntrack_stat_invalid",
                "Number of packets seen which can not be tracked.",
            ),
            "ignore": _desc(
                "nf_conntrack_stat_ignore",
                "Number of packets seen which are already connected to a conntrack entry.",
            ),
            "insert": _desc(
                "nf_conntrack_stat_insert",
                "Number of entries inserted into the list.",
            ),
            "insert_failed": _desc(
                "nf_conntrack_stat_insert_failed",
                "Number of entries for which list insertion was attempted but failed.",
            ),
            "drop": _desc(
                "nf_conntrack_stat_drop",
                "Number of packets dropped due to conntrack failure.",
            ),
            "early_drop": _desc(
                "nf_conntrack_stat_early_drop",
                "Number of dropped conntrack entries to make room for new ones, "
                "if maximum table size was reached.",
            ),
            "search_restart": _desc(
                "nf_conntrack_stat_search_restart",
                "Number of conntrack table lookups which had to be restarted "
                "due to hashtable resizes.",
            ),
        }

    def _failure(self, err: Exception) -> Exception:
        if isinstance(err, FileNotFoundError):
            self.logger.debug("conntrack probably not loaded")
            return NoDataError()
        return RuntimeError(f"failed to retrieve conntrack stats: {err}")

    def _statistics(self) -> ConntrackStatistics:
        with open(self.settings.proc_file("net/stat/nf_conntrack"), encoding="utf-8") as handle:
            per_cpu = parse_conntrack_stat(handle.read())
        return sum(per_cpu, ConntrackStatistics())

    def update(self) -> Iterator[Metric]:
        try:
            value = read_uint_from_file(
                self.settings.proc_file("sys/net/netfilter/nf_conntrack_count")
            )
        except (OSError, ValueError) as err:
            raise self._failure(err) from err
        yield self.current.metric(ValueType.GAUGE, value)

        try:
            value = read_uint_from_file(
                self.settings.proc_file("sys/net/netfilter/nf_conntrack_max")
            )
        except (OSError, ValueError) as err:
            raise self._failure(err) from err
        yield self.limit.metric(ValueType.GAUGE, value)

        try:
            totals = self._statistics()
        except (OSError, ValueError) as err:
            raise self._failure(err) from err
        for name, desc in self.stat_descs.items():
            yield desc.metric(ValueType.GAUGE, getattr(totals, name))
"""DRBD device statistics from /proc/drbd."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, NoDataError, Settings

_UINT_RE = re.compile(r"[0-9]+")
_UINT64_MAX = 2**64 - 1


@dataclass(frozen=True)
class _NumericalMetric:
    desc: Desc
    value_type: ValueType
    multiplier: float


@dataclass(frozen=True)
class _StringPairMetric:
    desc: Desc
    value_ok: str

    def metrics(self, key: str, raw: str, device: str) -> Iterator[Metric]:
        """Yield the local and remote gauges for a "local/remote" value."""
        values = raw.split("/")
        if len(values) < 2:
            raise ValueError(f"invalid value for {key}: {raw!r}")
        for node, value in zip(("local", "remote"), values):
            healthy = 1.0 if value == self.value_ok else 0.0
            yield self.desc.metric(ValueType.GAUGE, healthy, device, node)


def _numerical(name: str, help_text: str, value_type: ValueType, multiplier: float) -> _NumericalMetric:
    return _NumericalMetric(
        Desc(build_fq_name(NAMESPACE, "drbd", name), help_text, ("device",)),
        value_type,
        multiplier,
    )


def _string_pair(name: str, help_text: str, value_ok: str) -> _StringPairMetric:
    return _StringPairMetric(
        Desc(build_fq_name(NAMESPACE, "drbd", name), help_text, ("device", "node")),
        value_ok,
    )


def _device_id(raw: str) -> int | None:
    if _UINT_RE.fullmatch(raw):
        value = int(raw)
        if value <= _UINT64_MAX:
            return value
    return None


class DRBDCollector(Collector):
    """Exposes DRBD replication and disk statistics."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        counter, gauge = ValueType.COUNTER, ValueType.GAUGE
        self.numerical = {
            "ns": _numerical("network_sent_bytes_total",
                             "Total number of bytes sent via the network.", counter, 1024),
            "nr": _numerical("network_received_bytes_total",
                             "Total number of bytes received via the network.", counter, 1),
            "dw": _numerical("disk_written_bytes_total",
                             "Net data written on local hard disk; in bytes.", counter, 1024),
            "dr": _numerical("disk_read_bytes_total",
                             "Net data read from local hard disk; in bytes.", counter, 1024),
            "al": _numerical("activitylog_writes_total",
                             "Number of updates of the activity log area of the meta data.",
                             counter, 1),
            "bm": _numerical("bitmap_writes_total",
                             "Number of updates of the bitmap area of the meta data.", counter, 1),
            "lo": _numerical("local_pending",
                             "Number of open requests to the local I/O sub-system.", gauge, 1),
            "pe": _numerical("remote_pending",
                             "Number of requests sent to the peer, but that have not yet been "
                             "answered by the latter.", gauge, 1),
            "ua": _numerical("remote_unacknowledged",
                             "Number of requests received by the peer via the network "
                             "connection, but that have not yet been answered.", gauge, 1),
            "ap": _numerical("application_pending",
                             "Number of block I/O requests forwarded to DRBD, but not yet "
                             "answered by DRBD.", gauge, 1),
            "ep": _numerical("epochs", "Number of Epochs currently on the fly.", gauge, 1),
            "oos": _numerical("out_of_sync_bytes",
                              "Amount of data known to be out of sync; in bytes.", gauge, 1024),
        }
        self.string_pair = {
            "ro": _string_pair("node_role_is_primary",
                               "Whether the role of the node is in the primary state.", "Primary"),
            "ds": _string_pair("disk_state_is_up_to_date",
                               "Whether the disk of the node is up to date.", "UpToDate"),
        }
        self.connected = Desc(
            build_fq_name(NAMESPACE, "drbd", "connected"),
            "Whether DRBD is connected to the peer.",
            ("device",),
        )

    def parse(self, text: str) -> Iterator[Metric]:
        """Turn the key:value words of /proc/drbd into metrics."""
        device = "unknown"
        for word in text.split():
            kv = word.split(":")
            if len(kv) != 2:
                self.logger.debug("skipping invalid key:value pair: field=%s", word)
                continue
            key, value = kv

            device_id = _device_id(key)
            if device_id is not None and value == "":
                device = f"drbd{device_id}"
                continue

            numerical = self.numerical.get(key)
            if numerical is not None:
                try:
                    number = float(value)
                except ValueError as err:
                    raise ValueError(f"invalid value for {key}: {value!r}") from err
                yield numerical.desc.metric(
                    numerical.value_type, number * numerical.multiplier, device
                )
                continue

            pair = self.string_pair.get(key)
            if pair is not None:
                yield from pair.metrics(key, value, device)
                continue

            if key == "cs":
                connected = 1.0 if value == "Connected" else 0.0
                yield self.connected.metric(ValueType.GAUGE, connected, device)
                continue

            self.logger.debug("unhandled key-value pair: key=%s value=%s", key, value)

    def update(self) -> Iterator[Metric]:
        stats_file = self.settings.proc_file("drbd")
        try:
            with open(stats_file, encoding="utf-8") as handle:
                text = handle.read()
        except FileNotFoundError as err:
            self.logger.debug("stats file does not exist, skipping: file=%s err=%s", stats_file, err)
            raise NoDataError() from err
        yield from self.parse(text)
"""Collector interface, collector registry and the scrape driver."""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name

NAMESPACE = "node"

SCRAPE_DURATION_DESC = Desc(
    build_fq_name(NAMESPACE, "scrape", "collector_duration_seconds"),
    "node_exporter: Duration of a collector scrape.",
    ("collector",),
)
SCRAPE_SUCCESS_DESC = Desc(
    build_fq_name(NAMESPACE, "scrape", "collector_success"),
    "node_exporter: Whether a collector succeeded.",
    ("collector",),
)

DEFAULT_IGNORED_DEVICES = r"^(ram|loop|fd|(h|s|v|xv)d[a-z]|nvme\d+n\d+p)\d+$"

_UINT_RE = re.compile(r"[0-9]+")
_UINT64_MAX = 2**64 - 1

_log = logging.getLogger(__name__)


@dataclass
class Settings:
    """Paths and options shared by all collectors."""

    proc_path: str = "/proc"
    sys_path: str = "/sys"
    arp_device_include: str = ""
    arp_device_exclude: str = ""
    bcache_priority_stats: bool = False
    cpu_guest: bool = True
    cpu_info: bool = False
    cpu_flags_include: str = ""
    cpu_bugs_include: str = ""
    diskstats_ignored_devices: str = field(default=DEFAULT_IGNORED_DEVICES)

    def proc_file(self, *args: str) -> str:
        return os.path.join(self.proc_path, *args)

    def sys_file(self, *args: str) -> str:
        return os.path.join(self.sys_path, *args)


class NoDataError(Exception):
    """The collector found nothing to collect but did not otherwise fail."""

    def __init__(self, message: str = "collector returned no data") -> None:
        super().__init__(message)


class Collector(ABC):
    """A source of metrics."""

    @abstractmethod
    def update(self) -> Iterable[Metric]:
        """Gather fresh metrics."""


Factory = Callable[[Settings, logging.Logger], Collector]


def read_uint_from_file(path: str) -> int:
    """Read a file holding one unsigned decimal integer."""
    with open(path, encoding="utf-8") as handle:
        text = handle.read().strip()
    if not _UINT_RE.fullmatch(text):
        raise ValueError(f"invalid unsigned integer {text!r} in {path}")
    value = int(text)
    if value > _UINT64_MAX:
        raise ValueError(f"value out of range in {path}: {text}")
    return value


def is_no_data_error(err: BaseException) -> bool:
    return isinstance(err, NoDataError)


def execute(name: str, collector: Collector, logger: logging.Logger) -> list[Metric]:
    """Run one collector and append its scrape duration and success samples."""
    metrics: list[Metric] = []
    begin = time.perf_counter()
    success = 0.0
    try:
        metrics.extend(collector.update())
    except NoDataError as err:
        duration = time.perf_counter() - begin
        logger.debug("collector returned no data: name=%s duration_seconds=%f err=%s", name, duration, err)
    except Exception as err:  # a failing collector must not break the scrape
        duration = time.perf_counter() - begin
        logger.error("collector failed: name=%s duration_seconds=%f err=%s", name, duration, err)
    else:
        duration = time.perf_counter() - begin
        logger.debug("collector succeeded: name=%s duration_seconds=%f", name, duration)
        success = 1.0
    metrics.append(SCRAPE_DURATION_DESC.metric(ValueType.GAUGE, duration, name))
    metrics.append(SCRAPE_SUCCESS_DESC.metric(ValueType.GAUGE, success, name))
    return metrics


@dataclass
class NodeCollector:
    """A set of collectors scraped together."""

    collectors: dict[str, Collector]
    logger: logging.Logger = field(default=_log)

    def describe(self) -> list[Desc]:
        return [SCRAPE_DURATION_DESC, SCRAPE_SUCCESS_DESC]

    def collect(self) -> list[Metric]:
        if not self.collectors:
            return []
        names = sorted(self.collectors)
        with ThreadPoolExecutor(max_workers=len(names)) as pool:
            results = pool.map(
                lambda name: execute(name, self.collectors[name], self.logger), names
            )
            return [metric for batch in results for metric in batch]


class CollectorRegistry:
    """Known collectors, whether each is enabled, and their instances."""

    def __init__(self) -> None:
        self._factories: dict[str, Factory] = {}
        self._state: dict[str, bool] = {}
        self._forced: set[str] = set()
        self._instances: dict[str, Collector] = {}
        self._lock = threading.Lock()

    def register(self, name: str, default_enabled: bool, factory: Factory) -> None:
        if name in self._factories:
            raise ValueError(f"collector already registered: {name}")
        self._factories[name] = factory
        self._state[name] = bool(default_enabled)

    def set_enabled(self, name: str, enabled: bool) -> None:
        """Explicitly enable or disable a collector."""
        if name not in self._state:
            raise KeyError(name)
        self._state[name] = bool(enabled)
        self._forced.add(name)

    def disable_defaults(self) -> None:
        """Disable every collector not explicitly enabled or disabled."""
        for name in self._state:
            if name not in self._forced:
                self._state[name] = False

    def is_enabled(self, name: str) -> bool:
        return self._state[name]

    def names(self) -> list[str]:
        return sorted(self._factories)

    def create(self, settings: Settings, *args: str) -> NodeCollector:
        """Build a NodeCollector from the enabled collectors, optionally filtered by name."""
        wanted: set[str] = set()
        for name in args:
            if name not in self._state:
                raise ValueError(f"missing collector: {name}")
            if not self._state[name]:
                raise ValueError(f"disabled collector: {name}")
            wanted.add(name)

        collectors: dict[str, Collector] = {}
        with self._lock:
            for name, enabled in self._state.items():
                if not enabled or (wanted and name not in wanted):
                    continue
                instance = self._instances.get(name)
                if instance is None:
                    instance = self._factories[name](settings, _log.getChild(name))
                    self._instances[name] = instance
                collectors[name] = instance
        return NodeCollector(collectors, _log)
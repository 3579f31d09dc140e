"""CPU time, CPU information and thermal throttle statistics."""

from __future__ import annotations

import dataclasses
import glob
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings, read_uint_from_file

CPU_SUBSYSTEM = "cpu"

# Kernel clock ticks per second used for the values in /proc/stat.
USER_HZ = 100.0

# Idle jump back limit in seconds.
JUMP_BACK_SECONDS = 3.0

NODE_CPU_SECONDS_DESC = Desc(
    build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "seconds_total"),
    "Seconds the CPUs spent in each mode.",
    ("cpu", "mode"),
)

_JUMP_BACK_MESSAGE = (
    f"CPU Idle counter jumped backwards more than {JUMP_BACK_SECONDS:f} seconds, "
    "possible hotplug event, resetting CPU stats"
)


@dataclass
class CPUStat:
    """Seconds one CPU spent in each mode."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


_STAT_FIELDS = tuple(f.name for f in dataclasses.fields(CPUStat))

# Order in which modes are exported, paired with the field holding them.
_SECONDS_MODES = (
    ("user", "user"),
    ("nice", "nice"),
    ("system", "system"),
    ("idle", "idle"),
    ("iowait", "iowait"),
    ("irq", "irq"),
    ("softirq", "softirq"),
    ("steal", "steal"),
)


@dataclass
class CPUInfo:
    """One processor entry of /proc/cpuinfo."""

    processor: int
    vendor_id: str = ""
    cpu_family: str = ""
    model: str = ""
    model_name: str = ""
    stepping: str = ""
    microcode: str = ""
    cpu_mhz: float = 0.0
    cache_size: str = ""
    physical_id: str = ""
    core_id: str = ""
    flags: list[str] = field(default_factory=list)
    bugs: list[str] = field(default_factory=list)


_CPUINFO_KEYS = {
    "vendor_id": "vendor_id",
    "cpu family": "cpu_family",
    "model": "model",
    "model name": "model_name",
    "stepping": "stepping",
    "microcode": "microcode",
    "cache size": "cache_size",
    "physical id": "physical_id",
    "core id": "core_id",
}


def parse_proc_stat(text: str) -> list[CPUStat]:
    """Return the per-CPU statistics of /proc/stat, indexed by CPU number."""
    by_id: dict[int, CPUStat] = {}
    for line in text.splitlines():
        parts = line.split()
        if not parts or not parts[0].startswith("cpu"):
            continue
        name = parts[0]
        values: list[float] = []
        for raw in parts[1 : 1 + len(_STAT_FIELDS)]:
            try:
                values.append(float(raw) / USER_HZ)
            except ValueError:
                break
        if not values:
            raise ValueError(f"couldn't parse {line!r} (cpu)")
        if name == "cpu":
            continue
        try:
            cpu_id = int(name[3:])
        except ValueError as err:
            raise ValueError(f"couldn't parse {line!r} (cpu/cpuid)") from err
        by_id[cpu_id] = CPUStat(**dict(zip(_STAT_FIELDS, values)))
    if not by_id:
        return []
    return [by_id.get(i, CPUStat()) for i in range(max(by_id) + 1)]


def parse_cpuinfo(text: str) -> list[CPUInfo]:
    """Parse /proc/cpuinfo into one entry per processor."""
    entries: list[CPUInfo] = []
    current: CPUInfo | None = None
    for line in text.splitlines():
        if not line.strip() or ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip()
        value = value.strip()
        if key == "processor":
            try:
                current = CPUInfo(processor=int(value))
            except ValueError as err:
                raise ValueError(f"invalid processor number {value!r}") from err
            entries.append(current)
            continue
        if current is None:
            raise ValueError("invalid cpuinfo file: expected processor entry first")
        if key in _CPUINFO_KEYS:
            setattr(current, _CPUINFO_KEYS[key], value)
        elif key == "cpu MHz":
            try:
                current.cpu_mhz = float(value)
            except ValueError as err:
                raise ValueError(f"invalid cpu MHz {value!r}") from err
        elif key == "flags":
            current.flags = value.split()
        elif key == "bugs":
            current.bugs = value.split()
    if not entries:
        raise ValueError("invalid cpuinfo file: no processor entries")
    return entries


def _compile(pattern: str) -> re.Pattern[str] | None:
    return re.compile(pattern) if pattern else None


class CPUCollector(Collector):
    """Exposes CPU metrics from /proc/stat, /proc/cpuinfo and sysfs."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.cpu_stats: list[CPUStat] = []
        self._lock = threading.Lock()

        self.cpu = NODE_CPU_SECONDS_DESC
        self.cpu_info = Desc(
            build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "info"),
            "CPU information from /proc/cpuinfo.",
            ("package", "core", "cpu", "vendor", "family", "model", "model_name",
             "microcode", "stepping", "cachesize"),
        )
        self.cpu_flags_info = Desc(
            build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "flag_info"),
            "The `flags` field of CPU information from /proc/cpuinfo taken from the first core.",
            ("flag",),
        )
        self.cpu_bugs_info = Desc(
            build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "bug_info"),
            "The `bugs` field of CPU information from /proc/cpuinfo taken from the first core.",
            ("bug",),
        )
        self.cpu_guest = Desc(
            build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "guest_seconds_total"),
            "Seconds the CPUs spent in guests (VMs) for each mode.",
            ("cpu", "mode"),
        )
        self.cpu_core_throttle = Desc(
            build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "core_throttles_total"),
            "Number of times this CPU core has been throttled.",
            ("package", "core"),
        )
        self.cpu_package_throttle = Desc(
            build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "package_throttles_total"),
            "Number of times this CPU package has been throttled.",
            ("package",),
        )

        self.enable_info = settings.cpu_info
        if (settings.cpu_flags_include or settings.cpu_bugs_include) and not self.enable_info:
            self.enable_info = True
            self.logger.info(
                "--collector.cpu.info has been set to `true` because you set the following "
                "flags, like --collector.cpu.info.flags-include and "
                "--collector.cpu.info.bugs-include"
            )
        try:
            self.flags_include = _compile(settings.cpu_flags_include)
            self.bugs_include = _compile(settings.cpu_bugs_include)
        except re.error as err:
            raise ValueError(
                "fail to compile --collector.cpu.info.flags-include and "
                "--collector.cpu.info.bugs-include, the values of them must be "
                f"regular expressions: {err}"
            ) from err

    def update(self) -> Iterator[Metric]:
        if self.enable_info:
            yield from self._update_info()
        yield from self._update_stat()
        yield from self._update_thermal_throttle()

    def _update_info(self) -> Iterator[Metric]:
        with open(self.settings.proc_file("cpuinfo"), encoding="utf-8") as handle:
            info = parse_cpuinfo(handle.read())
        for cpu in info:
            yield self.cpu_info.metric(
                ValueType.GAUGE,
                1,
                cpu.physical_id,
                cpu.core_id,
                str(cpu.processor),
                cpu.vendor_id,
                cpu.cpu_family,
                cpu.model,
                cpu.model_name,
                cpu.microcode,
                cpu.stepping,
                cpu.cache_size,
            )
        if info:
            first = info[0]
            yield from self._field_info(first.flags, self.flags_include, self.cpu_flags_info)
            yield from self._field_info(first.bugs, self.bugs_include, self.cpu_bugs_info)

    @staticmethod
    def _field_info(
        values: list[str], pattern: re.Pattern[str] | None, desc: Desc
    ) -> Iterator[Metric]:
        if pattern is None:
            return
        for value in values:
            if pattern.search(value):
                yield desc.metric(ValueType.GAUGE, 1, value)

    def _update_thermal_throttle(self) -> Iterator[Metric]:
        cpus = sorted(glob.glob(self.settings.sys_file("devices/system/cpu/cpu[0-9]*")))
        package_throttles: dict[int, int] = {}
        package_core_throttles: dict[int, dict[int, int]] = {}

        for cpu in cpus:
            try:
                package_id = read_uint_from_file(
                    os.path.join(cpu, "topology", "physical_package_id")
                )
            except (OSError, ValueError):
                self.logger.debug("CPU is missing physical_package_id: cpu=%s", cpu)
                continue
            try:
                core_id = read_uint_from_file(os.path.join(cpu, "topology", "core_id"))
            except (OSError, ValueError):
                self.logger.debug("CPU is missing core_id: cpu=%s", cpu)
                continue

            # Core throttles come first: some systems expose only those.
            cores = package_core_throttles.setdefault(package_id, {})
            if core_id not in cores:
                try:
                    cores[core_id] = read_uint_from_file(
                        os.path.join(cpu, "thermal_throttle", "core_throttle_count")
                    )
                except (OSError, ValueError):
                    self.logger.debug("CPU is missing core_throttle_count: cpu=%s", cpu)

            if package_id not in package_throttles:
                try:
                    package_throttles[package_id] = read_uint_from_file(
                        os.path.join(cpu, "thermal_throttle", "package_throttle_count")
                    )
                except (OSError, ValueError):
                    self.logger.debug("CPU is missing package_throttle_count: cpu=%s", cpu)

        for package_id, count in sorted(package_throttles.items()):
            yield self.cpu_package_throttle.metric(ValueType.COUNTER, count, str(package_id))
        for package_id, cores in sorted(package_core_throttles.items()):
            for core_id, count in sorted(cores.items()):
                yield self.cpu_core_throttle.metric(
                    ValueType.COUNTER, count, str(package_id), str(core_id)
                )

    def _update_stat(self) -> Iterator[Metric]:
        with open(self.settings.proc_file("stat"), encoding="utf-8") as handle:
            stats = parse_proc_stat(handle.read())
        self.update_cpu_stats(stats)
        with self._lock:
            snapshot = [dataclasses.replace(s) for s in self.cpu_stats]

        for cpu_id, stat in enumerate(snapshot):
            cpu_num = str(cpu_id)
            for mode, attr in _SECONDS_MODES:
                yield self.cpu.metric(ValueType.COUNTER, getattr(stat, attr), cpu_num, mode)
            if self.settings.cpu_guest:
                # Guest time is also counted in user and nice.
                yield self.cpu_guest.metric(ValueType.COUNTER, stat.guest, cpu_num, "user")
                yield self.cpu_guest.metric(ValueType.COUNTER, stat.guest_nice, cpu_num, "nice")

    def update_cpu_stats(self, new_stats: list[CPUStat]) -> None:
        """Merge fresh readings into the cache, keeping counters monotonic."""
        with self._lock:
            if len(self.cpu_stats) != len(new_stats):
                self.cpu_stats = [CPUStat() for _ in new_stats]

            for cpu, (old, new) in enumerate(zip(self.cpu_stats, new_stats)):
                if old.idle - new.idle >= JUMP_BACK_SECONDS:
                    self.logger.debug(
                        "%s: cpu=%d old_value=%f new_value=%f",
                        _JUMP_BACK_MESSAGE, cpu, old.idle, new.idle,
                    )
                    old = CPUStat()
                    self.cpu_stats[cpu] = old

                for name in _STAT_FIELDS:
                    old_value = getattr(old, name)
                    new_value = getattr(new, name)
                    if new_value >= old_value:
                        setattr(old, name, new_value)
                    else:
                        self.logger.debug(
                            "CPU %s counter jumped backwards: cpu=%d old_value=%f new_value=%f",
                            name, cpu, old_value, new_value,
                        )
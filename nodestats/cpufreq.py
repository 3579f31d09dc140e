"""CPU frequency statistics from sysfs cpufreq."""

from __future__ import annotations

import glob
import logging
import os
import re
from dataclasses import dataclass
from typing import Iterator

from nodestats.cpu import CPU_SUBSYSTEM
from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings, read_uint_from_file

_CPU_DIR_RE = re.compile(r"cpu([0-9]+)")

# Values in sysfs are kHz.
_KHZ = 1000.0


@dataclass
class CPUFreqStats:
    """cpufreq readings of one CPU thread in kHz; None where not exposed."""

    name: str
    cpuinfo_current_frequency: int | None = None
    cpuinfo_minimum_frequency: int | None = None
    cpuinfo_maximum_frequency: int | None = None
    scaling_current_frequency: int | None = None
    scaling_minimum_frequency: int | None = None
    scaling_maximum_frequency: int | None = None


_FILES = {
    "cpuinfo_current_frequency": "cpuinfo_cur_freq",
    "cpuinfo_minimum_frequency": "cpuinfo_min_freq",
    "cpuinfo_maximum_frequency": "cpuinfo_max_freq",
    "scaling_current_frequency": "scaling_cur_freq",
    "scaling_minimum_frequency": "scaling_min_freq",
    "scaling_maximum_frequency": "scaling_max_freq",
}


def _optional_uint(path: str) -> int | None:
    try:
        return read_uint_from_file(path)
    except (FileNotFoundError, PermissionError):
        return None


def read_cpufreq(sys_path: str) -> list[CPUFreqStats]:
    """Read cpufreq data of every CPU that exposes it, ordered by CPU number."""
    cpus: list[tuple[int, str]] = []
    for path in glob.glob(os.path.join(sys_path, "devices", "system", "cpu", "cpu[0-9]*")):
        match = _CPU_DIR_RE.fullmatch(os.path.basename(path))
        if match is not None:
            cpus.append((int(match.group(1)), path))

    stats: list[CPUFreqStats] = []
    for number, path in sorted(cpus):
        freq_dir = os.path.join(path, "cpufreq")
        if not os.path.isdir(freq_dir):
            continue
        values = {
            attr: _optional_uint(os.path.join(freq_dir, filename))
            for attr, filename in _FILES.items()
        }
        stats.append(CPUFreqStats(str(number), **values))
    return stats


def _desc(name: str, help_text: str) -> Desc:
    return Desc(build_fq_name(NAMESPACE, CPU_SUBSYSTEM, name), help_text, ("cpu",))


class CPUFreqCollector(Collector):
    """Exposes current, minimum and maximum CPU frequencies in hertz."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        if not os.path.isdir(settings.sys_path):
            raise OSError(f"failed to open sysfs: {settings.sys_path} is not a directory")
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.descs = {
            "cpuinfo_current_frequency": _desc(
                "frequency_hertz", "Current cpu thread frequency in hertz."
            ),
            "cpuinfo_minimum_frequency": _desc(
                "frequency_min_hertz", "Minimum cpu thread frequency in hertz."
            ),
            "cpuinfo_maximum_frequency": _desc(
                "frequency_max_hertz", "Maximum cpu thread frequency in hertz."
            ),
            "scaling_current_frequency": _desc(
                "scaling_frequency_hertz", "Current scaled CPU thread frequency in hertz."
            ),
            "scaling_minimum_frequency": _desc(
                "scaling_frequency_min_hertz", "Minimum scaled CPU thread frequency in hertz."
            ),
            "scaling_maximum_frequency": _desc(
                "scaling_frequency_max_hertz", "Maximum scaled CPU thread frequency in hertz."
            ),
        }

    def update(self) -> Iterator[Metric]:
        for stats in read_cpufreq(self.settings.sys_path):
            for attr, desc in self.descs.items():
                value = getattr(stats, attr)
                if value is not None:
                    yield desc.metric(ValueType.GAUGE, value * _KHZ, stats.name)
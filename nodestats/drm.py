"""Statistics of AMD GPUs from /sys/class/drm."""

from __future__ import annotations

import glob
import logging
import os
import re
from dataclasses import dataclass
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings, read_uint_from_file

DRM_SUBSYSTEM = "drm"

_CARD_RE = re.compile(r"card[0-9]+")


@dataclass
class AMDGPUStats:
    """Readings of one card driven by amdgpu."""

    name: str
    gpu_busy_percent: int = 0
    memory_gtt_size: int = 0
    memory_gtt_used: int = 0
    memory_visible_vram_size: int = 0
    memory_visible_vram_used: int = 0
    memory_vram_size: int = 0
    memory_vram_used: int = 0
    memory_vram_vendor: str = ""
    power_dpm_force_performance_level: str = ""
    unique_id: str = ""


_UINT_FILES = {
    "gpu_busy_percent": "gpu_busy_percent",
    "memory_gtt_size": "mem_info_gtt_total",
    "memory_gtt_used": "mem_info_gtt_used",
    "memory_visible_vram_size": "mem_info_vis_vram_total",
    "memory_visible_vram_used": "mem_info_vis_vram_used",
    "memory_vram_size": "mem_info_vram_total",
    "memory_vram_used": "mem_info_vram_used",
}

_STRING_FILES = {
    "memory_vram_vendor": "mem_info_vram_vendor",
    "power_dpm_force_performance_level": "power_dpm_force_performance_level",
    "unique_id": "unique_id",
}


def _uint_or_zero(path: str) -> int:
    try:
        return read_uint_from_file(path)
    except FileNotFoundError:
        return 0


def _string_or_empty(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as handle:
            return handle.read().strip()
    except FileNotFoundError:
        return ""


def _is_amdgpu(card: str) -> bool:
    driver = os.path.join(card, "device", "driver")
    if not os.path.exists(driver):
        return False
    return os.path.basename(os.path.realpath(driver)) == "amdgpu"


def read_amdgpu_stats(sys_path: str) -> list[AMDGPUStats]:
    """Read statistics of every DRM card bound to the amdgpu driver."""
    stats: list[AMDGPUStats] = []
    cards = glob.glob(os.path.join(sys_path, "class", "drm", "card[0-9]*"))
    for card in sorted(cards, key=lambda p: int(os.path.basename(p)[4:]) if _CARD_RE.fullmatch(os.path.basename(p)) else -1):
        name = os.path.basename(card)
        if not _CARD_RE.fullmatch(name) or not _is_amdgpu(card):
            continue
        device = os.path.join(card, "device")
        values: dict[str, object] = {
            attr: _uint_or_zero(os.path.join(device, filename))
            for attr, filename in _UINT_FILES.items()
        }
        values.update(
            (attr, _string_or_empty(os.path.join(device, filename)))
            for attr, filename in _STRING_FILES.items()
        )
        stats.append(AMDGPUStats(name, **values))
    return stats


def _desc(name: str, help_text: str, labels: tuple[str, ...] = ("card",)) -> Desc:
    return Desc(build_fq_name(NAMESPACE, DRM_SUBSYSTEM, name), help_text, labels)


class DRMCollector(Collector):
    """Exposes GPU load and memory usage of amdgpu cards."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        if not os.path.isdir(settings.sys_path):
            raise OSError(f"failed to open sysfs: {settings.sys_path} is not a directory")
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.card_info = _desc(
            "card_info",
            "Card information",
            ("card", "memory_vendor", "power_performance_level", "unique_id", "vendor"),
        )
        self.gauges = {
            "gpu_busy_percent": _desc(
                "gpu_busy_percent", "How busy the GPU is as a percentage."
            ),
            "memory_gtt_size": _desc(
                "memory_gtt_size_bytes",
                "The size of the graphics translation table (GTT) block in bytes.",
            ),
            "memory_gtt_used": _desc(
                "memory_gtt_used_bytes",
                "The used amount of the graphics translation table (GTT) block in bytes.",
            ),
            "memory_vram_size": _desc("memory_vram_size_bytes", "The size of VRAM in bytes."),
            "memory_vram_used": _desc(
                "memory_vram_used_bytes", "The used amount of VRAM in bytes."
            ),
            "memory_visible_vram_size": _desc(
                "memory_vis_vram_size_bytes", "The size of visible VRAM in bytes."
            ),
            "memory_visible_vram_used": _desc(
                "memory_vis_vram_used_bytes", "The used amount of visible VRAM in bytes."
            ),
        }

    def update(self) -> Iterator[Metric]:
        vendor = "amd"
        for stats in read_amdgpu_stats(self.settings.sys_path):
            yield self.card_info.metric(
                ValueType.GAUGE,
                1,
                stats.name,
                stats.memory_vram_vendor,
                stats.power_dpm_force_performance_level,
                stats.unique_id,
                vendor,
            )
            for attr, desc in self.gauges.items():
                yield desc.metric(ValueType.GAUGE, getattr(stats, attr), stats.name)
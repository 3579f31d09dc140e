"""The set of collectors known to the exporter."""

from __future__ import annotations

from nodestats.arp import ArpCollector
from nodestats.bcache import BcacheCollector
from nodestats.bonding import BondingCollector
from nodestats.btrfs import BtrfsCollector
from nodestats.buddyinfo import BuddyinfoCollector
from nodestats.conntrack import ConntrackCollector
from nodestats.cpu import CPUCollector
from nodestats.cpufreq import CPUFreqCollector
from nodestats.diskstats import DiskstatsCollector
from nodestats.drbd import DRBDCollector
from nodestats.drm import DRMCollector
from nodestats.edac import EdacCollector
from nodestats.entropy import EntropyCollector
from nodestats.registry import CollectorRegistry

_DEFAULT_ENABLED = True
_DEFAULT_DISABLED = False

_COLLECTORS = (
    ("arp", _DEFAULT_ENABLED, ArpCollector),
    ("bcache", _DEFAULT_ENABLED, BcacheCollector),
    ("bonding", _DEFAULT_ENABLED, BondingCollector),
    ("btrfs", _DEFAULT_ENABLED, BtrfsCollector),
    ("buddyinfo", _DEFAULT_DISABLED, BuddyinfoCollector),
    ("conntrack", _DEFAULT_ENABLED, ConntrackCollector),
    ("cpu", _DEFAULT_ENABLED, CPUCollector),
    ("cpufreq", _DEFAULT_ENABLED, CPUFreqCollector),
    ("diskstats", _DEFAULT_ENABLED, DiskstatsCollector),
    ("drbd", _DEFAULT_DISABLED, DRBDCollector),
    ("drm", _DEFAULT_DISABLED, DRMCollector),
    ("edac", _DEFAULT_ENABLED, EdacCollector),
    ("entropy", _DEFAULT_ENABLED, EntropyCollector),
)


def default_registry() -> CollectorRegistry:
    """A fresh registry holding every collector with its default state."""
    registry = CollectorRegistry()
    for name, enabled, factory in _COLLECTORS:
        registry.register(name, enabled, factory)
    return registry
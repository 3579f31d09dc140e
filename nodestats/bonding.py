"""Configured and active slaves of bonding interfaces."""

from __future__ import annotations

import logging
import os
from typing import Iterator

from nodestats.metrics import Desc, Metric, TypedDesc, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, NoDataError, Settings


def _read(path: str) -> str:
    with open(path, encoding="utf-8") as handle:
        return handle.read()


def _slave_state(root: str, master: str, slave: str) -> str:
    try:
        return _read(os.path.join(root, master, f"lower_{slave}", "bonding_slave", "mii_status"))
    except FileNotFoundError:
        # some older kernels use the slave_ prefix
        return _read(os.path.join(root, master, f"slave_{slave}", "bonding_slave", "mii_status"))


def read_bonding_stats(root: str) -> dict[str, tuple[int, int]]:
    """Map each bonding master to (configured slaves, slaves whose link is up)."""
    status: dict[str, tuple[int, int]] = {}
    for master in _read(os.path.join(root, "bonding_masters")).split():
        slaves = _read(os.path.join(root, master, "bonding", "slaves")).split()
        active = sum(1 for slave in slaves if _slave_state(root, master, slave).strip() == "up")
        status[master] = (len(slaves), active)
    return status


class BondingCollector(Collector):
    """Exposes slave counts of Linux bonding interfaces."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.slaves = TypedDesc(
            Desc(
                build_fq_name(NAMESPACE, "bonding", "slaves"),
                "Number of configured slaves per bonding interface.",
                ("master",),
            ),
            ValueType.GAUGE,
        )
        self.active = TypedDesc(
            Desc(
                build_fq_name(NAMESPACE, "bonding", "active"),
                "Number of active slaves per bonding interface.",
                ("master",),
            ),
            ValueType.GAUGE,
        )

    def update(self) -> Iterator[Metric]:
        status_dir = self.settings.sys_file("class/net")
        try:
            stats = read_bonding_stats(status_dir)
        except FileNotFoundError as err:
            self.logger.debug("Not collecting bonding, file does not exist: %s", status_dir)
            raise NoDataError() from err
        for master, (slaves, active) in sorted(stats.items()):
            yield self.slaves.metric(slaves, master)
            yield self.active.metric(active, master)
"""Kernel entropy pool statistics."""

from __future__ import annotations

import logging
import os
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings, read_uint_from_file


def _read_optional_uint(path: str) -> int | None:
    try:
        return read_uint_from_file(path)
    except FileNotFoundError:
        return None


class EntropyCollector(Collector):
    """Exposes available entropy and the entropy pool size."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        if not os.path.isdir(settings.proc_path):
            raise OSError(f"failed to open procfs: {settings.proc_path} is not a directory")
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.entropy_avail = Desc(
            build_fq_name(NAMESPACE, "", "entropy_available_bits"),
            "Bits of available entropy.",
        )
        self.entropy_pool_size = Desc(
            build_fq_name(NAMESPACE, "", "entropy_pool_size_bits"),
            "Bits of entropy pool.",
        )

    def update(self) -> Iterator[Metric]:
        base = self.settings.proc_file("sys", "kernel", "random")
        try:
            avail = _read_optional_uint(os.path.join(base, "entropy_avail"))
            pool_size = _read_optional_uint(os.path.join(base, "poolsize"))
        except (OSError, ValueError) as err:
            raise OSError(f"failed to get kernel random stats: {err}") from err

        if avail is None:
            raise ValueError("couldn't get entropy_avail")
        yield self.entropy_avail.metric(ValueType.GAUGE, avail)

        if pool_size is None:
            raise ValueError("couldn't get entropy poolsize")
        yield self.entropy_pool_size.metric(ValueType.GAUGE, pool_size)
"""Memory controller error counts from the EDAC subsystem."""

from __future__ import annotations

import glob
import logging
import os
import re
from typing import Iterator

from nodestats.metrics import Desc, Metric, ValueType, build_fq_name
from nodestats.registry import NAMESPACE, Collector, Settings, read_uint_from_file

EDAC_SUBSYSTEM = "edac"

_MEM_CONTROLLER_RE = re.compile(r".*devices/system/edac/mc/mc([0-9]*)")
_MEM_CSROW_RE = re.compile(r".*devices/system/edac/mc/mc[0-9]*/csrow([0-9]*)")


def _read_count(path: str, what: str) -> int:
    try:
        return read_uint_from_file(path)
    except (OSError, ValueError) as err:
        raise RuntimeError(f"couldn't get {what}: {err}") from err


def _as_posix(path: str) -> str:
    return path.replace(os.sep, "/")


class EdacCollector(Collector):
    """Exposes correctable and uncorrectable memory error counts."""

    def __init__(self, settings: Settings, logger: logging.Logger | None = None) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.ce_count = Desc(
            build_fq_name(NAMESPACE, EDAC_SUBSYSTEM, "correctable_errors_total"),
            "Total correctable memory errors.",
            ("controller",),
        )
        self.ue_count = Desc(
            build_fq_name(NAMESPACE, EDAC_SUBSYSTEM, "uncorrectable_errors_total"),
            "Total uncorrectable memory errors.",
            ("controller",),
        )
        self.csrow_ce_count = Desc(
            build_fq_name(NAMESPACE, EDAC_SUBSYSTEM, "csrow_correctable_errors_total"),
            "Total correctable memory errors for this csrow.",
            ("controller", "csrow"),
        )
        self.csrow_ue_count = Desc(
            build_fq_name(NAMESPACE, EDAC_SUBSYSTEM, "csrow_uncorrectable_errors_total"),
            "Total uncorrectable memory errors for this csrow.",
            ("controller", "csrow"),
        )

    def update(self) -> Iterator[Metric]:
        counter = ValueType.COUNTER
        controllers = sorted(glob.glob(self.settings.sys_file("devices/system/edac/mc/mc[0-9]*")))
        for controller in controllers:
            match = _MEM_CONTROLLER_RE.match(_as_posix(controller))
            if match is None:
                raise ValueError(f"controller string didn't match regexp: {controller}")
            number = match.group(1)

            value = _read_count(
                os.path.join(controller, "ce_count"), f"ce_count for controller {number}"
            )
            yield self.ce_count.metric(counter, value, number)

            value = _read_count(
                os.path.join(controller, "ce_noinfo_count"),
                f"ce_noinfo_count for controller {number}",
            )
            yield self.csrow_ce_count.metric(counter, value, number, "unknown")

            value = _read_count(
                os.path.join(controller, "ue_count"), f"ue_count for controller {number}"
            )
            yield self.ue_count.metric(counter, value, number)

            value = _read_count(
                os.path.join(controller, "ue_noinfo_count"),
                f"ue_noinfo_count for controller {number}",
            )
            yield self.csrow_ue_count.metric(counter, value, number, "unknown")

            for csrow in sorted(glob.glob(os.path.join(controller, "csrow[0-9]*"))):
                csrow_match = _MEM_CSROW_RE.match(_as_posix(csrow))
                if csrow_match is None:
                    raise ValueError(f"csrow string didn't match regexp: {csrow}")
                row = csrow_match.group(1)

                value = _read_count(
                    os.path.join(csrow, "ce_count"),
                    f"ce_count for controller/csrow {number}/{row}",
                )
                yield self.csrow_ce_count.metric(counter, value, number, row)

                value = _read_count(
                    os.path.join(csrow, "ue_count"),
                    f"ue_count for controller/csrow {number}/{row}",
                )
                yield self.csrow_ue_count.metric(counter, value, number, row)
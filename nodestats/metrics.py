"""Metric descriptors, metric samples and the text exposition format."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable


class ValueType(Enum):
    """Kind of a metric value as written in the TYPE line."""

    COUNTER = "counter"
    GAUGE = "gauge"
    UNTYPED = "untyped"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts of a metric name with underscores."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(frozen=True)
class Desc:
    """Describes a metric family: its name, help text and label names."""

    fq_name: str
    help: str
    label_names: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "label_names", tuple(self.label_names or ()))

    def metric(self, value_type: ValueType, value: float, *args: str) -> "Metric":
        """Create a sample of this family with the given label values."""
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.fq_name}: expected {len(self.label_names)} label values, "
                f"got {len(args)}"
            )
        for label in args:
            if not isinstance(label, str):
                raise TypeError(f"{self.fq_name}: label value {label!r} is not a string")
        return Metric(self, ValueType(value_type), float(value), tuple(args))


@dataclass(frozen=True)
class Metric:
    """A single sample with a value and label values."""

    desc: Desc
    value_type: ValueType
    value: float
    label_values: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.desc.fq_name

    @property
    def labels(self) -> dict[str, str]:
        return dict(zip(self.desc.label_names, self.label_values))


@dataclass(frozen=True)
class TypedDesc:
    """A descriptor paired with the value type its samples carry."""

    desc: Desc
    value_type: ValueType

    def metric(self, value: float, *args: str) -> Metric:
        return self.desc.metric(self.value_type, value, *args)


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign, digit_tuple, exponent = Decimal(repr(float(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    point = len(digits) + exponent
    exp = point - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        exp_sign = "-" if exp < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{digits}"
    if point >= len(digits):
        return prefix + digits + "0" * (point - len(digits))
    return f"{prefix}{digits[:point]}.{digits[point:]}"


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _label_key(metric: Metric) -> tuple[tuple[str, str], ...]:
    return tuple(sorted(metric.labels.items()))


def format_text(metrics: Iterable[Metric]) -> str:
    """Render samples in the text exposition format, sorted by name and labels."""
    families: dict[str, list[Metric]] = {}
    for metric in metrics:
        family = families.setdefault(metric.name, [])
        if family and family[0].value_type is not metric.value_type:
            raise ValueError(f"{metric.name}: inconsistent metric types")
        family.append(metric)

    lines: list[str] = []
    for name in sorted(families):
        samples = sorted(families[name], key=_label_key)
        first = samples[0]
        lines.append(f"# HELP {name} {_escape_help(first.desc.help)}")
        lines.append(f"# TYPE {name} {first.value_type.value}")
        seen: set[tuple[tuple[str, str], ...]] = set()
        for sample in samples:
            key = _label_key(sample)
            if key in seen:
                raise ValueError(f"{name}: duplicate sample for labels {dict(key)}")
            seen.add(key)
            if key:
                rendered = ",".join(f'{k}="{_escape_label(v)}"' for k, v in key)
                lines.append(f"{name}{{{rendered}}} {_format_value(sample.value)}")
            else:
                lines.append(f"{name} {_format_value(sample.value)}")
    return "".join(line + "\n" for line in lines)
"""Conversion of pod metrics into kubelet summary statistics."""

from __future__ import annotations

import math
import re
from fractions import Fraction
from typing import Any, Iterable

_BINARY_SUFFIXES = {
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
    "Pi": 2**50,
    "Ei": 2**60,
}
_DECIMAL_SUFFIXES = {
    "n": Fraction(1, 10**9),
    "u": Fraction(1, 10**6),
    "m": Fraction(1, 10**3),
    "": Fraction(1),
    "k": Fraction(10**3),
    "M": Fraction(10**6),
    "G": Fraction(10**9),
    "T": Fraction(10**12),
    "P": Fraction(10**15),
    "E": Fraction(10**18),
}
_QUANTITY = re.compile(r"^([+-]?(?:\d+\.?\d*|\.\d+))(.*)$")
_EXPONENT = re.compile(r"^[eE]([+-]?\d+)$")


def _parse_quantity(value: Any) -> Fraction:
    """Parse a resource quantity such as ``100m`` or ``1Gi`` to an exact number."""
    if isinstance(value, (int, Fraction)):
        return Fraction(value)
    if isinstance(value, float):
        return Fraction(str(value))
    match = _QUANTITY.match(str(value).strip())
    if match is None:
        raise ValueError(f"invalid quantity: {value!r}")
    number, suffix = Fraction(match.group(1)), match.group(2)
    if suffix in _BINARY_SUFFIXES:
        return number * _BINARY_SUFFIXES[suffix]
    if suffix in _DECIMAL_SUFFIXES:
        return number * _DECIMAL_SUFFIXES[suffix]
    exponent = _EXPONENT.match(suffix)
    if exponent is not None:
        return number * Fraction(10) ** int(exponent.group(1))
    raise ValueError(f"invalid quantity suffix: {value!r}")


def _cpu_stats(time: Any, nano_cores: int) -> dict[str, Any]:
    return {"time": time, "usageNanoCores": nano_cores}


def _memory_stats(time: Any, working_set: int) -> dict[str, Any]:
    return {"time": time, "workingSetBytes": working_set}


def convert_pod_stats(metric: dict[str, Any] | None) -> dict[str, Any] | None:
    """Turn one pod's metrics into pod statistics, or None when there is no metric."""
    if metric is None:
        return None
    metadata = metric.get("metadata") or {}
    timestamp = metric.get("timestamp")
    containers = []
    cpu_all = memory_all = 0
    for container in metric.get("containers") or []:
        usage = container.get("usage") or {}
        nano_cores = math.ceil(_parse_quantity(usage.get("cpu", "0")) * 10**9)
        memory = math.ceil(_parse_quantity(usage.get("memory", "0")))
        containers.append(
            {
                "name": container.get("name", ""),
                "startTime": timestamp,
                "cpu": _cpu_stats(timestamp, nano_cores),
                "memory": _memory_stats(timestamp, memory),
            }
        )
        cpu_all += nano_cores
        memory_all += memory
    return {
        "podRef": {
            "name": metadata.get("name", ""),
            "namespace": metadata.get("namespace", ""),
        },
        "startTime": timestamp,
        "containers": containers,
        "cpu": _cpu_stats(timestamp, cpu_all),
        "memory": _memory_stats(timestamp, memory_all),
    }


def summarize_pod_metrics(
    node_name: str, metrics: Iterable[dict[str, Any]]
) -> dict[str, Any]:
    """Build a stats summary for a node from the metrics of the pods it runs."""
    pods = []
    cpu_all = memory_all = 0
    start = None
    for metric in metrics:
        stats = convert_pod_stats(metric)
        pods.append(stats)
        cpu_all += stats["cpu"]["usageNanoCores"]
        memory_all += stats["memory"]["workingSetBytes"]
        if not start:
            start = stats["startTime"]
    return {
        "node": {
            "nodeName": node_name,
            "startTime": start,
            "cpu": _cpu_stats(start, cpu_all),
            "memory": _memory_stats(start, memory_all),
        },
        "pods": pods,
    }
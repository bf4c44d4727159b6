"""Freeze cache of unschedulable nodes and node affinity rewriting."""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from tensilekube.k8s import HOST_NAME_KEY

DEFAULT_FREEZE_TTL = 180.0

_REQUIRED = "requiredDuringSchedulingIgnoredDuringExecution"
_NOT_IN = "NotIn"

CheckValidFunc = Callable[[str, str, Any], bool]


@dataclass(frozen=True)
class _Entry:
    frozen_at: datetime
    expires_at: float


class UnschedulableCache:
    """Remembers, per owner, the nodes a pod could not be scheduled to.

    Entries expire ``ttl`` seconds after they were added. Adding a node that
    is already frozen for an owner keeps its original freeze time.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_FREEZE_TTL,
        clock: Callable[[], float] = time.monotonic,
        timestamp: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._timestamp = timestamp
        self._owners: dict[str, dict[str, _Entry]] = {}
        self._lock = threading.Lock()

    def _live(self, owner_id: str) -> dict[str, _Entry] | None:
        entries = self._owners.get(owner_id)
        if entries is None:
            return None
        now = self._clock()
        for node in [n for n, e in entries.items() if now > e.expires_at]:
            del entries[node]
        return entries

    def add(self, node: str, owner_id: str) -> None:
        """Freeze ``node`` for ``owner_id`` unless it is frozen already."""
        with self._lock:
            entries = self._live(owner_id)
            if entries is None:
                entries = self._owners.setdefault(owner_id, {})
            if node in entries:
                return
            entries[node] = _Entry(self._timestamp(), self._clock() + self._ttl)

    def get_freeze_nodes(self, owner_id: str) -> list[str]:
        """Return the nodes currently frozen for ``owner_id``."""
        with self._lock:
            entries = self._live(owner_id)
            return list(entries) if entries else []

    def get_freeze_time(self, node: str, owner_id: str) -> datetime | None:
        """Return when ``node`` was frozen for ``owner_id``, or None."""
        with self._lock:
            entries = self._live(owner_id)
            if not entries or node not in entries:
                return None
            return entries[node].frozen_at


def _filter_requirements(
    expressions: list[dict[str, Any]],
    owner_id: str,
    node_names: list[str],
    check_func: CheckValidFunc | None,
    expire_time: Any,
) -> tuple[list[dict[str, Any]], int]:
    result: list[dict[str, Any]] = []
    count = 0
    for expr in expressions:
        if expr.get("key") != HOST_NAME_KEY or expr.get("operator") != _NOT_IN:
            result.append(expr)
            continue
        kept: list[str] = []
        for value in expr.get("values") or []:
            if value in node_names:
                continue
            if check_func is None:
                kept.append(value)
                continue
            if not check_func(value, owner_id, expire_time) and value:
                kept.append(value)
        result.append({**expr, "values": kept + list(node_names)})
        count = len(kept)
    return result, count


def replace_pod_node_name_node_affinity(
    affinity: dict[str, Any] | None,
    owner_id: str,
    expire_time: Any,
    check_func: CheckValidFunc | None,
    *node_names: str,
) -> tuple[dict[str, Any], int]:
    """Make the required node affinity exclude ``node_names`` by hostname.

    Returns the affinity and the number of earlier excluded nodes that are
    still kept.
    """
    names = list(node_names)
    requirement = {"key": HOST_NAME_KEY, "operator": _NOT_IN, "values": names}

    def selector() -> dict[str, Any]:
        return {"nodeSelectorTerms": [{"matchExpressions": [copy.deepcopy(requirement)]}]}

    count = 1
    if affinity is None:
        return {"nodeAffinity": {_REQUIRED: selector()}}, count

    node_affinity = affinity.get("nodeAffinity")
    if node_affinity is None:
        affinity["nodeAffinity"] = {_REQUIRED: selector()}
        return affinity, count

    required = node_affinity.get(_REQUIRED)
    if required is None:
        node_affinity[_REQUIRED] = selector()
        return affinity, count

    terms = required.get("nodeSelectorTerms")
    if terms is None:
        required["nodeSelectorTerms"] = [{"matchFields": [copy.deepcopy(requirement)]}]
        return affinity, count

    new_terms = []
    for term in terms:
        if term.get("matchExpressions") is None:
            continue
        term = dict(term)
        term["matchExpressions"], count = _filter_requirements(
            term["matchExpressions"], owner_id, names, check_func, expire_time
        )
        new_terms.append(term)
    required["nodeSelectorTerms"] = new_terms
    return affinity, count
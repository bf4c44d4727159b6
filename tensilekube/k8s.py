"""Cluster-wide label keys, scheduling selections and object helpers."""

from __future__ import annotations

import copy
import json
import os
import signal
import threading
from dataclasses import dataclass
from typing import Any

GLOBAL_LABEL = "global"
SELECTOR_KEY = "clusterSelector"
SELECTED_NODE_KEY = "volume.kubernetes.io/selected-node"
HOST_NAME_KEY = "kubernetes.io/hostname"
BETA_HOST_NAME_KEY = "beta.kubernetes.io/hostname"
LABEL_OS_BETA = "beta.kubernetes.io/os"
VIRTUAL_POD_LABEL = "virtual-pod"
VIRTUAL_KUBELET_LABEL = "virtual-kubelet"
TRIPPED_LABELS = "tripped-labels"
CLUSTER_ID = "clusterID"
NODE_TYPE = "type"
BATCH_POD_LABEL = "pod-group.scheduling.sigs.k8s.io"
TAINT_NODE_NOT_READY = "node.kubernetes.io/not-ready"
TAINT_NODE_UNREACHABLE = "node.kubernetes.io/unreachable"
CREATED_BY_DESCHEDULER = "create-by-descheduler"
DESCHEDULE_COUNT = "sigs.k8s.io/deschedule-count"

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _set_or_pop(mapping: dict[str, Any], key: str, value: Any) -> None:
    if value is None:
        mapping.pop(key, None)
    else:
        mapping[key] = value


@dataclass
class ClustersNodeSelection:
    """Scheduling parameters carried from the upper cluster to a lower one."""

    node_selector: dict[str, str] | None = None
    affinity: dict[str, Any] | None = None
    tolerations: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out empty fields."""
        data: dict[str, Any] = {}
        if self.node_selector:
            data["nodeSelector"] = copy.deepcopy(self.node_selector)
        if self.affinity is not None:
            data["affinity"] = copy.deepcopy(self.affinity)
        if self.tolerations:
            data["tolerations"] = copy.deepcopy(self.tolerations)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ClustersNodeSelection":
        """Build a selection from its JSON form; raise TypeError on a malformed one."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise TypeError("cluster node selection must be a JSON object")
        node_selector = data.get("nodeSelector")
        if node_selector is not None and not (
            isinstance(node_selector, dict)
            and all(isinstance(v, str) for v in node_selector.values())
        ):
            raise TypeError("nodeSelector must map strings to strings")
        affinity = data.get("affinity")
        if affinity is not None and not isinstance(affinity, dict):
            raise TypeError("affinity must be an object")
        tolerations = data.get("tolerations")
        if tolerations is not None and not (
            isinstance(tolerations, list)
            and all(isinstance(t, dict) for t in tolerations)
        ):
            raise TypeError("tolerations must be a list of objects")
        return cls(
            node_selector=copy.deepcopy(node_selector),
            affinity=copy.deepcopy(affinity),
            tolerations=copy.deepcopy(tolerations),
        )


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _normalize(value: Any) -> Any:
    return json.loads(_dumps(value))


def _same(old: Any, new: Any) -> bool:
    return type(old) is type(new) and old == new


def _merge_diff(old: dict[str, Any], new: dict[str, Any]) -> dict[str, Any]:
    patch: dict[str, Any] = {key: None for key in old if key not in new}
    for key, value in new.items():
        if key not in old:
            patch[key] = value
        elif isinstance(old[key], dict) and isinstance(value, dict):
            sub = _merge_diff(old[key], value)
            if sub:
                patch[key] = sub
        elif not _same(old[key], value):
            patch[key] = value
    return patch


def create_merge_patch(original: Any, new: Any) -> str:
    """Return the JSON merge patch that turns ``original`` into ``new``."""
    old_doc, new_doc = _normalize(original), _normalize(new)
    if not isinstance(old_doc, dict) or not isinstance(new_doc, dict):
        raise TypeError("merge patches can only be made between JSON objects")
    return _dumps(_merge_diff(old_doc, new_doc))


def _escape(token: Any) -> str:
    return str(token).replace("~", "~0").replace("/", "~1")


def _json_diff(old: Any, new: Any, path: str, ops: list[dict[str, Any]]) -> None:
    if isinstance(old, dict) and isinstance(new, dict):
        for key in sorted(new):
            child = f"{path}/{_escape(key)}"
            if key in old:
                _json_diff(old[key], new[key], child, ops)
            else:
                ops.append({"op": "add", "path": child, "value": new[key]})
        for key in sorted(old):
            if key not in new:
                ops.append({"op": "remove", "path": f"{path}/{_escape(key)}"})
    elif isinstance(old, list) and isinstance(new, list):
        for index, (old_item, new_item) in enumerate(zip(old, new)):
            _json_diff(old_item, new_item, f"{path}/{index}", ops)
        for index, item in enumerate(new[len(old):], start=len(old)):
            ops.append({"op": "add", "path": f"{path}/{index}", "value": item})
        for index in reversed(range(len(new), len(old))):
            ops.append({"op": "remove", "path": f"{path}/{index}"})
    elif not _same(old, new):
        ops.append({"op": "replace", "path": path, "value": new})


def create_json_patch(original: Any, new: Any) -> str:
    """Return the JSON patch operations that turn ``original`` into ``new``."""
    ops: list[dict[str, Any]] = []
    _json_diff(_normalize(original), _normalize(new), "", ops)
    return _dumps(ops)


_handler_lock = threading.Lock()
_handler_installed = False


def setup_signal_handler() -> threading.Event:
    """Install SIGINT/SIGTERM handlers and return an event set on the first signal.

    A second signal ends the process with exit code 1. Calling this twice
    raises RuntimeError.
    """
    global _handler_installed
    with _handler_lock:
        if _handler_installed:
            raise RuntimeError("signal handler already set up")
        _handler_installed = True
    stop = threading.Event()

    def _handle(signum: int, frame: Any) -> None:
        if stop.is_set():
            os._exit(1)
        stop.set()

    for sig in SHUTDOWN_SIGNALS:
        signal.signal(sig, _handle)
    return stop


def _labels(obj: dict[str, Any] | None) -> dict[str, str]:
    if obj is None:
        return {}
    return (obj.get("metadata") or {}).get("labels") or {}


def is_virtual_node(node: dict[str, Any] | None) -> bool:
    """Return True if the node is a virtual-kubelet node."""
    return _labels(node).get(NODE_TYPE) == VIRTUAL_KUBELET_LABEL


def is_virtual_pod(pod: dict[str, Any]) -> bool:
    """Return True if the pod carries the virtual-pod label."""
    return _labels(pod).get(VIRTUAL_POD_LABEL) == "true"


def get_cluster_id(node: dict[str, Any] | None) -> str:
    """Return the cluster id from the node labels, or an empty string."""
    return _labels(node).get(CLUSTER_ID, "")


def update_config_map(old: dict[str, Any], new: dict[str, Any]) -> None:
    """Copy labels and data of ``new`` into ``old``."""
    _set_or_pop(old.setdefault("metadata", {}), "labels", _labels_or_none(new))
    _set_or_pop(old, "data", new.get("data"))
    _set_or_pop(old, "binaryData", new.get("binaryData"))


def update_secret(old: dict[str, Any], new: dict[str, Any]) -> None:
    """Copy labels, data and type of ``new`` into ``old``."""
    _set_or_pop(old.setdefault("metadata", {}), "labels", _labels_or_none(new))
    _set_or_pop(old, "data", new.get("data"))
    _set_or_pop(old, "stringData", new.get("stringData"))
    _set_or_pop(old, "type", new.get("type"))


def _labels_or_none(obj: dict[str, Any]) -> dict[str, str] | None:
    return (obj.get("metadata") or {}).get("labels")
"""Conversions between pods of the upper cluster and pods created in lower clusters."""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Iterable

from tensilekube.k8s import (
    SELECTOR_KEY,
    TRIPPED_LABELS,
    VIRTUAL_POD_LABEL,
    ClustersNodeSelection,
)

logger = logging.getLogger(__name__)

_SERVICE_ACCOUNT_TOKEN_PREFIX = "default-token"
_REQUIRED = "requiredDuringSchedulingIgnoredDuringExecution"
_PREFERRED = "preferredDuringSchedulingIgnoredDuringExecution"


def _set_or_pop(mapping: dict[str, Any], key: str, value: Any) -> None:
    if value is None:
        mapping.pop(key, None)
    else:
        mapping[key] = value


def _is_token(item: dict[str, Any]) -> bool:
    return item.get("name", "").startswith(_SERVICE_ACCOUNT_TOKEN_PREFIX)


def _trim_containers(containers: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop the service-account token mounts added automatically to containers."""
    trimmed = []
    for container in containers:
        container = dict(container)
        if "volumeMounts" in container:
            container["volumeMounts"] = [
                m for m in container["volumeMounts"] or [] if not _is_token(m)
            ]
        trimmed.append(container)
    return trimmed


def _trim_labels(
    labels: dict[str, str], ignore_labels: Iterable[str] | None
) -> dict[str, str] | None:
    """Remove the ignored labels and return what was removed."""
    if ignore_labels is None:
        return None
    tripped: dict[str, str] = {}
    for key in ignore_labels:
        if not labels.get(key):
            continue
        tripped[key] = labels.pop(key)
    return tripped


def _recover_selectors(spec: dict[str, Any], cns: ClustersNodeSelection | None) -> None:
    """Restore node selector, tolerations and affinity from a cluster selection."""
    if cns is not None:
        _set_or_pop(spec, "nodeSelector", copy.deepcopy(cns.node_selector))
        _set_or_pop(spec, "tolerations", copy.deepcopy(cns.tolerations))
        affinity = spec.get("affinity")
        cns_affinity = cns.affinity
        if affinity is None:
            _set_or_pop(spec, "affinity", copy.deepcopy(cns_affinity))
        elif cns_affinity is not None and cns_affinity.get("nodeAffinity") is not None:
            node_affinity = copy.deepcopy(cns_affinity["nodeAffinity"])
            if affinity.get("nodeAffinity") is not None:
                _set_or_pop(affinity["nodeAffinity"], _REQUIRED, node_affinity.get(_REQUIRED))
            else:
                affinity["nodeAffinity"] = node_affinity
        else:
            affinity.pop("nodeAffinity", None)
    else:
        spec.pop("nodeSelector", None)
        spec.pop("tolerations", None)
        affinity = spec.get("affinity")
        if affinity is not None and affinity.get("nodeAffinity") is not None:
            affinity["nodeAffinity"].pop(_REQUIRED, None)

    affinity = spec.get("affinity")
    if affinity is None:
        return
    node_affinity = affinity.get("nodeAffinity")
    if node_affinity is not None and node_affinity.get(_REQUIRED) is None and (
        node_affinity.get(_PREFERRED) is None
    ):
        affinity.pop("nodeAffinity")
    if all(
        affinity.get(key) is None
        for key in ("nodeAffinity", "podAffinity", "podAntiAffinity")
    ):
        spec.pop("affinity")


def trim_pod(
    pod: dict[str, Any], ignore_labels: Iterable[str] | None = None
) -> dict[str, Any]:
    """Return a copy of ``pod`` fit to be created in a lower cluster."""
    spec = pod.get("spec") or {}
    volumes = [v for v in spec.get("volumes") or [] if not _is_token(v)]

    pod_copy = copy.deepcopy(pod)
    meta = pod_copy.setdefault("metadata", {})
    trim_object_meta(meta)
    if meta.get("labels") is None:
        meta["labels"] = {}
    if meta.get("annotations") is None:
        meta["annotations"] = {}
    labels, annotations = meta["labels"], meta["annotations"]
    labels[VIRTUAL_POD_LABEL] = "true"

    cns = convert_annotations((pod.get("metadata") or {}).get("annotations"))
    new_spec = pod_copy.setdefault("spec", {})
    _recover_selectors(new_spec, cns)
    for key in ("containers", "initContainers"):
        containers = new_spec.get(key)
        _set_or_pop(new_spec, key, None if containers is None else _trim_containers(containers))
    new_spec["volumes"] = copy.deepcopy(volumes)
    new_spec["nodeName"] = ""
    pod_copy["status"] = {}

    tripped = _trim_labels(labels, ignore_labels)
    if tripped is not None:
        annotations[TRIPPED_LABELS] = json.dumps(
            tripped, sort_keys=True, separators=(",", ":")
        )
    return pod_copy


def get_updated_pod(
    orig: dict[str, Any], update: dict[str, Any], ignore_labels: Iterable[str] | None = None
) -> None:
    """Apply the updatable fields of ``update`` to ``orig`` in place.

    Images, labels, annotations and the active deadline are copied;
    tolerations are taken from a changed cluster selector.
    """
    orig_spec = orig.setdefault("spec", {})
    update_spec = update.get("spec") or {}
    for key in ("initContainers", "containers"):
        originals = orig_spec.get(key) or []
        updates = update_spec.get(key) or []
        if len(updates) < len(originals):
            raise ValueError(f"update has fewer {key} than the original pod")
        for container, updated in zip(originals, updates):
            _set_or_pop(container, "image", updated.get("image"))

    update_meta = update.setdefault("metadata", {})
    if update_meta.get("annotations") is None:
        update_meta["annotations"] = {}
    orig_meta = orig.setdefault("metadata", {})
    orig_selector = (orig_meta.get("annotations") or {}).get(SELECTOR_KEY, "")
    if orig_selector != update_meta["annotations"].get(SELECTOR_KEY, ""):
        cns = convert_annotations(update_meta["annotations"])
        if cns is not None:
            _set_or_pop(orig_spec, "tolerations", copy.deepcopy(cns.tolerations))

    _set_or_pop(orig_meta, "labels", update_meta.get("labels"))
    orig_meta["annotations"] = update_meta["annotations"]
    _set_or_pop(orig_spec, "activeDeadlineSeconds", update_spec.get("activeDeadlineSeconds"))
    if orig_meta.get("labels") is not None:
        _trim_labels(orig_meta["labels"], ignore_labels)


def trim_object_meta(meta: dict[str, Any]) -> None:
    """Remove the uid, resource version, self link and owner references."""
    for key in ("uid", "resourceVersion", "selfLink", "ownerReferences"):
        meta.pop(key, None)


def recover_labels(labels: dict[str, str], annotations: dict[str, str] | None) -> None:
    """Put back the labels recorded in the tripped-labels annotation."""
    tripped = (annotations or {}).get(TRIPPED_LABELS, "")
    if not tripped:
        return
    try:
        restored = json.loads(tripped)
    except ValueError:
        return
    if not isinstance(restored, dict) or not all(
        isinstance(v, str) for v in restored.values()
    ):
        return
    labels.update(restored)


def convert_annotations(annotations: dict[str, str] | None) -> ClustersNodeSelection | None:
    """Parse the cluster selector annotation, or return None if absent or invalid."""
    if annotations is None:
        return None
    value = annotations.get(SELECTOR_KEY, "")
    if not value:
        return None
    try:
        return ClustersNodeSelection.from_dict(json.loads(value))
    except (ValueError, TypeError) as err:
        logger.debug("invalid cluster selector %r: %s", value, err)
        return None
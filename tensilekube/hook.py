"""Admission webhook that moves scheduling constraints of virtual pods into annotations."""

from __future__ import annotations

import base64
import copy
import json
import logging
from http import HTTPStatus
from typing import Any, Callable, Iterable

from tensilekube.cache import UnschedulableCache, replace_pod_node_name_node_affinity
from tensilekube.k8s import (
    CREATED_BY_DESCHEDULER,
    SELECTED_NODE_KEY,
    SELECTOR_KEY,
    TAINT_NODE_NOT_READY,
    TAINT_NODE_UNREACHABLE,
    ClustersNodeSelection,
    create_json_patch,
    is_virtual_pod,
)

logger = logging.getLogger(__name__)

_REQUIRED = "requiredDuringSchedulingIgnoredDuringExecution"
_UNSCHEDULABLE_NODE = "unschedulable-node"

_DESIRED_TOLERATIONS: dict[str, dict[str, str]] = {
    TAINT_NODE_NOT_READY: {
        "key": TAINT_NODE_NOT_READY,
        "operator": "Exists",
        "effect": "NoExecute",
    },
    TAINT_NODE_UNREACHABLE: {
        "key": TAINT_NODE_UNREACHABLE,
        "operator": "Exists",
        "effect": "NoExecute",
    },
}

PvcGetter = Callable[[str, str], dict[str, Any]]


def _load_object(raw: Any) -> dict[str, Any]:
    if raw is None:
        raise ValueError("empty object in admission request")
    if isinstance(raw, (str, bytes, bytearray)):
        raw = json.loads(raw)
    if not isinstance(raw, dict):
        raise ValueError("admission object is not a JSON object")
    return copy.deepcopy(raw)


class WebhookServer:
    """Mutating webhook for pods that are placed on virtual nodes."""

    def __init__(
        self,
        pvc_getter: PvcGetter | None = None,
        ignore_keys: Iterable[str] | None = None,
        freeze_cache: UnschedulableCache | None = None,
    ) -> None:
        self.pvc_getter = pvc_getter
        self.ignore_keys = list(ignore_keys) if ignore_keys is not None else None
        self.freeze_cache = freeze_cache if freeze_cache is not None else UnschedulableCache()

    def mutate(self, review: dict[str, Any]) -> dict[str, Any]:
        """Return the admission response for an admission review."""
        request = review.get("request") or {}
        if (request.get("kind") or {}).get("kind") != "Pod":
            return {"allowed": False}
        try:
            pod = _load_object(request.get("object"))
        except ValueError as err:
            logger.error("Could not unmarshal raw object %s err: %s", request, err)
            return {"allowed": False, "result": {"message": str(err)}}

        if should_skip(pod):
            return {"allowed": True}

        ref = get_owner_ref(pod)
        clone = copy.deepcopy(pod)
        operation = request.get("operation")
        if operation == "UPDATE":
            self._set_unschedulable_nodes(ref, clone)
            return {"allowed": True}
        if operation == "CREATE":
            nodes = self._get_unschedulable_nodes(ref, clone)
            if nodes:
                logger.info("Create pod %s Not nodes %s", clone.get("metadata", {}).get("name"), nodes)
                spec = clone.setdefault("spec", {})
                spec["affinity"], _ = replace_pod_node_name_node_affinity(
                    spec.get("affinity"), ref, 0, None, *nodes
                )
        else:
            logger.warning("Skip operation: %s", operation)

        self.try_set_node_name(clone)
        inject(clone, self.ignore_keys)
        result: dict[str, Any] = {}
        patch = ""
        try:
            patch = create_json_patch(pod, clone)
        except (TypeError, ValueError) as err:
            result = {"code": 403, "message": str(err)}
        logger.info("Final patch %s", patch)
        return {
            "allowed": True,
            "result": result,
            "patch": base64.b64encode(patch.encode()).decode(),
            "patchType": "JSONPatch",
        }

    def serve(self, body: bytes | str | None) -> tuple[int, bytes]:
        """Handle a request body; return the HTTP status and the response body."""
        if not body:
            return int(HTTPStatus.BAD_REQUEST), b"empty body"
        try:
            review = json.loads(body)
        except ValueError as err:
            return int(HTTPStatus.BAD_REQUEST), f"could not decode body: {err}".encode()
        if not isinstance(review, dict) or not isinstance(review.get("request"), dict):
            return int(HTTPStatus.BAD_REQUEST), b"admission review has no request"
        response = self.mutate(review)
        response["uid"] = review["request"].get("uid", "")
        review["response"] = response
        return int(HTTPStatus.OK), json.dumps(review).encode()

    def try_set_node_name(self, pod: dict[str, Any]) -> None:
        """Pin the pod to the node already selected for one of its claims."""
        spec = pod.get("spec") or {}
        volumes = spec.get("volumes")
        if volumes is None:
            return
        namespace = (pod.get("metadata") or {}).get("namespace", "")
        for volume in volumes:
            source = volume.get("persistentVolumeClaim")
            if source is None:
                continue
            node_name = self._node_name_from_pvc(namespace, source.get("claimName", ""))
            if node_name:
                pod.setdefault("spec", {})["nodeName"] = node_name
                logger.info("Set desired node name to %s", node_name)
                return

    def _node_name_from_pvc(self, namespace: str, name: str) -> str:
        if self.pvc_getter is None:
            return ""
        try:
            pvc = self.pvc_getter(namespace, name)
        except LookupError:
            return ""
        if not pvc:
            return ""
        annotations = (pvc.get("metadata") or {}).get("annotations")
        if annotations is None:
            return ""
        return annotations.get(SELECTED_NODE_KEY, "")

    def _set_unschedulable_nodes(self, ref: str, pod: dict[str, Any]) -> None:
        if not ref:
            return
        annotations = (pod.get("metadata") or {}).get("annotations") or {}
        node = annotations.get(_UNSCHEDULABLE_NODE, "")
        if node:
            logger.info("Unschedulable nodes %s ref %s to cache", node, ref)
            self.freeze_cache.add(node, ref)

    def _get_unschedulable_nodes(self, ref: str, pod: dict[str, Any]) -> list[str]:
        if not ref or (pod.get("spec") or {}).get("nodeName"):
            return []
        nodes = self.freeze_cache.get_freeze_nodes(ref)
        logger.info("Not in nodes %s for %s", nodes, ref)
        return nodes


def _label_set(labels: Iterable[str] | None) -> set[str]:
    return {label for label in labels or () if label}


def inject(pod: dict[str, Any], ignore_keys: Iterable[str] | None = None) -> None:
    """Move the pod's scheduling constraints into the cluster selector annotation."""
    if skip_inject(pod):
        return
    spec = pod.setdefault("spec", {})
    affinity = None
    if spec.get("affinity") is not None:
        affinity = inject_affinity(spec["affinity"], ignore_keys)
    node_selector: dict[str, str] = {}
    if spec.get("nodeSelector") is not None:
        node_selector = inject_node_selector(spec["nodeSelector"], ignore_keys)

    cns = ClustersNodeSelection(
        node_selector=node_selector,
        affinity=affinity,
        tolerations=spec.get("tolerations"),
    )
    meta = pod.setdefault("metadata", {})
    if meta.get("annotations") is None:
        meta["annotations"] = {}
    meta["annotations"][SELECTOR_KEY] = json.dumps(cns.to_dict(), separators=(",", ":"))
    spec["tolerations"] = get_pod_tolerations(pod)


def get_pod_tolerations(pod: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the pod's tolerations with the system ones normalised and ensured."""
    not_ready = unschedulable = False
    tolerations = []
    for toleration in (pod.get("spec") or {}).get("tolerations") or []:
        key = toleration.get("key")
        if key == TAINT_NODE_NOT_READY:
            not_ready = True
        if key == TAINT_NODE_UNREACHABLE:
            unschedulable = True
        if key in _DESIRED_TOLERATIONS:
            tolerations.append(dict(_DESIRED_TOLERATIONS[key]))
        else:
            tolerations.append(toleration)
    return add_default_pod_tolerations(tolerations, not_ready, unschedulable)


def add_default_pod_tolerations(
    tolerations: list[dict[str, Any]], not_ready: bool, unschedulable: bool
) -> list[dict[str, Any]]:
    """Append the not-ready and unreachable tolerations that are missing."""
    result = list(tolerations)
    if not not_ready:
        result.append(dict(_DESIRED_TOLERATIONS[TAINT_NODE_NOT_READY]))
    if not unschedulable:
        result.append(dict(_DESIRED_TOLERATIONS[TAINT_NODE_UNREACHABLE]))
    return result


def inject_node_selector(
    node_selector: dict[str, str], ignore_labels: Iterable[str] | None = None
) -> dict[str, str]:
    """Keep only ignored keys in ``node_selector``; return the entries removed."""
    kept = _label_set(ignore_labels)
    moved = {}
    for key, value in list(node_selector.items()):
        if key in kept:
            continue
        del node_selector[key]
        moved[key] = value
    return moved


def inject_affinity(
    affinity: dict[str, Any], ignore_labels: Iterable[str] | None = None
) -> dict[str, Any] | None:
    """Move required node affinity terms not on ignored keys out of ``affinity``.

    Returns an affinity holding the moved requirements, or None if nothing moved.
    """
    node_affinity = affinity.get("nodeAffinity")
    if node_affinity is None:
        return None
    required = node_affinity.get(_REQUIRED)
    if required is None:
        return None
    kept_keys = _label_set(ignore_labels)

    moved_terms = []
    remaining_terms = []
    for term in required.get("nodeSelectorTerms") or []:
        moved: dict[str, Any] = {}
        remaining = dict(term)
        for field in ("matchExpressions", "matchFields"):
            requirements = term.get(field) or []
            moved_reqs = [copy.deepcopy(r) for r in requirements if r.get("key") not in kept_keys]
            if moved_reqs:
                moved[field] = moved_reqs
            if field in term:
                remaining[field] = [r for r in requirements if r.get("key") in kept_keys]
        if moved:
            moved_terms.append(moved)
        if remaining.get("matchExpressions") or remaining.get("matchFields"):
            remaining_terms.append(remaining)

    if remaining_terms:
        required["nodeSelectorTerms"] = remaining_terms
    else:
        node_affinity.pop(_REQUIRED, None)
    if not moved_terms:
        return None
    return {"nodeAffinity": {_REQUIRED: {"nodeSelectorTerms": moved_terms}}}


def should_skip(pod: dict[str, Any]) -> bool:
    """Return True for pods the webhook leaves alone."""
    meta = pod.get("metadata") or {}
    if meta.get("namespace") == "kube-system":
        return True
    labels = meta.get("labels")
    if labels is not None:
        if labels.get(CREATED_BY_DESCHEDULER) == "true":
            return True
        if not is_virtual_pod(pod):
            return True
    return False


def skip_inject(pod: dict[str, Any]) -> bool:
    """Return True if the pod has no scheduling constraints to move."""
    spec = pod.get("spec") or {}
    return (
        not spec.get("nodeSelector")
        and spec.get("affinity") is None
        and spec.get("tolerations") is None
    )


def get_owner_ref(pod: dict[str, Any]) -> str:
    """Return the uid of the pod's first owner, or an empty string."""
    refs = (pod.get("metadata") or {}).get("ownerReferences") or []
    return refs[0].get("uid", "") if refs else ""
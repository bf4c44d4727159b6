"""Helpers that inspect pods and nodes for the provider."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

_SERVICE_ACCOUNT_TOKEN_PREFIX = "default-token"


def _pod_name(pod: dict[str, Any]) -> str:
    return (pod.get("metadata") or {}).get("name", "")


def _volumes(pod: dict[str, Any]) -> list[dict[str, Any]]:
    return (pod.get("spec") or {}).get("volumes") or []


def get_secrets(pod: dict[str, Any]) -> list[str]:
    """Return the secrets a pod depends on, skipping the service-account token."""
    name = _pod_name(pod)
    secret_names: list[str] = []
    for volume in _volumes(pod):
        if volume.get("secret") is not None:
            if volume.get("name", "").startswith(_SERVICE_ACCOUNT_TOKEN_PREFIX):
                continue
            secret = volume["secret"]["secretName"]
        elif volume.get("cephfs") is not None:
            secret = volume["cephfs"]["secretRef"]["name"]
        elif volume.get("cinder") is not None:
            secret = volume["cinder"]["secretRef"]["name"]
        elif volume.get("rbd") is not None:
            secret = volume["rbd"]["secretRef"]["name"]
        else:
            logger.warning("Skip other type volumes")
            continue
        logger.info("pod %s depends on secret %s", name, secret)
        secret_names.append(secret)
    for ref in (pod.get("spec") or {}).get("imagePullSecrets") or []:
        secret_names.append(ref["name"])
    logger.info("pod %s depends on secrets %s", name, secret_names)
    return secret_names


def get_configmaps(pod: dict[str, Any]) -> list[str]:
    """Return the names of the configmaps mounted as volumes."""
    names = [
        v["configMap"]["name"] for v in _volumes(pod) if v.get("configMap") is not None
    ]
    logger.info("pod %s depends on configMap %s", _pod_name(pod), names)
    return names


def get_pvcs(pod: dict[str, Any]) -> list[str]:
    """Return the claim names of the persistent volume claims used by a pod."""
    names = [
        v["persistentVolumeClaim"]["claimName"]
        for v in _volumes(pod)
        if v.get("persistentVolumeClaim") is not None
    ]
    logger.info("pod %s depends on pvc %s", _pod_name(pod), names)
    return names


def check_node_status_ready(node: dict[str, Any]) -> bool:
    """Return True if the node has a Ready condition whose status is True."""
    conditions = (node.get("status") or {}).get("conditions") or []
    return any(
        c.get("type") == "Ready" and c.get("status") == "True" for c in conditions
    )


def compare_node_status_ready(old: dict[str, Any], new: dict[str, Any]) -> tuple[bool, bool]:
    """Return the readiness of the old and the new node."""
    return check_node_status_ready(old), check_node_status_ready(new)


def pod_stopped(pod: dict[str, Any]) -> bool:
    """Return True if the pod has finished and will never be restarted."""
    phase = (pod.get("status") or {}).get("phase")
    restart_policy = (pod.get("spec") or {}).get("restartPolicy")
    return phase in ("Succeeded", "Failed") and restart_policy == "Never"


_HEALTHY_CONDITIONS = (
    ("Ready", "True", "KubeletReady", "kubelet is posting ready status"),
    (
        "MemoryPressure",
        "False",
        "KubeletHasSufficientMemory",
        "kubelet has sufficient memory available",
    ),
    ("DiskPressure", "False", "KubeletHasNoDiskPressure", "kubelet has no disk pressure"),
    (
        "PIDPressure",
        "False",
        "KubeletHasSufficientPID",
        "kubelet has sufficient PID available",
    ),
)


def node_conditions(now: str | None = None) -> list[dict[str, str]]:
    """Return the conditions of a kubelet in perfect health, stamped with ``now``."""
    if now is None:
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return [
        {
            "type": ctype,
            "status": status,
            "lastHeartbeatTime": now,
            "lastTransitionTime": now,
            "reason": reason,
            "message": message,
        }
        for ctype, status, reason, message in _HEALTHY_CONDITIONS
    ]
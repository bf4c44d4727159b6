"""Sample pod and node objects used across the test suites."""

from __future__ import annotations

import copy
from typing import Any

TAINT_NODE_NOT_READY = "node.kubernetes.io/not-ready"
TAINT_NODE_UNREACHABLE = "node.kubernetes.io/unreachable"


def _secret_volume(
    name: str, reference: str, default_mode: int | None = None
) -> dict[str, Any]:
    """Build a volume backed by the named Secret object."""
    source: dict[str, Any] = {"secretName": reference}
    if default_mode is not None:
        source["defaultMode"] = default_mode
    return {"name": name, "secret": source}


_BASE_POD: dict[str, Any] = {
    "metadata": {"name": "testbase"},
    "spec": {
        "containers": [
            {
                "resources": {
                    "limits": {"cpu": "10"},
                    "requests": {"cpu": "10"},
                },
                "volumeMounts": [
                    {
                        "mountPath": "/var/run/secrets/kubernetes.io/serviceaccount",
                        "readOnly": True,
                        "name": "default-token-mvzcf",
                    }
                ],
            }
        ],
        "nodeName": "test",
        "volumes": [
            _secret_volume("default-token-mvzcf", "default-token-mvzcf", 420),
        ],
    },
    "status": {},
}


def _in_requirement(key: str) -> dict[str, Any]:
    return {"key": key, "operator": "In", "values": ["aa"]}


def _required_affinity(*keys: str) -> dict[str, Any]:
    return {
        "nodeAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [
                    {"matchExpressions": [_in_requirement(k) for k in keys]}
                ]
            }
        }
    }


def pod_for_test() -> dict[str, Any]:
    """Return a basic pod."""
    return copy.deepcopy(_BASE_POD)


def pod_for_test_with_system_tolerations() -> dict[str, Any]:
    """Return a basic pod tolerating the not-ready and unreachable taints."""
    pod = pod_for_test()
    pod["spec"]["tolerations"] = [
        {
            "key": TAINT_NODE_NOT_READY,
            "operator": "Exists",
            "effect": "NoExecute",
            "tolerationSeconds": 10,
        },
        {
            "key": TAINT_NODE_UNREACHABLE,
            "operator": "Exists",
            "effect": "NoExecute",
            "tolerationSeconds": 10,
        },
    ]
    return pod


def pod_for_test_with_other_tolerations() -> dict[str, Any]:
    """Return a basic pod with a non-system toleration."""
    pod = pod_for_test()
    pod["spec"]["tolerations"] = [
        {"key": "testbase", "operator": "Exists", "effect": "NoExecute"}
    ]
    return pod


def pod_for_test_with_secret() -> dict[str, Any]:
    """Return a basic pod with a secret volume and an image pull secret."""
    pod = pod_for_test()
    pod["spec"]["imagePullSecrets"] = [{"name": "testbase"}]
    pod["spec"]["volumes"] = [_secret_volume("test1", "test1")]
    return pod


def pod_for_test_with_configmap() -> dict[str, Any]:
    """Return a basic pod with a configmap volume."""
    pod = pod_for_test()
    pod["spec"]["volumes"] = [
        {"name": "testbase", "configMap": {"name": "testbase"}}
    ]
    return pod


def pod_for_test_with_pvc() -> dict[str, Any]:
    """Return a basic pod with two persistent volume claims."""
    pod = pod_for_test()
    pod["spec"]["volumes"] = [
        {
            "name": "testbase",
            "persistentVolumeClaim": {"claimName": "testbase-pvc", "readOnly": False},
        },
        {
            "name": "test1",
            "persistentVolumeClaim": {"claimName": "testbase-pvc1", "readOnly": False},
        },
    ]
    return pod


def pod_for_test_with_node_selector() -> dict[str, Any]:
    """Return a basic pod with a node selector."""
    pod = pod_for_test()
    pod["spec"]["nodeSelector"] = {"testbase": "testbase"}
    return pod


def pod_for_test_with_node_selector_cluster_id() -> dict[str, Any]:
    """Return a basic pod whose node selector includes a cluster id."""
    pod = pod_for_test()
    pod["spec"]["nodeSelector"] = {"testbase": "testbase", "clusterID": "1"}
    return pod


def pod_for_test_with_node_selector_and_affinity_cluster_id() -> dict[str, Any]:
    """Return a pod with a cluster-id node selector and a required node affinity."""
    pod = pod_for_test()
    pod["spec"]["nodeSelector"] = {"testbase": "testbase", "clusterID": "1"}
    pod["spec"]["affinity"] = _required_affinity("test0", "clusterID", "test", "test1")
    return pod


def node_for_test() -> dict[str, Any]:
    """Return a basic node with cpu and memory capacity."""
    return {
        "metadata": {"name": "testbase"},
        "spec": {},
        "status": {
            "capacity": {"cpu": "50", "memory": "50Gi"},
            "allocatable": {"cpu": "50", "memory": "50Gi"},
        },
    }


def pod_for_test_with_affinity() -> dict[str, Any]:
    """Return a basic pod with a node selector and a required node affinity."""
    pod = pod_for_test()
    pod["spec"]["nodeSelector"] = {"testbase": "testbase"}
    pod["spec"]["affinity"] = _required_affinity("testbase")
    return pod
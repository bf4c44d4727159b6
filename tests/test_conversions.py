import copy
import json

import pytest

from tensilekube import conversions
from tensilekube.k8s import ClustersNodeSelection
from tensilekube.testbase import (
    pod_for_test,
    pod_for_test_with_affinity,
    pod_for_test_with_node_selector,
    pod_for_test_with_other_tolerations,
)


def _desired():
    return {
        "metadata": {
            "name": "testbase",
            "labels": {"virtual-pod": "true"},
            "annotations": {},
        },
        "spec": {
            "containers": [
                {
                    "resources": {
                        "limits": {"cpu": "10"},
                        "requests": {"cpu": "10"},
                    },
                    "volumeMounts": [],
                }
            ],
            "nodeName": "",
            "volumes": [],
        },
        "status": {},
    }


def test_trim_object_meta():
    meta = {
        "name": "keep",
        "uid": "test",
        "resourceVersion": "test",
        "selfLink": "http://test.example.com",
        "ownerReferences": [
            {"apiVersion": "Apps/v1", "kind": "StatefulSet", "name": "test"}
        ],
    }
    conversions.trim_object_meta(meta)
    assert meta == {"name": "keep"}


def _cases():
    desired = _desired()
    desired1 = _desired()
    desired1["metadata"]["annotations"] = {
        "clusterSelector": '{"nodeSelector":{"test": "test"}}'
    }
    desired1["spec"]["nodeSelector"] = {"test": "test"}
    desired2 = _desired()
    desired2["metadata"]["annotations"] = {"tripped-labels": '{"test":"test"}'}

    base_pod1 = pod_for_test()
    base_pod1["metadata"]["annotations"] = {
        "clusterSelector": '{"nodeSelector":{"test": "test"}}'
    }
    base_pod2 = pod_for_test()
    base_pod2["metadata"]["labels"] = {"test": "test"}
    return [
        ("base test", pod_for_test(), desired, None),
        ("annotation clusterSelector", base_pod1, desired1, None),
        ("label", base_pod2, desired2, ["test"]),
        ("toleration", pod_for_test_with_other_tolerations(), desired, None),
        ("node selector", pod_for_test_with_node_selector(), desired, None),
        ("affinity", pod_for_test_with_affinity(), desired, None),
    ]


@pytest.mark.parametrize("name,pod,desired,trim_label", _cases())
def test_trim_pod(name, pod, desired, trim_label):
    assert conversions.trim_pod(pod, trim_label) == desired


def test_trim_pod_leaves_original_untouched():
    pod = pod_for_test_with_affinity()
    before = copy.deepcopy(pod)
    conversions.trim_pod(pod, ["x"])
    assert pod == before


def test_trim_pod_keeps_affinity_from_selector():
    pod = pod_for_test_with_affinity()
    selection = {
        "affinity": {
            "nodeAffinity": {
                "requiredDuringSchedulingIgnoredDuringExecution": {
                    "nodeSelectorTerms": [
                        {"matchExpressions": [{"key": "z", "operator": "In", "values": ["1"]}]}
                    ]
                }
            }
        }
    }
    pod["metadata"]["annotations"] = {"clusterSelector": json.dumps(selection)}
    trimmed = conversions.trim_pod(pod)
    assert trimmed["spec"]["affinity"] == selection["affinity"]
    assert "nodeSelector" not in trimmed["spec"]


def test_recover_labels_with_swapped_arguments_changes_nothing():
    annotations = {"tripped-labels": '{"test":"test"}'}
    old_labels = {}
    conversions.recover_labels(annotations, old_labels)
    assert old_labels == {}
    assert old_labels != {"test": "test"}


def test_recover_labels():
    labels = {"a": "b"}
    conversions.recover_labels(labels, {"tripped-labels": '{"test":"test"}'})
    assert labels == {"a": "b", "test": "test"}


def test_recover_labels_ignores_invalid_json():
    labels = {"a": "b"}
    conversions.recover_labels(labels, {"tripped-labels": "{not json"})
    assert labels == {"a": "b"}


def test_convert_annotations():
    cns = conversions.convert_annotations(
        {"clusterSelector": '{"nodeSelector":{"test":"test"}}'}
    )
    assert cns == ClustersNodeSelection(node_selector={"test": "test"})
    assert conversions.convert_annotations(None) is None
    assert conversions.convert_annotations({}) is None
    assert conversions.convert_annotations({"clusterSelector": "{bad"}) is None
    assert conversions.convert_annotations({"clusterSelector": '{"nodeSelector":1}'}) is None


def test_get_updated_pod():
    orig = pod_for_test()
    orig["spec"]["containers"][0]["image"] = "nginx:1"
    orig["metadata"]["labels"] = {"virtual-pod": "true"}
    update = pod_for_test()
    update["spec"]["containers"][0]["image"] = "nginx:2"
    update["spec"]["activeDeadlineSeconds"] = 30
    update["metadata"]["labels"] = {"virtual-pod": "true", "zone": "a"}
    update["metadata"]["annotations"] = {
        "clusterSelector": '{"tolerations":[{"key":"k","operator":"Exists"}]}'
    }
    conversions.get_updated_pod(orig, update, ["zone"])
    assert orig["spec"]["containers"][0]["image"] == "nginx:2"
    assert orig["spec"]["activeDeadlineSeconds"] == 30
    assert orig["spec"]["tolerations"] == [{"key": "k", "operator": "Exists"}]
    assert orig["metadata"]["labels"] == {"virtual-pod": "true"}


def test_get_updated_pod_sets_empty_annotations():
    orig = pod_for_test()
    update = pod_for_test()
    conversions.get_updated_pod(orig, update, None)
    assert update["metadata"]["annotations"] == {}
    assert orig["metadata"]["annotations"] == {}


def test_get_updated_pod_rejects_missing_containers():
    orig = pod_for_test()
    update = pod_for_test()
    update["spec"]["containers"] = []
    with pytest.raises(ValueError):
        conversions.get_updated_pod(orig, update, None)
# tensilekube

Building blocks for presenting a lower Kubernetes cluster as a single virtual
node in an upper cluster. Everything works on plain Kubernetes objects held as
dictionaries, in the same shape the API server sends and receives as JSON. The
package has no dependencies beyond the standard library.

## Installation

```
pip install tensilekube
```

## Modules

- `tensilekube.helper`: `get_secrets`, `get_configmaps` and `get_pvcs` list the
  secrets, config maps and persistent volume claims a pod depends on (the
  automatic `default-token` secret volume is skipped; image pull secrets are
  included). `check_node_status_ready` and `compare_node_status_ready` read a
  node's `Ready` condition. `pod_stopped` is true for a pod that succeeded or
  failed with restart policy `Never`. `node_conditions(now=None)` returns the
  four healthy conditions a virtual node reports, stamped with `now` or the
  current UTC time.
- `tensilekube.metrics`: `convert_pod_stats` turns one pod's metrics object into
  pod statistics (CPU in nano-cores, memory working set in bytes, per container
  and in total). `summarize_pod_metrics(node_name, metrics)` adds them up into a
  node summary.
- `tensilekube.k8s`: label and annotation keys (`VIRTUAL_POD_LABEL`,
  `SELECTOR_KEY`, `CLUSTER_ID` and others), the `ClustersNodeSelection`
  dataclass with `to_dict` and `from_dict`, `create_merge_patch` and
  `create_json_patch` (both return JSON text), `is_virtual_node`,
  `is_virtual_pod`, `get_cluster_id`, `update_config_map`, `update_secret`, and
  `setup_signal_handler`, which returns a `threading.Event` set on the first
  SIGINT or SIGTERM and ends the process on the second.
- `tensilekube.conversions`: `trim_pod` returns a copy of a pod fit to be
  created in a lower cluster: owner data and status removed, token mounts
  dropped, the `virtual-pod` label set, scheduling constraints restored from
  the `clusterSelector` annotation, and ignored labels moved into the
  `tripped-labels` annotation. `recover_labels` puts those labels back.
  `get_updated_pod` applies images, labels, annotations, the active deadline
  and changed tolerations in place. `convert_annotations` parses the
  `clusterSelector` annotation and `trim_object_meta` strips identity fields.
- `tensilekube.cache`: `UnschedulableCache` remembers, per owner id, nodes that
  are frozen; entries expire after `ttl` seconds (180 by default).
  `replace_pod_node_name_node_affinity` rewrites a required node affinity so
  that it excludes given host names.
- `tensilekube.hook`: a mutating admission webhook. `WebhookServer.mutate`
  builds an admission response for an `AdmissionReview`; `WebhookServer.serve`
  takes a request body and returns `(status, response_body)`. Pods in
  `kube-system`, pods re-created by the descheduler and labelled pods that are
  not virtual pods are allowed unchanged. The module also exposes `inject`,
  `get_pod_tolerations`, `inject_node_selector`, `inject_affinity` and related
  checks.
- `tensilekube.testbase`: sample pods and a sample node for tests.

## Example

```python
import json

from tensilekube.conversions import trim_pod
from tensilekube.hook import WebhookServer, inject

pod = {
    "metadata": {"name": "web", "namespace": "default", "labels": {"virtual-pod": "true"}},
    "spec": {"nodeSelector": {"disk": "ssd"}, "containers": [{"name": "app"}]},
}

# Record the scheduling constraints in the clusterSelector annotation.
inject(pod, [])

# Strip the fields the lower cluster must not receive.
lower = trim_pod(pod, ["team"])

# pvc_getter(namespace, name) returns a claim, or raises LookupError.
server = WebhookServer(pvc_getter=None, ignore_keys=["clusterID"])
review = {
    "request": {
        "uid": "1",
        "kind": {"kind": "Pod"},
        "operation": "CREATE",
        "object": {
            "metadata": {"name": "web", "labels": {"virtual-pod": "true"}},
            "spec": {"nodeSelector": {"disk": "ssd"}},
        },
    }
}
status, body = server.serve(json.dumps(review))
```

The patch in the response is base64-encoded JSON patch text.

## What it does not do

The package makes no network calls. It holds no Kubernetes API client, does not
watch or list objects, does not create pods, secrets or config maps in any
cluster, and does not run a virtual-kubelet node, a scheduler or a
descheduler. `WebhookServer.serve` handles a request body but does not listen
on a socket or handle TLS; wire it into an HTTP server of your choice. There is
no command-line program.

## Tests

```
pip install -e .[test]
pytest
```
"""Helpers for presenting lower Kubernetes clusters as a virtual node: pod and node inspection, metrics summaries, pod conversions, a freeze cache and an admission webhook."""

__version__ = "0.1.0"

__all__ = ["cache", "conversions", "helper", "hook", "k8s", "metrics", "testbase"]
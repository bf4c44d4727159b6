[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tensilekube"
version = "0.1.0"
description = "Pod, node and admission helpers for federating lower Kubernetes clusters behind a virtual node"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "virtual-kubelet", "multi-cluster", "admission-webhook", "scheduling"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tensilekube"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

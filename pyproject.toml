[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kindcluster"
version = "0.1.0"
description = "Building blocks for local Kubernetes clusters whose nodes are Docker or Podman containers"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "kind", "docker", "podman", "containers", "cluster"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
    "Topic :: Software Development :: Testing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kindcluster"]

[tool.pytest.ini_options]
addopts = "-ra"

"""Building blocks for local Kubernetes clusters with Docker or Podman containers as nodes."""

__version__ = "0.1.0"
"""Cluster configuration types, provider interface and status reporting."""

from __future__ import annotations

import abc
import copy
import sys
from dataclasses import dataclass, field
from enum import Enum


class IPFamily(str, Enum):
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    DUAL_STACK = "dual"


class NodeRole(str, Enum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class MountPropagation(str, Enum):
    NONE = "None"
    HOST_TO_CONTAINER = "HostToContainer"
    BIDIRECTIONAL = "Bidirectional"


class PortMappingProtocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"
    SCTP = "SCTP"


@dataclass
class Mount:
    container_path: str = ""
    host_path: str = ""
    readonly: bool = False
    selinux_relabel: bool = False
    propagation: MountPropagation = MountPropagation.NONE


@dataclass
class PortMapping:
    container_port: int = 0
    host_port: int = 0
    listen_address: str = ""
    protocol: PortMappingProtocol | None = None


@dataclass
class NodeConfig:
    role: NodeRole = NodeRole.CONTROL_PLANE
    image: str = ""
    extra_mounts: list[Mount] = field(default_factory=list)
    extra_port_mappings: list[PortMapping] = field(default_factory=list)

    def copy(self) -> NodeConfig:
        """Return an independent deep copy."""
        return copy.deepcopy(self)


@dataclass
class Networking:
    ip_family: IPFamily = IPFamily.IPV4
    api_server_port: int = 0
    api_server_address: str = ""
    pod_subnet: str = ""
    service_subnet: str = ""


@dataclass
class ClusterConfig:
    name: str = ""
    nodes: list[NodeConfig] = field(default_factory=list)
    networking: Networking = field(default_factory=Networking)


@dataclass
class ProviderInfo:
    rootless: bool = False
    cgroup2: bool = False
    supports_memory_limit: bool = False
    supports_pids_limit: bool = False
    supports_cpu_shares: bool = False


class Status:
    """Reports the progress of long-running steps to a stream."""

    def __init__(self, stream=None):
        self._stream = stream if stream is not None else sys.stderr
        self._message: str | None = None

    def start(self, message: str) -> None:
        """Begin a step, finishing any step still in progress as successful."""
        self.end(True)
        self._message = message
        self._stream.write(f" • {message}  ...\n")

    def end(self, success: bool) -> None:
        """Finish the current step, if any."""
        if self._message is None:
            return
        mark = "✓" if success else "✗"
        self._stream.write(f" {mark} {self._message}\n")
        self._message = None


class Provider(abc.ABC):
    """A provider of cluster node infrastructure."""

    @abc.abstractmethod
    def provision(self, status, cfg):
        """Create and start the nodes for ``cfg``."""

    @abc.abstractmethod
    def list_clusters(self):
        """Return the names of clusters that have resources."""

    @abc.abstractmethod
    def list_nodes(self, cluster):
        """Return the nodes of ``cluster``."""

    @abc.abstractmethod
    def delete_nodes(self, nodes):
        """Delete the given nodes."""

    @abc.abstractmethod
    def get_api_server_endpoint(self, cluster):
        """Return the host endpoint of the cluster's API server."""

    @abc.abstractmethod
    def get_api_server_internal_endpoint(self, cluster):
        """Return the in-network endpoint of the cluster's API server."""

    @abc.abstractmethod
    def collect_logs(self, dir, nodes):
        """Populate ``dir`` with logs of the given nodes."""

    @abc.abstractmethod
    def info(self):
        """Return a ProviderInfo."""
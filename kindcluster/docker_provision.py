"""Planning and running the creation of docker node containers."""

from __future__ import annotations

import os
from enum import Enum

from .base import IPFamily, MountPropagation, NodeRole, PortMapping, PortMappingProtocol
from .common import (
    API_SERVER_INTERNAL_PORT,
    NO_PROXY,
    get_proxy_envs,
    make_node_namer,
    port_or_get_free_port,
)
from .docker_images import mount_dev_mapper, userns_remap
from .docker_network import CLUSTER_LABEL_KEY, NODE_ROLE_LABEL_KEY
from .nodeutils import CONTROL_PLANE_ROLE, EXTERNAL_LOAD_BALANCER_ROLE
from .nodes import RunError, command, output_lines

# Image run for the external load balancer of multi control plane clusters.
LOAD_BALANCER_IMAGE = "docker.io/kindest/haproxy:v20210715-a6da3463"

_KNOWN_PROTOCOLS = {p.value for p in PortMappingProtocol}


def _value(item) -> str:
    return item.value if isinstance(item, Enum) else str(item)


def _join_host_port(host: str, port) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def plan_creation(cfg, network_name: str):
    """Return a list of functions that each create one node container."""
    namer = make_node_namer(cfg.name)
    # All names are needed up front for NO_PROXY.
    names = [namer(_value(node.role)) for node in cfg.nodes]
    have_load_balancer = cluster_has_implicit_load_balancer(cfg)
    if have_load_balancer:
        names.append(namer(EXTERNAL_LOAD_BALANCER_ROLE))

    generic_args = common_args(cfg.name, cfg, network_name, names)

    api_server_port = cfg.networking.api_server_port
    api_server_address = cfg.networking.api_server_address
    funcs = []
    if have_load_balancer:
        # Only the load balancer exposes the configured endpoint.
        api_server_port = 0
        api_server_address = "127.0.0.1"
        if cfg.networking.ip_family == IPFamily.IPV6:
            api_server_address = "::1"
        lb_name = names[-1]

        def create_load_balancer():
            create_container(run_args_for_load_balancer(cfg, lb_name, generic_args))

        funcs.append(create_load_balancer)

    for node_cfg, name in zip(cfg.nodes, names):
        node = node_cfg.copy()
        for mount in node.extra_mounts:
            if not os.path.isabs(mount.host_path):
                try:
                    mount.host_path = os.path.abspath(mount.host_path)
                except (OSError, ValueError) as exc:
                    raise RuntimeError(
                        f"unable to resolve absolute path for hostPath: {mount.host_path!r}"
                    ) from exc

        role = _value(node.role)
        if role == NodeRole.CONTROL_PLANE.value:
            funcs.append(
                _control_plane_creator(
                    node, cfg.networking.ip_family, name, generic_args,
                    api_server_address, api_server_port,
                )
            )
        elif role == NodeRole.WORKER.value:
            funcs.append(
                _node_creator(node, cfg.networking.ip_family, name, generic_args)
            )
        else:
            raise RuntimeError(f"unknown node role: {role!r}")
    return funcs


def _control_plane_creator(node, ip_family, name, generic_args, address, port):
    def create():
        with_api = node.copy()
        with_api.extra_port_mappings.append(
            PortMapping(
                listen_address=address,
                host_port=port,
                container_port=API_SERVER_INTERNAL_PORT,
            )
        )
        create_container(run_args_for_node(with_api, ip_family, name, generic_args))

    return create


def _node_creator(node, ip_family, name, generic_args):
    def create():
        create_container(run_args_for_node(node, ip_family, name, generic_args))

    return create


def create_container(args) -> None:
    """Run ``docker`` with ``args`` to create a container."""
    try:
        command("docker", *args).run()
    except RunError as exc:
        raise RuntimeError("docker run error") from exc


def cluster_is_ipv6(cfg) -> bool:
    """Return whether the cluster uses IPv6, alone or in dual stack."""
    return cfg.networking.ip_family in (IPFamily.IPV6, IPFamily.DUAL_STACK)


def cluster_has_implicit_load_balancer(cfg) -> bool:
    """Return whether the cluster has more than one control plane node."""
    planes = sum(1 for node in cfg.nodes if _value(node.role) == CONTROL_PLANE_ROLE)
    return planes > 1


def common_args(cluster: str, cfg, network_name: str, node_names) -> list[str]:
    """Return the run arguments shared by every container of the cluster."""
    args = [
        "--detach",
        "--tty",
        "--label", f"{CLUSTER_LABEL_KEY}={cluster}",
        "--net", network_name,
        # Restart only on host or daemon reboot, as closely as docker allows.
        "--restart=on-failure:1",
        # The entrypoint must be PID 1.
        "--init=false",
    ]
    if cluster_is_ipv6(cfg):
        args += [
            "--sysctl=net.ipv6.conf.all.disable_ipv6=0",
            "--sysctl=net.ipv6.conf.all.forwarding=1",
        ]
    try:
        proxy_env = get_proxy_env(cfg, network_name, node_names)
    except Exception as exc:
        raise RuntimeError("proxy setup error") from exc
    for key, val in proxy_env.items():
        args += ["-e", f"{key}={val}"]
    if userns_remap():
        args.append("--userns=host")
    if mount_dev_mapper():
        args += ["--volume", "/dev/mapper:/dev/mapper"]
    return args


def run_args_for_node(node, cluster_ip_family, name: str, args) -> list[str]:
    """Return the full ``docker run`` arguments for a cluster node."""
    result = [
        "run",
        "--hostname", name,
        "--name", name,
        "--label", f"{NODE_ROLE_LABEL_KEY}={_value(node.role)}",
        "--privileged",
        "--security-opt", "seccomp=unconfined",
        "--security-opt", "apparmor=unconfined",
        "--tmpfs", "/tmp",
        "--tmpfs", "/run",
        "--volume", "/var",
        "--volume", "/lib/modules:/lib/modules:ro",
        "-e", "KIND_EXPERIMENTAL_CONTAINERD_SNAPSHOTTER",
        "--device", "/dev/fuse",
        *args,
    ]
    result += generate_mount_bindings(*node.extra_mounts)
    result += generate_port_mappings(cluster_ip_family, *node.extra_port_mappings)
    if _value(node.role) == NodeRole.CONTROL_PLANE.value:
        result += ["-e", "KUBECONFIG=/etc/kubernetes/admin.conf"]
    result.append(node.image)
    return result


def run_args_for_load_balancer(cfg, name: str, args) -> list[str]:
    """Return the full ``docker run`` arguments for the external load balancer."""
    result = [
        "run",
        "--hostname", name,
        "--name", name,
        "--label", f"{NODE_ROLE_LABEL_KEY}={EXTERNAL_LOAD_BALANCER_ROLE}",
        *args,
    ]
    result += generate_port_mappings(
        cfg.networking.ip_family,
        PortMapping(
            listen_address=cfg.networking.api_server_address,
            host_port=cfg.networking.api_server_port,
            container_port=API_SERVER_INTERNAL_PORT,
        ),
    )
    result.append(LOAD_BALANCER_IMAGE)
    return result


def get_proxy_env(cfg, network_name: str, node_names) -> dict[str, str]:
    """Return proxy variables, with network subnets and node names in NO_PROXY."""
    envs = get_proxy_envs(cfg)
    if envs:
        no_proxy = [
            *get_subnets(network_name),
            envs.get(NO_PROXY, ""),
            *node_names,
            ".svc",
            ".svc.cluster",
            ".svc.cluster.local",
        ]
        joined = ",".join(no_proxy)
        envs[NO_PROXY] = joined
        envs[NO_PROXY.lower()] = joined
    return envs


def get_subnets(network_name: str) -> list[str]:
    """Return the subnets configured on the docker network."""
    fmt = '{{range (index (index . "IPAM") "Config")}}{{index . "Subnet"}} {{end}}'
    try:
        lines = output_lines(command("docker", "network", "inspect", "-f", fmt, network_name))
    except RunError as exc:
        raise RuntimeError("failed to get subnets") from exc
    if not lines:
        raise RuntimeError("failed to get subnets: no output")
    return lines[0].strip().split(" ")


def generate_mount_bindings(*args) -> list[str]:
    """Return ``--volume`` arguments for the given mounts."""
    result = []
    for mount in args:
        bind = f"{mount.host_path}:{mount.container_path}"
        attrs = []
        if mount.readonly:
            attrs.append("ro")
        if mount.selinux_relabel:
            attrs.append("Z")
        propagation = _value(mount.propagation) if mount.propagation is not None else ""
        if propagation == MountPropagation.BIDIRECTIONAL.value:
            attrs.append("rshared")
        elif propagation == MountPropagation.HOST_TO_CONTAINER.value:
            attrs.append("rslave")
        if attrs:
            bind = f"{bind}:{','.join(attrs)}"
        result.append(f"--volume={bind}")
    return result


def generate_port_mappings(cluster_ip_family, *args) -> list[str]:
    """Return ``--publish`` arguments for the given port mappings."""
    result = []
    for pm in args:
        listen_address = pm.listen_address
        if not listen_address:
            if cluster_ip_family == IPFamily.IPV4:
                listen_address = "0.0.0.0"
            elif cluster_ip_family == IPFamily.IPV6:
                listen_address = "::"
            else:
                raise RuntimeError(
                    f"unknown cluster IP family: {_value(cluster_ip_family)}"
                )
        protocol = _value(pm.protocol) if pm.protocol else PortMappingProtocol.TCP.value
        if protocol not in _KNOWN_PROTOCOLS:
            raise RuntimeError(f"unknown port mapping protocol: {protocol}")
        try:
            host_port = port_or_get_free_port(pm.host_port, listen_address)
        except OSError as exc:
            raise RuntimeError(
                "failed to get random host port for port mapping"
            ) from exc
        binding = _join_host_port(listen_address, host_port)
        result.append(f"--publish={binding}:{pm.container_port}/{protocol}")
    return result
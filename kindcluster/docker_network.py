"""Docker network management for cluster nodes."""

from __future__ import annotations

import hashlib
import io
import ipaddress
import json
import struct
from dataclasses import dataclass, field

from .nodes import RunError, command, output, output_lines, run_error_for_error

# Label applied to each node container to identify its cluster.
CLUSTER_LABEL_KEY = "io.x-k8s.kind.cluster"
# Label applied to each node container to record its role.
NODE_ROLE_LABEL_KEY = "io.x-k8s.kind.role"

# Name of the user-defined bridge network the nodes join by default.
FIXED_NETWORK_NAME = "kind"

_MAX_ATTEMPTS = 5
_REGEX_SPECIAL = set("\\.+*?()|[]{}^$")


@dataclass
class NetworkInspectEntry:
    """The parts of ``docker network inspect`` output used for ordering networks."""

    id: str
    containers: dict[str, dict[str, str]] = field(default_factory=dict)


def _quote_meta(text: str) -> str:
    return "".join("\\" + ch if ch in _REGEX_SPECIAL else ch for ch in text)


def _name_filter(name: str) -> str:
    return "--filter=name=^" + _quote_meta(name) + "$"


def _error_output(err) -> str | None:
    rerr = run_error_for_error(err)
    if rerr is None:
        return None
    return rerr.output.decode(errors="replace")


def _is_ipv6_unavailable_error(err) -> bool:
    out = _error_output(err)
    return out is not None and out.startswith(
        "Error response from daemon: Cannot read IPv6 setup for bridge"
    )


def _is_pool_overlap_error(err) -> bool:
    out = _error_output(err)
    return out is not None and out.startswith(
        "Error response from daemon: Pool overlaps with other one on this address space"
    )


def _is_network_already_exists_error(err) -> bool:
    out = _error_output(err)
    return (
        out is not None
        and out.startswith("Error response from daemon: network with name")
        and "already exists" in out
    )


def ensure_network(name: str) -> None:
    """Make sure a network called ``name`` exists, creating it if needed."""
    if _remove_duplicate_networks(name):
        return

    subnet = generate_ula_subnet_from_name(name, 0)
    mtu = get_default_network_mtu()
    try:
        _create_network_no_duplicates(name, subnet, mtu)
        return
    except Exception as exc:
        if _is_ipv6_unavailable_error(exc):
            # IPAM is automatic for IPv4 only, so one attempt is enough.
            _create_network_no_duplicates(name, "", mtu)
            return
        if not _is_pool_overlap_error(exc):
            raise
    # Another process may have created the network meanwhile.
    if check_if_network_exists(name):
        return

    for attempt in range(1, _MAX_ATTEMPTS):
        subnet = generate_ula_subnet_from_name(name, attempt)
        try:
            _create_network_no_duplicates(name, subnet, mtu)
            return
        except Exception as exc:
            if not _is_pool_overlap_error(exc):
                raise
        if check_if_network_exists(name):
            return
    raise RuntimeError("exhausted attempts trying to find a non-overlapping subnet")


def _create_network_no_duplicates(name: str, ipv6_subnet: str, mtu: int) -> None:
    try:
        create_network(name, ipv6_subnet, mtu)
    except Exception as exc:
        if not _is_network_already_exists_error(exc):
            raise
    _remove_duplicate_networks(name)


def _remove_duplicate_networks(name: str) -> bool:
    """Delete all but the preferred network called ``name``; return whether one exists."""
    networks = _sorted_networks_with_name(name)
    if len(networks) > 1:
        try:
            delete_networks(*networks[1:])
        except Exception as exc:
            if not is_only_error_no_such_network(exc):
                raise
    return bool(networks)


def create_network(name: str, ipv6_subnet: str, mtu: int) -> None:
    """Create a bridge network, optionally with an IPv6 subnet and an MTU."""
    args = [
        "network",
        "create",
        "-d=bridge",
        "-o",
        "com.docker.network.bridge.enable_ip_masquerade=true",
    ]
    if mtu > 0:
        args += ["-o", f"com.docker.network.driver.mtu={mtu}"]
    if ipv6_subnet:
        args += ["--ipv6", "--subnet", ipv6_subnet]
    args.append(name)
    command("docker", *args).run()


def get_default_network_mtu() -> int:
    """Return the MTU of the default bridge network, or 0 if it cannot be read."""
    cmd = command(
        "docker",
        "network",
        "inspect",
        "bridge",
        "-f",
        '{{ index .Options "com.docker.network.driver.mtu" }}',
    )
    try:
        lines = output_lines(cmd)
    except RunError:
        return 0
    if len(lines) != 1:
        return 0
    try:
        return int(lines[0])
    except ValueError:
        return 0


def _sorted_networks_with_name(name: str) -> list[str]:
    ids = networks_with_name(name)
    if len(ids) < 2:
        return ids
    networks = inspect_networks(ids)
    sort_network_inspect_entries(networks)
    return [network.id for network in networks]


def sort_network_inspect_entries(networks: list[NetworkInspectEntry]) -> None:
    """Sort in place: networks with more containers first, then by ID."""
    networks.sort(key=lambda n: (-len(n.containers), n.id))


def inspect_networks(network_ids) -> list[NetworkInspectEntry]:
    """Inspect the given networks; networks that vanished are simply absent."""
    buf = io.BytesIO()
    try:
        command("docker", "network", "inspect", *network_ids).set_stdout(buf).run()
    except RunError as exc:
        if not is_only_error_no_such_network(exc):
            raise
    try:
        raw = json.loads(buf.getvalue())
        return [
            NetworkInspectEntry(
                id=entry.get("Id", ""),
                containers=entry.get("Containers") or {},
            )
            for entry in raw or []
        ]
    except (ValueError, AttributeError, TypeError) as exc:
        raise RuntimeError("failed to decode networks list") from exc


def networks_with_name(name: str) -> list[str]:
    """Return the IDs of networks called exactly ``name``."""
    out = output(
        command("docker", "network", "ls", _name_filter(name), "--format={{.ID}}")
    ).decode(errors="replace")
    cleaned = out.removesuffix("\n")
    if not cleaned:
        return []
    return cleaned.split("\n")


def check_if_network_exists(name: str) -> bool:
    """Return whether a network called ``name`` exists."""
    out = output(
        command("docker", "network", "ls", _name_filter(name), "--format={{.Name}}")
    ).decode(errors="replace")
    return out.startswith(name)


def delete_networks(*args) -> None:
    """Remove the given networks."""
    command("docker", "network", "rm", *args).run()


def is_only_error_no_such_network(err) -> bool:
    """Return whether a failed command reported nothing but missing networks."""
    out = _error_output(err)
    if out is None:
        return False
    # Only newline-terminated lines are examined.
    for line in out.split("\n")[:-1]:
        if line.startswith("Error: No such network:"):
            continue
        if line.startswith("Error: "):
            return False
    return True


def generate_ula_subnet_from_name(name: str, attempt: int = 0) -> str:
    """Return a /64 subnet in fc00::/8 derived from ``name`` and the attempt number."""
    digest = hashlib.sha1(name.encode() + struct.pack("<i", attempt)).digest()
    raw = bytes([0xFC, 0x00]) + digest[2:8] + bytes(8)
    return str(ipaddress.IPv6Network((int.from_bytes(raw, "big"), 64)))
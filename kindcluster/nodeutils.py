"""Helpers for selecting cluster nodes by role and working with their files."""

from __future__ import annotations

import io
import json
import posixpath

from .nodes import RunError, output, output_lines

CONTROL_PLANE_ROLE = "control-plane"
WORKER_ROLE = "worker"
EXTERNAL_LOAD_BALANCER_ROLE = "external-load-balancer"

_INTERNAL_ROLES = (WORKER_ROLE, CONTROL_PLANE_ROLE)


def select_nodes_by_role(all_nodes, role):
    """Return the nodes whose role is ``role``, in order."""
    return [node for node in all_nodes if node.role() == role]


def internal_nodes(all_nodes):
    """Return the nodes that are Kubernetes nodes (not e.g. the load balancer)."""
    return [node for node in all_nodes if node.role() in _INTERNAL_ROLES]


def external_load_balancer_node(all_nodes):
    """Return the external load balancer node, or None if there is none."""
    balancers = select_nodes_by_role(all_nodes, EXTERNAL_LOAD_BALANCER_ROLE)
    if not balancers:
        return None
    if len(balancers) > 1:
        raise RuntimeError(
            f"unexpected number of {EXTERNAL_LOAD_BALANCER_ROLE} nodes {len(balancers)}"
        )
    return balancers[0]


def api_server_endpoint_node(all_nodes):
    """Return the node hosting the API server endpoint."""
    try:
        balancer = external_load_balancer_node(all_nodes)
    except Exception as exc:
        raise RuntimeError("failed to find api-server endpoint node") from exc
    if balancer is not None:
        return balancer
    try:
        planes = control_plane_nodes(all_nodes)
    except Exception as exc:
        raise RuntimeError("failed to find api-server endpoint node") from exc
    if len(planes) != 1:
        raise RuntimeError(
            f"expected one control plane node or a load balancer, not {len(planes)} and none"
        )
    return planes[0]


def control_plane_nodes(all_nodes):
    """Return control plane nodes sorted by name; the first is the bootstrap node."""
    return sorted(select_nodes_by_role(all_nodes, CONTROL_PLANE_ROLE), key=str)


def bootstrap_control_plane_node(all_nodes):
    """Return the bootstrap control plane node."""
    planes = control_plane_nodes(all_nodes)
    if not planes:
        raise RuntimeError(f"expected at least one {CONTROL_PLANE_ROLE} node")
    return planes[0]


def secondary_control_plane_nodes(all_nodes):
    """Return the control plane nodes other than the bootstrap node."""
    planes = control_plane_nodes(all_nodes)
    if not planes:
        raise RuntimeError(f"expected at least one {CONTROL_PLANE_ROLE} node")
    return planes[1:]


def kube_version(node) -> str:
    """Return the Kubernetes version installed on the node."""
    try:
        lines = output_lines(node.command("cat", "/kind/version"))
    except RunError as exc:
        raise RuntimeError("failed to get file") from exc
    if len(lines) != 1:
        raise RuntimeError(f"file should only be one line, got {len(lines)} lines")
    return lines[0]


def write_file(node, dest: str, content: str) -> None:
    """Write ``content`` to ``dest`` on the node."""
    directory = posixpath.dirname(dest)
    try:
        node.command("mkdir", "-p", directory).run()
    except RunError as exc:
        raise RuntimeError(f"failed to create directory {directory}") from exc
    node.command("cp", "/dev/stdin", dest).set_stdin(io.BytesIO(content.encode())).run()


def copy_node_to_node(a, b, file: str) -> None:
    """Copy ``file`` from node ``a`` to the same path on node ``b``."""
    directory = posixpath.dirname(file)
    try:
        b.command("mkdir", "-p", directory).run()
    except RunError as exc:
        raise RuntimeError(f"failed to create directory {directory!r}") from exc
    buf = io.BytesIO()
    try:
        a.command("cat", file).set_stdout(buf).run()
    except RunError as exc:
        raise RuntimeError(f"failed to read {file!r} from node") from exc
    try:
        b.command("cp", "/dev/stdin", file).set_stdin(io.BytesIO(buf.getvalue())).run()
    except RunError as exc:
        raise RuntimeError(f"failed to write {file!r} to node") from exc


def load_image_archive(node, image) -> None:
    """Load an image archive, read from ``image``, into the node."""
    cmd = node.command("ctr", "--namespace=k8s.io", "images", "import", "-").set_stdin(image)
    try:
        cmd.run()
    except RunError as exc:
        raise RuntimeError("failed to load image") from exc


def image_id(node, image: str) -> str:
    """Return the ID of ``image`` on the node."""
    data = json.loads(output(node.command("crictl", "inspecti", image)))
    if data is None:
        return ""
    if not isinstance(data, dict):
        raise ValueError("unexpected image inspection output")
    status = data.get("status") or {}
    if not isinstance(status, dict):
        raise ValueError("unexpected image inspection output")
    return status.get("id", "") or ""
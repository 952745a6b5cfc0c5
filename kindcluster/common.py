"""Code shared by the container-engine providers."""

from __future__ import annotations

import os
import socket
from concurrent.futures import ThreadPoolExecutor

# Port where the control plane listens inside the node network.
API_SERVER_INTERNAL_PORT = 6443

HTTP_PROXY = "HTTP_PROXY"
HTTPS_PROXY = "HTTPS_PROXY"
NO_PROXY = "NO_PROXY"


def port_or_get_free_port(port: int, listen_addr: str) -> int:
    """Return ``port``; -1 means let the backend pick (0), 0 means pick a free one."""
    if port == -1:
        return 0
    if port == 0:
        return get_free_port(listen_addr)
    return port


def get_free_port(listen_addr: str) -> int:
    """Return a free TCP port on ``listen_addr``; raises OSError if none can be bound."""
    host = listen_addr or None
    infos = socket.getaddrinfo(host, 0, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    last_error: OSError | None = None
    for family, kind, proto, _, sockaddr in infos:
        try:
            with socket.socket(family, kind, proto) as sock:
                sock.bind(sockaddr)
                sock.listen(1)
                return sock.getsockname()[1]
        except OSError as exc:
            last_error = exc
    raise last_error or OSError(f"cannot listen on {listen_addr!r}")


def required_node_images(cfg) -> set[str]:
    """Return the set of node images the config uses."""
    return {node.image for node in cfg.nodes}


def _aggregate_concurrent(funcs) -> None:
    """Run every function concurrently and raise the errors they raised, if any."""
    if not funcs:
        return
    with ThreadPoolExecutor(max_workers=len(funcs)) as pool:
        futures = [pool.submit(fn) for fn in funcs]
    errors = [f.exception() for f in futures if f.exception() is not None]
    if not errors:
        return
    if len(errors) == 1:
        raise errors[0]
    raise RuntimeError("[" + ", ".join(str(e) for e in errors) + "]") from errors[0]


def collect_logs(node, dir: str) -> None:
    """Write version, journal, kubelet and containerd logs of ``node`` into ``dir``."""

    def to_file(cmd, name):
        def task():
            with file_on_host(os.path.join(dir, name)) as f:
                cmd.set_stdout(f).set_stderr(f).run()

        return task

    _aggregate_concurrent(
        [
            to_file(node.command("cat", "/kind/version"), "kubernetes-version.txt"),
            to_file(node.command("journalctl", "--no-pager"), "journal.log"),
            to_file(
                node.command("journalctl", "--no-pager", "-u", "kubelet.service"),
                "kubelet.log",
            ),
            to_file(
                node.command("journalctl", "--no-pager", "-u", "containerd.service"),
                "containerd.log",
            ),
        ]
    )


def file_on_host(path: str):
    """Create ``path`` for binary writing, creating parent directories as needed."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    return open(path, "wb")


def make_node_namer(cluster_name: str):
    """Return a function naming nodes by role: first ``<cluster>-<role>``, then numbered."""
    counter: dict[str, int] = {}

    def name(role: str) -> str:
        suffix = ""
        count = 1
        if role in counter:
            count += counter[role]
            suffix = str(count)
        counter[role] = count
        return f"{cluster_name}-{role}{suffix}"

    return name


def get_proxy_envs(cfg, getenv=None) -> dict[str, str]:
    """Return proxy variables to pass to nodes, with cluster subnets added to NO_PROXY."""
    if getenv is None:
        getenv = os.environ.get
    envs: dict[str, str] = {}
    for name in (HTTP_PROXY, HTTPS_PROXY, NO_PROXY):
        value = getenv(name) or getenv(name.lower()) or ""
        if value:
            envs[name] = value
            envs[name.lower()] = value
    if envs:
        no_proxy = envs.get(NO_PROXY, "")
        if no_proxy:
            no_proxy += ","
        no_proxy += cfg.networking.service_subnet + "," + cfg.networking.pod_subnet
        envs[NO_PROXY] = no_proxy
        envs[NO_PROXY.lower()] = no_proxy
    return envs
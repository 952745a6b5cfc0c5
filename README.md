# kindcluster

Building blocks for local Kubernetes clusters whose "nodes" are
containers. The package drives the container engine's command-line tool
(`docker`, and `podman` for images and nodes). It can:

- pull the node images a cluster needs,
- create the Docker bridge network the nodes join,
- plan and run the `docker run` commands that create the node containers,
  including an external load balancer for clusters with more than one
  control plane node,
- run commands inside node containers, read their role and addresses,
  copy files in and out, and collect their logs,
- pick nodes by role, such as the bootstrap control plane node or the
  node that hosts the API server endpoint.

## Requirements

- Python 3.10 or later
- `docker` (or `podman`, for the parts that support it) on `PATH`

There are no third-party runtime dependencies.

## Describing a cluster

A cluster is described with the dataclasses in `kindcluster.base`:

```python
from kindcluster.base import ClusterConfig, Networking, NodeConfig, NodeRole

cfg = ClusterConfig(
    name="dev",
    nodes=[
        NodeConfig(role=NodeRole.CONTROL_PLANE, image="kindest/node:v1.21.1"),
        NodeConfig(role=NodeRole.WORKER, image="kindest/node:v1.21.1"),
    ],
    networking=Networking(
        pod_subnet="10.244.0.0/16",
        service_subnet="10.96.0.0/12",
    ),
)
```

`NodeConfig` also takes `extra_mounts` (`Mount`) and
`extra_port_mappings` (`PortMapping`). `Networking` has `ip_family`
(`IPFamily.IPV4`, `IPV6` or `DUAL_STACK`), `api_server_address` and
`api_server_port`. A host port of `0` means a free port is picked on the
host; `-1` leaves the choice to the engine.

## Creating the node containers with Docker

```python
from kindcluster.base import Status
from kindcluster.docker_images import ensure_node_images
from kindcluster.docker_network import FIXED_NETWORK_NAME, ensure_network
from kindcluster.docker_provision import plan_creation

status = Status()                      # progress lines go to stderr
ensure_node_images(status, cfg)        # pulls missing images, retrying
ensure_network(FIXED_NETWORK_NAME)     # the "kind" bridge network

for create in plan_creation(cfg, FIXED_NETWORK_NAME):
    create()
```

`plan_creation` returns one function per container; they do not depend on
each other and may be run concurrently. Nodes are named
`<cluster>-<role>`, numbered from the second node of a role on
(`dev-worker`, `dev-worker2`, ...), as `kindcluster.common.make_node_namer`
does. With more than one control plane node an
`external-load-balancer` container is planned as well and takes the
configured API server address and port.

`ensure_network` gives each network an IPv6 subnet in `fc00::/8` derived
from its name (`generate_ula_subnet_from_name`), tries other subnets if
that one overlaps, falls back to IPv4 only when the host has no IPv6, and
removes duplicate networks left by concurrent creation.

## Working with nodes

`ContainerNode` is a node in a running container; `engine` is `"docker"`
by default and may be `"podman"`:

```python
from kindcluster import nodeutils
from kindcluster.common import collect_logs
from kindcluster.docker_node import ContainerNode

nodes = [ContainerNode("dev-control-plane"), ContainerNode("dev-worker")]

first = nodeutils.bootstrap_control_plane_node(nodes)
print(first.role(), first.ip())           # "control-plane", (ipv4, ipv6)
print(nodeutils.kube_version(first))
nodeutils.write_file(first, "/etc/example/config.txt", "hello\n")
endpoint = nodeutils.api_server_endpoint_node(nodes)

collect_logs(first, "/tmp/dev-logs/dev-control-plane")
```

`node.command(...)` returns a command run through `<engine> exec`; its
`set_stdin`, `set_stdout`, `set_stderr` and `set_env` return the command,
and `run()` raises `kindcluster.nodes.RunError` on failure, with the
command's output in `RunError.output`. The helpers in `nodeutils` raise
`RuntimeError` chained to the underlying error.

## Image names

```python
from kindcluster.docker_images import sanitize_image as docker_name
from kindcluster.podman_images import sanitize_image as podman_name

docker_name("kindest/node:v1.21.1@sha256:abc")
# ("kindest/node:v1.21.1", "kindest/node:v1.21.1@sha256:abc")
podman_name("kindest/node:v1.21.1")
# ("kindest/node:v1.21.1", "docker.io/kindest/node:v1.21.1")
```

## Environment

`HTTP_PROXY`, `HTTPS_PROXY` and `NO_PROXY` (or their lower-case forms)
are passed on to node containers. When a proxy is set, the service and pod
subnets, the Docker network's subnets, the node names and the cluster DNS
suffixes are added to `NO_PROXY`.

## What the package does not do

- There is no command-line tool and no single object that manages a
  whole cluster: listing clusters, listing a cluster's nodes by label,
  deleting nodes, reporting the API server's host endpoint and exporting
  a kubeconfig are not provided. Nodes are addressed by container name.
- Kubernetes itself is not started or configured inside the nodes.
- With Podman only image pulling (`kindcluster.podman_images`) and
  commands on existing nodes (`ContainerNode(name, engine="podman")`) are
  supported; networks and containers are created with Docker only.

## Running the tests

Install the `test` extra and run `pytest` from the project root.
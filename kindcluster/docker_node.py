"""Cluster nodes backed by containers of a container engine."""

from __future__ import annotations

from .docker_network import NODE_ROLE_LABEL_KEY
from .nodes import Cmd, Node, RunError, command, output_lines


class NodeCmd(Cmd):
    """A command run inside a node container through ``<engine> exec``."""

    def __init__(self, engine, name_or_id, command, *args):
        super().__init__(command, *args)
        self.engine = engine
        self.name_or_id = name_or_id

    def build_args(self) -> list[str]:
        """Return the engine arguments that run this command in the container."""
        # Privileged so commands can remount and the like.
        args = ["exec", "--privileged"]
        if self._stdin is not None:
            args.append("-i")
        for env in self._env or ():
            args += ["-e", env]
        args += [self.name_or_id, *self.argv]
        return args

    def run(self) -> None:
        """Run the command in the container, raising RunError on failure."""
        cmd = Cmd(self.engine, *self.build_args())
        if self._stdin is not None:
            cmd.set_stdin(self._stdin)
        if self._stderr is not None:
            cmd.set_stderr(self._stderr)
        if self._stdout is not None:
            cmd.set_stdout(self._stdout)
        cmd.run()


class ContainerNode(Node):
    """A node that is a container managed by ``engine``."""

    def __init__(self, name, engine="docker"):
        super().__init__(name)
        self.engine = engine

    def command(self, command, *args) -> NodeCmd:
        return NodeCmd(self.engine, self.name, command, *args)

    def role(self) -> str:
        cmd = command(
            self.engine,
            "inspect",
            "--format",
            f'{{{{ index .Config.Labels "{NODE_ROLE_LABEL_KEY}"}}}}',
            self.name,
        )
        try:
            lines = output_lines(cmd)
        except RunError as exc:
            raise RuntimeError("failed to get role for node") from exc
        if len(lines) != 1:
            raise RuntimeError(f"failed to get role for node: output lines {len(lines)} != 1")
        return lines[0]

    def ip(self) -> tuple[str, str]:
        cmd = command(
            self.engine,
            "inspect",
            "-f",
            "{{range .NetworkSettings.Networks}}{{.IPAddress}},{{.GlobalIPv6Address}}{{end}}",
            self.name,
        )
        try:
            lines = output_lines(cmd)
        except RunError as exc:
            raise RuntimeError("failed to get container details") from exc
        if len(lines) != 1:
            raise RuntimeError(f"file should only be one line, got {len(lines)} lines")
        ips = lines[0].split(",")
        if len(ips) != 2:
            raise RuntimeError(
                f"container addresses should have 2 values, got {len(ips)} values"
            )
        return ips[0], ips[1]

    def serial_logs(self, writer) -> None:
        command(self.engine, "logs", self.name).set_stdout(writer).set_stderr(writer).run()
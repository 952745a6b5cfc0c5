"""Running commands on the host or inside cluster nodes, and the node interface."""

from __future__ import annotations

import abc
import io
import subprocess
from typing import IO, Any


class RunError(Exception):
    """A command failed; ``output`` holds what it printed before failing."""

    def __init__(self, command, output: bytes = b"", returncode: int | None = None):
        self.command = list(command)
        self.output = output
        self.returncode = returncode
        joined = " ".join(self.command)
        if returncode is None:
            message = f'command "{joined}" failed to start'
        else:
            message = f'command "{joined}" failed with error: exit status {returncode}'
        super().__init__(message)


def _write(writer: IO[Any], data: bytes) -> None:
    if isinstance(writer, io.TextIOBase):
        writer.write(data.decode(errors="replace"))
    else:
        writer.write(data)


class Cmd:
    """A command run on the host; the setters return the command for chaining."""

    def __init__(self, command, *args):
        self.argv = [command, *args]
        self._env: list[str] | None = None
        self._stdin = None
        self._stdout = None
        self._stderr = None

    def set_env(self, *args):
        """Replace the environment with ``KEY=VALUE`` entries."""
        self._env = list(args)
        return self

    def set_stdin(self, reader):
        self._stdin = reader
        return self

    def set_stdout(self, writer):
        self._stdout = writer
        return self

    def set_stderr(self, writer):
        self._stderr = writer
        return self

    def run(self) -> None:
        """Run the command, raising RunError if it cannot start or exits non-zero."""
        kwargs: dict[str, Any] = {}
        if self._stdin is not None:
            data = self._stdin.read()
            kwargs["input"] = data.encode() if isinstance(data, str) else data
        else:
            kwargs["stdin"] = subprocess.DEVNULL
        if self._env is not None:
            kwargs["env"] = dict(entry.partition("=")[::2] for entry in self._env)

        combine = (self._stdout is None and self._stderr is None) or (
            self._stdout is self._stderr
        )
        try:
            proc = subprocess.run(
                self.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if combine else subprocess.PIPE,
                check=False,
                **kwargs,
            )
        except OSError as exc:
            raise RunError(self.argv) from exc

        out = proc.stdout or b""
        err = proc.stderr or b""
        if self._stdout is not None:
            _write(self._stdout, out)
        if self._stderr is not None and not combine:
            _write(self._stderr, err)
        if proc.returncode != 0:
            raise RunError(self.argv, out + err, proc.returncode)


class Node(abc.ABC):
    """A cluster node; ``str(node)`` is its name."""

    def __init__(self, name: str):
        self.name = name

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    @abc.abstractmethod
    def command(self, command, *args):
        """Return a command that runs inside the node."""

    @abc.abstractmethod
    def role(self) -> str:
        """Return the node's role."""

    @abc.abstractmethod
    def ip(self) -> tuple[str, str]:
        """Return the node's (IPv4, IPv6) addresses."""

    @abc.abstractmethod
    def serial_logs(self, writer) -> None:
        """Write the node container's logs to ``writer``."""


def command(name, *args) -> Cmd:
    """Return a host command."""
    return Cmd(name, *args)


def output(cmd) -> bytes:
    """Run ``cmd`` and return its standard output."""
    buf = io.BytesIO()
    cmd.set_stdout(buf).run()
    return buf.getvalue()


def output_lines(cmd) -> list[str]:
    """Run ``cmd`` and return its standard output split into lines."""
    text = output(cmd).decode(errors="replace")
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line.removesuffix("\r") for line in lines]


def run_error_for_error(err):
    """Return the RunError in ``err``'s chain of causes, or None."""
    seen = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, RunError):
            return err
        seen.add(id(err))
        err = err.__cause__ or err.__context__
    return None
import io
import subprocess
from unittest import mock

import pytest

from kindcluster.docker_node import ContainerNode, NodeCmd
from kindcluster.nodes import RunError, output


class FakeRunner:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self.kwargs = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        self.kwargs.append(kwargs)
        rc, out, err = self.handler(list(argv))
        if kwargs.get("stderr") == subprocess.STDOUT:
            out, err = out + err, None
        return subprocess.CompletedProcess(argv, rc, out, err)


def _patched(handler):
    runner = FakeRunner(handler)
    return runner, mock.patch("subprocess.run", runner)


def test_str_is_name():
    assert str(ContainerNode("n1")) == "n1"


def test_build_args_plain():
    cmd = NodeCmd("docker", "n1", "ls", "-la")
    assert cmd.build_args() == ["exec", "--privileged", "n1", "ls", "-la"]


def test_build_args_with_env_and_stdin():
    cmd = NodeCmd("docker", "n1", "cat").set_env("A=1", "B=2").set_stdin(io.BytesIO(b"x"))
    assert cmd.build_args() == [
        "exec", "--privileged", "-i", "-e", "A=1", "-e", "B=2", "n1", "cat",
    ]


def test_node_command_runs_through_engine():
    runner, patch = _patched(lambda argv: (0, b"", b""))
    with patch:
        result = (
            ContainerNode("n1")
            .command("cp", "/dev/stdin", "/f")
            .set_stdin(io.BytesIO(b"data"))
            .run()
        )
    assert result is None
    assert runner.calls[0] == ["docker", "exec", "--privileged", "-i", "n1", "cp", "/dev/stdin", "/f"]
    assert runner.kwargs[0]["input"] == b"data"


def test_node_command_uses_engine_name():
    runner, patch = _patched(lambda argv: (0, b"ok\n", b""))
    with patch:
        result = output(ContainerNode("n1", "podman").command("true"))
    assert result == b"ok\n"
    assert runner.calls[0] == ["podman", "exec", "--privileged", "n1", "true"]


def test_node_command_output():
    _, patch = _patched(lambda argv: (0, b"hello\n", b""))
    with patch:
        assert output(ContainerNode("n1").command("cat", "/f")) == b"hello\n"


def test_node_command_failure_raises():
    _, patch = _patched(lambda argv: (2, b"", b"bad"))
    with patch, pytest.raises(RunError) as info:
        ContainerNode("n1").command("false").run()
    assert info.value.returncode == 2


def test_role():
    runner, patch = _patched(lambda argv: (0, b"worker\n", b""))
    with patch:
        assert ContainerNode("n1").role() == "worker"
    assert '{{ index .Config.Labels "io.x-k8s.kind.role"}}' in runner.calls[0]
    assert runner.calls[0][-1] == "n1"


def test_role_wrong_line_count():
    _, patch = _patched(lambda argv: (0, b"a\nb\n", b""))
    with patch, pytest.raises(RuntimeError, match="output lines 2 != 1"):
        ContainerNode("n1").role()


def test_role_command_failure():
    _, patch = _patched(lambda argv: (1, b"", b"no such container"))
    with patch, pytest.raises(RuntimeError, match="failed to get role for node") as info:
        ContainerNode("n1").role()
    assert isinstance(info.value.__cause__, RunError)


def test_ip():
    _, patch = _patched(lambda argv: (0, b"172.18.0.2,fc00::2\n", b""))
    with patch:
        assert ContainerNode("n1").ip() == ("172.18.0.2", "fc00::2")


def test_ip_wrong_value_count():
    _, patch = _patched(lambda argv: (0, b"172.18.0.2\n", b""))
    with patch, pytest.raises(RuntimeError, match="should have 2 values, got 1"):
        ContainerNode("n1").ip()


def test_serial_logs():
    runner, patch = _patched(lambda argv: (0, b"boot\n", b"warn\n"))
    buf = io.BytesIO()
    with patch:
        ContainerNode("n1").serial_logs(buf)
    assert runner.calls[0] == ["docker", "logs", "n1"]
    assert buf.getvalue() == b"boot\nwarn\n"
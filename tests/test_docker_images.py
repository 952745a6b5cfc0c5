import io
import subprocess
from unittest import mock

import pytest

from kindcluster import docker_images as di
from kindcluster.base import ClusterConfig, NodeConfig, Status


class FakeRunner:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        rc, out, err = self.handler(list(argv))
        if kwargs.get("stderr") == subprocess.STDOUT:
            out, err = out + err, None
        return subprocess.CompletedProcess(argv, rc, out, err)


def _patched(handler):
    runner = FakeRunner(handler)
    return runner, mock.patch("subprocess.run", runner)


DIGEST = "sha256:69860bda5563ac81e3c0057d654b5253219618a22ec3a346306239bba8cfa1a6"


def test_sanitize_image_with_digest():
    image = "kindest/node:v1.21.1@" + DIGEST
    assert di.sanitize_image(image) == ("kindest/node:v1.21.1", image)


def test_sanitize_image_plain():
    assert di.sanitize_image("kindest/node:v1.21.1") == (
        "kindest/node:v1.21.1",
        "kindest/node:v1.21.1",
    )


def test_is_available_docker():
    _, patch = _patched(lambda argv: (0, b"Docker version 20.10.7, build f0df350\n", b""))
    with patch:
        assert di.is_available() is True


def test_is_available_other_tool():
    _, patch = _patched(lambda argv: (0, b"podman version 3.0.1\n", b""))
    with patch:
        assert di.is_available() is False


def test_is_available_failure():
    _, patch = _patched(lambda argv: (127, b"", b"not found"))
    with patch:
        assert di.is_available() is False


def test_userns_remap_enabled():
    _, patch = _patched(lambda argv: (0, b"'[\"name=userns\",\"name=seccomp\"]'\n", b""))
    with patch:
        assert di.userns_remap() is True


def test_userns_remap_disabled():
    _, patch = _patched(lambda argv: (0, b"'[\"name=seccomp\"]'\n", b""))
    with patch:
        assert di.userns_remap() is False


def test_mount_dev_mapper_btrfs_driver():
    runner, patch = _patched(lambda argv: (0, b"btrfs\n", b""))
    with patch:
        assert di.mount_dev_mapper() is True
    assert len(runner.calls) == 1


def _driver_handler(backing):
    def handler(argv):
        if argv[-1] == "{{.Driver}}":
            return 0, b"overlay2\n", b""
        return 0, ('[["Backing Filesystem","%s"],["Supports d_type","true"]]\n' % backing).encode(), b""

    return handler


def test_mount_dev_mapper_xfs_backing():
    _, patch = _patched(_driver_handler("xfs"))
    with patch:
        assert di.mount_dev_mapper() is True


def test_mount_dev_mapper_extfs_backing():
    _, patch = _patched(_driver_handler("extfs"))
    with patch:
        assert di.mount_dev_mapper() is False


def test_pull_if_present_skips_pull():
    runner, patch = _patched(lambda argv: (0, b"[]", b""))
    with patch:
        assert di.pull_if_not_present("img", 4) is False
    assert runner.calls == [["docker", "inspect", "--type=image", "img"]]


def test_pull_if_missing_pulls():
    def handler(argv):
        return (1, b"", b"missing") if argv[1] == "inspect" else (0, b"", b"")

    runner, patch = _patched(handler)
    with patch:
        assert di.pull_if_not_present("img", 4) is True
    assert runner.calls[-1] == ["docker", "pull", "img"]


def test_pull_retries_then_fails():
    runner, patch = _patched(lambda argv: (1, b"", b"denied"))
    with patch, mock.patch("time.sleep") as sleep:
        with pytest.raises(RuntimeError, match='failed to pull image "img"'):
            di.pull("img", 3)
    assert len(runner.calls) == 4
    assert [c.args[0] for c in sleep.call_args_list] == [1, 2, 3]


def test_pull_succeeds_on_retry():
    results = [(1, b"", b"x"), (0, b"", b"")]
    runner, patch = _patched(lambda argv: results.pop(0))
    with patch, mock.patch("time.sleep"):
        result = di.pull("img", 3)
    assert result is None
    assert runner.calls == [["docker", "pull", "img"], ["docker", "pull", "img"]]


def test_ensure_node_images_reports_status():
    stream = io.StringIO()
    cfg = ClusterConfig(nodes=[NodeConfig(image="b:1@" + DIGEST), NodeConfig(image="a:1")])
    runner, patch = _patched(lambda argv: (0, b"", b""))
    with patch:
        di.ensure_node_images(Status(stream), cfg)
    text = stream.getvalue()
    assert "Ensuring node image (a:1)" in text
    assert "Ensuring node image (b:1)" in text
    assert text.index("(a:1)") < text.index("(b:1)")
    assert [c[-1] for c in runner.calls] == ["a:1", "b:1@" + DIGEST]


def test_ensure_node_images_failure_ends_status():
    stream = io.StringIO()
    cfg = ClusterConfig(nodes=[NodeConfig(image="a:1")])
    _, patch = _patched(lambda argv: (1, b"", b"nope"))
    with patch, mock.patch("time.sleep"):
        with pytest.raises(RuntimeError):
            di.ensure_node_images(Status(stream), cfg)
    assert "✗" in stream.getvalue()
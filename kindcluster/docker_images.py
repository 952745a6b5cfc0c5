"""Pulling node images and probing the docker host."""

from __future__ import annotations

import json
import logging
import time

from .common import required_node_images
from .nodes import RunError, command, output_lines

logger = logging.getLogger(__name__)


def ensure_node_images(status, cfg) -> None:
    """Make sure every node image used by ``cfg`` is present locally."""
    for required in sorted(required_node_images(cfg)):
        friendly, image = sanitize_image(required)
        status.start(f"Ensuring node image ({friendly}) 🖼")
        try:
            pull_if_not_present(image, 4)
        except Exception:
            status.end(False)
            raise


def pull_if_not_present(image: str, retries: int) -> bool:
    """Pull ``image`` unless it is present; return whether a pull was attempted."""
    try:
        command("docker", "inspect", "--type=image", image).run()
    except RunError:
        pull(image, retries)
        return True
    logger.debug("Image: %s present locally", image)
    return False


def pull(image: str, retries: int) -> None:
    """Pull ``image``, retrying up to ``retries`` times with growing pauses."""
    logger.debug("Pulling image: %s ...", image)
    try:
        command("docker", "pull", image).run()
        return
    except RunError as exc:
        last_error = exc
    for attempt in range(retries):
        time.sleep(attempt + 1)
        logger.debug('Trying again to pull image: "%s" ... %s', image, last_error)
        try:
            command("docker", "pull", image).run()
            return
        except RunError as exc:
            last_error = exc
    raise RuntimeError(f'failed to pull image "{image}"') from last_error


def sanitize_image(image: str) -> tuple[str, str]:
    """Return a human readable image name and the pullable image name."""
    if "@sha256:" in image:
        return image.split("@sha256:")[0], image
    return image, image


def is_available() -> bool:
    """Return whether the docker command is available."""
    try:
        lines = output_lines(command("docker", "-v"))
    except RunError:
        return False
    return len(lines) == 1 and lines[0].startswith("Docker version")


def userns_remap() -> bool:
    """Return whether user namespace remapping is enabled in the daemon."""
    try:
        lines = output_lines(
            command("docker", "info", "--format", "'{{json .SecurityOptions}}'")
        )
    except RunError:
        return False
    return bool(lines) and "name=userns" in lines[0]


def mount_dev_mapper() -> bool:
    """Return whether the storage driver or backing filesystem needs /dev/mapper."""
    try:
        lines = output_lines(command("docker", "info", "-f", "{{.Driver}}"))
    except RunError:
        return False
    if len(lines) != 1:
        return False
    storage = lines[0].strip().lower()
    if storage in ("btrfs", "zfs", "devicemapper"):
        return True

    try:
        lines = output_lines(command("docker", "info", "-f", "{{json .DriverStatus }}"))
    except RunError:
        return False
    if len(lines) != 1:
        return False
    try:
        status = json.loads(lines[0])
    except ValueError:
        return False
    if not isinstance(status, list):
        return False
    for item in status:
        if isinstance(item, list) and len(item) >= 2 and item[0] == "Backing Filesystem":
            storage = str(item[1]).lower()
            break
    return storage in ("btrfs", "zfs", "xfs")
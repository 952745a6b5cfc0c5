"""Pulling node images with podman."""

from __future__ import annotations

import logging
import time

from .common import required_node_images
from .nodes import RunError, command

logger = logging.getLogger(__name__)

_DEFAULT_DOMAIN = "docker.io/"
_OFFICIAL_REPO_NAME = "library"


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
        command("podman", "inspect", "--type=image", image).run()
    except RunError:
        pull(image, retries)
        return True
    logger.debug("Image: %s present locally", image)
    return False


def pull(image: str, retries: int) -> None:
    """Pull ``image``, retrying up to ``retries`` times with growing pauses."""
    logger.debug("Pulling image: %s ...", image)
    try:
        command("podman", "pull", image).run()
        return
    except RunError as exc:
        last_error = exc
    for attempt in range(retries):
        time.sleep(attempt + 1)
        logger.debug('Trying again to pull image: "%s" ... %s', image, last_error)
        try:
            command("podman", "pull", image).run()
            return
        except RunError as exc:
            last_error = exc
    raise RuntimeError(f'failed to pull image "{image}"') from last_error


def sanitize_image(image: str) -> tuple[str, str]:
    """Return a human readable image name and the fully qualified pullable name."""
    if "@sha256:" in image:
        splits = image.split("@sha256:")
        friendly = splits[0]
        remainder = splits[0].split(":")[0] + "@sha256:" + splits[1]
    else:
        friendly = image
        remainder = image

    if "/" not in remainder:
        remainder = f"{_OFFICIAL_REPO_NAME}/{remainder}"

    slash = friendly.find("/")
    if slash == -1:
        return friendly, _DEFAULT_DOMAIN + remainder
    domain = friendly[:slash]
    if not any(ch in domain for ch in ".:") and domain != "localhost":
        return friendly, _DEFAULT_DOMAIN + remainder
    return friendly, remainder
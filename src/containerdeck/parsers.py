"""
Parsing `container` tool output into model objects.

One parser per command family. All of them are pure and total: they either
return a list of entities or raise InvalidOutput. Empty or whitespace-only
output is an empty listing, never an error.

Formats:
  - `container ls -a --format json`: JSON array of container records
  - `container image ls --format json`: JSON array of image records
  - `container system dns list`: one domain per line, `*` marks the default
  - `container system status`: free text mentioning whether it runs
"""

import json
import logging
from typing import Any, Dict, List

from .errors import InvalidOutput
from .model import (
    Container, ContainerImage, ContainerNetwork, ContainerStatus, DNSDomain,
    SystemServiceStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
LIBRARY_PREFIX = "library/"

# Statuses the tool is known to report. Anything else is treated as stopped.
_STATUS_MAP = {
    "running": ContainerStatus.RUNNING,
    "stopped": ContainerStatus.STOPPED,
    "stop": ContainerStatus.STOPPED,
    "exited": ContainerStatus.EXITED,
    "exit": ContainerStatus.EXITED,
}


def _load_json_array(text: str, what: str) -> List[Any]:
    if not text or not text.strip():
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidOutput(f"{what} output is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise InvalidOutput(f"{what} output is not a JSON array")
    return data


def _require(obj: Any, key: str, kind: type, what: str) -> Any:
    if not isinstance(obj, dict) or key not in obj:
        raise InvalidOutput(f"{what}: missing '{key}'")
    value = obj[key]
    # bool is an int subclass; keep counts strict
    if kind is int and isinstance(value, bool):
        raise InvalidOutput(f"{what}: '{key}' has wrong type")
    if not isinstance(value, kind):
        raise InvalidOutput(f"{what}: '{key}' has wrong type")
    return value


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_status(value: str) -> ContainerStatus:
    status = _STATUS_MAP.get(value.strip().lower())
    if status is None:
        logger.debug(f"Unrecognized container status {value!r}, treating as stopped")
        return ContainerStatus.STOPPED
    return status


def image_display_name(reference: str) -> str:
    """`registry/repo/nginx:alpine` -> `nginx`."""
    last = reference.rsplit("/", 1)[-1]
    last = last.split("@", 1)[0]
    return last.split(":", 1)[0]


def _parse_network(raw: Any) -> ContainerNetwork:
    if not isinstance(raw, dict):
        raise InvalidOutput("network entry is not an object")
    hostname = raw.get("hostname")
    return ContainerNetwork(
        address=str(raw.get("address") or ""),
        gateway=str(raw.get("gateway") or ""),
        network=str(raw.get("network") or ""),
        hostname=hostname if isinstance(hostname, str) else None,
    )


def _parse_container(raw: Any) -> Container:
    what = "container record"
    status = _require(raw, "status", str, what)
    config = _require(raw, "configuration", dict, what)
    container_id = _require(config, "id", str, what)
    hostname = config.get("hostname")
    if not isinstance(hostname, str) or not hostname:
        hostname = container_id

    image = _require(config, "image", dict, what)
    reference = _require(image, "reference", str, what)
    descriptor = _as_dict(image.get("descriptor"))
    platform = _as_dict(config.get("platform"))
    resources = _as_dict(config.get("resources"))

    networks_raw = raw.get("networks") or []
    if not isinstance(networks_raw, list):
        raise InvalidOutput(f"{what}: 'networks' is not a list")
    networks = [_parse_network(r) for r in networks_raw]

    cpus = resources.get("cpus", 0)
    memory = resources.get("memoryInBytes", 0)
    try:
        cpus = max(0, int(cpus))
        memory = max(0, int(memory))
    except (TypeError, ValueError) as e:
        raise InvalidOutput(f"{what}: bad resource limits") from e

    return Container(
        container_id=container_id,
        name=hostname,
        image=image_display_name(reference),
        image_reference=reference,
        image_digest=str(descriptor.get("digest") or ""),
        hostname=hostname,
        status=parse_status(status),
        os=str(platform.get("os") or ""),
        arch=str(platform.get("architecture") or ""),
        cpus=cpus,
        memory_in_bytes=memory,
        networks=networks,
        rosetta=bool(config.get("rosetta", False)),
    )


def parse_containers(text: str) -> List[Container]:
    containers: Dict[str, Container] = {}
    for raw in _load_json_array(text, "container list"):
        c = _parse_container(raw)
        if c.container_id in containers:
            logger.warning(f"Duplicate container id {c.container_id} in listing")
        # Overwriting keeps the position of the first occurrence
        containers[c.container_id] = c
    return list(containers.values())


def split_reference(reference: str):
    """Return (registry, repository, tag) for an image reference."""
    components = reference.split("/")
    if len(components) > 2 and "." in components[0]:
        registry = components[0]
        remainder = "/".join(components[1:])
    else:
        registry = DEFAULT_REGISTRY
        remainder = reference

    remainder = remainder.split("@", 1)[0]
    repository, sep, tag = remainder.rpartition(":")
    if not sep or "/" in tag:
        repository, tag = remainder, DEFAULT_TAG
    if repository.startswith(LIBRARY_PREFIX):
        repository = repository[len(LIBRARY_PREFIX):]
    return registry, repository, tag


def _parse_image(raw: Any) -> ContainerImage:
    what = "image record"
    reference = _require(raw, "reference", str, what)
    descriptor = _require(raw, "descriptor", dict, what)
    size = descriptor.get("size", 0)
    try:
        size = max(0, int(size))
    except (TypeError, ValueError) as e:
        raise InvalidOutput(f"{what}: bad size") from e

    registry, repository, tag = split_reference(reference)
    return ContainerImage(
        reference=reference,
        name=repository,
        tag=tag,
        digest=str(descriptor.get("digest") or ""),
        registry=registry,
        repository=repository,
        media_type=str(descriptor.get("mediaType") or ""),
        size=size,
    )


def parse_images(text: str) -> List[ContainerImage]:
    return [_parse_image(raw) for raw in _load_json_array(text, "image list")]


def parse_dns_domains(text: str) -> List[DNSDomain]:
    domains: List[DNSDomain] = []
    have_default = False
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue
        is_default = line.startswith("*")
        if is_default:
            line = line[1:].strip()
            if not line:
                continue
            if have_default:
                logger.warning(f"More than one default DNS domain listed, ignoring '{line}'")
                is_default = False
            have_default = have_default or is_default
        domains.append(DNSDomain(domain=line, is_default=is_default))
    return domains


def parse_system_status(text: str) -> SystemServiceStatus:
    lowered = (text or "").lower()
    if "running" in lowered and "not running" not in lowered:
        return SystemServiceStatus.RUNNING
    return SystemServiceStatus.STOPPED

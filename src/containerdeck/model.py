"""
Data models for containerdeck state.

This module defines the dataclasses that represent what the external
`container` tool reports, plus the snapshot handed to presentation code.

Data Classes:
  - Container: A container as listed by `container ls -a --format json`
  - ContainerNetwork: One network attachment of a container
  - ContainerImage: An image as listed by `container image ls --format json`
  - DNSDomain: A local DNS domain (`container system dns list`)
  - SystemInfo: Inferred service status plus DNS settings
  - LogSource: Something logs can be fetched for (container, boot, system)
  - Snapshot: Everything the presentation layer observes

Status Handling:
  - `starting` / `stopping` are local-only transient states. They are applied
    optimistically when an action is issued and carry `pending=True`; a
    parser never produces them.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple


class ContainerStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    EXITED = "exited"
    STARTING = "starting"
    STOPPING = "stopping"

    @property
    def is_transient(self) -> bool:
        return self in (ContainerStatus.STARTING, ContainerStatus.STOPPING)

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class SystemServiceStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    STARTING = "starting"
    ERROR = "error"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class ContainerNetwork:
    address: str
    gateway: str = ""
    network: str = ""
    hostname: Optional[str] = None


@dataclass
class Container:
    container_id: str
    name: str
    image: str
    image_reference: str
    image_digest: str
    hostname: str
    status: ContainerStatus
    os: str
    arch: str
    cpus: int = 0
    memory_in_bytes: int = 0
    networks: List[ContainerNetwork] = field(default_factory=list)
    rosetta: bool = False
    pending: bool = False  # True while status is an unconfirmed local guess

    @property
    def display_name(self) -> str:
        # Hostname unless it is just the id, then the short id
        if self.hostname and self.hostname != self.container_id:
            return self.hostname
        return self.container_id[:12]

    @property
    def primary_address(self) -> Optional[str]:
        return next((n.address for n in self.networks if n.address), None)

    @property
    def memory_display(self) -> str:
        return f"{self.memory_in_bytes / 1_073_741_824:.1f} GB"

    def with_pending_status(self, status: ContainerStatus) -> "Container":
        return replace(self, status=status, pending=True)


@dataclass(frozen=True)
class ContainerImage:
    reference: str
    name: str
    tag: str
    digest: str = ""
    registry: str = "docker.io"
    repository: str = ""
    media_type: str = ""
    size: int = 0

    @property
    def display_name(self) -> str:
        return f"{self.name}:{self.tag}"

    @property
    def size_mb(self) -> float:
        return self.size / (1024 * 1024)


@dataclass(frozen=True)
class DNSDomain:
    domain: str
    is_default: bool = False


@dataclass
class SystemInfo:
    service_status: SystemServiceStatus
    dns_settings: List[DNSDomain] = field(default_factory=list)
    kernel_info: Optional[str] = None

    @property
    def default_domain(self) -> Optional[str]:
        for d in self.dns_settings:
            if d.is_default:
                return d.domain
        return None


class LogType(str, Enum):
    CONTAINER = "container"
    CONTAINER_BOOT = "container_boot"
    SYSTEM = "system"

    @property
    def display_name(self) -> str:
        return {
            LogType.CONTAINER: "Container Logs",
            LogType.CONTAINER_BOOT: "Boot Logs",
            LogType.SYSTEM: "System Logs",
        }[self]


class LogFilter(str, Enum):
    TIME_RANGE = "time_range"
    TEXT_SEARCH = "text_search"


@dataclass(frozen=True, eq=False)
class LogSource:
    id: str
    title: str
    log_type: LogType
    container_id: Optional[str] = None
    supports_real_time: bool = False
    available_filters: Tuple[LogFilter, ...] = ()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LogSource):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def supports(self, log_filter: LogFilter) -> bool:
        return log_filter in self.available_filters


@dataclass
class Snapshot:
    containers: List[Container] = field(default_factory=list)
    images: List[ContainerImage] = field(default_factory=list)
    system_info: Optional[SystemInfo] = None
    is_loading: bool = False
    error_message: str = ""
    version: int = 0

    def find_container(self, container_id: str) -> Optional[Container]:
        return next((c for c in self.containers if c.container_id == container_id), None)

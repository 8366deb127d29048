"""
Bridge API consumed by presentation code.

ContainerService combines a HelperClient (every call crosses the helper
boundary) with a StateManager (the snapshot readers observe).

Refresh semantics:
  - Successful refreshes replace a collection wholesale, in tool order
  - Failed background refreshes keep what was known and record an error;
    a later success clears only the error that refresh recorded
  - ConnectionLost on a container refresh means the system is not running:
    the service status becomes `stopped` instead of a generic error

Actions:
  - start/stop apply an optimistic `starting`/`stopping` status before the
    call; the next refresh replaces it with whatever the tool reports
  - Every other user action propagates its classified error and leaves the
    snapshot untouched

System status is inferred: a container listing that succeeds (even empty)
means running, ConnectionLost means stopped, anything else falls back to
`container system status`.

dispatch() runs any of these as an independent task on the service's own
thread pool and returns a Future, for callers that must never block.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from .client import HelperClient
from .errors import BridgeError, CommandFailed, ConnectionLost
from .model import (
    Container, ContainerStatus, DNSDomain, LogFilter, LogSource, LogType, Snapshot,
    SystemInfo, SystemServiceStatus,
)
from .state import StateManager

logger = logging.getLogger(__name__)

SYSTEM_NOT_RUNNING_MESSAGE = "Container system is not running. Please start the system first."
CONTAINERS_FAILED_PREFIX = "Failed to load containers: "
IMAGES_FAILED_PREFIX = "Failed to load images: "


def container_log_source(container: Container) -> LogSource:
    return LogSource(
        id=f"container-{container.container_id}",
        title=container.display_name,
        log_type=LogType.CONTAINER,
        container_id=container.container_id,
        supports_real_time=True,
        available_filters=(LogFilter.TIME_RANGE, LogFilter.TEXT_SEARCH),
    )


def container_boot_log_source(container: Container) -> LogSource:
    return LogSource(
        id=f"boot-{container.container_id}",
        title=f"{container.display_name} (boot)",
        log_type=LogType.CONTAINER_BOOT,
        container_id=container.container_id,
        available_filters=(LogFilter.TEXT_SEARCH,),
    )


def system_log_source() -> LogSource:
    return LogSource(
        id="system",
        title="System",
        log_type=LogType.SYSTEM,
        available_filters=(LogFilter.TIME_RANGE, LogFilter.TEXT_SEARCH),
    )


def filter_log_text(text: str, query: str) -> str:
    """Keep only the lines containing `query`, case-insensitively."""
    needle = query.lower()
    return "\n".join(line for line in text.splitlines() if needle in line.lower())


class ContainerService:
    def __init__(self, client: HelperClient, state_manager: Optional[StateManager] = None,
                 max_workers: int = 4, system_start_grace: float = 2.0):
        self.client = client
        self.state_manager = state_manager or StateManager()
        self.system_start_grace = system_start_grace
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="service")

    @property
    def snapshot(self) -> Snapshot:
        return self.state_manager.get_snapshot()

    def dispatch(self, method_name: str, *args, **kwargs) -> Future:
        """Run a public bridge method on the pool; its result or error lands in the Future."""
        method = getattr(self, method_name, None) if not method_name.startswith("_") else None
        if method is None or not callable(method):
            raise AttributeError(f"ContainerService has no operation {method_name!r}")
        return self._pool.submit(method, *args, **kwargs)

    def close(self) -> None:
        self._pool.shutdown(wait=False)
        self.client.close()

    # Refresh

    def refresh_all(self) -> None:
        self.refresh_containers()
        self.refresh_images()
        self.refresh_system_info()

    def refresh_containers(self) -> None:
        self.state_manager.set_loading(True)
        try:
            containers = self.client.list_containers()
        except ConnectionLost as e:
            logger.warning(f"Container refresh: system not running ({e})")
            self.state_manager.set_error(SYSTEM_NOT_RUNNING_MESSAGE)
            self.state_manager.set_service_status(SystemServiceStatus.STOPPED)
        except BridgeError as e:
            logger.error(f"Container refresh failed: {e.kind}: {e}")
            self.state_manager.set_error(f"{CONTAINERS_FAILED_PREFIX}{e}")
        else:
            self.state_manager.update_containers(containers)
            self.state_manager.clear_error((SYSTEM_NOT_RUNNING_MESSAGE, CONTAINERS_FAILED_PREFIX))
            logger.debug(f"Container refresh completed: {len(containers)} container(s)")
        finally:
            self.state_manager.set_loading(False)

    def refresh_images(self) -> None:
        try:
            images = self.client.list_images()
        except ConnectionLost:
            logger.info("Image refresh skipped: container system is not running")
        except BridgeError as e:
            logger.error(f"Image refresh failed: {e.kind}: {e}")
            self.state_manager.set_error(f"{IMAGES_FAILED_PREFIX}{e}")
        else:
            self.state_manager.update_images(images)
            self.state_manager.clear_error((IMAGES_FAILED_PREFIX,))

    def refresh_system_info(self) -> None:
        status = self.get_system_status()
        dns: List[DNSDomain] = []
        if status == SystemServiceStatus.RUNNING:
            try:
                dns = self.client.list_dns_domains()
            except BridgeError as e:
                logger.warning(f"Failed to get DNS settings: {e}")
        self.state_manager.set_system_info(SystemInfo(service_status=status, dns_settings=dns))

    # Containers

    def start_container(self, container_id: str) -> None:
        self.state_manager.mark_container_pending(container_id, ContainerStatus.STARTING)
        self.client.start_container(container_id)
        logger.info(f"Started container {container_id}")

    def stop_container(self, container_id: str) -> None:
        self.state_manager.mark_container_pending(container_id, ContainerStatus.STOPPING)
        self.client.stop_container(container_id)
        logger.info(f"Stopped container {container_id}")

    def delete_container(self, container_id: str) -> None:
        self.client.delete_container(container_id)
        self.state_manager.remove_container(container_id)
        logger.info(f"Deleted container {container_id}")

    def create_and_run_container(self, image: str, name: Optional[str] = None) -> None:
        self.client.create_and_run_container(image, name)
        logger.info(f"Created container from {image}" + (f" as {name}" if name else ""))

    def open_terminal(self, container_id: str) -> None:
        self.client.open_terminal(container_id)

    # Images

    def delete_image(self, reference: str) -> None:
        self.client.delete_image(reference)
        logger.info(f"Deleted image {reference}")

    # Logs

    def get_container_logs(self, container_id: str, lines: Optional[int] = None,
                           follow: bool = False) -> str:
        return self.client.container_logs(container_id, lines, follow)

    def get_container_boot_logs(self, container_id: str) -> str:
        return self.client.container_boot_logs(container_id)

    def get_system_logs(self, time_window: Optional[str] = None, follow: bool = False) -> str:
        return self.client.system_logs(time_window, follow)

    def log_sources(self) -> List[LogSource]:
        sources = [system_log_source()]
        for c in self.snapshot.containers:
            sources.append(container_log_source(c))
            sources.append(container_boot_log_source(c))
        return sources

    def fetch_logs(self, source: LogSource, time_window: Optional[str] = None,
                   lines: Optional[int] = None, search: Optional[str] = None,
                   follow: bool = False) -> str:
        if time_window and not source.supports(LogFilter.TIME_RANGE):
            raise CommandFailed(f"{source.title} logs cannot be filtered by time")
        if follow and not source.supports_real_time:
            raise CommandFailed(f"{source.title} logs cannot be followed")
        if lines is not None and source.log_type != LogType.CONTAINER:
            raise CommandFailed(f"{source.title} logs cannot be limited by line count")

        if source.log_type == LogType.SYSTEM:
            text = self.get_system_logs(time_window, follow)
        elif source.log_type == LogType.CONTAINER_BOOT:
            text = self.get_container_boot_logs(source.container_id)
        else:
            text = self.get_container_logs(source.container_id, lines, follow)

        if search and source.supports(LogFilter.TEXT_SEARCH):
            text = filter_log_text(text, search)
        return text

    # System

    def get_system_status(self) -> SystemServiceStatus:
        try:
            self.client.list_containers()
            return SystemServiceStatus.RUNNING
        except ConnectionLost:
            return SystemServiceStatus.STOPPED
        except BridgeError as e:
            logger.debug(f"Listing inconclusive ({e.kind}), asking system status")
        try:
            return self.client.system_status()
        except BridgeError as e:
            logger.warning(f"System status unavailable, assuming stopped: {e}")
            return SystemServiceStatus.STOPPED

    def _change_system(self, action, optimistic: Optional[SystemServiceStatus]) -> None:
        if optimistic is not None:
            self.state_manager.set_service_status(optimistic)
        try:
            action()
        except BridgeError as e:
            logger.error(f"System action failed: {e.kind}: {e}")
            self.state_manager.set_service_status(SystemServiceStatus.ERROR)
            raise

    def start_system(self) -> None:
        self._change_system(self.client.start_system, SystemServiceStatus.STARTING)

    def stop_system(self) -> None:
        self._change_system(self.client.stop_system, None)

    def restart_system(self) -> None:
        self._change_system(self.client.restart_system, SystemServiceStatus.STARTING)

    def ensure_system_started(self) -> bool:
        """List once; if that fails, start the system, wait, and list again."""
        try:
            containers = self.client.list_containers()
        except BridgeError as e:
            logger.info(f"Container system not running ({e.kind}), attempting to start")
        else:
            self.state_manager.update_containers(containers)
            self.state_manager.set_service_status(SystemServiceStatus.RUNNING)
            return True

        try:
            self.start_system()
        except BridgeError as e:
            logger.error(f"Failed to start container system: {e}")
            return False
        time.sleep(self.system_start_grace)

        try:
            containers = self.client.list_containers()
        except BridgeError as e:
            logger.error(f"Container system still unavailable after start: {e}")
            self.state_manager.set_error(SYSTEM_NOT_RUNNING_MESSAGE)
            return False
        self.state_manager.update_containers(containers)
        self.state_manager.set_service_status(SystemServiceStatus.RUNNING)
        return True

    # DNS

    def list_dns_domains(self) -> List[DNSDomain]:
        return self.client.list_dns_domains()

    def create_dns_domain(self, domain: str) -> None:
        self.client.create_dns_domain(domain)
        logger.info(f"Created DNS domain {domain}")

    def delete_dns_domain(self, domain: str) -> None:
        self.client.delete_dns_domain(domain)
        logger.info(f"Deleted DNS domain {domain}")

    def set_default_dns_domain(self, domain: str) -> None:
        self.client.set_default_dns_domain(domain)
        logger.info(f"Default DNS domain set to {domain}")

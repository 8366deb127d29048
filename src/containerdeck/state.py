"""
Snapshot ownership and the background refresh worker.

This module owns the one piece of shared mutable state in the bridge: the
last known containers, images and system info. Presentation code only ever
sees copies of it.

Architecture:
  - StateManager: Thread-safe owner of a Snapshot guarded by an RLock
  - RefreshWorker: Daemon thread that periodically asks a ContainerService
    to refresh
    - containers every `containers_interval` seconds (2s)
    - images and system info every `others_interval` seconds (10s)

Thread Safety:
  - Every read and write goes through self._lock (RLock for reentrant locking)
  - Each mutation bumps a version counter so readers can skip redraws
  - get_snapshot() returns a deep copy; mutating it never affects the owner
  - No ordering across writers: the last completed refresh wins

Optimistic Overlay:
  - mark_container_pending() rewrites one entry's status to starting/stopping
    and flags it `pending`
  - The next update_containers() replaces the list wholesale, which drops
    every pending flag
"""

import copy
import logging
import threading
import time
from typing import List, Optional, Tuple

from .model import Container, ContainerImage, ContainerStatus, Snapshot, SystemInfo, SystemServiceStatus

logger = logging.getLogger(__name__)


class StateManager:
    """Thread-safe state manager."""
    def __init__(self):
        self._state = Snapshot()
        self._lock = threading.RLock()
        self._version = 0

    def get_version(self) -> int:
        with self._lock:
            return self._version

    def _inc_version(self):
        # Assumes lock is held
        self._version += 1
        self._state.version = self._version

    def update_containers(self, containers: List[Container]) -> None:
        with self._lock:
            self._state.containers = list(containers)
            self._inc_version()

    def update_images(self, images: List[ContainerImage]) -> None:
        with self._lock:
            self._state.images = list(images)
            self._inc_version()

    def set_system_info(self, info: SystemInfo) -> None:
        with self._lock:
            self._state.system_info = info
            self._inc_version()

    def set_service_status(self, status: SystemServiceStatus) -> None:
        """Change only the service status, keeping known DNS settings."""
        with self._lock:
            if self._state.system_info is None:
                self._state.system_info = SystemInfo(service_status=status)
            else:
                self._state.system_info = SystemInfo(
                    service_status=status,
                    dns_settings=list(self._state.system_info.dns_settings),
                    kernel_info=self._state.system_info.kernel_info,
                )
            self._inc_version()

    def set_loading(self, loading: bool) -> None:
        with self._lock:
            self._state.is_loading = loading
            self._inc_version()

    def set_error(self, error_msg: str) -> None:
        with self._lock:
            self._state.error_message = error_msg
            self._inc_version()

    def clear_error(self, owned_prefixes: Optional[Tuple[str, ...]] = None) -> bool:
        """Clear the error; with `owned_prefixes`, only a message starting with one of them."""
        with self._lock:
            message = self._state.error_message
            if not message:
                return False
            if owned_prefixes is not None and not message.startswith(owned_prefixes):
                return False
            self._state.error_message = ""
            self._inc_version()
            return True

    def mark_container_pending(self, container_id: str, status: ContainerStatus) -> bool:
        """Apply an optimistic status. Returns False if the id is not in the snapshot."""
        with self._lock:
            for i, c in enumerate(self._state.containers):
                if c.container_id == container_id:
                    self._state.containers[i] = c.with_pending_status(status)
                    self._inc_version()
                    return True
        return False

    def remove_container(self, container_id: str) -> bool:
        with self._lock:
            before = len(self._state.containers)
            self._state.containers = [c for c in self._state.containers if c.container_id != container_id]
            if len(self._state.containers) == before:
                return False
            self._inc_version()
            return True

    def find_container(self, container_id: str) -> Optional[Container]:
        with self._lock:
            found = self._state.find_container(container_id)
            return copy.deepcopy(found) if found is not None else None

    def get_snapshot(self) -> Snapshot:
        with self._lock:
            return copy.deepcopy(self._state)


class RefreshWorker(threading.Thread):
    def __init__(self, service, containers_interval: float = 2.0, others_interval: float = 10.0):
        super().__init__(daemon=True, name="refresh-worker")
        self.service = service
        self.containers_interval = containers_interval
        self.others_interval = others_interval
        self.running = True
        self._wake = threading.Event()
        self._force_refresh_flag = False

    def force_refresh(self) -> None:
        self._force_refresh_flag = True
        self._wake.set()

    def stop(self) -> None:
        self.running = False
        self._wake.set()

    def _safely(self, *refreshes) -> None:
        for refresh in refreshes:
            try:
                refresh()
            except Exception as e:
                logger.error(f"Background refresh failed: {e}", exc_info=True)

    def run(self) -> None:
        # Both deadlines start expired so the first pass refreshes everything
        next_containers = next_others = time.monotonic()

        while self.running:
            if self._force_refresh_flag:
                next_containers = next_others = time.monotonic()
                self._force_refresh_flag = False

            if time.monotonic() >= next_containers:
                self._safely(self.service.refresh_containers)
                next_containers = time.monotonic() + self.containers_interval
            if time.monotonic() >= next_others:
                self._safely(self.service.refresh_images, self.service.refresh_system_info)
                next_others = time.monotonic() + self.others_interval

            self._wake.wait(max(0.0, min(next_containers, next_others) - time.monotonic()))
            self._wake.clear()

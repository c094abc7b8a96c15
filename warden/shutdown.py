from __future__ import annotations

import signal
import sys
from threading import Event, RLock
from typing import Any, Callable

from .docker_ops import ContainerLifecycleController
from .events import log_event
from .runtime import TrackedContainerSet


class ShutdownCoordinator:
    """Best-effort teardown of the containers this run created."""

    def __init__(
        self,
        containers: ContainerLifecycleController,
        tracked: TrackedContainerSet,
        cancel: Event | None = None,
        stop_timeout_s: int = 10,
        exit_fn: Callable[[int], Any] = sys.exit,
    ):
        self.containers = containers
        self.tracked = tracked
        self.cancel = cancel or Event()
        self.stop_timeout_s = stop_timeout_s
        self.exit_fn = exit_fn
        self._lock = RLock()

    def stop_all(self) -> list[tuple[str, str]]:
        """Stop and remove every tracked container, newest first.

        Returns (name, error) pairs for containers that could not be removed.
        """
        failures: list[tuple[str, str]] = []
        with self._lock:
            names = list(reversed(self.tracked.snapshot()))
            log_event("WARN", f"Shutting down {len(names)} tracked containers...")
            for name in names:
                try:
                    self.containers.stop_and_remove(name, timeout=self.stop_timeout_s)
                    log_event("INFO", f"Stopped & removed {name}", name, container=name)
                except Exception as e:
                    failures.append((name, str(e)))
                    log_event("WARN", f"Error stopping {name}: {e}", name, container=name)
                finally:
                    self.tracked.discard(name)
        return failures

    def handle_signal(self, signum: int, frame: Any = None) -> None:
        log_event("INFO", f"Received signal {signum}; shutting down.")
        self.cancel.set()
        self.stop_all()
        self.exit_fn(0)

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)

from __future__ import annotations

import time
from threading import Event

import httpx

from .errors import BootCancelled, HealthTimeoutError
from .events import log_event


def check_health(url: str, timeout_s: float = 2.0, client: httpx.Client | None = None) -> tuple[bool, str, float | None]:
    """Call a service health endpoint.

    Any 2xx/3xx answer counts as healthy; redirects are not followed.
    Returns (is_healthy, message, latency_ms).
    """
    start = time.time()
    try:
        if client is None:
            with httpx.Client(timeout=timeout_s, follow_redirects=False) as c:
                resp = c.get(url)
        else:
            resp = client.get(url, timeout=timeout_s)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if 200 <= resp.status_code < 400:
            return True, f"HTTP {resp.status_code}", latency_ms
        return False, f"HTTP {resp.status_code}", latency_ms
    except (httpx.ConnectError, httpx.TimeoutException):
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, "No response", latency_ms
    except httpx.HTTPError as e:
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, f"Error: {type(e).__name__}: {e}", latency_ms


class HealthGate:
    """Blocks until a freshly started service answers its health endpoint."""

    def __init__(
        self,
        max_attempts: int = 20,
        delay_s: float = 1.0,
        timeout_s: float = 2.0,
        client: httpx.Client | None = None,
        cancel: Event | None = None,
    ):
        self.max_attempts = max(1, int(max_attempts))
        self.delay_s = max(0.0, float(delay_s))
        self.timeout_s = timeout_s
        self.client = client
        self.cancel = cancel or Event()

    def wait_healthy(
        self,
        name: str,
        url: str,
        max_attempts: int | None = None,
        delay_s: float | None = None,
    ) -> int:
        """Poll ``url`` until healthy. Returns the number of attempts used."""
        attempts = self.max_attempts if max_attempts is None else max(1, int(max_attempts))
        delay = self.delay_s if delay_s is None else max(0.0, float(delay_s))

        for attempt in range(1, attempts + 1):
            if self.cancel.is_set():
                raise BootCancelled(f"Health wait for {name} cancelled", name)

            ok, msg, latency = check_health(url, timeout_s=self.timeout_s, client=self.client)
            if ok:
                log_event("DEBUG", f"{name} is healthy after {attempt} tries", name, attempt=attempt, latency_ms=latency)
                return attempt

            log_event("DEBUG", f"Waiting for {name}... attempt {attempt} ({msg})", name, attempt=attempt)
            # Event.wait doubles as an interruptible sleep.
            if attempt < attempts and self.cancel.wait(delay):
                raise BootCancelled(f"Health wait for {name} cancelled", name)

        raise HealthTimeoutError(f"{name} did not become healthy in time", name)

# probe.py

from __future__ import annotations

import time
from typing import Callable, Optional
from urllib.parse import urlparse

import requests

from .orchestrator import ContainerOrchestrator
from .utils import get_logger
from .vars import ServiceConfig

HTTP_OK = 200


class ServiceProbe:
    """Container health polling + HTTP reachability for the managed service."""

    def __init__(
        self,
        config: ServiceConfig,
        orchestrator: ContainerOrchestrator,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.orch = orchestrator
        self.sleep = sleep
        self.http = session or requests.Session()
        self.log = get_logger()

    # ----------------------------- wait_healthy -------------------------- #

    def wait_healthy(self, timeout: Optional[int] = None, poll: Optional[int] = None) -> bool:
        """
        Poll container health every *poll* seconds for at most *timeout* seconds.

        Returns True once healthy (or running with no healthcheck defined),
        False on timeout. Never raises for an unhealthy service.
        """
        timeout = self.config.start_timeout if timeout is None else timeout
        poll = max(1, int(self.config.poll_interval if poll is None else poll))

        elapsed = 0
        last = None
        while True:
            health = self.orch.health()
            if health == "healthy":
                return True
            if health == "none" and self.orch.is_running():
                self.log.info("No healthcheck defined; container is running")
                return True
            if health != last:
                self.log.debug(f"health={health}")
                last = health
            if elapsed >= timeout:
                return False
            self.sleep(poll)
            elapsed += poll
            self.log.info(f"Waiting... ({elapsed}/{timeout} seconds)")

    # ------------------------------ http -------------------------------- #

    def _base_url(self) -> str:
        port = self.config.http_host_port()
        if port in (None, 80):
            return f"http://{self.config.hostname}"
        return f"http://{self.config.hostname}:{port}"

    def probe_url(self) -> str:
        """Health endpoint as reachable from this host (hostname + published port)."""
        path = urlparse(self.config.health_url).path or "/"
        return f"{self._base_url()}{path}"

    def http_status(self, timeout: float = 3.0) -> tuple[Optional[int], str]:
        """Return (status_code, detail); status_code is None when unreachable."""
        url = self.probe_url()
        try:
            res = self.http.get(url, timeout=timeout, allow_redirects=False)
        except requests.RequestException as e:
            return None, f"{url} unreachable: {e.__class__.__name__}"
        return res.status_code, url

    def version(self, timeout: float = 3.0) -> Optional[str]:
        """Best-effort application version from /-/metadata (GitLab 15.6+); None otherwise."""
        try:
            res = self.http.get(f"{self._base_url()}/-/metadata", timeout=timeout)
            if res.status_code == HTTP_OK:
                return res.json().get("version")
        except (requests.RequestException, ValueError):
            pass
        return None

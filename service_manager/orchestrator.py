# orchestrator.py

from __future__ import annotations

import json
import os
import shlex
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from .errors import DependencyError, OrchestratorError
from .shell import Shell
from .utils import get_logger

Command = Union[str, Sequence[str]]


class ContainerOrchestrator(ABC):
    """What the manager needs from a container runtime. One service, one container."""

    @abstractmethod
    def check_available(self) -> None:
        """Raise DependencyError if the runtime or its daemon is unusable."""

    @abstractmethod
    def up(self) -> None: ...

    @abstractmethod
    def down(self, volumes: bool = False, remove_orphans: bool = False) -> None: ...

    @abstractmethod
    def pull(self) -> None: ...

    @abstractmethod
    def exists(self) -> bool:
        """True if the service container exists in any state."""

    @abstractmethod
    def is_running(self) -> bool: ...

    @abstractmethod
    def health(self) -> str:
        """healthy | starting | unhealthy | none | unknown"""

    @abstractmethod
    def ps(self) -> str:
        """Human-readable process table for the project."""

    @abstractmethod
    def exec(self, command: Command, env: Optional[Mapping[str, str]] = None, check: bool = True) -> str:
        """Run *command* inside the service container; return its stdout."""

    @abstractmethod
    def logs(self, tail: int = 100, follow: bool = True) -> int: ...

    @abstractmethod
    def remove_images(self, repository: str) -> None: ...

    @abstractmethod
    def prune(self) -> None: ...


class ComposeOrchestrator(ContainerOrchestrator):
    """`docker compose` (or legacy `docker-compose`) driven through a local Shell."""

    def __init__(
        self,
        shell: Shell,
        service: str,
        container_name: str,
        compose_file: Optional[os.PathLike] = None,
    ):
        self.r = shell
        self.service = service
        self.container_name = container_name
        self.compose_file = Path(compose_file) if compose_file else None
        self.log = get_logger()
        self._cmp_cmd: Optional[str] = None

    # -------------------- runtime detection --------------------

    def _compose_cmd(self) -> str:
        """Get the docker compose command (handles both old and new syntax)."""
        if self._cmp_cmd:
            return self._cmp_cmd
        _, rc = self.r.run_with_status("docker compose version")
        if rc == 0:
            self._cmp_cmd = "docker compose"
            return self._cmp_cmd
        if shutil.which("docker-compose"):
            _, rc = self.r.run_with_status("docker-compose version")
            if rc == 0:
                self._cmp_cmd = "docker-compose"
                return self._cmp_cmd
        raise DependencyError(
            "Neither 'docker compose' nor 'docker-compose' is available. "
            "Install the Compose plugin: https://docs.docker.com/compose/install/"
        )

    def check_available(self) -> None:
        self.log.info("Checking dependencies...")
        if not shutil.which("docker"):
            raise DependencyError(
                "Missing dependency: docker. Install it from https://docs.docker.com/engine/install/"
            )
        self._compose_cmd()
        _, rc = self.r.run_with_status("docker info")
        if rc != 0:
            raise DependencyError("Docker daemon is not running. Please start Docker and try again.")
        self.log.debug("docker and compose are available")

    def _project(self) -> str:
        """Compose command bound to the project file, independent of the working directory."""
        cmd = self._compose_cmd()
        if self.compose_file is not None:
            cmd += f" -f {shlex.quote(str(self.compose_file))}"
            cmd += f" --project-directory {shlex.quote(str(self.compose_file.parent))}"
        return cmd

    def _compose(self, args: str, check: bool = True) -> str:
        return self.r.run(f"{self._project()} {args}", check=check)

    # -------------------- lifecycle --------------------

    def up(self) -> None:
        self._compose("up -d")

    def down(self, volumes: bool = False, remove_orphans: bool = False) -> None:
        args = "down"
        if volumes:
            args += " --volumes"
        if remove_orphans:
            args += " --remove-orphans"
        self._compose(args)

    def pull(self) -> None:
        cmd = f"{self._project()} pull {shlex.quote(self.service)}"
        for ln in self.r.stream(f"{cmd}; echo __RC__$?"):
            if ln.startswith("__RC__"):
                rc = int(ln[len("__RC__"):] or 1)
                if rc:
                    raise OrchestratorError(cmd, rc)
                return
            self.log.debug(ln)

    # -------------------- inspection --------------------

    def _inspect(self, fmt: str) -> tuple[str, int]:
        return self.r.run_with_status(
            f"docker inspect {shlex.quote(self.container_name)} --format {shlex.quote(fmt)}",
            trace=False,
        )

    def exists(self) -> bool:
        _, rc = self._inspect("{{.Id}}")
        return rc == 0

    def is_running(self) -> bool:
        out, rc = self._inspect("{{.State.Running}}")
        return rc == 0 and out.strip() == "true"

    def health(self) -> str:
        raw, rc = self._inspect("{{json .State.Health}}")
        if rc != 0:
            return "unknown"
        try:
            # null when the image/compose defines no healthcheck
            data = json.loads(raw or "null")
        except ValueError:
            return "unknown"
        if not data:
            return "none"
        return str(data.get("Status") or "unknown")

    def ps(self) -> str:
        return self._compose("ps", check=False)

    # -------------------- in-container --------------------

    def exec(self, command: Command, env: Optional[Mapping[str, str]] = None, check: bool = True) -> str:
        if not isinstance(command, str):
            command = " ".join(shlex.quote(c) for c in command)
        parts = [self._project(), "exec", "-T"]
        # values are forwarded from our own environment, never written on the command line
        for key in env or {}:
            parts += ["-e", shlex.quote(key)]
        parts += [shlex.quote(self.service), command]
        return self.r.run(" ".join(parts), check=check, env=env)

    def logs(self, tail: int = 100, follow: bool = True) -> int:
        follow_arg = " -f" if follow else ""
        return self.r.run_interactive(
            f"{self._project()} logs --tail={int(tail)}{follow_arg} {shlex.quote(self.service)}"
        )

    # -------------------- housekeeping --------------------

    def remove_images(self, repository: str) -> None:
        out = self.r.run(
            f"docker images {shlex.quote(repository)} --format '{{{{.ID}}}}'",
            check=False,
        )
        ids = sorted({i.strip() for i in out.splitlines() if i.strip()})
        if not ids:
            self.log.info(f"No local images for {repository}")
            return
        self.r.run("docker rmi " + " ".join(shlex.quote(i) for i in ids))

    def prune(self) -> None:
        self.r.run("docker system prune -f")

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Iterator, Mapping, Optional

from .errors import OrchestratorError
from .utils import get_logger, preview


class Shell:
    """Runs shell command strings locally; same run/stream helpers as the SSH wrapper."""

    def __init__(self, cwd: Optional[os.PathLike] = None, cmd_timeout: Optional[int] = None):
        """
        :param cwd: working directory for every command (the compose project dir)
        :param cmd_timeout: optional per-command timeout; ``None`` disables it
        """
        self.cwd = Path(cwd) if cwd else None
        self.cmd_timeout = cmd_timeout
        self.log = get_logger()

    def _cwd(self) -> Optional[str]:
        # a missing project dir is not an error for read-only probes
        if self.cwd is not None and self.cwd.is_dir():
            return str(self.cwd)
        return None

    @staticmethod
    def _env(extra: Optional[Mapping[str, str]]) -> Optional[dict]:
        if not extra:
            return None
        env = dict(os.environ)
        env.update(extra)
        return env

    # ------------------------------- exec -------------------------------- #

    def run(
        self,
        cmd: str,
        check: bool = True,
        trace: bool = True,
        *,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Run *cmd*. Return stdout (stripped); raise OrchestratorError on failure if *check*."""
        stdout, stderr, rc = self.run_full(cmd, trace=trace, input=input, env=env)
        if check and rc:
            raise OrchestratorError(cmd, rc, preview(stderr))
        return stdout.strip()

    def run_with_status(self, cmd: str, trace: bool = True) -> tuple[str, int]:
        """Run *cmd* and return (stdout, exit_status). Never raises."""
        stdout, _stderr, rc = self.run_full(cmd, trace=trace)
        return stdout.strip(), rc

    def run_full(
        self,
        cmd: str,
        trace: bool = True,
        *,
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> tuple[str, str, int]:
        """Run *cmd* and return (stdout, stderr, exit_status) without raising."""
        try:
            proc = subprocess.run(
                cmd,
                shell=True,
                cwd=self._cwd(),
                env=self._env(env),
                input=input,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.cmd_timeout,
            )
        except subprocess.TimeoutExpired:
            stdout, stderr, rc = "", f"timed out after {self.cmd_timeout}s", 124
        else:
            stdout, stderr, rc = proc.stdout or "", proc.stderr or "", proc.returncode
        if trace:
            if rc == 0:
                self.log.debug(f"{cmd} -> rc=0, out='{preview(stdout)}'")
            else:
                self.log.debug(f"{cmd} -> rc={rc}, err='{preview(stderr)}'")
        return stdout, stderr, rc

    def run_interactive(self, cmd: str) -> int:
        """Run *cmd* attached to the terminal (for log following). Return exit status."""
        self.log.debug(f"{cmd} (interactive)")
        return subprocess.call(cmd, shell=True, cwd=self._cwd())

    # ----------------------------- streaming ----------------------------- #

    def stream(self, cmd: str) -> Iterator[str]:
        """Yield lines of *cmd* stdout as they arrive (no buffering)."""
        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=self._cwd(),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            bufsize=1,
        )
        try:
            assert proc.stdout is not None
            for line in iter(proc.stdout.readline, ""):
                yield line.rstrip("\n")
        finally:
            if proc.stdout:
                proc.stdout.close()
            proc.wait()

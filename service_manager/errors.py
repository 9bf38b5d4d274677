"""Exceptions raised by handlers; the CLI turns any ManagerError into exit code 1."""

from __future__ import annotations


class ManagerError(RuntimeError):
    """Fatal error: report and stop."""


class DependencyError(ManagerError):
    """A required external tool is missing or its daemon is unreachable."""


class PreconditionError(ManagerError):
    """The operation cannot run in the current state (not running, file missing, ...)."""


class OrchestratorError(ManagerError):
    """An external command failed."""

    def __init__(self, cmd: str, rc: int, stderr: str = ""):
        self.cmd = cmd
        self.rc = rc
        self.stderr = stderr
        detail = f":\n{stderr}" if stderr else ""
        super().__init__(f"[{cmd}] failed (rc={rc}){detail}")

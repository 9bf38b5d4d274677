"""service_manager – lifecycle, backup and migration of a compose-managed service."""

from __future__ import annotations

# Re-exports for convenient imports at package level
from .cli import main
from .vars import ServiceConfig, load_config
from .manager import ServiceManager
from .orchestrator import ComposeOrchestrator, ContainerOrchestrator
from .docker_compose import ComposeScaffolder
from .archive import Archiver
from .ssh_client import SSH
from .errors import DependencyError, ManagerError, OrchestratorError, PreconditionError

__all__ = [
    "main",
    "ServiceConfig",
    "load_config",
    "ServiceManager",
    "ComposeOrchestrator",
    "ContainerOrchestrator",
    "ComposeScaffolder",
    "Archiver",
    "SSH",
    "DependencyError",
    "ManagerError",
    "OrchestratorError",
    "PreconditionError",
]

__version__ = "0.3.0"

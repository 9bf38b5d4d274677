from __future__ import annotations

import signal
import sys
from typing import Callable, Optional, Sequence

from .errors import ManagerError
from .manager import ServiceManager
from .orchestrator import ComposeOrchestrator
from .shell import Shell
from .utils import configure_logging, get_logger
from .vars import ServiceConfig, load_config

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

VERBS = (
    "setup", "start", "stop", "restart", "status", "logs", "password",
    "reset-password", "backup", "restore", "list-backups", "migrate",
    "update", "cleanup", "uninstall", "help",
)
_HELP_ALIASES = {"help", "-h", "--help"}

# (choice, label, verb)
MENU = (
    ("1", "Setup", "setup"),
    ("2", "Start", "start"),
    ("3", "Stop", "stop"),
    ("4", "Restart", "restart"),
    ("5", "Show Status", "status"),
    ("6", "Show Logs", "logs"),
    ("7", "Get Root Password", "password"),
    ("8", "Create Backup", "backup"),
    ("9", "Prepare Migration", "migrate"),
    ("10", "Update", "update"),
)


def usage(config: ServiceConfig, prog: str = "service-manager") -> str:
    name = config.service_name
    s = f"{name} Docker manager\n"
    s += "=" * (len(name) + 15) + "\n\n"
    s += f"Usage: {prog} [COMMAND] [ARG]\n\n"
    s += "Commands:\n"
    s += f"  setup              Initial setup of {name}\n"
    s += f"  start              Start {name}\n"
    s += f"  stop               Stop {name}\n"
    s += f"  restart            Restart {name}\n"
    s += f"  status             Show {name} status\n"
    s += "  logs [lines]       Show logs (default: 100 lines) and follow\n"
    s += "  password           Get the initial root password\n"
    s += "  reset-password     Reset the root password\n"
    s += "\n"
    s += "  backup             Create a full backup\n"
    s += "  restore <file>     Restore from a backup archive\n"
    s += "  list-backups       List available backups\n"
    s += "\n"
    s += "  migrate [user@host[:dir]]\n"
    s += "                     Prepare a migration package (optionally upload it)\n"
    s += f"  update             Update {name} to the latest image\n"
    s += "\n"
    s += "  cleanup            Clean up Docker resources\n"
    s += f"  uninstall          Completely remove {name}\n"
    s += "\n"
    s += "  help               Show this help message\n"
    s += "\n"
    s += "Examples:\n"
    s += f"  {prog} setup\n"
    s += f"  {prog} restore ~/{config.backup_prefix}-20250101-120000.tar.gz\n"
    s += f"  {prog} logs 50\n"
    s += "\n"
    s += "Configuration:\n"
    s += f"  Home: {config.home}\n"
    s += f"  Hostname: {config.hostname}\n"
    s += f"  Log file: {config.effective_log_path}\n"
    s += f"  URL: {config.service_url}\n"
    return s


def build_manager(config: ServiceConfig) -> ServiceManager:
    shell = Shell(cwd=config.home)
    orchestrator = ComposeOrchestrator(
        shell, config.service_name, config.container_name, compose_file=config.compose_file
    )
    return ServiceManager(config, orchestrator)


def dispatch(manager: ServiceManager, verb: str, arg: Optional[str] = None) -> int:
    if verb == "setup":
        manager.setup()
    elif verb == "start":
        manager.start()
    elif verb == "stop":
        manager.stop()
    elif verb == "restart":
        manager.restart()
    elif verb == "status":
        manager.status()
    elif verb == "logs":
        manager.logs(arg if arg is not None else 100)
    elif verb == "password":
        manager.password()
    elif verb == "reset-password":
        manager.reset_password()
    elif verb == "backup":
        manager.backup()
    elif verb == "restore":
        manager.restore(arg)
    elif verb == "list-backups":
        manager.list_backups()
    elif verb == "migrate":
        manager.migrate(arg)
    elif verb == "update":
        manager.update()
    elif verb == "cleanup":
        manager.cleanup()
    elif verb == "uninstall":
        manager.uninstall()
    else:
        raise ValueError(f"no handler for {verb!r}")
    return EXIT_OK


def interactive_menu(manager: ServiceManager, prompt: Callable[[str], str] = input) -> int:
    """Loop until 0 or EOF. Handler failures are logged and the menu continues."""
    log = get_logger()
    choices = {choice: verb for choice, _label, verb in MENU}
    name = manager.config.service_name
    while True:
        print(f"\n{name} Docker manager")
        print("=" * (len(name) + 15))
        for choice, label, _verb in MENU:
            print(f"{choice}. {label}")
        print("0. Exit\n")
        try:
            choice = prompt(f"Select an option [0-{len(MENU)}]: ").strip()
        except EOFError:
            log.info("Goodbye!")
            return EXIT_OK
        if choice == "0":
            log.info("Goodbye!")
            return EXIT_OK
        verb = choices.get(choice)
        if verb is None:
            log.warning("Invalid option. Please try again.")
            continue
        try:
            dispatch(manager, verb)
        except ManagerError as e:
            log.error(str(e))
        except OSError as e:
            log.error(f"{verb} failed: {e}")
        try:
            prompt("\nPress Enter to continue...")
        except EOFError:
            return EXIT_OK


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    manager_factory: Callable[[ServiceConfig], ServiceManager] = build_manager,
    prompt: Callable[[str], str] = input,
) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    config = load_config()
    log = configure_logging(config.log_level, config.effective_log_path, config.log_json)

    verb = args[0] if args else ""
    arg = args[1] if len(args) > 1 else None

    if verb in _HELP_ALIASES:
        print(usage(config))
        return EXIT_OK
    if verb and verb not in VERBS:
        log.error(f"Unknown command: {verb}")
        print(usage(config))
        return EXIT_FAILURE

    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        manager = manager_factory(config)
        if not verb:
            return interactive_menu(manager, prompt)
        return dispatch(manager, verb, arg)
    except ManagerError as e:
        log.error(str(e))
        return EXIT_FAILURE
    except OSError as e:
        log.error(f"{verb or 'menu'} failed: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        log.error("Interrupted")
        return EXIT_INTERRUPTED
    finally:
        signal.signal(signal.SIGTERM, previous)


if __name__ == "__main__":
    sys.exit(main())

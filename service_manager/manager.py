from __future__ import annotations

import functools
import getpass
import os
import shutil
import tarfile
import time
from pathlib import Path
from typing import Callable, Optional

from .archive import ARCHIVE_SUFFIX, Archiver
from .docker_compose import ComposeScaffolder
from .errors import DependencyError, ManagerError, PreconditionError
from .hosts import HostsFile
from .locking import exclusive_lock
from .migration import write_installer
from .orchestrator import ContainerOrchestrator
from .probe import ServiceProbe
from .ssh_client import SSH, parse_destination
from .steps import StepRecorder
from .utils import SUCCESS, dir_size, get_logger, human_size, local_ip, timestamp
from .vars import HOME_SUBDIRS, ServiceConfig

MIN_PASSWORD_LENGTH = 8

_RESET_ROOT_PASSWORD_RB = (
    "user = User.find_by(username: 'root'); "
    "user.password = ENV['NEW_ROOT_PASSWORD']; "
    "user.password_confirmation = ENV['NEW_ROOT_PASSWORD']; "
    "user.save!; "
    "puts 'Root password updated successfully'"
)


def _mutating(func):
    """Hold the per-home advisory lock while *func* runs (re-entrant within one manager)."""

    @functools.wraps(func)
    def wrapper(self: "ServiceManager", *args, **kwargs):
        if self._lock_depth:
            return func(self, *args, **kwargs)
        with exclusive_lock(self.config.lock_file):
            self._lock_depth += 1
            try:
                return func(self, *args, **kwargs)
            finally:
                self._lock_depth -= 1

    return wrapper


class ServiceManager:
    """Lifecycle, backup, restore and migration of one compose-managed service."""

    def __init__(
        self,
        config: ServiceConfig,
        orchestrator: ContainerOrchestrator,
        *,
        archiver: Optional[Archiver] = None,
        hosts: Optional[HostsFile] = None,
        probe: Optional[ServiceProbe] = None,
        prompt: Callable[[str], str] = input,
        secret_prompt: Callable[[str], str] = getpass.getpass,
        sleep: Callable[[float], None] = time.sleep,
        ssh_factory: Callable[..., SSH] = SSH,
    ):
        self.config = config
        self.orch = orchestrator
        self.archiver = archiver or Archiver()
        self.hosts = hosts or HostsFile(config.hosts_file)
        self.probe = probe or ServiceProbe(config, orchestrator, sleep=sleep)
        self.prompt = prompt
        self.secret_prompt = secret_prompt
        self.sleep = sleep
        self.ssh_factory = ssh_factory
        self.log = get_logger()
        self._lock_depth = 0

    # ------------------------------------------------------------------ #
    # helpers
    # ------------------------------------------------------------------ #

    @property
    def home(self) -> Path:
        return self.config.home

    @property
    def pre_restore_prefix(self) -> str:
        return f"{self.config.service_name}-pre-restore-backup"

    def _ok(self, msg: str) -> None:
        self.log.log(SUCCESS, msg)

    def _report(self, text: str) -> None:
        """One INFO record per line."""
        for line in str(text).strip("\n").splitlines() or [""]:
            self.log.info(line)

    def _confirm(self, question: str) -> bool:
        try:
            answer = self.prompt(f"{question} (y/N): ")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}

    def _require_setup(self) -> None:
        if not self.config.compose_file.is_file():
            raise PreconditionError(
                f"No compose file at {self.config.compose_file}. Run 'setup' first."
            )

    def _require_running(self) -> None:
        if not self.orch.is_running():
            raise PreconditionError(
                f"{self.config.service_name} is not running. Start it first with: start"
            )

    def _setup_directories(self) -> None:
        self.log.info("Setting up directories...")
        for d in (self.home, *(self.home / sub for sub in HOME_SUBDIRS)):
            if not d.is_dir():
                d.mkdir(parents=True, exist_ok=True)
                self.log.info(f"Created directory: {d}")
        self._ok("Directory structure created")

    def _ensure_hosts_entry(self) -> None:
        """Best-effort: a failure here never aborts the calling handler."""
        if not self.config.manage_hosts:
            self.log.debug("hosts management disabled")
            return
        self.log.info(f"Setting up hosts entry for {self.config.hostname}...")
        try:
            self.hosts.add(self.config.hostname, self.config.hosts_ip)
        except (ManagerError, OSError) as e:
            self.log.warning(f"Could not update {self.config.hosts_file}: {e}")

    def _remove_hosts_entry(self) -> None:
        if not self.config.manage_hosts:
            return
        self.log.info("Removing hosts entry...")
        try:
            self.hosts.remove(self.config.hostname)
        except (ManagerError, OSError) as e:
            self.log.warning(f"Could not clean {self.config.hosts_file}: {e}")

    def _snapshot(self, prefix: str) -> Optional[Path]:
        """Best-effort archive of the current home; None when skipped or failed."""
        if not self.home.is_dir():
            self.log.info(f"No current installation at {self.home}; nothing to snapshot")
            return None
        try:
            return self.archiver.create(self.home, self.config.backup_dir, prefix)
        except (ManagerError, OSError, tarfile.TarError) as e:
            self.log.warning(f"Safety backup failed (continuing): {e}")
            return None

    def _stop_quietly(self) -> None:
        try:
            if self.config.compose_file.is_file() and self.orch.is_running():
                self.orch.down()
        except ManagerError as e:
            self.log.warning(f"Could not stop service (continuing): {e}")

    def _put_back(self, aside: Path) -> None:
        if self.home.exists():
            shutil.rmtree(self.home)
        os.replace(aside, self.home)

    def _aside_path(self, reason: str) -> Path:
        return self.home.with_name(f".{self.home.name}.{reason}-{timestamp()}")

    def _discard(self, path: Path) -> None:
        try:
            shutil.rmtree(path)
        except OSError as e:
            self.log.warning(f"Could not remove {path}: {e}")

    def _wait_healthy(self) -> bool:
        self.log.info(f"Waiting for {self.config.service_name} to become healthy...")
        healthy = self.probe.wait_healthy()
        if healthy:
            self._ok(f"{self.config.service_name} started successfully")
            self.log.info(f"Access it at: {self.config.service_url}")
        else:
            self.log.warning(
                f"{self.config.service_name} took longer than expected to start. "
                "Check logs with: logs"
            )
        return healthy

    # ------------------------------------------------------------------ #
    # lifecycle
    # ------------------------------------------------------------------ #

    @_mutating
    def setup(self) -> None:
        self.log.info(f"Setting up {self.config.service_name} environment in {self.home}...")
        self.orch.check_available()
        self._setup_directories()
        ComposeScaffolder(self.config).ensure()
        self._ensure_hosts_entry()
        self._ok("Setup completed!")
        self.log.info("Next steps:")
        self.log.info("  1. Start the service: start")
        self.log.info("  2. Wait for startup (2-5 minutes)")
        self.log.info("  3. Get the initial password: password")
        self.log.info(f"  4. Access: {self.config.service_url}")

    @_mutating
    def start(self) -> bool:
        """Return False when it was already running (nothing done)."""
        self.log.info(f"Starting {self.config.service_name}...")
        self.orch.check_available()
        self._require_setup()
        if self.orch.is_running():
            self.log.warning(f"{self.config.service_name} is already running")
            return False
        self.orch.up()
        self._wait_healthy()
        return True

    @_mutating
    def stop(self) -> bool:
        """Return False when it was not running (nothing done)."""
        self.log.info(f"Stopping {self.config.service_name}...")
        self.orch.check_available()
        self._require_setup()
        if not self.orch.is_running():
            self.log.warning(f"{self.config.service_name} is not running")
            return False
        self.orch.down()
        self._ok(f"{self.config.service_name} stopped successfully")
        return True

    @_mutating
    def restart(self) -> None:
        self.log.info(f"Restarting {self.config.service_name}...")
        self.stop()
        self.sleep(self.config.restart_delay)
        self.start()

    def status(self) -> None:
        """Print a report. Degrades to warnings; never raises ManagerError."""
        cfg = self.config
        self._report(f"{cfg.service_name} status")
        self._report("=" * (len(cfg.service_name) + 7))

        runtime_ok = True
        try:
            self.orch.check_available()
        except DependencyError as e:
            runtime_ok = False
            self.log.warning(f"Container runtime unavailable: {e}")

        running = False
        self._report("\nContainer:")
        if runtime_ok:
            try:
                if self.orch.exists():
                    self._report(self.orch.ps())
                    running = self.orch.is_running()
                    self._report(f"health: {self.orch.health()}")
                else:
                    self.log.warning(f"Container {cfg.container_name} not found")
            except ManagerError as e:
                self.log.warning(f"Could not query container: {e}")

        if running:
            self._report("\nServices:")
            try:
                self._report(self.orch.exec(cfg.status_command))
            except ManagerError:
                self.log.warning("Could not get service status")

        self._report("\nDisk usage:")
        if self.home.is_dir():
            entries = sorted(self.home.iterdir())
            for entry in entries:
                self._report(f"{human_size(dir_size(entry)):>8}  {entry}")
            if not entries:
                self._report(f"(empty) {self.home}")
        else:
            self.log.warning(f"Home directory {self.home} does not exist (run setup)")

        self._report("\nNetwork:")
        self._report(f"URL: {cfg.service_url}")
        code, detail = self.probe.http_status()
        if code is None:
            self.log.warning(f"HTTP check: {detail}")
        else:
            self._report(f"HTTP check: {detail} -> {code}")
            version = self.probe.version()
            if version:
                self._report(f"Version: {version}")
        ip = local_ip()
        if ip:
            self._report(f"Local network access: http://{ip}")

    def logs(self, lines: str | int = 100, follow: bool = True) -> int:
        try:
            tail = int(lines)
        except (TypeError, ValueError):
            raise PreconditionError(f"Line count must be an integer, got '{lines}'") from None
        if tail <= 0:
            raise PreconditionError(f"Line count must be positive, got {tail}")
        self.orch.check_available()
        if not self.orch.exists():
            raise PreconditionError(f"{self.config.service_name} is not running")
        rc = self.orch.logs(tail=tail, follow=follow)
        if rc not in (0, 130):
            self.log.warning(f"Log command exited with status {rc}")
        return rc

    def password(self) -> Optional[str]:
        self.log.info("Retrieving initial root password...")
        self.orch.check_available()
        self._require_running()
        try:
            out = self.orch.exec(["cat", self.config.password_file], check=False)
        except ManagerError:
            out = ""
        for line in (out or "").splitlines():
            if line.strip().startswith("Password:"):
                value = line.split(":", 1)[1].strip()
                if value:
                    self._ok(f"Initial root password: {value}")
                    self.log.warning("Please change this password after first login!")
                    return value
        self.log.warning("Could not retrieve initial password. It may have been removed already.")
        self.log.info("If you need to set a new one, use: reset-password")
        return None

    @_mutating
    def reset_password(self) -> None:
        self.log.info("Resetting root password...")
        self.orch.check_available()
        self._require_running()
        new_password = self.secret_prompt("Enter new password for root user: ")
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise PreconditionError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        self.orch.exec(
            ["gitlab-rails", "runner", _RESET_ROOT_PASSWORD_RB],
            env={"NEW_ROOT_PASSWORD": new_password},
        )
        self._ok("Root password updated successfully")

    # ------------------------------------------------------------------ #
    # backup / restore
    # ------------------------------------------------------------------ #

    @_mutating
    def backup(self) -> Path:
        self.log.info(f"Creating {self.config.service_name} backup...")
        self.orch.check_available()
        self._require_running()

        self.log.info(f"Running in-container backup: {self.config.backup_command}")
        self.orch.exec(self.config.backup_command)

        self.log.info("Creating full backup archive...")
        archive = self.archiver.create(self.home, self.config.backup_dir, self.config.backup_prefix)
        self._ok(f"Backup created: {archive}")
        self.log.info(f"Restore it on any machine with: restore {archive}")
        return archive

    @_mutating
    def restore(self, archive_path: Optional[str]) -> bool:
        """Return False when the user declined."""
        if not archive_path:
            raise PreconditionError("Please specify a backup file to restore")
        archive = Path(archive_path).expanduser().absolute()
        self.archiver.validate(archive)
        self.orch.check_available()

        self.log.warning(f"This will completely replace the installation at {self.home}!")
        if not self._confirm("Are you sure you want to continue?"):
            self.log.info("Restore cancelled")
            return False

        snapshot: Optional[Path] = None
        aside = self._aside_path("pre-restore")
        with StepRecorder("restore") as steps:
            steps.step(f"Stopping {self.config.service_name}...", self._stop_quietly)
            snapshot = steps.step(
                "Backing up current installation...",
                lambda: self._snapshot(self.pre_restore_prefix),
            )
            if self.home.exists():
                steps.step(
                    "Moving current installation aside...",
                    lambda: os.replace(self.home, aside),
                    undo=lambda: self._put_back(aside),
                )
            steps.step(
                "Restoring from backup...",
                lambda: self.archiver.extract(archive, self.home),
                undo=lambda: shutil.rmtree(self.home, ignore_errors=True),
            )
            steps.commit()

        if aside.exists():
            self._discard(aside)
        self._ensure_hosts_entry()

        self.log.info(f"Starting {self.config.service_name}...")
        if self.config.compose_file.is_file():
            self.start()
        else:
            self.log.warning("Restored tree has no compose file; run 'setup' then 'start'")

        self._ok("Restore completed successfully")
        if snapshot:
            self.log.info(f"Pre-restore backup saved to: {snapshot}")
        return True

    def list_backups(self) -> dict:
        self.log.info("Available backups:")
        found = {
            "internal": self.archiver.find(self.config.internal_backup_dir, "*.tar"),
            "full": self.archiver.find(self.config.backup_dir, f"{self.config.backup_prefix}-*{ARCHIVE_SUFFIX}")
            + self.archiver.find(self.config.backup_dir, f"{self.pre_restore_prefix}-*{ARCHIVE_SUFFIX}"),
            "migration": self.archiver.find(
                self.config.backup_dir, f"{self.config.migration_prefix}-*{ARCHIVE_SUFFIX}"
            ),
        }
        titles = {
            "internal": f"In-container backups in {self.config.internal_backup_dir}",
            "full": f"Full backup archives in {self.config.backup_dir}",
            "migration": f"Migration packages in {self.config.backup_dir}",
        }
        for key, paths in found.items():
            self._report(f"\n{titles[key]}:")
            if not paths:
                self.log.info(f"No {key} backups found")
                continue
            for p in paths:
                st = p.stat()
                when = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(st.st_mtime))
                self._report(f"{human_size(st.st_size):>8}  {when}  {p}")
        return found

    # ------------------------------------------------------------------ #
    # migration
    # ------------------------------------------------------------------ #

    @_mutating
    def migrate(self, destination: Optional[str] = None) -> tuple[Path, Path]:
        self.log.info(f"Preparing {self.config.service_name} for migration...")
        if destination:
            parse_destination(destination)  # fail before stopping anything
        self.orch.check_available()
        if not self.home.is_dir():
            raise PreconditionError(f"Nothing to migrate: {self.home} does not exist")

        was_running = self.orch.is_running()
        if was_running:
            self.stop()
        try:
            self.log.info("Creating migration package...")
            archive = self.archiver.create(self.home, self.config.backup_dir, self.config.migration_prefix)
            installer = write_installer(self.config, archive)
        finally:
            if was_running:
                self.start()

        self._ok("Migration package created:")
        self.log.info(f"  Archive: {archive}")
        self.log.info(f"  Installer: {installer}")
        if destination:
            self._push(destination, archive, installer)
        else:
            self.log.info("To migrate to another machine:")
            self.log.info("  1. Copy both files to the target machine")
            self.log.info(f"  2. Run: ./{installer.name}")
        return archive, installer

    def _push(self, destination: str, *files: Path) -> None:
        user, host, remote_dir = parse_destination(destination)
        self.log.info(f"Uploading migration package to {user}@{host}:{remote_dir} ...")
        try:
            remote = self.ssh_factory(
                host,
                user,
                pw=self.config.migrate_password or None,
                key_filename=self.config.migrate_key_file or None,
                port=self.config.migrate_port,
            )
        except Exception as e:  # socket, auth and SSH errors alike
            raise ManagerError(f"SSH connection to {host} failed: {e}") from e
        try:
            target_dir = remote.resolve_dir(remote_dir).rstrip("/")
            for f in files:
                remote.put_file(str(f), f"{target_dir}/{f.name}")
        except Exception as e:
            raise ManagerError(f"Upload to {host} failed: {e}") from e
        finally:
            remote.close()
        self._ok(f"Uploaded to {user}@{host}:{target_dir}")
        self.log.info(f"On {host} run: cd {target_dir} && ./{files[-1].name}")

    # ------------------------------------------------------------------ #
    # maintenance
    # ------------------------------------------------------------------ #

    @_mutating
    def update(self) -> None:
        self.log.info(f"Updating {self.config.service_name}...")
        self.orch.check_available()
        self._require_setup()
        self.log.warning("Creating backup before update...")
        self.backup()
        self.log.info(f"Pulling {self.config.image} ...")
        self.orch.pull()
        self.orch.up()
        self._wait_healthy()
        self._ok(f"{self.config.service_name} update completed")

    @staticmethod
    def _image_repository(image: str) -> str:
        name, sep, tag = image.rpartition(":")
        if sep and "/" not in tag:
            return name
        return image

    @_mutating
    def cleanup(self) -> bool:
        """Return True when every step succeeded."""
        self.log.info(f"Cleaning up {self.config.service_name} resources...")
        self.orch.check_available()
        clean = True

        if self.config.compose_file.is_file():
            try:
                self.orch.down(volumes=True, remove_orphans=True)
            except ManagerError as e:
                clean = False
                self.log.warning(f"Could not remove containers/volumes: {e}")
        else:
            self.log.warning(f"No compose file at {self.config.compose_file}; skipping container teardown")

        repo = self._image_repository(self.config.image)
        try:
            self.orch.remove_images(repo)
        except ManagerError as e:
            clean = False
            self.log.warning(f"Could not remove images for {repo}: {e}")

        try:
            self.orch.prune()
        except ManagerError as e:
            clean = False
            self.log.warning(f"Docker system prune failed: {e}")

        if clean:
            self._ok("Cleanup completed")
        else:
            self.log.warning("Cleanup completed with warnings")
        return clean

    @_mutating
    def uninstall(self) -> bool:
        """Return False when the user declined."""
        self.orch.check_available()
        self.log.warning(f"This will completely remove {self.config.service_name} and all data in {self.home}!")
        if not self._confirm("Are you sure you want to continue?"):
            self.log.info("Uninstall cancelled")
            return False

        self.log.info("Creating final backup...")
        try:
            self.backup()
        except (ManagerError, OSError, tarfile.TarError) as e:
            self.log.warning(f"Final backup skipped: {e}")

        self.cleanup()

        aside = self._aside_path("uninstall")
        with StepRecorder("uninstall") as steps:
            if self.home.exists():
                steps.step(
                    f"Removing {self.home}...",
                    lambda: os.replace(self.home, aside),
                    undo=lambda: self._put_back(aside),
                )
            steps.step("Rolling back host configuration...", self._remove_hosts_entry)
            steps.commit()

        if aside.exists():
            self._discard(aside)
        self._ok(f"{self.config.service_name} uninstalled successfully")
        return True

# vars.py – runtime configuration
# Values come from the process environment (optionally seeded from a .env in
# the working directory), then from the .env that `setup` persists in the
# service home, then from the defaults below. Loaded once per process and
# passed around as a ServiceConfig; nothing reads os.environ after that.

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import dotenv_values, load_dotenv

ENV_FILE_NAME = ".env"
COMPOSE_FILE_NAME = "docker-compose.yml"
HOME_SUBDIRS = ("config", "logs", "data", "backups")


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    """Convert 0/1, false/true, yes/no to a real bool."""
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y"}


def _env_int(value: Optional[str], default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def parse_csv(raw: str) -> Tuple[str, ...]:
    """Split "80:80, 443:443" into ("80:80", "443:443"), dropping blanks and dupes."""
    seen = []
    for part in (raw or "").replace(";", ",").split(","):
        part = part.strip()
        if part and part not in seen:
            seen.append(part)
    return tuple(seen)


@dataclass(frozen=True)
class ServiceConfig:
    home: Path
    hostname: str = "gitlab.local"
    service_name: str = "gitlab"
    container_name: str = "gitlab-server"
    image: str = "gitlab/gitlab-ce:latest"
    ports: Tuple[str, ...] = ("80:80", "443:443", "2222:22", "5050:5050")
    mounts: Tuple[str, ...] = (
        "config:/etc/gitlab",
        "logs:/var/log/gitlab",
        "data:/var/opt/gitlab",
        "backups:/var/opt/gitlab/backups",
    )
    memory_limit: str = "4G"
    memory_reservation: str = "2G"
    shm_size: str = "256m"
    restart_policy: str = "unless-stopped"

    health_url: str = "http://localhost/-/health"
    health_interval: str = "30s"
    health_timeout: str = "10s"
    health_retries: int = 5
    health_start_period: str = "120s"

    backup_command: str = "gitlab-backup create"
    status_command: str = "gitlab-ctl status"
    password_file: str = "/etc/gitlab/initial_root_password"

    backup_prefix: str = "gitlab-full-backup"
    migration_prefix: str = "gitlab-migration"
    backup_dir: Path = field(default_factory=Path.home)

    manage_hosts: bool = True
    hosts_file: Path = Path("/etc/hosts")
    hosts_ip: str = "127.0.0.1"

    start_timeout: int = 300
    poll_interval: int = 10
    restart_delay: int = 5

    log_level: str = "INFO"
    log_path: Optional[Path] = None
    log_json: bool = False

    migrate_password: str = ""
    migrate_key_file: str = ""
    migrate_port: int = 22

    # ---------------------------- derived paths ---------------------------- #

    @property
    def compose_file(self) -> Path:
        return self.home / COMPOSE_FILE_NAME

    @property
    def env_file(self) -> Path:
        return self.home / ENV_FILE_NAME

    @property
    def internal_backup_dir(self) -> Path:
        return self.home / "backups"

    @property
    def lock_file(self) -> Path:
        return self.home.parent / f".{self.home.name}.lock"

    @property
    def effective_log_path(self) -> Path:
        # beside the home, so restore/uninstall never pull the log out from under us
        return self.log_path or self.home.parent / f"{self.home.name}-manager.log"

    @property
    def service_url(self) -> str:
        return f"http://{self.hostname}"

    def http_host_port(self) -> Optional[int]:
        """Host port published for container port 80, if any."""
        for mapping in self.ports:
            parts = mapping.split(":")
            if len(parts) >= 2 and parts[-1].split("/")[0] == "80":
                try:
                    return int(parts[-2])
                except ValueError:
                    return None
        return None

    def persisted_values(self) -> dict:
        """Values written to <home>/.env by setup, SERVICE_HOME excluded."""
        return {
            "SERVICE_HOSTNAME": self.hostname,
            "SERVICE_NAME": self.service_name,
            "SERVICE_CONTAINER_NAME": self.container_name,
            "SERVICE_IMAGE": self.image,
            "SERVICE_PORTS": ",".join(self.ports),
            "SERVICE_MOUNTS": ",".join(self.mounts),
            "SERVICE_MEMORY_LIMIT": self.memory_limit,
            "SERVICE_MEMORY_RESERVATION": self.memory_reservation,
            "SERVICE_SHM_SIZE": self.shm_size,
            "SERVICE_RESTART_POLICY": self.restart_policy,
            "SERVICE_HEALTH_URL": self.health_url,
            "SERVICE_HEALTH_INTERVAL": self.health_interval,
            "SERVICE_HEALTH_TIMEOUT": self.health_timeout,
            "SERVICE_HEALTH_RETRIES": str(self.health_retries),
            "SERVICE_HEALTH_START_PERIOD": self.health_start_period,
            "SERVICE_BACKUP_COMMAND": self.backup_command,
            "SERVICE_STATUS_COMMAND": self.status_command,
            "SERVICE_PASSWORD_FILE": self.password_file,
        }

    def with_overrides(self, **changes) -> "ServiceConfig":
        return replace(self, **changes)


def _resolve_home(env: Mapping[str, str]) -> Path:
    raw = env.get("SERVICE_HOME") or str(Path.home() / "gitlab_docker")
    return Path(raw).expanduser().absolute()


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    *,
    load_cwd_env: bool = True,
) -> ServiceConfig:
    """
    Build the ServiceConfig for this invocation.

    Precedence: *environ* (defaults to os.environ) > <home>/.env > defaults.
    """
    if environ is None:
        if load_cwd_env:
            cwd_env = Path.cwd() / ENV_FILE_NAME
            if cwd_env.is_file():
                load_dotenv(cwd_env, override=False)
        environ = os.environ

    home = _resolve_home(environ)

    merged: dict = {}
    persisted = home / ENV_FILE_NAME
    if persisted.is_file():
        merged.update({k: v for k, v in dotenv_values(persisted).items() if v is not None})
    merged.update({k: v for k, v in environ.items() if v is not None})

    def get(name: str, default: str) -> str:
        value = merged.get(name)
        return value if value not in (None, "") else default

    d = ServiceConfig(home=home)
    log_path = merged.get("LOG_PATH") or ""
    return ServiceConfig(
        home=home,
        hostname=get("SERVICE_HOSTNAME", d.hostname),
        service_name=get("SERVICE_NAME", d.service_name),
        container_name=get("SERVICE_CONTAINER_NAME", d.container_name),
        image=get("SERVICE_IMAGE", d.image),
        ports=parse_csv(get("SERVICE_PORTS", ",".join(d.ports))),
        mounts=parse_csv(get("SERVICE_MOUNTS", ",".join(d.mounts))),
        memory_limit=get("SERVICE_MEMORY_LIMIT", d.memory_limit),
        memory_reservation=get("SERVICE_MEMORY_RESERVATION", d.memory_reservation),
        shm_size=get("SERVICE_SHM_SIZE", d.shm_size),
        restart_policy=get("SERVICE_RESTART_POLICY", d.restart_policy),
        health_url=get("SERVICE_HEALTH_URL", d.health_url),
        health_interval=get("SERVICE_HEALTH_INTERVAL", d.health_interval),
        health_timeout=get("SERVICE_HEALTH_TIMEOUT", d.health_timeout),
        health_retries=_env_int(merged.get("SERVICE_HEALTH_RETRIES"), d.health_retries),
        health_start_period=get("SERVICE_HEALTH_START_PERIOD", d.health_start_period),
        backup_command=get("SERVICE_BACKUP_COMMAND", d.backup_command),
        status_command=get("SERVICE_STATUS_COMMAND", d.status_command),
        password_file=get("SERVICE_PASSWORD_FILE", d.password_file),
        backup_prefix=get("SERVICE_BACKUP_PREFIX", d.backup_prefix),
        migration_prefix=get("SERVICE_MIGRATION_PREFIX", d.migration_prefix),
        backup_dir=Path(get("SERVICE_BACKUP_DIR", str(d.backup_dir))).expanduser().absolute(),
        manage_hosts=_env_bool(merged.get("SERVICE_MANAGE_HOSTS"), d.manage_hosts),
        hosts_file=Path(get("SERVICE_HOSTS_FILE", str(d.hosts_file))),
        hosts_ip=get("SERVICE_HOSTS_IP", d.hosts_ip),
        start_timeout=_env_int(merged.get("SERVICE_START_TIMEOUT"), d.start_timeout),
        poll_interval=_env_int(merged.get("SERVICE_POLL_INTERVAL"), d.poll_interval),
        restart_delay=_env_int(merged.get("SERVICE_RESTART_DELAY"), d.restart_delay),
        log_level=get("LOG_LEVEL", d.log_level),
        log_path=Path(log_path).expanduser() if log_path else None,
        log_json=_env_bool(merged.get("LOG_JSON"), d.log_json),
        migrate_password=get("MIGRATE_SSH_PASSWORD", ""),
        migrate_key_file=get("MIGRATE_SSH_KEY_FILE", ""),
        migrate_port=_env_int(merged.get("MIGRATE_SSH_PORT"), d.migrate_port),
    )


# ---------- Debug print when executed directly ----------
if __name__ == "__main__":
    cfg = load_config()
    print("=== Service configuration ===")
    for key, value in sorted(vars(cfg).items()):
        if key == "migrate_password":
            value = "*" * len(value) if value else "(empty)"
        print(f"{key}: {value!r}")
    print(f"compose_file: '{cfg.compose_file}'")
    print(f"log_path: '{cfg.effective_log_path}'")

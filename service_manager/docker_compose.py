# docker_compose.py

from __future__ import annotations

import os
import re
import tempfile
from contextlib import suppress
from pathlib import Path

from .utils import get_logger
from .vars import ServiceConfig

_DURATION_RE = re.compile(r"^\d+(ms|s|m|h)$")


def _quote(value: str) -> str:
    """Single-quote a YAML scalar."""
    return "'" + str(value).replace("'", "''") + "'"


class ComposeScaffolder:
    """Renders docker-compose.yml and the persisted .env for one ServiceConfig."""

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.compose_dir = config.home
        self.compose_file = config.compose_file
        self.env_file = config.env_file
        self.log = get_logger()

    def ensure(self) -> bool:
        """Write compose + .env for the current config. Return True if anything changed."""
        self.compose_dir.mkdir(parents=True, exist_ok=True)
        changed = self._write_text(self.compose_file, self.build_compose_content(), label="docker-compose.yml")
        changed = self._write_text(self.env_file, self.build_env_content(), label=".env") or changed
        return changed

    def exists(self) -> bool:
        return self.compose_file.is_file()

    # -------------------- content --------------------

    def _healthcheck_test(self) -> str:
        return f'["CMD", "curl", "-f", "{self.config.health_url}"]'

    def build_compose_content(self) -> str:
        cfg = self.config
        for label, value in (
            ("health interval", cfg.health_interval),
            ("health timeout", cfg.health_timeout),
            ("health start period", cfg.health_start_period),
        ):
            if not _DURATION_RE.match(value):
                self.log.warning(f"Unusual {label} '{value}' (expected e.g. 30s)")

        network = f"{cfg.service_name}-network"

        content = "services:\n"
        content += f"  {cfg.service_name}:\n"
        content += f"    image: {cfg.image}\n"
        content += f"    container_name: {cfg.container_name}\n"
        content += f"    restart: {cfg.restart_policy}\n"
        content += f"    hostname: {_quote(cfg.hostname)}\n"

        if cfg.service_name == "gitlab" or "gitlab/gitlab-" in cfg.image:
            content += "    environment:\n"
            content += "      GITLAB_OMNIBUS_CONFIG: |\n"
            content += f"        external_url 'http://{cfg.hostname}'\n"
            content += "        gitlab_rails['gitlab_shell_ssh_port'] = 2222\n"
            content += "        puma['worker_processes'] = 2\n"
            content += "        sidekiq['max_concurrency'] = 10\n"
            content += "        prometheus_monitoring['enable'] = false\n"
            content += f"        registry_external_url 'http://{cfg.hostname}:5050'\n"
            content += "        gitlab_rails['registry_enabled'] = true\n"
            content += "        gitlab_rails['backup_keep_time'] = 604800\n"
            content += "        gitlab_rails['backup_path'] = '/var/opt/gitlab/backups'\n"
            content += "        gitlab_rails['smtp_enable'] = false\n"
            content += "        gitlab_rails['time_zone'] = 'UTC'\n"

        if cfg.ports:
            content += "    ports:\n"
            for mapping in cfg.ports:
                content += f"      - {_quote(mapping)}\n"

        if cfg.mounts:
            content += "    volumes:\n"
            for mount in cfg.mounts:
                src, _, dest = mount.partition(":")
                content += f"      - {_quote('./' + src.removeprefix('./') + ':' + dest)}\n"
        content += "    networks:\n"
        content += f"      - {network}\n"

        if cfg.shm_size:
            content += f"    shm_size: {_quote(cfg.shm_size)}\n"

        if cfg.memory_limit or cfg.memory_reservation:
            content += "    deploy:\n"
            content += "      resources:\n"
            if cfg.memory_limit:
                content += "        limits:\n"
                content += f"          memory: {cfg.memory_limit}\n"
            if cfg.memory_reservation:
                content += "        reservations:\n"
                content += f"          memory: {cfg.memory_reservation}\n"

        content += "    healthcheck:\n"
        content += f"      test: {self._healthcheck_test()}\n"
        content += f"      interval: {cfg.health_interval}\n"
        content += f"      timeout: {cfg.health_timeout}\n"
        content += f"      retries: {int(cfg.health_retries)}\n"
        content += f"      start_period: {cfg.health_start_period}\n"

        content += "\nnetworks:\n"
        content += f"  {network}:\n"
        content += "    driver: bridge\n"
        return content

    def build_env_content(self) -> str:
        lines = ["# generated by service-manager setup; re-run setup to change"]
        for key, value in self.config.persisted_values().items():
            value = str(value)
            if any(ch in value for ch in " #'\"$"):
                value = '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
            lines.append(f"{key}={value}")
        return "\n".join(lines) + "\n"

    # -------------------- io --------------------

    def _write_text(self, path: Path, text: str, *, label: str) -> bool:
        """Atomically replace *path* with *text*; untouched when already identical."""
        try:
            if path.read_text(encoding="utf-8") == text:
                self.log.info(f"{label} unchanged at {path}")
                return False
        except FileNotFoundError:
            pass

        fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            with suppress(FileNotFoundError):
                os.unlink(tmp)
            raise
        self.log.info(f"Wrote {label} at {path}")
        return True

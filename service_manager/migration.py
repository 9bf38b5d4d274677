"""Installer script generated next to a migration archive."""

from __future__ import annotations

import os
import shlex
import stat
from datetime import datetime
from pathlib import Path

from .vars import ServiceConfig

INSTALLER_SUFFIX = "-install.sh"


def installer_path_for(archive: Path) -> Path:
    name = archive.name
    if name.endswith(".tar.gz"):
        name = name[: -len(".tar.gz")]
    return archive.with_name(f"{name}{INSTALLER_SUFFIX}")


def render_installer(config: ServiceConfig, archive_name: str, generated: datetime | None = None) -> str:
    """Self-contained bash bootstrap: extract next to $HOME, add hosts entry, compose up."""
    generated = generated or datetime.now()
    archive_q = shlex.quote(archive_name)
    home_q = shlex.quote(config.home.name)
    host_line_q = shlex.quote(f"{config.hosts_ip} {config.hostname}")
    hostname_q = shlex.quote(config.hostname)

    s = "#!/usr/bin/env bash\n"
    s += f"# {config.service_name} migration install script\n"
    s += f"# Generated on {generated:%Y-%m-%d %H:%M:%S}\n"
    s += "\n"
    s += "set -euo pipefail\n"
    s += "\n"
    s += f"ARCHIVE_NAME={archive_q}\n"
    s += 'SCRIPT_DIR="$(cd "$(dirname "${BASH_SOURCE[0]}")" && pwd)"\n'
    s += 'TARGET_PARENT="${TARGET_PARENT:-$HOME}"\n'
    s += f'SERVICE_HOME="$TARGET_PARENT/"{home_q}\n'
    s += "\n"
    s += f'echo "{config.service_name} migration installer"\n'
    s += 'echo "=============================="\n'
    s += "\n"
    s += 'if [[ -f "$ARCHIVE_NAME" ]]; then\n'
    s += '    ARCHIVE_PATH="$ARCHIVE_NAME"\n'
    s += 'elif [[ -f "$SCRIPT_DIR/$ARCHIVE_NAME" ]]; then\n'
    s += '    ARCHIVE_PATH="$SCRIPT_DIR/$ARCHIVE_NAME"\n'
    s += "else\n"
    s += '    echo "Migration archive not found: $ARCHIVE_NAME" >&2\n'
    s += '    echo "Please ensure the archive is in the current directory." >&2\n'
    s += "    exit 1\n"
    s += "fi\n"
    s += "\n"
    s += 'if [[ -e "$SERVICE_HOME" ]]; then\n'
    s += '    echo "Refusing to overwrite existing $SERVICE_HOME" >&2\n'
    s += "    exit 1\n"
    s += "fi\n"
    s += "\n"
    s += 'echo "Extracting installation into $TARGET_PARENT ..."\n'
    s += 'mkdir -p "$TARGET_PARENT"\n'
    s += 'tar -xzf "$ARCHIVE_PATH" -C "$TARGET_PARENT"\n'
    s += "\n"
    if config.manage_hosts:
        s += 'echo "Setting up hosts entry..."\n'
        s += f"if ! grep -qw -- {hostname_q} /etc/hosts; then\n"
        s += f"    echo {host_line_q} | sudo tee -a /etc/hosts >/dev/null\n"
        s += "fi\n"
        s += "\n"
    s += 'echo "Starting service..."\n'
    s += 'cd "$SERVICE_HOME"\n'
    s += "if docker compose version >/dev/null 2>&1; then\n"
    s += "    docker compose up -d\n"
    s += "else\n"
    s += "    docker-compose up -d\n"
    s += "fi\n"
    s += "\n"
    s += 'echo "Migration completed."\n'
    s += f'echo "Access the service at: {config.service_url}"\n'
    return s


def write_installer(config: ServiceConfig, archive: Path) -> Path:
    """Write the installer next to *archive* and make it executable."""
    path = installer_path_for(archive)
    path.write_text(render_installer(config, archive.name), encoding="utf-8")
    mode = path.stat().st_mode
    os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path

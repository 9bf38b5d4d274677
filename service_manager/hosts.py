from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Optional

from .shell import Shell
from .utils import SUCCESS, get_logger


class HostsFile:
    """Adds/removes the `<ip> <hostname>` line. Falls back to `sudo tee` when not writable."""

    def __init__(self, path: os.PathLike, shell: Optional[Shell] = None):
        self.path = Path(path)
        self.shell = shell or Shell()
        self.log = get_logger()

    def _read_lines(self) -> list[str]:
        try:
            return self.path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []

    @staticmethod
    def _names(line: str) -> list[str]:
        body = line.split("#", 1)[0].split()
        return body[1:] if len(body) > 1 else []

    def has_entry(self, hostname: str) -> bool:
        return any(hostname in self._names(ln) for ln in self._read_lines())

    def add(self, hostname: str, ip: str = "127.0.0.1") -> bool:
        """Append the entry unless the hostname is already mapped. Return True if written."""
        if self.has_entry(hostname):
            self.log.warning(f"Hosts entry for {hostname} already exists")
            return False
        line = f"{ip} {hostname}\n"
        existing = self.path.read_text(encoding="utf-8") if self.path.exists() else ""
        if existing and not existing.endswith("\n"):
            line = "\n" + line
        if self._writable():
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line)
        else:
            self.shell.run(f"sudo tee -a {shlex.quote(str(self.path))} >/dev/null", input=line)
        self.log.log(SUCCESS, f"Hosts entry added: {ip} {hostname}")
        return True

    def remove(self, hostname: str) -> bool:
        """Drop every line mapping *hostname*. Return True if the file changed."""
        lines = self._read_lines()
        kept = [ln for ln in lines if hostname not in self._names(ln)]
        if len(kept) == len(lines):
            self.log.info(f"No hosts entry for {hostname}")
            return False
        text = "\n".join(kept) + ("\n" if kept else "")
        if self._writable():
            self.path.write_text(text, encoding="utf-8")
        else:
            self.shell.run(f"sudo tee {shlex.quote(str(self.path))} >/dev/null", input=text)
        self.log.info(f"Removed hosts entry for {hostname}")
        return True

    def _writable(self) -> bool:
        if self.path.exists():
            return os.access(self.path, os.W_OK)
        return os.access(self.path.parent, os.W_OK)

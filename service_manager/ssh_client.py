from __future__ import annotations
from errno import ENOENT

import os
import posixpath
import paramiko
from .errors import PreconditionError
from .utils import get_logger


def parse_destination(dest: str, default_dir: str = "~") -> tuple[str, str, str]:
    """Split 'user@host[:dir]' into (user, host, dir). The user part is required."""
    if "@" not in dest:
        raise PreconditionError(f"Migration target must look like user@host[:dir], got '{dest}'")
    user, _, rest = dest.partition("@")
    host, _, remote_dir = rest.partition(":")
    if not user or not host:
        raise PreconditionError(f"Migration target must look like user@host[:dir], got '{dest}'")
    return user, host, remote_dir or default_dir


class SSH:
    """Thin wrapper around Paramiko for copying a migration package to a target host."""

    def __init__(
        self,
        host: str,
        user: str,
        pw: str | None = None,
        *,
        key_filename: str | None = None,
        port: int = 22,
        timeout: int = 30,
    ):
        """
        :param timeout: socket timeout in seconds for the initial SSH handshake
        """
        self.cli = paramiko.SSHClient()
        self.cli.load_system_host_keys()
        self.cli.set_missing_host_key_policy(paramiko.WarningPolicy())
        self.host = host
        self.user = user
        self.log = get_logger()

        connect_kwargs = dict(
            hostname=host,
            port=port,
            username=user,
            timeout=timeout,
        )
        # explicit credentials win; otherwise let Paramiko use the agent / default keys
        if key_filename:
            connect_kwargs["key_filename"] = key_filename
        if pw:
            connect_kwargs["password"] = pw
        if pw or key_filename:
            connect_kwargs["allow_agent"] = False
            connect_kwargs["look_for_keys"] = False

        self.cli.connect(**connect_kwargs)

    # ------------------------------- exec -------------------------------- #

    def run(self, cmd: str, check: bool = True) -> str:
        """Run *cmd* on the remote host. Return stdout (stripped)."""
        _stdin, out, err = self.cli.exec_command(cmd)
        stdout = out.read().decode(errors="replace")
        stderr = err.read().decode(errors="replace")
        rc = out.channel.recv_exit_status()
        if check and rc:
            raise RuntimeError(f"[{cmd}] failed (rc={rc}):\n{stderr.strip()[:200]}")
        return stdout.strip()

    def home_dir(self) -> str:
        return self.run("printf %s \"$HOME\"") or f"/home/{self.user}"

    def resolve_dir(self, remote_dir: str) -> str:
        """Expand a leading ~ (SFTP paths are not shell-expanded)."""
        if remote_dir == "~" or remote_dir.startswith("~/"):
            return self.home_dir().rstrip("/") + remote_dir[1:]
        return remote_dir

    # ------------------------------ transfer ----------------------------- #

    def put_file(self, local_path: str, remote_path: str) -> None:
        """Upload *local_path* to *remote_path* over SFTP, creating parent dirs."""
        remote_path = remote_path.replace("\\", "/")
        remote_dir = posixpath.dirname(remote_path)
        sftp = self.cli.open_sftp()
        try:
            if remote_dir and remote_dir != "/":
                self._mkdir_p_sftp(sftp, remote_dir)
            sftp.put(local_path, remote_path)
            # keep the installer executable on the other side
            sftp.chmod(remote_path, os.stat(local_path).st_mode & 0o777)
        finally:
            sftp.close()
        self.log.info(f"Uploaded {local_path} to {self.user}@{self.host}:{remote_path}")

    @staticmethod
    def _mkdir_p_sftp(sftp: paramiko.SFTPClient, remote_path: str) -> None:
        """Create a directory recursively via SFTP (idempotent)."""
        remote_path = remote_path.rstrip("/") or "/"
        parts = []
        while remote_path not in ("/", ""):
            parts.append(remote_path)
            remote_path = posixpath.dirname(remote_path)

        for path in reversed(parts):
            try:
                sftp.stat(path)
            except (OSError, paramiko.SSHException) as e:
                if getattr(e, "errno", None) in (ENOENT, 2):
                    try:
                        sftp.mkdir(path)
                    except (OSError, paramiko.SSHException):
                        # race: if it exists now, tolerate
                        sftp.stat(path)
                else:
                    raise

    # ----------------------------- housekeeping -------------------------- #

    def close(self):
        self.cli.close()

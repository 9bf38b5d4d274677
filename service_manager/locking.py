from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import PreconditionError
from .utils import get_logger


@contextmanager
def exclusive_lock(path: os.PathLike) -> Iterator[Path]:
    """
    Hold a non-blocking advisory flock on *path* for the duration of the block.

    Raises PreconditionError when another process already holds it. The lock
    dies with the file descriptor, so it is released on any exit path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            holder = ""
            try:
                holder = os.pread(fd, 32, 0).decode(errors="replace").strip()
            except OSError:
                pass
            who = f" (pid {holder})" if holder else ""
            raise PreconditionError(
                f"Another service-manager invocation is running{who}; lock {path}"
            ) from e
        os.ftruncate(fd, 0)
        os.pwrite(fd, f"{os.getpid()}\n".encode(), 0)
        get_logger().debug(f"acquired lock {path}")
        try:
            yield path
        finally:
            os.ftruncate(fd, 0)
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)

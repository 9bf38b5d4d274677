"""Timestamped tar.gz snapshots of a service home directory.

An archive holds the home directory as its single top-level entry, so
``tar -xzf <archive> -C <parent>`` recreates ``<parent>/<home-name>`` exactly.
"""

from __future__ import annotations

import os
import shutil
import tarfile
import tempfile
from contextlib import suppress
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .errors import PreconditionError
from .utils import get_logger, timestamp

ARCHIVE_SUFFIX = ".tar.gz"


def archive_name(prefix: str, now: Optional[datetime] = None) -> str:
    return f"{prefix}-{timestamp(now)}{ARCHIVE_SUFFIX}"


class Archiver:

    def __init__(self):
        self.log = get_logger()

    def create(self, source: Path, dest_dir: Path, prefix: str, now: Optional[datetime] = None) -> Path:
        """
        Archive *source* into ``dest_dir/<prefix>-<YYYYMMDD-HHMMSS>.tar.gz``.

        Written under a hidden temporary name and renamed at the end, so a
        failure never leaves a partial archive behind.
        """
        source = Path(source)
        dest_dir = Path(dest_dir)
        if not source.is_dir():
            raise PreconditionError(f"Nothing to archive: {source} does not exist")
        if dest_dir.resolve().is_relative_to(source.resolve()):
            raise PreconditionError(f"Archive destination {dest_dir} is inside {source}")

        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / archive_name(prefix, now)
        fd, tmp = tempfile.mkstemp(dir=str(dest_dir), prefix=f".{target.name}.", suffix=".partial")
        os.close(fd)
        try:
            with tarfile.open(tmp, "w:gz") as tar:
                tar.add(str(source), arcname=source.name)
            os.replace(tmp, target)
        except BaseException:
            with suppress(FileNotFoundError):
                os.unlink(tmp)
            raise
        self.log.debug(f"archived {source} -> {target}")
        return target

    @staticmethod
    def validate(archive: Path) -> None:
        """Raise PreconditionError unless *archive* is an existing, readable gzip tarball."""
        archive = Path(archive)
        if not archive.is_file():
            raise PreconditionError(f"Backup file not found: {archive}")
        try:
            with tarfile.open(archive, "r:gz") as tar:
                if not tar.getmembers():
                    raise PreconditionError(f"Backup archive is empty: {archive}")
        except (tarfile.TarError, OSError, EOFError) as e:
            raise PreconditionError(f"Not a readable .tar.gz archive: {archive} ({e})") from e

    def extract(self, archive: Path, target: Path) -> Path:
        """
        Extract *archive* so that its top-level directory becomes *target*.

        *target* must not exist. Extraction happens in a staging directory
        next to *target* and is moved into place in one rename.
        """
        archive = Path(archive)
        target = Path(target)
        if target.exists():
            raise PreconditionError(f"Refusing to extract over existing {target}")
        target.parent.mkdir(parents=True, exist_ok=True)

        staging = Path(tempfile.mkdtemp(dir=str(target.parent), prefix=f".{target.name}.extract-"))
        try:
            with tarfile.open(archive, "r:gz") as tar:
                tar.extractall(str(staging), filter="tar")
            entries = list(staging.iterdir())
            if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
                os.replace(entries[0], target)
            else:
                # archive without a single top-level directory: the staging dir is the home
                os.replace(staging, target)
                staging = None
        finally:
            if staging is not None and staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        self.log.debug(f"extracted {archive} -> {target}")
        return target

    @staticmethod
    def find(directory: Path, pattern: str) -> List[Path]:
        directory = Path(directory)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.glob(pattern) if p.is_file())

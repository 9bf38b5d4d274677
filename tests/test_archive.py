# tests/test_archive.py

from __future__ import annotations

import tarfile
from datetime import datetime
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from service_manager.archive import Archiver, archive_name
from service_manager.errors import PreconditionError


def test_archive_name_format():
    assert archive_name("gitlab-full-backup", datetime(2024, 12, 31, 23, 59, 58)) == (
        "gitlab-full-backup-20241231-235958.tar.gz"
    )


def test_archive_has_home_as_single_top_level_entry():
    with TemporaryDirectory() as tmp:
        home = Path(tmp) / "gitlab"
        (home / "config").mkdir(parents=True)
        (home / "config" / "gitlab.rb").write_text("x\n", encoding="utf-8")

        archive = Archiver().create(home, Path(tmp) / "out", "snap")
        with tarfile.open(archive, "r:gz") as tar:
            names = tar.getnames()
        assert {n.split("/", 1)[0] for n in names} == {"gitlab"}
        assert "gitlab/config/gitlab.rb" in names
        assert not list((Path(tmp) / "out").glob("*.partial"))


def test_create_refuses_destination_inside_source():
    with TemporaryDirectory() as tmp:
        home = Path(tmp) / "gitlab"
        home.mkdir()
        with pytest.raises(PreconditionError):
            Archiver().create(home, home / "backups", "snap")
        assert not (home / "backups").exists()


def test_create_refuses_missing_source():
    with TemporaryDirectory() as tmp:
        with pytest.raises(PreconditionError):
            Archiver().create(Path(tmp) / "nope", Path(tmp), "snap")


def test_validate_rejects_empty_and_corrupt_files():
    with TemporaryDirectory() as tmp:
        empty = Path(tmp) / "empty.tar.gz"
        with tarfile.open(empty, "w:gz"):
            pass
        corrupt = Path(tmp) / "corrupt.tar.gz"
        corrupt.write_bytes(b"\x1f\x8b garbage")
        for bad in (empty, corrupt, Path(tmp) / "missing.tar.gz"):
            with pytest.raises(PreconditionError):
                Archiver.validate(bad)


def test_extract_into_differently_named_target():
    with TemporaryDirectory() as tmp:
        home = Path(tmp) / "gitlab"
        (home / "data").mkdir(parents=True)
        (home / "data" / "f").write_bytes(b"123")
        archive = Archiver().create(home, Path(tmp) / "out", "snap")

        target = Path(tmp) / "elsewhere" / "restored"
        Archiver().extract(archive, target)
        assert (target / "data" / "f").read_bytes() == b"123"
        assert [p.name for p in target.parent.iterdir()] == ["restored"]


def test_extract_refuses_existing_target():
    with TemporaryDirectory() as tmp:
        home = Path(tmp) / "gitlab"
        home.mkdir()
        (home / "f").write_text("x", encoding="utf-8")
        archive = Archiver().create(home, Path(tmp) / "out", "snap")
        with pytest.raises(PreconditionError):
            Archiver().extract(archive, home)


def test_extract_rejects_members_outside_target():
    with TemporaryDirectory() as tmp:
        evil = Path(tmp) / "evil.tar.gz"
        payload = Path(tmp) / "payload"
        payload.write_text("owned", encoding="utf-8")
        with tarfile.open(evil, "w:gz") as tar:
            tar.add(str(payload), arcname="gitlab/../../escaped")

        target = Path(tmp) / "restore" / "gitlab"
        with pytest.raises(tarfile.FilterError):
            Archiver().extract(evil, target)
        assert not (Path(tmp) / "escaped").exists()
        assert not target.exists()
        assert list((Path(tmp) / "restore").iterdir()) == []

# tests/test_cli.py

from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from service_manager import cli
from service_manager.errors import OrchestratorError, PreconditionError
from service_manager.vars import ServiceConfig


class FakeManager:
    def __init__(self, config: ServiceConfig, fail_with: BaseException | None = None):
        self.config = config
        self.fail_with = fail_with
        self.called: list = []

    def __getattr__(self, name):
        def handler(*args):
            self.called.append((name, *args))
            if self.fail_with is not None:
                raise self.fail_with
        return handler


@pytest.fixture
def env(monkeypatch):
    with TemporaryDirectory() as tmp:
        monkeypatch.setenv("SERVICE_HOME", str(Path(tmp) / "gitlab"))
        monkeypatch.setenv("LOG_PATH", str(Path(tmp) / "manager.log"))
        monkeypatch.setenv("SERVICE_MANAGE_HOSTS", "false")
        yield Path(tmp)


def factory(store: list, fail_with: BaseException | None = None):
    def build(config: ServiceConfig) -> FakeManager:
        m = FakeManager(config, fail_with)
        store.append(m)
        return m
    return build


def test_unknown_verb_prints_usage_and_returns_1(env, capsys):
    made: list = []
    assert cli.main(["frobnicate"], manager_factory=factory(made)) == 1
    out = capsys.readouterr().out
    assert "Unknown command: frobnicate" in out
    for verb in cli.VERBS:
        assert verb in out
    assert made == []


@pytest.mark.parametrize("flag", ["help", "-h", "--help"])
def test_help_aliases(env, capsys, flag):
    assert cli.main([flag], manager_factory=factory([])) == 0
    assert "restore <file>" in capsys.readouterr().out


def test_verb_with_argument_is_dispatched(env):
    made: list = []
    assert cli.main(["restore", "/tmp/b.tar.gz"], manager_factory=factory(made)) == 0
    assert made[0].called == [("restore", "/tmp/b.tar.gz")]


def test_logs_default_line_count(env):
    made: list = []
    cli.main(["logs"], manager_factory=factory(made))
    assert made[0].called == [("logs", 100)]


def test_verb_names_map_to_methods(env):
    made: list = []
    cli.main(["reset-password"], manager_factory=factory(made))
    cli.main(["list-backups"], manager_factory=factory(made))
    assert [m.called for m in made] == [[("reset_password",)], [("list_backups",)]]


def test_manager_error_returns_1(env):
    assert cli.main(["start"], manager_factory=factory([], PreconditionError("no compose file"))) == 1
    assert cli.main(["backup"], manager_factory=factory([], OrchestratorError("docker compose exec", 2))) == 1


def test_interrupt_returns_130(env):
    assert cli.main(["restore", "x"], manager_factory=factory([], KeyboardInterrupt())) == 130


def test_log_file_receives_messages(env):
    cli.main(["nope"], manager_factory=factory([]))
    text = (env / "manager.log").read_text(encoding="utf-8")
    assert "[ERROR] Unknown command: nope" in text


def test_menu_exits_on_zero(env):
    made: list = []
    answers = iter(["0"])
    assert cli.main([], manager_factory=factory(made), prompt=lambda _q: next(answers)) == 0
    assert made[0].called == []


def test_menu_exits_on_eof(env):
    def eof(_q):
        raise EOFError
    assert cli.main([], manager_factory=factory([]), prompt=eof) == 0


def test_menu_dispatches_and_reprompts_after_invalid_choice(env):
    made: list = []
    answers = iter(["42", "2", "", "9", "", "0"])
    assert cli.main([], manager_factory=factory(made), prompt=lambda _q: next(answers)) == 0
    assert made[0].called == [("start",), ("migrate", None)]


def test_menu_keeps_running_after_handler_error(env):
    made: list = []
    answers = iter(["8", "", "0"])
    rc = cli.main(
        [],
        manager_factory=factory(made, PreconditionError("not running")),
        prompt=lambda _q: next(answers),
    )
    assert rc == 0
    assert made[0].called == [("backup",)]


def test_os_error_is_logged_and_returns_1(env):
    made: list = []
    rc = cli.main(["backup"], manager_factory=factory(made, PermissionError(13, "Permission denied", "data/git")))
    assert rc == 1
    text = (env / "manager.log").read_text(encoding="utf-8")
    assert "[ERROR] backup failed:" in text
    assert "Permission denied" in text


def test_menu_survives_os_error(env):
    made: list = []
    answers = iter(["8", "", "0"])
    rc = cli.main(
        [],
        manager_factory=factory(made, OSError(18, "Invalid cross-device link")),
        prompt=lambda _q: next(answers),
    )
    assert rc == 0
    assert "Invalid cross-device link" in (env / "manager.log").read_text(encoding="utf-8")

# tests/test_orchestrator.py

from __future__ import annotations

import pytest

from service_manager import orchestrator as orch_mod
from service_manager.errors import DependencyError, OrchestratorError
from service_manager.orchestrator import ComposeOrchestrator


class FakeShell:
    """
    Answers commands from a prefix -> (stdout, rc) table and records everything.
    Unknown commands succeed with empty output.
    """

    def __init__(self, answers: dict | None = None, stream_lines: list | None = None):
        self.answers = answers or {}
        self.stream_lines = stream_lines or []
        self.commands: list = []
        self.envs: list = []

    def _answer(self, cmd: str):
        for prefix, result in self.answers.items():
            if cmd.startswith(prefix):
                return result
        return "", 0

    def run(self, cmd, check=True, trace=True, *, input=None, env=None):
        self.commands.append(cmd)
        self.envs.append(env)
        out, rc = self._answer(cmd)
        if check and rc:
            raise OrchestratorError(cmd, rc)
        return out

    def run_with_status(self, cmd, trace=True):
        self.commands.append(cmd)
        return self._answer(cmd)

    def run_interactive(self, cmd):
        self.commands.append(cmd)
        return 0

    def stream(self, cmd):
        self.commands.append(cmd)
        yield from self.stream_lines


def make(shell: FakeShell) -> ComposeOrchestrator:
    return ComposeOrchestrator(shell, "gitlab", "gitlab-server")


def test_check_available_requires_docker_binary(monkeypatch):
    monkeypatch.setattr(orch_mod.shutil, "which", lambda _name: None)
    with pytest.raises(DependencyError):
        make(FakeShell()).check_available()


def test_check_available_requires_running_daemon(monkeypatch):
    monkeypatch.setattr(orch_mod.shutil, "which", lambda name: f"/usr/bin/{name}")
    with pytest.raises(DependencyError):
        make(FakeShell({"docker info": ("", 1)})).check_available()


def test_falls_back_to_legacy_compose(monkeypatch):
    monkeypatch.setattr(orch_mod.shutil, "which", lambda name: f"/usr/bin/{name}")
    shell = FakeShell({"docker compose version": ("", 1)})
    o = make(shell)
    o.up()
    o.down(volumes=True, remove_orphans=True)
    assert shell.commands[-2:] == ["docker-compose up -d", "docker-compose down --volumes --remove-orphans"]


def test_no_compose_at_all(monkeypatch):
    monkeypatch.setattr(orch_mod.shutil, "which", lambda _name: None)
    with pytest.raises(DependencyError):
        make(FakeShell({"docker compose version": ("", 1)})).up()


def test_state_inspection():
    shell = FakeShell({
        "docker inspect gitlab-server --format '{{.State.Running}}'": ("true", 0),
        "docker inspect gitlab-server --format '{{json .State.Health}}'": ('{"Status": "starting"}', 0),
    })
    o = make(shell)
    assert o.exists()
    assert o.is_running()
    assert o.health() == "starting"


def test_health_without_healthcheck_and_missing_container():
    assert make(FakeShell({"docker inspect": ("null", 0)})).health() == "none"
    assert make(FakeShell({"docker inspect": ("", 1)})).health() == "unknown"
    assert not make(FakeShell({"docker inspect": ("", 1)})).exists()


def test_exec_forwards_env_by_name_only():
    shell = FakeShell()
    make(shell).exec(["gitlab-rails", "runner", "puts ENV['X']"], env={"X": "hunter2 secret"})
    cmd = shell.commands[-1]
    assert cmd == "docker compose exec -T -e X gitlab gitlab-rails runner 'puts ENV['\"'\"'X'\"'\"']'"
    assert "hunter2" not in cmd
    assert shell.envs[-1] == {"X": "hunter2 secret"}


def test_exec_failure_raises():
    with pytest.raises(OrchestratorError):
        make(FakeShell({"docker compose exec": ("", 1)})).exec("gitlab-backup create")


def test_pull_reports_exit_status():
    make(FakeShell(stream_lines=["Pulling gitlab ...", "__RC__0"])).pull()
    with pytest.raises(OrchestratorError):
        make(FakeShell(stream_lines=["manifest unknown", "__RC__1"])).pull()


def test_logs_and_remove_images():
    shell = FakeShell({"docker images": ("abc\nabc\ndef\n", 0)})
    o = make(shell)
    assert o.logs(tail=25) == 0
    o.remove_images("gitlab/gitlab-ce")
    assert "docker compose logs --tail=25 -f gitlab" in shell.commands
    assert shell.commands[-1] == "docker rmi abc def"


def test_remove_images_without_local_images_is_quiet():
    shell = FakeShell()
    make(shell).remove_images("gitlab/gitlab-ce")
    assert not [c for c in shell.commands if c.startswith("docker rmi")]


def test_compose_commands_are_bound_to_the_project_file():
    shell = FakeShell()
    o = ComposeOrchestrator(shell, "gitlab", "gitlab-server", compose_file="/srv/my gitlab/docker-compose.yml")
    o.down()
    o.exec("gitlab-ctl status")
    o.logs(tail=10, follow=False)
    project = "docker compose -f '/srv/my gitlab/docker-compose.yml' --project-directory '/srv/my gitlab'"
    assert shell.commands[-3:] == [
        f"{project} down",
        f"{project} exec -T gitlab gitlab-ctl status",
        f"{project} logs --tail=10 gitlab",
    ]

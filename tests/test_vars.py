# tests/test_vars.py

from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory

from service_manager.vars import ServiceConfig, load_config, parse_csv


def test_defaults_derive_paths_from_home():
    with TemporaryDirectory() as tmp:
        home = Path(tmp) / "gitlab_docker"
        cfg = load_config({"SERVICE_HOME": str(home)})

        assert cfg.home == home
        assert cfg.compose_file == home / "docker-compose.yml"
        assert cfg.lock_file == Path(tmp) / ".gitlab_docker.lock"
        assert cfg.effective_log_path == Path(tmp) / "gitlab_docker-manager.log"
        assert cfg.service_url == "http://gitlab.local"
        assert cfg.ports == ("80:80", "443:443", "2222:22", "5050:5050")
        assert cfg.manage_hosts is True


def test_environment_beats_persisted_env_beats_defaults():
    with TemporaryDirectory() as tmp:
        home = Path(tmp) / "svc"
        home.mkdir()
        (home / ".env").write_text(
            "SERVICE_HOSTNAME=persisted.local\nSERVICE_IMAGE=gitlab/gitlab-ee:latest\n",
            encoding="utf-8",
        )
        cfg = load_config({"SERVICE_HOME": str(home), "SERVICE_HOSTNAME": "env.local"})

        assert cfg.hostname == "env.local"
        assert cfg.image == "gitlab/gitlab-ee:latest"
        assert cfg.container_name == "gitlab-server"


def test_empty_values_fall_back_to_defaults():
    with TemporaryDirectory() as tmp:
        cfg = load_config({"SERVICE_HOME": tmp, "SERVICE_HOSTNAME": "", "SERVICE_START_TIMEOUT": "soon"})
        assert cfg.hostname == "gitlab.local"
        assert cfg.start_timeout == 300


def test_typed_values_are_parsed():
    with TemporaryDirectory() as tmp:
        cfg = load_config(
            {
                "SERVICE_HOME": tmp,
                "SERVICE_PORTS": "8080:80, 8443:443,,",
                "SERVICE_MANAGE_HOSTS": "no",
                "SERVICE_POLL_INTERVAL": "3",
                "LOG_JSON": "yes",
                "LOG_PATH": str(Path(tmp) / "x.log"),
            }
        )
        assert cfg.ports == ("8080:80", "8443:443")
        assert cfg.http_host_port() == 8080
        assert cfg.manage_hosts is False
        assert cfg.poll_interval == 3
        assert cfg.log_json is True
        assert cfg.effective_log_path == Path(tmp) / "x.log"


def test_parse_csv_strips_blanks():
    assert parse_csv(" a, b ,,c ") == ("a", "b", "c")
    assert parse_csv("") == ()


def test_with_overrides_returns_a_new_config():
    cfg = ServiceConfig(home=Path("/srv/gitlab"))
    other = cfg.with_overrides(hostname="other.local")
    assert cfg.hostname == "gitlab.local"
    assert other.hostname == "other.local"
    assert other.home == cfg.home

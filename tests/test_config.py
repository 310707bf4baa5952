import pytest

from orion_relay.server.config import DEFAULTS, ConfigError, load_config


def test_defaults_without_file_or_env():
    cfg = load_config(environ={})
    assert cfg["port"] == 3000
    assert cfg["host"] == "0.0.0.0"
    assert cfg["liveness_timeout_secs"] == 300.0
    assert cfg["message_ttl_secs"] == 86400.0
    assert set(DEFAULTS) <= set(cfg)


def test_precedence_file_env_overrides(tmp_path):
    path = tmp_path / "server.yaml"
    path.write_text("port: 4000\nhost: 127.0.0.1\nsweep_interval_secs: 5\nlog_level: debug\n")

    cfg = load_config(path, environ={})
    assert (cfg["host"], cfg["port"], cfg["sweep_interval_secs"]) == ("127.0.0.1", 4000, 5.0)
    assert cfg["log_level"] == "DEBUG"

    cfg = load_config(path, environ={"PORT": "5000", "ORION_HOST": "::1"})
    assert (cfg["host"], cfg["port"]) == ("::1", 5000)

    cfg = load_config(path, environ={"PORT": "5000"}, overrides={"port": 6000, "host": None})
    assert (cfg["host"], cfg["port"]) == ("127.0.0.1", 6000)


@pytest.mark.parametrize(
    "env, content",
    [
        ({"PORT": "http"}, None),
        ({"PORT": "70000"}, None),
        ({}, "message_ttl_secs: -1\n"),
        ({}, "sweep_interval_secs: 0\n"),
        ({}, "- just\n- a list\n"),
        ({}, "port: [unclosed\n"),
    ],
)
def test_invalid_config_raises(tmp_path, env, content):
    path = None
    if content is not None:
        path = tmp_path / "bad.yaml"
        path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path, environ=env)


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nope.yaml", environ={})


def test_cli_rejects_bad_port(capsys):
    from orion_relay.cmd.server import main

    with pytest.raises(SystemExit) as excinfo:
        main(["--port", "70000"])
    assert excinfo.value.code == 2
    assert "port out of range" in capsys.readouterr().err


@pytest.mark.parametrize("level", ["LOUD", "", "verbose"])
def test_unknown_log_level_raises(level):
    with pytest.raises(ConfigError, match="log_level"):
        load_config(environ={}, overrides={"log_level": level})


def test_log_level_accepts_any_case():
    assert load_config(environ={}, overrides={"log_level": "warning"})["log_level"] == "WARNING"


def test_cli_rejects_unknown_log_level(capsys):
    from orion_relay.cmd.server import main

    with pytest.raises(SystemExit) as excinfo:
        main(["--log-level", "LOUD"])
    assert excinfo.value.code == 2
    assert "unknown log_level" in capsys.readouterr().err

import json
import socket
import threading

import pytest

from hot_counter.__main__ import run

CONFIG_VARS = (
    "PORT", "HOST", "HEALTH_PATH", "VERSION_PATH", "READ_TIMEOUT", "WRITE_TIMEOUT",
    "IDLE_TIMEOUT", "SHUTDOWN_TIMEOUT", "SECRET_KEY", "APP_BUILD", "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in CONFIG_VARS:
        monkeypatch.delenv(name, raising=False)


def log_lines(err: str) -> list:
    return [json.loads(line) for line in err.splitlines() if line.startswith("{")]


def test_help_exits_cleanly(capsys):
    assert run(["--help"]) == 0
    out, err = capsys.readouterr()
    assert "usage: hot-counter" in out
    assert err == ""


def test_version_flag(capsys, monkeypatch):
    monkeypatch.setenv("APP_BUILD", "abc123")
    assert run(["--version"]) == 0
    assert "Build: abc123" in capsys.readouterr().out


def test_bad_config_exits_1(capsys):
    assert run(["--port", "nope"]) == 1
    lines = log_lines(capsys.readouterr().err)
    assert lines[-1]["level"] == "ERROR"
    assert "parsing config" in lines[-1]["err"]
    assert not any(line["msg"] == "starting service..." for line in lines)


def test_clean_start_and_stop(capsys):
    stop = threading.Event()
    stop.set()
    assert run(["--port", "0"], stop=stop) == 0

    msgs = [line["msg"] for line in log_lines(capsys.readouterr().err)]
    assert msgs[0] == "starting service..."
    assert "listening" in msgs
    assert "shutting down the service..." in msgs
    assert msgs[-1] == "service stopped"


def test_startup_line_masks_secret(capsys, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "hunter2")
    stop = threading.Event()
    stop.set()
    run(["--port", "0"], stop=stop)

    err = capsys.readouterr().err
    assert "hunter2" not in err
    start = log_lines(err)[0]
    assert start["config"]["secret_key"] == "xxxxxx"
    assert start["cpu"] >= 1
    assert start["memory"].endswith(" MB")


def test_listen_error_exits_1(capsys):
    with socket.create_server(("127.0.0.1", 0)) as busy:
        port = busy.getsockname()[1]
        assert run(["--port", str(port)], stop=threading.Event()) == 1

    lines = log_lines(capsys.readouterr().err)
    assert any(line["level"] == "ERROR" and "listen on" in line["err"] for line in lines)
    assert lines[-1]["msg"] == "service stopped"

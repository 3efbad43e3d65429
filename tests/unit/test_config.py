import io
import json
import logging
from pathlib import Path

from pydantic import ValidationError
import pytest
import structlog

from docker_executor.config import Settings, get_settings
from docker_executor.correlation import (
    bind_request_context,
    clear_context,
    get_correlation_id,
    new_correlation_id,
)
from docker_executor.logging_config import setup_logging


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)

    settings = Settings()

    assert settings.completion_strategy == "polling"
    assert settings.poll_interval_seconds == 2.0
    assert settings.completion_timeout_seconds == 1800
    assert settings.extra_labels == {}
    assert settings.resolved_local_state_directory == tmp_path / "state"
    assert settings.resolved_host_state_directory == tmp_path / "state"


def test_reads_prefixed_environment(monkeypatch):
    monkeypatch.setenv("DOCKER_EXECUTOR_LOCAL_STATE_DIRECTORY", "/state")
    monkeypatch.setenv("DOCKER_EXECUTOR_HOST_STATE_DIRECTORY", "/srv/executor/state")
    monkeypatch.setenv("DOCKER_EXECUTOR_COMPLETION_STRATEGY", "events")
    monkeypatch.setenv("DOCKER_EXECUTOR_EXTRA_LABELS", '{"com.example.environment": "test"}')
    monkeypatch.setenv("DOCKER_EXECUTOR_LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.resolved_local_state_directory == Path("/state")
    assert settings.resolved_host_state_directory == Path("/srv/executor/state")
    assert settings.completion_strategy == "events"
    assert settings.extra_labels == {"com.example.environment": "test"}
    assert settings.log_level == "DEBUG"
    assert get_settings() is settings


def test_relative_paths_are_normalized(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)

    settings = Settings(host_state_directory=Path("data/../host-state"))

    assert settings.resolved_host_state_directory == tmp_path / "host-state"


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("log_level", "LOUD"),
        ("poll_interval_seconds", 0),
        ("completion_timeout_seconds", -1),
        ("completion_strategy", "webhook"),
    ],
)
def test_invalid_values(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})


def test_correlation_id_context():
    clear_context()
    assert get_correlation_id() is None

    bind_request_context("req_abc", method="GET")
    assert get_correlation_id() == "req_abc"
    assert structlog.contextvars.get_contextvars()["method"] == "GET"

    clear_context()
    assert get_correlation_id() is None



def test_new_correlation_id():
    correlation_id = new_correlation_id()

    assert correlation_id.startswith("req_")
    assert len(correlation_id) == len("req_") + 12
    assert new_correlation_id() != correlation_id


def test_setup_logging_renders_json_lines():
    stream = io.StringIO()
    setup_logging(service_name="executor-test", log_format="json", log_level="INFO", stream=stream)
    try:
        bind_request_context("req_abc")
        structlog.get_logger("docker_executor.test").info("deployment_started", deployment_id="d1")
        logging.getLogger("uvicorn.error").warning("Started server process")
        logging.getLogger("urllib3.connectionpool").info("http://localhost:2375 GET /images/json")
    finally:
        clear_context()
        root = logging.getLogger()
        for handler in [h for h in root.handlers if h.get_name() == "docker_executor"]:
            root.removeHandler(handler)
        structlog.reset_defaults()

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    events = {line["event"]: line for line in lines}

    assert "logging_initialized" in events
    started = events["deployment_started"]
    assert started["service"] == "executor-test"
    assert started["deployment_id"] == "d1"
    assert started["correlation_id"] == "req_abc"
    assert started["level"] == "info"
    assert events["Started server process"]["logger"] == "uvicorn.error"
    assert events["Started server process"]["service"] == "executor-test"
    assert not any(line["event"].startswith("http://") for line in lines)

import pytest
from pydantic import ValidationError

from bazaruto.utils.config_loader import AppConfig, load_app_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "DATABASE_URL",
        "REDIS_URL",
        "BUSINESS_RULES_PATH",
        "LOG_LEVEL",
        "PAYMENT_GATEWAY_URL",
        "PAYMENT_GATEWAY_API_KEY",
        "SCHEDULER_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)


def test_repository_config_loads():
    config = load_app_config()

    assert config.server.port == 8000
    assert config.jobs.queues["payments"] == 1
    assert config.scheduler.enabled is False
    assert config.database.url is None


def test_yaml_values_override_defaults(tmp_path):
    path = tmp_path / "app.yml"
    path.write_text("server:\n  port: 9100\njobs:\n  queues: {default: 4}\n", encoding="utf-8")

    config = load_app_config(path)

    assert config.server.port == 9100
    assert config.jobs.queues == {"default": 4}
    assert config.events.close_timeout == AppConfig().events.close_timeout


def test_environment_overrides(tmp_path, monkeypatch):
    path = tmp_path / "app.yml"
    path.write_text("logging:\n  level: INFO\n", encoding="utf-8")
    monkeypatch.setenv("DATABASE_URL", "postgresql://bazaruto@localhost/bazaruto")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("SCHEDULER_ENABLED", "true")
    monkeypatch.setenv("BUSINESS_RULES_PATH", str(tmp_path / "rules.yml"))

    config = load_app_config(path)

    assert config.database.url == "postgresql://bazaruto@localhost/bazaruto"
    assert config.logging.level == "DEBUG"
    assert config.scheduler.enabled is True
    assert config.rules_path() == tmp_path / "rules.yml"

    assert load_app_config(path, use_env=False).logging.level == "INFO"


def test_missing_explicit_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_app_config(tmp_path / "absent.yml")


def test_invalid_config_is_rejected(tmp_path):
    path = tmp_path / "app.yml"
    path.write_text("server:\n  port: 0\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_app_config(path)

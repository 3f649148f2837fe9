from pathlib import Path

import pytest
from pydantic import ValidationError

from mqtt_helper.config import HelperSettings
from mqtt_helper.network.options import ConnectionOptions, PublishOptions


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("MQTT_HELPER_CONFIG_FILE", "MQTT_HELPER_BROKER_HOST", "MQTT_HELPER_BROKER_PORT", "MQTT_HELPER_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = HelperSettings()

    assert settings.broker_host == "localhost"
    assert settings.broker_port == 1883
    assert settings.secure is False
    assert settings.transport == "paho"
    assert settings.retry_timeout_seconds == 120.0
    assert settings.wait_close_timeout_seconds == 60.0
    assert settings.publish_queue_max == 1000
    assert settings.config_path is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MQTT_HELPER_BROKER_PORT", "8883")
    monkeypatch.setenv("MQTT_HELPER_LOG_LEVEL", "debug")

    settings = HelperSettings()

    assert settings.broker_port == 8883
    assert settings.log_level == "DEBUG"


def test_yaml_file_source(monkeypatch, tmp_path):
    path = tmp_path / "helper.yaml"
    path.write_text(
        "broker_host: broker.example\n"
        "retry_timeout_seconds: 5\n"
        "subscribe_topics:\n"
        "  - plant/+/status\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("MQTT_HELPER_CONFIG_FILE", str(path))

    settings = HelperSettings()

    assert settings.broker_host == "broker.example"
    assert settings.subscribe_topics == ["plant/+/status"]
    assert settings.config_path == path
    assert settings.connection_options().retry_timeout == 5.0


def test_non_mapping_file_is_rejected(tmp_path):
    path = tmp_path / "helper.yaml"
    path.write_text("- one\n- two\n", encoding="utf-8")

    with pytest.raises(ValueError):
        HelperSettings._load_file(path)


def test_unknown_suffix_is_ignored(tmp_path):
    path = tmp_path / "helper.toml"
    path.write_text("broker_host = 'x'\n", encoding="utf-8")

    assert HelperSettings._load_file(path) is None
    assert HelperSettings._load_file(Path(tmp_path / "missing.yaml")) is None


def test_json_file_is_not_a_config_source(tmp_path):
    path = tmp_path / "helper.json"
    path.write_text('{"broker_host": "x"}', encoding="utf-8")

    assert HelperSettings._load_file(path) is None


def test_connection_options_mapping():
    settings = HelperSettings(
        client_id="helper-1",
        keepalive_seconds=20,
        username="user",
        password="secret",
        will_topic="status/helper-1",
        will_payload="offline",
        will_retain=True,
        tls_ca_certs="/etc/ssl/ca.pem",
        wait_close_timeout_seconds=3,
    )

    options = settings.connection_options()

    assert isinstance(options, ConnectionOptions)
    assert options.client_id == "helper-1"
    assert options.keepalive == 20
    assert options.username == "user"
    assert options.password == "secret"
    assert options.will is not None
    assert options.will.topic == "status/helper-1"
    assert options.will.retain is True
    assert options.tls.ca_certs == Path("/etc/ssl/ca.pem")
    assert options.wait_close_timeout == 3.0
    assert options.reconnect_period == 0.0


def test_no_will_without_topic():
    assert HelperSettings().connection_options().will is None


def test_publish_options_validation():
    assert PublishOptions.model_validate({"qos": 2, "retain": True}) == PublishOptions(qos=2, retain=True)
    with pytest.raises(ValidationError):
        PublishOptions(qos=3)

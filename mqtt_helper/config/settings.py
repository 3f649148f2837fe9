"""Helper configuration loading and validation."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import Field, PositiveFloat, PositiveInt
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mqtt_helper.network.options import ConnectionOptions, TlsOptions, WillOptions
from mqtt_helper.network.publish_queue import MAX_QUEUE_SIZE

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/mqtt-helper/helper.yaml"),
    Path("/etc/mqtt-helper/helper.yml"),
    Path("./config/helper.yaml"),
    Path("./config/helper.yml"),
)


class HelperSettings(BaseSettings):
    """Validated settings for the helper process."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="MQTT_HELPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Broker
    broker_host: str = Field(
        default="localhost",
        min_length=1,
        description="MQTT broker host name or address.",
    )
    broker_port: PositiveInt = Field(
        default=1883,
        description="MQTT broker port.",
    )
    secure: bool = Field(
        default=False,
        description="Connect over TLS using the tls_* files.",
    )
    transport: Literal["paho", "dummy"] = Field(
        default="paho",
        description="Transport implementation to use.",
    )
    client_id: str = Field(
        default="",
        description="MQTT client id; empty lets the broker assign one.",
    )
    keepalive_seconds: PositiveInt = Field(
        default=60,
        description="MQTT keepalive interval.",
    )
    clean_session: bool = Field(
        default=True,
        description="Request a clean session (clean start on MQTT 5).",
    )
    protocol: Literal["3.1", "3.1.1", "5"] = Field(
        default="3.1.1",
        description="MQTT protocol version.",
    )
    username: str | None = Field(
        default=None,
        description="Broker user name.",
    )
    password: str | None = Field(
        default=None,
        description="Broker password.",
        repr=False,
    )

    # TLS
    tls_ca_certs: Path | None = Field(default=None, description="CA bundle for broker verification.")
    tls_certfile: Path | None = Field(default=None, description="Client certificate.")
    tls_keyfile: Path | None = Field(default=None, description="Client private key.", repr=False)
    tls_insecure: bool = Field(default=False, description="Skip broker hostname verification.")

    # Last will
    will_topic: str | None = Field(default=None, description="Topic of the last-will message.")
    will_payload: str | None = Field(default=None, description="Payload of the last-will message.")
    will_qos: Literal[0, 1, 2] = Field(default=0, description="QoS of the last-will message.")
    will_retain: bool = Field(default=False, description="Retain flag of the last-will message.")

    # Reliability
    retry_timeout_seconds: PositiveFloat = Field(
        default=120.0,
        description="Fixed delay before re-creating a failed connection.",
    )
    wait_close_timeout_seconds: PositiveFloat = Field(
        default=60.0,
        description="Publish acknowledgement deadline before the connection is reset.",
    )
    publish_queue_max: PositiveInt = Field(
        default=MAX_QUEUE_SIZE,
        description="Maximum number of pending publishes; newer messages are dropped beyond it.",
    )

    # Runtime
    subscribe_topics: list[str] = Field(
        default_factory=list,
        description="Topics subscribed on every (re)connect by the bootstrap entrypoint.",
    )
    subscribe_qos: Literal[0, 1, 2] = Field(default=0, description="QoS used for subscribe_topics.")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the helper process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    def connection_options(self) -> ConnectionOptions:
        will = None
        if self.will_topic:
            will = WillOptions(
                topic=self.will_topic,
                payload=self.will_payload,
                qos=self.will_qos,
                retain=self.will_retain,
            )
        return ConnectionOptions(
            retry_timeout=self.retry_timeout_seconds,
            wait_close_timeout=self.wait_close_timeout_seconds,
            client_id=self.client_id,
            keepalive=self.keepalive_seconds,
            clean_session=self.clean_session,
            protocol=self.protocol,
            username=self.username,
            password=self.password,
            will=will,
            tls=TlsOptions(
                ca_certs=self.tls_ca_certs,
                certfile=self.tls_certfile,
                keyfile=self.tls_keyfile,
                insecure=self.tls_insecure,
            ),
        )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[HelperSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[HelperSettings] | None = None) -> Dict[str, Any]:
        candidates: Iterable[Path] = HelperSettings._resolve_candidate_paths()

        for path in candidates:
            data = HelperSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("MQTT_HELPER_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file() or path.suffix.lower() not in {".yaml", ".yml"}:
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle)
        except OSError as exc:
            raise RuntimeError(f"Failed to read helper config file {path}") from exc
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid helper config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Helper config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> HelperSettings:
    """Return memoized helper settings."""

    return HelperSettings()

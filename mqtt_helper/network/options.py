"""Connection and publish option models."""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, field_validator

Payload = Union[bytes, str]

DEFAULT_RETRY_TIMEOUT = 120.0
DEFAULT_WAIT_CLOSE_TIMEOUT = 60.0


class PublishOptions(BaseModel):
    """Per-message publish flags handed through to the transport."""

    model_config = ConfigDict(frozen=True)

    qos: Literal[0, 1, 2] = 0
    retain: bool = False


class WillOptions(BaseModel):
    """Last-will message registered with the broker on connect."""

    topic: str
    payload: Optional[Payload] = None
    qos: Literal[0, 1, 2] = 0
    retain: bool = False


class TlsOptions(BaseModel):
    """Certificate material used by the secure transport."""

    ca_certs: Optional[Path] = None
    certfile: Optional[Path] = None
    keyfile: Optional[Path] = None
    insecure: bool = Field(
        default=False,
        description="Skip broker hostname verification.",
    )


class ConnectionOptions(BaseModel):
    """Options for one logical broker connection.

    Timeouts are in seconds. Unknown keys are kept and passed to the
    transport untouched.
    """

    model_config = ConfigDict(extra="allow")

    retry_timeout: PositiveFloat = Field(
        default=DEFAULT_RETRY_TIMEOUT,
        description="Fixed delay before re-creating a failed connection.",
    )
    wait_close_timeout: PositiveFloat = Field(
        default=DEFAULT_WAIT_CLOSE_TIMEOUT,
        description="Seconds to wait for a publish acknowledgement before resetting the connection.",
    )
    reconnect_period: float = Field(
        default=0.0,
        description="Built-in client auto-reconnect period; always 0, the supervisor owns reconnection.",
    )
    client_id: str = ""
    keepalive: PositiveInt = 60
    clean_session: bool = True
    protocol: Literal["3.1", "3.1.1", "5"] = "3.1.1"
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    will: Optional[WillOptions] = None
    tls: TlsOptions = Field(default_factory=TlsOptions)

    @field_validator("reconnect_period", mode="after")
    @classmethod
    def _disable_auto_reconnect(cls, value: float) -> float:
        return 0.0

    @classmethod
    def coerce(cls, value: "ConnectionOptions | dict | None") -> "ConnectionOptions":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return cls.model_validate(value)


def coerce_publish_options(value: PublishOptions | dict | None) -> PublishOptions:
    if value is None:
        return PublishOptions()
    if isinstance(value, PublishOptions):
        return value
    return PublishOptions.model_validate(value)

from __future__ import annotations

from ipaddress import IPv4Address

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pyrad_das.udp.server import DasServerConfig

DEFAULT_DAS_PORT = 3799


class DasConfig(BaseModel):
    """Root configuration model for one DAS endpoint."""

    model_config = ConfigDict(extra="forbid")

    port: int = Field(gt=0, le=65535, description="UDP port the DAS listens on (RFC 5176: 3799).")
    shared_secret: str = Field(min_length=1, description="RADIUS shared secret of the trusted client.")
    client_address: IPv4Address = Field(description="The only NAS/controller address accepted.")
    bind_address: IPv4Address = Field(
        default=IPv4Address("0.0.0.0"),
        description="Local IPv4 address the socket is bound to.",
    )
    require_message_authenticator: bool = Field(
        default=True,
        description="Drop requests without a Message-Authenticator attribute.",
    )
    dictionary_path: str | None = Field(
        default=None,
        description="FreeRADIUS-style dictionary file; the built-in DAS dictionary when unset.",
    )

    @field_validator("client_address", "bind_address", mode="before")
    @classmethod
    def _parse_ipv4(cls, value: object) -> IPv4Address:
        if isinstance(value, IPv4Address):
            return value
        try:
            return IPv4Address(str(value))
        except Exception as exc:  # noqa: BLE001
            raise ValueError(f"Invalid IPv4 address '{value}': {exc}") from exc

    @field_validator("shared_secret")
    @classmethod
    def _reject_blank_secret(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("shared_secret must not be blank.")
        return value

    @property
    def secret_bytes(self) -> bytes:
        return self.shared_secret.encode()

    def to_server_config(self) -> DasServerConfig:
        return DasServerConfig(
            port=self.port,
            shared_secret=self.secret_bytes,
            client_address=self.client_address,
            host=str(self.bind_address),
        )


__all__ = [
    "DEFAULT_DAS_PORT",
    "DasConfig",
    "ValidationError",
]

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Eventsocket client configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="EVENTSOCKET_", env_file=".env", extra="ignore"
    )

    server: str = Field(
        "127.0.0.1:8080",
        description="host:port of the Eventsocket server (no scheme).",
    )
    request_timeout: float = Field(
        30.0,
        gt=0,
        description="Default seconds to wait for a reply before a request times out.",
    )
    bootstrap_timeout: float = Field(
        10.0, gt=0, description="Seconds allowed for the client id bootstrap call."
    )
    open_timeout: float = Field(
        10.0, gt=0, description="Seconds allowed for the websocket handshake."
    )
    close_timeout: float = Field(
        2.0, gt=0, description="Seconds allowed for the websocket closing handshake."
    )
    max_message_size: int = Field(
        2**20, gt=0, description="Largest inbound frame accepted, in bytes."
    )
    strict_replies: bool = Field(
        True,
        description=(
            "Raise ProtocolError for replies that match no pending request. "
            "Replies to requests that already timed out are always dropped."
        ),
    )
    retired_id_capacity: int = Field(
        1024,
        ge=0,
        description="How many timed out or cancelled request ids to remember.",
    )
    log_level: str = Field(
        "INFO", description="Console log level, e.g. DEBUG or WARNING."
    )
    log_debug_scopes: list[str] = Field(
        default_factory=list,
        description=(
            "Modules that log at DEBUG regardless of log_level, such as "
            "core.router. Short names are taken relative to eventsocket."
        ),
    )
    log_colorize: bool = Field(False, description="Colorize console log output.")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper()

"""Configuration settings using Pydantic for validation."""

import os
import re
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..protocol.messages import HEARTBEAT_METHOD, HEARTBEAT_REQUEST_ID, SUBSCRIBE_METHOD


class EndpointConfig(BaseModel):
    """Streaming service endpoint configuration."""
    url: str = Field(default="wss://ws3.indodax.com/ws/", description="WebSocket endpoint URL")
    token: str = Field(default="", description="Authentication token")
    channel: str = Field(default="chart:tick-btcidr", description="Channel to subscribe to")
    open_timeout_seconds: float = Field(default=10.0, description="Dial and handshake timeout")
    close_timeout_seconds: float = Field(default=10.0, description="Closing handshake timeout")
    ping_interval_seconds: Optional[float] = Field(
        default=20.0, description="WebSocket-level ping interval, None disables"
    )
    max_message_bytes: int = Field(default=2**20, description="Maximum incoming frame size")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('ws://', 'wss://')):
            raise ValueError("Endpoint URL must start with ws:// or wss://")
        return v


class ProtocolConfig(BaseModel):
    """Method codes and request timing for the service protocol."""
    subscribe_method: int = Field(default=SUBSCRIBE_METHOD, description="Method code for subscribe")
    heartbeat_method: int = Field(default=HEARTBEAT_METHOD, description="Method code for heartbeat")
    heartbeat_id: int = Field(default=HEARTBEAT_REQUEST_ID, description="Fixed request id used by every heartbeat")
    request_timeout_seconds: float = Field(
        default=10.0, description="Timeout for auth and subscribe responses"
    )


class KeepaliveConfig(BaseModel):
    """Heartbeat configuration."""
    enabled: bool = Field(default=True, description="Send periodic heartbeats while streaming")
    interval_seconds: float = Field(default=30.0, gt=0, description="Heartbeat interval")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Heartbeat acknowledgement timeout")


class ReconnectConfig(BaseModel):
    """Reconnect backoff configuration."""
    enabled: bool = Field(default=True, description="Honour server reconnect authorization")
    max_attempts: Optional[int] = Field(
        default=10, description="Consecutive reconnects before giving up, None for unbounded"
    )
    initial_backoff_seconds: float = Field(default=1.0, description="Initial backoff delay")
    max_backoff_seconds: float = Field(default=60.0, description="Maximum backoff delay")
    backoff_multiplier: float = Field(default=2.0, description="Backoff multiplier")
    jitter: bool = Field(default=True, description="Add jitter to backoff")


class PresenterConfig(BaseModel):
    """Presenter decoupling configuration."""
    queue_size: int = Field(default=1000, gt=0, description="Bounded queue size in front of the presenter")


class HealthConfig(BaseModel):
    """Health evaluation configuration."""
    stale_after_seconds: float = Field(default=60.0, description="Tick age after which the feed is stale")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")


class TickFeedSettings(BaseSettings):
    """Main tick feed client settings."""

    model_config = SettingsConfigDict(
        env_prefix="TICKFEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = Field(default="tickfeed", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")

    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)
    protocol: ProtocolConfig = Field(default_factory=ProtocolConfig)
    keepalive: KeepaliveConfig = Field(default_factory=KeepaliveConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    presenter: PresenterConfig = Field(default_factory=PresenterConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod']:
            raise ValueError("Environment must be 'local', 'dev', or 'prod'")
        return v


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ValueError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(f"Required environment variable '{var_name}' is not set")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> TickFeedSettings:
    """
    Load settings from a YAML config file and environment variables.

    The config file supports ``${VAR_NAME}`` substitution. Values passed from
    the file take precedence over ``TICKFEED_*`` environment variables for the
    same field; fields absent from the file fall back to the environment.

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        import yaml

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return TickFeedSettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return TickFeedSettings()

"""Configuration schema and loading for the bridge.

This module defines the Pydantic models for YAML configuration files.
One file describes the listening socket, which states are exposed, and
optionally the structure document served in structure mode.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_PORT: int = 9400
DEFAULT_ADAPTER_NAME: str = "ws-bridge"


class UnknownRequestPolicy(str, Enum):
    """How unrecognized client requests are answered."""

    ERROR = "error"  # Reply with an error message
    IGNORE = "ignore"  # Drop without reply


class SubscriptionScope(str, Enum):
    """Which sessions receive a state broadcast."""

    GLOBAL = "global"  # Every connected session
    SESSION = "session"  # Only sessions subscribed to the id


class ServerConfig(BaseModel):
    """WebSocket listener settings."""

    host: str = "0.0.0.0"
    """Server bind address."""

    port: int = DEFAULT_PORT
    """Server port. 0 picks an ephemeral port."""

    token: str = ""
    """Shared token clients pass as ``?token=``. Empty disables auth."""

    adapter_name: str = DEFAULT_ADAPTER_NAME
    """Name announced in the hello message."""

    send_queue_size: int = 1000
    """Maximum messages queued per session before deliveries are dropped."""

    @field_validator("port")
    @classmethod
    def _validate_port(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError(f"port out of range: {v}")
        return v

    @field_validator("send_queue_size")
    @classmethod
    def _validate_queue_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("send_queue_size must be positive")
        return v

    @field_validator("token", mode="before")
    @classmethod
    def _coerce_token(cls, v: Any) -> str:
        return "" if v is None else str(v)


class BridgeSettings(BaseModel):
    """State exposure and request handling settings."""

    expose_states: list[str] = Field(default_factory=list)
    """Whitelist patterns (``*`` wildcard). Empty exposes everything."""

    allow_write: bool = False
    """Whether clients may write states with setState."""

    unknown_requests: UnknownRequestPolicy = UnknownRequestPolicy.ERROR
    """Reply policy for unrecognized requests."""

    subscription_scope: SubscriptionScope = SubscriptionScope.GLOBAL
    """Broadcast delivery policy."""


class StructureConfig(BaseModel):
    """Structure document source for structure mode."""

    document: dict[str, Any] | None = None
    """Embedded structure document."""

    file: Path | None = None
    """Path to a JSON or YAML structure file."""

    reload: bool = False
    """Re-read the file on every getStructure request."""

    @model_validator(mode="after")
    def _validate_source(self) -> StructureConfig:
        """Ensure exactly one source is configured."""
        if self.document is None and self.file is None:
            raise ValueError("structure requires 'document' or 'file'")
        if self.document is not None and self.file is not None:
            raise ValueError("structure accepts only one of 'document' or 'file'")
        return self


class BridgeConfig(BaseModel):
    """Root bridge configuration."""

    version: str = "0.1"
    """Configuration schema version."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    """Listener settings."""

    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    """Exposure and request settings."""

    structure: StructureConfig | None = None
    """Structure source; its presence enables structure mode."""

    states: dict[str, Any] = Field(default_factory=dict)
    """Seed values for the in-process state store."""

    @property
    def structure_mode(self) -> bool:
        """Whether clients receive a structure document on connect."""
        return self.structure is not None

    @classmethod
    def from_yaml(cls, path: Path | str) -> BridgeConfig:
        """Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Parsed configuration

        Raises:
            FileNotFoundError: If file doesn't exist
            pydantic.ValidationError: If configuration invalid
        """
        import yaml

        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}

        config = cls.model_validate(data)

        # Resolve structure file relative to config file
        if config.structure is not None and config.structure.file is not None:
            if not config.structure.file.is_absolute():
                config.structure.file = path.parent.resolve() / config.structure.file

        return config

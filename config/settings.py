"""
Settings Management

Pydantic-based settings schema with environment variable support.
Merges the TOML defaults file with environment overrides and provides
type-safe access.

@.architecture
Incoming: utils/config.py, Environment variables, config/server.toml --- {Dict from load_toml_config, str from os.getenv}
Processing: get_settings(), reload_settings(), _env_overrides(), field_validator() --- {4 jobs: configuration_loading, environment_variable_merging, schema_validation, caching}
Outgoing: app.py, main.py, ws/hub.py, core/agent.py, security/auth.py --- {Settings Pydantic model with typed config sections}
"""

import os
from typing import Any, Dict, List, Optional
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator

from utils.config import load_config as load_toml_config


# =============================================================================
# Settings Schemas
# =============================================================================

class ServerSettings(BaseModel):
    """HTTP listener and CORS configuration."""
    bind_host: str = "127.0.0.1"
    bind_port: int = 3000
    allowed_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://127.0.0.1",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )
    cors_allow_credentials: bool = True
    cors_allow_methods: List[str] = Field(default_factory=lambda: ["*"])
    cors_allow_headers: List[str] = Field(default_factory=lambda: ["*"])


class WebSocketSettings(BaseModel):
    """WebSocket session layer configuration."""
    path: str = "/ws"
    heartbeat_interval: float = 30.0
    send_timeout: float = 3.0
    broadcast_timeout: float = 5.0
    auth_cookie: str = "auth_token"
    welcome_message: str = "Connected to Chatline WebSocket"

    @field_validator('heartbeat_interval')
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Heartbeat interval must be positive."""
        if v <= 0:
            raise ValueError("heartbeat_interval must be greater than zero")
        return v


class AuthSettings(BaseModel):
    """Authentication configuration."""
    # JSON principal used in development mode, e.g. '{"userId": "dev@example.com"}'
    dev_user_identity: Optional[str] = None


class AgentSettings(BaseModel):
    """Chat agent (response generator) settings."""
    api_base: str = "http://localhost:1234/v1"
    api_key: str = "not-needed"
    model: str = "qwen/qwen3-4b-2507"
    system_prompt: str = (
        "You are an expert medical coder, able to answer questions about "
        "medical coding and billing."
    )
    max_tokens: int = 1024
    temperature: float = 0.7
    max_history_messages: int = 40
    request_timeout: float = 60.0


class MonitoringSettings(BaseModel):
    """Monitoring and logging configuration."""
    log_level: str = "INFO"
    log_format: str = "json"  # json|text
    metrics_enabled: bool = True


class Settings(BaseModel):
    """
    Main application settings.

    Loads configuration from:
    1. TOML config file (config/server.toml)
    2. Environment variables
    3. Defaults defined in schemas

    Priority: Environment variables > TOML config > Defaults
    """

    app_name: str = "Chatline Backend"
    app_version: str = "1.0.0"
    environment: str = "development"  # development|production|test

    server: ServerSettings = Field(default_factory=ServerSettings)
    websocket: WebSocketSettings = Field(default_factory=WebSocketSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @property
    def base_url(self) -> str:
        """Self-reference URL built from the bind address."""
        return f"http://{self.server.bind_host}:{self.server.bind_port}"

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = ['development', 'production', 'test']
        if v not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v


# =============================================================================
# Settings Loader
# =============================================================================

# section -> field -> environment variable
ENV_OVERRIDES: Dict[str, Dict[str, str]] = {
    "server": {
        "bind_host": "SERVER_BIND_HOST",
        "bind_port": "SERVER_BIND_PORT",
    },
    "websocket": {
        "path": "WS_PATH",
        "heartbeat_interval": "WS_HEARTBEAT_INTERVAL",
        "auth_cookie": "WS_AUTH_COOKIE",
    },
    "auth": {
        "dev_user_identity": "DEV_USER_IDENTITY",
    },
    "agent": {
        "api_base": "AGENT_API_BASE",
        "api_key": "AGENT_API_KEY",
        "model": "AGENT_MODEL",
    },
    "monitoring": {
        "log_level": "MONITORING_LOG_LEVEL",
        "log_format": "MONITORING_LOG_FORMAT",
    },
}


def _env_overrides(settings_dict: Dict[str, Any]) -> None:
    """Apply environment variables on top of TOML values, in place."""
    for section, fields in ENV_OVERRIDES.items():
        for field_name, env_name in fields.items():
            value = os.getenv(env_name)
            if value:
                settings_dict.setdefault(section, {})[field_name] = value


@lru_cache()
def get_settings() -> Settings:
    """
    Load and return application settings (cached).

    Returns:
        Settings: Complete application settings
    """
    toml_config = load_toml_config()

    settings_dict: Dict[str, Any] = {
        "environment": os.getenv("CHATLINE_ENVIRONMENT", "development"),
    }

    for section in ("server", "websocket", "auth", "agent", "monitoring"):
        values = toml_config.get(section.upper())
        if values:
            settings_dict[section] = dict(values)

    _env_overrides(settings_dict)

    return Settings(**settings_dict)


def reload_settings() -> Settings:
    """
    Reload settings (clears cache).

    Returns:
        Settings: Reloaded application settings
    """
    get_settings.cache_clear()
    return get_settings()


"""
Simple config loader for backend components.
Reads directly from the TOML file shipped next to the settings module.

@.architecture
Incoming: config/server.toml, config/settings.py --- {TOML file, load_config calls}
Processing: load_config(), get_fallback_config(), get_section() --- {3 jobs: config_loading, fallback_generation, section_extraction}
Outgoing: config/settings.py --- {Dict[str, Any] config data}
"""

import logging
import toml
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "config" / "server.toml"


def load_config(config_file: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from the TOML file, falling back to built-in defaults."""
    path = config_file or DEFAULT_CONFIG_FILE
    try:
        with open(path, 'r') as f:
            return toml.load(f)
    except Exception as e:
        logger.warning(f"Failed to load config file {path}: {e}")
        return get_fallback_config()


def get_fallback_config() -> Dict[str, Any]:
    """Fallback configuration if TOML file can't be loaded."""
    return {
        "SERVER": {
            "bind_host": "127.0.0.1",
            "bind_port": 3000,
        },
        "WEBSOCKET": {
            "path": "/ws",
            "heartbeat_interval": 30.0,
            "auth_cookie": "auth_token",
        },
        "AGENT": {
            "api_base": "http://localhost:1234/v1",
            "model": "qwen/qwen3-4b-2507",
            "max_tokens": 1024,
        },
    }


def get_section(name: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get a single upper-case section (e.g. "WEBSOCKET") as a dict."""
    config = config if config is not None else load_config()
    return dict(config.get(name, {}))

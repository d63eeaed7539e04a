"""
Utilities Package - helper modules.

- http: HTTP client with retry and timeout management
- config: TOML configuration loading
"""

from .http import (
    HTTPClient,
    HTTPClientConfig,
)

from .config import (
    load_config,
    get_fallback_config,
    get_section,
)

__all__ = [
    # HTTP
    'HTTPClient',
    'HTTPClientConfig',

    # Config
    'load_config',
    'get_fallback_config',
    'get_section',
]

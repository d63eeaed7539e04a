"""
Security Layer

Credential extraction and identity resolution for the WebSocket handshake.
"""

from .auth import (
    AuthenticationError,
    AuthenticationManager,
    AuthConfig,
    Principal,
    Verifier,
    authenticate_client,
    extract_credential,
    get_auth_manager,
    reset_auth_manager,
)

__all__ = [
    'AuthenticationError',
    'AuthenticationManager',
    'AuthConfig',
    'Principal',
    'Verifier',
    'authenticate_client',
    'extract_credential',
    'get_auth_manager',
    'reset_auth_manager',
]

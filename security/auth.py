"""
Authentication - Security Layer

@.architecture
Incoming: ws/registry.py, app.py, config/settings.py --- {Cookie header, auth_token credential, AuthSettings}
Processing: extract_credential(), AuthenticationManager.authenticate_client(), Principal.from_mapping(), get_auth_manager() --- {3 jobs: credential_extraction, identity_resolution, initialization}
Outgoing: ws/registry.py --- {Principal or None}

The session layer treats verification as opaque: any callable mapping a raw
credential to a Principal (or None) can be plugged in. The default verifier
below only resolves a configured identity in development mode and rejects
everything otherwise.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from starlette.requests import cookie_parser

logger = logging.getLogger(__name__)

DEFAULT_COOKIE_NAME = "auth_token"
DEFAULT_DEV_IDENTITY = {"userId": "test@test.com"}


class AuthenticationError(Exception):
    """Raised when an identity cannot be built from verifier output."""
    pass


@dataclass(frozen=True)
class Principal:
    """Authenticated identity bound to a session for its whole lifetime."""

    user_id: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Principal":
        """
        Build a principal from ``{"userId": ...}`` (or ``user_id``).

        Raises:
            AuthenticationError: If no usable user id is present
        """
        user_id = data.get("userId", data.get("user_id"))
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("Principal requires a non-empty userId")
        return cls(user_id=user_id)


# verify(credential) -> Principal | None, sync or async
Verifier = Callable[[Optional[str]], Union[Optional[Principal], Awaitable[Optional[Principal]]]]


def extract_credential(
    cookie_header: Optional[str],
    cookie_name: str = DEFAULT_COOKIE_NAME,
) -> Optional[str]:
    """
    Read the credential from a raw ``Cookie`` header.

    Returns None when the header is missing or empty, when the named entry
    is absent, or when its value is empty.
    """
    if not cookie_header:
        return None
    token = cookie_parser(cookie_header).get(cookie_name)
    return token or None


@dataclass
class AuthConfig:
    """Authentication configuration."""

    environment: str = "development"
    dev_user_identity: Optional[str] = None
    cookie_name: str = DEFAULT_COOKIE_NAME


class AuthenticationManager:
    """
    Default credential verifier.

    In development mode every presented credential resolves to the
    configured development identity (``DEV_USER_IDENTITY`` JSON, or
    ``{"userId": "test@test.com"}``). In any other environment no credential
    is recognised until a real verifier is injected.
    """

    def __init__(self, config: Optional[AuthConfig] = None):
        self.config = config or AuthConfig()
        self._dev_principal: Optional[Principal] = None

    def _development_principal(self) -> Principal:
        if self._dev_principal is None:
            raw = self.config.dev_user_identity
            identity = json.loads(raw) if raw else DEFAULT_DEV_IDENTITY
            self._dev_principal = Principal.from_mapping(identity)
        return self._dev_principal

    def authenticate_client(self, token: Optional[str]) -> Optional[Principal]:
        """
        Resolve a credential to a principal.

        Args:
            token: Raw credential from the handshake (may be None)

        Returns:
            Principal, or None when the credential is not recognised
        """
        if self.config.environment == "development":
            try:
                return self._development_principal()
            except (ValueError, AuthenticationError) as e:
                logger.error(f"Invalid development identity: {e}")
                return None
        return None

    __call__ = authenticate_client


_auth_manager: Optional[AuthenticationManager] = None


def get_auth_manager() -> AuthenticationManager:
    """Get the global authentication manager, configured from settings."""
    global _auth_manager
    if _auth_manager is None:
        from config.settings import get_settings
        settings = get_settings()
        _auth_manager = AuthenticationManager(AuthConfig(
            environment=settings.environment,
            dev_user_identity=settings.auth.dev_user_identity,
            cookie_name=settings.websocket.auth_cookie,
        ))
    return _auth_manager


def reset_auth_manager() -> None:
    """Drop the cached manager so the next call re-reads settings."""
    global _auth_manager
    _auth_manager = None


def authenticate_client(token: Optional[str]) -> Optional[Principal]:
    """Verify a credential with the global authentication manager."""
    return get_auth_manager().authenticate_client(token)

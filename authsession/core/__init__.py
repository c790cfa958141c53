"""Core session management: OIDC flow, token lifecycle and authorization."""

from authsession.core.errors import (
    AuthSessionError,
    DiscoveryError,
    RefreshFailure,
    StateMismatchError,
    TokenExchangeError,
)
from authsession.core.flow import AuthorizationFlowController, FlowState
from authsession.core.guard import AuthorizationGuard, GuardDecision
from authsession.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    ProtocolLogger,
    configure_logging,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)
from authsession.core.session import AuthSession, build_session
from authsession.core.tokens import TokenSet, TokenStore

__all__ = [
    # Errors
    "AuthSessionError",
    "DiscoveryError",
    "RefreshFailure",
    "StateMismatchError",
    "TokenExchangeError",
    # Session
    "AuthSession",
    "AuthorizationFlowController",
    "AuthorizationGuard",
    "FlowState",
    "GuardDecision",
    "TokenSet",
    "TokenStore",
    "build_session",
    # Logging
    "HTTPExchange",
    "LoggingClient",
    "LogLevel",
    "ProtocolLogger",
    "configure_logging",
    "get_protocol_logger",
    "redact_sensitive",
    "set_protocol_logger",
]

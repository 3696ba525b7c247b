"""
PolyAuth - Request Authentication Orchestration
Resolves owners and credentials per route, injects them into outgoing
requests and refreshes them once when the server rejects them.
"""

from .version import __version__

# Descriptors
from .descriptors import (
    DEFAULT_OWNER_TYPE,
    Credential,
    CredentialType,
    Owner,
    OwnerType,
    RouteAuthSpec,
)

# Errors
from .errors import (
    AuthenticationRejected,
    CredentialUnavailable,
    OwnerUnavailable,
    PolyAuthError,
    RouteMisconfigured,
)

# Routing
from .fingerprint import RequestFingerprint, RouteTemplate, fingerprint, fingerprint_request, normalize_url
from .route_cache import RouteAuthCache

# Stores and strategies
from .stores import CredentialStore, InMemoryCredentialStore, InMemoryOwnerStore, OwnerStore
from .strategy import AuthenticationStrategy, BearerTokenStrategy, CallbackStrategy, StaticHeadersStrategy

# Orchestration
from .config import AuthConfig
from .handler import AuthenticatedCall, AuthenticationHandler
from .interceptor import AuthenticatingInterceptor

# Transports (httpx / requests)
from .transports import AuthenticatingAdapter, PolyAuth, create_session

__all__ = [
    # Version
    '__version__',

    # Descriptors
    'DEFAULT_OWNER_TYPE',
    'Credential',
    'CredentialType',
    'Owner',
    'OwnerType',
    'RouteAuthSpec',

    # Errors
    'PolyAuthError',
    'OwnerUnavailable',
    'CredentialUnavailable',
    'AuthenticationRejected',
    'RouteMisconfigured',

    # Routing
    'RequestFingerprint',
    'RouteTemplate',
    'fingerprint',
    'fingerprint_request',
    'normalize_url',
    'RouteAuthCache',

    # Stores and strategies
    'OwnerStore',
    'CredentialStore',
    'InMemoryOwnerStore',
    'InMemoryCredentialStore',
    'AuthenticationStrategy',
    'BearerTokenStrategy',
    'CallbackStrategy',
    'StaticHeadersStrategy',

    # Orchestration
    'AuthConfig',
    'AuthenticatedCall',
    'AuthenticationHandler',
    'AuthenticatingInterceptor',

    # Transports
    'PolyAuth',
    'AuthenticatingAdapter',
    'create_session',
]

"""
Authentication Strategies
Per-backend capability: authenticate a request, create or refresh a credential.
"""

import asyncio
import copy
import functools
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .descriptors import Credential, CredentialType, Owner

RefreshFn = Callable[[Owner, CredentialType, Optional[Credential]], Optional[Credential]]
AsyncRefreshFn = Callable[[Owner, CredentialType, Optional[Credential]], Awaitable[Optional[Credential]]]


def copy_request(request: Any) -> Any:
    """Return a copy of an httpx/requests request whose headers can be changed freely."""
    if isinstance(request, httpx.Request):
        extensions = dict(request.extensions)
        try:
            return httpx.Request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.content,
                extensions=extensions,
            )
        except httpx.RequestNotRead:
            return httpx.Request(
                request.method,
                request.url,
                headers=request.headers,
                stream=request.stream,
                extensions=extensions,
            )

    # requests.PreparedRequest
    if callable(getattr(request, "copy", None)):
        return request.copy()

    clone = copy.copy(request)
    clone.headers = dict(getattr(request, "headers", None) or {})
    return clone


def with_headers(request: Any, headers: Dict[str, str]) -> Any:
    """Copy a request and set the given headers on the copy."""
    result = copy_request(request)
    for name, value in headers.items():
        result.headers[name] = value
    return result


class AuthenticationStrategy(ABC):
    """Abstract base class for authentication strategies."""

    @abstractmethod
    def build_authenticated_request(self, request: Any, credential: Credential) -> Any:
        """Return a new request carrying the credential. Must not mutate ``request``."""
        raise NotImplementedError

    @abstractmethod
    def create_or_refresh(
        self,
        owner: Owner,
        credential_type: CredentialType,
        credential: Optional[Credential] = None,
    ) -> Optional[Credential]:
        """
        Produce a fresh credential synchronously.

        ``credential`` is the stale one when refreshing, None when none
        exists yet. Returning None or raising means no credential could be had.
        """
        raise NotImplementedError

    async def create_or_refresh_async(
        self,
        owner: Owner,
        credential_type: CredentialType,
        credential: Optional[Credential] = None,
    ) -> Optional[Credential]:
        """Produce a fresh credential asynchronously (default: sync call on the loop executor)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.create_or_refresh, owner, credential_type, credential)
        )

    def is_credential_valid(self, credential: Credential, leeway: float = 0.0) -> bool:
        """Whether a stored credential may be used without refreshing."""
        return bool(credential.token) and not credential.is_expired(leeway=leeway)

    def is_rejection(self, response: Any) -> bool:
        """Transport-specific rejection signal besides the configured status codes."""
        return False

    def should_retry_on_unauthorized(self) -> bool:
        """Whether to refresh and retry after a rejection."""
        return True


class StaticHeadersStrategy(AuthenticationStrategy):
    """Static headers authentication (API keys). Never refreshable."""

    def __init__(self, headers: Optional[Dict[str, str]] = None):
        self._headers = dict(headers or {})

    def build_authenticated_request(self, request: Any, credential: Credential) -> Any:
        return with_headers(request, self._headers)

    def create_or_refresh(self, owner, credential_type, credential=None) -> Optional[Credential]:
        if credential is not None:
            # same headers would be rejected again
            return None
        return Credential(token="static")

    def should_retry_on_unauthorized(self) -> bool:
        return False


class BearerTokenStrategy(AuthenticationStrategy):
    """
    Token in an ``Authorization``-style header.

    The scheme defaults to ``Bearer`` and is overridden per credential by
    a ``token_type`` data value. Credentials come from ``refresh`` (and
    ``refresh_async`` on the async path, when given).
    """

    def __init__(
        self,
        refresh: Optional[RefreshFn] = None,
        refresh_async: Optional[AsyncRefreshFn] = None,
        header_name: str = "Authorization",
        scheme: Optional[str] = "Bearer",
    ):
        self._refresh = refresh
        self._refresh_async = refresh_async
        self.header_name = str(header_name)
        self.scheme = scheme

    def header_value(self, credential: Credential) -> str:
        scheme = credential.data.get("token_type") or self.scheme
        if not scheme:
            return credential.token
        return f"{scheme} {credential.token}"

    def build_authenticated_request(self, request: Any, credential: Credential) -> Any:
        return with_headers(request, {self.header_name: self.header_value(credential)})

    def create_or_refresh(self, owner, credential_type, credential=None) -> Optional[Credential]:
        if self._refresh is None:
            return None
        return self._refresh(owner, credential_type, credential)

    async def create_or_refresh_async(self, owner, credential_type, credential=None) -> Optional[Credential]:
        if self._refresh_async is not None:
            return await self._refresh_async(owner, credential_type, credential)
        return await super().create_or_refresh_async(owner, credential_type, credential)


class CallbackStrategy(AuthenticationStrategy):
    """Strategy assembled from plain callables."""

    def __init__(
        self,
        authenticate: Callable[[Any, Credential], Any],
        refresh: RefreshFn,
        refresh_async: Optional[AsyncRefreshFn] = None,
        is_valid: Optional[Callable[[Credential], bool]] = None,
        is_rejection: Optional[Callable[[Any], bool]] = None,
    ):
        self._authenticate = authenticate
        self._refresh = refresh
        self._refresh_async = refresh_async
        self._is_valid = is_valid
        self._is_rejection = is_rejection

    def build_authenticated_request(self, request: Any, credential: Credential) -> Any:
        # callers may mutate what they get, so hand them a copy
        return self._authenticate(copy_request(request), credential)

    def create_or_refresh(self, owner, credential_type, credential=None) -> Optional[Credential]:
        return self._refresh(owner, credential_type, credential)

    async def create_or_refresh_async(self, owner, credential_type, credential=None) -> Optional[Credential]:
        if self._refresh_async is not None:
            return await self._refresh_async(owner, credential_type, credential)
        return await super().create_or_refresh_async(owner, credential_type, credential)

    def is_credential_valid(self, credential: Credential, leeway: float = 0.0) -> bool:
        if self._is_valid is not None:
            return bool(self._is_valid(credential))
        return super().is_credential_valid(credential, leeway)

    def is_rejection(self, response: Any) -> bool:
        if self._is_rejection is not None:
            return bool(self._is_rejection(response))
        return False

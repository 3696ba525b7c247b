"""
Transport Adapters
Plug the interceptor into httpx clients and requests sessions.

Usage:
    handler = AuthenticationHandler(strategies={TOKEN: BearerTokenStrategy(refresh=...)})
    handler.register_route("GET", "https://api.example.com/user", TOKEN)

    client = httpx.Client(auth=PolyAuth(handler))
    session = create_session(handler)
"""

from typing import Any, Optional, Union

import httpx
import requests
from requests.adapters import HTTPAdapter

from .errors import AuthenticationRejected
from .handler import AuthenticationHandler
from .interceptor import AuthenticatingInterceptor


def _as_interceptor(target: Union[AuthenticationHandler, AuthenticatingInterceptor]) -> AuthenticatingInterceptor:
    if isinstance(target, AuthenticatingInterceptor):
        return target
    if isinstance(target, AuthenticationHandler):
        return AuthenticatingInterceptor(target)
    raise TypeError("Expected an AuthenticationHandler or AuthenticatingInterceptor")


class PolyAuth(httpx.Auth):
    """
    httpx.Auth running requests through an AuthenticatingInterceptor.

    A rejected response carried by AuthenticationRejected is read before the
    error propagates, since httpx closes it on the way out.
    """

    # retries must be able to resend the body
    requires_request_body = True

    def __init__(self, target: Union[AuthenticationHandler, AuthenticatingInterceptor]):
        self.interceptor = _as_interceptor(target)

    def sync_auth_flow(self, request: httpx.Request):
        if self.requires_request_body:
            request.read()

        flow = self.interceptor.sync_auth_flow(request)
        next_request = next(flow)
        while True:
            response = yield next_request
            try:
                next_request = flow.send(response)
            except StopIteration:
                return
            except AuthenticationRejected as e:
                if e.response is not None:
                    e.response.read()
                raise

    async def async_auth_flow(self, request: httpx.Request):
        if self.requires_request_body:
            await request.aread()

        flow = self.interceptor.async_auth_flow(request)
        next_request = await flow.__anext__()
        while True:
            response = yield next_request
            try:
                next_request = await flow.asend(response)
            except StopAsyncIteration:
                return
            except AuthenticationRejected as e:
                if e.response is not None:
                    await e.response.aread()
                raise


def _release(response: requests.Response) -> None:
    response.close()


class AuthenticatingAdapter(HTTPAdapter):
    """requests transport adapter that authenticates through the interceptor."""

    def __init__(self, target: Union[AuthenticationHandler, AuthenticatingInterceptor], *args: Any, **kwargs: Any):
        self.interceptor = _as_interceptor(target)
        super().__init__(*args, **kwargs)

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        def proceed(prepared: requests.PreparedRequest) -> requests.Response:
            return super(AuthenticatingAdapter, self).send(prepared, **kwargs)

        return self.interceptor.intercept(request, proceed, release=_release)


def create_session(
    target: Union[AuthenticationHandler, AuthenticatingInterceptor],
    session: Optional[requests.Session] = None,
) -> requests.Session:
    """Return a session (new or given) with the authenticating adapter mounted for http and https."""
    session = session if session is not None else requests.Session()
    adapter = AuthenticatingAdapter(target)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session

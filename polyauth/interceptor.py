"""
Authenticating Interceptor
Wires the handler into the request/response cycle with a single retry on rejection.

The request/response protocol is written once as a generator flow (the
shape httpx uses for ``httpx.Auth``): the flow yields requests to send and
receives responses back. ``intercept``/``intercept_async`` drive the same
flows for any other transport through a ``proceed`` callable.
"""

import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, Generator, Optional

from .config import AuthConfig
from .errors import AuthenticationRejected
from .handler import AuthenticatedCall, AuthenticationHandler

logger = logging.getLogger(__name__)


def _carries(error: BaseException, response: Any) -> bool:
    return isinstance(error, AuthenticationRejected) and error.response is response


class AuthenticatingInterceptor:
    """
    Per request:
    1. unregistered route -> forward unmodified, return the response as-is
    2. resolve owner + credential, apply it, forward
    3. on rejection: invalidate, refresh, re-apply, forward once more
    4. a second rejection is terminal (AuthenticationRejected)
    """

    def __init__(self, handler: AuthenticationHandler, config: Optional[AuthConfig] = None):
        self.handler = handler
        self.config = config or handler.config

    # ---------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------

    def is_rejected(self, response: Any, call: AuthenticatedCall) -> bool:
        status = getattr(response, "status_code", None)
        if status is not None and status in self.config.retry_status_codes:
            return True
        return call.strategy.is_rejection(response)

    def _rejected(self, response: Any, call: AuthenticatedCall, attempts: int) -> None:
        status = getattr(response, "status_code", None)
        logger.warning(
            f"{call.raw_request.method} {call.raw_request.url} rejected after {attempts} attempt(s) "
            f"(status={status}, credential={call.spec.credential_type.name!r}, owner={call.owner.name!r})"
        )
        if self.config.raise_on_rejection:
            raise AuthenticationRejected(
                f"Authentication rejected for {call.raw_request.method} {call.raw_request.url} (status={status})",
                response=response,
            )

    # ---------------------------------------------------------------------
    # Flows
    # ---------------------------------------------------------------------

    def sync_auth_flow(self, request: Any) -> Generator[Any, Any, None]:
        """Yield requests to send; receive each response via ``send()``."""
        _, spec = self.handler.route_cache.resolve(request)
        if spec is None:
            yield request
            return

        call = self.handler.authenticate(request, spec)
        response = yield call.request
        if not self.is_rejected(response, call):
            return

        if not call.strategy.should_retry_on_unauthorized():
            self._rejected(response, call, attempts=1)
            return

        logger.info(f"{request.method} {request.url} rejected, refreshing {spec.credential_type.name!r} and retrying once")
        call = self.handler.refresh(call)
        response = yield call.request
        if self.is_rejected(response, call):
            self._rejected(response, call, attempts=2)

    async def async_auth_flow(self, request: Any) -> AsyncGenerator[Any, Any]:
        """Async twin of sync_auth_flow."""
        _, spec = self.handler.route_cache.resolve(request)
        if spec is None:
            yield request
            return

        call = await self.handler.authenticate_async(request, spec)
        response = yield call.request
        if not self.is_rejected(response, call):
            return

        if not call.strategy.should_retry_on_unauthorized():
            self._rejected(response, call, attempts=1)
            return

        logger.info(f"{request.method} {request.url} rejected, refreshing {spec.credential_type.name!r} and retrying once")
        call = await self.handler.refresh_async(call)
        response = yield call.request
        if self.is_rejected(response, call):
            self._rejected(response, call, attempts=2)

    # ---------------------------------------------------------------------
    # Transport-neutral entry points
    # ---------------------------------------------------------------------

    def intercept(
        self,
        request: Any,
        proceed: Callable[[Any], Any],
        release: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """
        Run a request through the flow.

        ``proceed`` sends one request over the transport. ``release`` is
        called on every response the caller will not receive: one dropped in
        favour of a retry, or one left behind when the flow raises (for
        example a failed refresh). A response carried by
        AuthenticationRejected is handed to the caller and not released.
        """
        flow = self.sync_auth_flow(request)
        next_request = next(flow)
        while True:
            response = proceed(next_request)
            try:
                next_request = flow.send(response)
            except StopIteration:
                return response
            except BaseException as e:
                if release is not None and not _carries(e, response):
                    release(response)
                raise
            if release is not None:
                release(response)

    async def intercept_async(
        self,
        request: Any,
        proceed: Callable[[Any], Awaitable[Any]],
        release: Optional[Callable[[Any], Awaitable[None]]] = None,
    ) -> Any:
        flow = self.async_auth_flow(request)
        next_request = await flow.__anext__()
        while True:
            response = await proceed(next_request)
            try:
                next_request = await flow.asend(response)
            except StopAsyncIteration:
                return response
            except BaseException as e:
                if release is not None and not _carries(e, response):
                    await release(response)
                raise
            if release is not None:
                await release(response)

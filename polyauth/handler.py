"""
Authentication Handler
Resolves owners and credentials for requests with single-flight acquisition.

For every (owner, credential type) key at most one create/refresh runs at
a time. Late callers join the in-flight future and observe the same
credential or the same failure. The in-flight table is shared between the
sync (threads) and async (asyncio) entry points, so a thread and a
coroutine never refresh the same key concurrently.
"""

import asyncio
import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set, Tuple

from .config import AuthConfig
from .descriptors import Credential, CredentialType, Owner, OwnerType, RouteAuthSpec
from .errors import CredentialUnavailable, OwnerUnavailable, RouteMisconfigured
from .route_cache import RouteAuthCache
from .stores import CredentialStore, InMemoryCredentialStore, InMemoryOwnerStore, OwnerStore
from .strategy import AuthenticationStrategy

logger = logging.getLogger(__name__)

_Key = Tuple[Owner, CredentialType]


@dataclass(frozen=True)
class AuthenticatedCall:
    """A request with the credential applied, plus what it was resolved from."""
    request: Any
    raw_request: Any
    owner: Owner
    credential: Credential
    spec: RouteAuthSpec
    strategy: AuthenticationStrategy


class AuthenticationHandler:
    """
    Central orchestrator: owner -> credential -> authenticated request.

    Strategies are selected by credential type, falling back to
    ``default_strategy``.
    """

    def __init__(
        self,
        route_cache: Optional[RouteAuthCache] = None,
        owner_store: Optional[OwnerStore] = None,
        credential_store: Optional[CredentialStore] = None,
        strategies: Optional[Dict[CredentialType, AuthenticationStrategy]] = None,
        default_strategy: Optional[AuthenticationStrategy] = None,
        config: Optional[AuthConfig] = None,
    ):
        self.route_cache = route_cache if route_cache is not None else RouteAuthCache()
        self.owner_store = owner_store if owner_store is not None else InMemoryOwnerStore()
        self.credential_store = credential_store if credential_store is not None else InMemoryCredentialStore()
        self.config = config or AuthConfig()

        self._strategies: Dict[CredentialType, AuthenticationStrategy] = dict(strategies or {})
        self._default_strategy = default_strategy

        self._inflight: Dict[_Key, concurrent.futures.Future] = {}
        self._lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

    # ---------------------------------------------------------------------
    # Configuration
    # ---------------------------------------------------------------------

    def register_strategy(self, credential_type: CredentialType, strategy: AuthenticationStrategy) -> None:
        with self._lock:
            existing = self._strategies.get(credential_type)
            if existing is not None and existing is not strategy:
                raise RouteMisconfigured(f"Strategy for {credential_type.name!r} already registered")
            self._strategies[credential_type] = strategy

    def register_route(
        self,
        method: str,
        url: str,
        credential_type: CredentialType,
        owner_type: Optional[OwnerType] = None,
        strategy: Optional[AuthenticationStrategy] = None,
    ):
        """Declare an authenticated route, optionally binding its strategy."""
        if strategy is not None:
            self.register_strategy(credential_type, strategy)
        if owner_type is None:
            return self.route_cache.register_route(method, url, credential_type)
        return self.route_cache.register_route(method, url, credential_type, owner_type)

    def strategy_for(self, credential_type: CredentialType) -> AuthenticationStrategy:
        strategy = self._strategies.get(credential_type, self._default_strategy)
        if strategy is None:
            raise RouteMisconfigured(f"No authentication strategy for credential type {credential_type.name!r}")
        return strategy

    # ---------------------------------------------------------------------
    # Owners
    # ---------------------------------------------------------------------

    def resolve_owner(self, owner_type: OwnerType) -> Owner:
        """Fetch or create an owner of the given type."""
        try:
            owner = self.owner_store.get_or_create_owner(owner_type)
        except OwnerUnavailable:
            raise
        except Exception as e:
            raise OwnerUnavailable(f"Owner lookup failed for {owner_type.name!r}: {type(e).__name__}") from e

        if owner is None:
            raise OwnerUnavailable(f"No owner available for type {owner_type.name!r}")
        return owner

    async def resolve_owner_async(self, owner_type: OwnerType) -> Owner:
        return self.resolve_owner(owner_type)

    # ---------------------------------------------------------------------
    # Credentials
    # ---------------------------------------------------------------------

    def _stored_usable(
        self,
        owner: Owner,
        credential_type: CredentialType,
        strategy: AuthenticationStrategy,
        stale: Optional[Credential] = None,
    ) -> Optional[Credential]:
        """Stored credential if it is valid and not the known-stale one."""
        credential = self.credential_store.get(owner, credential_type)
        if credential is None:
            return None
        if stale is not None and credential == stale:
            return None
        if not strategy.is_credential_valid(credential, self.config.expiry_leeway_seconds):
            return None
        return credential

    def _join_or_lead(self, key: _Key) -> Tuple[concurrent.futures.Future, bool]:
        """Return the in-flight future for a key and whether the caller must run it."""
        with self._lock:
            future = self._inflight.get(key)
            if future is not None:
                return future, False
            future = concurrent.futures.Future()
            self._inflight[key] = future
            return future, True

    def _settle(
        self,
        key: _Key,
        future: concurrent.futures.Future,
        credential: Optional[Credential] = None,
        error: Optional[BaseException] = None,
        store: bool = True,
    ) -> bool:
        """
        Complete an in-flight future and release the key.

        The future is claimed under the lock, the store write happens outside
        it, so a slow store only delays callers of this key. Returns False if
        another caller already claimed the future.
        """
        owner, credential_type = key
        with self._lock:
            claimed = not (future.done() or future.running())
            if claimed:
                future.set_running_or_notify_cancel()
        if not claimed:
            if credential is not None:
                logger.warning(f"Discarding late credential {credential_type.name!r} for {owner.name!r}")
            return False

        if error is None and credential is not None and store:
            try:
                self.credential_store.put(owner, credential_type, credential)
            except Exception as e:
                logger.warning(f"Storing credential {credential_type.name!r} for {owner.name!r} failed: {e}")
                error, credential = self._as_unavailable(key, e), None

        with self._lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(credential)
        return True

    @staticmethod
    def _as_unavailable(key: _Key, error: BaseException) -> CredentialUnavailable:
        if isinstance(error, CredentialUnavailable):
            return error
        owner, credential_type = key
        failure = CredentialUnavailable(
            f"Could not obtain {credential_type.name!r} for {owner.name!r}: {type(error).__name__}"
        )
        failure.__cause__ = error
        return failure

    def _run_strategy(
        self,
        key: _Key,
        future: concurrent.futures.Future,
        strategy: AuthenticationStrategy,
        stale: Optional[Credential],
    ) -> None:
        owner, credential_type = key
        try:
            credential = strategy.create_or_refresh(owner, credential_type, stale)
        except Exception as e:
            logger.warning(f"Credential acquisition failed for {credential_type.name!r}/{owner.name!r}: {e}")
            self._settle(key, future, error=self._as_unavailable(key, e))
            return

        if credential is None:
            self._settle(
                key,
                future,
                error=CredentialUnavailable(f"No credential produced for {credential_type.name!r}/{owner.name!r}"),
            )
            return
        self._settle(key, future, credential=credential)

    def _wait(self, key: _Key, future: concurrent.futures.Future) -> Credential:
        timeout = self.config.refresh_timeout
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            owner, credential_type = key
            logger.warning(f"Credential acquisition for {credential_type.name!r}/{owner.name!r} timed out after {timeout}s")
            self._settle(
                key,
                future,
                error=CredentialUnavailable(f"Timed out obtaining {credential_type.name!r} for {owner.name!r}"),
            )
            # the claimer may still be writing to the store; it completes the future right after
            return future.result()

    def resolve_credential(
        self,
        owner: Owner,
        credential_type: CredentialType,
        force_refresh: bool = False,
        stale: Optional[Credential] = None,
    ) -> Credential:
        """
        Return a valid credential for (owner, credential_type).

        Fast path reads the store without locking. Otherwise the caller joins
        or starts the single in-flight acquisition for the key. With
        ``force_refresh`` a valid stored credential is only reused if it
        differs from ``stale`` (someone else already refreshed it).
        """
        strategy = self.strategy_for(credential_type)
        key = (owner, credential_type)

        if not force_refresh:
            credential = self._stored_usable(owner, credential_type, strategy)
            if credential is not None:
                logger.debug(f"Using stored credential {credential_type.name!r} for {owner.name!r}")
                return credential

        future, leader = self._join_or_lead(key)
        if leader:
            reuse = None
            if not force_refresh or stale is not None:
                reuse = self._stored_usable(owner, credential_type, strategy, stale)
            if reuse is not None:
                self._settle(key, future, credential=reuse, store=False)
            else:
                current = stale if stale is not None else self.credential_store.get(owner, credential_type)
                logger.info(f"Acquiring credential {credential_type.name!r} for {owner.name!r}")
                if self.config.refresh_timeout is None:
                    self._run_strategy(key, future, strategy, current)
                else:
                    worker = threading.Thread(
                        target=self._run_strategy,
                        args=(key, future, strategy, current),
                        name=f"polyauth-refresh-{credential_type.name}",
                        daemon=True,
                    )
                    try:
                        worker.start()
                    except RuntimeError as e:
                        self._settle(key, future, error=self._as_unavailable(key, e))
        else:
            logger.debug(f"Joining in-flight acquisition of {credential_type.name!r} for {owner.name!r}")

        return self._wait(key, future)

    async def _run_strategy_async(
        self,
        key: _Key,
        future: concurrent.futures.Future,
        strategy: AuthenticationStrategy,
        stale: Optional[Credential],
    ) -> None:
        owner, credential_type = key
        timeout = self.config.refresh_timeout
        try:
            credential = await asyncio.wait_for(
                strategy.create_or_refresh_async(owner, credential_type, stale), timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Credential acquisition for {credential_type.name!r}/{owner.name!r} timed out after {timeout}s")
            self._settle(
                key,
                future,
                error=CredentialUnavailable(f"Timed out obtaining {credential_type.name!r} for {owner.name!r}"),
            )
            return
        except asyncio.CancelledError:
            self._settle(
                key,
                future,
                error=CredentialUnavailable(f"Acquisition of {credential_type.name!r} for {owner.name!r} was cancelled"),
            )
            raise
        except Exception as e:
            logger.warning(f"Credential acquisition failed for {credential_type.name!r}/{owner.name!r}: {e}")
            self._settle(key, future, error=self._as_unavailable(key, e))
            return

        if credential is None:
            self._settle(
                key,
                future,
                error=CredentialUnavailable(f"No credential produced for {credential_type.name!r}/{owner.name!r}"),
            )
            return
        self._settle(key, future, credential=credential)

    async def resolve_credential_async(
        self,
        owner: Owner,
        credential_type: CredentialType,
        force_refresh: bool = False,
        stale: Optional[Credential] = None,
    ) -> Credential:
        """Async twin of resolve_credential. Cancelling a waiter never cancels the shared acquisition."""
        strategy = self.strategy_for(credential_type)
        key = (owner, credential_type)

        if not force_refresh:
            credential = self._stored_usable(owner, credential_type, strategy)
            if credential is not None:
                logger.debug(f"Using stored credential {credential_type.name!r} for {owner.name!r}")
                return credential

        future, leader = self._join_or_lead(key)
        if leader:
            reuse = None
            if not force_refresh or stale is not None:
                reuse = self._stored_usable(owner, credential_type, strategy, stale)
            if reuse is not None:
                self._settle(key, future, credential=reuse, store=False)
            else:
                current = stale if stale is not None else self.credential_store.get(owner, credential_type)
                logger.info(f"Acquiring credential {credential_type.name!r} for {owner.name!r}")
                task = asyncio.get_running_loop().create_task(
                    self._run_strategy_async(key, future, strategy, current)
                )
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        else:
            logger.debug(f"Joining in-flight acquisition of {credential_type.name!r} for {owner.name!r}")

        return await asyncio.shield(asyncio.wrap_future(future))

    def invalidate(
        self,
        owner: Owner,
        credential_type: CredentialType,
        credential: Optional[Credential] = None,
    ) -> bool:
        """
        Drop the stored credential for a key.

        When ``credential`` is given it is only dropped if it is still the
        stored one. Returns whether something was invalidated. In-flight
        acquisitions are not affected.
        """
        if credential is not None:
            current = self.credential_store.get(owner, credential_type)
            if current is None or current != credential:
                return False
        self.credential_store.invalidate(owner, credential_type)
        logger.info(f"Invalidated credential {credential_type.name!r} for {owner.name!r}")
        return True

    # ---------------------------------------------------------------------
    # Requests
    # ---------------------------------------------------------------------

    def authenticate(self, request: Any, spec: RouteAuthSpec) -> AuthenticatedCall:
        """Resolve owner and credential for a request and apply the credential."""
        strategy = self.strategy_for(spec.credential_type)
        owner = self.resolve_owner(spec.owner_type)
        credential = self.resolve_credential(owner, spec.credential_type)
        return AuthenticatedCall(
            request=strategy.build_authenticated_request(request, credential),
            raw_request=request,
            owner=owner,
            credential=credential,
            spec=spec,
            strategy=strategy,
        )

    async def authenticate_async(self, request: Any, spec: RouteAuthSpec) -> AuthenticatedCall:
        strategy = self.strategy_for(spec.credential_type)
        owner = await self.resolve_owner_async(spec.owner_type)
        credential = await self.resolve_credential_async(owner, spec.credential_type)
        return AuthenticatedCall(
            request=strategy.build_authenticated_request(request, credential),
            raw_request=request,
            owner=owner,
            credential=credential,
            spec=spec,
            strategy=strategy,
        )

    def refresh(self, call: AuthenticatedCall) -> AuthenticatedCall:
        """Invalidate the rejected credential and re-authenticate with a fresh one."""
        self.invalidate(call.owner, call.spec.credential_type, call.credential)
        credential = self.resolve_credential(
            call.owner, call.spec.credential_type, force_refresh=True, stale=call.credential
        )
        return AuthenticatedCall(
            request=call.strategy.build_authenticated_request(call.raw_request, credential),
            raw_request=call.raw_request,
            owner=call.owner,
            credential=credential,
            spec=call.spec,
            strategy=call.strategy,
        )

    async def refresh_async(self, call: AuthenticatedCall) -> AuthenticatedCall:
        self.invalidate(call.owner, call.spec.credential_type, call.credential)
        credential = await self.resolve_credential_async(
            call.owner, call.spec.credential_type, force_refresh=True, stale=call.credential
        )
        return AuthenticatedCall(
            request=call.strategy.build_authenticated_request(call.raw_request, credential),
            raw_request=call.raw_request,
            owner=call.owner,
            credential=credential,
            spec=call.spec,
            strategy=call.strategy,
        )

    def close(self) -> None:
        """Fail every in-flight acquisition so no caller keeps waiting on it."""
        with self._lock:
            pending = list(self._inflight.items())
        for key, future in pending:
            owner, credential_type = key
            self._settle(
                key,
                future,
                error=CredentialUnavailable(f"Handler closed while obtaining {credential_type.name!r} for {owner.name!r}"),
            )

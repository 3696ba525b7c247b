"""
Route Authentication Cache
Static route table mapping request fingerprints to the credential they need.
"""

import logging
import threading
from typing import Any, Dict, Optional, Tuple

from .descriptors import CredentialType, DEFAULT_OWNER_TYPE, OwnerType, RouteAuthSpec
from .errors import RouteMisconfigured
from .fingerprint import RequestFingerprint, RouteTemplate, fingerprint

logger = logging.getLogger(__name__)


def _ordered(templates: Tuple[RouteTemplate, ...]) -> Tuple[RouteTemplate, ...]:
    literals = tuple(t for t in templates if t.is_literal)
    return literals + tuple(t for t in templates if not t.is_literal)


class RouteAuthCache:
    """
    Read-mostly map of RequestFingerprint -> RouteAuthSpec.

    Entries are write-once: registering the same spec twice is a no-op,
    registering a different spec for a known fingerprint raises
    RouteMisconfigured. Reads never take the lock.
    """

    def __init__(self):
        self._specs: Dict[RequestFingerprint, RouteAuthSpec] = {}
        # templates are only kept for routes with placeholders or without host
        self._templates: Tuple[RouteTemplate, ...] = ()
        self._lock = threading.Lock()

    def register(self, key: RequestFingerprint, spec: RouteAuthSpec) -> None:
        """Associate a spec with a fingerprint."""
        if not isinstance(spec, RouteAuthSpec):
            raise TypeError("spec must be a RouteAuthSpec")

        with self._lock:
            self._register_locked(key, spec)

    def _register_locked(self, key: RequestFingerprint, spec: RouteAuthSpec) -> None:
        existing = self._specs.get(key)
        if existing is None:
            self._specs[key] = spec
            logger.debug(f"Registered route {key} -> {spec.owner_type.name}/{spec.credential_type.name}")
            return
        if existing != spec:
            raise RouteMisconfigured(
                f"Route {key} already registered for "
                f"{existing.owner_type.name}/{existing.credential_type.name}, "
                f"refusing {spec.owner_type.name}/{spec.credential_type.name}"
            )

    def register_route(
        self,
        method: str,
        url: str,
        credential_type: CredentialType,
        owner_type: OwnerType = DEFAULT_OWNER_TYPE,
    ) -> RequestFingerprint:
        """
        Declare an authenticated route.

        ``url`` may be absolute or path-only and may contain ``{name}``
        placeholders. Returns the route's fingerprint.
        """
        template = RouteTemplate(method, url)
        spec = RouteAuthSpec(owner_type=owner_type, credential_type=credential_type)

        with self._lock:
            self._register_locked(template.fingerprint, spec)
            if not template.is_literal or not template.origin:
                if all(t.fingerprint != template.fingerprint for t in self._templates):
                    # copy-on-write so readers iterate a stable tuple
                    self._templates = _ordered(self._templates + (template,))

        return template.fingerprint

    def lookup(self, key: RequestFingerprint) -> Optional[RouteAuthSpec]:
        """Return the spec for a fingerprint, or None for unauthenticated routes."""
        return self._specs.get(key)

    def fingerprint_for(self, method: str, url: Any) -> RequestFingerprint:
        """
        Template-aware fingerprint of a concrete request.

        An exact match wins, then path-only literal routes, then
        placeholder templates in registration order (first match wins).
        """
        concrete = fingerprint(method, url)
        if concrete in self._specs:
            return concrete
        for template in self._templates:
            if template.matches(method, url):
                return template.fingerprint
        return concrete

    def resolve(self, request: Any) -> Tuple[RequestFingerprint, Optional[RouteAuthSpec]]:
        """Fingerprint a request object and look up its spec."""
        key = self.fingerprint_for(request.method, request.url)
        return key, self.lookup(key)

    def clear(self) -> None:
        with self._lock:
            self._specs = {}
            self._templates = ()

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, key: object) -> bool:
        return key in self._specs

"""
Request Fingerprinting
Derives a stable identifier for a logical call site (method + route).
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Any, Pattern, Tuple

import httpx


_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class RequestFingerprint:
    """Opaque cache key of a logical route."""
    value: str

    def __str__(self) -> str:
        return self.value[:12]


def normalize_url(url: Any) -> str:
    """
    Normalize a request target.

    Lower-cases scheme and host, drops default ports, query and fragment,
    collapses duplicate slashes and strips the trailing slash.
    Relative targets ("/users") normalize to their path only.
    """
    s = str(url or "").strip()
    if not s:
        raise ValueError("URL cannot be empty")

    parsed = httpx.URL(s)
    path = re.sub(r"/{2,}", "/", parsed.path or "/")
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    if not parsed.host:
        return path if path.startswith("/") else "/" + path

    scheme = (parsed.scheme or "http").lower()
    host = parsed.host.lower()
    port = parsed.port
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"

    return f"{scheme}://{host}{path}"


def fingerprint(method: str, url: Any) -> RequestFingerprint:
    """Fingerprint a request from its method and target. Pure and deterministic."""
    if not method or not str(method).strip():
        raise ValueError("HTTP method cannot be empty")
    canonical = f"{str(method).strip().upper()} {normalize_url(url)}"
    return RequestFingerprint(hashlib.sha256(canonical.encode("utf-8")).hexdigest())


def fingerprint_request(request: Any) -> RequestFingerprint:
    """Fingerprint any request object exposing ``method`` and ``url``."""
    return fingerprint(request.method, request.url)


def _split_path(normalized: str) -> Tuple[str, str]:
    """Split a normalized URL into (origin, path)."""
    if normalized.startswith("/"):
        return "", normalized
    scheme, _, rest = normalized.partition("://")
    host, slash, path = rest.partition("/")
    return f"{scheme}://{host}", slash + path


class RouteTemplate:
    """
    A declared route, optionally with ``{name}`` path placeholders.

    Path-only templates ("/repos/{owner}/{repo}") match any host.
    """

    def __init__(self, method: str, template: str):
        if not method or not str(method).strip():
            raise ValueError("HTTP method cannot be empty")
        self.method = str(method).strip().upper()
        self.template = str(template or "").strip()

        names = _PLACEHOLDER.findall(self.template)
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate placeholder in route template: {self.template}")
        self.params = tuple(names)

        sentinels = {}
        raw = self.template
        for i, name in enumerate(names):
            sentinel = f"polyauthparam{i}x"
            sentinels[sentinel] = name
            raw = raw.replace("{" + name + "}", sentinel, 1)

        normalized = normalize_url(raw)
        canonical = normalized
        for sentinel, name in sentinels.items():
            canonical = canonical.replace(sentinel, "{" + name + "}")
        self.canonical = canonical

        origin, path = _split_path(normalized)
        self.origin = origin
        pattern = re.escape(path)
        for sentinel, name in sentinels.items():
            pattern = pattern.replace(re.escape(sentinel), f"(?P<{name}>[^/]+)")
        self._pattern: Pattern[str] = re.compile(f"^{pattern}$")

        self.fingerprint = fingerprint(self.method, canonical)

    @property
    def is_literal(self) -> bool:
        return not self.params

    def matches(self, method: str, url: Any) -> bool:
        """Whether a concrete request targets this route."""
        if str(method).strip().upper() != self.method:
            return False
        origin, path = _split_path(normalize_url(url))
        if self.origin and origin != self.origin:
            return False
        return self._pattern.match(path) is not None

    def __repr__(self) -> str:
        return f"RouteTemplate({self.method} {self.canonical})"

"""
Owner and Credential Descriptors
Immutable value types describing which account and which kind of
credential a route needs.
"""

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional


@dataclass(frozen=True)
class OwnerType:
    """A class of account, e.g. "github-account"."""
    name: str

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ValueError("OwnerType name cannot be empty")


DEFAULT_OWNER_TYPE = OwnerType("default")


@dataclass(frozen=True)
class CredentialType:
    """
    A class of credential, e.g. "OAuth token for service X".

    ``data_keys`` names the extra values a credential of this type carries
    next to its token (refresh token, token type, ...).
    """
    name: str
    data_keys: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ValueError("CredentialType name cannot be empty")
        object.__setattr__(self, "data_keys", frozenset(self.data_keys or ()))


@dataclass(frozen=True)
class Owner:
    """A concrete account of a given owner type."""
    owner_type: OwnerType
    name: str


@dataclass(frozen=True)
class Credential:
    """Opaque credential bundle owned by the credential store."""
    token: str
    data: Mapping[str, str] = field(default_factory=dict, hash=False)
    expires_at: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "data", MappingProxyType(dict(self.data or {})))

    def is_expired(self, now: Optional[float] = None, leeway: float = 0.0) -> bool:
        """Check expiry, treating credentials within ``leeway`` seconds of it as expired."""
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= float(self.expires_at) - max(0.0, float(leeway))

    def __repr__(self) -> str:
        # never leak the token through logs or tracebacks
        return f"Credential(token=***, data_keys={sorted(self.data)}, expires_at={self.expires_at})"


@dataclass(frozen=True)
class RouteAuthSpec:
    """Owner type and credential type required by a route."""
    owner_type: OwnerType
    credential_type: CredentialType

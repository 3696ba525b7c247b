"""
Authentication Configuration
Tunables shared by the handler and the interceptor.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AuthConfig:
    """Configuration for AuthenticationHandler and AuthenticatingInterceptor."""

    refresh_timeout: Optional[float] = 30.0
    retry_status_codes: Tuple[int, ...] = (401,)
    raise_on_rejection: bool = True
    expiry_leeway_seconds: float = 30.0

    def __post_init__(self):
        if self.refresh_timeout is not None and float(self.refresh_timeout) <= 0:
            raise ValueError("refresh_timeout must be positive or None")
        if float(self.expiry_leeway_seconds) < 0:
            raise ValueError("expiry_leeway_seconds must not be negative")
        object.__setattr__(self, "retry_status_codes", tuple(int(c) for c in self.retry_status_codes))

    @classmethod
    def from_env(cls, prefix: str = "POLYAUTH_") -> "AuthConfig":
        """
        Build a config from environment variables.

        Recognized (with the default prefix):
            POLYAUTH_REFRESH_TIMEOUT        seconds, "none" disables the bound
            POLYAUTH_RETRY_STATUS_CODES     comma separated, e.g. "401,403"
            POLYAUTH_RAISE_ON_REJECTION     true/false
            POLYAUTH_EXPIRY_LEEWAY_SECONDS  seconds
        """
        defaults = cls()
        kwargs = {}

        timeout = os.getenv(f"{prefix}REFRESH_TIMEOUT")
        if timeout is not None and timeout.strip():
            kwargs["refresh_timeout"] = None if timeout.strip().lower() == "none" else float(timeout)

        codes = os.getenv(f"{prefix}RETRY_STATUS_CODES")
        if codes is not None and codes.strip():
            kwargs["retry_status_codes"] = tuple(int(c) for c in codes.split(",") if c.strip())

        raise_on = os.getenv(f"{prefix}RAISE_ON_REJECTION")
        if raise_on is not None and raise_on.strip():
            kwargs["raise_on_rejection"] = _env_bool(raise_on)

        leeway = os.getenv(f"{prefix}EXPIRY_LEEWAY_SECONDS")
        if leeway is not None and leeway.strip():
            kwargs["expiry_leeway_seconds"] = float(leeway)

        if not kwargs:
            return defaults
        return cls(**kwargs)

#!/usr/bin/env python3
"""
Simple PolyAuth Example

Runs an in-process fake API (httpx.MockTransport) that only accepts the
second token it hands out, then calls it through an authenticated httpx
client. The first token is rejected on purpose, so the
401 -> refresh -> retry path shows up in the log output.
"""

import itertools
import logging
import sys
from pathlib import Path

import httpx

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from polyauth import (  # noqa: E402
    AuthenticationHandler,
    BearerTokenStrategy,
    Credential,
    CredentialType,
    OwnerType,
    PolyAuth,
)

API = "https://api.example.com"
GITHUB_ACCOUNT = OwnerType("github-account")
GITHUB_TOKEN = CredentialType("github-token", {"token_type"})

_counter = itertools.count(1)


def issue_token(owner, credential_type, credential=None):
    """Pretend to run a login/refresh flow."""
    token = f"token-{next(_counter)}"
    print(f"  issuing {token} for {owner.name} (refresh={credential is not None})")
    return Credential(token=token, data={"token_type": "Bearer"})


def fake_api(request: httpx.Request) -> httpx.Response:
    """Public /status, authenticated /user accepting only token-2."""
    if request.url.path == "/status":
        return httpx.Response(200, json={"ok": True})
    if request.headers.get("Authorization") != "Bearer token-2":
        return httpx.Response(401, json={"error": "bad credentials"})
    return httpx.Response(200, json={"login": "octocat"})


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    handler = AuthenticationHandler()
    handler.register_route(
        "GET",
        f"{API}/user",
        GITHUB_TOKEN,
        GITHUB_ACCOUNT,
        strategy=BearerTokenStrategy(refresh=issue_token),
    )

    with httpx.Client(auth=PolyAuth(handler), transport=httpx.MockTransport(fake_api)) as client:
        print("GET /status (public)")
        print(" ", client.get(f"{API}/status").json())

        print("GET /user (first token is rejected, refreshed once)")
        print(" ", client.get(f"{API}/user").json())

        print("GET /user again (stored token reused)")
        print(" ", client.get(f"{API}/user").json())

    handler.close()


if __name__ == "__main__":
    main()

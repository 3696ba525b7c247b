import pytest

from polyauth import (
    AuthConfig,
    AuthenticationHandler,
    BearerTokenStrategy,
    InMemoryCredentialStore,
    InMemoryOwnerStore,
)

from fakes import TOKEN, ScriptedRefresh


@pytest.fixture
def refresh():
    return ScriptedRefresh(["T1", "T2", "T3"])


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture
def owner_store():
    return InMemoryOwnerStore()


@pytest.fixture
def handler(refresh, credential_store, owner_store):
    h = AuthenticationHandler(
        owner_store=owner_store,
        credential_store=credential_store,
        strategies={TOKEN: BearerTokenStrategy(refresh=refresh)},
        config=AuthConfig(refresh_timeout=5.0),
    )
    yield h
    h.close()

"""
Owner and Credential Stores
Storage interfaces the handler talks to, plus in-memory implementations.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from .descriptors import Credential, CredentialType, Owner, OwnerType
from .errors import OwnerUnavailable

logger = logging.getLogger(__name__)


class OwnerStore(ABC):
    """Durable lookup and creation of owners."""

    @abstractmethod
    def get_or_create_owner(self, owner_type: OwnerType) -> Owner:
        """Return an owner of the given type, raising OwnerUnavailable if none can be had."""
        raise NotImplementedError


class CredentialStore(ABC):
    """Durable storage of credentials keyed by (owner, credential type)."""

    @abstractmethod
    def get(self, owner: Owner, credential_type: CredentialType) -> Optional[Credential]:
        raise NotImplementedError

    @abstractmethod
    def put(self, owner: Owner, credential_type: CredentialType, credential: Credential) -> None:
        raise NotImplementedError

    @abstractmethod
    def invalidate(self, owner: Owner, credential_type: CredentialType) -> None:
        raise NotImplementedError


class InMemoryOwnerStore(OwnerStore):
    """
    Thread-safe owner store for tests and single-process tools.

    Each owner type has an active owner. With ``create_missing`` an owner
    named after the type is created on first request; without it a
    missing owner raises OwnerUnavailable (the embedder must run its own
    account chooser or login flow).
    """

    def __init__(self, owners: Optional[Iterable[Owner]] = None, create_missing: bool = True):
        self.create_missing = bool(create_missing)
        self._owners: Dict[OwnerType, List[Owner]] = {}
        self._active: Dict[OwnerType, Owner] = {}
        self._lock = threading.Lock()
        for owner in owners or ():
            self.add_owner(owner)

    def add_owner(self, owner: Owner, activate: bool = False) -> None:
        with self._lock:
            known = self._owners.setdefault(owner.owner_type, [])
            if owner not in known:
                known.append(owner)
            if activate or owner.owner_type not in self._active:
                self._active[owner.owner_type] = owner

    def remove_owner(self, owner: Owner) -> None:
        with self._lock:
            known = self._owners.get(owner.owner_type, [])
            if owner in known:
                known.remove(owner)
            if self._active.get(owner.owner_type) == owner:
                if known:
                    self._active[owner.owner_type] = known[0]
                else:
                    self._active.pop(owner.owner_type, None)

    def set_active_owner(self, owner: Owner) -> None:
        with self._lock:
            if owner not in self._owners.get(owner.owner_type, []):
                raise OwnerUnavailable(f"Unknown owner {owner.name!r} of type {owner.owner_type.name!r}")
            self._active[owner.owner_type] = owner

    def owners(self, owner_type: OwnerType) -> List[Owner]:
        with self._lock:
            return list(self._owners.get(owner_type, []))

    def get_or_create_owner(self, owner_type: OwnerType) -> Owner:
        with self._lock:
            owner = self._active.get(owner_type)
            if owner is not None:
                return owner
            if not self.create_missing:
                raise OwnerUnavailable(f"No owner available for type {owner_type.name!r}")
            owner = Owner(owner_type=owner_type, name=owner_type.name)
            self._owners.setdefault(owner_type, []).append(owner)
            self._active[owner_type] = owner
            logger.info(f"Created owner {owner.name!r} for type {owner_type.name!r}")
            return owner


class InMemoryCredentialStore(CredentialStore):
    """Thread-safe in-memory credential store."""

    def __init__(self):
        self._credentials: Dict[Tuple[Owner, CredentialType], Credential] = {}
        self._lock = threading.Lock()

    def get(self, owner: Owner, credential_type: CredentialType) -> Optional[Credential]:
        with self._lock:
            return self._credentials.get((owner, credential_type))

    def put(self, owner: Owner, credential_type: CredentialType, credential: Credential) -> None:
        with self._lock:
            self._credentials[(owner, credential_type)] = credential

    def invalidate(self, owner: Owner, credential_type: CredentialType) -> None:
        with self._lock:
            self._credentials.pop((owner, credential_type), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._credentials)

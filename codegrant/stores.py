"""Client and grant storage.

The server only depends on the abstract interfaces below; the in-memory
implementations back the demo app and the tests.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple

from codegrant.models import Client, Grant

logger = logging.getLogger(__name__)


class ConsumeOutcome(str, Enum):
    CONSUMED = "consumed"
    ALREADY_CONSUMED = "already_consumed"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"   # grant exists but failed the check, left untouched


class ClientStore(ABC):
    @abstractmethod
    def get(self, client_id: str) -> Optional[Client]:
        ...


class GrantStore(ABC):
    @abstractmethod
    def create(self, client_id: str, user_id: str, code: str, issued_at: datetime) -> Grant:
        """Persist a new grant. The store assigns its id."""

    @abstractmethod
    def get(self, grant_id: str) -> Optional[Grant]:
        ...

    @abstractmethod
    def delete(self, grant: Grant) -> None:
        ...

    @abstractmethod
    def consume(
        self, grant_id: str, check: Callable[[Grant], bool]
    ) -> Tuple[ConsumeOutcome, Optional[Grant]]:
        """Atomically delete the grant if `check(grant)` holds.

        `check` runs while no other consume() of the same id can make progress,
        so at most one caller ever sees CONSUMED for a given grant.
        """


class InMemoryClientStore(ClientStore):
    def __init__(self, clients: Iterable[Client] = ()):
        self._clients: Dict[str, Client] = {c.id: c for c in clients}

    def add(self, client: Client) -> None:
        self._clients[client.id] = client

    def get(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)


class InMemoryGrantStore(GrantStore):
    """Grants in a dict. Expired grants and consumed-id markers are dropped
    at most once per `ttl`, when a new grant is created."""

    def __init__(self, ttl: timedelta = timedelta(seconds=60)):
        self._lock = threading.Lock()
        self._ttl = ttl
        self._grants: Dict[str, Grant] = {}
        self._consumed: Dict[str, datetime] = {}  # grant id -> issued_at
        self._last_purge: Optional[datetime] = None

    def create(self, client_id: str, user_id: str, code: str, issued_at: datetime) -> Grant:
        grant = Grant(
            id=uuid.uuid4().hex,
            code=code,
            client_id=client_id,
            user_id=user_id,
            issued_at=issued_at,
        )
        if self._last_purge is None or issued_at - self._last_purge >= self._ttl:
            self.purge_expired(now=issued_at)
        with self._lock:
            self._grants[grant.id] = grant
        return grant

    def get(self, grant_id: str) -> Optional[Grant]:
        with self._lock:
            return self._grants.get(grant_id)

    def delete(self, grant: Grant) -> None:
        with self._lock:
            self._grants.pop(grant.id, None)

    def consume(
        self, grant_id: str, check: Callable[[Grant], bool]
    ) -> Tuple[ConsumeOutcome, Optional[Grant]]:
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None:
                if grant_id in self._consumed:
                    return ConsumeOutcome.ALREADY_CONSUMED, None
                return ConsumeOutcome.NOT_FOUND, None
            if not check(grant):
                return ConsumeOutcome.REJECTED, grant
            del self._grants[grant_id]
            self._consumed[grant_id] = grant.issued_at
            return ConsumeOutcome.CONSUMED, grant

    def purge_expired(self, ttl: Optional[timedelta] = None, now: Optional[datetime] = None) -> int:
        """Drop grants, and markers of consumed grants, issued `ttl` or more ago.

        Both are past their freshness window, so nothing can redeem them; a
        replay of a forgotten consumed id is reported as not found instead.
        Returns the number of grants dropped.
        """
        ttl = self._ttl if ttl is None else ttl
        now = now or datetime.now(timezone.utc)
        with self._lock:
            self._last_purge = now
            stale = [k for k, g in self._grants.items() if now - g.issued_at >= ttl]
            for k in stale:
                del self._grants[k]
            forgotten = [k for k, issued_at in self._consumed.items() if now - issued_at >= ttl]
            for k in forgotten:
                del self._consumed[k]
        if stale:
            logger.debug("Purged %d expired grants", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._grants)

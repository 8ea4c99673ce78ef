# humanity_link/resolver.py
"""
Find-or-create of the canonical identity for a wallet.

The directory offers no atomic find-or-create, so resolutions for the same
wallet are serialized per process with a lock keyed on the lower-cased
address. Resolved identities are cached for a bounded time and count; once an
entry expires the next call asks the directory again, which is where a
duplicate created by another process shows up as AmbiguousMatch.
"""
import logging
import os
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from humanity_link.directory import IdentityDirectory, to_identity
from humanity_link.domain import Identity
from humanity_link.errors import AmbiguousMatch
from humanity_link.utils import KeyedLock, short_wallet, validate_wallet_address

logger = logging.getLogger(__name__)

RESOLVER_CACHE_TTL = float(os.environ.get("RESOLVER_CACHE_TTL", "300"))
RESOLVER_CACHE_SIZE = int(os.environ.get("RESOLVER_CACHE_SIZE", "1024"))


class IdentityCache:
    """LRU of resolved identities with a per-entry time to live."""

    def __init__(self, ttl: float, maxsize: int, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.maxsize = maxsize
        self._clock = clock
        self._guard = threading.Lock()
        self._entries = OrderedDict()  # key -> (identity, expires_at)

    def get(self, key: str) -> Optional[Identity]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                return None
            identity, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return identity

    def put(self, key: str, identity: Identity) -> None:
        if self.ttl <= 0 or self.maxsize <= 0:
            return
        with self._guard:
            self._entries[key] = (identity, self._clock() + self.ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)

    def __len__(self):
        with self._guard:
            return len(self._entries)


class IdentityResolver:
    def __init__(self, directory: IdentityDirectory, cache_ttl: Optional[float] = None,
                 cache_size: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.directory = directory
        self._locks = KeyedLock()
        self._resolved = IdentityCache(
            ttl=cache_ttl if cache_ttl is not None else RESOLVER_CACHE_TTL,
            maxsize=cache_size if cache_size is not None else RESOLVER_CACHE_SIZE,
            clock=clock,
        )

    def _find(self, wallet_address: str) -> Optional[Identity]:
        matches = self.directory.find_by_wallet(wallet_address)
        if len(matches) > 1:
            ids = ", ".join(str(u.get("id")) for u in matches)
            logger.error(f"[RESOLVER] {len(matches)} identities linked to {short_wallet(wallet_address)}: {ids}")
            raise AmbiguousMatch(f"{len(matches)} identities are linked to this wallet")
        if matches:
            return to_identity(matches[0], wallet_address)
        return None

    def lookup(self, wallet_address: str) -> Optional[Identity]:
        """Existing identity for the wallet, or None. Never creates."""
        wallet_address = validate_wallet_address(wallet_address)
        key = wallet_address.lower()
        with self._locks.hold(key):
            cached = self._resolved.get(key)
            if cached is not None:
                return cached
            identity = self._find(wallet_address)
            if identity is not None:
                self._resolved.put(key, identity)
            return identity

    def resolve(self, wallet_address: str, subject_hint: Optional[str] = None) -> Identity:
        wallet_address = validate_wallet_address(wallet_address)
        key = wallet_address.lower()
        with self._locks.hold(key):
            cached = self._resolved.get(key)
            if cached is not None:
                return cached
            identity = self._find(wallet_address)
            if identity is None:
                user = self.directory.create_user(wallet_address, subject_hint)
                identity = to_identity(user, wallet_address)
                logger.info(f"[RESOLVER] Created identity {identity.identity_id} "
                            f"for wallet {short_wallet(wallet_address)}")
            self._resolved.put(key, identity)
            return identity

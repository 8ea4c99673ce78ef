# humanity_link/utils.py
import re
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from jose import jwt

from humanity_link.errors import InvalidInput

JWT_ALG = "HS256"

EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")


def bearer_credential(app_id: str, app_secret: str) -> str:
    """Static bearer token for the identity directory: the app id signed with the app secret."""
    return jwt.encode({"iss": app_id}, app_secret, algorithm=JWT_ALG)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # sqlite hands timestamps back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate_wallet_address(address) -> str:
    if not address or not isinstance(address, str):
        raise InvalidInput("Wallet address is required")
    address = address.strip()
    # EVM hex addresses, or longer native ones such as aleo1...
    if not (EVM_ADDRESS.match(address) or len(address) > 10):
        raise InvalidInput("Invalid wallet address format")
    return address


def short_wallet(address: str) -> str:
    return f"{address[:10]}..."


class KeyedLock:
    """
    One mutex per key, created on demand and dropped once nobody holds or
    waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self):
        with self._guard:
            return len(self._entries)

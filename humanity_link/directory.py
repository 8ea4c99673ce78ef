# humanity_link/directory.py
"""
Client for the identity directory (a Privy-style user service).

Only four calls are used:
 - GET  /users                      list identities and their linked accounts
 - POST /users                      create an identity linked to a wallet
 - GET  /users/{id}                 fetch one identity
 - POST /users/{id}/custom_metadata replace the identity's free-form metadata

Transport failures, 5xx answers and 2xx answers whose body is not the expected
JSON shape surface as DirectoryUnreachable; a 401/403 means our app
credentials were refused and surfaces as ConfigurationError; any other 4xx on
create is the caller's fault and surfaces as DirectoryRejected. A failed list
is never reported as "user not found".
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

import httpx

from humanity_link.domain import Identity
from humanity_link.errors import ConfigurationError, DirectoryRejected, DirectoryUnreachable
from humanity_link.utils import bearer_credential, short_wallet

logger = logging.getLogger(__name__)

DIRECTORY_URL = os.environ.get("DIRECTORY_URL", "https://auth.privy.io/api/v1")
DIRECTORY_TIMEOUT = float(os.environ.get("DIRECTORY_TIMEOUT", "10"))

WALLET_ACCOUNT = "wallet"

# errors raised when a decoded body does not have the expected shape
MALFORMED = (ValueError, KeyError, TypeError, AttributeError)


def unusable(op: str, detail) -> DirectoryUnreachable:
    logger.error(f"[DIRECTORY] {op} returned an unusable response: {detail}")
    return DirectoryUnreachable(f"identity directory returned an unusable response ({op})")


def wallet_accounts(user: Dict[str, Any]) -> List[str]:
    return [
        acc.get("address", "")
        for acc in user.get("linked_accounts") or []
        if acc.get("type") == WALLET_ACCOUNT and acc.get("address")
    ]


def parse_created_at(value) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def to_identity(user: Dict[str, Any], wallet_address: str) -> Identity:
    try:
        linked = next(
            (a for a in wallet_accounts(user) if a.lower() == wallet_address.lower()),
            wallet_address,
        )
        if not user["id"]:
            raise ValueError("empty id")
        return Identity(
            identity_id=str(user["id"]),
            wallet_address=linked,
            created_at=parse_created_at(user.get("created_at")),
        )
    except MALFORMED as e:
        raise unusable("to_identity", repr(e))


class IdentityDirectory:
    def __init__(self, base_url: Optional[str] = None, app_id: Optional[str] = None,
                 app_secret: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        app_id = app_id or os.environ.get("DIRECTORY_APP_ID")
        app_secret = app_secret or os.environ.get("DIRECTORY_APP_SECRET")
        if not app_id or not app_secret:
            raise ConfigurationError("DIRECTORY_APP_ID and DIRECTORY_APP_SECRET must be set")
        self._client = httpx.Client(
            base_url=base_url or DIRECTORY_URL,
            timeout=timeout if timeout is not None else DIRECTORY_TIMEOUT,
            headers={
                "Authorization": f"Bearer {bearer_credential(app_id, app_secret)}",
                "app-id": app_id,
            },
            transport=transport,
        )

    def close(self):
        self._client.close()

    def _request(self, op: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"[DIRECTORY] {op} failed at transport level: {e}")
            raise DirectoryUnreachable(f"identity directory unreachable ({op}): {e}")
        if response.status_code in (401, 403):
            logger.error(f"[DIRECTORY] {op} refused app credentials: {response.status_code}")
            raise ConfigurationError(
                f"identity directory refused the app credentials ({op}): HTTP {response.status_code}")
        return response

    @staticmethod
    def _fail(op: str, response: httpx.Response):
        logger.error(f"[DIRECTORY] {op} answered {response.status_code}")
        raise DirectoryUnreachable(f"identity directory error ({op}): HTTP {response.status_code}")

    @staticmethod
    def _user(op: str, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise unusable(op, f"body is not JSON ({e})")
        if not isinstance(body, dict):
            raise unusable(op, f"expected an object, got {type(body).__name__}")
        return body

    def list_users(self) -> Iterator[Dict[str, Any]]:
        cursor = None
        while True:
            params = {"cursor": cursor} if cursor else None
            response = self._request("list_users", "GET", "/users", params=params)
            if not response.is_success:
                self._fail("list_users", response)
            try:
                body = response.json()
            except ValueError as e:
                raise unusable("list_users", f"body is not JSON ({e})")
            if isinstance(body, list):
                page, cursor = body, None
            elif isinstance(body, dict):
                page, cursor = body.get("data") or [], body.get("next_cursor")
            else:
                raise unusable("list_users", f"unexpected body type {type(body).__name__}")
            if not isinstance(page, list) or not all(isinstance(u, dict) for u in page):
                raise unusable("list_users", "data is not a list of users")
            yield from page
            if not cursor:
                return

    def find_by_wallet(self, wallet_address: str) -> List[Dict[str, Any]]:
        target = wallet_address.lower()
        try:
            return [
                user for user in self.list_users()
                if any(a.lower() == target for a in wallet_accounts(user))
            ]
        except MALFORMED as e:
            raise unusable("list_users", repr(e))

    def create_user(self, wallet_address: str, subject_hint: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "linked_accounts": [{"type": WALLET_ACCOUNT, "address": wallet_address}],
        }
        if subject_hint:
            payload["custom_metadata"] = {"subject_hint": subject_hint}
        response = self._request("create_user", "POST", "/users", json=payload)
        if 400 <= response.status_code < 500:
            logger.warning(f"[DIRECTORY] create_user rejected for {short_wallet(wallet_address)}: "
                           f"{response.status_code}")
            raise DirectoryRejected(f"identity directory rejected wallet: {response.text[:200]}")
        if not response.is_success:
            self._fail("create_user", response)
        return self._user("create_user", response)

    def get_user(self, identity_id: str) -> Optional[Dict[str, Any]]:
        response = self._request("get_user", "GET", f"/users/{identity_id}")
        if response.status_code == 404:
            return None
        if not response.is_success:
            self._fail("get_user", response)
        return self._user("get_user", response)

    def set_custom_metadata(self, identity_id: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        response = self._request("set_custom_metadata", "POST", f"/users/{identity_id}/custom_metadata",
                                 json={"custom_metadata": metadata})
        if not response.is_success:
            self._fail("set_custom_metadata", response)
        return self._user("set_custom_metadata", response)

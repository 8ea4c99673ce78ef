"""Pytest fixtures: a fake `leo` proof backend and a fake identity directory."""
import json
import sys
import threading
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from humanity_link.db import init_db, make_engine
from humanity_link.directory import IdentityDirectory
from humanity_link.prover import ProofInvoker
from humanity_link.resolver import IdentityResolver
from humanity_link.store import SqlProfileStore
from humanity_link.utils import bearer_credential

DIRECTORY_BASE = "https://directory.test/api/v1"
APP_ID = "test-app"
APP_SECRET = "test-secret"

FAKE_LEO = r'''
import os, sys, time

mode = os.environ.get("FAKE_LEO_MODE", "prove")
pidfile = os.environ.get("FAKE_LEO_PIDFILE")
if pidfile:
    with open(pidfile, "w") as f:
        f.write(str(os.getpid()))

if mode == "escape":
    import subprocess
    # grandchild in its own session keeps the inherited stdout/stderr open
    child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"], start_new_session=True)
    with open(os.environ["FAKE_LEO_CHILDPID"], "w") as f:
        f.write(str(child.pid))
    time.sleep(60)
if mode == "hang":
    time.sleep(60)
if mode == "fail":
    sys.stderr.write("Error [ECLI0377018]: failed to load program\n")
    sys.exit(1)
if mode == "garbage":
    print("Leo finished")
    print("result: yes")
    sys.exit(0)

subject, reference, threshold = (int(arg[:-3]) for arg in sys.argv[-3:])
print("       Leo Compiled 'prove_age' into Aleo instructions")
print()
print("⛓  Constraints")
print()
print(" •  'age_check.aleo/prove_age' - 12 constraints")
print()
print("➡️  Output")
print()
print(" • true" if reference - subject >= threshold else " • false")
print()
'''


@pytest.fixture
def fake_leo(tmp_path, monkeypatch):
    script = tmp_path / "fake_leo.py"
    script.write_text(FAKE_LEO, encoding="utf-8")
    monkeypatch.setenv("PYTHONIOENCODING", "utf-8")
    monkeypatch.delenv("FAKE_LEO_MODE", raising=False)
    return [sys.executable, str(script), "run", "prove_age"]


@pytest.fixture
def invoker(fake_leo, tmp_path):
    return ProofInvoker(command=fake_leo, workdir=str(tmp_path), timeout=10)


class FakeDirectory:
    """In-process stand-in for the directory's REST API, served through httpx.MockTransport."""

    page_size = 2

    def __init__(self):
        self.users = {}
        self.creates = 0
        self.requests = []
        self.down = False
        self.list_status = 200
        self.list_delay = 0.0
        self.override = None  # request -> Response or None
        self._lock = threading.Lock()
        self._seq = 0

    def seed(self, *addresses, custom_metadata=None):
        with self._lock:
            self._seq += 1
            user_id = f"did:privy:seed{self._seq}"
            self.users[user_id] = {
                "id": user_id,
                "created_at": 1700000000,
                "linked_accounts": [{"type": "wallet", "address": a} for a in addresses]
                + [{"type": "email", "address": "someone@example.com"}],
                "custom_metadata": dict(custom_metadata or {}),
            }
        return user_id

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        expected = f"Bearer {bearer_credential(APP_ID, APP_SECRET)}"
        if request.headers.get("authorization") != expected or request.headers.get("app-id") != APP_ID:
            return httpx.Response(401, json={"error": "unauthorized"})

        if self.override is not None:
            response = self.override(request)
            if response is not None:
                return response

        path = request.url.path[len("/api/v1"):]
        parts = [p for p in path.split("/") if p]

        if parts == ["users"] and request.method == "GET":
            if self.list_status != 200:
                return httpx.Response(self.list_status, json={"error": "unavailable"})
            time.sleep(self.list_delay)
            with self._lock:
                users = list(self.users.values())
            start = int(request.url.params.get("cursor") or 0)
            end = start + self.page_size
            return httpx.Response(200, json={
                "data": users[start:end],
                "next_cursor": str(end) if end < len(users) else None,
            })

        if parts == ["users"] and request.method == "POST":
            body = json.loads(request.content)
            account = body["linked_accounts"][0]
            if not account["address"].startswith(("0x", "aleo1")):
                return httpx.Response(400, json={"error": "Invalid wallet address"})
            with self._lock:
                self.creates += 1
                self._seq += 1
                user_id = f"did:privy:{self._seq}"
                user = {
                    "id": user_id,
                    "created_at": int(time.time()),
                    "linked_accounts": [account],
                    "custom_metadata": body.get("custom_metadata") or {},
                }
                self.users[user_id] = user
            return httpx.Response(200, json=user)

        if len(parts) == 2 and parts[0] == "users" and request.method == "GET":
            user = self.users.get(parts[1])
            if user is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=user)

        if len(parts) == 3 and parts[2] == "custom_metadata" and request.method == "POST":
            user = self.users.get(parts[1])
            if user is None:
                return httpx.Response(404, json={"error": "not found"})
            body = json.loads(request.content)
            user["custom_metadata"] = body["custom_metadata"]
            return httpx.Response(200, json=user)

        return httpx.Response(405)


@pytest.fixture
def fake_directory():
    return FakeDirectory()


@pytest.fixture
def directory(fake_directory):
    client = IdentityDirectory(
        base_url=DIRECTORY_BASE,
        app_id=APP_ID,
        app_secret=APP_SECRET,
        transport=httpx.MockTransport(fake_directory.handler),
    )
    yield client
    client.close()


@pytest.fixture
def resolver(directory):
    return IdentityResolver(directory)


class TickClock:
    """Advances one second per reading."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return TickClock()


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'profiles.db'}")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory, clock):
    return SqlProfileStore(session_factory=session_factory, clock=clock)

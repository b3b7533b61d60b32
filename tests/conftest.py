import os as _os
import sys
from dataclasses import replace
from threading import Lock

import pytest

# Ensure project root is importable (so `import main` works reliably across environments)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from poolsync import db  # noqa: E402
from poolsync.bigip import StoreError  # noqa: E402
from poolsync.k8s import SourceError  # noqa: E402
from poolsync.models import Endpoint, InstanceConfig, PoolConfig  # noqa: E402


def ep(raw: str) -> Endpoint:
    return Endpoint.parse(raw)


def eps(*raw: str) -> frozenset:
    return frozenset(ep(r) for r in raw)


def make_config(name="web", pool="/Common/web_pool", interval=30.0, **kw) -> InstanceConfig:
    return InstanceConfig(
        name=name,
        endpoint=kw.pop("endpoint", "https://k8s.example:6443"),
        namespace=kw.pop("namespace", "default"),
        service_name=kw.pop("service_name", "web"),
        pool=pool,
        pool_config=kw.pop("pool_config", PoolConfig("round-robin", "/Common/http")),
        poll_interval_s=interval,
        **kw,
    )


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Isolated sqlite event journal per test."""
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(tmp_path / "events.db")))
    db.init_db()
    return db


class FakeSource:
    def __init__(self, endpoints=frozenset(), error: Exception | None = None):
        self.endpoints = frozenset(endpoints)
        self.error = error
        self.calls = 0

    def list_endpoints(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.endpoints


class FakeStore:
    """In-memory pool store recording every call."""

    def __init__(self, pools: dict | None = None):
        self.pools = {k: set(v) for k, v in (pools or {}).items()}
        self.calls: list[tuple] = []
        self.fail: set[str] = set()
        self._lock = Lock()

    def _record(self, op, *args):
        with self._lock:
            self.calls.append((op, *args))
        if op in self.fail:
            raise StoreError(f"{op} failed")

    def ops(self, *names):
        with self._lock:
            return [c for c in self.calls if not names or c[0] in names]

    def exists(self, pool):
        self._record("exists", pool)
        return pool in self.pools

    def read_members(self, pool):
        self._record("read", pool)
        if pool not in self.pools:
            return None
        return frozenset(self.pools[pool])

    def create(self, pool, pool_config, members):
        self._record("create", pool, pool_config, frozenset(members))
        self.pools[pool] = set(members)

    def add_members(self, pool, members):
        self._record("add", pool, frozenset(members))
        self.pools[pool] |= set(members)

    def remove_members(self, pool, members):
        self._record("remove", pool, frozenset(members))
        self.pools[pool] -= set(members)

    def delete(self, pool):
        self._record("delete", pool)
        return self.pools.pop(pool, None) is not None


class ScriptedSleep:
    """Stand-in for time.sleep: runs one scripted action per call."""

    def __init__(self, *actions):
        self.actions = list(actions)
        self.calls: list[float] = []

    def __call__(self, seconds):
        self.calls.append(seconds)
        if not self.actions:
            raise RuntimeError("sleep script exhausted")
        action = self.actions.pop(0)
        if action is not None:
            action()


@pytest.fixture
def store():
    return FakeStore()

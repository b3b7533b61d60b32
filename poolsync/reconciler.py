from __future__ import annotations

import time
from threading import Thread
from typing import Callable

from .bigip import StoreError
from .db import log_event
from .diff import diff_endpoints
from .k8s import KubeEndpointSource, SourceError
from .models import InstanceConfig, InstanceRecord, InstanceState
from .registry import InstanceRegistry
from .settings import settings


class Reconciler:
    """Keeps one pool in sync with one service, until its instance is removed.

    The loop sleeps for the poll interval, re-reads its record from the
    registry and runs a single pass. A missing record (or one registered again
    under a new token) is the stop signal; the pool is then deleted after a
    short grace delay.
    """

    def __init__(
        self,
        registry: InstanceRegistry,
        record: InstanceRecord,
        store,
        source_factory: Callable[[InstanceConfig], object] = KubeEndpointSource.from_config,
        sleep: Callable[[float], None] = time.sleep,
        cleanup_grace_s: float | None = None,
    ):
        self.registry = registry
        self.name = record.name
        self.token = record.token
        self.store = store
        self.source_factory = source_factory
        self.cleanup_grace_s = settings.cleanup_grace_s if cleanup_grace_s is None else cleanup_grace_s
        self._sleep = sleep
        self._pool = record.pool
        self._source = source_factory(record.config)
        self._thr: Thread | None = None
        self.delete_attempts = 0

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self.run, name=f"reconciler-{self.name}", daemon=True)
        self._thr.start()

    def is_alive(self) -> bool:
        return bool(self._thr and self._thr.is_alive())

    def join(self, timeout: float | None = None) -> None:
        if self._thr:
            self._thr.join(timeout)

    def run(self) -> None:
        record = self._current()
        if record is None:
            return
        log_event("INFO", f"Polling started, every {record.config.poll_interval_s:g}s", self.name, record.pool)
        self.ensure_pool(record)
        while True:
            self._sleep(record.config.poll_interval_s)
            record = self._current()
            if record is None:
                break
            try:
                if record.state is InstanceState.UPDATE_PENDING:
                    record = self._take_update(record)
                self.run_pass(record)
            except Exception as e:
                log_event("ERROR", f"Reconcile pass failed: {type(e).__name__}: {e}", self.name, record.pool)
        log_event("INFO", "Instance removed, stop polling", self.name, self._pool)
        self._cleanup(self._pool)

    def _current(self) -> InstanceRecord | None:
        rec = self.registry.lookup(self.name)
        if rec is None or rec.token != self.token:
            return None
        return rec

    def _take_update(self, record: InstanceRecord) -> InstanceRecord:
        # Build before claiming so a failed build leaves the update pending for the next tick.
        source = self.source_factory(record.config)
        if not self.registry.claim_update(self.name, self.token):
            # Stopped or re-registered between lookup and claim; the next lookup will tell.
            return record
        log_event("INFO", "Configuration updated", self.name, record.pool)
        self._source = source
        if record.pool != self._pool:
            old, self._pool = self._pool, record.pool
            log_event("INFO", f"Pool target changed from {old}, releasing it", self.name, record.pool)
            self._cleanup(old)
            self.ensure_pool(record)
        return record

    def ensure_pool(self, record: InstanceRecord) -> None:
        """Create an empty pool if none exists yet."""
        try:
            if self.store.exists(record.pool):
                return
            self.store.create(record.pool, record.config.pool_config, frozenset())
            log_event("INFO", "Created empty pool", self.name, record.pool)
        except StoreError as e:
            log_event("WARN", f"Could not ensure pool exists: {e}", self.name, record.pool)
        except Exception as e:
            log_event("ERROR", f"Could not ensure pool exists: {type(e).__name__}: {e}", self.name, record.pool)

    def run_pass(self, record: InstanceRecord) -> None:
        """One read-desired / read-observed / diff / apply cycle."""
        pool = record.pool
        try:
            desired = frozenset(self._source.list_endpoints())
        except SourceError as e:
            log_event("WARN", f"Failed to retrieve endpoint list: {e}", self.name, pool)
            return

        try:
            observed = self.store.read_members(pool)
        except StoreError as e:
            log_event("WARN", f"Failed to read pool members: {e}", self.name, pool)
            return

        if observed is None:
            try:
                self.store.create(pool, record.config.pool_config, desired)
                log_event("INFO", f"Pool missing, created with {len(desired)} member(s)", self.name, pool)
            except StoreError as e:
                log_event("ERROR", f"Failed to create pool: {e}", self.name, pool)
            return

        to_add, to_remove = diff_endpoints(desired, observed)
        if to_add:
            try:
                self.store.add_members(pool, to_add)
                log_event("INFO", f"Added members: {_fmt(to_add)}", self.name, pool)
            except StoreError as e:
                log_event("ERROR", f"Failed to add members {_fmt(to_add)}: {e}", self.name, pool)
        if to_remove:
            try:
                self.store.remove_members(pool, to_remove)
                log_event("INFO", f"Removed members: {_fmt(to_remove)}", self.name, pool)
            except StoreError as e:
                log_event("ERROR", f"Failed to remove members {_fmt(to_remove)}: {e}", self.name, pool)

    def _cleanup(self, pool: str) -> None:
        self._sleep(self.cleanup_grace_s)
        owner = self.registry.owner_of(pool)
        if owner is not None:
            log_event("INFO", f"Pool now managed by '{owner}', not deleting", self.name, pool)
            return
        self.delete_attempts += 1
        try:
            if self.store.delete(pool):
                log_event("INFO", "Pool removed", self.name, pool)
            else:
                log_event("INFO", "Pool already absent", self.name, pool)
        except StoreError as e:
            log_event("WARN", f"Delete failed: {e}", self.name, pool)
        except Exception as e:
            log_event("ERROR", f"Delete failed: {type(e).__name__}: {e}", self.name, pool)


def _fmt(endpoints) -> str:
    return "{" + " ".join(str(ep) for ep in sorted(endpoints)) + "}"

from __future__ import annotations

import time
from threading import Lock
from typing import Callable

from .db import log_event
from .k8s import KubeEndpointSource
from .models import InstanceConfig, InstanceRecord
from .reconciler import Reconciler
from .registry import ConflictError, InstanceRegistry


class LifecycleController:
    """Entry points for start / update / stop requests.

    Requests only mutate the registry and make sure a reconciler thread is
    alive for the instance; stopping is fire-and-forget (the reconciler sees
    the missing record on its next tick and cleans up).
    """

    def __init__(
        self,
        store,
        registry: InstanceRegistry | None = None,
        source_factory: Callable[[InstanceConfig], object] = KubeEndpointSource.from_config,
        sleep: Callable[[float], None] = time.sleep,
        cleanup_grace_s: float | None = None,
    ):
        self.store = store
        self.registry = registry or InstanceRegistry()
        self.source_factory = source_factory
        self._sleep = sleep
        self.cleanup_grace_s = cleanup_grace_s
        self._lock = Lock()
        self._loops: dict[str, Reconciler] = {}

    def start(self, config: InstanceConfig) -> InstanceRecord:
        """Register (or update) an instance and make sure it is being polled.

        Raises ConflictError when another instance already manages the pool;
        no reconciler is started in that case.
        """
        try:
            rec = self.registry.register(config)
        except ConflictError as e:
            log_event("ERROR", str(e), config.name, config.pool)
            raise
        log_event("INFO", f"Configuration accepted for {config.namespace}/{config.service_name}", rec.name, rec.pool)
        self._ensure_loop(rec)
        return rec

    def update(self, config: InstanceConfig) -> InstanceRecord | None:
        """Apply new parameters to a known instance; None if the name is unknown."""
        try:
            rec = self.registry.mark_for_update(config.name, config)
        except ConflictError as e:
            log_event("ERROR", str(e), config.name, config.pool)
            raise
        if rec is None:
            return None
        log_event("INFO", "Update pending", rec.name, rec.pool)
        self._ensure_loop(rec)
        return rec

    def stop(self, name: str) -> InstanceRecord | None:
        rec = self.registry.remove(name)
        if rec is not None:
            log_event("INFO", "Stop requested", rec.name, rec.pool)
        return rec

    def get(self, name: str) -> InstanceRecord | None:
        return self.registry.lookup(name)

    def list(self) -> list[InstanceRecord]:
        return self.registry.list()

    def running(self, name: str) -> bool:
        with self._lock:
            loop = self._loops.get(name)
            return bool(loop and loop.is_alive())

    def reconciler(self, name: str) -> Reconciler | None:
        with self._lock:
            return self._loops.get(name)

    def _ensure_loop(self, rec: InstanceRecord) -> Reconciler:
        with self._lock:
            self._prune()
            loop = self._loops.get(rec.name)
            if loop and loop.is_alive() and loop.token == rec.token:
                return loop
            # An alive loop with an older token exits on its own next tick.
            loop = Reconciler(
                self.registry,
                rec,
                self.store,
                source_factory=self.source_factory,
                sleep=self._sleep,
                cleanup_grace_s=self.cleanup_grace_s,
            )
            self._loops[rec.name] = loop
            loop.start()
            return loop

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop every instance and wait for the reconcilers to finish their cleanup."""
        for rec in self.registry.list():
            self.stop(rec.name)
        with self._lock:
            loops = list(self._loops.values())
        for loop in loops:
            loop.join(timeout)
        with self._lock:
            self._prune()

    def _prune(self) -> None:
        # Caller holds the lock.
        for name, loop in list(self._loops.items()):
            if not loop.is_alive():
                del self._loops[name]

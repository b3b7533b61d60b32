from __future__ import annotations

import itertools
from dataclasses import replace
from threading import Lock

from .db import utc_now
from .models import InstanceConfig, InstanceRecord, InstanceState


class ConflictError(Exception):
    """Another instance already manages the requested pool."""

    def __init__(self, pool: str, owner: str):
        super().__init__(f"Pool '{pool}' is already managed by instance '{owner}'.")
        self.pool = pool
        self.owner = owner


class InstanceRegistry:
    """Process-wide table of active instances.

    Every operation holds the same lock, so two concurrent registrations for
    one pool cannot both succeed and an update can be claimed only once.
    Records are immutable snapshots; callers re-read instead of caching.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._records: dict[str, InstanceRecord] = {}
        self._tokens = itertools.count(1)

    def register(self, config: InstanceConfig) -> InstanceRecord:
        """Insert a new instance, or treat a known name as an update.

        Raises ConflictError if another name already owns ``config.pool``.
        """
        with self._lock:
            if config.name in self._records:
                return self._mark_for_update(config.name, config)
            self._check_conflict(config.pool, config.name)
            rec = InstanceRecord(
                name=config.name,
                pool=config.pool,
                state=InstanceState.POLLING,
                config=config,
                token=next(self._tokens),
            )
            self._records[config.name] = rec
            return rec

    def mark_for_update(self, name: str, config: InstanceConfig | None = None) -> InstanceRecord | None:
        """Flag ``name`` as update_pending; no-op (returns None) for unknown names."""
        with self._lock:
            if name not in self._records:
                return None
            return self._mark_for_update(name, config)

    def claim_update(self, name: str, token: int) -> bool:
        """Flip update_pending -> polling. Only one caller per pending update wins."""
        with self._lock:
            rec = self._records.get(name)
            if rec is None or rec.token != token or rec.state is not InstanceState.UPDATE_PENDING:
                return False
            self._records[name] = replace(rec, state=InstanceState.POLLING, updated_at=utc_now())
            return True

    def remove(self, name: str) -> InstanceRecord | None:
        with self._lock:
            rec = self._records.pop(name, None)
            if rec is None:
                return None
            return replace(rec, state=InstanceState.REMOVED, updated_at=utc_now())

    def lookup(self, name: str) -> InstanceRecord | None:
        with self._lock:
            return self._records.get(name)

    def list(self) -> list[InstanceRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.name)

    def conflicts_with(self, pool: str, excluding: str | None = None) -> str | None:
        """Return the name of the instance owning ``pool`` (other than ``excluding``)."""
        with self._lock:
            return self._owner(pool, excluding)

    def owner_of(self, pool: str) -> str | None:
        with self._lock:
            return self._owner(pool, None)

    # -- internals; callers hold the lock --

    def _owner(self, pool: str, excluding: str | None) -> str | None:
        for rec in self._records.values():
            if rec.pool == pool and rec.name != excluding:
                return rec.name
        return None

    def _check_conflict(self, pool: str, name: str) -> None:
        owner = self._owner(pool, name)
        if owner is not None:
            raise ConflictError(pool, owner)

    def _mark_for_update(self, name: str, config: InstanceConfig | None) -> InstanceRecord:
        rec = self._records[name]
        if config is not None:
            if config.pool != rec.pool:
                self._check_conflict(config.pool, name)
            rec = replace(rec, pool=config.pool, config=config)
        rec = replace(rec, state=InstanceState.UPDATE_PENDING, updated_at=utc_now())
        self._records[name] = rec
        return rec

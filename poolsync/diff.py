from __future__ import annotations

from typing import Iterable

from .models import Endpoint


def diff_endpoints(
    desired: Iterable[Endpoint], observed: Iterable[Endpoint]
) -> tuple[frozenset[Endpoint], frozenset[Endpoint]]:
    """Compute the minimal membership change.

    Returns (to_add, to_remove) such that ``observed | to_add - to_remove == desired``.
    An empty ``desired`` removes every observed member; the pool itself stays.
    """
    want = frozenset(desired)
    have = frozenset(observed)
    return want - have, have - want

"""Decides whether a desired attribute value differs from the known one.

Each attribute kind registers its own equality rule: set-like values are
compared as sets, so ordering and duplicates never count as a change.
"""

import logging
from functools import singledispatch
from typing import AbstractSet, Any, Iterable, Optional

from keysync.domain.models.common import ScopeSet, to_scope_set

logger = logging.getLogger(__name__)


@singledispatch
def has_difference(old: Any, new: Any) -> bool:
    """Returns True if new is meaningfully different from old."""
    return old != new


@has_difference.register(frozenset)
@has_difference.register(set)
def _(old: AbstractSet[str], new: Any) -> bool:
    if new is None:
        return bool(old)
    return frozenset(old) != frozenset(new)


@has_difference.register(list)
@has_difference.register(tuple)
def _(old: Iterable[str], new: Any) -> bool:
    # Remote payloads carry scopes as JSON arrays; they are still sets.
    return has_difference(frozenset(old), new)


@has_difference.register(type(None))
def _(old: None, new: Any) -> bool:
    if isinstance(new, (set, frozenset, list, tuple)):
        return bool(new)
    return new is not None


def scopes_payload(known: Optional[Iterable[str]], desired: Optional[Iterable[str]]) -> Optional[ScopeSet]:
    """Returns the scopes an update must send, or None to leave them alone."""
    known_set = to_scope_set(known)
    desired_set = to_scope_set(desired)
    if not has_difference(known_set, desired_set):
        logger.debug("Scopes unchanged, omitting them from the update payload.")
        return None
    logger.debug(f"Scopes changed: +{sorted(desired_set - known_set)} -{sorted(known_set - desired_set)}")
    return desired_set

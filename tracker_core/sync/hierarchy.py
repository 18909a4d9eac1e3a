# =============================================================================
# tracker_core/sync/hierarchy.py
# Recipient Resolution over the Organizational Hierarchy
# =============================================================================
"""
The hierarchy is the manager -> subordinate email relation attached to each
user. Broadcasts of a change go to the acting user (durable audit copy),
their manager and every subordinate on any tier.

HierarchyGraph keeps the same relation as an explicit directed graph keyed
by address, built from the user list. Records never point back at each
other; all navigation goes through the graph.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from tracker_core.models import User, normalize_email


def is_address(value) -> bool:
    """True for strings shaped like ``local@domain``."""
    if not isinstance(value, str):
        return False
    local, sep, domain = value.strip().partition("@")
    return bool(sep and local and domain)


def _clean(value: str) -> str:
    return normalize_email(value)


def resolve_recipients(user: User) -> FrozenSet[str]:
    """
    Compute the addresses that must receive a change made by ``user``.

    Includes the user's own address, the manager address and every
    subordinate address; drops anything that is not an email address.
    An empty result means the change must not be broadcast.
    """
    candidates: List[str] = []
    if user.email:
        candidates.append(user.email)

    hierarchy = user.hierarchy
    if hierarchy is not None:
        if hierarchy.manager_email:
            candidates.append(hierarchy.manager_email)
        for emails in hierarchy.subordinate_tiers().values():
            candidates.extend(emails)

    return frozenset(_clean(c) for c in candidates if is_address(c))


class HierarchyGraph:
    """
    Directed manager -> subordinate relation with lookup by address.

    Usage:
        graph = HierarchyGraph.from_users(store.get_users())
        graph.manager_of("se@acme.com")       # "rsm@acme.com"
        graph.reports_under("rsm@acme.com")   # every address below the RSM
    """

    def __init__(self):
        self._subordinates: Dict[str, Set[str]] = defaultdict(set)
        self._managers: Dict[str, Set[str]] = defaultdict(set)

    def add_edge(self, manager: str, subordinate: str) -> None:
        if not (is_address(manager) and is_address(subordinate)):
            return
        manager, subordinate = _clean(manager), _clean(subordinate)
        if manager == subordinate:
            return
        self._subordinates[manager].add(subordinate)
        self._managers[subordinate].add(manager)

    @classmethod
    def from_users(cls, users: Iterable[User]) -> HierarchyGraph:
        graph = cls()
        for user in users:
            hierarchy = user.hierarchy
            if hierarchy is None or not is_address(user.email):
                continue
            if hierarchy.manager_email:
                graph.add_edge(hierarchy.manager_email, user.email)
            for emails in hierarchy.subordinate_tiers().values():
                for email in emails:
                    graph.add_edge(user.email, email)
        return graph

    def manager_of(self, email: str) -> Optional[str]:
        """The manager address, or None. Multiple managers resolve to the first sorted."""
        managers = self._managers.get(_clean(email))
        return min(managers) if managers else None

    def subordinates_of(self, email: str) -> FrozenSet[str]:
        return frozenset(self._subordinates.get(_clean(email), ()))

    def reports_under(self, email: str) -> FrozenSet[str]:
        """Every address reachable below ``email``; cycles are tolerated."""
        seen: Set[str] = set()
        stack = [_clean(email)]
        while stack:
            current = stack.pop()
            for sub in self._subordinates.get(current, ()):
                if sub not in seen:
                    seen.add(sub)
                    stack.append(sub)
        seen.discard(_clean(email))
        return frozenset(seen)

    def __contains__(self, email: str) -> bool:
        email = _clean(email)
        return email in self._subordinates or email in self._managers

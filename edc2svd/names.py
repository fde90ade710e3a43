"""Identifier sanitization with one registry per naming scope.

A name is resolved from (scope, proposed name, names already claimed in
that scope). Names are unique without regard to case; a name differing from
an earlier one only by case gets a numeric suffix. Re-using an identical
name is only allowed for an exact duplicate, which the caller then drops.
"""
from __future__ import annotations

import re
from typing import Hashable

from edc2svd.errors import UnresolvableNameCollision

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_INVALID = re.compile(r"[^A-Za-z0-9_]")


def sanitize(name: str) -> str:
    s = _INVALID.sub("_", name.strip())
    if not s or s[0].isdigit():
        s = "_" + s
    return s


def resolve_name(scope: str, proposed: str, content: Hashable,
                 claimed: dict[str, Hashable], taken: set[str]):
    """Return (final name, is_duplicate) without touching the history."""
    s = sanitize(proposed)
    if s in claimed:
        if claimed[s] == content:
            return s, True
        raise UnresolvableNameCollision(scope, s)
    candidate, n = s, 0
    while candidate.casefold() in taken:
        n += 1
        candidate = f"{s}_{n}"
    return candidate, False


class NameRegistry:
    def __init__(self, scope: str):
        self.scope = scope
        self._claimed: dict[str, Hashable] = {}
        self._taken: set[str] = set()

    def claim(self, proposed: str, content: Hashable):
        """Claim a name in this scope; returns None for an exact duplicate."""
        name, duplicate = resolve_name(self.scope, proposed, content,
                                       self._claimed, self._taken)
        if duplicate:
            return None
        self._claimed[sanitize(proposed)] = content
        self._taken.add(name.casefold())
        return name

    def __contains__(self, name: str) -> bool:
        return name.casefold() in self._taken

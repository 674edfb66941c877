"""
Dependency validation for data permission grants.

A permission may declare prerequisite keys in `requires`. Granting it is
only allowed when the user already holds every prerequisite as an active
data grant in the same company. Only direct prerequisites are checked;
their own prerequisites were checked when they were granted.
"""
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Mapping, Optional, Sequence

from entitlements.features.catalog.models import Permission


@dataclass(frozen=True)
class DependencyCheck:
    ok: bool
    missing: List[str] = field(default_factory=list)


def validate(permission: Permission, granted_keys: Collection[str]) -> DependencyCheck:
    """
    Check `permission.requires` against the keys the user holds.

    Every missing key is reported, in the order the permission declares them.
    """
    missing = [key for key in (permission.requires or []) if key not in granted_keys]
    return DependencyCheck(ok=not missing, missing=missing)


def find_dependency_cycle(requires_by_key: Mapping[str, Sequence[str]]) -> Optional[List[str]]:
    """
    Return the first dependency cycle as a key path (first key repeated at
    the end), or None when the graph is acyclic.

    Keys referenced but not present in the mapping are treated as leaves.
    """
    visiting, done = set(), set()
    path: List[str] = []

    def visit(key: str) -> Optional[List[str]]:
        if key in done:
            return None
        if key in visiting:
            return path[path.index(key):] + [key]
        visiting.add(key)
        path.append(key)
        for dep in requires_by_key.get(key, ()):
            cycle = visit(dep)
            if cycle:
                return cycle
        path.pop()
        visiting.discard(key)
        done.add(key)
        return None

    for key in sorted(requires_by_key):
        cycle = visit(key)
        if cycle:
            return cycle
    return None


def requires_map(permissions: Sequence[Permission]) -> Dict[str, List[str]]:
    return {p.permission_key: list(p.requires or []) for p in permissions}

"""
Transitive-closure view of the containment hierarchy.

Ancestor sets are computed once, in topological order, so ``is_ancestor``
is a set membership test afterwards.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable

from gazetteer_geo.errors import HierarchyCycleError

_EMPTY: frozenset[int] = frozenset()


class HierarchyIndex:
    def __init__(self, edges: Iterable[tuple[int, int]]):
        parents: dict[int, set[int]] = {}
        children: dict[int, set[int]] = {}
        edge_count = 0
        for parent_id, child_id in edges:
            parents.setdefault(child_id, set()).add(parent_id)
            children.setdefault(parent_id, set()).add(child_id)
            edge_count += 1

        self._parents = {k: frozenset(v) for k, v in parents.items()}
        self._children = {k: frozenset(v) for k, v in children.items()}
        self._edge_count = edge_count
        self._ancestors = self._close(parents, children)

        descendants: dict[int, set[int]] = {}
        for node, ancestors in self._ancestors.items():
            for ancestor in ancestors:
                descendants.setdefault(ancestor, set()).add(node)
        self._descendants = {k: frozenset(v) for k, v in descendants.items()}

    @staticmethod
    def _close(parents: dict[int, set[int]], children: dict[int, set[int]]) -> dict[int, frozenset[int]]:
        nodes = set(parents) | set(children)
        pending = {n: len(parents.get(n, ())) for n in nodes}
        queue = deque(sorted(n for n, count in pending.items() if count == 0))
        closure: dict[int, frozenset[int]] = {}

        while queue:
            node = queue.popleft()
            acc: set[int] = set()
            for parent in parents.get(node, ()):
                acc.add(parent)
                acc |= closure[parent]
            closure[node] = frozenset(acc)
            for child in sorted(children.get(node, ())):
                pending[child] -= 1
                if pending[child] == 0:
                    queue.append(child)

        if len(closure) != len(nodes):
            # Store validation should make this unreachable
            stuck = min(n for n in nodes if n not in closure)
            raise HierarchyCycleError(min(parents[stuck]), stuck)
        return closure

    def __len__(self) -> int:
        return self._edge_count

    def is_ancestor(self, ancestor_id: int, place_id: int) -> bool:
        return ancestor_id in self._ancestors.get(place_id, _EMPTY)

    def ancestors(self, place_id: int) -> frozenset[int]:
        return self._ancestors.get(place_id, _EMPTY)

    def descendants(self, place_id: int) -> frozenset[int]:
        return self._descendants.get(place_id, _EMPTY)

    def parents(self, place_id: int) -> frozenset[int]:
        return self._parents.get(place_id, _EMPTY)

    def children(self, place_id: int) -> frozenset[int]:
        return self._children.get(place_id, _EMPTY)

    def related(self, a: int, b: int) -> bool:
        """Ancestor, descendant or sibling under a shared direct parent."""
        if a == b:
            return False
        if self.is_ancestor(a, b) or self.is_ancestor(b, a):
            return True
        return bool(self.parents(a) & self.parents(b))

"""
In-memory snapshot of the active-edge subgraph.

Listing ids are mapped onto a dense arena of indices with one adjacency list per
index, built from a single consistent read of the active edges. Cycle search is
an iterative depth-first traversal with a visited set, so each listing is expanded
at most once and the walk is bounded by the number of listings in the arena.
"""

from typing import Iterable, Optional


class ActiveGraph:
    def __init__(self, pairs: Iterable[tuple[int, int]] = ()):
        self._index: dict[int, int] = {}
        self._ids: list[int] = []
        self._adjacency: list[list[int]] = []
        for source, target in pairs:
            self.add_edge(source, target)

    def _slot(self, listing_id: int) -> int:
        slot = self._index.get(listing_id)
        if slot is None:
            slot = len(self._ids)
            self._index[listing_id] = slot
            self._ids.append(listing_id)
            self._adjacency.append([])
        return slot

    def add_edge(self, source: int, target: int) -> None:
        self._adjacency[self._slot(source)].append(self._slot(target))

    @property
    def node_count(self) -> int:
        return len(self._ids)

    def successors(self, listing_id: int) -> list[int]:
        slot = self._index.get(listing_id)
        if slot is None:
            return []
        return [self._ids[s] for s in self._adjacency[slot]]

    def find_path(self, start: int, goal: int, limit: Optional[int] = None) -> Optional[list[int]]:
        """Listing ids on a path start -> ... -> goal following active edges, or None."""
        if start not in self._index or goal not in self._index:
            return None
        if start == goal:
            return [start]

        bound = self.node_count if limit is None else max(limit, 1)
        start_slot = self._index[start]
        goal_slot = self._index[goal]

        visited = [False] * self.node_count
        visited[start_slot] = True
        # (slot, position of the next successor to try)
        stack: list[tuple[int, int]] = [(start_slot, 0)]
        expanded = 1

        while stack:
            slot, position = stack[-1]
            successors = self._adjacency[slot]
            if position >= len(successors):
                stack.pop()
                continue
            stack[-1] = (slot, position + 1)
            nxt = successors[position]
            if nxt == goal_slot:
                return [self._ids[s] for s, _ in stack] + [goal]
            if visited[nxt]:
                continue
            visited[nxt] = True
            expanded += 1
            if expanded > bound:
                raise RuntimeError(f"graph traversal exceeded its bound of {bound} listings")
            stack.append((nxt, 0))
        return None

    def cycle_if_added(self, source: int, target: int, limit: Optional[int] = None) -> Optional[list[int]]:
        """
        The cycle that adding source -> target would close, listed from the
        target round to the source, e.g. [A, B, C] for C -> A over A -> B -> C.
        """
        if source == target:
            return [source]
        return self.find_path(target, source, limit)

    def find_cycle(self) -> Optional[list[int]]:
        """Any cycle already present in the graph (used to audit invariants)."""
        WHITE, GREY, BLACK = 0, 1, 2
        color = [WHITE] * self.node_count
        for root in range(self.node_count):
            if color[root] != WHITE:
                continue
            color[root] = GREY
            stack: list[tuple[int, int]] = [(root, 0)]
            while stack:
                slot, position = stack[-1]
                successors = self._adjacency[slot]
                if position >= len(successors):
                    color[slot] = BLACK
                    stack.pop()
                    continue
                stack[-1] = (slot, position + 1)
                nxt = successors[position]
                if color[nxt] == GREY:
                    path = [s for s, _ in stack]
                    return [self._ids[s] for s in path[path.index(nxt):]]
                if color[nxt] == WHITE:
                    color[nxt] = GREY
                    stack.append((nxt, 0))
        return None

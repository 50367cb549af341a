"""Connected-component extraction over the similarity graph."""
from __future__ import annotations

from collections import deque
from typing import List, Optional, Sequence

from backend.app.cancellation import CancellationToken, check_cancelled

from .graph import SimilarityGraph


class ClusterFinder:
    """Group terms reachable through similarity links."""

    def find(
        self,
        graph: SimilarityGraph,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[List[int]]:
        """Return the connected components holding more than one term.

        Components are emitted in discovery order, starting from the lowest
        unvisited index; members are listed in BFS order.
        """

        return components(graph.adjacency, cancel_token=cancel_token)


def components(
    adjacency: Sequence[Sequence[int]],
    *,
    cancel_token: Optional[CancellationToken] = None,
) -> List[List[int]]:
    """Breadth-first connected components of an adjacency list, singletons dropped."""

    visited = [False] * len(adjacency)
    groups: List[List[int]] = []
    for start in range(len(adjacency)):
        if visited[start]:
            continue
        check_cancelled(cancel_token)
        visited[start] = True
        queue = deque([start])
        group: List[int] = []
        while queue:
            current = queue.popleft()
            group.append(current)
            for neighbor in adjacency[current]:
                if not visited[neighbor]:
                    visited[neighbor] = True
                    queue.append(neighbor)
        if len(group) > 1:
            groups.append(group)
    return groups

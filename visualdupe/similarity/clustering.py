"""
Threshold clustering over a similarity matrix.

Treats every off-diagonal score at or above the threshold as an edge and
returns the connected components with more than one member.
"""

from __future__ import annotations

from typing import Sequence, TypeVar

import numpy as np

from ..config import COMBINED_THRESHOLD

T = TypeVar('T')


def find_similar_clusters(matrix, threshold: float = COMBINED_THRESHOLD) -> list[list[int]]:
    """
    Find connected components of the "similar enough" graph.

    Args:
        matrix: SimilarityMatrix or square array
        threshold: Minimum score for two images to be connected

    Returns:
        Clusters of row indices, each sorted ascending, ordered by their
        smallest member. Singletons are dropped.
    """
    values = np.asarray(getattr(matrix, 'values', matrix))
    n = values.shape[0]
    adjacency = values >= threshold
    np.fill_diagonal(adjacency, False)

    visited = [False] * n
    clusters: list[list[int]] = []

    for start in range(n):
        if visited[start]:
            continue

        # Iterative depth-first traversal
        component = []
        stack = [start]
        visited[start] = True
        while stack:
            node = stack.pop()
            component.append(node)
            for neighbor in np.flatnonzero(adjacency[node]):
                if not visited[neighbor]:
                    visited[neighbor] = True
                    stack.append(int(neighbor))

        if len(component) > 1:
            clusters.append(sorted(component))

    return clusters


def clusters_to_groups(clusters: list[list[int]], items: Sequence[T]) -> list[tuple[T, ...]]:
    """Map index clusters onto the items they index."""
    return [tuple(items[index] for index in cluster) for cluster in clusters]


__all__ = ['find_similar_clusters', 'clusters_to_groups']

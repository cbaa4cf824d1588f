# cohort_scheduler/cohorts.py
import logging
from typing import Dict, List, Tuple

from .model import Cohort, Participant

logger = logging.getLogger(__name__)


class _DisjointSets:
    """Union-find by size with path compression over integer nodes."""

    def __init__(self, n: int, max_size: int):
        self.parent = list(range(n))
        self.size = [1] * n
        self.max_size = max_size

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> bool:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        if self.size[ra] + self.size[rb] > self.max_size:
            return False
        if self.size[ra] < self.size[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        self.size[ra] += self.size[rb]
        return True


def find_cohorts(
    participants: List[Participant],
    max_cohort_size: int,
    min_weight: float = 1,
) -> List[Cohort]:
    """
    Group participants along their strongest peer links.

    Edges with weight >= `min_weight` are processed from heaviest to lightest
    (ties keep discovery order) and joined greedily; a union that would
    produce a cohort larger than `max_cohort_size` is skipped for good.
    Returns every participant exactly once, largest cohorts first.
    """
    if max_cohort_size < 1:
        raise ValueError("max_cohort_size must be >= 1")

    ids: List[str] = []
    index: Dict[str, int] = {}
    for p in participants:
        if p.id in index:
            logger.warning("Duplicate participant id %r ignored by cohort detection", p.id)
            continue
        index[p.id] = len(ids)
        ids.append(p.id)

    edges: List[Tuple[float, int, int]] = []
    seen = set()
    for p in participants:
        if p.id in seen:
            continue
        seen.add(p.id)
        src = index[p.id]
        for pref in p.peer_preferences:
            if pref.weight < min_weight or pref.peer == p.id:
                continue
            dst = index.get(pref.peer)
            if dst is None:
                continue
            edges.append((pref.weight, src, dst))
    edges.sort(key=lambda e: -e[0])  # stable

    sets = _DisjointSets(len(ids), max_cohort_size)
    for _, a, b in edges:
        sets.union(a, b)

    groups: Dict[int, Cohort] = {}
    for i, pid in enumerate(ids):
        groups.setdefault(sets.find(i), []).append(pid)
    return sorted(groups.values(), key=len, reverse=True)

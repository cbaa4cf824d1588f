# cohort_scheduler/similarity.py
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import numpy as np

from .errors import ErrorKind
from .model import FamilyClusters, Schedule, ScheduleInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Similarity:
    assignment_similarity: float
    cohort_similarity: float
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def combined(self) -> float:
        return self.assignment_similarity + self.cohort_similarity


@dataclass
class ClusterInfo:
    reference: str
    members: Set[str]
    infos: List[ScheduleInfo] = field(default_factory=list)
    average_score: float = 0.0
    best_score: float = float("-inf")
    best: Optional[ScheduleInfo] = None


def _groups(schedule: Schedule) -> Dict[str, Set[str]]:
    groups: Dict[str, Set[str]] = {}
    for a in schedule:
        groups.setdefault(a.activity, set()).add(a.participant)
    return groups


def cohort_similarity(a: Schedule, b: Schedule) -> float:
    """Mean over `a`'s activity groups of their best Jaccard overlap in `b`."""
    groups_a = list(_groups(a).values())
    groups_b = list(_groups(b).values())
    if not groups_a:
        return 0.0
    total = 0.0
    for ga in groups_a:
        best = 0.0
        for gb in groups_b:
            inter = len(ga & gb)
            union = len(ga) + len(gb) - inter
            if union:
                best = max(best, inter / union)
        total += best
    return total / len(groups_a)


def compare_schedules(a: Schedule, b: Schedule) -> Similarity:
    """
    Similarity of two schedules over the same participants. A population
    mismatch is reported in the result, never raised. Inputs are not touched.
    """
    first = sorted(a, key=lambda x: x.participant)
    second = sorted(b, key=lambda x: x.participant)
    people_a = [x.participant for x in first]
    people_b = [x.participant for x in second]
    if people_a != people_b:
        message = f"schedules cover different participants ({len(people_a)} vs {len(people_b)})"
        return Similarity(0.0, 0.0, ErrorKind.MISMATCHED_POPULATION, message)
    if not first:
        return Similarity(1.0, 1.0)

    same = np.array([x.activity == y.activity for x, y in zip(first, second)])
    return Similarity(float(same.mean()), cohort_similarity(first, second))


def map_family_clusters(
    threshold: float,
    schedules: List[ScheduleInfo],
    existing_clusters: Optional[FamilyClusters] = None,
    reference_schedules: List[ScheduleInfo] = (),
) -> FamilyClusters:
    """
    Put each schedule in the family whose representative is most similar
    (assignment + cohort similarity >= `threshold`), or start a new family.
    Returns a new mapping; `existing_clusters` is not modified.
    """
    clusters: FamilyClusters = {ref: set(members) for ref, members in (existing_clusters or {}).items()}
    known: Dict[str, ScheduleInfo] = {info.canonical_id: info for info in reference_schedules}
    for info in schedules:
        known[info.canonical_id] = info

    for info in schedules:
        best_ref, best_score = None, None
        for ref in clusters:
            reference = known.get(ref)
            if reference is None:
                logger.warning("no schedule for family representative %s", ref)
                continue
            similarity = compare_schedules(list(info.schedule), list(reference.schedule))
            if similarity.error is not None:
                continue
            score = similarity.combined
            if score >= threshold and (best_score is None or score > best_score):
                best_ref, best_score = ref, score
        if best_ref is not None:
            clusters[best_ref].add(info.canonical_id)
        else:
            clusters[info.canonical_id] = {info.canonical_id}
    return clusters


def build_cluster_info(clusters: FamilyClusters, schedules: List[ScheduleInfo]) -> List[ClusterInfo]:
    by_id = {info.canonical_id: info for info in schedules}
    out: List[ClusterInfo] = []
    for ref, members in clusters.items():
        infos = [by_id[m] for m in members if m in by_id]
        if not infos:
            continue
        best = max(infos, key=lambda i: i.score)
        out.append(ClusterInfo(
            reference=ref,
            members=set(members),
            infos=infos,
            average_score=float(np.mean([i.score for i in infos])),
            best_score=best.score,
            best=best,
        ))
    out.sort(key=lambda c: -c.best_score)
    return out

# cohort_scheduler/peer_heuristics.py
"""Heuristics driven by peer relationships: friendships and forbidden pairs."""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from .config import RELOCATION_IMPROVE_ITERATIONS
from .errors import InfeasibleError
from .heuristics import assign_by_peer, check_known_activities, prepare_preferences
from .improve import improve_schedule
from .model import Activity, Assignment, Participant, Schedule, as_mapping, participant_lookup

CONFLICT_PENALTY = 20000
NO_ACTIVITY_PENALTY = 800
NO_PEER_PENALTY = 800
ACTIVITY_WEIGHT_GAP_MULTIPLIER = 5
MISSING_PEER_WEIGHT = 200

ConflictGraph = Dict[str, Set[str]]


def build_conflict_graph(participants: List[Participant]) -> ConflictGraph:
    """Symmetric graph of negative-weight peer pairs between known participants."""
    known = {p.id for p in participants}
    graph: ConflictGraph = {pid: set() for pid in known}
    for p in participants:
        for pref in p.peer_preferences:
            if pref.weight >= 0 or pref.peer not in known or pref.peer == p.id:
                continue
            graph[p.id].add(pref.peer)
            graph[pref.peer].add(p.id)
    return graph


def conflict_count(graph: ConflictGraph, pid: str, roster: Iterable[str]) -> int:
    conflicts = graph.get(pid)
    if not conflicts:
        return 0
    return sum(1 for other in roster if other in conflicts)


def _rosters(activities: List[Activity]) -> Dict[str, Set[str]]:
    return {a.id: set() for a in activities}


def assign_avoid_forbidden(participants: List[Participant], activities: List[Activity]) -> Schedule:
    """
    Most-conflicted participants go first; each takes the activity with the
    fewest forbidden peers, then most friends, then highest preference, then
    most capacity.
    """
    check_known_activities(participants, activities)
    prepared, _ = prepare_preferences(participants, activities)
    graph = build_conflict_graph(prepared)
    free = {a.id: a.capacity for a in activities}
    rosters = _rosters(activities)
    assigned: Dict[str, str] = {}

    order = sorted(
        prepared,
        key=lambda p: (-len(graph.get(p.id, ())), -len(p.positive_peers())),
    )
    for p in order:
        if p.id in assigned:
            continue
        friends = [pref.peer for pref in p.positive_peers()]
        options = [
            (
                conflict_count(graph, p.id, rosters[a.id]),
                -sum(1 for f in friends if f in rosters[a.id]),
                -p.activity_weight(a.id),
                -a.capacity,
                a.id,
            )
            for a in activities if free[a.id] > 0
        ]
        if not options:
            raise InfeasibleError(p.id)
        target = min(options, key=lambda o: o[:4])[4]
        assigned[p.id] = target
        free[target] -= 1
        rosters[target].add(p.id)
    return [Assignment(pid, act) for pid, act in assigned.items()]


@dataclass
class _Placement:
    activity: str
    penalty: float
    weight: float
    peer_matches: int


def _evaluate_placement(p: Participant, activity: str, roster: Set[str], graph: ConflictGraph) -> _Placement:
    penalty = conflict_count(graph, p.id, roster) * CONFLICT_PENALTY

    preferred = [pref.weight for pref in p.activity_preferences if pref.weight > 0]
    selected = p.activity_weight(activity)
    if preferred and selected <= 0:
        penalty += NO_ACTIVITY_PENALTY

    friends = p.positive_peers()
    matches = sum(1 for f in friends if f.peer in roster)
    if friends and matches == 0:
        penalty += NO_PEER_PENALTY
    penalty += (len(friends) - matches) * MISSING_PEER_WEIGHT

    gap = max(max(preferred, default=0) - max(selected, 0), 0)
    penalty += gap * ACTIVITY_WEIGHT_GAP_MULTIPLIER
    penalty -= max(selected, 0)
    return _Placement(activity, penalty, selected, matches)


def _riskiest(
    prepared: List[Participant],
    unassigned: Set[str],
    activities: List[Activity],
    free: Dict[str, int],
    rosters: Dict[str, Set[str]],
    graph: ConflictGraph,
):
    # The participant whose best option is worst goes next.
    chosen: Optional[Participant] = None
    chosen_best: Optional[_Placement] = None
    for p in prepared:
        if p.id not in unassigned:
            continue
        options = [
            _evaluate_placement(p, a.id, rosters[a.id], graph)
            for a in activities if free[a.id] > 0
        ]
        if not options:
            continue
        best = min(options, key=lambda e: (e.penalty, -e.peer_matches, -e.weight))
        if chosen is None or best.penalty > chosen_best.penalty:
            chosen, chosen_best = p, best
        elif best.penalty == chosen_best.penalty and len(graph[p.id]) > len(graph[chosen.id]):
            chosen, chosen_best = p, best
    return chosen, chosen_best


def assign_penalty_first(participants: List[Participant], activities: List[Activity]) -> Schedule:
    """
    Seat the highest-risk participant next at their least-penalized
    activity, dragging along unseated friends who have no conflict there.
    A bounded post-pass moves or swaps friendless participants into a
    friend's activity when that creates no conflict.
    """
    check_known_activities(participants, activities)
    prepared, _ = prepare_preferences(participants, activities)
    lookup = participant_lookup(prepared)
    prepared = list(lookup.values())
    graph = build_conflict_graph(prepared)
    capacity = {a.id: a.capacity for a in activities}
    free = dict(capacity)
    rosters = _rosters(activities)
    assigned: Dict[str, str] = {}
    unassigned = {p.id for p in prepared}

    def seat(pid: str, activity: str) -> None:
        assigned[pid] = activity
        unassigned.discard(pid)
        rosters[activity].add(pid)
        free[activity] -= 1

    while unassigned:
        p, placement = _riskiest(prepared, unassigned, activities, free, rosters, graph)
        if p is None:
            raise InfeasibleError(sorted(unassigned)[0])
        seat(p.id, placement.activity)
        for pref in p.ranked_peers():
            if pref.weight <= 0 or free[placement.activity] <= 0:
                break
            if pref.peer not in unassigned:
                continue
            if conflict_count(graph, pref.peer, rosters[placement.activity]) > 0:
                continue
            seat(pref.peer, placement.activity)

    changed = True
    passes = 0
    while changed and passes < max(len(prepared), 1):
        passes += 1
        changed = False
        for p in prepared:
            if _realign_friendless(p, assigned, rosters, capacity, graph, lookup):
                changed = True
    return [Assignment(pid, act) for pid, act in assigned.items()]


def _realign_friendless(p, assigned, rosters, capacity, graph, lookup) -> bool:
    current = assigned[p.id]
    here = rosters[current]
    friends = p.positive_peers()
    if not friends or any(f.peer in here for f in friends):
        return False

    for pref in friends:
        target = assigned.get(pref.peer)
        if target is None or target == current:
            continue
        there = rosters[target]
        if conflict_count(graph, p.id, there) > 0:
            continue
        if len(there) < capacity[target]:
            here.discard(p.id)
            there.add(p.id)
            assigned[p.id] = target
            return True
        for other_id in list(there):
            if other_id == pref.peer:
                continue
            other = lookup.get(other_id)
            if other is None or conflict_count(graph, other_id, here) > 0:
                continue
            if any(f.peer in there for f in other.positive_peers()):
                continue
            if other.activity_weight(target) > other.activity_weight(current):
                continue
            there.discard(other_id)
            there.add(p.id)
            here.discard(p.id)
            here.add(other_id)
            assigned[p.id] = target
            assigned[other_id] = current
            return True
    return False


def _mutual_clusters(participants: List[Participant]) -> List[List[Participant]]:
    lookup = participant_lookup(participants)
    visited: Set[str] = set()
    clusters = []
    for p in participants:
        if p.id in visited:
            continue
        visited.add(p.id)
        stack = [p]
        cluster = []
        while stack:
            current = stack.pop()
            cluster.append(current)
            for pref in current.positive_peers():
                peer = lookup.get(pref.peer)
                if peer is None or peer.id in visited:
                    continue
                if peer.peer_weight(current.id) <= 0:
                    continue
                visited.add(peer.id)
                stack.append(peer)
        if len(cluster) > 1:
            clusters.append(cluster)
    clusters.sort(key=len, reverse=True)
    return clusters


def _best_activity_for_group(group, activities, free) -> Optional[str]:
    best, best_score = None, None
    for a in activities:
        if free[a.id] < len(group):
            continue
        score = sum(p.activity_weight(a.id) for p in group)
        if best_score is None or score > best_score:
            best, best_score = a.id, score
    return best


def assign_mutual_peers_first(participants: List[Participant], activities: List[Activity]) -> Schedule:
    """Peer-first, then move each reciprocal-friendship cluster together."""
    base = assign_by_peer(participants, activities)
    assigned = as_mapping(base)
    free = {a.id: a.capacity for a in activities}
    for act in assigned.values():
        free[act] -= 1

    for cluster in _mutual_clusters(participants):
        current = {assigned[p.id] for p in cluster}
        if len(current) == 1:
            continue
        for p in cluster:
            free[assigned[p.id]] += 1
        target = _best_activity_for_group(cluster, activities, free)
        if target is None:
            for p in cluster:
                free[assigned[p.id]] -= 1
            continue
        for p in cluster:
            assigned[p.id] = target
        free[target] -= len(cluster)

    schedule = [Assignment(p.id, assigned[p.id]) for p in participant_lookup(participants).values()]
    return improve_schedule(schedule, participants, activities, RELOCATION_IMPROVE_ITERATIONS)


def assign_find_a_friend(participants: List[Participant], activities: List[Activity]) -> Schedule:
    """
    Peer-first, then participants with the fewest friendship options who sit
    with no friend move to their strongest friend's activity if it has room.
    """
    base = assign_by_peer(participants, activities)
    lookup = participant_lookup(participants)
    assigned = as_mapping(base)
    capacity = {a.id: a.capacity for a in activities}
    rosters = _rosters(activities)
    for pid, act in assigned.items():
        rosters[act].add(pid)

    def scarcity(p: Participant) -> int:
        mutual = 0
        for pref in p.positive_peers():
            peer = lookup.get(pref.peer)
            if peer is not None and peer.peer_weight(p.id) > 0:
                mutual += 1
        return mutual * 100 + len(p.peer_preferences)

    for p in sorted(lookup.values(), key=scarcity):
        current = assigned[p.id]
        if any(f.peer in rosters[current] for f in p.positive_peers()):
            continue
        for pref in p.ranked_peers():
            if pref.weight <= 0:
                break
            target = assigned.get(pref.peer)
            if target is None or target == current:
                continue
            if len(rosters[target]) < capacity[target]:
                rosters[current].discard(p.id)
                rosters[target].add(p.id)
                assigned[p.id] = target
                break

    schedule = [Assignment(pid, assigned[pid]) for pid in lookup]
    return improve_schedule(schedule, participants, activities, RELOCATION_IMPROVE_ITERATIONS)

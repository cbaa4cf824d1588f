"""
Recombination and mutation operators.

Every merge aligns its parents by participant id, builds one child by picking
from the parents with its own rule, and hands the child to `repair_schedule`
so the result is feasible (or raises `InfeasibleError`).
"""
import random
from typing import Callable, Dict, List, Optional, Set

import numpy as np

from .config import ESCAPE_MAX_RATE, ESCAPE_MIN_RATE
from .evaluation import compute_happiness
from .model import (
    Activity,
    Assignment,
    Participant,
    Schedule,
    from_mapping,
    participant_lookup,
)
from .repair import repair_schedule

MergeFn = Callable[..., Schedule]


def _parent_maps(schedules: List[Schedule]) -> List[Dict[str, str]]:
    if len(schedules) < 2:
        raise ValueError("merging needs at least two schedules")
    maps = []
    for schedule in schedules:
        mapping: Dict[str, str] = {}
        for a in schedule:
            mapping.setdefault(a.participant, a.activity)
        maps.append(mapping)
    population = set(maps[0])
    if any(set(m) != population for m in maps[1:]):
        raise ValueError("schedules to merge must cover the same participants")
    return maps


class _Child:
    def __init__(self, activities: List[Activity]):
        self.capacity = {a.id: a.capacity for a in activities}
        self.used = {a.id: 0 for a in activities}
        self.assigned: Dict[str, str] = {}

    def known(self, activity: Optional[str]) -> bool:
        return activity is not None and activity in self.capacity

    def remaining(self, activity: str) -> int:
        return self.capacity[activity] - self.used[activity]

    def place(self, pid: str, activity: str) -> None:
        self.assigned[pid] = activity
        self.used[activity] += 1

    def repaired(self, participants, activities) -> Schedule:
        return repair_schedule(from_mapping(self.assigned), participants, activities)


def _candidate_score(p: Optional[Participant], activity: str, assigned: Dict[str, str]) -> float:
    if p is None:
        return 0.0
    score = p.activity_weight(activity)
    for pref in p.positive_peers():
        if assigned.get(pref.peer) == activity:
            score += pref.weight
    return score


def _pick_best(pid, candidates, child: _Child, lookup, require_room: bool = False) -> str:
    scored = sorted(
        candidates,
        key=lambda act: (
            -_candidate_score(lookup.get(pid), act, child.assigned),
            -child.remaining(act),
            act,
        ),
    )
    if require_room:
        viable = [act for act in scored if child.remaining(act) > 0]
        if viable:
            return viable[0]
    return scored[0]


def _unique_candidates(pid: str, maps: List[Dict[str, str]], child: _Child) -> List[str]:
    out: List[str] = []
    for m in maps:
        act = m.get(pid)
        if child.known(act) and act not in out:
            out.append(act)
    return out


def merge_random(schedules, participants, activities, rng: Optional[random.Random] = None) -> Schedule:
    rng = rng or random.Random()
    maps = _parent_maps(schedules)
    child = _Child(activities)
    for pid in sorted(maps[0]):
        act = rng.choice(maps).get(pid)
        if child.known(act):
            child.place(pid, act)
    return child.repaired(participants, activities)


def merge_smart(schedules, participants, activities, rng=None) -> Schedule:
    """Where parents disagree, keep the option that scores best given the child so far."""
    maps = _parent_maps(schedules)
    lookup = participant_lookup(participants)
    child = _Child(activities)
    for pid in sorted(lookup):
        candidates = _unique_candidates(pid, maps, child)
        if not candidates:
            continue
        child.place(pid, _pick_best(pid, candidates, child, lookup))
    return child.repaired(participants, activities)


def merge_agreement_first(schedules, participants, activities, rng=None) -> Schedule:
    """Seat everyone the parents agree on, then settle the rest like the smart merge."""
    maps = _parent_maps(schedules)
    lookup = participant_lookup(participants)
    child = _Child(activities)
    ids = sorted(lookup)
    for pid in ids:
        picks = {m.get(pid) for m in maps}
        if len(picks) == 1:
            act = picks.pop()
            if child.known(act):
                child.place(pid, act)
    for pid in ids:
        if pid in child.assigned:
            continue
        candidates = _unique_candidates(pid, maps, child)
        if candidates:
            child.place(pid, _pick_best(pid, candidates, child, lookup, require_room=True))
    return child.repaired(participants, activities)


def _build_chunk(seed: str, activity: str, parent: Dict[str, str], remaining: int,
                 lookup: Dict[str, Participant], pending: Set[str]) -> List[str]:
    # seed plus its friends that the parent already put in the same activity
    p = lookup.get(seed)
    if remaining <= 0 or p is None:
        return [seed]
    friends = []
    for pref in p.positive_peers():
        if pref.peer not in pending or pref.peer == seed or parent.get(pref.peer) != activity:
            continue
        other = lookup.get(pref.peer)
        back = other.peer_weight(seed) if other is not None else 0
        friends.append((pref.weight + max(0, back), pref.peer))
    friends.sort(key=lambda f: (-f[0], f[1]))
    chunk = [seed]
    for _, pid in friends:
        if len(chunk) >= remaining:
            break
        if pid not in chunk:
            chunk.append(pid)
    return chunk


def _fill_leftovers(child: _Child, pending: Set[str], maps) -> None:
    for pid in sorted(pending):
        act = next((m.get(pid) for m in maps if child.known(m.get(pid))), None)
        if act is not None:
            child.place(pid, act)


def merge_cohort_chunks(schedules, participants, activities, rng: Optional[random.Random] = None) -> Schedule:
    """Copy friend groups chunk by chunk, rotating through the parents."""
    rng = rng or random.Random()
    maps = _parent_maps(schedules)
    lookup = participant_lookup(participants)
    child = _Child(activities)
    pending = set(maps[0]) & set(lookup)
    rotation = 0
    guard = max(1, len(pending) * len(maps) * 2)

    while pending and guard > 0:
        guard -= 1
        seed = rng.choice(sorted(pending))
        options = [(i, m[seed]) for i, m in enumerate(maps) if child.known(m.get(seed))]
        if not options:
            pending.discard(seed)
            continue
        placed = False
        for attempt in range(len(options)):
            i, act = options[(rotation + attempt) % len(options)]
            room = child.remaining(act)
            if room <= 0:
                continue
            for pid in _build_chunk(seed, act, maps[i], room, lookup, pending):
                child.place(pid, act)
                pending.discard(pid)
            rotation = (i + 1) % len(maps)
            placed = True
            break
        if not placed:
            i, act = min(options, key=lambda o: -child.remaining(o[1]))
            child.place(seed, act)
            pending.discard(seed)
            rotation = (i + 1) % len(maps)

    _fill_leftovers(child, pending, maps)
    return child.repaired(participants, activities)


def _merge_by_happiness(schedules, participants, activities, happiest_first: bool) -> Schedule:
    maps = _parent_maps(schedules)
    lookup = participant_lookup(participants)
    child = _Child(activities)

    orderings = []
    for m in maps:
        rosters: Dict[str, Set[str]] = {}
        for pid, act in m.items():
            rosters.setdefault(act, set()).add(pid)
        rows = []
        for pid, act in m.items():
            p = lookup.get(pid)
            if p is None or not child.known(act):
                continue
            happiness, _ = compute_happiness(p, act, rosters[act], lookup)
            rows.append((-happiness if happiest_first else happiness, pid))
        rows.sort()
        orderings.append([pid for _, pid in rows])

    pending = set(maps[0]) & set(lookup)
    pointers = [0] * len(maps)

    def next_candidate(i: int, require_room: bool):
        ordering = orderings[i]
        while pointers[i] < len(ordering):
            pid = ordering[pointers[i]]
            pointers[i] += 1
            if pid not in pending:
                continue
            act = maps[i][pid]
            if require_room and child.remaining(act) <= 0:
                continue
            return pid, act
        return None

    guard = max(1, len(pending) * len(maps) * 2)
    while pending and guard > 0:
        guard -= 1
        progressed = False
        for i in range(len(maps)):
            start = pointers[i]
            found = next_candidate(i, True)
            if found is None:
                pointers[i] = start
                found = next_candidate(i, False)
            if found is None:
                continue
            pid, act = found
            chunk = _build_chunk(pid, act, maps[i], child.remaining(act), lookup, pending)
            for member in chunk:
                child.place(member, act)
                pending.discard(member)
            progressed = True
        if not progressed:
            break

    _fill_leftovers(child, pending, maps)
    return child.repaired(participants, activities)


def merge_happy_chunks(schedules, participants, activities, rng=None) -> Schedule:
    return _merge_by_happiness(schedules, participants, activities, happiest_first=True)


def merge_unhappy_chunks(schedules, participants, activities, rng=None) -> Schedule:
    return _merge_by_happiness(schedules, participants, activities, happiest_first=False)


def merge_by_activity(schedules, participants, activities, rng=None) -> Schedule:
    """Each activity inherits the roster of the parent whose roster likes it most."""
    maps = _parent_maps(schedules)
    lookup = participant_lookup(participants)
    child = _Child(activities)

    def weight(pid: str, act: str) -> float:
        p = lookup.get(pid)
        return p.activity_weight(act) if p is not None else 0

    rosters = []
    for m in maps:
        r: Dict[str, List[str]] = {a.id: [] for a in activities}
        for pid, act in m.items():
            if act in r:
                r[act].append(pid)
        rosters.append(r)

    choices = []
    for a in activities:
        best = None
        for i, r in enumerate(rosters):
            score = sum(weight(pid, a.id) for pid in r[a.id])
            key = (score, len(r[a.id]))
            if best is None or key > best[0]:
                best = (key, i)
        (score, count), i = best
        choices.append((-count, -score, a.id, i))
    choices.sort()

    for _, _, act, i in choices:
        for pid in sorted(rosters[i][act], key=lambda pid: (-weight(pid, act), pid)):
            if pid in child.assigned or child.remaining(act) <= 0:
                continue
            child.place(pid, act)
    return child.repaired(participants, activities)


MERGE_STRATEGIES: Dict[str, MergeFn] = {
    "Smart": merge_smart,
    "Agreement": merge_agreement_first,
    "Activity": merge_by_activity,
    "Happy": merge_happy_chunks,
    "Unhappy": merge_unhappy_chunks,
    "Cohort": merge_cohort_chunks,
    "Random": merge_random,
}

merge_schedules = merge_smart


def mutate_schedule(
    schedule: Schedule,
    participants: List[Participant],
    activities: List[Activity],
    rate: Optional[float] = None,
    rng: Optional[random.Random] = None,
) -> Schedule:
    """
    Re-home a random share of participants to another activity they listed,
    swapping with a random occupant when the target is full. Returns a new
    schedule in the input's order; the input is left untouched.
    """
    rng = rng or random.Random()
    if rate is None:
        rate = rng.uniform(ESCAPE_MIN_RATE, ESCAPE_MAX_RATE)
    lookup = participant_lookup(participants)
    capacity = {a.id: a.capacity for a in activities}

    order: List[str] = []
    assigned: Dict[str, str] = {}
    for a in schedule:
        if a.participant not in assigned:
            order.append(a.participant)
            assigned[a.participant] = a.activity
    rosters: Dict[str, Set[str]] = {act: set() for act in capacity}
    for pid, act in assigned.items():
        rosters.setdefault(act, set()).add(pid)

    if order:
        n = min(len(order), max(1, int(round(rate * len(order)))))
        for pid in rng.sample(order, n):
            p = lookup.get(pid)
            if p is None:
                continue
            current = assigned[pid]
            options = [
                pref.activity for pref in p.activity_preferences
                if pref.activity != current and pref.activity in capacity
            ]
            if not options:
                continue
            target = rng.choice(options)
            if len(rosters[target]) < capacity[target]:
                rosters[current].discard(pid)
            else:
                occupants = sorted(rosters[target])
                if not occupants:
                    continue
                other = rng.choice(occupants)
                rosters[target].discard(other)
                rosters[current].discard(pid)
                rosters[current].add(other)
                assigned[other] = current
            rosters[target].add(pid)
            assigned[pid] = target
    return [Assignment(pid, assigned[pid]) for pid in order]


def sigma_scale(scores, sigma_factor: float = 2.0) -> np.ndarray:
    """Sigma scaling so a few very fit schedules do not dominate sampling."""
    raw = np.asarray(scores, dtype=float)
    if raw.size == 0:
        return raw
    sigma = raw.std()
    if sigma == 0:
        return np.ones_like(raw)
    return np.maximum(1.0 + (raw - raw.mean()) / (sigma_factor * sigma), 0.0)

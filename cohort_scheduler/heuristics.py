"""
Seed heuristics: build a first complete schedule from preferences.

All of them share the contract ``(participants, activities) -> Schedule``.
They raise `InfeasibleError` naming the participant that could not be seated
and `UnknownActivityError` when a preference names an activity that is not in
the activity list. Participant order matters: the generator shuffles it to
get different seeds out of the same heuristic.
"""
from functools import wraps
from typing import Callable, Dict, List, Tuple

from .cohorts import find_cohorts
from .config import PEER_SYNERGY_FRACTION
from .errors import InfeasibleError, UnknownActivityError
from .model import (
    Activity,
    ActivityPreference,
    Assignment,
    Participant,
    Schedule,
    participant_lookup,
)

Heuristic = Callable[[List[Participant], List[Activity]], Schedule]


def check_known_activities(participants: List[Participant], activities: List[Activity]) -> None:
    known = {a.id for a in activities}
    for p in participants:
        for pref in p.activity_preferences:
            if pref.activity not in known:
                raise UnknownActivityError(pref.activity)


def prepare_preferences(
    participants: List[Participant],
    activities: List[Activity],
) -> Tuple[List[Participant], bool]:
    """
    Give everyone without activity preferences a zero-weight preference over
    every activity. The flag tells whether the whole population is in
    peer-only mode (nobody stated any activity preference).
    """
    if not participants:
        return [], False
    fallback = tuple(ActivityPreference(a.id, 0) for a in activities)
    prepared = []
    empty = 0
    for p in participants:
        if p.activity_preferences:
            prepared.append(p)
        else:
            empty += 1
            prepared.append(Participant(p.id, fallback, p.peer_preferences))
    return prepared, empty == len(participants)


class _Seats:
    """Remaining capacity plus the assignment being built."""

    def __init__(self, activities: List[Activity]):
        self.capacity = {a.id: a.capacity for a in activities}
        self.used = {a.id: 0 for a in activities}
        self.assigned: Dict[str, str] = {}

    def has_room(self, activity: str, n: int = 1) -> bool:
        return self.used[activity] + n <= self.capacity[activity]

    def free(self, activity: str) -> int:
        return self.capacity[activity] - self.used[activity]

    def place(self, pid: str, activity: str) -> None:
        self.assigned[pid] = activity
        self.used[activity] += 1

    def schedule(self) -> Schedule:
        return [Assignment(p, a) for p, a in self.assigned.items()]


def _place_by_preference(seats: _Seats, p: Participant) -> bool:
    for pref in p.ranked_activities():
        if seats.has_room(pref.activity):
            seats.place(p.id, pref.activity)
            return True
    return False


def assign_by_activity(participants: List[Participant], activities: List[Activity]) -> Schedule:
    """Each participant, in order, takes their best activity that still has room."""
    check_known_activities(participants, activities)
    seats = _Seats(activities)
    for p in participants:
        if p.id in seats.assigned:
            continue
        if not _place_by_preference(seats, p):
            raise InfeasibleError(p.id)
    return seats.schedule()


def assign_by_peer(participants: List[Participant], activities: List[Activity]) -> Schedule:
    """
    Join the highest-weight positive peer who is already seated in an
    activity with room; otherwise fall back to own activity preferences.
    Unseated peers are never placed on someone else's behalf.
    """
    check_known_activities(participants, activities)
    seats = _Seats(activities)
    for p in participants:
        if p.id in seats.assigned:
            continue
        joined = False
        for pref in p.ranked_peers():
            if pref.weight <= 0:
                break
            target = seats.assigned.get(pref.peer)
            if target is not None and seats.has_room(target):
                seats.place(p.id, target)
                joined = True
                break
        if not joined and not _place_by_preference(seats, p):
            raise InfeasibleError(p.id)
    return seats.schedule()


def assign_by_priority(participants: List[Participant], activities: List[Activity]) -> Schedule:
    """
    Honor the strongest wishes of the whole population first.

    Every (participant, activity) and positive (participant, peer) wish goes
    into one list sorted by descending weight. Activity wishes are granted
    while the activity has room; peer wishes only when the peer is already
    seated somewhere with room.
    """
    check_known_activities(participants, activities)
    wishes: List[Tuple[float, str, bool, str]] = []
    for p in participants:
        for pref in p.activity_preferences:
            wishes.append((pref.weight, p.id, True, pref.activity))
        for pref in p.peer_preferences:
            if pref.weight > 0:
                wishes.append((pref.weight, p.id, False, pref.peer))
    wishes.sort(key=lambda w: -w[0])

    seats = _Seats(activities)
    for _, pid, is_activity, target in wishes:
        if pid in seats.assigned:
            continue
        if not is_activity:
            target = seats.assigned.get(target)
            if target is None:
                continue
        if seats.has_room(target):
            seats.place(pid, target)

    for p in participants:
        if p.id not in seats.assigned:
            raise InfeasibleError(p.id)
    return seats.schedule()


def _peer_synergy(p: Participant, activity: str, lookup: Dict[str, Participant]) -> float:
    # positive peers who also asked for this activity
    bonus = 0.0
    for pref in p.positive_peers():
        peer = lookup.get(pref.peer)
        if peer is not None and any(a.activity == activity for a in peer.activity_preferences):
            bonus += pref.weight
    return bonus


def assign_by_most_constrained(participants: List[Participant], activities: List[Activity]) -> Schedule:
    check_known_activities(participants, activities)
    prepared, _ = prepare_preferences(participants, activities)
    lookup = participant_lookup(prepared)

    requesters: Dict[str, List[Tuple[float, float, int, Participant]]] = {a.id: [] for a in activities}
    demand: Dict[str, float] = {a.id: 0.0 for a in activities}
    for order, p in enumerate(prepared):
        for pref in p.activity_preferences:
            primary = max(pref.weight, 0)
            synergy = _peer_synergy(p, pref.activity, lookup)
            requesters[pref.activity].append((primary + synergy, primary, order, p))
            demand[pref.activity] += primary + PEER_SYNERGY_FRACTION * synergy

    ranked = sorted(
        activities,
        key=lambda a: (-demand[a.id] / max(a.capacity, 1), a.id),
    )

    seats = _Seats(activities)
    for act in ranked:
        for _, _, _, p in sorted(requesters[act.id], key=lambda r: (-r[0], -r[1], r[2])):
            if not seats.has_room(act.id):
                break
            if p.id not in seats.assigned:
                seats.place(p.id, act.id)

    for p in prepared:
        if p.id in seats.assigned:
            continue
        if _place_by_preference(seats, p):
            continue
        spare = next((a.id for a in activities if seats.has_room(a.id)), None)
        if spare is None:
            raise InfeasibleError(p.id)
        seats.place(p.id, spare)
    return seats.schedule()


def assign_by_cohorts(
    participants: List[Participant],
    activities: List[Activity],
    max_cohort_size: int,
    min_weight: float = 1,
) -> Schedule:
    """
    Seat whole cohorts at once, each in the activity its members like best
    among those with room for all of them.
    """
    check_known_activities(participants, activities)
    lookup = participant_lookup(participants)
    seats = _Seats(activities)
    for cohort in find_cohorts(participants, max_cohort_size, min_weight):
        totals = {a.id: 0.0 for a in activities}
        for pid in cohort:
            for pref in lookup[pid].activity_preferences:
                totals[pref.activity] += pref.weight
        options = sorted(activities, key=lambda a: -totals[a.id])
        target = next((a.id for a in options if seats.has_room(a.id, len(cohort))), None)
        if target is None:
            raise InfeasibleError(cohort[0], f"cohort of size {len(cohort)} fits nowhere")
        for pid in cohort:
            seats.place(pid, target)
    return seats.schedule()


def assign_by_threes(participants, activities):
    return assign_by_cohorts(participants, activities, 3)


def assign_by_fives(participants, activities):
    return assign_by_cohorts(participants, activities, 5)


def assign_by_tens(participants, activities):
    return assign_by_cohorts(participants, activities, 10)


def assign_by_twenties(participants, activities):
    return assign_by_cohorts(participants, activities, 20)


def assign_by_cohort_min_size(participants, activities):
    size = min((a.capacity for a in activities), default=1)
    return assign_by_cohorts(participants, activities, max(1, size))


def assign_by_cohort_median_size(participants, activities):
    capacities = sorted(a.capacity for a in activities)
    size = capacities[len(capacities) // 2] if capacities else 1
    return assign_by_cohorts(participants, activities, max(1, size))


def prune_activities_by_top_choice(
    participants: List[Participant],
    activities: List[Activity],
) -> Tuple[List[Participant], List[Activity]]:
    """
    Keep only activities that are someone's top choice, adding the most
    popular of the rest until total capacity covers the population.
    Preferences are filtered to the kept activities; anyone left with none
    gets a zero-weight preference over all of them.
    """
    if not activities:
        return list(participants), []

    top_counts = {a.id: 0 for a in activities}
    weight_totals = {a.id: 0.0 for a in activities}
    for p in participants:
        if not p.activity_preferences:
            continue
        best = max(pref.weight for pref in p.activity_preferences)
        for pref in p.activity_preferences:
            weight_totals[pref.activity] = weight_totals.get(pref.activity, 0.0) + pref.weight
            if best > 0 and pref.weight == best:
                top_counts[pref.activity] = top_counts.get(pref.activity, 0) + 1

    kept = [a for a in activities if top_counts[a.id] > 0]
    if not kept:
        return list(participants), list(activities)

    capacity = sum(a.capacity for a in kept)
    if capacity < len(participants):
        kept_ids = {a.id for a in kept}
        rest = sorted(
            (a for a in activities if a.id not in kept_ids),
            key=lambda a: (-top_counts[a.id], -weight_totals[a.id], a.id),
        )
        for a in rest:
            kept.append(a)
            capacity += a.capacity
            if capacity >= len(participants):
                break

    kept_ids = {a.id for a in kept}
    fallback = tuple(ActivityPreference(a.id, 0) for a in kept)
    pruned = []
    for p in participants:
        prefs = tuple(pref for pref in p.activity_preferences if pref.activity in kept_ids)
        pruned.append(Participant(p.id, prefs or fallback, p.peer_preferences))
    return pruned, kept


def with_pruned_activities(heuristic: Heuristic) -> Heuristic:
    @wraps(heuristic)
    def pruned(participants: List[Participant], activities: List[Activity]) -> Schedule:
        check_known_activities(participants, activities)
        small_participants, small_activities = prune_activities_by_top_choice(participants, activities)
        return heuristic(small_participants, small_activities)

    return pruned

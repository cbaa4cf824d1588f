# cohort_scheduler/repair.py
import logging
from typing import Dict, List, Optional, Set, Tuple

from .config import HEAL_ITERATIONS
from .errors import InfeasibleError, UnknownActivityError
from .evaluation import compute_happiness
from .model import Activity, Assignment, Participant, Schedule, participant_lookup

logger = logging.getLogger(__name__)


class _Occupancy:
    """Mutable working copy of a schedule: participant -> activity plus rosters."""

    def __init__(self, schedule: Schedule, activities: List[Activity]):
        self.activities = activities
        self.capacity = {a.id: a.capacity for a in activities}
        self.min_size = {a.id: a.min_size or 0 for a in activities}
        self.order: List[str] = []
        self.seen: Set[str] = set()
        self.assigned: Dict[str, str] = {}
        self.rosters: Dict[str, Set[str]] = {a.id: set() for a in activities}
        for a in schedule:
            if a.activity not in self.capacity:
                raise UnknownActivityError(a.activity)
            if a.participant in self.assigned:
                continue
            self.order.append(a.participant)
            self.seen.add(a.participant)
            self.assigned[a.participant] = a.activity
            self.rosters[a.activity].add(a.participant)

    def count(self, activity: str) -> int:
        return len(self.rosters[activity])

    def has_room(self, activity: str) -> bool:
        return self.count(activity) < self.capacity[activity]

    def place(self, pid: str, activity: str) -> None:
        if pid not in self.seen:
            self.order.append(pid)
            self.seen.add(pid)
        if pid in self.assigned:
            self.rosters[self.assigned[pid]].discard(pid)
        self.assigned[pid] = activity
        self.rosters[activity].add(pid)

    def evict(self, pid: str) -> None:
        self.rosters[self.assigned.pop(pid)].discard(pid)

    def schedule(self) -> Schedule:
        return [Assignment(pid, self.assigned[pid]) for pid in self.order if pid in self.assigned]


def _rehome(occ: _Occupancy, pid: str, lookup: Dict[str, Participant]) -> bool:
    # own preferences, then positive peers' activities, then any free seat
    p = lookup.get(pid)
    if p is not None:
        for pref in p.ranked_activities():
            if pref.activity in occ.capacity and occ.has_room(pref.activity):
                occ.place(pid, pref.activity)
                return True
        for pref in p.ranked_peers():
            if pref.weight <= 0:
                break
            target = occ.assigned.get(pref.peer)
            if target is not None and occ.has_room(target):
                occ.place(pid, target)
                return True
    spare = sorted(
        (a.id for a in occ.activities if occ.has_room(a.id)),
        key=lambda act: occ.count(act) - occ.capacity[act],
    )
    if spare:
        occ.place(pid, spare[0])
        return True
    return False


def repair_schedule(
    schedule: Schedule,
    participants: List[Participant],
    activities: List[Activity],
) -> Schedule:
    """
    Restore capacity and completeness.

    Occupants of an overfull activity are evicted least mutually happy first
    and re-homed (own preferences, then a friend's activity, then any free
    seat); whoever cannot be re-homed stays put. Participants missing from
    the schedule are then placed the same way. A valid, complete schedule
    comes back unchanged.

    Raises `UnknownActivityError` for assignments to unknown activities and
    `InfeasibleError` when overflow remains or someone cannot be placed.
    """
    lookup = participant_lookup(participants)
    occ = _Occupancy(schedule, activities)

    for act in activities:
        if occ.count(act.id) <= act.capacity:
            continue
        occupants = [pid for pid in occ.order if occ.assigned.get(pid) == act.id]
        roster = set(occupants)
        ranked: List[Tuple[float, int, str]] = []
        for i, pid in enumerate(occupants):
            p = lookup.get(pid)
            mutual = compute_happiness(p, act.id, roster, lookup)[1] if p is not None else 0.0
            ranked.append((mutual, i, pid))
        ranked.sort()

        for _, _, pid in ranked:
            if occ.count(act.id) <= act.capacity:
                break
            occ.evict(pid)
            if not _rehome(occ, pid, lookup):
                occ.place(pid, act.id)

    for act in activities:
        if occ.count(act.id) > act.capacity:
            stuck = next(pid for pid in occ.order if occ.assigned.get(pid) == act.id)
            raise InfeasibleError(stuck, f"cannot resolve overflow in {act.id}")

    for pid in lookup:
        if pid in occ.assigned:
            continue
        if not _rehome(occ, pid, lookup):
            raise InfeasibleError(pid)
    return occ.schedule()


def _move_gain(p: Participant, source: str, target: str, occ: _Occupancy) -> float:
    gain = p.activity_weight(target) - p.activity_weight(source)
    for pref in p.peer_preferences:
        if pref.peer in occ.rosters[target]:
            gain += pref.weight
        if pref.peer in occ.rosters[source]:
            gain -= pref.weight
    return gain


def _recruit(occ: _Occupancy, target: Activity, needed: int, lookup, allow_loss: bool) -> int:
    candidates = []
    for pid, p in lookup.items():
        source = occ.assigned.get(pid)
        if source is None or source == target.id:
            continue
        gain = _move_gain(p, source, target.id, occ)
        if allow_loss or gain >= 0:
            candidates.append((gain, pid))
    candidates.sort(key=lambda c: -c[0])

    recruited = 0
    for _, pid in candidates:
        if recruited >= needed:
            break
        source = occ.assigned[pid]
        if occ.count(source) - 1 < occ.min_size[source]:
            continue
        if not occ.has_room(target.id):
            continue
        occ.place(pid, target.id)
        recruited += 1
    return recruited


def _disband(occ: _Occupancy, act: Activity, lookup) -> bool:
    counts = {a: occ.count(a) for a in occ.capacity}
    moves: Dict[str, str] = {}
    for pid in [pid for pid in occ.order if occ.assigned.get(pid) == act.id]:
        p = lookup.get(pid)
        if p is None:
            return False
        target = None
        for pref in p.ranked_activities():
            other = pref.activity
            if other == act.id or other not in occ.capacity:
                continue
            n = counts[other]
            safe = n == 0 or n >= occ.min_size[other]
            if n < occ.capacity[other] and safe:
                target = other
                break
        if target is None:
            return False
        moves[pid] = target
        counts[target] += 1
    for pid, target in moves.items():
        occ.place(pid, target)
    return True


def _undersized(occ: _Occupancy) -> List[Activity]:
    found = [
        a for a in occ.activities
        if a.min_size and 0 < occ.count(a.id) < a.min_size
    ]
    return sorted(found, key=lambda a: -(a.min_size - occ.count(a.id)))


def heal_minimum_size(
    schedule: Schedule,
    participants: List[Participant],
    activities: List[Activity],
    max_iterations: int = HEAL_ITERATIONS,
) -> Optional[Schedule]:
    """
    Bring every activity with a `min_size` to 0 or at least that size.

    Each iteration works on the activity with the largest deficit: recruit
    movers who lose nothing, else disband it into safe activities, else
    recruit at a loss. Returns None when an iteration makes no progress or
    the iteration budget runs out.
    """
    lookup = participant_lookup(participants)
    try:
        occ = _Occupancy(schedule, activities)
    except UnknownActivityError as exc:
        logger.warning("heal skipped: %s", exc)
        return None

    for _ in range(max_iterations):
        pending = _undersized(occ)
        if not pending:
            return occ.schedule()
        progressed = False
        for act in pending:
            deficit = act.min_size - occ.count(act.id)
            if _recruit(occ, act, deficit, lookup, allow_loss=False) > 0:
                progressed = True
            elif _disband(occ, act, lookup):
                progressed = True
            elif _recruit(occ, act, deficit, lookup, allow_loss=True) > 0:
                progressed = True
            if progressed:
                break
        if not progressed:
            return None

    if not _undersized(occ):
        return occ.schedule()
    return None

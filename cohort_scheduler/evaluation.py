# cohort_scheduler/evaluation.py
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from .config import DEFAULT_SCORING_OPTIONS, ScoringOptions
from .encoding import is_peer_only, schedule_to_id
from .errors import ErrorKind
from .model import (
    Activity,
    Participant,
    Schedule,
    ScheduleInfo,
    participant_lookup,
)


@dataclass
class EvaluationResult:
    score: float
    activity_score: float
    peer_score: float
    penalty: float
    no_activity_match: int
    no_peer_match: int
    validity: Optional[ErrorKind]
    occupancy: np.ndarray     # aligned with the activity list
    undersized: List[str]


def validate_schedule(
    schedule: Schedule,
    activities: List[Activity],
    check_minimum_size: bool = False,
) -> Optional[ErrorKind]:
    index = {a.id: i for i, a in enumerate(activities)}
    seen: Set[str] = set()
    slots: List[int] = []
    for a in schedule:
        if a.activity not in index:
            return ErrorKind.UNKNOWN_ACTIVITY
        if a.participant in seen:
            return ErrorKind.DUPLICATE_ASSIGNMENT
        seen.add(a.participant)
        slots.append(index[a.activity])

    counts = _occupancy(slots, len(activities))
    capacities = np.array([a.capacity for a in activities], dtype=int)
    if np.any(counts > capacities):
        return ErrorKind.CAPACITY_EXCEEDED

    if check_minimum_size:
        mins = np.array([a.min_size or 0 for a in activities], dtype=int)
        if np.any((counts > 0) & (counts < mins)):
            return ErrorKind.MINIMUM_SIZE
    return None


def _occupancy(slots: List[int], n_activities: int) -> np.ndarray:
    if not slots:
        return np.zeros(n_activities, dtype=int)
    return np.bincount(np.asarray(slots, dtype=int), minlength=n_activities)


def undersized_activities(schedule: Schedule, activities: List[Activity]) -> List[str]:
    counts: Dict[str, int] = defaultdict(int)
    for a in schedule:
        counts[a.activity] += 1
    return [
        act.id for act in activities
        if act.min_size and 0 < counts[act.id] < act.min_size
    ]


def _is_mutual(p: Participant, peer: Optional[Participant], weight: float) -> bool:
    if peer is None or weight <= 0:
        return False
    return peer.peer_weight(p.id) > 0


def _peer_multiplier(p, peer, weight, opts: ScoringOptions) -> float:
    if _is_mutual(p, peer, weight):
        return opts.mutual_peer_multiplier
    return opts.non_mutual_peer_multiplier


def _score_parts(
    schedule: Schedule,
    participants: List[Participant],
    opts: ScoringOptions,
) -> Tuple[float, float, float, int, int]:
    lookup = participant_lookup(participants)
    rosters: Dict[str, Set[str]] = defaultdict(set)
    for a in schedule:
        rosters[a.activity].add(a.participant)

    activity_terms: List[float] = []
    peer_terms: List[float] = []
    activity_match: Set[str] = set()
    peer_matches: Dict[str, int] = defaultdict(int)

    for a in schedule:
        p = lookup.get(a.participant)
        if p is None:
            continue
        for pref in p.activity_preferences:
            if pref.activity == a.activity:
                activity_terms.append(pref.weight)
                activity_match.add(p.id)
                break
        roster = rosters[a.activity]
        for pref in p.peer_preferences:
            if pref.peer == p.id or pref.peer not in roster:
                continue
            mult = _peer_multiplier(p, lookup.get(pref.peer), pref.weight, opts)
            peer_terms.append(pref.weight * mult)
            peer_matches[p.id] += 1

    no_activity = sum(1 for pid in lookup if pid not in activity_match)
    no_peer = sum(1 for pid in lookup if peer_matches[pid] == 0)
    penalty = no_activity * opts.no_activity_penalty + no_peer * opts.no_peer_penalty
    # fsum keeps the total independent of assignment order
    return math.fsum(activity_terms), math.fsum(peer_terms), penalty, no_activity, no_peer


def score_schedule(
    schedule: Schedule,
    participants: List[Participant],
    scoring_options: Optional[ScoringOptions] = None,
) -> float:
    """
    Directional satisfaction score.

    Each assignment adds the participant's weight for its activity plus every
    stated peer weight toward co-assigned participants (negative weights
    subtract). With non-default `ScoringOptions` peer weights are scaled by the
    mutual/non-mutual multiplier and the per-participant penalties are
    subtracted at the end.
    """
    opts = scoring_options or DEFAULT_SCORING_OPTIONS
    act, peer, penalty, _, _ = _score_parts(schedule, participants, opts)
    return act + peer - penalty


def evaluate(
    schedule: Schedule,
    participants: List[Participant],
    activities: List[Activity],
    scoring_options: Optional[ScoringOptions] = None,
) -> EvaluationResult:
    opts = scoring_options or DEFAULT_SCORING_OPTIONS
    act, peer, penalty, no_act, no_peer = _score_parts(schedule, participants, opts)
    index = {a.id: i for i, a in enumerate(activities)}
    slots = [index[a.activity] for a in schedule if a.activity in index]
    return EvaluationResult(
        score=act + peer - penalty,
        activity_score=act,
        peer_score=peer,
        penalty=penalty,
        no_activity_match=no_act,
        no_peer_match=no_peer,
        validity=validate_schedule(schedule, activities, check_minimum_size=True),
        occupancy=_occupancy(slots, len(activities)),
        undersized=undersized_activities(schedule, activities),
    )


def compute_happiness(
    participant: Participant,
    activity: str,
    roster: Iterable[str],
    lookup: Dict[str, Participant],
) -> Tuple[float, float]:
    """
    (happiness, mutual_happiness) of `participant` placed in `activity`.

    Only positive peers count; each one present adds the participant's own
    weight plus the peer's positive weight back. `mutual_happiness` counts
    the peer part twice so reciprocated links weigh more when ranking
    occupants for eviction.
    """
    present = roster if isinstance(roster, (set, frozenset)) else set(roster)
    peer_sum = 0.0
    for pref in participant.peer_preferences:
        if pref.weight <= 0 or pref.peer not in present:
            continue
        peer_sum += pref.weight
        other = lookup.get(pref.peer)
        if other is not None:
            back = other.peer_weight(participant.id)
            if back > 0:
                peer_sum += back
    own = participant.activity_weight(activity)
    return own + peer_sum, own + 2 * peer_sum


class ScoreModel:
    """
    Precomputed lookups for fast, exact score deltas.

    A participant's contribution depends only on its own activity and on
    which of its listed peers share it, so a move only changes the
    contributions of the movers and of whoever lists a mover.
    """

    def __init__(self, participants: List[Participant], scoring_options: Optional[ScoringOptions] = None):
        self.options = scoring_options or DEFAULT_SCORING_OPTIONS
        self.lookup = participant_lookup(participants)
        self.activity_weights: Dict[str, Dict[str, float]] = {}
        self.peers: Dict[str, List[Tuple[str, float]]] = {}
        self.listed_by: Dict[str, Set[str]] = defaultdict(set)

        for pid, p in self.lookup.items():
            weights: Dict[str, float] = {}
            for pref in p.activity_preferences:
                weights.setdefault(pref.activity, pref.weight)
            self.activity_weights[pid] = weights
            adjusted = []
            for pref in p.peer_preferences:
                if pref.peer == pid:
                    continue
                mult = _peer_multiplier(p, self.lookup.get(pref.peer), pref.weight, self.options)
                adjusted.append((pref.peer, pref.weight * mult))
                self.listed_by[pref.peer].add(pid)
            self.peers[pid] = adjusted

    def contribution(self, pid: str, activity: Optional[str], roster: Set[str]) -> float:
        if pid not in self.lookup:
            return 0.0
        opts = self.options
        if activity is None:
            return -(opts.no_activity_penalty + opts.no_peer_penalty)
        weights = self.activity_weights[pid]
        total = weights.get(activity, 0.0)
        matches = 0
        for peer, w in self.peers[pid]:
            if peer in roster:
                total += w
                matches += 1
        if activity not in weights:
            total -= opts.no_activity_penalty
        if matches == 0:
            total -= opts.no_peer_penalty
        return total

    def schedule_score(self, assignments: Dict[str, str], rosters: Dict[str, Set[str]]) -> float:
        terms = [
            self.contribution(pid, assignments.get(pid), rosters.get(assignments.get(pid), set()))
            for pid in self.lookup
        ]
        return math.fsum(terms)

    def move_delta(
        self,
        assignments: Dict[str, str],
        rosters: Dict[str, Set[str]],
        moves: Dict[str, str],
    ) -> float:
        """Score change of applying `moves` (participant -> new activity)."""
        affected = set(moves)
        for mover in moves:
            affected |= self.listed_by.get(mover, set())
        affected = {pid for pid in affected if pid in assignments}

        touched = {assignments[m] for m in moves if m in assignments} | set(moves.values())
        new_rosters = {act: set(rosters.get(act, set())) for act in touched}
        for mover, target in moves.items():
            old = assignments.get(mover)
            if old is not None:
                new_rosters[old].discard(mover)
            new_rosters[target].add(mover)

        before = after = 0.0
        for pid in affected:
            old_act = assignments[pid]
            before += self.contribution(pid, old_act, rosters.get(old_act, set()))
            new_act = moves.get(pid, old_act)
            roster = new_rosters.get(new_act)
            if roster is None:
                roster = rosters.get(new_act, set())
            after += self.contribution(pid, new_act, roster)
        return after - before


def create_schedule_info(
    schedule: Schedule,
    participants: List[Participant],
    activities: List[Activity],
    algorithm: str,
    generation: int = 0,
    scoring_options: Optional[ScoringOptions] = None,
) -> ScheduleInfo:
    check_min = any(a.min_size for a in activities)
    validity = validate_schedule(schedule, activities, check_minimum_size=check_min)
    # a schedule naming an unknown activity has no canonical form
    canonical_id = ""
    if validity != ErrorKind.UNKNOWN_ACTIVITY:
        canonical_id = schedule_to_id(schedule, activities, peer_only=is_peer_only(participants))
    return ScheduleInfo(
        schedule=tuple(schedule),
        score=score_schedule(schedule, participants, scoring_options),
        validity=validity,
        algorithm=algorithm,
        generation=generation,
        canonical_id=canonical_id,
    )

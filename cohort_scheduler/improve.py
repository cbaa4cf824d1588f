# cohort_scheduler/improve.py
"""
Hill climbing over complete schedules.

Every accepted step strictly raises the score, so the result never scores
below the input. Three strategies are combined:

* least-happy swap: starting from the least happy participant, move them to
  a better-liked activity with room or swap them with someone already there
  (unlisted activities are the fallback, so a forbidden pair sharing its only
  listed activity can still be split);
* cohort move: participants waiting for a top choice with free seats are
  grouped by peer links and moved together;
* escape: a small random mutation followed by a short least-happy climb,
  kept only when it ends above the pre-mutation score.
"""
import logging
import random
from typing import Dict, List, Optional, Set

from .cohorts import find_cohorts
from .config import (
    COHORT_MOVE_MIN_FREE_SEATS,
    COHORT_MOVE_MIN_WEIGHT,
    DEFAULT_IMPROVE_ITERATIONS,
    ESCAPE_CLIMB_STEPS,
    ScoringOptions,
)
from .errors import UnknownActivityError
from .evaluation import ScoreModel, compute_happiness, score_schedule
from .model import Activity, Assignment, Participant, Schedule
from .operators import mutate_schedule

logger = logging.getLogger(__name__)

EPS = 1e-9


class _Climb:
    def __init__(
        self,
        schedule: Schedule,
        participants: List[Participant],
        activities: List[Activity],
        model: ScoreModel,
        rng: random.Random,
    ):
        self.participants = participants
        self.activities = activities
        self.model = model
        self.rng = rng
        self.capacity = {a.id: a.capacity for a in activities}
        self.order: List[str] = []
        self.assignments: Dict[str, str] = {}
        for a in schedule:
            if a.activity not in self.capacity:
                raise UnknownActivityError(a.activity)
            if a.participant in self.assignments:
                continue
            self.order.append(a.participant)
            self.assignments[a.participant] = a.activity
        self.rosters: Dict[str, Set[str]] = {act: set() for act in self.capacity}
        for pid, act in self.assignments.items():
            self.rosters[act].add(pid)
        self.score = model.schedule_score(self.assignments, self.rosters)

    def schedule(self) -> Schedule:
        return [Assignment(pid, self.assignments[pid]) for pid in self.order]

    def free(self, activity: str) -> int:
        return self.capacity[activity] - len(self.rosters[activity])

    def apply(self, moves: Dict[str, str], delta: float) -> None:
        for pid, target in moves.items():
            self.rosters[self.assignments[pid]].discard(pid)
            self.assignments[pid] = target
            self.rosters[target].add(pid)
        self.score += delta

    def delta(self, moves: Dict[str, str]) -> float:
        return self.model.move_delta(self.assignments, self.rosters, moves)

    def least_happy_swap(self) -> bool:
        lookup = self.model.lookup
        ranked = []
        for i, pid in enumerate(self.order):
            p = lookup.get(pid)
            if p is None:
                continue
            act = self.assignments[pid]
            happiness, _ = compute_happiness(p, act, self.rosters[act], lookup)
            ranked.append((happiness, i, p))
        ranked.sort(key=lambda r: (r[0], r[1]))

        for _, _, p in ranked:
            listed = [pref.activity for pref in p.ranked_activities()]
            known = set(listed)
            # unlisted activities weigh 0 and are tried only when no listed one helps
            unlisted = [a.id for a in self.activities if a.id not in known]
            for targets in (listed, unlisted):
                best_moves, best_delta = self.best_move(p, targets)
                if best_moves is not None:
                    self.apply(best_moves, best_delta)
                    return True
        return False

    def best_move(self, p: Participant, targets: List[str]):
        current = self.assignments[p.id]
        best_moves, best_delta = None, EPS
        for target in targets:
            if target == current or target not in self.capacity:
                continue
            if self.free(target) > 0:
                candidates = [{p.id: target}]
            else:
                candidates = [{p.id: target, other: current} for other in sorted(self.rosters[target])]
            for moves in candidates:
                delta = self.delta(moves)
                if delta > best_delta:
                    best_moves, best_delta = moves, delta
        return best_moves, best_delta

    def cohort_move(self) -> bool:
        lookup = self.model.lookup
        waiting: Dict[str, List[Participant]] = {}
        for pid in self.order:
            p = lookup.get(pid)
            if p is None or not p.activity_preferences:
                continue
            top = p.ranked_activities()[0].activity
            if top == self.assignments[pid] or top not in self.capacity:
                continue
            if self.free(top) < COHORT_MOVE_MIN_FREE_SEATS:
                continue
            waiting.setdefault(top, []).append(p)

        for top, group in waiting.items():
            for cohort in find_cohorts(group, self.free(top), COHORT_MOVE_MIN_WEIGHT):
                moves = {pid: top for pid in cohort}
                delta = self.delta(moves)
                if delta > EPS:
                    self.apply(moves, delta)
                    return True
        return False

    def escape(self) -> bool:
        mutated = mutate_schedule(self.schedule(), self.participants, self.activities, rng=self.rng)
        trial = _Climb(mutated, self.participants, self.activities, self.model, self.rng)
        for _ in range(ESCAPE_CLIMB_STEPS):
            if not trial.least_happy_swap():
                break
        if trial.score <= self.score + EPS:
            return False
        logger.debug("escape accepted: %.2f -> %.2f", self.score, trial.score)
        self.assignments = trial.assignments
        self.rosters = trial.rosters
        self.score = trial.score
        return True


def improve_schedule(
    schedule: Schedule,
    participants: List[Participant],
    activities: List[Activity],
    max_iterations: int = DEFAULT_IMPROVE_ITERATIONS,
    scoring_options: Optional[ScoringOptions] = None,
    rng: Optional[random.Random] = None,
) -> Schedule:
    """
    Return a schedule scoring at least as high as `schedule`.

    The input is not modified; the output keeps the input's entry order.
    Duplicate entries collapse onto the first one, unless the input as given
    still outscores the climbed result, in which case a copy of the input is
    returned.
    """
    rng = rng or random.Random()
    climb = _Climb(schedule, participants, activities, ScoreModel(participants, scoring_options), rng)
    if max_iterations <= 0:
        return list(schedule)

    start = climb.score
    climb.least_happy_swap()
    iterations = 1
    while iterations < max_iterations:
        iterations += 1
        if climb.cohort_move() or climb.least_happy_swap() or climb.escape():
            continue
        break
    logger.debug("improve: %.2f -> %.2f in %d iterations", start, climb.score, iterations)
    if len(climb.order) != len(schedule):
        given = score_schedule(schedule, participants, scoring_options)
        if given > climb.score + EPS:
            return list(schedule)
    return climb.schedule()

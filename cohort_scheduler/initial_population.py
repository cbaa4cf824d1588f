# cohort_scheduler/initial_population.py
import logging
import random
from typing import Dict, Iterator, List, Optional, Sequence, Set

from .config import ScoringOptions
from .errors import ErrorKind, SchedulingError
from .evaluation import create_schedule_info
from .heuristics import (
    Heuristic,
    assign_by_activity,
    assign_by_cohort_median_size,
    assign_by_cohort_min_size,
    assign_by_fives,
    assign_by_most_constrained,
    assign_by_peer,
    assign_by_priority,
    assign_by_tens,
    assign_by_threes,
    assign_by_twenties,
    prepare_preferences,
    with_pruned_activities,
)
from .model import Activity, Participant, ScheduleInfo
from .peer_heuristics import (
    assign_avoid_forbidden,
    assign_find_a_friend,
    assign_mutual_peers_first,
    assign_penalty_first,
)
from .repair import heal_minimum_size, repair_schedule

logger = logging.getLogger(__name__)

HEURISTICS: Dict[str, Heuristic] = {
    "Most Constrained": assign_by_most_constrained,
    "Activity First": assign_by_activity,
    "Peer First": assign_by_peer,
    "Priority": assign_by_priority,
    "Cohort Min Size": assign_by_cohort_min_size,
    "Cohort Median Size": assign_by_cohort_median_size,
    "Threes": assign_by_threes,
    "Fives": assign_by_fives,
    "Tens": assign_by_tens,
    "Twenties": assign_by_twenties,
    "Mutual Peers First": assign_mutual_peers_first,
    "Find A Friend": assign_find_a_friend,
    "Avoid Forbidden": assign_avoid_forbidden,
    "Penalty First": assign_penalty_first,
    "Prune Then Activity First": with_pruned_activities(assign_by_activity),
    "Prune Then Priority": with_pruned_activities(assign_by_priority),
    "Prune Then Most Constrained": with_pruned_activities(assign_by_most_constrained),
}

DEFAULT_HEURISTICS: List[str] = [
    "Most Constrained",
    "Activity First",
    "Peer First",
    "Priority",
    "Cohort Min Size",
    "Cohort Median Size",
    "Threes",
    "Fives",
    "Tens",
    "Twenties",
]


def get_heuristic(name: str) -> Heuristic:
    try:
        return HEURISTICS[name]
    except KeyError:
        raise ValueError(f"Unknown heuristic: {name!r}") from None


def finalize_candidate(
    schedule,
    participants: List[Participant],
    activities: List[Activity],
    algorithm: str,
    generation: int = 0,
    scoring_options: Optional[ScoringOptions] = None,
    heal: bool = True,
) -> ScheduleInfo:
    """Wrap a raw schedule, repairing capacity and healing minimum sizes when needed."""
    info = create_schedule_info(schedule, participants, activities, algorithm, generation, scoring_options)
    if info.validity in (ErrorKind.CAPACITY_EXCEEDED, ErrorKind.DUPLICATE_ASSIGNMENT):
        schedule = repair_schedule(schedule, participants, activities)
        info = create_schedule_info(
            schedule, participants, activities, f"{algorithm} (repaired)", generation, scoring_options
        )
    if heal and info.validity == ErrorKind.MINIMUM_SIZE:
        healed = heal_minimum_size(schedule, participants, activities)
        if healed is not None:
            info = create_schedule_info(
                healed, participants, activities, f"{algorithm} (healed)", generation, scoring_options
            )
    return info


def generate_population(
    participants: List[Participant],
    activities: List[Activity],
    rounds: int = 1,
    heuristics: Optional[Sequence[str]] = None,
    existing_ids: Optional[Set[str]] = None,
    rng: Optional[random.Random] = None,
    stop=None,
    heal: bool = True,
    scoring_options: Optional[ScoringOptions] = None,
) -> Iterator[ScheduleInfo]:
    """
    Yield distinct, valid seed schedules.

    Each round runs every selected heuristic on a shuffled copy of the
    participants. `existing_ids` is updated in place with every yielded id so
    callers can thread it through several calls; `stop` (anything with
    ``is_set()``) is checked between heuristic runs.
    """
    rng = rng or random.Random()
    names = list(heuristics) if heuristics else list(DEFAULT_HEURISTICS)
    selected = [(name, get_heuristic(name)) for name in names]
    seen = existing_ids if existing_ids is not None else set()
    prepared, peer_only = prepare_preferences(participants, activities)
    if peer_only:
        logger.info("No activity preferences given; running in peer-only mode")

    for round_no in range(rounds):
        for name, heuristic in selected:
            if stop is not None and stop.is_set():
                logger.info("Generation stopped at round %d", round_no)
                return
            order = list(prepared)
            rng.shuffle(order)
            try:
                schedule = heuristic(order, activities)
                info = finalize_candidate(schedule, participants, activities, name, 0, scoring_options, heal)
            except SchedulingError as exc:
                logger.info("%s discarded: %s", name, exc)
                continue
            if not info.is_valid:
                logger.info("%s discarded: %s", name, info.validity.value)
                continue
            if info.canonical_id in seen:
                logger.debug("Ignoring duplicate schedule from %s", name)
                continue
            seen.add(info.canonical_id)
            yield info

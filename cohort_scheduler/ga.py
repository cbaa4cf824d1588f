import itertools
import logging
import random
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from .config import DEFAULT_IMPROVE_ITERATIONS, IMPROVE_STOP_AFTER, SchedulerConfig, ScoringOptions
from .errors import SchedulingError
from .improve import improve_schedule
from .initial_population import finalize_candidate
from .model import Activity, Participant, ScheduleInfo
from .operators import MERGE_STRATEGIES, sigma_scale

logger = logging.getLogger(__name__)

EPS = 1e-9
CROSS_STRATEGIES = ("Smart", "Agreement", "Activity", "Happy", "Unhappy")


def improve_until_stable(
    info: ScheduleInfo,
    participants: List[Participant],
    activities: List[Activity],
    stop_after: int = IMPROVE_STOP_AFTER,
    iterations: int = DEFAULT_IMPROVE_ITERATIONS,
    scoring_options: Optional[ScoringOptions] = None,
    rng: Optional[random.Random] = None,
    stop=None,
) -> Iterator[ScheduleInfo]:
    """
    Keep improving `info`, yielding every strictly better valid schedule.
    Gives up after `stop_after` consecutive rounds without improvement.
    """
    rng = rng or random.Random()
    current = info
    idle = 0
    while idle < stop_after:
        if stop is not None and stop.is_set():
            return
        improved = improve_schedule(list(current.schedule), participants, activities,
                                    iterations, scoring_options, rng)
        try:
            candidate = finalize_candidate(improved, participants, activities, current.algorithm,
                                           current.generation, scoring_options)
        except SchedulingError as exc:
            logger.debug("improvement discarded: %s", exc)
            idle += 1
            continue
        if candidate.is_valid and candidate.score > current.score + EPS:
            current = candidate
            idle = 0
            yield candidate
        else:
            idle += 1


def get_merged_name(first: ScheduleInfo, second: ScheduleInfo) -> str:
    """Lineage label: sorted base heuristic names plus the child's generation."""
    names: Set[str] = set()
    for info in (first, second):
        base = info.algorithm.split("+")[0]
        names.update(part.strip() for part in base.split("-") if part.strip())
    generation = max(first.generation, second.generation) + 1
    return f"{'-'.join(sorted(names))}+GA{generation}"


def create_crosses(
    population: Sequence[ScheduleInfo],
    participants: List[Participant],
    activities: List[Activity],
    rounds: int,
    existing_ids: Optional[Set[str]] = None,
    scoring_options: Optional[ScoringOptions] = None,
    rng: Optional[random.Random] = None,
    stop=None,
    pairs: Optional[Iterable[Tuple[ScheduleInfo, ScheduleInfo]]] = None,
) -> Iterator[ScheduleInfo]:
    """
    For each parent pair try every crossover strategy, improve the child for
    `rounds` iterations and yield the best valid, previously unseen one.
    """
    rng = rng or random.Random()
    seen = existing_ids if existing_ids is not None else {p.canonical_id for p in population}
    if pairs is None:
        pairs = itertools.combinations(population, 2)

    for first, second in pairs:
        if stop is not None and stop.is_set():
            return
        name = get_merged_name(first, second)
        generation = max(first.generation, second.generation) + 1
        parents = [list(first.schedule), list(second.schedule)]
        best: Optional[ScheduleInfo] = None
        for label in CROSS_STRATEGIES:
            try:
                child = MERGE_STRATEGIES[label](parents, participants, activities, rng=rng)
                child = improve_schedule(child, participants, activities, rounds, scoring_options, rng)
                info = finalize_candidate(child, participants, activities, f"{name}-{label}",
                                          generation, scoring_options)
            except SchedulingError as exc:
                logger.debug("%s cross failed: %s", label, exc)
                continue
            if not info.is_valid:
                logger.debug("crossbreed ignoring invalid %s -> %s", label, info.validity.value)
                continue
            if best is None or info.score > best.score:
                best = info
        if best is None:
            continue
        if best.canonical_id in seen:
            logger.debug("crossbreed ignoring duplicate %s", best.algorithm)
            continue
        seen.add(best.canonical_id)
        yield best


def select_survivors(offspring: Iterable[ScheduleInfo], target_size: int) -> List[ScheduleInfo]:
    return sorted(offspring, key=lambda s: s.score, reverse=True)[:max(0, target_size)]


class GeneticSolver:
    def __init__(
        self,
        participants: List[Participant],
        activities: List[Activity],
        cfg: Optional[SchedulerConfig] = None,
        rng: Optional[random.Random] = None,
        stop=None,
    ):
        self.participants = participants
        self.activities = activities
        self.cfg = cfg or SchedulerConfig()
        self.rng = rng or random.Random(self.cfg.seed)
        self.stop = stop
        self.history: List[Dict] = []
        self.best: Optional[ScheduleInfo] = None

    def selection_roulette(self, population: List[ScheduleInfo], weights) -> ScheduleInfo:
        total = float(sum(weights))
        if total == 0:
            return self.rng.choice(population)
        pick = self.rng.uniform(0, total)
        current = 0.0
        for info, w in zip(population, weights):
            current += w
            if current > pick:
                return info
        return population[-1]

    def sample_pairs(self, population: List[ScheduleInfo]) -> List[Tuple[ScheduleInfo, ScheduleInfo]]:
        """All pairs when affordable, otherwise sigma-scaled roulette draws."""
        all_pairs = len(population) * (len(population) - 1) // 2
        if all_pairs <= self.cfg.max_pairs:
            return list(itertools.combinations(population, 2))

        weights = sigma_scale([p.score for p in population], self.cfg.fitness_sigma)
        chosen: Dict[Tuple[str, str], Tuple[ScheduleInfo, ScheduleInfo]] = {}
        attempts = 0
        while len(chosen) < self.cfg.max_pairs and attempts < self.cfg.max_pairs * 20:
            attempts += 1
            a = self.selection_roulette(population, weights)
            b = self.selection_roulette(population, weights)
            if a.canonical_id == b.canonical_id:
                continue
            key = tuple(sorted((a.canonical_id, b.canonical_id)))
            chosen.setdefault(key, (a, b))
        return list(chosen.values())

    def _stopped(self) -> bool:
        return self.stop is not None and self.stop.is_set()

    def iter_evolve(self, population: List[ScheduleInfo], generations: Optional[int] = None) -> Iterator[ScheduleInfo]:
        """Run the generation loop, yielding every new offspring as it appears."""
        if not population:
            raise ValueError("population is empty")
        cfg = self.cfg
        generations = cfg.generations if generations is None else generations
        population = select_survivors(population, len(population))
        seen = {p.canonical_id for p in population}
        self.best = population[0]
        stagnation = 0

        for gen in range(generations):
            population.sort(key=lambda s: s.score, reverse=True)
            if population[0].score > self.best.score + EPS:
                self.best = population[0]
                stagnation = 0
            elif gen > 0:
                stagnation += 1

            avg = sum(p.score for p in population) / len(population)
            self.history.append({
                "gen": gen,
                "best_score": self.best.score,
                "avg_score": avg,
                "population": len(population),
            })
            if gen % 5 == 0 or gen == generations - 1:
                logger.info("Gen %d: best=%.2f avg=%.2f size=%d", gen, self.best.score, avg, len(population))
            if stagnation >= cfg.max_stagnation or len(population) < 2 or self._stopped():
                break

            offspring: List[ScheduleInfo] = []
            for child in create_crosses(
                population[:cfg.population_size],
                self.participants,
                self.activities,
                cfg.crossover_rounds,
                existing_ids=seen,
                scoring_options=cfg.scoring,
                rng=self.rng,
                stop=self.stop,
                pairs=self.sample_pairs(population),
            ):
                offspring.append(child)
                yield child

            elites = population[:min(cfg.elite_size, len(population))]
            rest = select_survivors(offspring + population[len(elites):], cfg.population_size - len(elites))
            population = elites + rest

        population.sort(key=lambda s: s.score, reverse=True)
        if population[0].score > self.best.score:
            self.best = population[0]

    def evolve(self, population: List[ScheduleInfo], generations: Optional[int] = None) -> ScheduleInfo:
        for _ in self.iter_evolve(population, generations):
            pass
        return self.best

"""
Scheduler configuration.

Algorithm constants live at module level so the core functions can use them
as defaults; `SchedulerConfig` groups the tunables of a run and can be loaded
from YAML so experiments stay reproducible.
"""
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


# Hill climbing
DEFAULT_IMPROVE_ITERATIONS = 50
ESCAPE_MIN_RATE = 0.05
ESCAPE_MAX_RATE = 0.15
ESCAPE_CLIMB_STEPS = 25
COHORT_MOVE_MIN_WEIGHT = 3
COHORT_MOVE_MIN_FREE_SEATS = 2

# Heuristics
PEER_SYNERGY_FRACTION = 0.5
RELOCATION_IMPROVE_ITERATIONS = 5

# Healing / orchestration
HEAL_ITERATIONS = 10
IMPROVE_STOP_AFTER = 10


@dataclass(frozen=True)
class ScoringOptions:
    mutual_peer_multiplier: float = 1.0
    non_mutual_peer_multiplier: float = 1.0
    no_peer_penalty: float = 0.0
    no_activity_penalty: float = 0.0

    @property
    def is_default(self) -> bool:
        return self == DEFAULT_SCORING_OPTIONS


DEFAULT_SCORING_OPTIONS = ScoringOptions()


@dataclass
class SchedulerConfig:
    # Generation
    rounds: int = 1
    heuristics: List[str] = field(default_factory=list)   # empty: defaults
    heal_minimum_size: bool = True

    # Hill climbing
    improve_iterations: int = DEFAULT_IMPROVE_ITERATIONS
    improve_stop_after: int = IMPROVE_STOP_AFTER

    # Evolution
    population_size: int = 20
    generations: int = 10
    elite_size: int = 2
    max_stagnation: int = 4
    max_pairs: int = 60
    crossover_rounds: int = 10
    fitness_sigma: float = 2.0  # sigma scaling for pair sampling

    # Clustering
    cluster_threshold: float = 1.6

    seed: Optional[int] = 42
    workers: Optional[int] = None   # None: os.cpu_count()

    scoring: ScoringOptions = field(default_factory=ScoringOptions)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchedulerConfig":
        merged = asdict(cls())
        for k, v in data.items():
            if k in merged:
                merged[k] = v
        scoring = merged.pop("scoring") or {}
        if not isinstance(scoring, dict):
            raise ValueError("'scoring' must be a mapping")
        unknown = set(scoring) - set(asdict(DEFAULT_SCORING_OPTIONS))
        if unknown:
            raise ValueError(f"unknown scoring options: {sorted(unknown)}")
        return cls(scoring=ScoringOptions(**scoring), **merged)


def _load_yaml(path: Path) -> Any:
    if not path.exists():
        return {}
    text = path.read_text(encoding="utf-8")
    return yaml.safe_load(text) or {}


def load_config(path: str = "config.yaml") -> SchedulerConfig:
    cfg_path = Path(path)
    data = _load_yaml(cfg_path)
    if not isinstance(data, dict):
        raise ValueError("config.yaml must contain a mapping")
    return SchedulerConfig.from_dict(data)

# cohort_scheduler/model.py
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .errors import ErrorKind


def _require_str(value, what: str) -> None:
    # ids must be normalized before reaching the engine (see data_loader)
    if not isinstance(value, str):
        raise TypeError(f"{what} must be str, not {type(value).__name__}: {value!r}")


@dataclass(frozen=True)
class Activity:
    id: str
    capacity: int
    min_size: Optional[int] = None

    def __post_init__(self):
        _require_str(self.id, "Activity.id")
        if self.capacity < 0:
            raise ValueError(f"negative capacity for {self.id}")


@dataclass(frozen=True)
class ActivityPreference:
    activity: str
    weight: float

    def __post_init__(self):
        _require_str(self.activity, "ActivityPreference.activity")


@dataclass(frozen=True)
class PeerPreference:
    peer: str
    weight: float   # < 0 means a forbidden pairing

    def __post_init__(self):
        _require_str(self.peer, "PeerPreference.peer")


@dataclass(frozen=True)
class Participant:
    id: str
    activity_preferences: Tuple[ActivityPreference, ...] = ()
    peer_preferences: Tuple[PeerPreference, ...] = ()

    def __post_init__(self):
        _require_str(self.id, "Participant.id")
        # accept lists from callers but store tuples
        object.__setattr__(self, "activity_preferences", tuple(self.activity_preferences))
        object.__setattr__(self, "peer_preferences", tuple(self.peer_preferences))

    def activity_weight(self, activity: str) -> float:
        for pref in self.activity_preferences:
            if pref.activity == activity:
                return pref.weight
        return 0

    def peer_weight(self, peer: str) -> float:
        for pref in self.peer_preferences:
            if pref.peer == peer:
                return pref.weight
        return 0

    def ranked_activities(self) -> List[ActivityPreference]:
        """Activity preferences by descending weight (stable)."""
        return sorted(self.activity_preferences, key=lambda p: -p.weight)

    def ranked_peers(self) -> List[PeerPreference]:
        return sorted(self.peer_preferences, key=lambda p: -p.weight)

    def positive_peers(self) -> List[PeerPreference]:
        return [p for p in self.peer_preferences if p.weight > 0]


@dataclass(frozen=True)
class Assignment:
    participant: str
    activity: str


Schedule = List[Assignment]
Cohort = List[str]
FamilyClusters = Dict[str, set]


@dataclass(frozen=True)
class ScheduleInfo:
    schedule: Tuple[Assignment, ...]
    score: float
    validity: Optional[ErrorKind]
    algorithm: str
    generation: int
    canonical_id: str

    @property
    def is_valid(self) -> bool:
        return self.validity is None


def as_mapping(schedule: Schedule) -> Dict[str, str]:
    """participant -> activity; later entries win on duplicates."""
    return {a.participant: a.activity for a in schedule}


def from_mapping(mapping: Dict[str, str]) -> Schedule:
    return [Assignment(participant=p, activity=a) for p, a in mapping.items()]


def participant_lookup(participants: List[Participant]) -> Dict[str, Participant]:
    lookup: Dict[str, Participant] = {}
    for p in participants:
        lookup.setdefault(p.id, p)
    return lookup


def activity_lookup(activities: List[Activity]) -> Dict[str, Activity]:
    return {a.id: a for a in activities}

# cohort_scheduler/data_loader.py
"""
CSV input and output for the scheduler.

Every identifier read from disk goes through `normalize_identifier`, so the
core only ever compares `str` ids ("101", 101 and 101.0 are the same
activity).
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .model import Activity, ActivityPreference, Participant, PeerPreference, Schedule

logger = logging.getLogger(__name__)

ACTIVITY_COLUMNS = ("activity", "capacity")
PREFERENCE_COLUMNS = ("participant", "kind", "target", "weight")


@dataclass(frozen=True)
class DataBundle:
    activities_df: pd.DataFrame
    preferences_df: pd.DataFrame
    activities: List[Activity]
    participants: List[Participant]


def normalize_identifier(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        raise ValueError("missing identifier")
    if isinstance(value, (bool, np.bool_)):
        raise ValueError(f"boolean is not an identifier: {value!r}")
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        if float(value).is_integer():
            return str(int(value))
        return str(float(value))
    text = str(value).strip()
    if not text:
        raise ValueError("empty identifier")
    return text


def _require_columns(df: pd.DataFrame, required, path: Path) -> pd.DataFrame:
    df = df.rename(columns=lambda c: str(c).strip().lower())
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns in {path}: {', '.join(missing)}")
    return df


def _optional_int(value) -> Optional[int]:
    if pd.isna(value):
        return None
    return int(value)


def build_activities(df: pd.DataFrame) -> List[Activity]:
    out: List[Activity] = []
    has_min = "min_size" in df.columns
    for r in df.itertuples(index=False):
        out.append(Activity(
            id=normalize_identifier(r.activity),
            capacity=int(r.capacity),
            min_size=_optional_int(r.min_size) if has_min else None,
        ))
    return out


def build_participants(df: pd.DataFrame, extra_ids: Optional[List] = None) -> List[Participant]:
    """
    One Participant per distinct id, in first-appearance order. `extra_ids`
    adds participants that have no preference rows at all.
    """
    acts: Dict[str, List[ActivityPreference]] = {}
    peers: Dict[str, List[PeerPreference]] = {}
    order: List[str] = []

    def touch(pid: str) -> None:
        if pid not in acts:
            acts[pid] = []
            peers[pid] = []
            order.append(pid)

    for r in df.itertuples(index=False):
        pid = normalize_identifier(r.participant)
        touch(pid)
        if pd.isna(r.target):
            continue
        kind = str(r.kind).strip().lower()
        target = normalize_identifier(r.target)
        weight = float(r.weight)
        if kind == "activity":
            acts[pid].append(ActivityPreference(target, weight))
        elif kind == "peer":
            peers[pid].append(PeerPreference(target, weight))
        else:
            raise ValueError(f"Unknown preference kind {r.kind!r} for participant {pid}")

    for extra in extra_ids or []:
        touch(normalize_identifier(extra))
    return [Participant(pid, acts[pid], peers[pid]) for pid in order]


def check_data(participants: List[Participant], activities: List[Activity]) -> List[str]:
    """Human-readable warnings about the input. Nothing here is fatal."""
    warnings: List[str] = []

    seen = set()
    for a in activities:
        if a.id in seen:
            warnings.append(f"duplicate activity id {a.id}")
        seen.add(a.id)
    known_people = set()
    for p in participants:
        if p.id in known_people:
            warnings.append(f"duplicate participant id {p.id}")
        known_people.add(p.id)

    for p in participants:
        for pref in p.activity_preferences:
            if pref.activity not in seen:
                warnings.append(f"{p.id} prefers unknown activity {pref.activity}")
        for pref in p.peer_preferences:
            if pref.peer not in known_people:
                warnings.append(f"{p.id} lists unknown peer {pref.peer}")

    total = sum(a.capacity for a in activities)
    if total < len(known_people):
        warnings.append(f"total capacity {total} is below the number of participants {len(known_people)}")
    return warnings


def load_data(data_dir: Union[str, Path]) -> DataBundle:
    data_dir = Path(data_dir)
    act_path = data_dir / "activities.csv"
    pref_path = data_dir / "preferences.csv"
    activities_df = _require_columns(pd.read_csv(act_path), ACTIVITY_COLUMNS, act_path)
    preferences_df = _require_columns(pd.read_csv(pref_path), PREFERENCE_COLUMNS, pref_path)

    activities = build_activities(activities_df)
    participants = build_participants(preferences_df)
    logger.info("Loaded %d activities and %d participants from %s",
                len(activities), len(participants), data_dir)
    return DataBundle(
        activities_df=activities_df,
        preferences_df=preferences_df,
        activities=activities,
        participants=participants,
    )


def schedule_to_dataframe(schedule: Schedule) -> pd.DataFrame:
    data = [{"participant": a.participant, "activity": a.activity} for a in schedule]
    return pd.DataFrame(data, columns=["participant", "activity"])

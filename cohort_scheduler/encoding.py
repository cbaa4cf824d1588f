"""
Canonical schedule ids.

Participants and activities are sorted by id, each participant's activity
becomes its index in the sorted activity list, and the index sequence is
packed with a fixed bit width (enough bits for the largest index) into bytes
and written as URL-safe base64. The id only depends on the
participant -> activity mapping, never on the order of the schedule.
"""
import base64
from collections import defaultdict
from typing import Dict, List

from .model import Activity, Assignment, Participant, Schedule


def _to_bin(val: int, bits: int) -> str:
    return format(max(0, int(val)), f"0{bits}b")


def index_width(n_activities: int) -> int:
    return max(1, (n_activities - 1).bit_length())


def is_peer_only(participants: List[Participant]) -> bool:
    """True when no participant expresses a non-zero activity preference."""
    return all(
        all(pref.weight == 0 for pref in p.activity_preferences)
        for p in participants
    )


def _peer_only_mapping(mapping: Dict[str, str], activities: List[Activity]) -> Dict[str, str]:
    # Groups are relabelled inside each capacity tier: the group whose first
    # member sorts lowest goes to the alphabetically first activity, etc.
    groups: Dict[str, List[str]] = defaultdict(list)
    for participant, activity in mapping.items():
        groups[activity].append(participant)
    for members in groups.values():
        members.sort()

    tiers: Dict[int, List[str]] = defaultdict(list)
    for a in activities:
        tiers[a.capacity].append(a.id)

    relabelled: Dict[str, str] = {}
    for capacity in sorted(tiers):
        tier = sorted(tiers[capacity])
        occupied = sorted((groups[a] for a in tier if groups.get(a)), key=lambda g: g[0])
        for target, members in zip(tier, occupied):
            for participant in members:
                relabelled[participant] = target
    return relabelled


def schedule_to_id(schedule: Schedule, activities: List[Activity], peer_only: bool = False) -> str:
    ordered = sorted({a.id for a in activities})
    index = {act: i for i, act in enumerate(ordered)}
    mapping: Dict[str, str] = {}
    for a in schedule:
        if a.activity not in index:
            raise ValueError(f"Cannot encode unknown activity: {a.activity}")
        mapping.setdefault(a.participant, a.activity)
    if peer_only:
        mapping = _peer_only_mapping(mapping, activities)

    width = index_width(len(ordered))
    bits = "".join(_to_bin(index[mapping[p]], width) for p in sorted(mapping))
    if not bits:
        return ""
    bits += "0" * (-len(bits) % 8)
    raw = int(bits, 2).to_bytes(len(bits) // 8, "big")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def id_to_schedule(
    canonical_id: str,
    participants: List[Participant],
    activities: List[Activity],
) -> Schedule:
    people = sorted({p.id for p in participants})
    ordered = sorted({a.id for a in activities})
    width = index_width(len(ordered))
    n_bits = len(people) * width
    n_bytes = (n_bits + 7) // 8

    try:
        padded = canonical_id + "=" * (-len(canonical_id) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise ValueError(f"Invalid schedule id: {canonical_id!r}") from exc
    if len(raw) != n_bytes:
        raise ValueError(
            f"Invalid schedule id: expected {n_bytes} bytes for "
            f"{len(people)} participants, got {len(raw)}"
        )
    if not people:
        return []

    bits = _to_bin(int.from_bytes(raw, "big"), n_bytes * 8)
    if "1" in bits[n_bits:]:
        raise ValueError("Invalid schedule id: non-zero padding")

    schedule: Schedule = []
    for i, participant in enumerate(people):
        idx = int(bits[i * width:(i + 1) * width], 2)
        if idx >= len(ordered):
            raise ValueError(f"Invalid schedule id: activity index {idx} out of range")
        schedule.append(Assignment(participant=participant, activity=ordered[idx]))
    return schedule

# cohort_scheduler/errors.py
from enum import Enum


class ErrorKind(str, Enum):
    UNKNOWN_ACTIVITY = "UnknownActivity"
    DUPLICATE_ASSIGNMENT = "DuplicateAssignment"
    CAPACITY_EXCEEDED = "CapacityExceeded"
    MINIMUM_SIZE = "MinimumSizeViolated"
    MISMATCHED_POPULATION = "MismatchedPopulation"


class SchedulingError(Exception):
    """Base for failures that abort a single construction attempt."""


class InfeasibleError(SchedulingError):
    def __init__(self, participant: str, detail: str = ""):
        self.participant = participant
        msg = f"No available activity for participant {participant}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class UnknownActivityError(SchedulingError):
    def __init__(self, activity: str):
        self.activity = activity
        super().__init__(f"Unknown activity: {activity}")

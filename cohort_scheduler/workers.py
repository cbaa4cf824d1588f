# cohort_scheduler/workers.py
"""
Background execution of the long-running searches.

Tasks run on a `concurrent.futures` pool and report through a shared queue
with `WorkerMessage` items: ``started``, then one ``progress`` per schedule
found, then ``complete`` or ``stopped`` (or ``error``). `WorkerPool.stop()`
sets a shared event that the searches check between rounds.
"""
import itertools
import logging
import multiprocessing
import os
import queue
import random
import threading
from concurrent.futures import Future, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Set, Tuple

from .config import SchedulerConfig
from .ga import GeneticSolver, improve_until_stable
from .initial_population import generate_population
from .model import Activity, Participant, ScheduleInfo

logger = logging.getLogger(__name__)


class TaskKind(str, Enum):
    GENERATE = "generate"
    IMPROVE = "improve"
    EVOLVE = "evolve"


class MessageType(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETE = "complete"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class Task:
    kind: TaskKind
    participants: List[Participant]
    activities: List[Activity]
    cfg: SchedulerConfig = field(default_factory=SchedulerConfig)
    population: List[ScheduleInfo] = field(default_factory=list)   # improve: first entry; evolve: all
    existing_ids: Set[str] = field(default_factory=set)


@dataclass
class WorkerMessage:
    task_id: int
    kind: MessageType
    payload: Any = None


def _searches(task: Task, stop) -> Iterator[ScheduleInfo]:
    cfg = task.cfg
    rng = random.Random(cfg.seed)
    kind = TaskKind(task.kind)
    if kind == TaskKind.GENERATE:
        return generate_population(
            task.participants,
            task.activities,
            rounds=cfg.rounds,
            heuristics=cfg.heuristics or None,
            existing_ids=set(task.existing_ids),
            rng=rng,
            stop=stop,
            heal=cfg.heal_minimum_size,
            scoring_options=cfg.scoring,
        )
    if not task.population:
        raise ValueError(f"{kind.value} task needs a population")
    if kind == TaskKind.IMPROVE:
        return improve_until_stable(
            task.population[0],
            task.participants,
            task.activities,
            stop_after=cfg.improve_stop_after,
            iterations=cfg.improve_iterations,
            scoring_options=cfg.scoring,
            rng=rng,
            stop=stop,
        )
    solver = GeneticSolver(task.participants, task.activities, cfg, rng=rng, stop=stop)
    return solver.iter_evolve(list(task.population))


def run_task(task_id: int, task: Task, outbox, stop) -> List[ScheduleInfo]:
    """Run one task to completion, streaming every schedule it finds to `outbox`."""
    outbox.put(WorkerMessage(task_id, MessageType.STARTED, TaskKind(task.kind).value))
    found: List[ScheduleInfo] = []
    try:
        for info in _searches(task, stop):
            found.append(info)
            outbox.put(WorkerMessage(task_id, MessageType.PROGRESS, info))
    except Exception as exc:
        outbox.put(WorkerMessage(task_id, MessageType.ERROR, f"{type(exc).__name__}: {exc}"))
        raise
    final = MessageType.STOPPED if stop.is_set() else MessageType.COMPLETE
    outbox.put(WorkerMessage(task_id, final, len(found)))
    return found


class WorkerPool:
    """Bounded pool of search workers. Use as a context manager."""

    def __init__(self, max_workers: int = None, use_processes: bool = True):
        self.max_workers = max_workers or os.cpu_count() or 1
        self._manager = None
        if use_processes:
            self._manager = multiprocessing.Manager()
            self.inbox = self._manager.Queue()
            self.stop_event = self._manager.Event()
            self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
        else:
            self.inbox = queue.Queue()
            self.stop_event = threading.Event()
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers)
        self._ids = itertools.count()
        self.futures: Dict[Future, int] = {}

    def submit(self, task: Task) -> int:
        task_id = next(self._ids)
        future = self._executor.submit(run_task, task_id, task, self.inbox, self.stop_event)
        self.futures[future] = task_id
        return task_id

    def stop(self) -> None:
        logger.info("Stop requested for %d task(s)", len(self.futures))
        self.stop_event.set()

    def _all_done(self) -> bool:
        return all(f.done() for f in self.futures)

    def messages(self, timeout: float = 0.1) -> Iterator[WorkerMessage]:
        """Yield messages until every submitted task has finished and the queue is drained."""
        while True:
            try:
                yield self.inbox.get(timeout=timeout)
            except queue.Empty:
                if self._all_done():
                    break
        while True:
            try:
                yield self.inbox.get_nowait()
            except queue.Empty:
                return

    def results(self) -> Iterator[Tuple[int, List[ScheduleInfo]]]:
        """(task_id, schedules) as tasks finish; task exceptions propagate."""
        for future in as_completed(self.futures):
            yield self.futures[future], future.result()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        if self._manager is not None:
            self._manager.shutdown()
            self._manager = None

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.stop()
        self.close()

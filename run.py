import argparse
import logging
import random
import sys
import time
from pathlib import Path

import numpy as np
import pandas as pd

from cohort_scheduler.config import SchedulerConfig, load_config
from cohort_scheduler.data_loader import check_data, load_data, schedule_to_dataframe
from cohort_scheduler.evaluation import EvaluationResult, evaluate
from cohort_scheduler.ga import GeneticSolver, improve_until_stable
from cohort_scheduler.initial_population import generate_population
from cohort_scheduler.similarity import build_cluster_info, map_family_clusters


def print_schedule_summary(best, result: EvaluationResult, activities):
    print("\n" + "=" * 60)
    print(f"BEST SCHEDULE: {best.algorithm} (generation {best.generation})")
    print(f"id: {best.canonical_id}")
    print("=" * 60)
    for act, n in zip(activities, result.occupancy):
        floor = f" min {act.min_size}" if act.min_size else ""
        print(f"{act.id:<20} {int(n):>4} / {act.capacity}{floor}")
    print("=" * 60 + "\n")


def export_outputs(best, result: EvaluationResult, history, elapsed: float, out_dir: Path):
    out_dir.mkdir(parents=True, exist_ok=True)
    schedule_to_dataframe(list(best.schedule)).to_csv(out_dir / "schedule.csv", index=False)
    if history:
        pd.DataFrame(history).to_csv(out_dir / "history.csv", index=False)
    metrics = {
        "score": result.score,
        "activity_score": result.activity_score,
        "peer_score": result.peer_score,
        "penalty": result.penalty,
        "no_activity_match": result.no_activity_match,
        "no_peer_match": result.no_peer_match,
        "algorithm": best.algorithm,
        "time_sec": elapsed,
        "generations_ran": len(history),
    }
    pd.DataFrame([metrics]).to_csv(out_dir / "metrics.csv", index=False)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Assign participants to activities end to end")
    parser.add_argument("--config", default="config.yaml", help="Path to the YAML configuration")
    parser.add_argument("--data_dir", default="data", help="Directory holding activities.csv and preferences.csv")
    parser.add_argument("--out_dir", default="outputs", help="Where to write the result CSVs")
    parser.add_argument("--rounds", type=int, default=None, help="Override the seed generation rounds")
    parser.add_argument("--generations", type=int, default=None, help="Override the number of generations")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg: SchedulerConfig = load_config(args.config)
    if args.rounds is not None:
        cfg.rounds = args.rounds
    if args.generations is not None:
        cfg.generations = args.generations
    random.seed(cfg.seed)
    np.random.seed(cfg.seed)
    rng = random.Random(cfg.seed)

    print("Loading data...")
    bundle = load_data(args.data_dir)
    participants, activities = bundle.participants, bundle.activities
    for warning in check_data(participants, activities):
        print(f"warning: {warning}")

    start = time.perf_counter()
    seen = set()
    population = list(generate_population(
        participants,
        activities,
        rounds=cfg.rounds,
        heuristics=cfg.heuristics or None,
        existing_ids=seen,
        rng=rng,
        heal=cfg.heal_minimum_size,
        scoring_options=cfg.scoring,
    ))
    if not population:
        print("No valid schedule could be generated.")
        return 1
    print(f"Seed schedules: {len(population)} | Generations: {cfg.generations}")

    solver = GeneticSolver(participants, activities, cfg, rng=rng)
    found = list(population)
    found.extend(solver.iter_evolve(population))
    best = solver.best
    for better in improve_until_stable(best, participants, activities, cfg.improve_stop_after,
                                       cfg.improve_iterations, cfg.scoring, rng):
        best = better
    elapsed = time.perf_counter() - start

    clusters = build_cluster_info(map_family_clusters(cfg.cluster_threshold, found), found)
    print(f"Schedules found: {len(found)} in {len(clusters)} families")
    for cluster in clusters[:5]:
        print(f"  {len(cluster.members):>3} members | best {cluster.best_score:.2f} | avg {cluster.average_score:.2f}")

    result = evaluate(list(best.schedule), participants, activities, cfg.scoring)
    print(f"Score: {result.score:.2f} | activity {result.activity_score:.2f} | peers {result.peer_score:.2f} "
          f"| Time: {elapsed:.2f}s")
    print_schedule_summary(best, result, activities)

    out_dir = Path(args.out_dir)
    export_outputs(best, result, solver.history, elapsed, out_dir)
    print(f"Results saved to {out_dir / 'schedule.csv'} and {out_dir / 'metrics.csv'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

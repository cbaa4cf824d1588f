import random
import threading
import unittest

from cohort_scheduler.cohorts import find_cohorts
from cohort_scheduler.errors import InfeasibleError, UnknownActivityError
from cohort_scheduler.evaluation import validate_schedule
from cohort_scheduler.heuristics import (
    assign_by_activity,
    assign_by_cohorts,
    assign_by_most_constrained,
    assign_by_peer,
    assign_by_priority,
    prepare_preferences,
    prune_activities_by_top_choice,
    with_pruned_activities,
)
from cohort_scheduler.initial_population import HEURISTICS, generate_population, get_heuristic
from cohort_scheduler.model import Activity, ActivityPreference, Participant, PeerPreference, as_mapping
from cohort_scheduler.peer_heuristics import (
    assign_avoid_forbidden,
    assign_find_a_friend,
    assign_mutual_peers_first,
    assign_penalty_first,
    build_conflict_graph,
)


def person(pid, acts=(), peers=()):
    return Participant(
        pid,
        [ActivityPreference(a, w) for a, w in acts],
        [PeerPreference(p, w) for p, w in peers],
    )


CAMP = [Activity("art", 3), Activity("chess", 3), Activity("drama", 3)]
KIDS = [
    person("ana", [("art", 5), ("drama", 2)], [("ben", 3)]),
    person("ben", [("chess", 4), ("art", 1)], [("ana", 2)]),
    person("cy", [("chess", 5)], [("dee", 4)]),
    person("dee", [("chess", 3), ("drama", 1)], [("cy", 4)]),
    person("eli", [("drama", 5)], [("fay", 2), ("gus", -5)]),
    person("fay", [("drama", 4), ("art", 1)]),
    person("gus", [("drama", 3), ("chess", 3)]),
    person("hal", [("art", 2)]),
]


class CohortTests(unittest.TestCase):
    def test_strongest_links_first(self):
        people = [
            person("a", peers=[("b", 5)]),
            person("b", peers=[("c", 1)]),
            person("c"),
        ]
        self.assertEqual(find_cohorts(people, 2), [["a", "b"], ["c"]])

    def test_sizes_respect_limit(self):
        rng = random.Random(5)
        ids = [f"p{i}" for i in range(30)]
        people = [
            person(pid, peers=[(rng.choice(ids), rng.randint(1, 5)) for _ in range(3)])
            for pid in ids
        ]
        for limit in (1, 2, 3, 7):
            cohorts = find_cohorts(people, limit)
            self.assertTrue(all(len(c) <= limit for c in cohorts))
            self.assertEqual(sorted(pid for c in cohorts for pid in c), sorted(ids))

    def test_ignores_self_dangling_and_weak_links(self):
        people = [
            person("a", peers=[("a", 9), ("ghost", 9), ("b", 1)]),
            person("b"),
        ]
        self.assertEqual(find_cohorts(people, 5, min_weight=2), [["a"], ["b"]])

    def test_duplicate_participant_is_dropped_with_warning(self):
        people = [
            person("a", peers=[("b", 4)]),
            person("a", peers=[("c", 9)]),
            person("b"),
            person("c"),
        ]
        with self.assertLogs("cohort_scheduler.cohorts", level="WARNING") as logs:
            cohorts = find_cohorts(people, 3)
        self.assertEqual(cohorts, [["a", "b"], ["c"]])
        self.assertIn("'a'", logs.output[0])

    def test_equal_weights_keep_discovery_order(self):
        a = person("a", peers=[("b", 2)])
        b = person("b")
        c = person("c", peers=[("b", 2)])
        self.assertEqual(find_cohorts([a, b, c], 2), [["a", "b"], ["c"]])
        self.assertEqual(find_cohorts([c, b, a], 2), [["c", "b"], ["a"]])

    def test_invalid_limit(self):
        with self.assertRaises(ValueError):
            find_cohorts(KIDS, 0)


class HeuristicTests(unittest.TestCase):
    def test_activity_first_respects_capacity(self):
        acts = [Activity("a1", 2), Activity("a2", 1)]
        people = [
            person("p1", [("a1", 3), ("a2", 1)]),
            person("p2", [("a1", 3), ("a2", 1)]),
            person("p3", [("a2", 3), ("a1", 1)]),
        ]
        schedule = assign_by_activity(people, acts)
        self.assertIsNone(validate_schedule(schedule, acts))
        self.assertEqual(as_mapping(schedule), {"p1": "a1", "p2": "a1", "p3": "a2"})

    def test_oversubscribed_single_activity_is_infeasible(self):
        acts = [Activity("solo", 2)]
        people = [person(pid, [("solo", 1)]) for pid in ("a", "b", "c")]
        for heuristic in (assign_by_activity, assign_by_priority):
            with self.subTest(heuristic=heuristic.__name__):
                with self.assertRaises(InfeasibleError) as ctx:
                    heuristic(people, acts)
                self.assertEqual(ctx.exception.participant, "c")

    def test_unknown_activity_preference(self):
        with self.assertRaises(UnknownActivityError):
            assign_by_activity([person("a", [("nowhere", 1)])], CAMP)

    def test_peer_first_joins_friend(self):
        schedule = as_mapping(assign_by_peer(KIDS, CAMP))
        self.assertEqual(schedule["ben"], schedule["ana"])
        self.assertEqual(schedule["dee"], schedule["cy"])

    def test_every_registered_heuristic_produces_valid_schedule(self):
        prepared, _ = prepare_preferences(KIDS, CAMP)
        for name, heuristic in HEURISTICS.items():
            with self.subTest(heuristic=name):
                schedule = heuristic(list(prepared), CAMP)
                self.assertIsNone(validate_schedule(schedule, CAMP))
                self.assertEqual(sorted(as_mapping(schedule)), sorted(p.id for p in KIDS))

    def test_most_constrained_serves_hot_activity_first(self):
        acts = [Activity("hot", 1), Activity("cold", 5)]
        people = [
            person("x", [("cold", 1), ("hot", 1)]),
            person("y", [("hot", 9)]),
        ]
        self.assertEqual(as_mapping(assign_by_most_constrained(people, acts))["y"], "hot")

    def test_cohorts_stay_together(self):
        schedule = as_mapping(assign_by_cohorts(KIDS, CAMP, 2))
        self.assertEqual(schedule["cy"], schedule["dee"])

    def test_peer_only_preparation(self):
        friends = [person("a", peers=[("b", 1)]), person("b")]
        prepared, peer_only = prepare_preferences(friends, CAMP)
        self.assertTrue(peer_only)
        self.assertEqual(len(prepared[0].activity_preferences), len(CAMP))

    def test_pruning_keeps_top_choices(self):
        acts = CAMP + [Activity("knitting", 10)]
        _, kept = prune_activities_by_top_choice(KIDS, acts)
        self.assertNotIn("knitting", [a.id for a in kept])

    def test_penalty_first_brings_friend_along(self):
        acts = [Activity("A", 3), Activity("B", 3)]
        people = [
            person("lead", [("A", 5)], [("pal", 5)]),
            person("pal", [("B", 5)]),
        ]
        self.assertEqual(as_mapping(assign_penalty_first(people, acts)), {"lead": "A", "pal": "A"})

    def test_penalty_first_moves_friendless_participant(self):
        acts = [Activity("A", 1), Activity("B", 2)]
        people = [
            person("x", [("A", 5)], [("y", 5)]),
            person("y", [("B", 5)]),
        ]
        self.assertEqual(as_mapping(assign_penalty_first(people, acts)), {"x": "B", "y": "B"})

    def test_mutual_peers_move_as_a_group(self):
        acts = [Activity("A", 1), Activity("B", 2), Activity("C", 2)]
        people = [
            person("m1", [("A", 5)], [("m2", 10)]),
            person("m2", [("B", 5)], [("m1", 10)]),
        ]
        split = as_mapping(assign_by_peer(people, acts))
        self.assertEqual(split, {"m1": "A", "m2": "B"})
        self.assertEqual(as_mapping(assign_mutual_peers_first(people, acts)), {"m1": "B", "m2": "B"})

    def test_find_a_friend_joins_friend(self):
        acts = [Activity("A", 2), Activity("B", 2)]
        people = [
            person("f", [("A", 5)], [("g", 10)]),
            person("g", [("B", 5)]),
        ]
        self.assertEqual(as_mapping(assign_by_peer(people, acts))["f"], "A")
        self.assertEqual(as_mapping(assign_find_a_friend(people, acts)), {"f": "B", "g": "B"})

    def test_pruning_gives_zero_weight_fallback(self):
        acts = [Activity("A", 3), Activity("B", 3), Activity("C", 3)]
        people = [
            person("u", [("A", 5)]),
            person("v", [("B", 5)]),
            person("z", [("C", -1)]),
        ]
        pruned, kept = prune_activities_by_top_choice(people, acts)
        self.assertEqual([a.id for a in kept], ["A", "B"])
        self.assertEqual(pruned[2].activity_preferences, (ActivityPreference("A", 0), ActivityPreference("B", 0)))
        self.assertEqual(pruned[0].activity_preferences, (ActivityPreference("A", 5),))

        mapping = as_mapping(with_pruned_activities(assign_by_activity)(people, acts))
        self.assertIn(mapping["z"], ("A", "B"))
        self.assertNotIn("C", mapping.values())

    def test_avoid_forbidden_separates_enemies(self):
        acts = [Activity("A", 2), Activity("B", 2)]
        people = [
            person("x", [("A", 1)], [("y", -5)]),
            person("y", [("A", 1)]),
        ]
        self.assertEqual(build_conflict_graph(people), {"x": {"y"}, "y": {"x"}})
        mapping = as_mapping(assign_avoid_forbidden(people, acts))
        self.assertNotEqual(mapping["x"], mapping["y"])


class GenerationTests(unittest.TestCase):
    def test_population_is_valid_and_distinct(self):
        seen = set()
        population = list(generate_population(KIDS, CAMP, rounds=2, existing_ids=seen, rng=random.Random(1)))
        self.assertTrue(population)
        ids = [info.canonical_id for info in population]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(set(ids), seen)
        self.assertTrue(all(info.is_valid for info in population))

    def test_existing_ids_are_skipped(self):
        first = list(generate_population(KIDS, CAMP, rng=random.Random(1)))
        seen = {info.canonical_id for info in first}
        again = list(generate_population(KIDS, CAMP, existing_ids=seen, rng=random.Random(1)))
        self.assertFalse({info.canonical_id for info in again} & {info.canonical_id for info in first})

    def test_shared_id_set_accumulates_across_calls(self):
        seen = set()
        first = list(generate_population(KIDS, CAMP, existing_ids=seen, rng=random.Random(1)))
        second = list(generate_population(KIDS, CAMP, existing_ids=seen, rng=random.Random(2)))
        ids = [info.canonical_id for info in first + second]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(seen, set(ids))

    def test_stop_event(self):
        stop = threading.Event()
        stop.set()
        self.assertEqual(list(generate_population(KIDS, CAMP, stop=stop)), [])

    def test_infeasible_heuristics_are_skipped(self):
        acts = [Activity("solo", 2)]
        people = [person(pid, [("solo", 1)]) for pid in ("a", "b", "c")]
        self.assertEqual(list(generate_population(people, acts, heuristics=["Activity First"])), [])

    def test_unknown_heuristic_name(self):
        with self.assertRaises(ValueError):
            get_heuristic("Astrology")


if __name__ == "__main__":
    unittest.main()

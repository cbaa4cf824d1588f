import random
import unittest
from unittest import mock

from cohort_scheduler.errors import InfeasibleError, UnknownActivityError
from cohort_scheduler.evaluation import score_schedule, validate_schedule
from cohort_scheduler.improve import improve_schedule
from cohort_scheduler.operators import mutate_schedule
from cohort_scheduler.model import Activity, ActivityPreference, Assignment, Participant, PeerPreference, as_mapping
from cohort_scheduler.repair import heal_minimum_size, repair_schedule


def person(pid, acts=(), peers=()):
    return Participant(
        pid,
        [ActivityPreference(a, w) for a, w in acts],
        [PeerPreference(p, w) for p, w in peers],
    )


def sched(**mapping):
    return [Assignment(p, a) for p, a in mapping.items()]


class ImproveTests(unittest.TestCase):
    def test_friends_end_up_together(self):
        acts = [Activity("X", 2), Activity("Y", 2)]
        people = [
            person("a", [("X", 2), ("Y", 1)], [("b", 10)]),
            person("b", [("Y", 2), ("X", 1)], [("a", 10)]),
        ]
        result = as_mapping(improve_schedule(sched(a="X", b="Y"), people, acts, rng=random.Random(0)))
        self.assertEqual(result["a"], result["b"])

    def test_enemies_are_split(self):
        acts = [Activity("X", 2), Activity("Y", 2)]
        people = [
            person("a", [("X", 2), ("Y", 1)], [("b", -100)]),
            person("b", [("X", 2), ("Y", 1)], [("a", -100)]),
        ]
        for start in (sched(a="X", b="X"), sched(a="X", b="Y")):
            with self.subTest(start=start):
                result = as_mapping(improve_schedule(start, people, acts, rng=random.Random(0)))
                self.assertNotEqual(result["a"], result["b"])

    def test_enemies_sharing_their_only_choice_are_split(self):
        acts = [Activity("X", 2), Activity("Y", 2)]
        people = [
            person("a", [("X", 1)], [("b", -100)]),
            person("b", [("X", 1)], [("a", -100)]),
        ]
        start = sched(a="X", b="X")
        result = improve_schedule(start, people, acts, rng=random.Random(0))
        mapping = as_mapping(result)
        self.assertNotEqual(mapping["a"], mapping["b"])
        self.assertEqual(score_schedule(result, people), 1)

    def test_linked_pair_moves_to_top_choice_together(self):
        acts = [Activity("H", 2), Activity("T", 2)]
        people = [
            person("a", [("T", 1)], [("b", 5)]),
            person("b", [("T", 1)], [("a", 5)]),
        ]
        result = as_mapping(improve_schedule(sched(a="H", b="H"), people, acts, rng=random.Random(0)))
        self.assertEqual(result, {"a": "T", "b": "T"})

    def test_escape_from_local_optimum_never_loses(self):
        acts = [Activity("H", 2), Activity("T", 1)]
        people = [
            person("a", [("T", 1)], [("b", 5)]),
            person("b", [("T", 1)], [("a", 5)]),
        ]
        start = sched(a="H", b="H")
        snapshot = list(start)
        with mock.patch("cohort_scheduler.improve.mutate_schedule", wraps=mutate_schedule) as mutate:
            result = improve_schedule(start, people, acts, rng=random.Random(3))
        self.assertTrue(mutate.called)
        self.assertEqual(start, snapshot)
        self.assertGreaterEqual(score_schedule(result, people), score_schedule(start, people))
        self.assertEqual(as_mapping(result), {"a": "H", "b": "H"})

    def test_duplicate_entries_never_lower_the_score(self):
        acts = [Activity("X", 2)]
        people = [person("a", [("X", 5)])]
        start = [Assignment("a", "X"), Assignment("a", "X")]
        result = improve_schedule(start, people, acts, rng=random.Random(0))
        self.assertGreaterEqual(score_schedule(result, people), score_schedule(start, people))
        self.assertEqual(result, start)
        self.assertIsNot(result, start)

    def test_never_worse_and_input_untouched(self):
        acts = [Activity("X", 3), Activity("Y", 3), Activity("Z", 2)]
        rng = random.Random(9)
        ids = [f"p{i}" for i in range(8)]
        people = [
            person(
                pid,
                [(a.id, rng.randint(-2, 5)) for a in acts],
                [(rng.choice(ids), rng.randint(-5, 5)) for _ in range(2)],
            )
            for pid in ids
        ]
        start = [Assignment(pid, acts[i % 3].id) for i, pid in enumerate(ids)]
        snapshot = list(start)
        result = improve_schedule(start, people, acts, rng=random.Random(2))
        self.assertEqual(start, snapshot)
        self.assertIsNone(validate_schedule(result, acts))
        self.assertGreaterEqual(score_schedule(result, people), score_schedule(start, people))
        self.assertEqual([a.participant for a in result], ids)

    def test_zero_iterations_is_identity(self):
        acts = [Activity("X", 2), Activity("Y", 2)]
        people = [person("a", [("Y", 5)])]
        self.assertEqual(improve_schedule(sched(a="X"), people, acts, max_iterations=0), sched(a="X"))

    def test_unknown_activity(self):
        with self.assertRaises(UnknownActivityError):
            improve_schedule(sched(a="Q"), [person("a")], [Activity("X", 1)])


class RepairTests(unittest.TestCase):
    def setUp(self):
        self.acts = [Activity("A", 2), Activity("B", 2), Activity("C", 1)]
        self.people = [
            person("ana", [("C", 5), ("A", 1)]),
            person("ben", [("C", 3), ("B", 2)], [("ana", 1)]),
            person("cy", [("C", 1)]),
            person("dee", [("A", 1)]),
        ]

    def test_valid_schedule_is_fixed_point(self):
        valid = sched(ana="C", ben="B", cy="A", dee="A")
        self.assertEqual(repair_schedule(valid, self.people, self.acts), valid)

    def test_overflow_is_resolved(self):
        repaired = repair_schedule(sched(ana="C", ben="C", cy="C", dee="A"), self.people, self.acts)
        self.assertIsNone(validate_schedule(repaired, self.acts))
        self.assertEqual(sorted(as_mapping(repaired)), ["ana", "ben", "cy", "dee"])

    def test_missing_participants_are_placed(self):
        repaired = as_mapping(repair_schedule(sched(ana="C"), self.people, self.acts))
        self.assertEqual(sorted(repaired), ["ana", "ben", "cy", "dee"])
        self.assertEqual(repaired["ben"], "B")

    def test_not_enough_seats(self):
        acts = [Activity("A", 1)]
        with self.assertRaises(InfeasibleError):
            repair_schedule(sched(ana="A", ben="A"), self.people[:2], acts)

    def test_unknown_activity(self):
        with self.assertRaises(UnknownActivityError):
            repair_schedule(sched(ana="Q"), self.people, self.acts)


class HealTests(unittest.TestCase):
    def test_recruits_willing_participant(self):
        acts = [Activity("X", 5, min_size=3), Activity("Y", 6)]
        people = [
            person("a", [("X", 5)]),
            person("b", [("X", 5)]),
            person("c", [("Y", 5)]),
            person("d", [("Y", 5)]),
            person("e", [("Y", 5)]),
            person("f", [("X", 1)]),
        ]
        start = sched(a="X", b="X", c="Y", d="Y", e="Y", f="Y")
        healed = as_mapping(heal_minimum_size(start, people, acts))
        self.assertEqual(healed["f"], "X")
        self.assertEqual(sum(1 for act in healed.values() if act == "X"), 3)
        self.assertEqual([healed[p] for p in "cde"], ["Y", "Y", "Y"])

    def test_disbands_hopeless_activity(self):
        acts = [Activity("X", 5, min_size=3), Activity("Y", 5)]
        people = [
            person("g", [("X", 5), ("Y", 1)]),
            person("h", [("Y", 5)]),
            person("i", [("Y", 5)]),
            person("j", [("Y", 5)]),
        ]
        healed = heal_minimum_size(sched(g="X", h="Y", i="Y", j="Y"), people, acts)
        self.assertEqual(as_mapping(healed)["g"], "Y")

    def test_result_meets_every_minimum(self):
        acts = [Activity("X", 4, min_size=2), Activity("Y", 4, min_size=2), Activity("Z", 4)]
        people = [person(f"p{i}", [("Z", 3), ("X", 1), ("Y", 1)]) for i in range(6)]
        start = [Assignment("p0", "X")] + [Assignment(f"p{i}", "Z") for i in range(1, 4)] + \
                [Assignment("p4", "Y"), Assignment("p5", "Y")]
        healed = heal_minimum_size(start, people, acts)
        self.assertIsNotNone(healed)
        counts = {a.id: 0 for a in acts}
        for a in healed:
            counts[a.activity] += 1
        for act in acts:
            self.assertTrue(counts[act.id] == 0 or counts[act.id] >= (act.min_size or 0))
        self.assertIsNone(validate_schedule(healed, acts, check_minimum_size=True))

    def test_gives_up_without_progress(self):
        acts = [Activity("X", 3, min_size=3), Activity("Y", 3)]
        self.assertIsNone(heal_minimum_size(sched(solo="X"), [person("solo", [("X", 1)])], acts))


if __name__ == "__main__":
    unittest.main()

import math
import tempfile
import unittest
from pathlib import Path

from cohort_scheduler.config import SchedulerConfig, ScoringOptions, load_config
from cohort_scheduler.data_loader import (
    check_data,
    load_data,
    normalize_identifier,
    schedule_to_dataframe,
)
from cohort_scheduler.model import Activity, ActivityPreference, Assignment, Participant, PeerPreference


ACTIVITIES_CSV = """activity,capacity,min_size
101,2,
102,3,2
"""

PREFERENCES_CSV = """participant,kind,target,weight
ana,activity,101,5
ana,peer,ben,2
ben,activity,102,3
ben,peer,zed,1
cy,activity,103,1
"""


class NormalizationTests(unittest.TestCase):
    def test_numbers_and_strings_agree(self):
        self.assertEqual(normalize_identifier(101), "101")
        self.assertEqual(normalize_identifier(101.0), "101")
        self.assertEqual(normalize_identifier(" 101 "), "101")
        self.assertEqual(normalize_identifier(1.5), "1.5")

    def test_missing_identifier(self):
        for bad in (None, math.nan, "   "):
            with self.subTest(value=bad):
                with self.assertRaises(ValueError):
                    normalize_identifier(bad)


class LoaderTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        root = Path(self.tmp.name)
        (root / "activities.csv").write_text(ACTIVITIES_CSV, encoding="utf-8")
        (root / "preferences.csv").write_text(PREFERENCES_CSV, encoding="utf-8")
        self.bundle = load_data(root)

    def tearDown(self):
        self.tmp.cleanup()

    def test_activities(self):
        self.assertEqual(
            self.bundle.activities,
            [Activity("101", 2, None), Activity("102", 3, 2)],
        )

    def test_participants(self):
        ana, ben, cy = self.bundle.participants
        self.assertEqual(ana.id, "ana")
        self.assertEqual(ana.activity_preferences, (ActivityPreference("101", 5.0),))
        self.assertEqual(ana.peer_preferences, (PeerPreference("ben", 2.0),))
        self.assertEqual(ben.activity_weight("102"), 3)
        self.assertEqual(cy.id, "cy")

    def test_warnings(self):
        warnings = check_data(self.bundle.participants, self.bundle.activities)
        self.assertIn("ben lists unknown peer zed", warnings)
        self.assertIn("cy prefers unknown activity 103", warnings)

    def test_missing_columns(self):
        (Path(self.tmp.name) / "activities.csv").write_text("name,size\nx,1\n", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_data(self.tmp.name)


class DataCheckTests(unittest.TestCase):
    def test_duplicates_and_capacity(self):
        people = [Participant("a"), Participant("a"), Participant("b")]
        warnings = check_data(people, [Activity("x", 1), Activity("x", 0)])
        self.assertIn("duplicate participant id a", warnings)
        self.assertIn("duplicate activity id x", warnings)
        self.assertIn("total capacity 1 is below the number of participants 2", warnings)

    def test_schedule_frame(self):
        df = schedule_to_dataframe([Assignment("a", "x"), Assignment("b", "y")])
        self.assertEqual(list(df.columns), ["participant", "activity"])
        self.assertEqual(df["activity"].tolist(), ["x", "y"])
        self.assertTrue(schedule_to_dataframe([]).empty)


class ConfigTests(unittest.TestCase):
    def test_missing_file_gives_defaults(self):
        cfg = load_config("/nonexistent/config.yaml")
        self.assertEqual(cfg, SchedulerConfig())

    def test_yaml_overrides(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yaml"
            path.write_text(
                "generations: 3\nunused: 1\nscoring:\n  no_peer_penalty: 2.5\n",
                encoding="utf-8",
            )
            cfg = load_config(str(path))
        self.assertEqual(cfg.generations, 3)
        self.assertEqual(cfg.scoring, ScoringOptions(no_peer_penalty=2.5))
        self.assertFalse(cfg.scoring.is_default)

    def test_bad_scoring_block(self):
        with self.assertRaises(ValueError):
            SchedulerConfig.from_dict({"scoring": {"bonus": 1}})
        with self.assertRaises(ValueError):
            SchedulerConfig.from_dict({"scoring": [1, 2]})

    def test_non_mapping_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.yaml"
            path.write_text("- just\n- a list\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_config(str(path))


if __name__ == "__main__":
    unittest.main()

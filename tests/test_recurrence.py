import unittest
from datetime import datetime, timedelta, timezone

from core.errors import InvalidRecurrence
from core.recurrence import AlarmRule, next_fire_after, parse_rule, validate_rule

UTC = timezone.utc


class NextFireAfterTests(unittest.TestCase):
    def test_daily_before_and_after_target(self):
        rule = "FREQ=DAILY;BYHOUR=7;BYMINUTE=0"
        # Berlin is UTC+1 in January.
        at_six = datetime(2024, 1, 15, 5, 0, tzinfo=UTC)
        at_eight = datetime(2024, 1, 15, 7, 0, tzinfo=UTC)
        self.assertEqual(next_fire_after(rule, at_six, "Europe/Berlin"), datetime(2024, 1, 15, 6, 0, tzinfo=UTC))
        self.assertEqual(next_fire_after(rule, at_eight, "Europe/Berlin"), datetime(2024, 1, 16, 6, 0, tzinfo=UTC))

    def test_exactly_at_target_moves_to_next_day(self):
        t = datetime(2024, 1, 15, 7, 0, tzinfo=UTC)
        self.assertEqual(next_fire_after("FREQ=DAILY;BYHOUR=7", t), datetime(2024, 1, 16, 7, 0, tzinfo=UTC))

    def test_defaults_for_missing_time(self):
        t = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        self.assertEqual(next_fire_after("FREQ=DAILY", t), datetime(2024, 1, 16, 9, 0, tzinfo=UTC))
        self.assertEqual(
            next_fire_after("FREQ=DAILY", t, default_hour=18, default_minute=45),
            datetime(2024, 1, 15, 18, 45, tzinfo=UTC),
        )

    def test_weekly_picks_next_allowed_weekday(self):
        rule = "FREQ=WEEKLY;BYDAY=MO,TH;BYHOUR=6;BYMINUTE=30"
        monday_noon = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
        self.assertEqual(next_fire_after(rule, monday_noon), datetime(2024, 1, 18, 6, 30, tzinfo=UTC))

    def test_weekly_single_day_wraps_a_full_week(self):
        rule = "FREQ=WEEKLY;BYDAY=MO;BYHOUR=7"
        monday_after = datetime(2024, 1, 15, 8, 0, tzinfo=UTC)
        self.assertEqual(next_fire_after(rule, monday_after), datetime(2024, 1, 22, 7, 0, tzinfo=UTC))

    def test_once(self):
        rule = "FREQ=ONCE;DTSTART=2025-10-01T08:00:00.000Z"
        self.assertEqual(
            next_fire_after(rule, datetime(2025, 9, 30, tzinfo=UTC)),
            datetime(2025, 10, 1, 8, 0, tzinfo=UTC),
        )
        self.assertIsNone(next_fire_after(rule, datetime(2025, 10, 1, 8, 0, tzinfo=UTC)))
        self.assertIsNone(next_fire_after("FREQ=ONCE", datetime(2025, 1, 1, tzinfo=UTC)))

    def test_unknown_frequency_behaves_as_daily(self):
        t = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        self.assertEqual(
            next_fire_after("FREQ=YEARLY;BYHOUR=8", t),
            next_fire_after("FREQ=DAILY;BYHOUR=8", t),
        )
        self.assertEqual(next_fire_after("", t), datetime(2024, 1, 16, 9, 0, tzinfo=UTC))

    def test_target_time_is_wall_clock_across_dst(self):
        rule = "FREQ=DAILY;BYHOUR=7;BYMINUTE=0"
        # Saturday before the US spring-forward: 07:00 EST = 12:00Z, Sunday 07:00 EDT = 11:00Z.
        sat_after = datetime(2024, 3, 9, 13, 0, tzinfo=UTC)
        self.assertEqual(next_fire_after(rule, sat_after, "America/New_York"), datetime(2024, 3, 10, 11, 0, tzinfo=UTC))

    def test_result_is_always_strictly_later(self):
        rules = [
            "FREQ=DAILY;BYHOUR=0;BYMINUTE=0",
            "FREQ=DAILY;BYHOUR=2;BYMINUTE=30",
            "FREQ=DAILY;BYHOUR=23;BYMINUTE=59",
            "FREQ=WEEKLY;BYDAY=SU;BYHOUR=1;BYMINUTE=30",
            "FREQ=WEEKLY;BYHOUR=12",
            "FREQ=ONCE;DTSTART=2024-03-10T07:00:00Z",
            "BYHOUR=4",
            "garbage",
        ]
        zones = ["UTC", "America/New_York", "Europe/London", "Australia/Lord_Howe", "Asia/Kolkata"]
        start = datetime(2024, 3, 8, 0, 0, tzinfo=UTC)
        for rule in rules:
            for tz in zones:
                for step in range(0, 24 * 5, 7):
                    t = start + timedelta(hours=step, minutes=13)
                    nxt = next_fire_after(rule, t, tz)
                    if nxt is not None:
                        self.assertGreater(nxt, t, (rule, tz, t))


class RuleValidationTests(unittest.TestCase):
    def test_valid_rules(self):
        self.assertEqual(
            validate_rule("freq=weekly;byday=mo,fr;byhour=6;byminute=30"),
            AlarmRule(freq="WEEKLY", hour=6, minute=30, weekdays=frozenset({0, 4})),
        )
        self.assertEqual(validate_rule("BYHOUR=7").freq, "DAILY")
        self.assertEqual(
            validate_rule("FREQ=ONCE;DTSTART=2025-10-01T08:00:00Z").fire_at,
            datetime(2025, 10, 1, 8, 0, tzinfo=UTC),
        )

    def test_invalid_rules_rejected(self):
        bad = [
            "",
            "   ",
            "FREQ=HOURLY",
            "FREQ=DAILY;BYHOUR=24",
            "FREQ=DAILY;BYMINUTE=60",
            "FREQ=DAILY;BYHOUR=seven",
            "FREQ=WEEKLY;BYDAY=",
            "FREQ=WEEKLY;BYDAY=XX",
            "FREQ=DAILY;BYDAY=MO",
            "FREQ=ONCE",
            "FREQ=ONCE;DTSTART=tomorrow",
            "FREQ=DAILY;INTERVAL=2",
            "FREQ=DAILY;BYHOUR",
            "FREQ=DAILY;FREQ=WEEKLY",
        ]
        for text in bad:
            with self.assertRaises(InvalidRecurrence, msg=text):
                validate_rule(text)

    def test_lenient_parse_never_raises(self):
        r = parse_rule("FREQ=WEEKLY;BYDAY=ZZ;BYHOUR=99;junk")
        self.assertEqual(r.freq, "WEEKLY")
        self.assertIsNone(r.weekdays)
        self.assertIsNone(r.hour)


if __name__ == "__main__":
    unittest.main()

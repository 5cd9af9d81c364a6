import json
import unittest
from datetime import date, datetime, timezone

from core.errors import InvalidRecurrence
from core.schedule import (
    Daily,
    DaysOfWeek,
    EveryN,
    RuleString,
    Weekdays,
    Weekends,
    dump_schedule,
    is_due,
    parse_schedule,
)

SAT = date(2024, 1, 6)
SUN = date(2024, 1, 7)
MON = date(2024, 1, 8)
WED = date(2024, 1, 10)


class ScheduleEvaluatorTests(unittest.TestCase):
    def test_daily_always_due(self):
        for d in (SAT, SUN, MON, WED):
            self.assertTrue(is_due(Daily(), d, "UTC"))

    def test_weekdays_and_weekends(self):
        self.assertFalse(is_due(Weekdays(), SAT, "UTC"))
        self.assertFalse(is_due(Weekdays(), SUN, "UTC"))
        self.assertTrue(is_due(Weekdays(), MON, "UTC"))
        self.assertTrue(is_due(Weekends(), SAT, "UTC"))
        self.assertFalse(is_due(Weekends(), WED, "UTC"))

    def test_weekday_is_taken_in_owner_timezone(self):
        # Saturday 02:00Z is still Friday evening in New York.
        instant = datetime(2024, 1, 6, 2, 0, tzinfo=timezone.utc)
        self.assertTrue(is_due(Weekdays(), instant, "America/New_York"))
        self.assertFalse(is_due(Weekdays(), instant, "UTC"))

    def test_days_of_week(self):
        s = DaysOfWeek(days=frozenset({"mon", "wed"}))
        self.assertTrue(is_due(s, MON, "UTC"))
        self.assertTrue(is_due(s, WED, "UTC"))
        self.assertFalse(is_due(s, SAT, "UTC"))

    def test_days_of_week_empty_is_never_due(self):
        s = DaysOfWeek(days=frozenset())
        for d in (SAT, SUN, MON, WED):
            self.assertFalse(is_due(s, d, "UTC"))

    def test_every_n(self):
        s = EveryN(interval_days=3, anchor_date=date(2024, 1, 1))
        for d in (1, 4, 7):
            self.assertTrue(is_due(s, date(2024, 1, d), "UTC"), d)
        for d in (2, 3, 5, 6):
            self.assertFalse(is_due(s, date(2024, 1, d), "UTC"), d)
        self.assertFalse(is_due(s, date(2023, 12, 29), "UTC"))

    def test_every_n_counts_local_days_across_dst(self):
        s = EveryN(interval_days=2, anchor_date=date(2024, 3, 9))
        # 2024-03-11 local, reached through the 23h day of 2024-03-10.
        instant = datetime(2024, 3, 11, 23, 0, tzinfo=timezone.utc)  # 19:00 EDT
        self.assertTrue(is_due(s, instant, "America/New_York"))

    def test_rule_string_weekly(self):
        s = parse_schedule({"type": "rrule", "rule": "FREQ=WEEKLY;BYDAY=MO,WE"})
        self.assertTrue(is_due(s, MON, "UTC"))
        self.assertTrue(is_due(s, WED, "UTC"))
        self.assertFalse(is_due(s, SAT, "Europe/Berlin"))

    def test_rule_string_interval_uses_start_date(self):
        s = RuleString(rule="FREQ=DAILY;INTERVAL=2", start_date=date(2024, 1, 1))
        self.assertTrue(is_due(s, date(2024, 1, 3), "UTC"))
        self.assertFalse(is_due(s, date(2024, 1, 4), "UTC"))

    def test_rule_string_evaluated_in_local_day_bounds(self):
        s = RuleString(rule="RRULE:FREQ=WEEKLY;BYDAY=SA;BYHOUR=23;BYMINUTE=30")
        # Saturday 23:30 in Tokyo is Saturday 14:30Z: due on the Tokyo Saturday.
        self.assertTrue(is_due(s, SAT, "Asia/Tokyo"))
        self.assertFalse(is_due(s, SUN, "Asia/Tokyo"))

    def test_is_due_is_pure(self):
        s = RuleString(rule="FREQ=MONTHLY;BYMONTHDAY=10")
        results = {is_due(s, WED, "America/New_York") for _ in range(5)}
        self.assertEqual(results, {True})


class ScheduleParsingTests(unittest.TestCase):
    def test_parse_stored_formats(self):
        self.assertEqual(parse_schedule('{"type": "daily"}'), Daily())
        self.assertEqual(parse_schedule({"type": "weekends", "time": "08:30"}), Weekends(time="08:30"))
        self.assertEqual(
            parse_schedule({"type": "daysOfWeek", "days": ["Mon", "fri"]}),
            DaysOfWeek(days=frozenset({"mon", "fri"})),
        )
        self.assertEqual(
            parse_schedule({"type": "everyN", "every": 3, "startDate": "2024-01-01"}),
            EveryN(interval_days=3, anchor_date=date(2024, 1, 1)),
        )

    def test_dump_then_parse_gives_same_descriptor(self):
        s = DaysOfWeek(days=frozenset({"sat", "sun", "tue"}), time="07:15")
        text = dump_schedule(s)
        self.assertEqual(json.loads(text)["days"], ["sun", "tue", "sat"])
        self.assertEqual(parse_schedule(text), s)

    def test_rule_with_single_time_of_day_is_accepted(self):
        s = parse_schedule({"type": "rrule", "rule": "FREQ=DAILY;BYHOUR=7;BYMINUTE=30"})
        self.assertTrue(is_due(s, date(2024, 6, 3), "Europe/Berlin"))

    def test_invalid_descriptors_are_rejected(self):
        bad = [
            "not json",
            "[]",
            {"type": "hourly"},
            {"type": "everyN", "every": 0, "startDate": "2024-01-01"},
            {"type": "everyN", "every": -2, "startDate": "2024-01-01"},
            {"type": "everyN", "every": "3", "startDate": "2024-01-01"},
            {"type": "everyN", "every": 2, "startDate": "someday"},
            {"type": "daysOfWeek", "days": ["funday"]},
            {"type": "daysOfWeek", "days": ["monkey"]},
            {"type": "daysOfWeek", "days": ["wedding", "fri"]},
            {"type": "daily", "time": "25:00"},
            {"type": "rrule", "rule": ""},
            {"type": "rrule", "rule": "FREQ=SOMETIMES"},
            {"type": "rrule", "rule": "FREQ=MINUTELY"},
            {"type": "rrule", "rule": "INTERVAL=2"},
            {"type": "rrule", "rule": "FREQ=DAILY;BYHOUR=99"},
            {"type": "rrule", "rule": "FREQ=DAILY;BYSECOND=0,30"},
            {"type": "rrule", "rule": "FREQ=DAILY;BYHOUR=0,1,2,3;BYMINUTE=0"},
            {"type": "rrule", "rule": "FREQ=WEEKLY;BYDAY=MO;BYMINUTE=0,15,30,45"},
            {"type": "rrule", "rule": "DTSTART:20240101T000000Z\nRRULE:FREQ=DAILY"},
        ]
        for raw in bad:
            with self.assertRaises(InvalidRecurrence, msg=repr(raw)):
                parse_schedule(raw)


if __name__ == "__main__":
    unittest.main()

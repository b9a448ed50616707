# recurring/tests/test_cadence.py

from datetime import date, datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo

from django.test import SimpleTestCase

from recurring.services.cadence import (
    ANNUAL,
    DAILY,
    MONTHLY,
    WEEKLY,
    add_months,
    advance,
    midnight,
    occurrences,
    run_date_of,
    sunday_weekday,
)

FRIDAY = 5


class DailyWeeklyTests(SimpleTestCase):
    def test_daily_is_always_one_day(self):
        for start in (date(2024, 2, 28), date(2025, 2, 28), date(2025, 12, 31)):
            with self.subTest(start=start):
                self.assertEqual((advance(start, DAILY, {"interval_days": 5}) - start).days, 1)

    def test_weekly_to_named_weekday(self):
        wednesday = date(2025, 1, 1)
        self.assertEqual(sunday_weekday(wednesday), 3)
        self.assertEqual(advance(wednesday, WEEKLY, {"weekday": FRIDAY}), date(2025, 1, 3))
        self.assertEqual(advance(wednesday, WEEKLY, {"weekday": 0}), date(2025, 1, 5))

    def test_weekly_same_weekday_moves_a_full_week(self):
        self.assertEqual(advance(date(2025, 1, 1), WEEKLY, {"weekday": 3}), date(2025, 1, 8))

    def test_weekly_interval(self):
        self.assertEqual(advance(date(2025, 1, 1), WEEKLY, {"interval_weeks": 2}), date(2025, 1, 15))
        self.assertEqual(advance(date(2025, 12, 29), WEEKLY), date(2026, 1, 5))


class MonthlyTests(SimpleTestCase):
    def test_end_of_month_chain(self):
        self.assertEqual(
            occurrences(date(2025, 1, 31), MONTHLY, {"end_of_month": True}, 4),
            [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)],
        )

    def test_end_of_month_in_leap_year(self):
        self.assertEqual(advance(date(2024, 1, 31), MONTHLY, {"end_of_month": True}), date(2024, 2, 29))

    def test_end_of_month_wins_over_day_of_month(self):
        self.assertEqual(
            advance(date(2025, 3, 5), MONTHLY, {"end_of_month": True, "day_of_month": 10}),
            date(2025, 4, 30),
        )

    def test_day_of_month_clamps_per_month(self):
        opts = {"day_of_month": 31}
        self.assertEqual(advance(date(2025, 1, 31), MONTHLY, opts), date(2025, 2, 28))
        self.assertEqual(advance(date(2025, 2, 28), MONTHLY, opts), date(2025, 3, 31))
        self.assertEqual(advance(date(2025, 3, 31), MONTHLY, opts), date(2025, 4, 30))

    def test_plain_monthly_keeps_clamped_day(self):
        self.assertEqual(advance(date(2025, 1, 31), MONTHLY), date(2025, 2, 28))
        self.assertEqual(advance(date(2025, 11, 15), MONTHLY), date(2025, 12, 15))
        self.assertEqual(advance(date(2025, 12, 15), MONTHLY), date(2026, 1, 15))

    def test_third_friday_is_always_third_friday(self):
        opts = {"nth_week": 3, "nth_weekday": FRIDAY}
        current = date(2024, 12, 20)
        for _ in range(24):
            current = advance(current, MONTHLY, opts)
            with self.subTest(run=current):
                self.assertEqual(sunday_weekday(current), FRIDAY)
                self.assertEqual((current.day - 1) // 7, 2)
        self.assertEqual(advance(date(2025, 1, 17), MONTHLY, opts), date(2025, 2, 21))

    def test_fifth_week_clamps_to_month_end(self):
        self.assertEqual(
            advance(date(2025, 1, 31), MONTHLY, {"nth_week": 5, "nth_weekday": FRIDAY}),
            date(2025, 2, 28),
        )


class AnnualAndHelpersTests(SimpleTestCase):
    def test_annual(self):
        self.assertEqual(advance(date(2025, 6, 10), ANNUAL), date(2026, 6, 10))
        self.assertEqual(advance(date(2024, 2, 29), ANNUAL), date(2025, 2, 28))

    def test_add_months_rolls_years(self):
        self.assertEqual(add_months(2025, 12, 1), (2026, 1))
        self.assertEqual(add_months(2025, 1, -1), (2024, 12))
        self.assertEqual(add_months(2025, 6, 18), (2026, 12))

    def test_unknown_cadence(self):
        with self.assertRaises(ValueError):
            advance(date(2025, 1, 1), "HOURLY")

    def test_occurrences_stop_at_end_date(self):
        self.assertEqual(
            occurrences(date(2025, 1, 1), MONTHLY, {}, 5, end_date=date(2025, 2, 15)),
            [date(2025, 1, 1), date(2025, 2, 1)],
        )


class InstantTests(SimpleTestCase):
    def test_tenant_midnight_for_non_daily(self):
        chicago = ZoneInfo("America/Chicago")
        instant = midnight(date(2025, 3, 1), MONTHLY, chicago)

        self.assertEqual(instant, datetime(2025, 3, 1, 6, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(run_date_of(instant, MONTHLY, chicago), date(2025, 3, 1))

    def test_daily_ignores_tenant_zone(self):
        instant = midnight(date(2025, 3, 1), DAILY, ZoneInfo("America/Chicago"))
        self.assertEqual(instant, datetime(2025, 3, 1, 0, 0, tzinfo=dt_timezone.utc))

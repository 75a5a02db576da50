import json
import random
import uuid
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest import mock
from zoneinfo import ZoneInfo

from django.apps import apps
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import models
from django.http import HttpResponse
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone

from freelance_tracker.middleware import resolve_timezone, user_timezone_middleware

from .exceptions import ConflictError, NotFoundError, ValidationError
from .lifecycle import SessionLifecycleManager
from .metrics import (
    calculate_work_streak, compute_metrics, elapsed_seconds, group_sessions_by_day,
    monthly_earnings_series, monthly_hours_series, round_half_up, summarize_sessions,
)
from .models import MonthlyEarnings, WorkSession
from .services import TrackerService
from .store import DjangoSessionStore, InMemorySessionStore
from .utils import format_clock, format_duration_hms

User = get_user_model()
UTC = dt_timezone.utc
T0 = datetime(2024, 5, 15, 12, 0, tzinfo=UTC)
# 22:00 on May 1 in New York, already May 2 in UTC.
NEW_YORK_EVENING = datetime(2024, 5, 2, 2, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_session(start_time, duration=3600, is_active=False, user_id='u1', task_name='Design'):
    """Builds an unsaved session; completed unless ``is_active``."""
    end_time = None if is_active or duration is None else start_time + timedelta(seconds=duration)
    return WorkSession(
        user_id=user_id,
        task_name=task_name,
        start_time=start_time,
        end_time=end_time,
        duration=None if is_active else duration,
        is_active=is_active,
    )


def make_earnings(month, year, amount, user_id='u1'):
    return MonthlyEarnings(user_id=user_id, month=month, year=year, amount=Decimal(amount))


class RoundHalfUpTest(SimpleTestCase):
    def test_halves_round_towards_positive_infinity(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(-2.5), -2)
        self.assertEqual(round_half_up(-12.5), -12)

    def test_decimal_places(self):
        self.assertEqual(round_half_up(0.25, 1), Decimal('0.3'))
        self.assertEqual(round_half_up(1.44, 1), Decimal('1.4'))
        self.assertEqual(round_half_up(Decimal('31.99'), 0), 32)


class ComputeMetricsTest(SimpleTestCase):
    def test_income_change_against_previous_month(self):
        earnings = [make_earnings(5, 2024, '1000'), make_earnings(4, 2024, '800')]
        metrics = compute_metrics([], earnings, T0, tz=UTC)
        self.assertEqual(metrics['current_month_earnings'], Decimal('1000'))
        self.assertEqual(metrics['previous_month_earnings'], Decimal('800'))
        self.assertEqual(metrics['income_change_percent'], 25)

    def test_income_change_rounds_negative_halves_up(self):
        earnings = [make_earnings(5, 2024, '700'), make_earnings(4, 2024, '800')]
        metrics = compute_metrics([], earnings, T0, tz=UTC)
        # -12.5 rounds to -12, not -13.
        self.assertEqual(metrics['income_change_percent'], -12)

    def test_income_change_is_zero_without_previous_month(self):
        metrics = compute_metrics([], [make_earnings(5, 2024, '1000')], T0, tz=UTC)
        self.assertEqual(metrics['income_change_percent'], 0)

    def test_income_change_is_zero_when_previous_month_is_zero(self):
        earnings = [make_earnings(5, 2024, '1000'), make_earnings(4, 2024, '0')]
        metrics = compute_metrics([], earnings, T0, tz=UTC)
        self.assertEqual(metrics['income_change_percent'], 0)

    def test_previous_month_wraps_to_december(self):
        now = datetime(2024, 1, 10, 9, 0, tzinfo=UTC)
        earnings = [make_earnings(1, 2024, '750'), make_earnings(12, 2023, '500'), make_earnings(12, 2024, '9999')]
        metrics = compute_metrics([], earnings, now, tz=UTC)
        self.assertEqual(metrics['previous_month_earnings'], Decimal('500'))
        self.assertEqual(metrics['income_change_percent'], 50)

    def test_no_recent_sessions(self):
        old = make_session(T0 - timedelta(days=45), duration=7200)
        metrics = compute_metrics([old], [], T0, tz=UTC)
        self.assertEqual(metrics['total_hours'], 0)
        self.assertEqual(metrics['avg_daily_hours'], 0)
        self.assertEqual(metrics['hours_change'], -5.5)
        self.assertEqual(metrics['monthly_hours'], 0)
        self.assertEqual(metrics['monthly_earnings'], 0)
        self.assertEqual(metrics['avg_daily_income'], 0)

    def test_hour_averages_use_a_fixed_thirty_day_denominator(self):
        sessions = [
            make_session(T0 - timedelta(days=1), duration=20 * 3600),
            make_session(T0 - timedelta(days=10), duration=25 * 3600),
            # Running and old sessions are ignored.
            make_session(T0 - timedelta(hours=2), is_active=True),
            make_session(T0 - timedelta(days=31), duration=10 * 3600),
        ]
        metrics = compute_metrics(sessions, [], T0, tz=UTC)
        self.assertEqual(metrics['total_hours'], 45)
        self.assertEqual(metrics['avg_daily_hours'], 1.5)
        self.assertEqual(metrics['hours_change'], -4.0)
        self.assertEqual(metrics['monthly_hours'], 45)

    def test_paused_session_without_duration_contributes_nothing(self):
        paused = make_session(T0 - timedelta(days=1), duration=None)
        metrics = compute_metrics([paused], [], T0, tz=UTC)
        self.assertEqual(metrics['total_hours'], 0)

    def test_hours_change_above_baseline(self):
        sessions = [make_session(T0 - timedelta(days=d), duration=6 * 3600) for d in range(1, 30)]
        sessions.append(make_session(T0 - timedelta(hours=8), duration=6 * 3600))
        metrics = compute_metrics(sessions, [], T0, tz=UTC)
        self.assertEqual(metrics['avg_daily_hours'], 6.0)
        self.assertEqual(metrics['hours_change'], 0.5)
        self.assertEqual(metrics['monthly_hours'], 180)

    def test_avg_daily_income_uses_days_in_current_month(self):
        metrics = compute_metrics([], [make_earnings(5, 2024, '3100')], T0, tz=UTC)
        self.assertEqual(metrics['avg_daily_income'], 100)
        feb = datetime(2024, 2, 10, tzinfo=UTC)
        metrics = compute_metrics([], [make_earnings(2, 2024, '2900')], feb, tz=UTC)
        # 2024 is a leap year: 2900 / 29.
        self.assertEqual(metrics['avg_daily_income'], 100)

    def test_avg_daily_income_is_rounded(self):
        metrics = compute_metrics([], [make_earnings(5, 2024, '1000')], T0, tz=UTC)
        self.assertEqual(metrics['avg_daily_income'], 32)


class WorkStreakTest(SimpleTestCase):
    def days_ago(self, days):
        return make_session(T0 - timedelta(days=days))

    def test_today_yesterday_and_two_days_ago(self):
        sessions = [self.days_ago(0), self.days_ago(1), self.days_ago(2), self.days_ago(5)]
        self.assertEqual(calculate_work_streak(sessions, T0, tz=UTC), 3)

    def test_empty_today_does_not_break_streak(self):
        sessions = [self.days_ago(1), self.days_ago(2)]
        self.assertEqual(calculate_work_streak(sessions, T0, tz=UTC), 2)

    def test_today_only(self):
        self.assertEqual(calculate_work_streak([self.days_ago(0)], T0, tz=UTC), 1)

    def test_empty_yesterday_ends_streak(self):
        sessions = [self.days_ago(0), self.days_ago(2), self.days_ago(3)]
        self.assertEqual(calculate_work_streak(sessions, T0, tz=UTC), 1)

    def test_empty_today_and_yesterday(self):
        self.assertEqual(calculate_work_streak([self.days_ago(2)], T0, tz=UTC), 0)

    def test_active_session_does_not_qualify(self):
        sessions = [make_session(T0 - timedelta(hours=1), is_active=True), self.days_ago(1)]
        self.assertEqual(calculate_work_streak(sessions, T0, tz=UTC), 1)

    def test_multiple_sessions_on_one_day_count_once(self):
        sessions = [self.days_ago(0), make_session(T0 - timedelta(hours=3)), self.days_ago(1)]
        self.assertEqual(calculate_work_streak(sessions, T0, tz=UTC), 2)

    def test_streak_is_capped_at_a_year(self):
        sessions = [self.days_ago(d) for d in range(400)]
        self.assertEqual(calculate_work_streak(sessions, T0, tz=UTC), 365)

    def test_days_follow_the_given_time_zone(self):
        stockholm = ZoneInfo('Europe/Stockholm')
        now = datetime(2024, 5, 15, 8, 0, tzinfo=UTC)
        # 23:30 UTC on the 13th is already the 14th in Stockholm.
        late_session = make_session(datetime(2024, 5, 13, 23, 30, tzinfo=UTC))
        self.assertEqual(calculate_work_streak([late_session], now, tz=stockholm), 1)
        self.assertEqual(calculate_work_streak([late_session], now, tz=UTC), 0)

    def test_streak_in_metrics(self):
        sessions = [self.days_ago(0), self.days_ago(1), self.days_ago(2)]
        self.assertEqual(compute_metrics(sessions, [], T0, tz=UTC)['work_streak'], 3)


class ChartAndJournalTest(SimpleTestCase):
    def test_monthly_hours_series_covers_six_months(self):
        sessions = [
            make_session(datetime(2024, 5, 2, 9, tzinfo=UTC), duration=5 * 3600),
            make_session(datetime(2024, 5, 3, 9, tzinfo=UTC), duration=2 * 3600 + 1800),
            make_session(datetime(2024, 1, 3, 9, tzinfo=UTC), duration=3600),
            make_session(datetime(2023, 11, 3, 9, tzinfo=UTC), duration=3600),
            make_session(datetime(2024, 5, 14, 9, tzinfo=UTC), is_active=True),
        ]
        series = monthly_hours_series(sessions, T0, tz=UTC)
        self.assertEqual([point['label'] for point in series], ['Dec', 'Jan', 'Feb', 'Mar', 'Apr', 'May'])
        self.assertEqual([point['year'] for point in series], [2023, 2024, 2024, 2024, 2024, 2024])
        # 7.5 hours rounds up to 8.
        self.assertEqual([point['hours'] for point in series], [0, 1, 0, 0, 0, 8])

    def test_monthly_earnings_series(self):
        earnings = [make_earnings(5, 2024, '1200.50'), make_earnings(3, 2024, '800'), make_earnings(5, 2023, '50')]
        series = monthly_earnings_series(earnings, T0, months=3, tz=UTC)
        self.assertEqual([(p['month'], p['amount']) for p in series], [(3, Decimal('800')), (4, Decimal('0')), (5, Decimal('1200.50'))])

    def test_group_sessions_by_day(self):
        first = make_session(datetime(2024, 5, 14, 9, tzinfo=UTC), duration=600)
        second = make_session(datetime(2024, 5, 14, 15, tzinfo=UTC), duration=1200)
        paused = make_session(datetime(2024, 5, 15, 8, tzinfo=UTC), duration=None)
        days = group_sessions_by_day([first, paused, second], tz=UTC)
        self.assertEqual([d['date'].isoformat() for d in days], ['2024-05-15', '2024-05-14'])
        self.assertEqual(days[1]['sessions'], [second, first])
        self.assertEqual(days[1]['total_duration'], 1800)
        self.assertEqual(days[0]['total_duration'], 0)

    def test_summarize_sessions(self):
        sessions = [make_session(T0, duration=60), make_session(T0, duration=None)]
        self.assertEqual(summarize_sessions(sessions), {'count': 2, 'total_duration': 60})

    def test_elapsed_seconds(self):
        running = make_session(T0, is_active=True)
        self.assertEqual(elapsed_seconds(running, T0 + timedelta(seconds=90, microseconds=999)), 90)
        done = make_session(T0, duration=125)
        self.assertEqual(elapsed_seconds(done, T0 + timedelta(days=2)), 125)

    def test_format_helpers(self):
        self.assertEqual(format_clock(3725), '01:02:05')
        self.assertEqual(format_clock(None), '00:00:00')
        self.assertEqual(format_duration_hms(3723), '1h 2m 3s')
        self.assertEqual(format_duration_hms(3600), '1h')
        self.assertEqual(format_duration_hms(0), '0s')


class SessionLifecycleManagerTest(SimpleTestCase):
    def setUp(self):
        self.store = InMemorySessionStore()
        self.clock = FakeClock(T0)
        self.manager = SessionLifecycleManager(self.store, clock=self.clock)
        self.user_id = str(uuid.uuid4())
        self.other_user_id = str(uuid.uuid4())

    def test_start_creates_active_session(self):
        session = self.manager.start(self.user_id, '  Design  ')
        self.assertTrue(session.is_active)
        self.assertEqual(session.task_name, 'Design')
        self.assertEqual(session.start_time, T0)
        self.assertIsNone(session.end_time)
        self.assertIsNone(session.duration)

    def test_complete_after_125_seconds(self):
        session = self.manager.start(self.user_id, 'Design')
        self.clock.advance(seconds=125)
        session = self.manager.complete(session.pk, self.user_id)
        self.assertEqual(session.duration, 125)
        self.assertFalse(session.is_active)
        self.assertEqual(session.end_time, T0 + timedelta(seconds=125))

    def test_duration_is_floored(self):
        session = self.manager.start(self.user_id, 'Design')
        self.clock.advance(seconds=59, milliseconds=900)
        self.assertEqual(self.manager.complete(session.pk, self.user_id).duration, 59)

    def test_start_twice_conflicts(self):
        self.manager.start(self.user_id, 'Design')
        with self.assertRaises(ConflictError):
            self.manager.start(self.user_id, 'Development')

    def test_other_users_can_start_concurrently(self):
        self.manager.start(self.user_id, 'Design')
        session = self.manager.start(self.other_user_id, 'Design')
        self.assertTrue(session.is_active)

    def test_start_requires_task_name(self):
        for task_name in (None, '', '   ', 42):
            with self.assertRaises(ValidationError):
                self.manager.start(self.user_id, task_name)
        with self.assertRaises(ValidationError) as cm:
            self.manager.start(self.user_id, 'x' * 201)
        self.assertIn('task_name', cm.exception.errors)

    def test_pause_keeps_end_time_empty_and_is_idempotent(self):
        session = self.manager.start(self.user_id, 'Design')
        self.clock.advance(minutes=10)
        session = self.manager.pause(session.pk, self.user_id)
        self.assertFalse(session.is_active)
        self.assertIsNone(session.end_time)
        self.assertIsNone(session.duration)
        session = self.manager.pause(session.pk, self.user_id)
        self.assertFalse(session.is_active)
        self.assertIsNone(self.store.get_active_work_session(self.user_id))

    def test_paused_time_counts_towards_duration(self):
        session = self.manager.start(self.user_id, 'Design')
        self.clock.advance(minutes=10)
        self.manager.pause(session.pk, self.user_id)
        self.clock.advance(minutes=30)
        session = self.manager.resume(session.pk, self.user_id)
        self.assertTrue(session.is_active)
        self.assertEqual(session.start_time, T0)
        self.clock.advance(minutes=5)
        session = self.manager.complete(session.pk, self.user_id)
        self.assertEqual(session.duration, 45 * 60)

    def test_start_allowed_while_another_session_is_paused(self):
        first = self.manager.start(self.user_id, 'Design')
        self.manager.pause(first.pk, self.user_id)
        second = self.manager.start(self.user_id, 'Development')
        self.assertTrue(second.is_active)
        # The paused one cannot come back while the new one runs.
        with self.assertRaises(ConflictError):
            self.manager.resume(first.pk, self.user_id)

    def test_resume_completed_session_conflicts(self):
        session = self.manager.start(self.user_id, 'Design')
        self.manager.complete(session.pk, self.user_id)
        with self.assertRaises(ConflictError):
            self.manager.resume(session.pk, self.user_id)

    def test_resume_active_session_is_harmless(self):
        session = self.manager.start(self.user_id, 'Design')
        self.assertTrue(self.manager.resume(session.pk, self.user_id).is_active)

    def test_other_users_session_is_not_found(self):
        session = self.manager.start(self.user_id, 'Design')
        for action in (self.manager.pause, self.manager.resume, self.manager.complete):
            with self.assertRaises(NotFoundError):
                action(session.pk, self.other_user_id)
        self.assertTrue(self.store.get_work_session(session.pk).is_active)

    def test_unknown_session_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self.manager.complete(uuid.uuid4(), self.user_id)

    def test_complete_twice_recomputes_from_original_start(self):
        session = self.manager.start(self.user_id, 'Design')
        self.clock.advance(seconds=60)
        self.manager.complete(session.pk, self.user_id)
        self.clock.advance(seconds=60)
        session = self.manager.complete(session.pk, self.user_id)
        self.assertEqual(session.duration, 120)

    def test_complete_never_ends_before_start(self):
        session = self.manager.start(self.user_id, 'Design')
        self.clock.advance(seconds=-30)
        session = self.manager.complete(session.pk, self.user_id)
        self.assertEqual(session.duration, 0)
        self.assertGreaterEqual(session.end_time, session.start_time)

    def test_at_most_one_active_session_after_random_operations(self):
        rng = random.Random(1234)
        for _ in range(300):
            self.clock.advance(seconds=rng.randint(0, 600))
            sessions = self.store.get_work_sessions_by_user(self.user_id)
            action = rng.choice(['start', 'pause', 'resume', 'complete'])
            try:
                if action == 'start' or not sessions:
                    self.manager.start(self.user_id, 'Task')
                else:
                    getattr(self.manager, action)(rng.choice(sessions).pk, self.user_id)
            except ConflictError:
                pass
            active = [s for s in self.store.get_work_sessions_by_user(self.user_id) if s.is_active]
            self.assertLessEqual(len(active), 1)
            for s in self.store.get_work_sessions_by_user(self.user_id):
                if s.end_time is not None:
                    self.assertGreaterEqual(s.end_time, s.start_time)
                    self.assertGreaterEqual(s.duration, 0)


class InMemorySessionStoreTest(SimpleTestCase):
    def setUp(self):
        self.store = InMemorySessionStore()

    def test_create_and_find_users(self):
        user = self.store.create_user('alice', 'alice@example.com', 'S3cure-pass-2024', name='Alice')
        self.assertEqual(self.store.get_user(user.pk), user)
        self.assertEqual(self.store.get_user_by_email('ALICE@example.com'), user)
        self.assertEqual(self.store.get_user_by_username('alice'), user)
        self.assertTrue(user.check_password('S3cure-pass-2024'))
        self.assertNotEqual(user.password, 'S3cure-pass-2024')
        self.assertIsNone(self.store.get_user_by_username('bob'))

    def test_upsert_earnings_preserves_id(self):
        created = self.store.update_monthly_earnings('u1', 5, 2024, Decimal('1000'))
        updated = self.store.update_monthly_earnings('u1', 5, 2024, Decimal('1250.50'))
        self.assertEqual(created.pk, updated.pk)
        self.assertEqual(self.store.get_monthly_earnings('u1', 5, 2024).amount, Decimal('1250.50'))
        self.assertEqual(len(self.store.get_monthly_earnings_by_user('u1')), 1)

    def test_earnings_sorted_latest_month_first(self):
        for month, year in [(11, 2023), (2, 2024), (12, 2023)]:
            self.store.create_monthly_earnings('u1', month, year, Decimal('1'))
        self.store.create_monthly_earnings('u2', 6, 2024, Decimal('1'))
        ordered = [(e.month, e.year) for e in self.store.get_monthly_earnings_by_user('u1')]
        self.assertEqual(ordered, [(2, 2024), (12, 2023), (11, 2023)])

    def test_second_active_session_is_rejected(self):
        self.store.create_work_session('u1', 'A', T0, is_active=True)
        with self.assertRaises(ConflictError):
            self.store.create_work_session('u1', 'B', T0, is_active=True)

    def test_update_unknown_session_returns_none(self):
        self.assertIsNone(self.store.update_work_session(uuid.uuid4(), is_active=False))

    def test_session_queries(self):
        older = self.store.create_work_session('u1', 'Older', T0 - timedelta(days=1), duration=60)
        morning = self.store.create_work_session('u1', 'Morning', T0.replace(hour=8), duration=60)
        noon = self.store.create_work_session('u1', 'Noon', T0, duration=60)
        running = self.store.create_work_session('u1', 'Running', T0 + timedelta(hours=1), is_active=True)
        self.store.create_work_session('u2', 'Theirs', T0, duration=60)

        self.assertEqual(self.store.get_work_sessions_by_user('u1'), [running, noon, morning, older])
        self.assertEqual(self.store.get_active_work_session('u1'), running)
        with timezone.override(UTC):
            self.assertEqual(self.store.get_todays_work_sessions('u1', now=T0), [morning, noon])
        self.assertEqual(
            self.store.get_work_sessions_by_date_range('u1', T0 - timedelta(days=1), T0),
            [noon, morning, older],
        )


class DjangoSessionStoreTest(TestCase):
    def setUp(self):
        self.store = DjangoSessionStore()
        self.user = self.store.create_user('alice', 'alice@example.com', 'S3cure-pass-2024', name='Alice')
        self.other = self.store.create_user('bob', 'bob@example.com', 'S3cure-pass-2024')

    def test_user_lookups(self):
        self.assertEqual(self.store.get_user(self.user.pk), self.user)
        self.assertEqual(self.store.get_user_by_email('Alice@Example.com'), self.user)
        self.assertEqual(self.store.get_user_by_username('bob'), self.other)
        self.assertIsNone(self.store.get_user('not-a-uuid'))

    def test_upsert_earnings_preserves_id(self):
        created = self.store.update_monthly_earnings(self.user.pk, 5, 2024, Decimal('1000'))
        updated = self.store.update_monthly_earnings(self.user.pk, 5, 2024, Decimal('1500'))
        self.assertEqual(created.pk, updated.pk)
        self.assertEqual(MonthlyEarnings.objects.filter(user=self.user).count(), 1)
        self.assertEqual(self.store.get_monthly_earnings(self.user.pk, 5, 2024).amount, Decimal('1500.00'))

    def test_earnings_sorted_latest_month_first(self):
        for month, year in [(11, 2023), (2, 2024), (12, 2023)]:
            self.store.create_monthly_earnings(self.user.pk, month, year, Decimal('10'))
        ordered = [(e.month, e.year) for e in self.store.get_monthly_earnings_by_user(self.user.pk)]
        self.assertEqual(ordered, [(2, 2024), (12, 2023), (11, 2023)])

    def test_database_rejects_second_active_session(self):
        self.store.create_work_session(self.user.pk, 'A', T0, is_active=True)
        with self.assertRaises(ConflictError):
            self.store.create_work_session(self.user.pk, 'B', T0, is_active=True)
        # Another user is unaffected.
        self.store.create_work_session(self.other.pk, 'C', T0, is_active=True)
        self.assertEqual(WorkSession.objects.filter(is_active=True).count(), 2)

    def test_update_work_session(self):
        session = self.store.create_work_session(self.user.pk, 'A', T0, is_active=True)
        updated = self.store.update_work_session(session.pk, is_active=False)
        self.assertFalse(updated.is_active)
        session.refresh_from_db()
        self.assertFalse(session.is_active)
        self.assertIsNone(self.store.update_work_session(uuid.uuid4(), is_active=False))

    def test_session_queries(self):
        older = self.store.create_work_session(self.user.pk, 'Older', T0 - timedelta(days=1), duration=60)
        morning = self.store.create_work_session(self.user.pk, 'Morning', T0.replace(hour=8), duration=60)
        noon = self.store.create_work_session(self.user.pk, 'Noon', T0, duration=60)
        running = self.store.create_work_session(self.user.pk, 'Running', T0 + timedelta(hours=1), is_active=True)
        self.store.create_work_session(self.other.pk, 'Theirs', T0, duration=60)

        self.assertEqual(self.store.get_work_sessions_by_user(self.user.pk), [running, noon, morning, older])
        self.assertEqual(self.store.get_active_work_session(self.user.pk), running)
        with timezone.override(UTC):
            self.assertEqual(self.store.get_todays_work_sessions(self.user.pk, now=T0), [morning, noon])
        self.assertEqual(
            self.store.get_work_sessions_by_date_range(self.user.pk, T0 - timedelta(days=1), T0),
            [noon, morning, older],
        )

    def test_user_lock_allows_nested_work(self):
        with self.store.user_lock(self.user.pk):
            session = self.store.create_work_session(self.user.pk, 'A', T0, is_active=True)
        self.assertTrue(WorkSession.objects.filter(pk=session.pk).exists())


class TrackerServiceTest(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock(T0)
        self.service = TrackerService(InMemorySessionStore(), clock=self.clock)

    def test_upsert_earnings_validates_input(self):
        bad_inputs = [
            {'month': 13, 'year': 2024, 'amount': '10'},
            {'month': 0, 'year': 2024, 'amount': '10'},
            {'month': 'May', 'year': 2024, 'amount': '10'},
            {'month': 5, 'year': 0, 'amount': '10'},
            {'month': 5, 'year': 2024, 'amount': '-1'},
            {'month': 5, 'year': 2024, 'amount': 'lots'},
            {'month': 5, 'year': 2024, 'amount': 'NaN'},
        ]
        for data in bad_inputs:
            with self.assertRaises(ValidationError):
                self.service.upsert_earnings('u1', **data)
        self.assertEqual(self.service.list_earnings('u1'), [])

    def test_upsert_earnings_accepts_strings(self):
        earnings = self.service.upsert_earnings('u1', '5', '2024', '1000.5')
        self.assertEqual((earnings.month, earnings.year, earnings.amount), (5, 2024, Decimal('1000.50')))

    def test_compute_metrics_end_to_end(self):
        self.service.upsert_earnings('u1', 5, 2024, 1000)
        self.service.upsert_earnings('u1', 4, 2024, 800)
        for days_ago in (2, 1, 0):
            self.clock.now = T0 - timedelta(days=days_ago, hours=2)
            session = self.service.start_session('u1', 'Design')
            self.clock.advance(hours=1)
            self.service.complete_session(session.pk, 'u1')
        self.clock.now = T0
        with timezone.override(UTC):
            metrics = self.service.compute_metrics('u1')
        self.assertEqual(metrics['income_change_percent'], 25)
        self.assertEqual(metrics['work_streak'], 3)
        self.assertEqual(metrics['total_hours'], 3)
        self.assertEqual(metrics['avg_daily_hours'], 0.1)

    def test_list_sessions_by_range(self):
        self.clock.now = T0 - timedelta(days=3)
        old = self.service.start_session('u1', 'Old')
        self.service.complete_session(old.pk, 'u1')
        self.clock.now = T0
        new = self.service.start_session('u1', 'New')
        self.service.complete_session(new.pk, 'u1')
        self.assertEqual(self.service.list_sessions('u1'), [new, old])
        self.assertEqual(self.service.list_sessions('u1', T0 - timedelta(days=1), T0), [new])
        with self.assertRaises(ValidationError):
            self.service.list_sessions('u1', T0, T0 - timedelta(days=1))

    def test_chart_data_and_journal(self):
        session = self.service.start_session('u1', 'Design')
        self.clock.advance(hours=2)
        self.service.complete_session(session.pk, 'u1')
        with timezone.override(UTC):
            charts = self.service.chart_data('u1')
            journal = self.service.journal('u1')
        self.assertEqual(len(charts['hours']), 6)
        self.assertEqual(charts['hours'][-1]['hours'], 2)
        self.assertEqual(len(journal), 1)
        self.assertEqual(journal[0]['total_duration'], 7200)


class SessionViewsTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='testuser', email='test@example.com', password='testpassword')
        self.other_user = User.objects.create_user(username='otheruser', email='other@example.com', password='testpassword')
        self.client.login(username='testuser', password='testpassword')
        self.sessions_url = reverse('worklog:sessions')

    def start(self, task_name='Design'):
        return self.client.post(self.sessions_url, {'task_name': task_name})

    def test_sessions_require_login(self):
        self.client.logout()
        response = self.client.get(self.sessions_url)
        self.assertEqual(response.status_code, 302)
        self.assertRedirects(response, f'/accounts/login/?next={self.sessions_url}', fetch_redirect_response=False)

    def test_health_is_public(self):
        self.client.logout()
        response = self.client.get(reverse('worklog:health'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'ok')

    def test_start_session(self):
        response = self.start()
        self.assertEqual(response.status_code, 201)
        data = response.json()['session']
        self.assertTrue(data['is_active'])
        self.assertEqual(data['task_name'], 'Design')
        self.assertTrue(WorkSession.objects.filter(user=self.user, is_active=True).exists())

    def test_start_session_with_json_body(self):
        response = self.client.post(self.sessions_url, data=json.dumps({'task_name': 'Research'}), content_type='application/json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['session']['task_name'], 'Research')

    def test_malformed_json_body(self):
        response = self.client.post(self.sessions_url, data='{not json', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_start_session_twice_conflicts(self):
        self.start()
        response = self.start('Development')
        self.assertEqual(response.status_code, 409)
        self.assertFalse(response.json()['success'])
        self.assertEqual(WorkSession.objects.filter(user=self.user).count(), 1)

    def test_start_session_without_task_name(self):
        response = self.client.post(self.sessions_url, {})
        self.assertEqual(response.status_code, 400)
        self.assertIn('task_name', response.json()['errors'])

    def test_pause_resume_complete(self):
        session_id = self.start().json()['session']['id']

        response = self.client.post(reverse('worklog:pause_session', kwargs={'pk': session_id}))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()['session']['is_active'])
        self.assertIsNone(response.json()['session']['end_time'])

        response = self.client.post(reverse('worklog:resume_session', kwargs={'pk': session_id}))
        self.assertTrue(response.json()['session']['is_active'])

        response = self.client.post(reverse('worklog:complete_session', kwargs={'pk': session_id}))
        self.assertEqual(response.status_code, 200)
        session = WorkSession.objects.get(pk=session_id)
        self.assertFalse(session.is_active)
        self.assertIsNotNone(session.end_time)
        self.assertGreaterEqual(session.duration, 0)

    def test_transition_get_request_not_allowed(self):
        session_id = self.start().json()['session']['id']
        response = self.client.get(reverse('worklog:pause_session', kwargs={'pk': session_id}))
        self.assertEqual(response.status_code, 405)
        self.assertTrue(WorkSession.objects.get(pk=session_id).is_active)

    def test_other_users_session_not_found(self):
        session = WorkSession.objects.create(user=self.other_user, task_name='Theirs', start_time=timezone.now(), is_active=True)
        for name in ('pause_session', 'resume_session', 'complete_session'):
            response = self.client.post(reverse(f'worklog:{name}', kwargs={'pk': session.pk}))
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.json()['error'], 'Session not found')
        session.refresh_from_db()
        self.assertTrue(session.is_active)

    def test_unknown_session_not_found(self):
        response = self.client.post(reverse('worklog:complete_session', kwargs={'pk': uuid.uuid4()}))
        self.assertEqual(response.status_code, 404)

    def test_active_session_includes_elapsed_time(self):
        WorkSession.objects.create(user=self.user, task_name='Design', start_time=timezone.now() - timedelta(minutes=5), is_active=True)
        data = self.client.get(reverse('worklog:active_session')).json()['session']
        self.assertGreaterEqual(data['elapsed'], 300)
        self.assertTrue(data['elapsed_display'].startswith('00:05'))

    def test_no_active_session(self):
        response = self.client.get(reverse('worklog:active_session'))
        self.assertIsNone(response.json()['session'])

    def test_todays_sessions(self):
        now = timezone.now()
        WorkSession.objects.create(user=self.user, task_name='Done', start_time=now, end_time=now, duration=90, is_active=False)
        WorkSession.objects.create(user=self.user, task_name='Running', start_time=now, is_active=True)
        WorkSession.objects.create(user=self.user, task_name='Old', start_time=now - timedelta(days=3), end_time=now, duration=60)
        data = self.client.get(reverse('worklog:todays_sessions')).json()
        self.assertEqual([s['task_name'] for s in data['sessions']], ['Done'])
        self.assertEqual(data['summary'], {'count': 1, 'total_duration': 90})

    def test_list_sessions_newest_first_and_by_range(self):
        now = timezone.now()
        WorkSession.objects.create(user=self.user, task_name='Old', start_time=now - timedelta(days=10), duration=60)
        WorkSession.objects.create(user=self.user, task_name='New', start_time=now - timedelta(days=1), duration=60)
        WorkSession.objects.create(user=self.other_user, task_name='Theirs', start_time=now, duration=60)

        data = self.client.get(self.sessions_url).json()
        self.assertEqual([s['task_name'] for s in data['sessions']], ['New', 'Old'])

        response = self.client.get(self.sessions_url, {
            'start_date': (now - timedelta(days=2)).strftime('%Y-%m-%d %H:%M:%S'),
            'end_date': now.strftime('%Y-%m-%d %H:%M:%S'),
        })
        self.assertEqual([s['task_name'] for s in response.json()['sessions']], ['New'])

    def test_list_sessions_invalid_range(self):
        response = self.client.get(self.sessions_url, {'start_date': 'not-a-date'})
        self.assertEqual(response.status_code, 400)
        response = self.client.get(self.sessions_url, {'start_date': '2024-05-10', 'end_date': '2024-05-01'})
        self.assertEqual(response.status_code, 400)

    def test_date_range_follows_cookie_time_zone(self):
        def completed(task_name, start_time):
            WorkSession.objects.create(user=self.user, task_name=task_name, start_time=start_time, end_time=start_time, duration=60)

        completed('Before midnight', datetime(2024, 5, 1, 3, 50, tzinfo=UTC))  # 23:50 on Apr 30 in New York
        completed('After midnight', datetime(2024, 5, 1, 4, 10, tzinfo=UTC))
        completed('Late evening', datetime(2024, 5, 2, 3, 50, tzinfo=UTC))
        day = {'start_date': '2024-05-01 00:00:00', 'end_date': '2024-05-01 23:59:59'}

        self.client.cookies['timezone'] = 'America/New_York'
        data = self.client.get(self.sessions_url, day).json()
        self.assertEqual([s['task_name'] for s in data['sessions']], ['Late evening', 'After midnight'])

        self.client.cookies['timezone'] = 'UTC'
        data = self.client.get(self.sessions_url, day).json()
        self.assertEqual([s['task_name'] for s in data['sessions']], ['After midnight', 'Before midnight'])

    def test_todays_sessions_use_cookie_time_zone(self):
        for task_name, start_time in [
            ('Afternoon', datetime(2024, 5, 1, 14, 0, tzinfo=UTC)),
            ('Evening', datetime(2024, 5, 2, 1, 0, tzinfo=UTC)),
            ('Day before', datetime(2024, 4, 30, 23, 0, tzinfo=UTC)),
        ]:
            WorkSession.objects.create(user=self.user, task_name=task_name, start_time=start_time, end_time=start_time, duration=1800)

        self.client.cookies['timezone'] = 'America/New_York'
        with mock.patch('django.utils.timezone.now', return_value=NEW_YORK_EVENING):
            data = self.client.get(reverse('worklog:todays_sessions')).json()
        self.assertEqual([s['task_name'] for s in data['sessions']], ['Afternoon', 'Evening'])
        self.assertEqual(data['summary'], {'count': 2, 'total_duration': 3600})


class EarningsViewsTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='testuser', email='test@example.com', password='testpassword')
        self.client.login(username='testuser', password='testpassword')
        self.url = reverse('worklog:earnings')

    def test_upsert_keeps_id(self):
        first = self.client.post(self.url, {'month': 5, 'year': 2024, 'amount': '1000'}).json()['earnings']
        second = self.client.post(self.url, {'month': 5, 'year': 2024, 'amount': '1200.50'}).json()['earnings']
        self.assertEqual(first['id'], second['id'])
        self.assertEqual(MonthlyEarnings.objects.get(user=self.user).amount, Decimal('1200.50'))

    def test_negative_amount_rejected(self):
        response = self.client.post(self.url, {'month': 5, 'year': 2024, 'amount': '-5'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('amount', response.json()['errors'])
        self.assertFalse(MonthlyEarnings.objects.exists())

    def test_invalid_month_rejected(self):
        response = self.client.post(self.url, {'month': 13, 'year': 2024, 'amount': '5'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('month', response.json()['errors'])

    def test_list_earnings(self):
        MonthlyEarnings.objects.create(user=self.user, month=4, year=2024, amount=Decimal('800'))
        MonthlyEarnings.objects.create(user=self.user, month=5, year=2024, amount=Decimal('1000'))
        data = self.client.get(self.url).json()
        self.assertEqual([(e['month'], e['amount']) for e in data['earnings']], [(5, '1000.00'), (4, '800.00')])

    def test_delete_not_allowed(self):
        self.assertEqual(self.client.delete(self.url).status_code, 405)


class AnalyticsViewsTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='testuser', email='test@example.com', password='testpassword')
        self.client.login(username='testuser', password='testpassword')

    def test_metrics_require_login(self):
        self.client.logout()
        url = reverse('worklog:analytics:metrics')
        response = self.client.get(url)
        self.assertEqual(response.status_code, 302)

    def test_metrics_snapshot(self):
        now = timezone.now()
        local_now = timezone.localtime(now)
        MonthlyEarnings.objects.create(user=self.user, month=local_now.month, year=local_now.year, amount=Decimal('3000'))
        WorkSession.objects.create(user=self.user, task_name='Design', start_time=now - timedelta(days=1), end_time=now, duration=30 * 3600)

        metrics = self.client.get(reverse('worklog:analytics:metrics')).json()['metrics']
        self.assertEqual(metrics['avg_daily_hours'], 1.0)
        self.assertEqual(metrics['hours_change'], -4.5)
        self.assertEqual(metrics['monthly_hours'], 30)
        self.assertEqual(metrics['monthly_earnings'], '3000.00')
        self.assertEqual(metrics['income_change_percent'], 0)
        self.assertIn('work_streak', metrics)
        self.assertIn('avg_daily_income', metrics)

    def test_charts(self):
        data = self.client.get(reverse('worklog:analytics:charts')).json()
        self.assertEqual(len(data['hours']), 6)
        self.assertEqual(len(data['earnings']), 6)
        data = self.client.get(reverse('worklog:analytics:charts'), {'months': 12}).json()
        self.assertEqual(len(data['hours']), 12)

    def test_charts_invalid_months(self):
        response = self.client.get(reverse('worklog:analytics:charts'), {'months': 0})
        self.assertEqual(response.status_code, 400)

    def test_journal(self):
        now = timezone.now()
        WorkSession.objects.create(user=self.user, task_name='A', start_time=now - timedelta(days=2), duration=3723)
        WorkSession.objects.create(user=self.user, task_name='B', start_time=now - timedelta(days=2, minutes=5), duration=60)
        days = self.client.get(reverse('worklog:analytics:journal')).json()['days']
        self.assertEqual(len(days), 1)
        self.assertEqual(days[0]['total_duration'], 3783)
        self.assertEqual(days[0]['total_display'], '1h 3m 3s')
        self.assertEqual([s['task_name'] for s in days[0]['sessions']], ['A', 'B'])

    def test_metrics_post_not_allowed(self):
        response = self.client.post(reverse('worklog:analytics:metrics'))
        self.assertEqual(response.status_code, 405)

    def test_streak_uses_cookie_time_zone(self):
        for start_time in (datetime(2024, 5, 2, 1, 0, tzinfo=UTC), datetime(2024, 4, 30, 12, 0, tzinfo=UTC)):
            WorkSession.objects.create(user=self.user, task_name='Design', start_time=start_time, end_time=start_time, duration=3600)

        with mock.patch('django.utils.timezone.now', return_value=NEW_YORK_EVENING):
            # May 1 and Apr 30 locally; May 2 and Apr 30 in UTC.
            self.client.cookies['timezone'] = 'America/New_York'
            metrics = self.client.get(reverse('worklog:analytics:metrics')).json()['metrics']
            self.assertEqual(metrics['work_streak'], 2)

            self.client.cookies['timezone'] = 'UTC'
            metrics = self.client.get(reverse('worklog:analytics:metrics')).json()['metrics']
            self.assertEqual(metrics['work_streak'], 1)


class SeedWorkSessionsCommandTest(TestCase):
    def test_seeds_sessions_and_earnings(self):
        user = User.objects.create_user(username='seeded', email='seeded@example.com', password='testpassword')
        out = StringIO()
        call_command('seed_work_sessions', '--username', 'seeded', '--days', '3', stdout=out)
        self.assertGreater(WorkSession.objects.filter(user=user).count(), 0)
        self.assertFalse(WorkSession.objects.filter(user=user, is_active=True).exists())
        self.assertEqual(MonthlyEarnings.objects.filter(user=user).count(), 6)
        self.assertIn('Successfully created', out.getvalue())

    def test_no_user(self):
        out = StringIO()
        call_command('seed_work_sessions', '--username', 'nobody', stdout=out)
        self.assertIn('No matching user found', out.getvalue())


class TimezoneMiddlewareTest(SimpleTestCase):
    def get_zone_name(self, cookie=None):
        middleware = user_timezone_middleware(lambda request: HttpResponse(timezone.get_current_timezone_name()))
        request = RequestFactory().get('/')
        if cookie:
            request.COOKIES['timezone'] = cookie
        return middleware(request).content.decode()

    def test_cookie_activates_time_zone(self):
        self.assertEqual(self.get_zone_name('Europe/Stockholm'), 'Europe/Stockholm')

    def test_unknown_zone_falls_back_to_default(self):
        self.assertEqual(self.get_zone_name('Mars/Olympus'), self.get_zone_name())

    def test_zone_is_reset_after_the_response(self):
        default = timezone.get_current_timezone_name()
        self.get_zone_name('Asia/Tokyo')
        self.assertEqual(timezone.get_current_timezone_name(), default)

    def test_resolve_timezone(self):
        self.assertEqual(resolve_timezone('America/New_York'), ZoneInfo('America/New_York'))
        for name in (None, '', 'Mars/Olympus', '../etc/passwd'):
            self.assertIsNone(resolve_timezone(name))


class PrimaryKeyTest(SimpleTestCase):
    def test_project_models_use_uuid_primary_keys(self):
        for label in ('users', 'worklog'):
            for model in apps.get_app_config(label).get_models():
                self.assertIsInstance(model._meta.pk, models.UUIDField, model.__name__)

import logging
from decimal import Decimal, InvalidOperation

from django.utils import timezone

from .exceptions import ValidationError
from .lifecycle import SessionLifecycleManager
from .metrics import (
    CHART_MONTHS, compute_metrics, group_sessions_by_day, monthly_earnings_series,
    monthly_hours_series, summarize_sessions,
)
from .store import DjangoSessionStore

logger = logging.getLogger('worklog')

MAX_AMOUNT = Decimal('99999999.99')


class TrackerService:
    """
    Operations offered to callers. Every method takes the ``user_id`` of an
    already authenticated user and raises ``TrackerError`` subclasses on bad
    input, conflicts or unknown ids.
    """

    def __init__(self, store=None, clock=timezone.now):
        self.store = store or DjangoSessionStore()
        self.clock = clock
        self.lifecycle = SessionLifecycleManager(self.store, clock=clock)

    # --- Work sessions ---

    def start_session(self, user_id, task_name):
        return self.lifecycle.start(user_id, task_name)

    def pause_session(self, session_id, user_id):
        return self.lifecycle.pause(session_id, user_id)

    def resume_session(self, session_id, user_id):
        return self.lifecycle.resume(session_id, user_id)

    def complete_session(self, session_id, user_id):
        return self.lifecycle.complete(session_id, user_id)

    def active_session(self, user_id):
        return self.store.get_active_work_session(user_id)

    def todays_sessions(self, user_id):
        sessions = self.store.get_todays_work_sessions(user_id, now=self.clock())
        return sessions, summarize_sessions(sessions)

    def list_sessions(self, user_id, start=None, end=None):
        if start and end:
            if start > end:
                raise ValidationError('Start date must be before end date.')
            return self.store.get_work_sessions_by_date_range(user_id, start, end)
        return self.store.get_work_sessions_by_user(user_id)

    # --- Earnings ---

    def upsert_earnings(self, user_id, month, year, amount):
        errors = {}
        try:
            month = int(month)
            if not 1 <= month <= 12:
                errors['month'] = ['Month must be between 1 and 12.']
        except (TypeError, ValueError):
            errors['month'] = ['Enter a whole number.']
        try:
            year = int(year)
            if year < 1:
                errors['year'] = ['Enter a valid year.']
        except (TypeError, ValueError):
            errors['year'] = ['Enter a whole number.']
        try:
            amount = Decimal(str(amount)).quantize(Decimal('0.01'))
            if amount < 0:
                errors['amount'] = ['Amount cannot be negative.']
            elif amount > MAX_AMOUNT:
                errors['amount'] = ['Amount is too large.']
        except (InvalidOperation, TypeError):
            errors['amount'] = ['Enter a number.']
        if errors:
            raise ValidationError('Invalid earnings data', errors=errors)

        earnings = self.store.update_monthly_earnings(user_id, month, year, amount)
        logger.info("Earnings for %s-%02d set to %s for user %s", year, month, amount, user_id)
        return earnings

    def list_earnings(self, user_id):
        return self.store.get_monthly_earnings_by_user(user_id)

    # --- Analytics ---

    def compute_metrics(self, user_id, now=None):
        sessions = self.store.get_work_sessions_by_user(user_id)
        earnings = self.store.get_monthly_earnings_by_user(user_id)
        return compute_metrics(sessions, earnings, now or self.clock())

    def chart_data(self, user_id, months=CHART_MONTHS, now=None):
        now = now or self.clock()
        return {
            'hours': monthly_hours_series(self.store.get_work_sessions_by_user(user_id), now, months),
            'earnings': monthly_earnings_series(self.store.get_monthly_earnings_by_user(user_id), now, months),
        }

    def journal(self, user_id):
        return group_sessions_by_day(self.store.get_work_sessions_by_user(user_id))


def get_tracker_service():
    return TrackerService(DjangoSessionStore(), clock=timezone.now)

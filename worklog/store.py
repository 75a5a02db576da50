"""
Data access for users, work sessions and monthly earnings.

``SessionStore`` is the contract the tracker core talks to.
``DjangoSessionStore`` keeps records in the database through the ORM and
``InMemorySessionStore`` keeps them in dictionaries for tests and scripts.
Both return the same model classes; the in-memory store simply never saves
them.
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import ConflictError
from .models import MonthlyEarnings, WorkSession

logger = logging.getLogger('worklog')

User = get_user_model()


class SessionStore(ABC):

    # --- Users ---

    @abstractmethod
    def get_user(self, user_id):
        ...

    @abstractmethod
    def get_user_by_email(self, email):
        ...

    @abstractmethod
    def get_user_by_username(self, username):
        ...

    @abstractmethod
    def create_user(self, username, email, password, name=''):
        ...

    # --- Work sessions ---

    @abstractmethod
    def create_work_session(self, user_id, task_name, start_time, is_active=False, end_time=None, duration=None):
        """Raises ``ConflictError`` if the user would end up with two active sessions."""

    @abstractmethod
    def update_work_session(self, session_id, **fields):
        """Apply ``fields`` and return the session, or ``None`` if the id is unknown."""

    @abstractmethod
    def get_work_session(self, session_id):
        ...

    @abstractmethod
    def get_work_sessions_by_user(self, user_id):
        """All of the user's sessions, newest first."""

    @abstractmethod
    def get_active_work_session(self, user_id):
        ...

    @abstractmethod
    def get_todays_work_sessions(self, user_id, now=None):
        """Non-active sessions started on the local calendar day of ``now``, oldest first."""

    @abstractmethod
    def get_work_sessions_by_date_range(self, user_id, start, end):
        """Non-active sessions with ``start <= start_time <= end``, newest first."""

    # --- Monthly earnings ---

    @abstractmethod
    def create_monthly_earnings(self, user_id, month, year, amount):
        ...

    @abstractmethod
    def update_monthly_earnings(self, user_id, month, year, amount):
        """Insert or overwrite the amount for ``(user, month, year)``, keeping the record id."""

    @abstractmethod
    def get_monthly_earnings(self, user_id, month, year):
        ...

    @abstractmethod
    def get_monthly_earnings_by_user(self, user_id):
        """All of the user's records, latest month first."""

    @abstractmethod
    def user_lock(self, user_id):
        """Context manager serialising read-then-write sequences for one user."""


class DjangoSessionStore(SessionStore):

    def _first(self, queryset, **lookups):
        # A malformed id can never match a UUID primary key.
        try:
            return queryset.filter(**lookups).first()
        except (DjangoValidationError, ValueError):
            return None

    def get_user(self, user_id):
        return self._first(User.objects.all(), pk=user_id)

    def get_user_by_email(self, email):
        return self._first(User.objects.all(), email__iexact=email)

    def get_user_by_username(self, username):
        return self._first(User.objects.all(), username=username)

    def create_user(self, username, email, password, name=''):
        return User.objects.create_user(username=username, email=email, password=password, name=name)

    def create_work_session(self, user_id, task_name, start_time, is_active=False, end_time=None, duration=None):
        try:
            with transaction.atomic():
                return WorkSession.objects.create(
                    user_id=user_id,
                    task_name=task_name,
                    start_time=start_time,
                    end_time=end_time,
                    duration=duration,
                    is_active=is_active,
                )
        except IntegrityError as e:
            raise ConflictError('There is already an active session') from e

    def update_work_session(self, session_id, **fields):
        session = self.get_work_session(session_id)
        if session is None:
            return None
        for name, value in fields.items():
            setattr(session, name, value)
        try:
            with transaction.atomic():
                session.save(update_fields=list(fields))
        except IntegrityError as e:
            raise ConflictError('There is already an active session') from e
        return session

    def get_work_session(self, session_id):
        return self._first(WorkSession.objects.all(), pk=session_id)

    def get_work_sessions_by_user(self, user_id):
        return list(WorkSession.objects.filter(user_id=user_id).order_by('-start_time'))

    def get_active_work_session(self, user_id):
        return WorkSession.objects.filter(user_id=user_id, is_active=True).first()

    def get_todays_work_sessions(self, user_id, now=None):
        today = timezone.localtime(now or timezone.now()).date()
        # __date converts start_time into the current time zone before comparing.
        return list(
            WorkSession.objects.filter(user_id=user_id, is_active=False, start_time__date=today)
            .order_by('start_time')
        )

    def get_work_sessions_by_date_range(self, user_id, start, end):
        return list(
            WorkSession.objects.filter(
                user_id=user_id,
                is_active=False,
                start_time__gte=start,
                start_time__lte=end,
            ).order_by('-start_time')
        )

    def create_monthly_earnings(self, user_id, month, year, amount):
        return MonthlyEarnings.objects.create(user_id=user_id, month=month, year=year, amount=amount)

    def update_monthly_earnings(self, user_id, month, year, amount):
        with transaction.atomic():
            earnings, created = MonthlyEarnings.objects.update_or_create(
                user_id=user_id, month=month, year=year,
                defaults={'amount': amount},
            )
        logger.debug("Earnings %s for user %s %s", earnings.pk, user_id, 'created' if created else 'updated')
        return earnings

    def get_monthly_earnings(self, user_id, month, year):
        return MonthlyEarnings.objects.filter(user_id=user_id, month=month, year=year).first()

    def get_monthly_earnings_by_user(self, user_id):
        return list(MonthlyEarnings.objects.filter(user_id=user_id).order_by('-year', '-month'))

    @contextmanager
    def user_lock(self, user_id):
        with transaction.atomic():
            # Row lock on the user; a no-op on SQLite, which serialises writers anyway.
            list(User.objects.select_for_update().filter(pk=user_id))
            yield


class InMemorySessionStore(SessionStore):
    """
    Dictionary-backed store with the same contract as ``DjangoSessionStore``.
    Records are model instances that are never saved to the database.
    """

    def __init__(self):
        self.users = {}
        self.work_sessions = {}
        self.monthly_earnings = {}
        self._locks = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    def get_user(self, user_id):
        return self.users.get(str(user_id))

    def get_user_by_email(self, email):
        return next((u for u in self.users.values() if u.email.lower() == email.lower()), None)

    def get_user_by_username(self, username):
        return next((u for u in self.users.values() if u.username == username), None)

    def create_user(self, username, email, password, name=''):
        user = User(username=username, email=email, name=name)
        user.set_password(password)
        self.users[str(user.pk)] = user
        return user

    def _check_single_active(self, user_id, exclude_id=None):
        for session in self.work_sessions.values():
            if str(session.user_id) == str(user_id) and session.is_active and session.pk != exclude_id:
                raise ConflictError('There is already an active session')

    def create_work_session(self, user_id, task_name, start_time, is_active=False, end_time=None, duration=None):
        if is_active:
            self._check_single_active(user_id)
        session = WorkSession(
            user_id=user_id,
            task_name=task_name,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
            is_active=is_active,
        )
        session.created_at = timezone.now()
        self.work_sessions[str(session.pk)] = session
        return session

    def update_work_session(self, session_id, **fields):
        session = self.get_work_session(session_id)
        if session is None:
            return None
        if fields.get('is_active'):
            self._check_single_active(session.user_id, exclude_id=session.pk)
        for name, value in fields.items():
            setattr(session, name, value)
        return session

    def get_work_session(self, session_id):
        return self.work_sessions.get(str(session_id))

    def _sessions_for(self, user_id):
        return [s for s in self.work_sessions.values() if str(s.user_id) == str(user_id)]

    def get_work_sessions_by_user(self, user_id):
        return sorted(self._sessions_for(user_id), key=lambda s: s.start_time, reverse=True)

    def get_active_work_session(self, user_id):
        return next((s for s in self._sessions_for(user_id) if s.is_active), None)

    def get_todays_work_sessions(self, user_id, now=None):
        today = timezone.localtime(now or timezone.now()).date()
        sessions = [
            s for s in self._sessions_for(user_id)
            if not s.is_active and timezone.localtime(s.start_time).date() == today
        ]
        return sorted(sessions, key=lambda s: s.start_time)

    def get_work_sessions_by_date_range(self, user_id, start, end):
        sessions = [
            s for s in self._sessions_for(user_id)
            if not s.is_active and start <= s.start_time <= end
        ]
        return sorted(sessions, key=lambda s: s.start_time, reverse=True)

    def create_monthly_earnings(self, user_id, month, year, amount):
        earnings = MonthlyEarnings(user_id=user_id, month=month, year=year, amount=Decimal(amount))
        earnings.created_at = timezone.now()
        self.monthly_earnings[str(earnings.pk)] = earnings
        return earnings

    def update_monthly_earnings(self, user_id, month, year, amount):
        existing = self.get_monthly_earnings(user_id, month, year)
        if existing:
            existing.amount = Decimal(amount)
            return existing
        return self.create_monthly_earnings(user_id, month, year, amount)

    def get_monthly_earnings(self, user_id, month, year):
        return next(
            (e for e in self.monthly_earnings.values()
             if str(e.user_id) == str(user_id) and e.month == month and e.year == year),
            None,
        )

    def get_monthly_earnings_by_user(self, user_id):
        earnings = [e for e in self.monthly_earnings.values() if str(e.user_id) == str(user_id)]
        return sorted(earnings, key=lambda e: e.year * 12 + e.month, reverse=True)

    @contextmanager
    def user_lock(self, user_id):
        with self._locks_guard:
            lock = self._locks[str(user_id)]
        with lock:
            yield

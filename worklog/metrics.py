"""
Dashboard analytics derived from a user's sessions and monthly earnings.

Everything here is a pure function of its arguments: callers load the
records, pass ``now`` and get plain dicts and lists back. Calendar days and
months are taken in ``tz`` (the current Django time zone by default).

Rounding matches the dashboard's original JavaScript ``Math.round``: halves
go towards positive infinity (see ``round_half_up``).
"""
import calendar
import math
from collections import defaultdict
from datetime import date, timedelta
from decimal import ROUND_FLOOR, Decimal

from django.utils import timezone

RECENT_WINDOW_DAYS = 30
STREAK_LOOKBACK_DAYS = 365
# Fixed reference point for hours_change; not derived from earlier months.
BASELINE_DAILY_HOURS = 5.5
CHART_MONTHS = 6


def round_half_up(value, places=0):
    """Round ``value`` to ``places`` decimals with halves going towards +infinity."""
    quantum = Decimal(1).scaleb(-places)
    scaled = Decimal(str(value)) / quantum
    return (scaled + Decimal('0.5')).to_integral_value(rounding=ROUND_FLOOR) * quantum


def previous_month(month, year):
    if month == 1:
        return 12, year - 1
    return month - 1, year


def _earnings_for(earnings, month, year):
    for record in earnings:
        if record.month == month and record.year == year:
            return Decimal(record.amount)
    return Decimal('0')


def calculate_work_streak(sessions, now, tz=None):
    """
    Count consecutive local days with at least one non-active session,
    walking back from today. An empty today does not break the streak.
    """
    tz = tz or timezone.get_current_timezone()
    worked_days = {timezone.localtime(s.start_time, tz).date() for s in sessions if not s.is_active}
    today = timezone.localtime(now, tz).date()

    streak = 0
    for i in range(STREAK_LOOKBACK_DAYS):
        if today - timedelta(days=i) in worked_days:
            streak += 1
        elif i > 0:
            break
    return streak


def compute_metrics(sessions, earnings, now, tz=None):
    tz = tz or timezone.get_current_timezone()
    local_now = timezone.localtime(now, tz)
    current_month, current_year = local_now.month, local_now.year
    prev_month, prev_year = previous_month(current_month, current_year)

    current_earnings = _earnings_for(earnings, current_month, current_year)
    previous_earnings = _earnings_for(earnings, prev_month, prev_year)
    if previous_earnings:
        income_change = int(round_half_up((current_earnings - previous_earnings) / previous_earnings * 100))
    else:
        income_change = 0

    # Only sessions that are not running count towards the averages.
    window_start = now - timedelta(days=RECENT_WINDOW_DAYS)
    recent_sessions = [s for s in sessions if s.start_time >= window_start and not s.is_active]
    total_hours = sum(s.duration or 0 for s in recent_sessions) / 3600

    avg_daily_hours = float(round_half_up(total_hours / RECENT_WINDOW_DAYS, 1))
    days_in_month = calendar.monthrange(current_year, current_month)[1]
    avg_daily_income = int(round_half_up(current_earnings / days_in_month))
    hours_change = float(round_half_up((avg_daily_hours - BASELINE_DAILY_HOURS) * 10) / 10)

    return {
        'current_month_earnings': current_earnings,
        'previous_month_earnings': previous_earnings,
        'income_change_percent': income_change,
        'total_hours': total_hours,
        'avg_daily_hours': avg_daily_hours,
        'avg_daily_income': avg_daily_income,
        'work_streak': calculate_work_streak(sessions, now, tz),
        'hours_change': hours_change,
        'monthly_earnings': current_earnings,
        'monthly_hours': int(round_half_up(total_hours)),
    }


# --- Chart and journal data ---

def _last_months(now, months, tz):
    local_now = timezone.localtime(now, tz)
    month, year = local_now.month, local_now.year
    result = []
    for _ in range(months):
        result.append((month, year))
        month, year = previous_month(month, year)
    result.reverse()
    return result


def monthly_hours_series(sessions, now, months=CHART_MONTHS, tz=None):
    """Whole hours worked per calendar month, oldest month first."""
    tz = tz or timezone.get_current_timezone()
    seconds = defaultdict(int)
    for session in sessions:
        if session.is_active:
            continue
        start = timezone.localtime(session.start_time, tz)
        seconds[(start.month, start.year)] += session.duration or 0

    return [
        {
            'label': date(year, month, 1).strftime('%b'),
            'month': month,
            'year': year,
            'hours': int(round_half_up(seconds[(month, year)] / 3600)),
        }
        for month, year in _last_months(now, months, tz)
    ]


def monthly_earnings_series(earnings, now, months=CHART_MONTHS, tz=None):
    tz = tz or timezone.get_current_timezone()
    return [
        {
            'label': date(year, month, 1).strftime('%b'),
            'month': month,
            'year': year,
            'amount': _earnings_for(earnings, month, year),
        }
        for month, year in _last_months(now, months, tz)
    ]


def summarize_sessions(sessions):
    return {
        'count': len(sessions),
        'total_duration': sum(s.duration or 0 for s in sessions),
    }


def group_sessions_by_day(sessions, tz=None):
    """Group sessions by local start date, newest day first."""
    tz = tz or timezone.get_current_timezone()
    days = defaultdict(list)
    for session in sessions:
        days[timezone.localtime(session.start_time, tz).date()].append(session)

    grouped = []
    for day in sorted(days, reverse=True):
        day_sessions = sorted(days[day], key=lambda s: s.start_time, reverse=True)
        grouped.append({
            'date': day,
            'sessions': day_sessions,
            'total_duration': sum(s.duration or 0 for s in day_sessions),
        })
    return grouped


def elapsed_seconds(session, now):
    """Seconds shown on the timer: the stored duration once completed, else time since start."""
    if session.end_time is not None and session.duration is not None:
        return session.duration
    return max(0, math.floor((now - session.start_time).total_seconds()))

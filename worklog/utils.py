import json

from .exceptions import ValidationError
from .metrics import elapsed_seconds


def format_duration_hms(seconds):
    """Formats a number of seconds into a string like '1h 2m 3s'."""
    if not seconds or seconds < 0:
        return "0s"

    total_seconds = int(seconds)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if seconds > 0 or not parts:
        parts.append(f"{seconds}s")

    return " ".join(parts)


def format_clock(seconds):
    """Formats a number of seconds as the timer shows it, 'HH:MM:SS'."""
    total_seconds = max(0, int(seconds or 0))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f'{hours:02}:{minutes:02}:{seconds:02}'


def parse_payload(request):
    """Returns the request body as a dict, accepting JSON or form encoding."""
    if request.content_type == 'application/json':
        try:
            payload = json.loads(request.body or b'{}')
        except json.JSONDecodeError as e:
            raise ValidationError(f'Malformed JSON body: {e}')
        if not isinstance(payload, dict):
            raise ValidationError('Request body must be a JSON object.')
        return payload
    return request.POST


def form_errors(form):
    return {field: [str(message) for message in messages] for field, messages in form.errors.items()}


def session_to_dict(session, now=None):
    data = {
        'id': session.pk,
        'user_id': session.user_id,
        'task_name': session.task_name,
        'start_time': session.start_time,
        'end_time': session.end_time,
        'duration': session.duration,
        'is_active': session.is_active,
        'created_at': session.created_at,
    }
    if now is not None:
        elapsed = elapsed_seconds(session, now)
        data['elapsed'] = elapsed
        data['elapsed_display'] = format_clock(elapsed)
    elif session.duration is not None:
        data['duration_display'] = format_duration_hms(session.duration)
    return data


def earnings_to_dict(earnings):
    return {
        'id': earnings.pk,
        'user_id': earnings.user_id,
        'month': earnings.month,
        'year': earnings.year,
        'amount': earnings.amount,
        'created_at': earnings.created_at,
    }

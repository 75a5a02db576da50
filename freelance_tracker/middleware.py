from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.utils import timezone

TIMEZONE_COOKIE = 'timezone'


def resolve_timezone(name):
    """Returns the ``ZoneInfo`` for an IANA name, or None if it is blank or unknown."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def user_timezone_middleware(get_response):
    """
    Runs each request in the zone the browser reports in the ``timezone``
    cookie, so "today", streak days, month buckets and naive form datetimes
    follow the user's clock. Otherwise the server's ``TIME_ZONE`` applies.
    """
    def middleware(request):
        request.timezone = resolve_timezone(request.COOKIES.get(TIMEZONE_COOKIE))
        # override(None) falls back to TIME_ZONE and is undone after the response.
        with timezone.override(request.timezone):
            return get_response(request)

    return middleware

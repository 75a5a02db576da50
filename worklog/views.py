from django.conf import settings
from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.utils import timezone

from .exceptions import ConflictError, NotFoundError, TrackerError, ValidationError
from .forms import EarningsForm, SessionRangeForm
from .services import get_tracker_service
from .utils import earnings_to_dict, form_errors, parse_payload, session_to_dict

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
}


def error_response(exc):
    data = {'success': False, 'error': str(exc)}
    if isinstance(exc, ValidationError) and exc.errors:
        data['errors'] = exc.errors
    return JsonResponse(data, status=ERROR_STATUS.get(type(exc), 400))


def method_not_allowed():
    return JsonResponse({'success': False, 'error': 'Invalid request method.'}, status=405)


def health(request):
    return JsonResponse({'status': 'ok', 'version': settings.APP_VERSION})

# --- Work sessions ---

@login_required
def sessions(request):
    service = get_tracker_service()
    try:
        if request.method == 'POST':
            payload = parse_payload(request)
            session = service.start_session(request.user.pk, payload.get('task_name'))
            return JsonResponse({'success': True, 'session': session_to_dict(session)}, status=201)

        if request.method == 'GET':
            form = SessionRangeForm(request.GET)
            if not form.is_valid():
                raise ValidationError('Invalid date range', errors=form_errors(form))
            session_list = service.list_sessions(
                request.user.pk,
                start=form.cleaned_data.get('start_date'),
                end=form.cleaned_data.get('end_date'),
            )
            return JsonResponse({'success': True, 'sessions': [session_to_dict(s) for s in session_list]})
    except TrackerError as e:
        return error_response(e)
    return method_not_allowed()

@login_required
def active_session(request):
    if request.method != 'GET':
        return method_not_allowed()
    session = get_tracker_service().active_session(request.user.pk)
    data = session_to_dict(session, now=timezone.now()) if session else None
    return JsonResponse({'success': True, 'session': data})

@login_required
def todays_sessions(request):
    if request.method != 'GET':
        return method_not_allowed()
    session_list, summary = get_tracker_service().todays_sessions(request.user.pk)
    return JsonResponse({
        'success': True,
        'sessions': [session_to_dict(s) for s in session_list],
        'summary': summary,
    })


def _transition(request, pk, action):
    if request.method != 'POST':
        return method_not_allowed()
    service = get_tracker_service()
    try:
        session = getattr(service, action)(pk, request.user.pk)
    except TrackerError as e:
        return error_response(e)
    return JsonResponse({'success': True, 'session': session_to_dict(session)})

@login_required
def pause_session(request, pk):
    return _transition(request, pk, 'pause_session')

@login_required
def resume_session(request, pk):
    return _transition(request, pk, 'resume_session')

@login_required
def complete_session(request, pk):
    return _transition(request, pk, 'complete_session')

# --- Monthly earnings ---

@login_required
def earnings(request):
    service = get_tracker_service()
    if request.method == 'GET':
        records = service.list_earnings(request.user.pk)
        return JsonResponse({'success': True, 'earnings': [earnings_to_dict(e) for e in records]})

    if request.method == 'POST':
        try:
            form = EarningsForm(parse_payload(request))
            if not form.is_valid():
                raise ValidationError('Invalid earnings data', errors=form_errors(form))
            record = service.upsert_earnings(request.user.pk, **form.cleaned_data)
        except TrackerError as e:
            return error_response(e)
        return JsonResponse({'success': True, 'earnings': earnings_to_dict(record)})

    return method_not_allowed()

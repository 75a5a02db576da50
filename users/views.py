import logging
from django.contrib.auth import authenticate, login, logout, password_validation
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import JsonResponse
from worklog.exceptions import ValidationError
from worklog.store import DjangoSessionStore
from worklog.utils import form_errors, parse_payload
from .forms import LoginForm, RegisterForm

logger = logging.getLogger('users')


def _user_to_dict(user):
    # The password hash never leaves the server.
    return {
        'id': user.pk,
        'username': user.username,
        'email': user.email,
        'name': user.name,
        'created_at': user.created_at,
    }


def _invalid(message, errors=None, status=400):
    data = {'success': False, 'error': message}
    if errors:
        data['errors'] = errors
    return JsonResponse(data, status=status)


def register(request):
    if request.method != 'POST':
        return _invalid('Invalid request method.', status=405)
    try:
        form = RegisterForm(parse_payload(request))
    except ValidationError as e:
        return _invalid(str(e))
    if not form.is_valid():
        return _invalid('Invalid user data', form_errors(form))

    data = form.cleaned_data
    store = DjangoSessionStore()
    if store.get_user_by_email(data['email']) or store.get_user_by_username(data['username']):
        return _invalid('User already exists')
    try:
        password_validation.validate_password(data['password'])
    except DjangoValidationError as e:
        return _invalid('Invalid user data', {'password': list(e.messages)})

    user = store.create_user(
        username=data['username'],
        email=data['email'],
        password=data['password'],
        name=data.get('name') or data['username'],
    )
    login(request, user, backend='django.contrib.auth.backends.ModelBackend')
    logger.info("Registered user %s", user.pk)
    return JsonResponse({'success': True, 'user': _user_to_dict(user)}, status=201)


def login_view(request):
    if request.method != 'POST':
        return _invalid('Invalid request method.', status=405)
    try:
        form = LoginForm(parse_payload(request))
    except ValidationError as e:
        return _invalid(str(e))
    if not form.is_valid():
        return _invalid('Invalid credentials', status=401)

    known_user = DjangoSessionStore().get_user_by_email(form.cleaned_data['email'])
    user = None
    if known_user is not None:
        user = authenticate(request, username=known_user.username, password=form.cleaned_data['password'])
    if user is None:
        logger.warning("Failed login for %s", form.cleaned_data['email'])
        return _invalid('Invalid credentials', status=401)

    login(request, user, backend='django.contrib.auth.backends.ModelBackend')
    return JsonResponse({'success': True, 'user': _user_to_dict(user)})


def logout_view(request):
    if request.method != 'POST':
        return _invalid('Invalid request method.', status=405)
    logout(request)
    return JsonResponse({'success': True, 'message': 'Logged out'})


def me(request):
    if not request.user.is_authenticated:
        return _invalid('Not authenticated', status=401)
    return JsonResponse({'success': True, 'user': _user_to_dict(request.user)})

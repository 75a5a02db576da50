import json

from allauth.account.signals import user_signed_up
from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase
from django.urls import reverse

User = get_user_model()

PASSWORD = 'Tr1cky-Timesheet-42'


class RegisterViewTest(TestCase):
    def setUp(self):
        self.url = reverse('users:register')

    def register(self, **overrides):
        data = {'username': 'freelancer', 'email': 'free@example.com', 'password': PASSWORD, 'name': 'Fran Lancer'}
        data.update(overrides)
        return self.client.post(self.url, data=json.dumps(data), content_type='application/json')

    def test_register_creates_user_and_logs_in(self):
        response = self.register()
        self.assertEqual(response.status_code, 201)
        user_data = response.json()['user']
        self.assertEqual(user_data['username'], 'freelancer')
        self.assertEqual(user_data['name'], 'Fran Lancer')
        self.assertNotIn('password', user_data)

        user = User.objects.get(username='freelancer')
        self.assertTrue(user.check_password(PASSWORD))
        self.assertNotEqual(user.password, PASSWORD)
        # The new session is authenticated straight away.
        self.assertEqual(self.client.get(reverse('users:me')).status_code, 200)

    def test_name_defaults_to_username(self):
        response = self.register(name='')
        self.assertEqual(response.json()['user']['name'], 'freelancer')

    def test_duplicate_email_rejected(self):
        self.register()
        response = self.register(username='someoneelse', email='FREE@example.com')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'User already exists')
        self.assertEqual(User.objects.count(), 1)

    def test_duplicate_username_rejected(self):
        self.register()
        response = self.register(email='other@example.com')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'User already exists')

    def test_invalid_payload(self):
        response = self.register(email='not-an-email', password='short')
        self.assertEqual(response.status_code, 400)
        errors = response.json()['errors']
        self.assertIn('email', errors)
        self.assertIn('password', errors)

    def test_common_password_rejected(self):
        response = self.register(password='password123')
        self.assertEqual(response.status_code, 400)
        self.assertIn('password', response.json()['errors'])
        self.assertFalse(User.objects.exists())

    def test_get_not_allowed(self):
        self.assertEqual(self.client.get(self.url).status_code, 405)


class LoginLogoutViewTest(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='testuser', email='test@example.com', password=PASSWORD, name='Tess')
        self.login_url = reverse('users:login')

    def test_login_with_email(self):
        response = self.client.post(self.login_url, {'email': 'test@example.com', 'password': PASSWORD})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['user']['id'], str(self.user.pk))
        self.assertEqual(self.client.get(reverse('users:me')).json()['user']['name'], 'Tess')

    def test_login_wrong_password(self):
        response = self.client.post(self.login_url, {'email': 'test@example.com', 'password': 'nope'})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'Invalid credentials')

    def test_login_unknown_email(self):
        response = self.client.post(self.login_url, {'email': 'ghost@example.com', 'password': PASSWORD})
        self.assertEqual(response.status_code, 401)

    def test_logout(self):
        self.client.login(username='testuser', password=PASSWORD)
        response = self.client.post(reverse('users:logout'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(reverse('users:me')).status_code, 401)

    def test_me_requires_authentication(self):
        response = self.client.get(reverse('users:me'))
        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.json()['success'])


class SignupTest(TestCase):
    def test_signal_fills_blank_name(self):
        user = User.objects.create_user(username='jdoe', email='jdoe@example.com', password=PASSWORD, first_name='Jane', last_name='Doe')
        request = RequestFactory().get('/')
        user_signed_up.send(sender=User, request=request, user=user)
        user.refresh_from_db()
        self.assertEqual(user.name, 'Jane Doe')

    def test_signal_falls_back_to_username(self):
        user = User.objects.create_user(username='jdoe', email='jdoe@example.com', password=PASSWORD)
        user_signed_up.send(sender=User, request=RequestFactory().get('/'), user=user)
        user.refresh_from_db()
        self.assertEqual(user.name, 'jdoe')

    def test_signal_keeps_existing_name(self):
        user = User.objects.create_user(username='jdoe', email='jdoe@example.com', password=PASSWORD, name='JD')
        user_signed_up.send(sender=User, request=RequestFactory().get('/'), user=user)
        user.refresh_from_db()
        self.assertEqual(user.name, 'JD')

    def test_allauth_signup_form_stores_name(self):
        response = self.client.post(reverse('account_signup'), {
            'username': 'newbie',
            'email': 'newbie@example.com',
            'password1': PASSWORD,
            'password2': PASSWORD,
            'name': 'New Bie',
        })
        self.assertEqual(response.status_code, 302)
        self.assertEqual(User.objects.get(username='newbie').name, 'New Bie')


class CustomUserModelTest(TestCase):
    def test_uuid_primary_key_and_created_at(self):
        user = User.objects.create_user(username='u', email='u@example.com', password=PASSWORD)
        self.assertEqual(len(str(user.pk)), 36)
        self.assertEqual(user.created_at, user.date_joined)

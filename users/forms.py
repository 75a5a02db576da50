from django import forms
from allauth.account.forms import SignupForm


class CustomSignupForm(SignupForm):
    name = forms.CharField(max_length=150, label='Name', required=False, widget=forms.TextInput(attrs={'placeholder': 'Your name'}))

    def save(self, request):
        user = super().save(request)
        user.name = self.cleaned_data.get('name', '')
        user.save()
        return user


class RegisterForm(forms.Form):
    username = forms.CharField(max_length=150)
    email = forms.EmailField()
    password = forms.CharField(min_length=8, max_length=128)
    name = forms.CharField(max_length=150, required=False)


class LoginForm(forms.Form):
    email = forms.EmailField()
    password = forms.CharField()

from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),

    # allauth provides the HTML login, logout and signup pages.
    path('accounts/', include('allauth.urls')),

    path('users/', include('users.urls', namespace='users')),

    # Include your main application's URLs
    path('', include('worklog.urls', namespace='worklog')),
]

from django.urls import path, include
from . import views

app_name = 'worklog'

urlpatterns = [
    path('health/', views.health, name='health'),

    # Work sessions
    path('sessions/', views.sessions, name='sessions'),
    path('sessions/active/', views.active_session, name='active_session'),
    path('sessions/today/', views.todays_sessions, name='todays_sessions'),
    path('sessions/<uuid:pk>/pause/', views.pause_session, name='pause_session'),
    path('sessions/<uuid:pk>/resume/', views.resume_session, name='resume_session'),
    path('sessions/<uuid:pk>/complete/', views.complete_session, name='complete_session'),

    # Earnings
    path('earnings/', views.earnings, name='earnings'),

    # Analytics
    path('analytics/', include('worklog.analytics_urls', namespace='analytics')),
]

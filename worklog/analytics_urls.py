from django.urls import path
from . import analytics_views as views

app_name = 'analytics'

urlpatterns = [
    path('metrics/', views.MetricsView.as_view(), name='metrics'),
    path('charts/', views.ChartDataView.as_view(), name='charts'),
    path('journal/', views.JournalView.as_view(), name='journal'),
]

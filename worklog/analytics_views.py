from django.contrib.auth.mixins import LoginRequiredMixin
from django.http import JsonResponse
from django.views import View

from .forms import ChartForm
from .metrics import CHART_MONTHS
from .services import get_tracker_service
from .utils import form_errors, format_duration_hms, session_to_dict


class MetricsView(LoginRequiredMixin, View):
    def get(self, request, *args, **kwargs):
        metrics = get_tracker_service().compute_metrics(request.user.pk)
        return JsonResponse({'success': True, 'metrics': metrics})


class ChartDataView(LoginRequiredMixin, View):
    """Six months of hours worked and earnings, for the dashboard bar charts."""
    def get(self, request, *args, **kwargs):
        form = ChartForm(request.GET)
        if not form.is_valid():
            return JsonResponse({'success': False, 'error': 'Invalid chart range', 'errors': form_errors(form)}, status=400)
        months = form.cleaned_data.get('months') or CHART_MONTHS
        charts = get_tracker_service().chart_data(request.user.pk, months=months)
        return JsonResponse({'success': True, **charts})


class JournalView(LoginRequiredMixin, View):
    def get(self, request, *args, **kwargs):
        days = get_tracker_service().journal(request.user.pk)
        return JsonResponse({
            'success': True,
            'days': [
                {
                    'date': day['date'],
                    'total_duration': day['total_duration'],
                    'total_display': format_duration_hms(day['total_duration']),
                    'sessions': [session_to_dict(s) for s in day['sessions']],
                }
                for day in days
            ],
        })

from django.contrib import admin
from .models import MonthlyEarnings, WorkSession

@admin.register(WorkSession)
class WorkSessionAdmin(admin.ModelAdmin):
    list_display = ('task_name', 'user', 'start_time', 'end_time', 'duration', 'is_active')
    list_filter = ('is_active', 'start_time')
    search_fields = ('task_name', 'user__username')

@admin.register(MonthlyEarnings)
class MonthlyEarningsAdmin(admin.ModelAdmin):
    list_display = ('user', 'year', 'month', 'amount')
    list_filter = ('year',)
    search_fields = ('user__username',)

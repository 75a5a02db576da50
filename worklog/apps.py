from django.apps import AppConfig


class WorklogConfig(AppConfig):
    name = 'worklog'
    verbose_name = 'Work log'

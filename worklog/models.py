import uuid
from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class WorkSession(models.Model):
    """
    A block of work on one task.

    A session is created active, may be paused (``is_active=False`` with no
    ``end_time``) and resumed any number of times, and is completed once by
    setting ``end_time`` and ``duration``. ``duration`` is measured from the
    original ``start_time``, so paused stretches are included.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='work_sessions')
    task_name = models.CharField(max_length=200)
    start_time = models.DateTimeField()
    end_time = models.DateTimeField(null=True, blank=True)
    duration = models.PositiveIntegerField(null=True, blank=True)  # seconds
    is_active = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-start_time']
        indexes = [models.Index(fields=['user', 'start_time'], name='worklog_session_user_start_idx')]
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=models.Q(is_active=True),
                name='one_active_session_per_user',
            ),
        ]

    @property
    def is_completed(self):
        return self.end_time is not None

    def __str__(self):
        return f"{self.task_name} ({self.user_id})"


class MonthlyEarnings(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='monthly_earnings')
    month = models.PositiveSmallIntegerField(validators=[MinValueValidator(1), MaxValueValidator(12)])
    year = models.PositiveIntegerField()
    amount = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-year', '-month']
        unique_together = ('user', 'month', 'year')
        verbose_name_plural = 'monthly earnings'

    def __str__(self):
        return f"{self.year}-{self.month:02} {self.amount} ({self.user_id})"

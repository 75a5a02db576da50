import random
from datetime import timedelta
from decimal import Decimal
from django.core.management.base import BaseCommand
from django.utils import timezone
from django.contrib.auth import get_user_model
from worklog.metrics import previous_month
from worklog.models import MonthlyEarnings, WorkSession

User = get_user_model()

TASK_NAMES = ['Client call', 'Design', 'Development', 'Invoicing', 'Research', 'Code review']

class Command(BaseCommand):
    help = 'Creates completed work sessions over the past days and six months of earnings for a user.'

    def add_arguments(self, parser):
        parser.add_argument('--username', help='User to seed; defaults to the first user.')
        parser.add_argument('--days', type=int, default=14, help='How many past days (including today) get sessions.')

    def handle(self, *args, **options):
        if options['username']:
            user = User.objects.filter(username=options['username']).first()
        else:
            user = User.objects.order_by('date_joined').first()
        if not user:
            self.stdout.write(self.style.ERROR('No matching user found. Please create a user first.'))
            return

        self.stdout.write(f"Using user: {user.username}")

        now = timezone.now()
        num_sessions_created = 0
        for day_offset in range(options['days']):
            day = timezone.localtime(now) - timedelta(days=day_offset)
            for _ in range(random.randint(1, 3)):
                start_time = day.replace(hour=random.randint(8, 16), minute=random.randint(0, 59), second=0, microsecond=0)
                duration = random.randint(20 * 60, 3 * 3600)
                end_time = start_time + timedelta(seconds=duration)
                # Skip blocks that would still be running.
                if end_time > now:
                    continue
                WorkSession.objects.create(
                    user=user,
                    task_name=random.choice(TASK_NAMES),
                    start_time=start_time,
                    end_time=end_time,
                    duration=duration,
                    is_active=False,
                )
                num_sessions_created += 1

        local_now = timezone.localtime(now)
        month, year = local_now.month, local_now.year
        for _ in range(6):
            amount = Decimal(random.randint(1500, 6000))
            MonthlyEarnings.objects.update_or_create(user=user, month=month, year=year, defaults={'amount': amount})
            month, year = previous_month(month, year)

        self.stdout.write(self.style.SUCCESS(f'Successfully created {num_sessions_created} work sessions and 6 months of earnings.'))

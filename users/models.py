import uuid
from django.db import models
from django.contrib.auth.models import AbstractUser


class CustomUser(AbstractUser):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField('email address', unique=True)
    name = models.CharField(max_length=150, blank=True, default='')

    @property
    def created_at(self):
        return self.date_joined

    def __str__(self):
        return self.username

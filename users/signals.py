from django.dispatch import receiver
from allauth.account.signals import user_signed_up
import logging

logger = logging.getLogger('users')

@receiver(user_signed_up)
def user_signed_up_receiver(request, user, **kwargs):
    """Give every new account a display name, falling back to the username."""
    if user.name:
        logger.info("User %s signed up", user.pk)
        return
    full_name = f"{user.first_name} {user.last_name}".strip()
    user.name = full_name or user.username
    user.save(update_fields=['name'])
    logger.info("User %s signed up, display name defaulted to %r", user.pk, user.name)

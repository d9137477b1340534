from django.contrib.auth.models import User
from django.db.models.signals import post_save
from django.dispatch import receiver

from .constants import ROLE_STUDENT, ROLE_SUPER_ADMIN
from .models import Profile


@receiver(post_save, sender=User)
def ensure_profile_exists(sender, instance, created, **kwargs):
    """Every new user gets a profile; superusers start as super admins."""
    if not created:
        return

    default_role = ROLE_SUPER_ADMIN if instance.is_superuser else ROLE_STUDENT
    Profile.objects.get_or_create(
        user=instance,
        defaults={'role': default_role}
    )

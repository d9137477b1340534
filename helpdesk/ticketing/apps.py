import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class TicketingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'ticketing'

    def ready(self):
        from . import signals  # noqa: F401
        from django.db.models.signals import post_migrate
        from django.apps import apps

        def _bootstrap_super_admin(**kwargs):
            import os
            u = os.environ.get('DJANGO_SUPERUSER_USERNAME')
            p = os.environ.get('DJANGO_SUPERUSER_PASSWORD')
            e = os.environ.get('DJANGO_SUPERUSER_EMAIL')
            if not (u and p and e):
                return
            User = apps.get_model('auth', 'User')
            if User.objects.filter(username=u).exists():
                return
            User.objects.create_superuser(username=u, email=e, password=p)
            logger.info("Bootstrapped super admin %s", u)

        post_migrate.connect(
            _bootstrap_super_admin,
            sender=self,
            dispatch_uid='ticketing_bootstrap_super_admin',
        )

"""
Management command to force a full rebuild of the effective permission cache.
"""
from django.core.management.base import BaseCommand
from apps.rbac.services import RBACService


class Command(BaseCommand):
    help = 'Recompute effective permissions for every active user'

    def add_arguments(self, parser):
        parser.add_argument(
            '--async',
            action='store_true',
            dest='run_async',
            help='Queue the rebuild on Celery instead of running it inline',
        )

    def handle(self, *args, **options):
        if options['run_async']:
            from apps.rbac.tasks import rebuild_permission_cache
            result = rebuild_permission_cache.delay()
            self.stdout.write(self.style.SUCCESS(f'✓ Rebuild queued: task {result.id}'))
            return

        count = RBACService.rebuild_cache(actor=None)
        self.stdout.write(self.style.SUCCESS(f'✓ Rebuilt permission cache for {count} user(s)'))

"""
Management command to copy role-derived permissions into grant overrides.

Run this before switching RBAC_PERMISSION_MODEL to ``overrides_only`` so no
user loses access when roles stop granting.
"""
from django.core.management.base import BaseCommand, CommandError
from apps.rbac.services import RBACService
from apps.tenants.models import Tenant


class Command(BaseCommand):
    help = 'Materialize role-derived grants as per-user overrides'

    def add_arguments(self, parser):
        parser.add_argument(
            '--tenant',
            type=str,
            help='Tenant ID or slug',
        )
        parser.add_argument(
            '--all',
            action='store_true',
            help='Process all tenants',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report what would be created without writing anything',
        )

    def handle(self, *args, **options):
        tenant_id = options.get('tenant')
        process_all = options.get('all')
        dry_run = options.get('dry_run')

        if bool(tenant_id) == bool(process_all):
            raise CommandError('Specify exactly one of --tenant=<id> or --all')

        if process_all:
            tenants = list(Tenant.objects.all())
        else:
            tenant = Tenant.objects.by_slug_or_id(tenant_id)
            if not tenant:
                raise CommandError(f'Tenant not found: {tenant_id}')
            tenants = [tenant]

        total = 0
        for tenant in tenants:
            count = RBACService.materialize_role_grants(actor=None, tenant=tenant, dry_run=dry_run)
            total += count
            verb = 'would create' if dry_run else 'created'
            self.stdout.write(f'{tenant.name} ({tenant.slug}): {verb} {count} override(s)')

        style = self.style.WARNING if dry_run else self.style.SUCCESS
        prefix = '↻ Dry run' if dry_run else '✓ Done'
        self.stdout.write(style(f'\n{prefix}: {total} override(s) across {len(tenants)} tenant(s)'))

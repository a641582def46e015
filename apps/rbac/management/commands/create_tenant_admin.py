"""
Management command to make a user the administrator of a tenant.

Optionally creates the user, then assigns the tenant's ``admin`` role,
granting every active permission.
"""
from collections import defaultdict

from django.core.management.base import BaseCommand, CommandError
from apps.core.exceptions import WorkshopException
from apps.rbac.models import ADMIN_ROLE_KEY, Permission, Role, User, UserRole
from apps.rbac.services import AuthorizationService, RBACService
from apps.tenants.models import Tenant


class Command(BaseCommand):
    help = 'Assign the admin role to a user of a tenant'

    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--tenant',
            type=str,
            required=True,
            help='Tenant ID or slug',
        )
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='User email address',
        )
        parser.add_argument(
            '--create-user',
            action='store_true',
            help='Create user if they do not exist (requires --password)',
        )
        parser.add_argument(
            '--password',
            type=str,
            help='Password for new user (only used with --create-user)',
        )
        parser.add_argument(
            '--first-name',
            type=str,
            default='',
            help='First name for new user',
        )
        parser.add_argument(
            '--last-name',
            type=str,
            default='',
            help='Last name for new user',
        )

    def handle(self, *args, **options):
        """Assign admin role to user of tenant."""

        tenant_id = options['tenant']
        email = options['email']
        create_user = options['create_user']
        password = options.get('password')

        if create_user and not password:
            raise CommandError(
                '--password is required when using --create-user'
            )

        tenant = Tenant.objects.by_slug_or_id(tenant_id)
        if not tenant:
            raise CommandError(f'Tenant not found: {tenant_id}')

        self.stdout.write(f'Tenant: {tenant.name} ({tenant.slug})')

        user = User.objects.by_email(email)

        if not user:
            if not create_user:
                raise CommandError(
                    f'User not found: {email}\n'
                    f'Use --create-user --password=<password> to create the user'
                )

            user = User.objects.create_user(
                email=email,
                tenant=tenant,
                password=password,
                first_name=options.get('first_name', ''),
                last_name=options.get('last_name', ''),
            )
            self.stdout.write(
                self.style.SUCCESS(f'✓ Created user: {email}')
            )
        else:
            if user.tenant_id != tenant.id:
                raise CommandError(f'User {email} belongs to another tenant')
            self.stdout.write(f'User: {user.email}')

        admin_role = Role.objects.by_key(tenant, ADMIN_ROLE_KEY)
        if not admin_role:
            raise CommandError(
                f'Admin role not found for tenant: {tenant.name}\n'
                f'Run: python manage.py seed_tenant_roles --tenant={tenant.slug}'
            )

        existing = UserRole.objects.active().filter(user=user, role=admin_role).exists()
        if existing:
            self.stdout.write(
                self.style.WARNING(
                    f'\n↻ Admin role already assigned to {user.email} for {tenant.name}'
                )
            )
            return

        try:
            RBACService.assign_role(actor=None, user=user, role=admin_role)
        except WorkshopException as e:
            raise CommandError(f'Failed to assign role: {e.message}')

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Assigned admin role to {user.email} for {tenant.name}'
            )
        )

        keys = AuthorizationService.get_effective_permissions(user)
        self.stdout.write(f'\nGranted permissions: {len(keys)}')

        by_category = defaultdict(list)
        for perm in Permission.objects.filter(key__in=keys).order_by('category', 'key'):
            by_category[perm.category].append(perm.key)

        for category in sorted(by_category.keys()):
            self.stdout.write(f'\n  {category.upper()}:')
            for key in by_category[category]:
                self.stdout.write(f'    • {key}')

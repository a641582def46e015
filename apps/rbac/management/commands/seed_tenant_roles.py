"""
Management command to seed default roles for tenants.

Creates the system roles (admin, customer_service, receptionist) with their
permission mappings for one or all tenants. This command is idempotent and
safe to re-run; it also runs automatically when a tenant is created.
"""
from django.core.management.base import BaseCommand, CommandError
from apps.rbac.models import ADMIN_ROLE_KEY, Permission, Role, RolePermission
from apps.tenants.models import Tenant


# Default role definitions with their permission mappings
DEFAULT_ROLES = {
    ADMIN_ROLE_KEY: {
        'name': 'Administrator',
        'description': 'Full access to every workshop feature and setting',
        'permissions': 'ALL',  # Special marker for all permissions
    },
    'customer_service': {
        'name': 'Customer Service',
        'description': 'Front office: customers, vehicles, work orders and invoicing',
        'permissions': [
            'dashboard.view',
            'customers.view', 'customers.create', 'customers.update', 'customers.export',
            'vehicles.view', 'vehicles.create', 'vehicles.update',
            'work_orders.view', 'work_orders.create', 'work_orders.update', 'work_orders.assign',
            'invoices.view', 'invoices.create', 'invoices.print',
            'inventory.view',
            'expenses.view',
            'technicians.view',
            'reports.view',
        ],
    },
    'receptionist': {
        'name': 'Receptionist',
        'description': 'Reception desk: registers customers and opens work orders',
        'permissions': [
            'dashboard.view',
            'customers.view', 'customers.create',
            'vehicles.view',
            'work_orders.view', 'work_orders.create',
            'invoices.view',
            'inventory.view',
        ],
    },
}


def sync_role_permissions(role, permissions):
    """
    Sync permissions for a role (idempotent).

    Ensures the role has exactly the specified permissions.
    Adds missing permissions and removes extra ones.

    Returns:
        Tuple of (added, removed) counts
    """
    current_perm_ids = set(
        RolePermission.objects.filter(role=role).values_list('permission_id', flat=True)
    )
    target = {p.id: p for p in permissions}

    to_add = set(target) - current_perm_ids
    for perm_id in to_add:
        RolePermission.objects.grant_permission(role, target[perm_id])

    to_remove = current_perm_ids - set(target)
    # Deleted one by one so post_delete invalidates the holders
    for role_permission in RolePermission.objects.filter(role=role, permission_id__in=to_remove):
        role_permission.delete()

    return len(to_add), len(to_remove)


def seed_roles(tenant):
    """
    Create or update the system roles of one tenant.

    Returns:
        Dict mapping role key to 'created', 'updated' or 'exists'
    """
    all_permissions = list(Permission.objects.active())
    results = {}

    for role_key, role_config in DEFAULT_ROLES.items():
        role, created = Role.objects.get_or_create_role(
            tenant=tenant,
            key=role_key,
            name=role_config['name'],
            description=role_config['description'],
            is_system=True
        )

        status = 'created' if created else 'exists'
        if not created and (role.description != role_config['description'] or not role.is_system):
            role.description = role_config['description']
            role.is_system = True
            role.save()
            status = 'updated'

        if role_config['permissions'] == 'ALL':
            permissions = all_permissions
        else:
            permissions = Permission.objects.active().filter(key__in=role_config['permissions'])

        added, removed = sync_role_permissions(role, permissions)
        if status == 'exists' and (added or removed):
            status = 'updated'
        results[role_key] = status

    return results


class Command(BaseCommand):
    help = 'Seed default roles for tenant(s) (idempotent)'

    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--tenant',
            type=str,
            help='Tenant ID or slug to seed roles for',
        )
        parser.add_argument(
            '--all',
            action='store_true',
            help='Seed roles for all tenants',
        )

    def handle(self, *args, **options):
        """Seed default roles for specified tenant(s)."""

        tenant_id = options.get('tenant')
        seed_all = options.get('all')

        if not tenant_id and not seed_all:
            raise CommandError(
                'You must specify either --tenant=<id> or --all'
            )

        if tenant_id and seed_all:
            raise CommandError(
                'Cannot specify both --tenant and --all'
            )

        if seed_all:
            tenants = list(Tenant.objects.all())
            self.stdout.write(f'Seeding roles for all {len(tenants)} tenants...\n')
        else:
            tenant = Tenant.objects.by_slug_or_id(tenant_id)
            if not tenant:
                raise CommandError(f'Tenant not found: {tenant_id}')

            tenants = [tenant]
            self.stdout.write(f'Seeding roles for tenant: {tenant.name}\n')

        total_created = 0
        total_updated = 0

        for tenant in tenants:
            self.stdout.write(f'\n{tenant.name} ({tenant.slug}):')
            for role_key, status in seed_roles(tenant).items():
                if status == 'created':
                    total_created += 1
                    self.stdout.write(self.style.SUCCESS(f'  ✓ Created role: {role_key}'))
                elif status == 'updated':
                    total_updated += 1
                    self.stdout.write(self.style.WARNING(f'  ↻ Updated role: {role_key}'))
                else:
                    self.stdout.write(self.style.HTTP_INFO(f'    Exists: {role_key}'))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {total_created} roles created, '
                f'{total_updated} roles updated across {len(tenants)} tenant(s)'
            )
        )

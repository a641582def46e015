"""
Management command to seed the workshop permission catalog.

Creates or updates every canonical ``resource.action`` permission. This
command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from apps.rbac.models import Permission


def _perm(key, label, description, category, display_order):
    return {
        'key': key,
        'label': label,
        'description': description,
        'category': category,
        'display_order': display_order,
    }


class Command(BaseCommand):
    help = 'Seed canonical permissions (idempotent)'

    CANONICAL_PERMISSIONS = [
        # General
        _perm('dashboard.view', 'View Dashboard', 'View dashboard and statistics', 'general', 1),

        # Customers
        _perm('customers.view', 'View Customers', 'View customers list and details', 'operations', 10),
        _perm('customers.create', 'Create Customer', 'Create new customers', 'operations', 11),
        _perm('customers.update', 'Update Customers', 'Update customer data', 'operations', 12),
        _perm('customers.delete', 'Delete Customers', 'Delete customers', 'operations', 13),
        _perm('customers.export', 'Export Customers', 'Export customer data', 'operations', 14),

        # Vehicles
        _perm('vehicles.view', 'View Vehicles', 'View vehicles list', 'operations', 20),
        _perm('vehicles.create', 'Create Vehicle', 'Create new vehicles', 'operations', 21),
        _perm('vehicles.update', 'Update Vehicles', 'Update vehicle data', 'operations', 22),
        _perm('vehicles.delete', 'Delete Vehicles', 'Delete vehicles', 'operations', 23),

        # Work orders
        _perm('work_orders.view', 'View Work Orders', 'View work orders', 'operations', 30),
        _perm('work_orders.create', 'Create Work Order', 'Create new work orders', 'operations', 31),
        _perm('work_orders.update', 'Update Work Orders', 'Update work orders', 'operations', 32),
        _perm('work_orders.delete', 'Delete Work Orders', 'Delete work orders', 'operations', 33),
        _perm('work_orders.cancel', 'Cancel Work Orders', 'Cancel work orders', 'operations', 34),
        _perm('work_orders.complete', 'Complete Work Orders', 'Mark work orders as complete', 'operations', 35),
        _perm('work_orders.export', 'Export Work Orders', 'Export work orders data', 'operations', 36),
        _perm('work_orders.assign', 'Assign Work Orders', 'Assign work orders to technicians', 'operations', 37),

        # Invoices
        _perm('invoices.view', 'View Invoices', 'View invoices', 'financial', 40),
        _perm('invoices.create', 'Create Invoice', 'Create new invoices', 'financial', 41),
        _perm('invoices.update', 'Update Invoices', 'Update invoices', 'financial', 42),
        _perm('invoices.delete', 'Delete Invoices', 'Delete invoices', 'financial', 43),
        _perm('invoices.print', 'Print Invoices', 'Print invoices', 'financial', 44),
        _perm('invoices.export', 'Export Invoices', 'Export invoices data', 'financial', 45),
        _perm('invoices.void', 'Void Invoices', 'Void invoices', 'financial', 46),

        # Inventory
        _perm('inventory.view', 'View Inventory', 'View spare parts inventory', 'operations', 50),
        _perm('inventory.create', 'Create Spare Part', 'Add new spare parts', 'operations', 51),
        _perm('inventory.update', 'Update Inventory', 'Update spare parts data', 'operations', 52),
        _perm('inventory.delete', 'Delete from Inventory', 'Delete spare parts', 'operations', 53),
        _perm('inventory.adjust_stock', 'Adjust Stock', 'Adjust stock quantities', 'operations', 54),
        _perm('inventory.export', 'Export Inventory', 'Export inventory data', 'operations', 55),

        # Expenses
        _perm('expenses.view', 'View Expenses', 'View expenses', 'financial', 60),
        _perm('expenses.create', 'Create Expense', 'Add new expenses', 'financial', 61),
        _perm('expenses.update', 'Update Expenses', 'Update expenses', 'financial', 62),
        _perm('expenses.delete', 'Delete Expenses', 'Delete expenses', 'financial', 63),
        _perm('expenses.approve', 'Approve Expenses', 'Approve expenses', 'financial', 64),
        _perm('expenses.export', 'Export Expenses', 'Export expenses data', 'financial', 65),

        # Salaries
        _perm('salaries.view', 'View Salaries', 'View salaries', 'financial', 70),
        _perm('salaries.create', 'Create Salary', 'Create new salary records', 'financial', 71),
        _perm('salaries.update', 'Update Salaries', 'Update salaries', 'financial', 72),
        _perm('salaries.delete', 'Delete Salaries', 'Delete salary records', 'financial', 73),
        _perm('salaries.approve', 'Approve Salaries', 'Approve salaries', 'financial', 74),
        _perm('salaries.export', 'Export Salaries', 'Export salaries data', 'financial', 75),

        # Technicians
        _perm('technicians.view', 'View Technicians', 'View technicians', 'operations', 80),
        _perm('technicians.create', 'Create Technician', 'Add new technicians', 'operations', 81),
        _perm('technicians.update', 'Update Technicians', 'Update technicians data', 'operations', 82),
        _perm('technicians.delete', 'Delete Technicians', 'Delete technicians', 'operations', 83),
        _perm('technicians.view_performance', 'View Technician Performance',
              'View technician performance reports', 'operations', 84),
        _perm('technicians.manage_assignments', 'Manage Technician Assignments',
              'Assign technicians to tasks', 'operations', 85),

        # Reports
        _perm('reports.view', 'View Reports', 'View reports', 'reports', 90),
        _perm('reports.export', 'Export Reports', 'Export reports', 'reports', 91),
        _perm('reports.financial', 'Financial Reports', 'View financial reports', 'reports', 92),
        _perm('reports.operations', 'Operations Reports', 'View operations reports', 'reports', 93),
        _perm('reports.performance', 'Performance Reports', 'View performance reports', 'reports', 94),

        # Settings
        _perm('settings.view', 'View Settings', 'View workshop settings', 'administration', 100),
        _perm('settings.update', 'Update Settings', 'Update workshop settings', 'administration', 101),
        _perm('settings.manage_workshop', 'Manage Workshop', 'Manage basic workshop data', 'administration', 102),
        _perm('settings.manage_tax', 'Manage Tax', 'Manage tax settings', 'administration', 103),

        # Users
        _perm('users.view', 'View Users', 'View users', 'administration', 110),
        _perm('users.create', 'Create User', 'Create new users', 'administration', 111),
        _perm('users.update', 'Update Users', 'Update user data', 'administration', 112),
        _perm('users.delete', 'Delete Users', 'Delete users', 'administration', 113),
        _perm('users.manage_roles', 'Manage User Roles', 'Assign roles to users', 'administration', 114),
        _perm('users.manage_permissions', 'Manage User Permissions',
              'Manage per-user permission overrides', 'administration', 115),
        _perm('users.change_password', 'Change Passwords', 'Change user passwords', 'administration', 116),

        # Roles
        _perm('roles.view', 'View Roles', 'View roles', 'administration', 120),
        _perm('roles.create', 'Create Role', 'Create new roles', 'administration', 121),
        _perm('roles.update', 'Update Roles', 'Update roles', 'administration', 122),
        _perm('roles.delete', 'Delete Roles', 'Delete roles', 'administration', 123),
        _perm('roles.manage_permissions', 'Manage Role Permissions',
              'Assign permissions to roles', 'administration', 124),

        # Audit
        _perm('audit_logs.view', 'View Audit Logs', 'View the audit log', 'administration', 130),
    ]

    FIELDS = ('label', 'description', 'category', 'display_order')

    def handle(self, *args, **options):
        """Create or update all canonical permissions."""

        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding canonical permissions...\n')

        for perm_data in self.CANONICAL_PERMISSIONS:
            permission, created = Permission.objects.get_or_create_permission(**perm_data)

            if created:
                created_count += 1
                self.stdout.write(
                    self.style.SUCCESS(f'✓ Created: {permission.key}')
                )
                continue

            changed = [
                field for field in self.FIELDS
                if getattr(permission, field) != perm_data[field]
            ]
            for field in changed:
                setattr(permission, field, perm_data[field])

            if changed:
                permission.save()
                updated_count += 1
                self.stdout.write(
                    self.style.WARNING(f'↻ Updated: {permission.key}')
                )
            else:
                self.stdout.write(
                    self.style.HTTP_INFO(f'  Exists: {permission.key}')
                )

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} updated, '
                f'{len(self.CANONICAL_PERMISSIONS) - created_count - updated_count} unchanged'
            )
        )

        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Permissions Summary by Category:')
        self.stdout.write('=' * 70)

        categories = Permission.objects.values_list('category', flat=True).distinct().order_by('category')

        for category in categories:
            perms = Permission.objects.filter(category=category).order_by('display_order', 'key')
            self.stdout.write(f'\n{category.upper()}:')
            for perm in perms:
                self.stdout.write(f'  • {perm.key:<32} {perm.label}')

        self.stdout.write(f'\nTotal permissions: {Permission.objects.count()}')

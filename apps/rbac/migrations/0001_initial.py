# Generated migration for the authorization models

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import apps.rbac.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('tenants', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('email', models.EmailField(db_index=True, help_text='User email address (unique globally)', max_length=254, unique=True)),
                ('password_hash', models.CharField(db_column='password_hash', help_text='Hashed password', max_length=255)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether user account is active')),
                ('first_name', models.CharField(blank=True, help_text='User first name', max_length=100)),
                ('last_name', models.CharField(blank=True, help_text='User last name', max_length=100)),
                ('last_login_at', models.DateTimeField(blank=True, help_text='Last login timestamp', null=True)),
                ('tenant', models.ForeignKey(help_text='Tenant this principal belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='users', to='tenants.tenant')),
            ],
            options={
                'db_table': 'users',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['tenant', 'is_active'], name='users_tenant__2f74ee_idx')],
            },
        ),
        migrations.CreateModel(
            name='Permission',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('key', models.CharField(db_index=True, help_text="Unique permission key (e.g., 'invoices.update')", max_length=100, unique=True, validators=[apps.rbac.models.validate_permission_key])),
                ('resource', models.CharField(db_index=True, editable=False, help_text="Resource part of the key (e.g., 'invoices')", max_length=50)),
                ('action', models.CharField(editable=False, help_text="Action part of the key (e.g., 'update')", max_length=50)),
                ('label', models.CharField(help_text="Human-readable label (e.g., 'Update Invoices')", max_length=255)),
                ('description', models.TextField(blank=True, help_text='Detailed description of what this permission grants')),
                ('category', models.CharField(blank=True, db_index=True, help_text="Grouping for UIs (e.g., 'billing', 'operations')", max_length=50)),
                ('display_order', models.PositiveIntegerField(default=0, help_text='Sort order within the category')),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Inactive permissions are never granted to anyone')),
            ],
            options={
                'db_table': 'permissions',
                'ordering': ['category', 'display_order', 'key'],
                'indexes': [
                    models.Index(fields=['resource', 'action'], name='permissions_resourc_2eec83_idx'),
                    models.Index(fields=['category'], name='permissions_categor_b3ddb9_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Role',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('key', models.CharField(help_text="Stable identifier, unique per tenant (e.g., 'receptionist')", max_length=50, validators=[apps.rbac.models.validate_role_key])),
                ('name', models.CharField(help_text="Display name (e.g., 'Receptionist')", max_length=100)),
                ('description', models.TextField(blank=True, help_text='Role description')),
                ('is_system', models.BooleanField(db_index=True, default=False, help_text='Whether this is a system-seeded role')),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Deactivated roles contribute no permissions, even while assigned')),
                ('created_by', models.ForeignKey(blank=True, help_text='User who created this role (null for system roles)', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='roles_created', to=settings.AUTH_USER_MODEL)),
                ('tenant', models.ForeignKey(help_text='Tenant this role belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='roles', to='tenants.tenant')),
            ],
            options={
                'db_table': 'roles',
                'ordering': ['tenant', 'key'],
                'unique_together': {('tenant', 'key')},
                'indexes': [
                    models.Index(fields=['tenant', 'is_active'], name='roles_tenant__0ca5a7_idx'),
                    models.Index(fields=['tenant', 'key'], name='roles_tenant__c262cd_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='RolePermission',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('granted_by', models.ForeignKey(blank=True, help_text='User who attached this permission', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='role_permissions_granted', to=settings.AUTH_USER_MODEL)),
                ('permission', models.ForeignKey(help_text='Permission being granted', on_delete=django.db.models.deletion.CASCADE, related_name='role_permissions', to='rbac.permission')),
                ('role', models.ForeignKey(help_text='Role that grants this permission', on_delete=django.db.models.deletion.CASCADE, related_name='role_permissions', to='rbac.role')),
            ],
            options={
                'db_table': 'role_permissions',
                'ordering': ['role', 'permission'],
                'unique_together': {('role', 'permission')},
                'indexes': [
                    models.Index(fields=['role'], name='role_permis_role_id_0ea48f_idx'),
                    models.Index(fields=['permission'], name='role_permis_permiss_96a6c9_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UserRole',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('assigned_at', models.DateTimeField(default=django.utils.timezone.now, help_text='When the role was (last) assigned')),
                ('expires_at', models.DateTimeField(blank=True, db_index=True, help_text='Assignment lapses at this time (null = no expiry)', null=True)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='False once the assignment has been revoked')),
                ('assigned_by', models.ForeignKey(blank=True, help_text='User who assigned this role (null for system)', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='role_assignments_made', to=settings.AUTH_USER_MODEL)),
                ('role', models.ForeignKey(help_text='Role assigned to the user', on_delete=django.db.models.deletion.CASCADE, related_name='assignments', to='rbac.role')),
                ('user', models.ForeignKey(help_text='User who holds this role', on_delete=django.db.models.deletion.CASCADE, related_name='role_assignments', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'user_roles',
                'ordering': ['user', 'role'],
                'unique_together': {('user', 'role')},
                'indexes': [
                    models.Index(fields=['user', 'is_active'], name='user_roles_user_id_4ec42c_idx'),
                    models.Index(fields=['role'], name='user_roles_role_id_0b583b_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PermissionOverride',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('is_granted', models.BooleanField(help_text='True = grant, False = revoke (revoke wins over everything)')),
                ('reason', models.TextField(blank=True, help_text='Reason for this override')),
                ('expires_at', models.DateTimeField(blank=True, db_index=True, help_text='Override is ignored from this time on (null = no expiry)', null=True)),
                ('granted_by', models.ForeignKey(blank=True, help_text='User who created this override', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='permission_overrides_made', to=settings.AUTH_USER_MODEL)),
                ('permission', models.ForeignKey(help_text='Permission being granted or revoked', on_delete=django.db.models.deletion.CASCADE, related_name='overrides', to='rbac.permission')),
                ('user', models.ForeignKey(help_text='User this override applies to', on_delete=django.db.models.deletion.CASCADE, related_name='permission_overrides', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'permission_overrides',
                'ordering': ['user', 'permission'],
                'unique_together': {('user', 'permission')},
                'indexes': [
                    models.Index(fields=['user', 'is_granted'], name='permission__user_id_f5865b_idx'),
                    models.Index(fields=['permission'], name='permission__permiss_a5d104_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='EffectivePermissionCache',
            fields=[
                ('user', models.OneToOneField(help_text='User this projection belongs to', on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='permission_cache', serialize=False, to=settings.AUTH_USER_MODEL)),
                ('permission_keys', models.JSONField(default=list, help_text='Sorted effective permission keys')),
                ('provenance', models.JSONField(default=dict, help_text="Permission key -> source ('admin', 'role', 'granted', 'revoked')")),
                ('is_admin', models.BooleanField(default=False, help_text='Whether the admin bypass applied')),
                ('permission_model', models.CharField(help_text='Permission model in force when this row was computed', max_length=32)),
                ('valid_until', models.DateTimeField(blank=True, help_text='Earliest expiry among the grants this result relied on', null=True)),
                ('last_updated', models.DateTimeField(auto_now=True, help_text='When this projection was last recomputed')),
            ],
            options={
                'db_table': 'effective_permission_cache',
                'ordering': ['-last_updated'],
            },
        ),
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('action', models.CharField(db_index=True, help_text="Action performed (e.g., 'role_assigned', 'override_set')", max_length=100)),
                ('target_type', models.CharField(db_index=True, help_text="Type of target entity (e.g., 'Role', 'PermissionOverride')", max_length=50)),
                ('target_id', models.UUIDField(blank=True, db_index=True, help_text='ID of target entity', null=True)),
                ('diff', models.JSONField(blank=True, default=dict, help_text='Before/after changes in JSON format')),
                ('ip_address', models.GenericIPAddressField(blank=True, help_text='IP address of the request', null=True)),
                ('user_agent', models.TextField(blank=True, help_text='User agent string')),
                ('request_id', models.CharField(blank=True, db_index=True, help_text='Request ID for tracing', max_length=64)),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Additional context metadata')),
                ('tenant', models.ForeignKey(blank=True, help_text='Tenant this action belongs to (null for catalog-wide actions)', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='audit_logs', to='tenants.tenant')),
                ('user', models.ForeignKey(blank=True, help_text='User who performed the action (null for system actions)', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='audit_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'audit_logs',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['tenant', 'created_at'], name='audit_logs_tenant__0b1a88_idx'),
                    models.Index(fields=['action', 'created_at'], name='audit_logs_action_391715_idx'),
                    models.Index(fields=['target_type', 'target_id'], name='audit_logs_target__9fc8de_idx'),
                ],
            },
        ),
    ]

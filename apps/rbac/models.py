"""
RBAC models for tenant-scoped access control.

Implements:
- User: the principal, bound to exactly one tenant
- Permission: global catalog of ``resource.action`` keys
- Role: per-tenant permission bundles, including the reserved ``admin`` role
- RolePermission: maps permissions to roles
- UserRole: time-boundable role assignments
- PermissionOverride: per-user grant/revoke with optional expiry
- EffectivePermissionCache: durable, rebuildable projection of resolved permissions
- AuditLog: audit trail of every administrative change
"""
import logging
import re
from django.core.exceptions import ValidationError
from django.contrib.auth.hashers import make_password, check_password
from django.db import models, transaction
from django.db.models import F, Q
from django.utils import timezone
from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet, TimestampedModel

logger = logging.getLogger(__name__)

PERMISSION_KEY_RE = re.compile(r'^[a-z][a-z_]*\.[a-z][a-z_]*$')
ROLE_KEY_RE = re.compile(r'^[a-z][a-z0-9_]*$')

ADMIN_ROLE_KEY = 'admin'


def validate_permission_key(value):
    if not PERMISSION_KEY_RE.match(value or ''):
        raise ValidationError(
            f"'{value}' is not a valid permission key (expected 'resource.action')"
        )


def validate_role_key(value):
    if not ROLE_KEY_RE.match(value or ''):
        raise ValidationError(
            f"'{value}' is not a valid role key (lowercase letters, digits and underscores)"
        )


class UserManager(BaseModelManager):
    """
    Manager for User queries.

    Compatible with Django's authentication system.
    """

    def active(self):
        return self.filter(is_active=True)

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def by_email(self, email):
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, tenant, password=None, **extra_fields):
        """Create a new principal with a hashed password."""
        if not email:
            raise ValueError('Email address is required')
        if tenant is None:
            raise ValueError('A user must belong to a tenant')

        extra_fields.setdefault('is_active', True)

        user = self.model(email=self.normalize_email(email), tenant=tenant, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.password_hash = make_password(None)
        user.save(using=self._db)
        return user

    @staticmethod
    def normalize_email(email):
        """Lowercase the domain part of the email address."""
        email = (email or '').strip()
        try:
            email_name, domain_part = email.rsplit('@', 1)
        except ValueError:
            return email
        return email_name + '@' + domain_part.lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    A principal. Belongs to exactly one tenant.

    Authentication happens upstream; this model carries the identity the
    authorization engine resolves permissions for. It is the AUTH_USER_MODEL.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='users',
        db_index=True,
        help_text="Tenant this principal belongs to"
    )
    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    first_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User first name"
    )
    last_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User last name"
    )
    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['tenant']

    objects = UserManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'is_active']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    def natural_key(self):
        return (self.email,)

    def delete(self, using=None, keep_parents=False):
        """
        Remove the principal.

        Role assignments, overrides and the cached projection are deleted
        outright; the user row itself is soft deleted and deactivated so
        audit entries keep pointing at it.
        """
        self.role_assignments.all().delete()
        self.permission_overrides.all().delete()
        EffectivePermissionCache.objects.filter(user=self).delete()
        self.is_active = False
        super().delete(using=using, keep_parents=keep_parents)


class PermissionManager(BaseModelManager):
    """Manager for Permission queries."""

    def active(self):
        return self.filter(is_active=True)

    def by_key(self, key):
        return self.filter(key=key).first()

    def active_by_key(self, key):
        return self.filter(key=key, is_active=True).first()

    def by_category(self, category):
        return self.filter(category=category)

    def active_keys(self):
        return set(self.active().values_list('key', flat=True))

    def get_or_create_permission(self, key, label, description='', category='', display_order=0):
        """Get or create permission (idempotent)."""
        permission, created = self.get_or_create(
            key=key,
            defaults={
                'label': label,
                'description': description,
                'category': category,
                'display_order': display_order,
            }
        )
        return permission, created


class Permission(BaseModel):
    """
    Global permission catalog entry, shared across all tenants.

    Keys are ``resource.action`` (e.g. ``invoices.update``); ``resource`` and
    ``action`` are derived from the key on save.
    """

    key = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        validators=[validate_permission_key],
        help_text="Unique permission key (e.g., 'invoices.update')"
    )
    resource = models.CharField(
        max_length=50,
        db_index=True,
        editable=False,
        help_text="Resource part of the key (e.g., 'invoices')"
    )
    action = models.CharField(
        max_length=50,
        editable=False,
        help_text="Action part of the key (e.g., 'update')"
    )
    label = models.CharField(
        max_length=255,
        help_text="Human-readable label (e.g., 'Update Invoices')"
    )
    description = models.TextField(
        blank=True,
        help_text="Detailed description of what this permission grants"
    )
    category = models.CharField(
        max_length=50,
        db_index=True,
        blank=True,
        help_text="Grouping for UIs (e.g., 'billing', 'operations')"
    )
    display_order = models.PositiveIntegerField(
        default=0,
        help_text="Sort order within the category"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive permissions are never granted to anyone"
    )

    objects = PermissionManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'permissions'
        ordering = ['category', 'display_order', 'key']
        indexes = [
            models.Index(fields=['resource', 'action']),
            models.Index(fields=['category']),
        ]

    def __str__(self):
        return self.key

    def save(self, *args, **kwargs):
        validate_permission_key(self.key)
        self.resource, self.action = self.key.split('.', 1)
        super().save(*args, **kwargs)


class RoleManager(BaseModelManager):
    """Manager for Role queries with tenant scoping."""

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def active_for_tenant(self, tenant):
        return self.filter(tenant=tenant, is_active=True)

    def system_roles(self, tenant):
        return self.filter(tenant=tenant, is_system=True)

    def by_key(self, tenant, key):
        return self.filter(tenant=tenant, key=key).first()

    def get_or_create_role(self, tenant, key, name='', description='', is_system=False):
        """Get or create role (idempotent)."""
        role, created = self.get_or_create(
            tenant=tenant,
            key=key,
            defaults={
                'name': name or key.replace('_', ' ').title(),
                'description': description,
                'is_system': is_system,
            }
        )
        return role, created


class Role(BaseModel):
    """
    Per-tenant role definition.

    Each tenant gets the system roles (``admin``, ``customer_service``,
    ``receptionist``) at creation and may add custom ones. Holding an active
    ``admin`` role grants every active permission.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='roles',
        db_index=True,
        help_text="Tenant this role belongs to"
    )
    key = models.CharField(
        max_length=50,
        validators=[validate_role_key],
        help_text="Stable identifier, unique per tenant (e.g., 'receptionist')"
    )
    name = models.CharField(
        max_length=100,
        help_text="Display name (e.g., 'Receptionist')"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    is_system = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this is a system-seeded role"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Deactivated roles contribute no permissions, even while assigned"
    )
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='roles_created',
        help_text="User who created this role (null for system roles)"
    )

    objects = RoleManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'roles'
        unique_together = [('tenant', 'key')]
        ordering = ['tenant', 'key']
        indexes = [
            models.Index(fields=['tenant', 'is_active']),
            models.Index(fields=['tenant', 'key']),
        ]

    def __str__(self):
        return f"{self.tenant.name} - {self.key}"

    @property
    def is_admin(self):
        return self.key == ADMIN_ROLE_KEY

    def get_permissions(self):
        """Active permissions attached to this role."""
        return Permission.objects.filter(
            role_permissions__role=self,
            is_active=True,
        ).distinct()

    def get_permission_keys(self):
        return set(self.get_permissions().values_list('key', flat=True))


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def for_role(self, role):
        return self.filter(role=role)

    def for_permission(self, permission):
        return self.filter(permission=permission)

    def grant_permission(self, role, permission, granted_by=None):
        """Attach permission to role (idempotent)."""
        return self.get_or_create(
            role=role,
            permission=permission,
            defaults={'granted_by': granted_by}
        )

    def revoke_permission(self, role, permission):
        """Detach permission from role. Returns the number of rows removed."""
        deleted, _ = self.filter(role=role, permission=permission).delete()
        return deleted


class RolePermission(TimestampedModel):
    """
    Maps permissions to roles.

    The row carries audit data only; its presence is the grant.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Role that grants this permission"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Permission being granted"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_permissions_granted',
        help_text="User who attached this permission"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']
        indexes = [
            models.Index(fields=['role']),
            models.Index(fields=['permission']),
        ]

    def __str__(self):
        return f"{self.role.key} -> {self.permission.key}"


class UserRoleManager(models.Manager):
    """Manager for role assignments."""

    def for_user(self, user):
        return self.filter(user=user)

    def active(self, now=None):
        """
        Assignments currently in force.

        The assignment must be active and unexpired, its role active and not
        deleted, and the role must belong to the user's own tenant.
        """
        now = now or timezone.now()
        return self.filter(
            is_active=True,
            role__is_active=True,
            role__deleted_at__isnull=True,
            role__tenant_id=F('user__tenant_id'),
        ).filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=now)
        )

    def expired(self, now=None):
        now = now or timezone.now()
        return self.filter(is_active=True, expires_at__isnull=False, expires_at__lte=now)


class UserRole(TimestampedModel):
    """
    Assigns a role to a user, optionally until ``expires_at``.

    Revoking sets ``is_active`` to False; re-assigning reactivates the row.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='role_assignments',
        help_text="User who holds this role"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='assignments',
        help_text="Role assigned to the user"
    )
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="User who assigned this role (null for system)"
    )
    assigned_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the role was (last) assigned"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Assignment lapses at this time (null = no expiry)"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="False once the assignment has been revoked"
    )

    objects = UserRoleManager()

    class Meta:
        db_table = 'user_roles'
        unique_together = [('user', 'role')]
        ordering = ['user', 'role']
        indexes = [
            models.Index(fields=['user', 'is_active']),
            models.Index(fields=['role']),
        ]

    def __str__(self):
        return f"{self.user.email} -> {self.role.key}"

    def clean(self):
        """Validate that user and role belong to the same tenant."""
        super().clean()
        if self.user_id and self.role_id:
            if self.user.tenant_id != self.role.tenant_id:
                raise ValidationError("User and Role must belong to the same tenant")

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)

    def is_in_force(self, now=None):
        now = now or timezone.now()
        return self.is_active and (self.expires_at is None or self.expires_at > now)


class PermissionOverrideManager(models.Manager):
    """Manager for per-user permission overrides."""

    def for_user(self, user):
        return self.filter(user=user)

    def active(self, now=None):
        """Unexpired overrides on active permissions."""
        now = now or timezone.now()
        return self.filter(
            permission__is_active=True,
            permission__deleted_at__isnull=True,
        ).filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=now)
        )

    def expired(self, now=None):
        now = now or timezone.now()
        return self.filter(expires_at__isnull=False, expires_at__lte=now)

    def upsert(self, user, permission, is_granted, reason='', granted_by=None, expires_at=None):
        """
        Create or replace the single override for (user, permission).

        ``update_or_create`` locks the existing row and retries a lost
        insert race as an update, so the last committed writer wins.
        """
        return self.update_or_create(
            user=user,
            permission=permission,
            defaults={
                'is_granted': is_granted,
                'reason': reason,
                'granted_by': granted_by,
                'expires_at': expires_at,
            }
        )


class PermissionOverride(TimestampedModel):
    """
    Per-user exception to role-derived permissions.

    ``is_granted=True`` adds the permission; ``False`` revokes it and beats
    any role grant. An expired override is ignored entirely.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_overrides',
        help_text="User this override applies to"
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name='overrides',
        help_text="Permission being granted or revoked"
    )
    is_granted = models.BooleanField(
        help_text="True = grant, False = revoke (revoke wins over everything)"
    )
    reason = models.TextField(
        blank=True,
        help_text="Reason for this override"
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_overrides_made',
        help_text="User who created this override"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Override is ignored from this time on (null = no expiry)"
    )

    objects = PermissionOverrideManager()

    class Meta:
        db_table = 'permission_overrides'
        unique_together = [('user', 'permission')]
        ordering = ['user', 'permission']
        indexes = [
            models.Index(fields=['user', 'is_granted']),
            models.Index(fields=['permission']),
        ]

    def __str__(self):
        action = "GRANT" if self.is_granted else "REVOKE"
        return f"{action} {self.permission.key} to {self.user.email}"

    def is_in_force(self, now=None):
        now = now or timezone.now()
        return self.expires_at is None or self.expires_at > now


class EffectivePermissionCacheManager(models.Manager):

    def store(self, user_id, resolved):
        """Write one user's resolved permissions."""
        row, _ = self.update_or_create(
            user_id=user_id,
            defaults=resolved.to_row(),
        )
        return row


class EffectivePermissionCache(models.Model):
    """
    Durable projection of a user's resolved permissions.

    Never the system of record: every row can be regenerated from roles and
    overrides. Keeps the provenance of each key ('admin', 'role', 'granted',
    or 'revoked') for audit and debugging.
    """

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='permission_cache',
        help_text="User this projection belongs to"
    )
    permission_keys = models.JSONField(
        default=list,
        help_text="Sorted effective permission keys"
    )
    provenance = models.JSONField(
        default=dict,
        help_text="Permission key -> source ('admin', 'role', 'granted', 'revoked')"
    )
    is_admin = models.BooleanField(
        default=False,
        help_text="Whether the admin bypass applied"
    )
    permission_model = models.CharField(
        max_length=32,
        help_text="Permission model in force when this row was computed"
    )
    valid_until = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Earliest expiry among the grants this result relied on"
    )
    last_updated = models.DateTimeField(
        auto_now=True,
        help_text="When this projection was last recomputed"
    )

    objects = EffectivePermissionCacheManager()

    class Meta:
        db_table = 'effective_permission_cache'
        ordering = ['-last_updated']

    def __str__(self):
        return f"{self.user_id}: {len(self.permission_keys)} permissions"


class AuditLogManager(BaseModelManager):
    """Manager for AuditLog queries with tenant scoping."""

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def for_user(self, user):
        return self.filter(user=user)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs


class AuditLog(BaseModel):
    """
    Audit trail for every administrative change to roles, assignments,
    overrides and the permission cache.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True,
        help_text="Tenant this action belongs to (null for catalog-wide actions)"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True,
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'role_assigned', 'override_set')"
    )
    target_type = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Type of target entity (e.g., 'Role', 'PermissionOverride')"
    )
    target_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of target entity"
    )
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after changes in JSON format"
    )
    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address of the request"
    )
    user_agent = models.TextField(
        blank=True,
        help_text="User agent string"
    )
    request_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Request ID for tracing"
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context metadata"
    )

    objects = AuditLogManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        user_str = self.user.email if self.user else 'System'
        tenant_str = self.tenant.name if self.tenant else 'Catalog'
        return f"{tenant_str} - {user_str} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, tenant=None, target_type=None,
                   target_id=None, diff=None, metadata=None, request=None):
        """
        Create an audit log entry.

        Failures are logged and swallowed: auditing must not break the
        operation being audited.
        """
        if user is not None and not getattr(user, 'is_authenticated', False):
            user = None

        log_data = {
            'action': action,
            'user': user,
            'tenant': tenant,
            'target_type': target_type or '',
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', None) or ''

        try:
            with transaction.atomic():
                return cls.objects.create(**log_data)
        except Exception as e:
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action, 'tenant_id': str(tenant.id) if tenant else None},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')

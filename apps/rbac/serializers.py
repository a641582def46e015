"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Permissions and effective permissions
- Roles and role permission changes
- Role assignments and permission overrides
- Audit logs
"""
from django.utils import timezone
from rest_framework import serializers
from apps.rbac.models import (
    PERMISSION_KEY_RE, ROLE_KEY_RE, AuditLog, Permission, PermissionOverride, Role, UserRole,
)


def _validate_future(value):
    if value is not None and value <= timezone.now():
        raise serializers.ValidationError("Expiry must be in the future.")
    return value


class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for catalog permissions."""

    class Meta:
        model = Permission
        fields = [
            'id', 'key', 'resource', 'action', 'label',
            'description', 'category', 'display_order', 'is_active',
        ]
        read_only_fields = fields


class RoleSerializer(serializers.ModelSerializer):
    """Serializer for roles, optionally with their permission keys."""

    permission_count = serializers.SerializerMethodField()
    permissions = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'key', 'name', 'description', 'is_system', 'is_active',
            'permission_count', 'permissions', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_permission_count(self, obj):
        return obj.role_permissions.filter(permission__is_active=True).count()

    def get_permissions(self, obj):
        if not self.context.get('include_permissions'):
            return None
        return sorted(obj.get_permission_keys())


class RoleCreateSerializer(serializers.Serializer):
    """Serializer for creating a custom role."""

    key = serializers.CharField(max_length=50)
    name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    permission_keys = serializers.ListField(
        child=serializers.CharField(max_length=100),
        required=False,
        default=list,
    )

    def validate_key(self, value):
        value = value.strip()
        if not ROLE_KEY_RE.match(value):
            raise serializers.ValidationError(
                "Role key must start with a letter and contain only lowercase letters, digits and underscores."
            )
        return value


class PermissionKeySerializer(serializers.Serializer):
    """A single permission key in ``resource.action`` form."""

    permission_key = serializers.CharField(max_length=100)

    def validate_permission_key(self, value):
        value = value.strip()
        if not PERMISSION_KEY_RE.match(value):
            raise serializers.ValidationError("Permission key must look like 'resource.action'.")
        return value


class RoleAssignSerializer(serializers.Serializer):
    """Serializer for assigning a role to a user."""

    role_id = serializers.UUIDField()
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate_expires_at(self, value):
        return _validate_future(value)


class OverrideSetSerializer(PermissionKeySerializer):
    """Serializer for granting or revoking a permission for one user."""

    granted = serializers.BooleanField()
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def validate_expires_at(self, value):
        return _validate_future(value)


class UserRoleSerializer(serializers.ModelSerializer):
    """Serializer for role assignments."""

    role_key = serializers.CharField(source='role.key', read_only=True)
    role_name = serializers.CharField(source='role.name', read_only=True)

    class Meta:
        model = UserRole
        fields = [
            'id', 'role', 'role_key', 'role_name', 'assigned_at',
            'expires_at', 'is_active', 'assigned_by',
        ]
        read_only_fields = fields


class PermissionOverrideSerializer(serializers.ModelSerializer):
    """Serializer for per-user permission overrides."""

    permission_key = serializers.CharField(source='permission.key', read_only=True)

    class Meta:
        model = PermissionOverride
        fields = [
            'id', 'permission_key', 'is_granted', 'reason',
            'expires_at', 'granted_by', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class EffectivePermissionsSerializer(serializers.Serializer):
    """Effective permissions of one user, with where each key came from."""

    user_id = serializers.UUIDField()
    tenant_id = serializers.UUIDField()
    is_admin = serializers.BooleanField()
    permission_model = serializers.CharField()
    permissions = serializers.ListField(child=serializers.CharField())
    provenance = serializers.DictField(child=serializers.CharField())
    valid_until = serializers.DateTimeField(allow_null=True)


class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for audit log entries."""

    user_email = serializers.SerializerMethodField()

    class Meta:
        model = AuditLog
        fields = [
            'id', 'action', 'user', 'user_email', 'target_type', 'target_id',
            'diff', 'metadata', 'ip_address', 'request_id', 'created_at',
        ]
        read_only_fields = fields

    def get_user_email(self, obj):
        return obj.user.email if obj.user else None

"""
RBAC REST API views.

Implements endpoints for:
- The caller's own effective permissions
- Permission catalog
- Role management (create, activate/deactivate, permission changes)
- User role assignments and permission overrides
- Permission cache rebuild
- Audit log viewing

Every lookup is scoped to the caller's tenant: an id from another tenant is
indistinguishable from an unknown one.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import Unauthorized
from apps.core.permissions import requires_permissions, HasTenantPermissions
from apps.rbac.models import AuditLog, Permission, Role
from apps.rbac.services import AuthorizationService, RBACService
from apps.rbac.serializers import (
    AuditLogSerializer, EffectivePermissionsSerializer, OverrideSetSerializer,
    PermissionKeySerializer, PermissionOverrideSerializer, PermissionSerializer,
    RoleAssignSerializer, RoleCreateSerializer, RoleSerializer, UserRoleSerializer,
)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def _effective_payload(user):
    resolved = AuthorizationService.cache.get_resolved(user)
    return {
        'user_id': user.id,
        'tenant_id': user.tenant_id,
        'is_admin': resolved.is_admin,
        'permission_model': resolved.permission_model,
        'permissions': sorted(resolved.keys),
        'provenance': resolved.full_provenance(),
        'valid_until': resolved.valid_until,
    }


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Get my effective permissions',
        description='''
Effective permissions of the authenticated user, with the source of each key
(`admin`, `role`, `granted`) and the keys suppressed by a revoke (`revoked`).

**No permission required** - users can always see their own permissions.
        ''',
        responses={200: EffectivePermissionsSerializer}
    )
)
class MyPermissionsView(APIView):
    """
    GET /v1/me/permissions

    Effective permissions of the authenticated user.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(EffectivePermissionsSerializer(_effective_payload(request.user)).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permission catalog',
        description='''
List all active permissions. The catalog is global and identical for every tenant.

Query parameters:
- `category`: Filter by category (e.g. `financial`, `operations`)
        ''',
        parameters=[
            OpenApiParameter('category', OpenApiTypes.STR, description='Filter by category'),
        ],
        responses={200: PermissionSerializer(many=True)}
    )
)
class PermissionListView(APIView):
    """
    GET /v1/permissions

    List the active permission catalog.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        permissions = Permission.objects.active()

        category = request.query_params.get('category')
        if category:
            permissions = permissions.filter(category=category)

        serializer = PermissionSerializer(permissions, many=True)
        return Response({
            'count': len(serializer.data),
            'permissions': serializer.data
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List tenant roles',
        description='''
List all roles of the caller's tenant, system and custom.

**Required permission:** `roles.view`

Query parameters:
- `type`: Filter by `system` or `custom`
- `include_permissions`: Set to `true` to include permission keys
        ''',
        parameters=[
            OpenApiParameter('type', OpenApiTypes.STR, description='Filter by role type: system or custom'),
            OpenApiParameter('include_permissions', OpenApiTypes.BOOL, description='Include permission keys'),
        ],
        responses={200: RoleSerializer(many=True), 403: OpenApiTypes.OBJECT}
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create custom role',
        description='''
Create a custom role in the caller's tenant, optionally with initial permissions.

**Required permission:** `roles.create`
        ''',
        request=RoleCreateSerializer,
        responses={
            201: RoleSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Create role',
                value={
                    'key': 'parts_clerk',
                    'name': 'Parts Clerk',
                    'permission_keys': ['inventory.view', 'inventory.adjust_stock'],
                },
                request_only=True
            )
        ]
    )
)
class RoleListView(APIView):
    """
    GET /v1/roles
    POST /v1/roles
    """
    permission_classes = [HasTenantPermissions]

    @requires_permissions('roles.view')
    def get(self, request):
        roles = Role.objects.for_tenant(request.user.tenant).order_by('-is_system', 'key')

        role_type = request.query_params.get('type')
        if role_type == 'system':
            roles = roles.filter(is_system=True)
        elif role_type == 'custom':
            roles = roles.filter(is_system=False)

        serializer = RoleSerializer(
            roles,
            many=True,
            context={'include_permissions': request.query_params.get('include_permissions') == 'true'}
        )
        return Response({
            'count': len(serializer.data),
            'roles': serializer.data
        })

    @requires_permissions('roles.create')
    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RBACService.create_role(
            actor=request.user,
            tenant=request.user.tenant,
            key=serializer.validated_data['key'],
            name=serializer.validated_data['name'],
            description=serializer.validated_data['description'],
            permission_keys=serializer.validated_data['permission_keys'],
            request=request,
        )
        return Response(
            RoleSerializer(role, context={'include_permissions': True}).data,
            status=status.HTTP_201_CREATED
        )


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role details',
        description='''
Role details including its permission keys.

**Required permission:** `roles.view`
        ''',
        responses={200: RoleSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('roles.view')
class RoleDetailView(APIView):
    """
    GET /v1/roles/{id}
    """
    permission_classes = [HasTenantPermissions]

    def get(self, request, role_id):
        role = RBACService.get_role(request.user.tenant, role_id)
        self.check_object_permissions(request, role)
        return Response(RoleSerializer(role, context={'include_permissions': True}).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Deactivate role',
        description='''
Deactivate a role. Holders keep the assignment but lose every permission only
this role provided. Deactivating an inactive role is a no-op. The `admin` role
cannot be deactivated.

**Required permission:** `roles.update`
        ''',
        request=None,
        responses={200: RoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('roles.update')
class RoleDeactivateView(APIView):
    """
    POST /v1/roles/{id}/deactivate
    """
    permission_classes = [HasTenantPermissions]

    def post(self, request, role_id):
        role = RBACService.get_role(request.user.tenant, role_id)
        role = RBACService.deactivate_role(request.user, role, request=request)
        return Response(RoleSerializer(role).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Activate role',
        description='''
Reactivate a role. Activating an active role is a no-op.

**Required permission:** `roles.update`
        ''',
        request=None,
        responses={200: RoleSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('roles.update')
class RoleActivateView(APIView):
    """
    POST /v1/roles/{id}/activate
    """
    permission_classes = [HasTenantPermissions]

    def post(self, request, role_id):
        role = RBACService.get_role(request.user.tenant, role_id)
        role = RBACService.activate_role(request.user, role, request=request)
        return Response(RoleSerializer(role).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Attach permission to role',
        description='''
Attach a permission to a role. Attaching a permission the role already holds
is a no-op.

**Required permission:** `roles.manage_permissions`
        ''',
        request=PermissionKeySerializer,
        responses={200: RoleSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample('Attach', value={'permission_key': 'invoices.view'}, request_only=True)
        ]
    )
)
@requires_permissions('roles.manage_permissions')
class RolePermissionsView(APIView):
    """
    POST /v1/roles/{id}/permissions
    """
    permission_classes = [HasTenantPermissions]

    def post(self, request, role_id):
        role = RBACService.get_role(request.user.tenant, role_id)

        serializer = PermissionKeySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        RBACService.attach_permission(
            request.user, role, serializer.validated_data['permission_key'], request=request
        )
        return Response(RoleSerializer(role, context={'include_permissions': True}).data)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Detach permission from role',
        description='''
Detach a permission from a role. Returns 409 if the role does not hold it.

**Required permission:** `roles.manage_permissions`
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('roles.manage_permissions')
class RolePermissionDetailView(APIView):
    """
    DELETE /v1/roles/{id}/permissions/{key}
    """
    permission_classes = [HasTenantPermissions]

    def delete(self, request, role_id, permission_key):
        role = RBACService.get_role(request.user.tenant, role_id)
        RBACService.detach_permission(request.user, role, permission_key, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='Get user permissions',
        description='''
Effective permissions of a user of the caller's tenant, with provenance, role
assignments and overrides.

**Required permission:** `users.view`, unless the caller is the user.
        ''',
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
class UserPermissionsView(APIView):
    """
    GET /v1/users/{id}/permissions
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, user_id):
        if str(request.user.id) != str(user_id):
            if not AuthorizationService.has_permission(request.user, 'users.view'):
                raise Unauthorized()

        user = RBACService.get_user(request.user.tenant, user_id)

        data = _effective_payload(user)
        data = dict(EffectivePermissionsSerializer(data).data)
        data['roles'] = UserRoleSerializer(
            user.role_assignments.select_related('role').order_by('role__key'), many=True
        ).data
        data['overrides'] = PermissionOverrideSerializer(
            user.permission_overrides.select_related('permission').order_by('permission__key'), many=True
        ).data
        return Response(data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Assign role to user',
        description='''
Assign a role of the caller's tenant to a user, optionally until `expires_at`.
Re-assigning reactivates the assignment with the new expiry. Only an admin may
assign the `admin` role.

**Required permission:** `users.manage_roles`
        ''',
        request=RoleAssignSerializer,
        responses={
            201: UserRoleSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        }
    )
)
@requires_permissions('users.manage_roles')
class UserRoleAssignView(APIView):
    """
    POST /v1/users/{id}/roles
    """
    permission_classes = [HasTenantPermissions]

    def post(self, request, user_id):
        tenant = request.user.tenant
        user = RBACService.get_user(tenant, user_id)

        serializer = RoleAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role = RBACService.get_role(tenant, serializer.validated_data['role_id'])

        assignment = RBACService.assign_role(
            request.user,
            user,
            role,
            expires_at=serializer.validated_data['expires_at'],
            request=request,
        )
        return Response(UserRoleSerializer(assignment).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Users'],
        summary='Revoke role from user',
        description='''
Revoke a role assignment. Returns 409 if the user does not hold the role.

**Required permission:** `users.manage_roles`
        ''',
        responses={204: None, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT,
                   404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('users.manage_roles')
class UserRoleRevokeView(APIView):
    """
    DELETE /v1/users/{id}/roles/{role_id}
    """
    permission_classes = [HasTenantPermissions]

    def delete(self, request, user_id, role_id):
        tenant = request.user.tenant
        user = RBACService.get_user(tenant, user_id)
        role = RBACService.get_role(tenant, role_id)
        RBACService.revoke_role(request.user, user, role, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Set permission override',
        description='''
Grant or revoke one permission for one user. Replaces any existing override for
the same permission. A revoke beats every role grant and every grant override.

**Required permission:** `users.manage_permissions`
        ''',
        request=OverrideSetSerializer,
        responses={
            200: PermissionOverrideSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Grant until end of month',
                value={
                    'permission_key': 'invoices.view',
                    'granted': True,
                    'reason': 'Covering for billing clerk',
                    'expires_at': '2026-11-30T23:59:59Z',
                },
                request_only=True
            ),
            OpenApiExample(
                'Revoke',
                value={'permission_key': 'customers.create', 'granted': False},
                request_only=True
            ),
        ]
    )
)
@requires_permissions('users.manage_permissions')
class UserOverrideView(APIView):
    """
    POST /v1/users/{id}/overrides
    """
    permission_classes = [HasTenantPermissions]

    def post(self, request, user_id):
        user = RBACService.get_user(request.user.tenant, user_id)

        serializer = OverrideSetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        override = RBACService.set_override(
            request.user,
            user,
            data['permission_key'],
            granted=data['granted'],
            reason=data['reason'],
            expires_at=data['expires_at'],
            request=request,
        )
        return Response(PermissionOverrideSerializer(override).data)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Users'],
        summary='Clear permission override',
        description='''
Remove the override for one permission. Clearing a missing override is a no-op.

**Required permission:** `users.manage_permissions`
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('users.manage_permissions')
class UserOverrideDetailView(APIView):
    """
    DELETE /v1/users/{id}/overrides/{key}
    """
    permission_classes = [HasTenantPermissions]

    def delete(self, request, user_id, permission_key):
        user = RBACService.get_user(request.user.tenant, user_id)
        RBACService.clear_override(request.user, user, permission_key, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Cache'],
        summary='Rebuild permission cache',
        description='''
Recompute effective permissions for every active user of the caller's tenant
and swap them in at once.

**Requires the `admin` role.**

Query parameters:
- `async`: Set to `true` to queue the rebuild on Celery (returns 202)
        ''',
        request=None,
        parameters=[
            OpenApiParameter('async', OpenApiTypes.BOOL, description='Queue the rebuild instead of running it'),
        ],
        responses={200: OpenApiTypes.OBJECT, 202: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT}
    )
)
class PermissionCacheRebuildView(APIView):
    """
    POST /v1/permission-cache/rebuild
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        if request.query_params.get('async') == 'true':
            RBACService.require_admin(request.user, request.user.tenant, 'rebuild_cache')
            from apps.rbac.tasks import rebuild_permission_cache
            result = rebuild_permission_cache.delay(str(request.user.tenant_id))
            return Response({'status': 'queued', 'task_id': result.id}, status=status.HTTP_202_ACCEPTED)

        count = RBACService.rebuild_cache(actor=request.user, request=request)
        return Response({'status': 'rebuilt', 'users': count})


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='List audit logs',
        description='''
List audit logs of the caller's tenant. Supports filtering by action,
target_type, user and date range.

**Required permission:** `audit_logs.view`
        ''',
        parameters=[
            OpenApiParameter('action', OpenApiTypes.STR, description='Filter by action type'),
            OpenApiParameter('target_type', OpenApiTypes.STR, description='Filter by target type'),
            OpenApiParameter('user_id', OpenApiTypes.UUID, description='Filter by user ID'),
            OpenApiParameter('from_date', OpenApiTypes.DATETIME, description='Filter from date'),
            OpenApiParameter('to_date', OpenApiTypes.DATETIME, description='Filter to date'),
        ],
        responses={200: AuditLogSerializer(many=True), 403: OpenApiTypes.OBJECT}
    )
)
@requires_permissions('audit_logs.view')
class AuditLogListView(APIView):
    """
    GET /v1/audit-logs
    """
    permission_classes = [HasTenantPermissions]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        logs = AuditLog.objects.for_tenant(request.user.tenant).select_related('user')

        action = request.query_params.get('action')
        if action:
            logs = logs.filter(action=action)

        target_type = request.query_params.get('target_type')
        if target_type:
            logs = logs.filter(target_type=target_type)

        user_id = request.query_params.get('user_id')
        if user_id:
            logs = logs.filter(user_id=user_id)

        from_date = request.query_params.get('from_date')
        if from_date:
            logs = logs.filter(created_at__gte=from_date)

        to_date = request.query_params.get('to_date')
        if to_date:
            logs = logs.filter(created_at__lte=to_date)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request)

        serializer = AuditLogSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

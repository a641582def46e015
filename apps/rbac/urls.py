"""
RBAC API URLs.

Provides endpoints for:
- Effective permissions (own and per user)
- Permission catalog
- Role management and role permissions
- Role assignments and permission overrides
- Permission cache rebuild
- Audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    MyPermissionsView,
    PermissionListView,
    RoleListView,
    RoleDetailView,
    RoleDeactivateView,
    RoleActivateView,
    RolePermissionsView,
    RolePermissionDetailView,
    UserPermissionsView,
    UserRoleAssignView,
    UserRoleRevokeView,
    UserOverrideView,
    UserOverrideDetailView,
    PermissionCacheRebuildView,
    AuditLogListView,
)

app_name = 'rbac'

urlpatterns = [
    # Caller
    path('me/permissions', MyPermissionsView.as_view(), name='my-permissions'),

    # Permission catalog
    path('permissions', PermissionListView.as_view(), name='permission-list'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/deactivate', RoleDeactivateView.as_view(), name='role-deactivate'),
    path('roles/<uuid:role_id>/activate', RoleActivateView.as_view(), name='role-activate'),
    path('roles/<uuid:role_id>/permissions', RolePermissionsView.as_view(), name='role-permissions'),
    path('roles/<uuid:role_id>/permissions/<str:permission_key>', RolePermissionDetailView.as_view(),
         name='role-permission-detail'),

    # User endpoints
    path('users/<uuid:user_id>/permissions', UserPermissionsView.as_view(), name='user-permissions'),
    path('users/<uuid:user_id>/roles', UserRoleAssignView.as_view(), name='user-role-assign'),
    path('users/<uuid:user_id>/roles/<uuid:role_id>', UserRoleRevokeView.as_view(), name='user-role-revoke'),
    path('users/<uuid:user_id>/overrides', UserOverrideView.as_view(), name='user-override'),
    path('users/<uuid:user_id>/overrides/<str:permission_key>', UserOverrideDetailView.as_view(),
         name='user-override-detail'),

    # Cache
    path('permission-cache/rebuild', PermissionCacheRebuildView.as_view(), name='permission-cache-rebuild'),

    # Audit log endpoint
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]

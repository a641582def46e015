"""
RBAC (Role-Based Access Control) application.

Provides the multi-tenant authorization engine:
- Per-tenant roles over a global permission catalog
- Per-user grant/revoke overrides with expiry (revoke wins)
- Admin bypass and tenant isolation guard
- Rebuildable effective permission cache
- Comprehensive audit logging
"""

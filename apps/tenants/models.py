"""
Tenant models for multi-tenant isolation.

A tenant is the isolation boundary of the workshop backend: it owns users,
roles and every business record. Nothing is shared across tenants except
the global permission catalog.
"""
from django.db import models
from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet


class TenantManager(BaseModelManager):
    """Manager for tenant queries."""

    def active(self):
        """Return only active tenants."""
        return self.filter(status='active')

    def by_slug_or_id(self, value):
        """Find a tenant by slug, falling back to its UUID."""
        tenant = self.filter(slug=value).first()
        if tenant:
            return tenant

        import uuid
        try:
            return self.filter(id=uuid.UUID(str(value))).first()
        except ValueError:
            return None


class Tenant(BaseModel):
    """
    An isolated workshop business account.

    Roles are seeded for every new tenant by ``apps.rbac.signals``.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('suspended', 'Suspended'),
    ]

    name = models.CharField(
        max_length=255,
        help_text="Business name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True,
        help_text="Current tenant status"
    )

    objects = TenantManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'tenants'
        ordering = ['name']
        indexes = [
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return self.name

    def is_active(self):
        return self.status == 'active' and not self.is_deleted

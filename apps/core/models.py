"""
Core models for the workshop backend.

TimestampedModel gives every table a UUID primary key and created/updated
timestamps. BaseModel adds soft delete on top of it for entities that are
referenced from audit history (tenants, users, roles, permissions).
Association rows (role grants, assignments, overrides) use TimestampedModel
directly so that removing them frees the unique constraint.
"""
import uuid
from django.db import models
from django.utils import timezone


class BaseModelManager(models.Manager):
    """Manager that excludes soft-deleted objects by default."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModelQuerySet(models.QuerySet):
    """QuerySet with soft delete support."""

    def delete(self):
        """Soft delete all objects in queryset."""
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        """Permanently delete all objects in queryset."""
        return super().delete()

    def with_deleted(self):
        """Include soft-deleted objects."""
        return self.model.objects_with_deleted.all()


class TimestampedModel(models.Model):
    """Abstract model with UUID primary key and timestamps."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when the record was last updated"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']


class BaseModel(TimestampedModel):
    """
    Abstract base model with soft delete.

    Soft-deleted rows disappear from ``objects`` but stay reachable through
    ``objects_with_deleted`` so audit entries keep resolving.
    """

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp when the record was soft deleted"
    )

    objects = BaseModelManager.from_queryset(BaseModelQuerySet)()

    objects_with_deleted = models.Manager.from_queryset(BaseModelQuerySet)()

    class Meta(TimestampedModel.Meta):
        abstract = True

    def delete(self, using=None, keep_parents=False):
        """Soft delete the object."""
        self.deleted_at = timezone.now()
        self.save(using=using)

    def hard_delete(self, using=None, keep_parents=False):
        """Permanently delete the object."""
        return super().delete(using=using, keep_parents=keep_parents)

    def restore(self):
        """Restore a soft-deleted object."""
        self.deleted_at = None
        self.save()

    @property
    def is_deleted(self):
        return self.deleted_at is not None

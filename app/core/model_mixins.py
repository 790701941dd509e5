"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key

Usage:
    from core.model_mixins import UUIDPrimaryKeyMixin

    class LedgerAccount(UUIDPrimaryKeyMixin, models.Model):
        owner_id = models.CharField(max_length=64, null=True)

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Fields:
        id: UUIDField as primary key (auto-generated)

    Usage:
        account = LedgerAccount.objects.create(type=AccountType.ESCROW_POOL)
        print(account.id)  # UUID like: 550e8400-e29b-41d4-a716-446655440000

    Note:
        Locking rows ``ORDER BY id`` gives every transaction the same
        lock acquisition order, whatever the key type.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True

"""
Natural-key write helpers.

Idempotent writes in this project never do "check, then insert": two
processes can both pass the check. Instead they insert and let the unique
constraint arbitrate. The loser of the race reads back the winner's row.

Usage:
    from core.db import insert_or_get

    link, created = insert_or_get(
        CustomerLink,
        stripe_customer_id="cus_123",
        defaults={"patient": patient, "clinic": clinic},
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from django.db import IntegrityError, transaction

from core.exceptions import ConflictError

if TYPE_CHECKING:
    from typing import Any

    from django.db.models import Model

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")


def insert_or_get(
    model: type[M],
    defaults: dict[str, Any] | None = None,
    **natural_key: Any,
) -> tuple[M, bool]:
    """
    Insert a row keyed by a unique natural key, or return the existing one.

    The insert runs in its own savepoint, so a conflict inside a caller's
    transaction does not poison that transaction.

    Args:
        model: Model class with a unique constraint covering natural_key
        defaults: Non-key field values used only when inserting
        **natural_key: Field values forming the unique key

    Returns:
        Tuple of (instance, created)

    Raises:
        ConflictError: The insert conflicted but no row matches the key,
            meaning the conflict was on a different unique constraint
    """
    manager = model._default_manager
    try:
        with transaction.atomic():
            return manager.create(**natural_key, **(defaults or {})), True
    except IntegrityError as exc:
        existing = manager.filter(**natural_key).first()
        if existing is None:
            raise ConflictError(
                f"{model.__name__} insert conflicted on another constraint",
                error_code="NATURAL_KEY_CONFLICT",
                details={
                    "model": model.__name__,
                    "key": {k: str(v) for k, v in natural_key.items()},
                    "error": str(exc),
                },
            ) from exc
        logger.debug(
            f"{model.__name__} already exists for natural key",
            extra={"model": model.__name__, "pk": str(existing.pk)},
        )
        return existing, False

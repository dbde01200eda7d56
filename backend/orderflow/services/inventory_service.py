# Overview: Inventory ledger; the only writer of Variant.quantity.

"""
Inventory Ledger Invariants (authoritative)

- decrement() and increment() are the only mutators of Variant.quantity.
- Each mutation appends exactly one InventoryLogEntry with the previous and
  new quantity, in the caller's transaction (flush only, never commit).
- On-hand quantity may never go negative: decrement() raises
  InsufficientStock before touching the row.
- The variant row is loaded FOR UPDATE and carries a version counter, so two
  transactions cannot both apply a delta computed from the same snapshot.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Variant, InventoryLogEntry
from ..models.inventory import VALID_REASONS
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import lock_for_update


class InsufficientStock(ConflictError):
    """Raised when a decrement would drive on-hand quantity below zero."""


def _load_variant_locked(variant_id: int) -> Variant:
    variant = lock_for_update(db.session.query(Variant).filter_by(id=variant_id)).first()
    if variant is None:
        raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    return variant


def _apply_delta(
    variant: Variant,
    delta: int,
    *,
    reason: str,
    reference_id: str | int | None,
    actor_id: int | None,
    notes: str | None,
) -> InventoryLogEntry:
    previous = variant.quantity
    variant.quantity = previous + delta

    entry = InventoryLogEntry(
        variant_id=variant.id,
        quantity_change=delta,
        reason=reason,
        reference_id=str(reference_id) if reference_id is not None else None,
        previous_quantity=previous,
        new_quantity=variant.quantity,
        notes=notes,
        created_by=actor_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _validate(quantity: int, reason: str) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    if reason not in VALID_REASONS:
        raise ValidationError(f"Invalid inventory reason '{reason}'. Must be one of: {', '.join(VALID_REASONS)}")


def decrement(
    variant_id: int,
    quantity: int,
    *,
    reason: str,
    reference_id: str | int | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
) -> InventoryLogEntry:
    """
    Remove stock from a variant inside the caller's transaction.

    Raises:
        InsufficientStock: if quantity exceeds on-hand; nothing is written
    """
    _validate(quantity, reason)
    variant = _load_variant_locked(variant_id)
    if quantity > variant.quantity:
        raise InsufficientStock(
            f"Insufficient stock for variant {variant.sku}",
            details={
                "variant_id": variant.id,
                "requested_quantity": quantity,
                "on_hand": variant.quantity,
            },
        )
    return _apply_delta(
        variant, -quantity,
        reason=reason, reference_id=reference_id, actor_id=actor_id, notes=notes,
    )


def increment(
    variant_id: int,
    quantity: int,
    *,
    reason: str,
    reference_id: str | int | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
) -> InventoryLogEntry:
    """Return stock to a variant inside the caller's transaction."""
    _validate(quantity, reason)
    variant = _load_variant_locked(variant_id)
    return _apply_delta(
        variant, quantity,
        reason=reason, reference_id=reference_id, actor_id=actor_id, notes=notes,
    )


def get_history(variant_id: int, limit: int | None = None) -> list[InventoryLogEntry]:
    q = db.session.query(InventoryLogEntry).filter_by(variant_id=variant_id).order_by(InventoryLogEntry.id.asc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def replay_quantity(variant_id: int) -> int | None:
    """
    Rebuild on-hand quantity by chaining the variant's log entries.

    Returns None when the variant has no entries (stock never moved through
    the ledger). Raises ConflictError when the chain is broken.
    """
    entries = get_history(variant_id)
    if not entries:
        return None

    running = entries[0].previous_quantity
    for entry in entries:
        if entry.previous_quantity != running:
            raise ConflictError(
                f"Inventory log chain broken at entry {entry.id}",
                details={"variant_id": variant_id, "expected_previous": running, "found": entry.previous_quantity},
            )
        running += entry.quantity_change
    return running


def verify_variant(variant_id: int) -> dict:
    """Compare stored quantity against the replayed ledger."""
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        raise NotFoundError(f"Variant {variant_id} not found")
    try:
        replayed = replay_quantity(variant_id)
        chain_ok = True
    except ConflictError:
        replayed = None
        chain_ok = False
    return {
        "variant_id": variant_id,
        "on_hand": variant.quantity,
        "replayed": replayed,
        "ok": chain_ok and (replayed is None or replayed == variant.quantity),
    }

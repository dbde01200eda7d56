# Overview: Customer return requests for delivered order lines and their admin processing.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, ReturnRequest
from ..models.inventory import REASON_RETURN
from ..time_utils import utcnow, whole_days_between
from ..validation import ValidationError, ConflictError, NotFoundError
from . import inventory_service
from .concurrency import lock_for_update, run_with_retry, begin_write_transaction
from .order_lifecycle_service import DELIVERED


RETURN_PENDING = "PENDING"
RETURN_APPROVED = "APPROVED"
RETURN_REJECTED = "REJECTED"
RETURN_PROCESSING = "PROCESSING"
RETURN_COMPLETED = "COMPLETED"

VALID_RETURN_STATUSES = (RETURN_PENDING, RETURN_APPROVED, RETURN_REJECTED, RETURN_PROCESSING, RETURN_COMPLETED)
OPEN_RETURN_STATUSES = (RETURN_PENDING, RETURN_APPROVED, RETURN_PROCESSING)

# Stock comes back once, on PENDING -> APPROVED
RETURN_TRANSITIONS: dict[str, frozenset[str]] = {
    RETURN_PENDING: frozenset({RETURN_APPROVED, RETURN_REJECTED}),
    RETURN_APPROVED: frozenset({RETURN_PROCESSING, RETURN_COMPLETED}),
    RETURN_PROCESSING: frozenset({RETURN_COMPLETED}),
    RETURN_REJECTED: frozenset(),
    RETURN_COMPLETED: frozenset(),
}

RETURN_REASONS = (
    "Defective/Damaged Product",
    "Wrong Item Received",
    "Size/Color Mismatch",
    "Quality Issues",
    "Not as Described",
    "Changed My Mind",
    "Other",
)
REASON_OTHER = "Other"


class ReturnError(ValidationError):
    """Return request rejected by policy."""


def _delivered_at(order: Order):
    if order.tracking is not None and order.tracking.delivered_at is not None:
        return order.tracking.delivered_at
    return order.updated_at


def create_return_request(
    user_id: int,
    order_id: int,
    order_item_id: int,
    reason: str,
    custom_reason: str | None = None,
) -> ReturnRequest:
    if not current_app.config.get("RETURNS_ENABLED", True):
        raise ReturnError("Returns are currently disabled")
    if reason not in RETURN_REASONS:
        raise ReturnError(f"Invalid return reason. Must be one of: {', '.join(RETURN_REASONS)}")
    custom_reason = (custom_reason or "").strip() or None
    if reason == REASON_OTHER and not custom_reason:
        raise ReturnError("Please describe the reason for the return")

    def _op():
        order = db.session.query(Order).filter_by(id=order_id, user_id=user_id).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
        if order.status != DELIVERED:
            raise ReturnError("Only delivered orders can be returned", details={"status": order.status})

        window = current_app.config.get("RETURN_WINDOW_DAYS", 7)
        if whole_days_between(_delivered_at(order), utcnow()) > window:
            raise ReturnError(f"Return window of {window} days has expired")

        item = db.session.query(OrderItem).filter_by(id=order_item_id, order_id=order.id).first()
        if item is None:
            raise NotFoundError(f"Order item {order_item_id} not found", details={"order_item_id": order_item_id})

        open_request = (
            db.session.query(ReturnRequest.id)
            .filter(
                ReturnRequest.order_item_id == item.id,
                ReturnRequest.status.in_(OPEN_RETURN_STATUSES),
            )
            .first()
        )
        if open_request is not None:
            raise ConflictError("A return request for this item is already in progress")

        rr = ReturnRequest(
            order_id=order.id,
            order_item_id=item.id,
            user_id=user_id,
            reason=reason,
            custom_reason=custom_reason if reason == REASON_OTHER else None,
            status=RETURN_PENDING,
        )
        db.session.add(rr)
        db.session.commit()
        return rr

    return run_with_retry(_op)


def list_return_requests(*, user_id: int | None = None, status: str | None = None) -> list[ReturnRequest]:
    q = db.session.query(ReturnRequest)
    if user_id is not None:
        q = q.filter_by(user_id=user_id)
    if status is not None:
        q = q.filter_by(status=status)
    return q.order_by(ReturnRequest.created_at.desc(), ReturnRequest.id.desc()).all()


def update_return_status(
    return_id: int,
    status: str,
    admin_id: int | None,
    admin_notes: str | None = None,
) -> ReturnRequest:
    """
    Admin decision on a return, moving along RETURN_TRANSITIONS. APPROVED
    restocks the item quantity through the inventory ledger in the same
    transaction.
    """
    if status not in VALID_RETURN_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Must be one of: {', '.join(VALID_RETURN_STATUSES)}")

    def _op():
        begin_write_transaction()
        rr = lock_for_update(db.session.query(ReturnRequest).filter_by(id=return_id)).first()
        if rr is None:
            raise NotFoundError(f"Return request {return_id} not found")

        if status not in RETURN_TRANSITIONS[rr.status]:
            raise ConflictError(
                f"Cannot change return status from {rr.status} to {status}",
                details={
                    "return_id": rr.id,
                    "from_status": rr.status,
                    "to_status": status,
                    "allowed": sorted(RETURN_TRANSITIONS[rr.status]),
                },
            )

        if status == RETURN_APPROVED:
            item = rr.order_item
            inventory_service.increment(
                item.variant_id,
                item.quantity,
                reason=REASON_RETURN,
                reference_id=rr.id,
                actor_id=admin_id,
                notes=f"Return request {rr.id} approved",
            )

        rr.status = status
        if admin_notes is not None:
            rr.admin_notes = admin_notes
        rr.processed_by = admin_id
        rr.processed_at = utcnow()
        db.session.commit()
        return rr

    rr = run_with_retry(_op)
    current_app.logger.info("Return request %s -> %s (admin=%s)", rr.id, status, admin_id)
    return rr

# Overview: Partner commission accrual on delivered coupon orders, plus payout bookkeeping.

"""
Commission invariants

- Earnings are created only when an order reaches DELIVERED and it carries a
  coupon. Each CouponPartner with a positive commission gets one row:
  amount = round2((sub_total - discount) * commission / 100).
- At most one commission batch per order. The guard is twofold: an existence
  check, then a CommissionMarker insert (unique order_id) inside a savepoint.
  Either one firing makes the call a logged no-op.
- process_order_commissions() works inside the caller's transaction and
  never commits; backfill_commissions() commits per order.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, CouponPartner, PartnerEarning, CommissionMarker, Partner
from ..money import ZERO, round2, percent_of, money_str
from ..time_utils import utcnow
from ..validation import DomainError, NotFoundError, ValidationError
from .concurrency import run_with_retry


class DuplicateCommission(DomainError):
    """Commissions for this order were already recorded."""
    status_code = 409


def commission_base(order: Order) -> Decimal:
    return round2(Decimal(order.sub_total) - Decimal(order.discount or 0))


def compute_earnings(order: Order, coupon_partners) -> list[tuple[int, Decimal, Decimal]]:
    """(partner_id, percentage, amount) per eligible partner."""
    base = commission_base(order)
    if base <= ZERO:
        return []
    result = []
    for cp in coupon_partners:
        pct = Decimal(cp.commission or 0)
        if pct <= ZERO:
            continue
        result.append((cp.partner_id, pct, percent_of(base, pct)))
    return result


def _guard_first_batch(order: Order) -> CommissionMarker:
    existing = (
        db.session.query(PartnerEarning.id).filter_by(order_id=order.id).first()
        or db.session.query(CommissionMarker.id).filter_by(order_id=order.id).first()
    )
    if existing is not None:
        raise DuplicateCommission(
            f"Commissions already recorded for order {order.order_number}",
            details={"order_id": order.id},
        )

    marker = CommissionMarker(order_id=order.id)
    try:
        with db.session.begin_nested():
            db.session.add(marker)
    except IntegrityError:
        raise DuplicateCommission(
            f"Commissions already recorded for order {order.order_number}",
            details={"order_id": order.id},
        )
    return marker


def process_order_commissions(order: Order) -> list[PartnerEarning]:
    """Create partner earnings for a delivered coupon order. Flush only."""
    if not order.coupon_id:
        return []

    try:
        marker = _guard_first_batch(order)
    except DuplicateCommission as e:
        current_app.logger.warning(e.message)
        return []

    partners = db.session.query(CouponPartner).filter_by(coupon_id=order.coupon_id).all()
    earnings = []
    for partner_id, pct, amount in compute_earnings(order, partners):
        earning = PartnerEarning(
            partner_id=partner_id,
            order_id=order.id,
            coupon_id=order.coupon_id,
            amount=amount,
            percentage=pct,
        )
        db.session.add(earning)
        earnings.append(earning)

    marker.earnings_created = len(earnings)
    db.session.flush()

    current_app.logger.info(
        "Created %d partner earning(s) for order %s", len(earnings), order.order_number,
    )
    return earnings


def backfill_commissions() -> dict:
    """Create missing earnings for DELIVERED coupon orders that have none."""
    from .order_lifecycle_service import DELIVERED

    candidates = (
        db.session.query(Order.id)
        .filter(
            Order.status == DELIVERED,
            Order.coupon_id.isnot(None),
            ~db.session.query(PartnerEarning.id).filter(PartnerEarning.order_id == Order.id).exists(),
            ~db.session.query(CommissionMarker.id).filter(CommissionMarker.order_id == Order.id).exists(),
        )
        .order_by(Order.id.asc())
        .all()
    )

    processed = 0
    created = 0
    for (order_id,) in candidates:
        def _op():
            order = db.session.get(Order, order_id)
            earnings = process_order_commissions(order)
            db.session.commit()
            return len(earnings)

        created += run_with_retry(_op)
        processed += 1

    current_app.logger.info("Commission backfill: %d order(s), %d earning(s)", processed, created)
    return {"orders_processed": processed, "commissions_created": created}


def _get_partner(partner_id: int) -> Partner:
    partner = db.session.get(Partner, partner_id)
    if partner is None:
        raise NotFoundError(f"Partner {partner_id} not found")
    return partner


def list_partner_earnings(partner_id: int, *, is_paid: bool | None = None) -> list[PartnerEarning]:
    _get_partner(partner_id)
    q = db.session.query(PartnerEarning).filter_by(partner_id=partner_id)
    if is_paid is not None:
        q = q.filter(PartnerEarning.is_paid.is_(is_paid))
    return q.order_by(PartnerEarning.created_at.desc(), PartnerEarning.id.desc()).all()


def partner_summary(partner_id: int) -> dict:
    partner = _get_partner(partner_id)
    rows = (
        db.session.query(PartnerEarning.is_paid, func.count(PartnerEarning.id), func.sum(PartnerEarning.amount))
        .filter(PartnerEarning.partner_id == partner_id)
        .group_by(PartnerEarning.is_paid)
        .all()
    )
    paid = pending = ZERO
    count = 0
    for is_paid, n, total in rows:
        count += n
        if is_paid:
            paid += round2(total or 0)
        else:
            pending += round2(total or 0)
    return {
        "partner_id": partner.id,
        "partner_name": partner.name,
        "earnings_count": count,
        "total_earned": money_str(paid + pending),
        "total_paid": money_str(paid),
        "total_pending": money_str(pending),
    }


def mark_earnings_paid(partner_id: int, earning_ids: list[int]) -> int:
    """Mark the given unpaid earnings of one partner as paid. Returns how many changed."""
    if not earning_ids:
        raise ValidationError("earning_ids is required")
    _get_partner(partner_id)

    def _op():
        rows = (
            db.session.query(PartnerEarning)
            .filter(
                PartnerEarning.partner_id == partner_id,
                PartnerEarning.id.in_(earning_ids),
                PartnerEarning.is_paid.is_(False),
            )
            .all()
        )
        now = utcnow()
        for row in rows:
            row.is_paid = True
            row.paid_at = now
        db.session.commit()
        return len(rows)

    return run_with_retry(_op)

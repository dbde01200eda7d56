# Overview: Minimum order quantity resolution and enforcement.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import or_

from ..extensions import db
from ..models import MOQSetting, Variant
from ..models.pricing import SCOPE_GLOBAL, SCOPE_PRODUCT, SCOPE_VARIANT
from ..validation import ValidationError, NotFoundError


SOURCE_DEFAULT = "DEFAULT"
_PRECEDENCE = (SCOPE_VARIANT, SCOPE_PRODUCT, SCOPE_GLOBAL)


class MOQViolation(ValidationError):
    """Requested quantity is below the effective minimum."""


@dataclass(frozen=True)
class MOQResolution:
    min_quantity: int
    source: str
    setting_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "min_quantity": self.min_quantity,
            "source": self.source,
            "setting_id": self.setting_id,
        }


def select_moq(settings, variant: Variant) -> MOQResolution:
    """
    Pick the effective MOQ from candidate settings: VARIANT, then PRODUCT,
    then GLOBAL, then 1. Within one scope the most recent row (highest id)
    wins, regardless of the order the candidates arrive in.
    """
    matching = {scope: [] for scope in _PRECEDENCE}
    for s in settings:
        if not s.is_active:
            continue
        if s.scope == SCOPE_VARIANT and s.variant_id == variant.id:
            matching[SCOPE_VARIANT].append(s)
        elif s.scope == SCOPE_PRODUCT and s.product_id == variant.product_id:
            matching[SCOPE_PRODUCT].append(s)
        elif s.scope == SCOPE_GLOBAL:
            matching[SCOPE_GLOBAL].append(s)

    for scope in _PRECEDENCE:
        if matching[scope]:
            chosen = max(matching[scope], key=lambda s: s.id or 0)
            return MOQResolution(chosen.min_quantity, scope, chosen.id)
    return MOQResolution(1, SOURCE_DEFAULT)


def resolve_moq(variant: Variant) -> MOQResolution:
    candidates = (
        db.session.query(MOQSetting)
        .filter(
            MOQSetting.is_active.is_(True),
            or_(
                (MOQSetting.scope == SCOPE_VARIANT) & (MOQSetting.variant_id == variant.id),
                (MOQSetting.scope == SCOPE_PRODUCT) & (MOQSetting.product_id == variant.product_id),
                MOQSetting.scope == SCOPE_GLOBAL,
            ),
        )
        .all()
    )
    return select_moq(candidates, variant)


def get_moq(variant_id: int) -> MOQResolution:
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    return resolve_moq(variant)


def ensure_moq(variant: Variant, quantity: int) -> MOQResolution:
    """Raise MOQViolation when quantity is below the variant's effective MOQ."""
    resolution = resolve_moq(variant)
    if quantity < resolution.min_quantity:
        raise MOQViolation(
            f"Minimum order quantity for {variant.sku} is {resolution.min_quantity} units",
            details={
                "variant_id": variant.id,
                "requested_quantity": quantity,
                "min_quantity": resolution.min_quantity,
                "source": resolution.source,
            },
        )
    return resolution

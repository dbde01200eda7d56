# Overview: Payment gateway collaborator (capture/refund) installed per app.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..validation import DomainError


EXTENSION_KEY = "orderflow.payment_gateway"


class ExternalCollaboratorFailure(DomainError):
    """A payment or carrier call failed."""
    status_code = 502


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str


class PaymentGateway:
    """
    Interface for a payment provider.

    Implementations raise ExternalCollaboratorFailure for any provider error.
    """
    name = "base"

    def capture(self, payment_id: str, amount: Decimal) -> None:
        raise NotImplementedError

    def refund(self, payment_id: str, amount: Decimal, reason: str | None = None) -> RefundResult:
        raise NotImplementedError


class DisabledPaymentGateway(PaymentGateway):
    name = "disabled"

    def capture(self, payment_id: str, amount: Decimal) -> None:
        raise ExternalCollaboratorFailure("Payment gateway is not configured")

    def refund(self, payment_id: str, amount: Decimal, reason: str | None = None) -> RefundResult:
        raise ExternalCollaboratorFailure("Payment gateway is not configured")


_GATEWAYS: dict[str, type[PaymentGateway]] = {
    DisabledPaymentGateway.name: DisabledPaymentGateway,
}


def register_gateway(name: str, gateway_cls: type[PaymentGateway]) -> None:
    _GATEWAYS[name] = gateway_cls


def init_app(app) -> None:
    name = app.config.get("PAYMENT_GATEWAY", "disabled")
    gateway_cls = _GATEWAYS.get(name)
    if gateway_cls is None:
        raise RuntimeError(f"Unknown PAYMENT_GATEWAY '{name}'")
    app.extensions[EXTENSION_KEY] = gateway_cls()


def set_payment_gateway(app, gateway: PaymentGateway) -> None:
    app.extensions[EXTENSION_KEY] = gateway


def get_payment_gateway() -> PaymentGateway:
    return current_app.extensions[EXTENSION_KEY]


def refund_payment(payment_id: str, amount: Decimal, reason: str | None = None) -> RefundResult:
    """Call the installed gateway; any failure surfaces as ExternalCollaboratorFailure."""
    gateway = get_payment_gateway()
    try:
        return gateway.refund(payment_id, amount, reason)
    except ExternalCollaboratorFailure:
        raise
    except Exception as e:
        raise ExternalCollaboratorFailure(
            "Refund failed at payment gateway",
            details={"gateway": gateway.name, "payment_id": payment_id, "reason": str(e)},
        ) from e

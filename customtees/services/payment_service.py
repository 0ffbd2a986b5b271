"""
Server-side payment reconciliation.

The browser only tells us *which* provider transaction to look at; the
outcome always comes from the provider's own record. Every attempt is kept
as a PaymentTransaction row, and an order that reached ``paid`` is never
moved off it by a later attempt.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from customtees.config import Config
from customtees.errors import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    NotFoundError,
    ValidationError,
    WrongPaymentMethodError,
)
from customtees.gateways.base import GatewayPayment
from customtees.models import (
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    TransactionOutcome,
)
from customtees.observability import increment_counter, record_event, timed
from customtees.services.coupon_service import CouponService

SUCCESS_STATUSES = {
    PaymentMethod.SQUARE: frozenset({"COMPLETED"}),
    PaymentMethod.RAZORPAY: frozenset({"captured"}),
}
FAILURE_STATUSES = {
    PaymentMethod.SQUARE: frozenset({"FAILED", "CANCELED"}),
    PaymentMethod.RAZORPAY: frozenset({"failed"}),
}
PROVIDER_LABELS = {PaymentMethod.SQUARE: "Square", PaymentMethod.RAZORPAY: "Razorpay"}


@dataclass
class ReconcileResult:
    order: Order
    payment_status: Optional[PaymentStatus]
    gateway_status: Optional[str]
    changed: bool


class PaymentService:
    """Drives ``Order.payment_status`` from authoritative gateway records."""

    def __init__(
        self,
        db_session: Session,
        gateways: Optional[Mapping[str, Any]] = None,
        coupon_service: Optional[CouponService] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.gateways = dict(gateways or {})
        self.coupon_service = coupon_service or CouponService(db_session)
        self.config = config

    # ------------------------------------------------------------------
    # Checkout initiation
    # ------------------------------------------------------------------
    def initiate(
        self,
        order_id: int,
        user_id: int,
        provider: PaymentMethod | str,
        redirect_url: Optional[str] = None,
        buyer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        provider = self._resolve_provider(provider)
        gateway = self._gateway(provider)
        order = self._load_order(order_id, user_id, provider)
        if order.is_paid:
            self.db.rollback()
            raise ConflictError("Order is already paid")
        if order.status == OrderStatus.CANCELLED:
            self.db.rollback()
            raise ConflictError("Order has been cancelled")

        try:
            if provider == PaymentMethod.SQUARE:
                checkout = gateway.create_payment_link(order, redirect_url=redirect_url, buyer_email=buyer_email)
                order.payment_checkout_url = checkout.get("checkoutUrl")
            else:
                checkout = gateway.create_order(order)
        except (GatewayError, NotFoundError):
            self.db.rollback()
            increment_counter("payment_initiation_failures_total", labels={"provider": provider.value})
            raise

        order.payment_provider_order_id = checkout.get("providerOrderId")
        order.log_event("payment_initiated", detail=f"{provider.value}:{order.payment_provider_order_id}")
        self.db.commit()

        self.logger.info(
            "Started %s checkout for order %s",
            provider.value,
            order.orderID,
            extra={"provider_order_id": order.payment_provider_order_id},
        )
        return {**checkout, "orderId": order.orderID, "amount": order.total, "currency": order.currency}

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def verify(
        self,
        order_id: int,
        user_id: int,
        provider: PaymentMethod | str,
        transaction_id: Optional[str] = None,
        client_status: Optional[str] = None,
        provider_order_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> ReconcileResult:
        provider = self._resolve_provider(provider)
        gateway = self._gateway(provider)
        order = self._load_order(order_id, user_id, provider)
        label = PROVIDER_LABELS[provider]
        transaction_id = (transaction_id or "").strip() or None

        if not transaction_id:
            return self._reconcile_without_transaction(order, provider, client_status)

        if signature is not None and provider == PaymentMethod.RAZORPAY:
            expected_order_id = provider_order_id or order.payment_provider_order_id
            if not gateway.verify_signature(expected_order_id, transaction_id, signature):
                self.db.rollback()
                increment_counter("payment_signature_failures_total", labels={"provider": provider.value})
                raise ForbiddenError(f"Invalid {label} payment signature")

        try:
            with timed("gateway_call_latency_ms", labels={"provider": provider.value, "operation": "retrieve_payment"}):
                payment = gateway.retrieve_payment(transaction_id)
        except (GatewayError, NotFoundError) as exc:
            self.db.rollback()
            increment_counter(
                "payment_verifications_total",
                labels={"provider": provider.value, "outcome": "error"},
            )
            self.logger.warning(
                "Could not fetch %s payment %s for order %s",
                provider.value,
                transaction_id,
                order_id,
                extra={"error": exc.message},
            )
            raise

        outcome, reason = self._classify(order, provider, payment)
        self._record(order, provider, payment.id, payment.status, payment.amount, payment.currency, outcome, reason)

        if order.is_paid:
            self.db.commit()
            self.logger.info("Order %s already paid; recorded %s re-check", order.orderID, provider.value)
            return ReconcileResult(order, order.payment_status, payment.status, changed=False)

        changed = False
        if outcome == TransactionOutcome.PAID:
            self._mark_paid(order, payment)
            changed = True
        elif outcome == TransactionOutcome.FAILED:
            order.payment_provider_payment_id = payment.id
            changed = self._mark_failed(order, reason)

        self.db.commit()
        increment_counter(
            "payment_verifications_total",
            labels={"provider": provider.value, "outcome": outcome.value},
        )
        record_event(
            "payment_reconciled",
            {
                "order_id": order.orderID,
                "provider": provider.value,
                "gateway_status": payment.status,
                "payment_status": _value(order.payment_status),
            },
        )
        self.logger.info(
            "Reconciled %s payment for order %s",
            provider.value,
            order.orderID,
            extra={"gateway_status": payment.status, "outcome": outcome.value, "reason": reason},
        )
        return ReconcileResult(order, order.payment_status, payment.status, changed=changed)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _reconcile_without_transaction(
        self, order: Order, provider: PaymentMethod, client_status: Optional[str]
    ) -> ReconcileResult:
        label = PROVIDER_LABELS[provider]
        if order.is_paid:
            self.db.commit()
            return ReconcileResult(order, order.payment_status, None, changed=False)

        cancelled = (client_status or "").strip().lower() in {"cancelled", "canceled"}
        if cancelled:
            reason, outcome = f"Customer cancelled {label} checkout", TransactionOutcome.CANCELLED
        else:
            reason, outcome = f"Missing {label} transaction ID", TransactionOutcome.FAILED
        self._record(order, provider, None, client_status, None, None, outcome, reason)
        changed = self._mark_failed(order, reason)
        self.db.commit()
        increment_counter("payment_verifications_total", labels={"provider": provider.value, "outcome": outcome.value})
        self.logger.info("Order %s payment failed: %s", order.orderID, reason)
        return ReconcileResult(order, order.payment_status, (client_status or "CANCELLED").upper() if cancelled else None, changed)

    def _classify(
        self, order: Order, provider: PaymentMethod, payment: GatewayPayment
    ) -> Tuple[TransactionOutcome, Optional[str]]:
        label = PROVIDER_LABELS[provider]
        if payment.status in SUCCESS_STATUSES[provider]:
            if (
                order.payment_provider_order_id
                and payment.order_reference
                and payment.order_reference != order.payment_provider_order_id
            ):
                return TransactionOutcome.FAILED, f"{label} payment belongs to a different checkout"
            if payment.amount != order.total or (payment.currency or "").upper() != order.currency.upper():
                return (
                    TransactionOutcome.FAILED,
                    f"Amount mismatch: expected {order.total} {order.currency}, "
                    f"{label} reported {payment.amount} {payment.currency}",
                )
            return TransactionOutcome.PAID, None
        if payment.status in FAILURE_STATUSES[provider]:
            return TransactionOutcome.FAILED, payment.failure_detail or payment.status or f"{label} payment failed"
        return TransactionOutcome.PENDING, None

    def _mark_paid(self, order: Order, payment: GatewayPayment) -> None:
        order.transition_payment(PaymentStatus.PAID, detail=f"transaction={payment.id}")
        order.payment_provider_payment_id = payment.id
        if payment.order_reference:
            order.payment_provider_order_id = payment.order_reference
        order.payment_failure_reason = None
        if order.status == OrderStatus.PLACED:
            order.transition_to(OrderStatus.PROCESSING, detail="payment confirmed")
        self.coupon_service.record_usage(order.coupon)

    def _mark_failed(self, order: Order, reason: Optional[str]) -> bool:
        previous = (order.payment_status, order.payment_failure_reason)
        order.transition_payment(PaymentStatus.FAILED, detail=reason)
        order.payment_failure_reason = (reason or "")[:255] or None
        return previous != (order.payment_status, order.payment_failure_reason)

    def _record(
        self,
        order: Order,
        provider: PaymentMethod,
        reference: Optional[str],
        gateway_status: Optional[str],
        amount: Optional[int],
        currency: Optional[str],
        outcome: TransactionOutcome,
        reason: Optional[str],
    ) -> None:
        order.transactions.append(
            PaymentTransaction(
                provider=provider,
                reference=reference,
                gateway_status=gateway_status,
                amount=amount,
                currency=currency,
                outcome=outcome,
                failure_reason=(reason or "")[:255] or None,
            )
        )

    def _resolve_provider(self, provider: PaymentMethod | str) -> PaymentMethod:
        try:
            method = PaymentMethod(str(getattr(provider, "value", provider) or "").lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown payment provider '{provider}'") from exc
        if method == PaymentMethod.COD:
            raise ValidationError("Cash on delivery orders do not use a payment gateway")
        return method

    def _gateway(self, provider: PaymentMethod):
        gateway = self.gateways.get(provider.value)
        if gateway is None:
            raise ValidationError(f"{PROVIDER_LABELS[provider]} payments are not enabled")
        return gateway

    def _load_order(self, order_id: int, user_id: int, provider: PaymentMethod) -> Order:
        order = self.db.query(Order).filter(Order.orderID == order_id).with_for_update().first()
        if order is None:
            raise NotFoundError("Order not found")
        if order.userID != user_id:
            self.db.rollback()
            raise ForbiddenError("Access denied for this order")
        if PaymentMethod(order.payment_method) != provider:
            self.db.rollback()
            raise WrongPaymentMethodError(f"Order was not placed with {PROVIDER_LABELS[provider]}")
        return order


def _value(status) -> Optional[str]:
    return status.value if isinstance(status, PaymentStatus) else status

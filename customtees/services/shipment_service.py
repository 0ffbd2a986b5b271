from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from customtees.config import Config
from customtees.errors import (
    ConflictError,
    GatewayError,
    InvalidPackageError,
    MissingAddressError,
    NotFoundError,
    ValidationError,
)
from customtees.models import Order, OrderStatus, PaymentMethod, ShipmentStatus
from customtees.observability import increment_counter, record_event, timed

PACKAGE_FIELDS = ("weight", "length", "width", "height")


def validate_package(payload: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """Missing fields are reported before non-positive or non-numeric ones."""
    payload = payload or {}
    missing = [name for name in PACKAGE_FIELDS if payload.get(name) in (None, "")]
    if missing:
        raise InvalidPackageError(f"Missing package fields: {', '.join(missing)}", missing)

    values: Dict[str, float] = {}
    invalid = []
    for name in PACKAGE_FIELDS:
        raw = payload[name]
        try:
            number = float(raw) if not isinstance(raw, bool) else math.nan
        except (TypeError, ValueError):
            number = math.nan
        if math.isnan(number) or math.isinf(number) or number <= 0:
            invalid.append(name)
        else:
            values[name] = number
    if invalid:
        raise InvalidPackageError(f"Invalid package values for: {', '.join(invalid)}", invalid)
    return values


@dataclass(frozen=True)
class LabelResult:
    tracking_number: str
    label_url: str
    label_public_id: Optional[str]
    status: OrderStatus
    shipment_status: Optional[ShipmentStatus]
    reused: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trackingNumber": self.tracking_number,
            "labelUrl": self.label_url,
            "labelPublicId": self.label_public_id,
            "status": _value(self.status),
            "shipmentStatus": _value(self.shipment_status),
            "reused": self.reused,
        }


class ShipmentService:
    """Issues carrier labels and moves orders to ``shipped``."""

    def __init__(
        self,
        db_session: Session,
        carrier=None,
        image_store=None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.carrier = carrier
        self.image_store = image_store
        self.config = config

    def create_label(
        self,
        order_id: int,
        package: Optional[Mapping[str, Any]],
        force: bool = False,
        actor: str = "admin",
    ) -> LabelResult:
        dimensions = validate_package(package)

        order = self.db.query(Order).filter(Order.orderID == order_id).with_for_update().first()
        if order is None:
            raise NotFoundError("Order not found")
        if not order.shipping_address:
            self.db.rollback()
            raise MissingAddressError()

        already_issued = order.shipment_status == ShipmentStatus.LABEL_GENERATED or order.status == OrderStatus.SHIPPED
        if order.has_label and already_issued and not force:
            self.db.rollback()
            self.logger.info(
                "Order %s already has a label; returning existing data",
                order_id,
                extra={"tracking_number": order.tracking_number},
            )
            return self._result(order, reused=True)

        if not self._is_shippable(order):
            self.db.rollback()
            raise ConflictError(f"Order in status '{_value(order.status)}' cannot be shipped")
        if self.carrier is None:
            self.db.rollback()
            raise ValidationError("Shipping labels are not enabled")

        try:
            with timed("gateway_call_latency_ms", labels={"provider": "carrier", "operation": "create_shipment"}):
                label = self.carrier.create_shipment(order, dimensions)
        except (GatewayError, NotFoundError) as exc:
            self.db.rollback()
            increment_counter("shipping_label_failures_total")
            self.logger.error("Label creation failed for order %s: %s", order_id, exc.message)
            raise

        replaced_public_id = order.label_public_id
        order.tracking_number = label.tracking_number
        order.label_url = label.label_url
        order.label_public_id = label.label_public_id
        order.transition_shipment(ShipmentStatus.LABEL_GENERATED, detail=f"tracking={label.tracking_number}")
        if order.status == OrderStatus.PLACED:
            order.transition_to(OrderStatus.PROCESSING, actor=actor, detail="cash on delivery")
        if order.status == OrderStatus.PROCESSING:
            order.transition_to(OrderStatus.SHIPPED, actor=actor, detail=f"tracking={label.tracking_number}")
        self.db.commit()

        increment_counter("shipping_labels_created_total", labels={"reissue": str(bool(replaced_public_id)).lower()})
        record_event(
            "shipping_label_created",
            {"order_id": order.orderID, "tracking_number": label.tracking_number},
        )
        self.logger.info(
            "Label created for order %s",
            order.orderID,
            extra={"tracking_number": label.tracking_number, "label_public_id": label.label_public_id},
        )

        if replaced_public_id and replaced_public_id != label.label_public_id:
            self._discard_label(replaced_public_id)
        return self._result(order, reused=False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _is_shippable(order: Order) -> bool:
        status = OrderStatus(order.status)
        if status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED):
            return True
        return status == OrderStatus.PLACED and PaymentMethod(order.payment_method) == PaymentMethod.COD

    def _discard_label(self, public_id: str) -> None:
        if self.image_store is None:
            return
        try:
            self.image_store.destroy(public_id)
        except (GatewayError, NotFoundError) as exc:
            self.logger.warning("Could not remove replaced label %s: %s", public_id, exc.message)

    @staticmethod
    def _result(order: Order, reused: bool) -> LabelResult:
        return LabelResult(
            tracking_number=order.tracking_number,
            label_url=order.label_url,
            label_public_id=order.label_public_id,
            status=OrderStatus(order.status),
            shipment_status=ShipmentStatus(order.shipment_status) if order.shipment_status else None,
            reused=reused,
        )


def _value(status) -> Optional[str]:
    return getattr(status, "value", status)

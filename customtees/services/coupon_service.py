from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import bleach
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from customtees.config import Config
from customtees.errors import ConflictError, CouponError, CouponErrorKind, ValidationError
from customtees.models import Coupon, DiscountType, as_utc
from customtees.observability import increment_counter


@dataclass(frozen=True)
class CouponQuote:
    coupon: Coupon
    subtotal: int
    discount_amount: int

    @property
    def total(self) -> int:
        return self.subtotal - self.discount_amount


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class CouponService:
    """Looks up coupons and prices them against a server-computed subtotal."""

    def __init__(self, db_session: Session, usage_tracking: Optional[bool] = None) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.usage_tracking = (
            Config.COUPON_USAGE_TRACKING_ENABLED if usage_tracking is None else usage_tracking
        )

    def validate(self, code: Optional[str], subtotal: int, now: Optional[datetime] = None) -> CouponQuote:
        """
        Validate ``code`` against ``subtotal`` and compute the discount.
        Reads only; callers must re-run this whenever the subtotal changes.
        """
        now = as_utc(now) if now else datetime.now(timezone.utc)
        normalized = normalize_code(code)
        coupon = self._find(normalized) if normalized else None
        if coupon is None:
            raise self._reject(CouponErrorKind.NOT_FOUND, "Coupon code not found", normalized)
        if not coupon.is_active:
            raise self._reject(CouponErrorKind.INACTIVE, "This coupon is no longer active", normalized)
        if not coupon.has_started(now):
            raise self._reject(CouponErrorKind.NOT_YET_VALID, "This coupon is not valid yet", normalized)
        if coupon.has_expired(now):
            raise self._reject(CouponErrorKind.EXPIRED, "This coupon has expired", normalized)
        if self.usage_tracking and coupon.max_uses is not None and (coupon.used_count or 0) >= coupon.max_uses:
            raise self._reject(
                CouponErrorKind.USAGE_LIMIT_REACHED,
                "This coupon has reached its usage limit",
                normalized,
            )
        if subtotal < (coupon.min_purchase or 0):
            raise self._reject(
                CouponErrorKind.BELOW_MINIMUM,
                f"A minimum purchase of {coupon.min_purchase} is required for this coupon",
                normalized,
            )

        return CouponQuote(coupon=coupon, subtotal=subtotal, discount_amount=coupon.discount_for(subtotal))

    def record_usage(self, coupon: Optional[Coupon]) -> None:
        """Count one redemption. No-op unless usage tracking is enabled."""
        if coupon is None or not self.usage_tracking:
            return
        coupon.used_count = (coupon.used_count or 0) + 1
        increment_counter("coupon_redemptions_total", labels={"code": coupon.code})

    def list_active(self, now: Optional[datetime] = None) -> List[Coupon]:
        now = as_utc(now) if now else datetime.now(timezone.utc)
        candidates = (
            self.db.query(Coupon)
            .filter(Coupon.is_active.is_(True))
            .order_by(Coupon.code)
            .all()
        )
        return [
            coupon
            for coupon in candidates
            if coupon.has_started(now)
            and not coupon.has_expired(now)
            and not (self.usage_tracking and coupon.uses_remaining == 0)
        ]

    def create_coupon(
        self,
        code: str,
        discount_type: DiscountType | str,
        discount_value,
        description: Optional[str] = None,
        min_purchase: int = 0,
        max_discount: Optional[int] = None,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        max_uses: Optional[int] = None,
        is_active: bool = True,
    ) -> Coupon:
        normalized = normalize_code(code)
        if not normalized:
            raise ValidationError("Coupon code is required")
        try:
            type_enum = discount_type if isinstance(discount_type, DiscountType) else DiscountType(discount_type)
        except ValueError as exc:
            raise ValidationError("discountType must be 'percentage' or 'fixed'") from exc
        try:
            value = Decimal(str(discount_value))
        except (InvalidOperation, TypeError) as exc:
            raise ValidationError("discountValue must be a number") from exc

        if not value.is_finite():
            raise ValidationError("discountValue must be a finite number")
        if value <= 0:
            raise ValidationError("discountValue must be positive")
        if type_enum == DiscountType.PERCENTAGE and value > 100:
            raise ValidationError("Percentage discounts must be at most 100")
        if min_purchase is not None and int(min_purchase) < 0:
            raise ValidationError("minPurchase cannot be negative")
        if max_discount is not None and int(max_discount) <= 0:
            raise ValidationError("maxDiscount must be positive when set")
        if max_uses is not None and int(max_uses) <= 0:
            raise ValidationError("maxUses must be positive when set")
        if valid_from and valid_until and as_utc(valid_from) >= as_utc(valid_until):
            raise ValidationError("validFrom must be before validUntil")

        coupon = Coupon(
            code=normalized,
            description=bleach.clean(description, tags=[], strip=True) if description else None,
            discount_type=type_enum,
            discount_value=value,
            min_purchase=int(min_purchase or 0),
            max_discount=int(max_discount) if max_discount is not None else None,
            valid_from=as_utc(valid_from),
            valid_until=as_utc(valid_until),
            max_uses=int(max_uses) if max_uses is not None else None,
            used_count=0,
            is_active=bool(is_active),
        )
        self.db.add(coupon)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"Coupon {normalized} already exists") from exc

        self.logger.info("Coupon %s created", normalized, extra={"discount_type": type_enum.value})
        return coupon

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _find(self, normalized_code: str) -> Optional[Coupon]:
        return self.db.query(Coupon).filter(Coupon.code == normalized_code).first()

    def _reject(self, kind: CouponErrorKind, message: str, code: str) -> CouponError:
        increment_counter("coupon_rejections_total", labels={"reason": kind.value})
        self.logger.info("Coupon %s rejected: %s", code or "<blank>", kind.value)
        return CouponError(kind, message)

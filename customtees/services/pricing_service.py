"""
Pricing engine for customized garments.

A cart item's price is the product's base price plus one customization
charge per printed side. The charge is proportional to the area the
customer's elements occupy on the print canvas: every non-base layer
contributes the axis-aligned bounding box of its scaled, rotated
rectangle, the areas are summed, converted to square inches and billed at
a flat rate. Layer count does not matter, only area.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional

from customtees.config import Config
from customtees.errors import ValidationError

BASE_LAYER_ROLES = frozenset({"base", "background", "garment"})


@dataclass(frozen=True)
class LayerMetrics:
    layer_id: Optional[str]
    layer_type: str
    width_px: float
    height_px: float
    area_px: float
    pixels_per_inch: float

    @property
    def area_sq_in(self) -> float:
        return self.area_px / (self.pixels_per_inch ** 2)

    def to_dict(self, rate: float) -> Dict[str, Any]:
        return {
            "id": self.layer_id,
            "type": self.layer_type,
            "widthPixels": round(self.width_px, 2),
            "heightPixels": round(self.height_px, 2),
            "areaPixels": round(self.area_px, 2),
            "widthInches": round(self.width_px / self.pixels_per_inch, 2),
            "heightInches": round(self.height_px / self.pixels_per_inch, 2),
            "areaInches": round(self.area_sq_in, 2),
            "cost": _round_money(self.area_sq_in * rate),
        }


@dataclass(frozen=True)
class SideMetrics:
    width_px: float = 0.0
    height_px: float = 0.0
    total_area_px: float = 0.0
    layers: List[LayerMetrics] = field(default_factory=list)
    pixels_per_inch: float = 1.0

    @property
    def area_sq_in(self) -> float:
        return self.total_area_px / (self.pixels_per_inch ** 2)

    def to_dict(self, rate: float) -> Dict[str, Any]:
        ppi = self.pixels_per_inch
        return {
            "widthPixels": round(self.width_px, 2),
            "heightPixels": round(self.height_px, 2),
            "widthInches": round(self.width_px / ppi, 2),
            "heightInches": round(self.height_px / ppi, 2),
            "totalPixels": round(self.total_area_px, 2),
            "areaInches": round(self.area_sq_in, 2),
            "perLayer": [layer.to_dict(rate) for layer in self.layers],
        }


@dataclass(frozen=True)
class PriceQuote:
    base_price: int
    front_cost: int
    back_cost: int
    front_metrics: SideMetrics
    back_metrics: SideMetrics

    @property
    def total(self) -> int:
        return self.base_price + self.front_cost + self.back_cost


def _round_money(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _number(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


class PricingService:
    """Pure pricing calculations; holds no state beyond its rate constants."""

    def __init__(
        self,
        pixels_per_inch: Optional[float] = None,
        rate_per_sq_inch: Optional[float] = None,
        max_payload_bytes: Optional[int] = None,
    ) -> None:
        self.pixels_per_inch = pixels_per_inch or Config.DESIGN_PIXELS_PER_INCH
        self.rate_per_sq_inch = (
            Config.CUSTOMIZATION_RATE_PER_SQ_INCH if rate_per_sq_inch is None else rate_per_sq_inch
        )
        self.max_payload_bytes = max_payload_bytes or Config.MAX_DESIGN_PAYLOAD_BYTES
        if self.pixels_per_inch <= 0:
            raise ValueError("pixels_per_inch must be positive")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def price(
        self,
        product,
        front_design: Optional[Mapping[str, Any]] = None,
        back_design: Optional[Mapping[str, Any]] = None,
    ) -> PriceQuote:
        front = self.measure_side(_layers_of(front_design))
        back = self.measure_side(_layers_of(back_design))
        return PriceQuote(
            base_price=int(product.price),
            front_cost=self.cost_for(front),
            back_cost=self.cost_for(back),
            front_metrics=front,
            back_metrics=back,
        )

    def cost_for(self, side: SideMetrics) -> int:
        if side.total_area_px <= 0:
            return 0
        return _round_money(side.area_sq_in * self.rate_per_sq_inch)

    def measure_side(self, layers: List[Mapping[str, Any]]) -> SideMetrics:
        measured: List[LayerMetrics] = []
        min_x = min_y = math.inf
        max_x = max_y = -math.inf
        for index, layer in enumerate(layers):
            if not isinstance(layer, Mapping) or is_base_layer(layer):
                continue
            box = self._bounding_box(layer)
            if box is None:
                continue
            left, top, width, height = box
            measured.append(
                LayerMetrics(
                    layer_id=str(layer.get("id", index)),
                    layer_type=str(layer.get("type") or layer.get("layerType") or "unknown"),
                    width_px=width,
                    height_px=height,
                    area_px=width * height,
                    pixels_per_inch=self.pixels_per_inch,
                )
            )
            min_x, min_y = min(min_x, left), min(min_y, top)
            max_x, max_y = max(max_x, left + width), max(max_y, top + height)

        if not measured:
            return SideMetrics(pixels_per_inch=self.pixels_per_inch)
        return SideMetrics(
            width_px=max_x - min_x,
            height_px=max_y - min_y,
            total_area_px=sum(layer.area_px for layer in measured),
            layers=measured,
            pixels_per_inch=self.pixels_per_inch,
        )

    def snapshot_design(
        self,
        design: Optional[Mapping[str, Any]],
        metrics: SideMetrics,
    ) -> Optional[Dict[str, Any]]:
        """Normalize a client design into the shape stored on cart and order items."""
        if not design:
            return None
        return {
            "designLayers": list(_layers_of(design)),
            "previewImage": design.get("previewImage"),
            "designData": design.get("designData"),
            "metrics": metrics.to_dict(self.rate_per_sq_inch),
        }

    def ensure_payload_size(self, design: Optional[Mapping[str, Any]], side: str) -> None:
        if not design:
            return
        try:
            size = len(json.dumps(design, separators=(",", ":"), default=str).encode("utf-8"))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{side} design is not serializable: {exc}") from exc
        if size > self.max_payload_bytes:
            raise ValidationError(
                f"{side} design payload is {size} bytes; the limit is {self.max_payload_bytes} bytes",
                details={"side": side, "size": size, "limit": self.max_payload_bytes},
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _bounding_box(layer: Mapping[str, Any]):
        properties = layer.get("properties") or {}
        position = layer.get("position") or {}

        width = _number(layer.get("width", properties.get("width")))
        height = _number(layer.get("height", properties.get("height")))
        uniform_scale = _number(layer.get("scale"), 1.0)
        scale_x = _number(layer.get("scaleX"), uniform_scale)
        scale_y = _number(layer.get("scaleY"), uniform_scale)
        if width <= 0 or height <= 0:
            return None
        # Negative scale mirrors the element; it does not shrink it.
        width, height = width * abs(scale_x), height * abs(scale_y)
        if width <= 0 or height <= 0:
            return None

        angle = math.radians(_number(layer.get("angle", layer.get("rotation")), 0.0))
        cos_a, sin_a = abs(math.cos(angle)), abs(math.sin(angle))
        box_w = width * cos_a + height * sin_a
        box_h = width * sin_a + height * cos_a

        left = _number(layer.get("left", position.get("x")))
        top = _number(layer.get("top", position.get("y")))
        # Rotation is about the element's centre.
        center_x, center_y = left + width / 2, top + height / 2
        return center_x - box_w / 2, center_y - box_h / 2, box_w, box_h


def is_base_layer(layer: Mapping[str, Any]) -> bool:
    if layer.get("isBase") or layer.get("excludeFromExport"):
        return True
    role = str(layer.get("role") or layer.get("name") or "").lower()
    return role in BASE_LAYER_ROLES


def _layers_of(design: Optional[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    if not design:
        return []
    if not isinstance(design, Mapping):
        raise ValidationError("Design must be an object")
    layers = design.get("designLayers") or []
    if not isinstance(layers, list):
        raise ValidationError("designLayers must be a list")
    return layers

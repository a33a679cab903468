"""Variant stock bookkeeping.

Stock is only ever changed with conditional ``UPDATE ... WHERE stock >= qty``
statements so two concurrent checkouts of the last unit cannot both succeed.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from django.db.models import F

from storefront.exceptions import NotFound, RuleViolation, ValidationFailed

from .models import Variant

logger = logging.getLogger(__name__)


class InsufficientStock(RuleViolation):
    code = "insufficient_stock"


@dataclass(frozen=True)
class StockLine:
    product_id: Optional[int]
    color: str
    size: str
    quantity: int
    name: str = ""


def decrement_stock(lines: Iterable[StockLine]) -> None:
    """Take ordered quantities out of variant stock.

    Call inside ``transaction.atomic()``: a short line raises
    ``InsufficientStock`` and the caller's transaction rolls back every
    decrement made before it. Lines without a matching variant are untracked
    inventory and are skipped.
    """
    for line in lines:
        if not line.product_id or line.quantity <= 0:
            continue

        variants = Variant.objects.filter(
            product_id=line.product_id,
            color=line.color or "",
            size=line.size or "",
        )
        updated = variants.filter(stock__gte=line.quantity).update(stock=F("stock") - line.quantity)
        if updated:
            continue

        if variants.exists():
            label = line.name or f"product {line.product_id}"
            raise InsufficientStock(f"Insufficient stock for {label} ({line.color or '-'} / {line.size or '-'})")

        logger.warning(
            f"No variant for product {line.product_id} color={line.color!r} size={line.size!r}; stock not tracked"
        )


class StockUpdateKind(str, Enum):
    INDEX = "index"
    VARIANT = "variant"
    COLOR = "color"


@dataclass(frozen=True)
class StockUpdate:
    """Admin stock edit, discriminated by ``kind``."""

    kind: StockUpdateKind
    stock: int
    variant_index: Optional[int] = None
    color: str = ""
    size: str = ""

    @classmethod
    def from_payload(cls, data):
        raw_kind = data.get("updateKind")
        try:
            kind = StockUpdateKind(raw_kind)
        except ValueError:
            allowed = ", ".join(k.value for k in StockUpdateKind)
            raise ValidationFailed(f"updateKind must be one of: {allowed}")

        stock = data.get("stock")
        if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
            raise ValidationFailed("stock must be a non-negative integer")

        if kind is StockUpdateKind.INDEX:
            index = data.get("variantIndex")
            if isinstance(index, bool) or not isinstance(index, int) or index < 0:
                raise ValidationFailed("variantIndex must be a non-negative integer")
            return cls(kind=kind, stock=stock, variant_index=index)

        color = (data.get("color") or "").strip()
        if not color:
            raise ValidationFailed("color is required")
        if kind is StockUpdateKind.VARIANT:
            return cls(kind=kind, stock=stock, color=color, size=(data.get("size") or "").strip())
        return cls(kind=kind, stock=stock, color=color)


def apply_stock_update(product, update: StockUpdate) -> List[Variant]:
    """Set absolute stock levels and return the variants that changed"""
    variants = list(product.variants.all())

    if update.kind is StockUpdateKind.INDEX:
        if update.variant_index >= len(variants):
            raise NotFound(f"Variant #{update.variant_index} not found for product {product.pk}")
        targets = [variants[update.variant_index]]
    elif update.kind is StockUpdateKind.VARIANT:
        targets = [v for v in variants if v.color == update.color and v.size == update.size]
        if not targets:
            raise NotFound(f"Variant {update.color}/{update.size or '-'} not found for product {product.pk}")
    else:
        targets = [v for v in variants if v.color == update.color]
        if not targets:
            raise NotFound(f"No variants found for color: {update.color}")

    for variant in targets:
        variant.stock = update.stock
        variant.save(update_fields=["stock"])

    logger.info(f"Stock set to {update.stock} for {len(targets)} variant(s) of product {product.pk}")
    return targets

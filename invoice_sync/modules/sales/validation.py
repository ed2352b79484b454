"""
Validación de Loại đơn hàng antes de crear hóa đơn.

La lista de Loại permitidos se inyecta (normalmente desde
settings.ALLOWED_ORDER_TYPES) y puede modificarse en runtime con
add_allowed_order_type / remove_allowed_order_type.
"""
import logging
from typing import Iterable, List, Optional

from invoice_sync.modules.sales.classifier import line_label, normalize_label
from invoice_sync.modules.sales.constants import (
    DEFAULT_ALLOWED_ORDER_TYPES, MSG_NO_SALES, MSG_NOT_ALLOWED
)
from invoice_sync.modules.sales.schemas import OrderData, ValidationResult

logger = logging.getLogger(__name__)


class OrderValidator:
    """Gate de validación por Loại de la primera línea"""

    def __init__(self, allowed_order_types: Optional[Iterable[str]] = None):
        source = allowed_order_types if allowed_order_types is not None else DEFAULT_ALLOWED_ORDER_TYPES
        # Lista (no set) para mantener el orden en los mensajes
        self._allowed: List[str] = []
        for label in source:
            self.add_allowed_order_type(label)

    @property
    def allowed_order_types(self) -> List[str]:
        return list(self._allowed)

    def add_allowed_order_type(self, label: str) -> List[str]:
        label = (label or "").strip()
        if label and label not in self._allowed:
            self._allowed.append(label)
            logger.info(f"[OrderValidator] Added allowed order type: {label}")
        return self.allowed_order_types

    def remove_allowed_order_type(self, label: str) -> List[str]:
        label = (label or "").strip()
        if label in self._allowed:
            self._allowed.remove(label)
            logger.info(f"[OrderValidator] Removed allowed order type: {label}")
        return self.allowed_order_types

    def validate(self, order: OrderData, also_allowed: Iterable[str] = ()) -> ValidationResult:
        """
        Valida el Loại de la primera línea contra la lista permitida.

        also_allowed amplía la lista solo para esta llamada (variants
        especiales ya clasificados).
        """
        if not order.sales:
            return ValidationResult(
                success=False,
                message=MSG_NO_SALES.format(doc_code=order.doc_code),
            )

        label = line_label(order.sales[0])
        extra = [item.strip() for item in also_allowed if item]
        if label in self._allowed or self._matches_extra(label, extra):
            return ValidationResult(success=True, order_type=label)

        logger.warning(f"[OrderValidator] Order {order.doc_code} has disallowed type \"{label}\"")
        return ValidationResult(
            success=False,
            message=MSG_NOT_ALLOWED.format(
                allowed=", ".join(self._allowed),
                doc_code=order.doc_code,
                label=label,
            ),
            order_type=label,
        )

    def validate_sale_return(self, order: OrderData) -> ValidationResult:
        """Validación específica para SALE_RETURN: basta con que existan líneas."""
        if not order.sales:
            return ValidationResult(
                success=False,
                message=MSG_NO_SALES.format(doc_code=order.doc_code),
            )
        return ValidationResult(success=True, order_type=line_label(order.sales[0]))

    @staticmethod
    def _matches_extra(label: str, extra: List[str]) -> bool:
        normalized = normalize_label(label)
        return bool(normalized) and normalized in {normalize_label(item) for item in extra}

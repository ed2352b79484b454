"""
Clasificación de đơn hàng por Loại (ordertype / ordertypeName) y docSourceType.

Funciones puras: no tocan base de datos ni servicios externos. El resultado
(OrderClassification) se calcula una sola vez por orden y los handlers
trabajan con el OrderVariant, nunca vuelven a leer las etiquetas.
"""
import re
from typing import Iterable, Optional

from pydantic import BaseModel

from invoice_sync.modules.sales.constants import (
    OrderTypeLabel, OrderVariant, DocSourceType, SERVICE_ORDER_TYPE_CODE, CANCEL_SUFFIX
)
from invoice_sync.modules.sales.schemas import OrderData, SaleLine


def normalize_label(value: Optional[str]) -> str:
    """'03.  Đổi điểm' -> '03.đổi điểm' (sin espacios tras el punto, minúsculas)"""
    if not value:
        return ""
    text = re.sub(r"\s+", " ", value.strip().lower())
    return re.sub(r"^(\d+)\.\s*", r"\1.", text)


def _label_in(value: Optional[str], labels: Iterable[str]) -> bool:
    normalized = normalize_label(value)
    if not normalized:
        return False
    return normalized in {normalize_label(label) for label in labels}


def line_label(line: SaleLine) -> str:
    """Loại de la línea: ordertypeName si existe, si no ordertype"""
    return (line.ordertype_name or line.ordertype or "").strip()


def _line_matches(line: SaleLine, *labels: str) -> bool:
    return _label_in(line.ordertype_name, labels) or _label_in(line.ordertype, labels)


def is_loyalty_exchange_line(line: SaleLine) -> bool:
    return _line_matches(line, OrderTypeLabel.LOYALTY_EXCHANGE)


def is_service_change_line(line: SaleLine) -> bool:
    return _line_matches(line, OrderTypeLabel.SERVICE_CHANGE)


def is_birthday_gift_line(line: SaleLine) -> bool:
    return _line_matches(line, OrderTypeLabel.BIRTHDAY_GIFT)


def is_investment_line(line: SaleLine) -> bool:
    return _line_matches(line, OrderTypeLabel.INVESTMENT)


def is_card_split_line(line: SaleLine) -> bool:
    return _line_matches(line, OrderTypeLabel.CARD_SPLIT)


def is_bottle_exchange_line(line: SaleLine) -> bool:
    return _line_matches(line, OrderTypeLabel.BOTTLE_EXCHANGE)


def is_service_order_line(line: SaleLine) -> bool:
    # Dos señales independientes: etiqueta o código bruto
    by_label = _label_in(line.ordertype_name, [OrderTypeLabel.SERVICE])
    raw_code = (line.ordertype or "").strip()
    by_code = (
        raw_code.upper() == SERVICE_ORDER_TYPE_CODE
        or _label_in(raw_code, [OrderTypeLabel.SERVICE])
    )
    return by_label or by_code


def normalize_doc_source_type(order: OrderData) -> str:
    first = order.sales[0] if order.sales else None
    value = (first.doc_source_type if first else None) or order.doc_source_type or ""
    return value.strip().upper()


def is_return_code(doc_code: Optional[str]) -> bool:
    return bool(doc_code) and doc_code.strip().upper().startswith("RT")


def is_cancel_code(doc_code: Optional[str]) -> bool:
    return bool(doc_code) and doc_code.strip().upper().endswith(CANCEL_SUFFIX)


def strip_cancel_suffix(doc_code: str) -> str:
    code = doc_code.strip()
    if code.upper().endswith(CANCEL_SUFFIX):
        return code[: -len(CANCEL_SUFFIX)]
    return code


class OrderPredicates(BaseModel):
    is_return: bool = False
    is_loyalty_exchange: bool = False
    is_service_change: bool = False
    is_birthday_gift: bool = False
    is_investment: bool = False
    is_card_split: bool = False
    is_bottle_exchange: bool = False
    is_service_order: bool = False


class OrderClassification(BaseModel):
    doc_source_type: str
    predicates: OrderPredicates
    is_ordinary: bool
    variant: OrderVariant


# Orden fijo de prioridad para órdenes que no son SALE_RETURN
_PRIORITY = (
    ("is_service_order", OrderVariant.SERVICE_ORDER),
    ("is_loyalty_exchange", OrderVariant.LOYALTY_EXCHANGE),
    ("is_service_change", OrderVariant.SERVICE_CHANGE),
    ("is_birthday_gift", OrderVariant.BIRTHDAY_GIFT),
    ("is_investment", OrderVariant.INVESTMENT),
    ("is_bottle_exchange", OrderVariant.BOTTLE_EXCHANGE),
    ("is_card_split", OrderVariant.CARD_SPLIT),
)


def classify(order: OrderData) -> OrderClassification:
    """Calcula docSourceType, predicados y el variant que decide el handler."""
    doc_source_type = normalize_doc_source_type(order)
    sales = order.sales

    predicates = OrderPredicates(
        is_return=(
            doc_source_type in (DocSourceType.SALE_RETURN, DocSourceType.ORDER_RETURN)
            or is_return_code(order.doc_code)
        ),
        is_loyalty_exchange=any(is_loyalty_exchange_line(s) for s in sales),
        is_service_change=any(is_service_change_line(s) for s in sales),
        is_birthday_gift=any(is_birthday_gift_line(s) for s in sales),
        is_investment=any(is_investment_line(s) for s in sales),
        is_card_split=any(is_card_split_line(s) for s in sales),
        is_bottle_exchange=any(is_bottle_exchange_line(s) for s in sales),
        is_service_order=any(is_service_order_line(s) for s in sales),
    )
    is_ordinary = not any(getattr(predicates, name) for name, _ in _PRIORITY)

    if doc_source_type == DocSourceType.SALE_RETURN:
        variant = OrderVariant.SALE_RETURN
    else:
        variant = OrderVariant.NORMAL
        for name, candidate in _PRIORITY:
            if getattr(predicates, name):
                variant = candidate
                break

    return OrderClassification(
        doc_source_type=doc_source_type,
        predicates=predicates,
        is_ordinary=is_ordinary,
        variant=variant,
    )


# Etiquetas que cada variant especial acepta en la validación
VARIANT_LABELS = {
    OrderVariant.SERVICE_ORDER: [OrderTypeLabel.SERVICE, SERVICE_ORDER_TYPE_CODE],
    OrderVariant.LOYALTY_EXCHANGE: [OrderTypeLabel.LOYALTY_EXCHANGE],
    OrderVariant.SERVICE_CHANGE: [OrderTypeLabel.SERVICE_CHANGE],
    OrderVariant.BIRTHDAY_GIFT: [OrderTypeLabel.BIRTHDAY_GIFT],
    OrderVariant.INVESTMENT: [OrderTypeLabel.INVESTMENT],
    OrderVariant.BOTTLE_EXCHANGE: [OrderTypeLabel.BOTTLE_EXCHANGE],
    OrderVariant.CARD_SPLIT: [OrderTypeLabel.CARD_SPLIT],
}

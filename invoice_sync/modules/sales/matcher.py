"""
Ghép phiếu kho (stock transfer ST/RT) con las líneas de venta.

Los phiếu xuất/nhập no traen referencia directa a la línea de venta, así
que se asignan FIFO por mã vật tư: cada phiếu consume la primera línea
pendiente de su item_code (o material_code como fallback) y una línea
consumida no vuelve a considerarse.
"""
import logging
import re
from collections import OrderedDict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

from invoice_sync.modules.sales.schemas import (
    SaleLine, StockTransferData, LineAssignment, MatchResult
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _match_key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _line_key(line: SaleLine, index: int) -> str:
    return line.id or f"line-{index}"


def is_issue_transfer(transfer: StockTransferData, cross_order: bool = False) -> bool:
    """ST = phiếu xuất. En lotes cross-order también qty < 0 salvo códigos RT."""
    code = (transfer.doc_code or "").strip().upper()
    if code.startswith("ST"):
        return True
    if cross_order and transfer.qty < 0 and not code.startswith("RT"):
        return True
    return False


def _sortable_time(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def sort_transfers_for_matching(transfers: List[StockTransferData], cross_order: bool = False) -> List[StockTransferData]:
    """Orden estable: created_at para lotes de varias órdenes, doc_code para una sola."""
    if cross_order:
        return sorted(transfers, key=lambda t: _sortable_time(t.created_at))
    return sorted(transfers, key=lambda t: t.doc_code or "")


def match_stock_transfers(
    sale_lines: List[SaleLine],
    transfers: List[StockTransferData],
    cross_order: bool = False,
) -> MatchResult:
    """
    Asigna phiếu kho a líneas de venta.

    Args:
        sale_lines: líneas de una misma orden, en su orden original
        transfers: phiếu ya ordenados por el caller (ver sort_transfers_for_matching)
        cross_order: clasificación de issue extendida a qty negativa

    Returns:
        MatchResult con una entrada por línea y los phiếu sin línea
    """
    queues: Dict[str, Deque[str]] = OrderedDict()
    assignments: Dict[str, LineAssignment] = {}

    for index, line in enumerate(sale_lines):
        key = _line_key(line, index)
        assignments[key] = LineAssignment()
        item_key = _match_key(line.item_code)
        if not item_key:
            continue
        queues.setdefault(item_key, deque()).append(key)

    unmatched: List[StockTransferData] = []
    for transfer in transfers:
        queue = queues.get(_match_key(transfer.item_code))
        if not queue and transfer.material_code:
            queue = queues.get(_match_key(transfer.material_code))

        if not queue:
            logger.info(
                f"[Matcher] No sale line for transfer {transfer.doc_code} "
                f"(item={transfer.item_code}, material={transfer.material_code})"
            )
            unmatched.append(transfer)
            continue

        line_key = queue.popleft()
        if is_issue_transfer(transfer, cross_order):
            assignments[line_key].issue = transfer
        else:
            assignments[line_key].return_ = transfer

    return MatchResult(assignments=assignments, unmatched=unmatched)


def doc_codes_for_stock_transfer(doc_codes: List[str]) -> List[str]:
    """
    Códigos a buscar en stock_transfers.so_code.

    Para đơn trả lại (RT) se agrega también el đơn gốc:
    RT33.00121928_1 -> SO33.00121928
    """
    result: List[str] = []
    for doc_code in doc_codes:
        if not doc_code:
            continue
        if doc_code not in result:
            result.append(doc_code)
        if doc_code.upper().startswith("RT"):
            origin = re.sub(r"_\d+$", "", "SO" + doc_code[2:])
            if origin not in result:
                result.append(origin)
    return result


def resolve_stock_codes(transfers: List[StockTransferData]) -> List[str]:
    """Mã kho distintos, en orden de aparición"""
    codes: List[str] = []
    for transfer in transfers:
        code = (transfer.stock_code or "").strip()
        if code and code not in codes:
            codes.append(code)
    return codes

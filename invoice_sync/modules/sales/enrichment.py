"""
Enriquecimiento y "explosión" de líneas de venta antes de armar el payload
de Fast.

- Explosión: cada phiếu xuất kho (ST) se convierte en una línea con su
  cantidad real, mã kho, lô/serial; los importes se prorratean.
- Metadata: sản phẩm (dvt, lô/serial), phòng ban (ma_bp, ma_dvcs),
  nhân viên y phí sàn (voucher VC CTKM SÀN).
"""
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from invoice_sync.core.config import settings
from invoice_sync.modules.integrations.metadata import (
    MetadataProvider, ProductInfo, DepartmentInfo
)
from invoice_sync.modules.sales.constants import (
    StockTransferDocType, TRUTONKEEP_ITEM, PLATFORM_VOUCHER_LABEL
)
from invoice_sync.modules.sales.matcher import (
    match_stock_transfers, sort_transfers_for_matching, doc_codes_for_stock_transfer
)
from invoice_sync.modules.sales.schemas import (
    OrderData, SaleLine, StockTransferData, OrderFeeData
)

logger = logging.getLogger(__name__)

# Importes que se prorratean al explotar una línea
PRORATED_FIELDS = ("revenue", "tien_hang", "linetotal", "disc_amount", "chiet_khau_voucher_dp1")


class EnrichedOrder(BaseModel):
    order: OrderData
    transfers: List[StockTransferData] = Field(default_factory=list)
    unmatched_transfers: List[StockTransferData] = Field(default_factory=list)
    products: Dict[str, ProductInfo] = Field(default_factory=dict)
    departments: Dict[str, DepartmentInfo] = Field(default_factory=dict)
    employees: Dict[str, bool] = Field(default_factory=dict)
    order_fees: List[OrderFeeData] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def sales(self) -> List[SaleLine]:
        return self.order.sales

    @property
    def is_platform_order(self) -> bool:
        return bool(self.order_fees)

    @property
    def platform_brand(self) -> Optional[str]:
        for fee in self.order_fees:
            if fee.brand:
                return fee.brand
        return None

    @property
    def department(self) -> Optional[DepartmentInfo]:
        return self.departments.get(self.order.branch_code or "")

    def is_employee(self, line: SaleLine) -> bool:
        return bool(
            self.employees.get(line.partner_code or "")
            or self.employees.get(line.issue_partner_code or "")
        )


def is_stock_out_transfer(transfer: StockTransferData) -> bool:
    """Phiếu xuất kho: SALE_STOCKOUT o qty < 0; TRUTONKEEP nunca se explota"""
    if (transfer.item_code or "").strip().upper() == TRUTONKEEP_ITEM:
        return False
    return transfer.doctype == StockTransferDocType.SALE_STOCKOUT or transfer.qty < 0


def _exploded_line(
    sale: SaleLine,
    transfer: StockTransferData,
    products: Dict[str, ProductInfo],
    warehouse_map: Dict[str, str],
) -> SaleLine:
    old_qty = sale.qty or 1
    new_qty = abs(transfer.qty)
    ratio = new_qty / old_qty
    update = {field: (getattr(sale, field) or 0) * ratio for field in PRORATED_FIELDS}
    update.update(_stock_fields(transfer, products, warehouse_map))
    update["id"] = transfer.id or sale.id
    update["qty"] = new_qty
    return sale.model_copy(update=update)


def _pseudo_line(
    order: OrderData,
    transfer: StockTransferData,
    products: Dict[str, ProductInfo],
    warehouse_map: Dict[str, str],
) -> SaleLine:
    line = SaleLine(
        id=transfer.id,
        doc_code=order.doc_code,
        branch_code=order.branch_code,
        item_code=transfer.item_code,
        item_name=transfer.item_name,
        qty=abs(transfer.qty),
        is_pseudo=True,
    )
    return line.model_copy(update=_stock_fields(transfer, products, warehouse_map))


def _stock_fields(
    transfer: StockTransferData,
    products: Dict[str, ProductInfo],
    warehouse_map: Dict[str, str],
) -> dict:
    product = products.get(transfer.item_code or "")
    is_batch = bool(product and product.track_batch)
    is_serial = bool(product and product.track_serial)
    return {
        "ma_kho": warehouse_map.get(transfer.stock_code or "") or transfer.stock_code,
        "ma_lo": transfer.batch_serial if is_batch else None,
        "so_serial": transfer.batch_serial if is_serial else None,
    }


def explode_sales(
    order: OrderData,
    transfers: List[StockTransferData],
    products: Optional[Dict[str, ProductInfo]] = None,
    warehouse_map: Optional[Dict[str, str]] = None,
) -> Tuple[List[SaleLine], List[StockTransferData]]:
    """
    Explota las líneas del đơn según sus phiếu xuất kho.

    Returns:
        (líneas explotadas, phiếu sin línea de venta)
    """
    products = products or {}
    warehouse_map = warehouse_map or {}
    stock_out = sort_transfers_for_matching(
        [t for t in transfers if is_stock_out_transfer(t)]
    )
    if not stock_out:
        return list(order.sales), []

    match = match_stock_transfers(order.sales, stock_out)

    exploded: List[SaleLine] = []
    used_keys = set()
    first_by_item: Dict[str, SaleLine] = {}
    for index, sale in enumerate(order.sales):
        key = sale.id or f"line-{index}"
        if sale.item_code:
            first_by_item.setdefault(sale.item_code.strip().lower(), sale)
        assignment = match.assignments.get(key)
        transfer = assignment and (assignment.issue or assignment.return_)
        if transfer:
            used_keys.add(key)
            exploded.append(_exploded_line(sale, transfer, products, warehouse_map))

    orphans: List[StockTransferData] = []
    for transfer in match.unmatched:
        # 1 línea -> N phiếu: se reutiliza la primera línea del item
        sale = first_by_item.get((transfer.item_code or "").strip().lower())
        if sale is None and transfer.material_code:
            sale = first_by_item.get(transfer.material_code.strip().lower())
        if sale is not None:
            exploded.append(_exploded_line(sale, transfer, products, warehouse_map))
        else:
            orphans.append(transfer)
            exploded.append(_pseudo_line(order, transfer, products, warehouse_map))

    for index, sale in enumerate(order.sales):
        if (sale.id or f"line-{index}") not in used_keys:
            exploded.append(sale)

    return exploded, orphans


def apply_platform_voucher(sales: List[SaleLine], order_fees: List[OrderFeeData]) -> None:
    """Marca VC CTKM SÀN con el voucher_from_seller del phí sàn"""
    amount = 0.0
    for fee in order_fees:
        raw = (fee.raw_data or {}).get("raw_data") or {}
        try:
            amount = float(raw.get("voucher_from_seller") or 0)
        except (TypeError, ValueError):
            amount = 0.0
        if amount > 0:
            break
    if amount <= 0:
        return
    for sale in sales:
        sale.voucher_dp1 = PLATFORM_VOUCHER_LABEL
        sale.chiet_khau_voucher_dp1 = amount


class SaleEnrichmentService:
    """Arma un EnrichedOrder consultando persistencia y metadata"""

    def __init__(self, persistence, metadata: MetadataProvider, lookup_semaphore: Optional[asyncio.Semaphore] = None):
        self.persistence = persistence
        self.metadata = metadata
        self.lookup_semaphore = lookup_semaphore or asyncio.Semaphore(settings.LOOKUP_CONCURRENCY)

    async def _lookup(self, name: str, coro, default, warnings: List[str]):
        async with self.lookup_semaphore:
            try:
                return await coro
            except Exception as e:
                logger.warning(f"[Enrichment] {name} lookup failed: {e}")
                warnings.append(f"Không lấy được {name}: {e}")
                return default

    async def enrich_order(self, order: OrderData, explode: bool = True) -> EnrichedOrder:
        warnings: List[str] = []
        so_codes = doc_codes_for_stock_transfer([order.doc_code])
        transfers = await self.persistence.find_stock_transfers(so_codes) if explode else []
        order_fees = await self.persistence.find_order_fees([order.doc_code])

        item_codes = {s.item_code for s in order.sales if s.item_code}
        item_codes.update(t.item_code for t in transfers if t.item_code)
        stock_codes = {t.stock_code for t in transfers if t.stock_code}
        branch_codes = {order.branch_code} if order.branch_code else set()

        products = await self._lookup(
            "sản phẩm", self.metadata.fetch_products(sorted(item_codes)), {}, warnings
        ) if item_codes else {}
        warehouse_map = await self._lookup(
            "mã kho", self.metadata.fetch_warehouse_codes(sorted(stock_codes)), {}, warnings
        ) if stock_codes else {}
        departments = await self._lookup(
            "phòng ban", self.metadata.fetch_departments(sorted(branch_codes)), {}, warnings
        ) if branch_codes else {}

        if explode:
            sales, orphans = explode_sales(order, transfers, products, warehouse_map)
        else:
            sales, orphans = list(order.sales), []
        sales = [self._with_product_defaults(s, products) for s in sales]
        apply_platform_voucher(sales, order_fees)

        partner_codes = {s.partner_code for s in sales if s.partner_code}
        employees = await self._lookup(
            "nhân viên", self.metadata.fetch_employee_status(sorted(partner_codes)), {}, warnings
        ) if partner_codes else {}

        department = departments.get(order.branch_code or "")
        if department and department.ma_bp:
            for sale in sales:
                sale.ma_bp = sale.ma_bp or department.ma_bp

        if orphans:
            logger.info(f"[Enrichment] {order.doc_code}: {len(orphans)} stock transfer(s) without sale line")

        return EnrichedOrder(
            order=order.model_copy(update={"sales": sales}),
            transfers=transfers,
            unmatched_transfers=orphans,
            products=products,
            departments=departments,
            employees=employees,
            order_fees=order_fees,
            warnings=warnings,
        )

    @staticmethod
    def _with_product_defaults(sale: SaleLine, products: Dict[str, ProductInfo]) -> SaleLine:
        product = products.get(sale.item_code or "")
        if product and product.dvt and not sale.dvt:
            return sale.model_copy(update={"dvt": product.dvt})
        return sale.model_copy()

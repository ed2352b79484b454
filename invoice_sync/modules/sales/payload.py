"""
Construcción de payloads para Fast API (salesOrder / salesInvoice /
salesReturn / GXT / customer).

Solo arma diccionarios; no llama a ningún servicio.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from invoice_sync.modules.sales.constants import (
    OrderVariant, ProductType, StockTransferDocType,
    PROMO_EXPENSE_ACCOUNT, PROMO_EXPENSE_CODE, BIRTHDAY_EXPENSE_ACCOUNT, BIRTHDAY_EXPENSE_CODE,
    DEFAULT_UNIT, DEFAULT_SERIES, DEFAULT_CURRENCY, DEFAULT_TAX_DEBIT_ACCOUNT, DEFAULT_CHANNEL,
    GXT_TRANSACTION_CODE,
)
from invoice_sync.modules.sales.enrichment import EnrichedOrder
from invoice_sync.modules.sales.schemas import CustomerData, OrderData, SaleLine, StockTransferData

logger = logging.getLogger(__name__)

# Cuentas de chi phí por variant (khuyến mãi / tặng sinh nhật)
EXPENSE_ACCOUNTS = {
    OrderVariant.LOYALTY_EXCHANGE: (PROMO_EXPENSE_ACCOUNT, PROMO_EXPENSE_CODE),
    OrderVariant.BOTTLE_EXCHANGE: (PROMO_EXPENSE_ACCOUNT, PROMO_EXPENSE_CODE),
    OrderVariant.INVESTMENT: (PROMO_EXPENSE_ACCOUNT, PROMO_EXPENSE_CODE),
    OrderVariant.BIRTHDAY_GIFT: (BIRTHDAY_EXPENSE_ACCOUNT, BIRTHDAY_EXPENSE_CODE),
}

# Mã CTKM para chiết khấu nhân viên según đơn vị
EMPLOYEE_DISCOUNT_CODES = {
    "TTM": {ProductType.ITEM_EXPORT: "2505MN.CK521", ProductType.SERVICE: "2505MN.CK521", ProductType.PRODUCT: "2505MN.CK521"},
    "TSG": {ProductType.ITEM_EXPORT: "2505MN.CK521", ProductType.SERVICE: "2505MN.CK521", ProductType.PRODUCT: "2505MN.CK521"},
    "THP": {ProductType.ITEM_EXPORT: "2505MN.CK521", ProductType.SERVICE: "2505MN.CK521", ProductType.PRODUCT: "2505MN.CK521"},
    "FBV": {ProductType.ITEM_EXPORT: "SPQTNV", ProductType.SERVICE: "DVQTNV"},
    "LHV": {ProductType.ITEM_EXPORT: "R504SANPHAM", ProductType.SERVICE: "R504DICHVU"},
}

PLATFORM_DISCOUNT_CODES = {
    "menard": "TTM.R601ECOM",
    "yaman": "BTH.R601ECOM",
}


def normalize_ma_kh(code: Optional[str]) -> str:
    """Quita el prefijo NV del mã khách hàng (NV0001 -> 0001)"""
    if not code:
        return ""
    trimmed = str(code).strip()
    if len(trimmed) > 2 and trimmed[:2].upper() == "NV":
        return trimmed[2:]
    return trimmed


def _limit(value: Any, max_length: int, default: str = "") -> str:
    if value is None or value == "":
        return default
    return str(value)[:max_length]


def _iso(value: Optional[datetime]) -> str:
    return (value or datetime.now()).isoformat()


def format_date_yyyymmdd(value: Optional[date]) -> Optional[str]:
    if not value:
        return None
    return value.strftime("%Y%m%d")


def resolve_loai_gd(line: SaleLine, variant: OrderVariant) -> str:
    """Loại giao dịch de la línea según variant y productType"""
    product_type = (line.product_type or "").upper()
    if variant in (OrderVariant.SERVICE_CHANGE, OrderVariant.CARD_SPLIT):
        return "11" if line.qty < 0 else "12"
    if variant == OrderVariant.NORMAL:
        if product_type == ProductType.ITEM_EXPORT:
            return "01"
        if product_type == ProductType.SERVICE and line.qty > 0:
            return "02"
        if product_type == ProductType.PRODUCT:
            return "03"
    if variant == OrderVariant.SERVICE_ORDER and product_type == ProductType.SERVICE:
        if line.qty > 0:
            return "01"
        if line.gia_ban == 0:
            return "06"
    return "01"


def resolve_header_ma_kh(order: OrderData, variant: OrderVariant) -> str:
    """Para Tách thẻ el khách hàng es el issue partner de la línea negativa"""
    ma_kh = normalize_ma_kh(order.customer.code if order.customer else None)
    if variant == OrderVariant.CARD_SPLIT:
        with_issue = next(
            (s for s in order.sales if s.qty < 0 and s.issue_partner_code), None
        ) or next((s for s in order.sales if s.issue_partner_code), None)
        if with_issue:
            ma_kh = normalize_ma_kh(with_issue.issue_partner_code)
    return ma_kh


class SalesPayloadBuilder:
    """Arma los payloads de Fast a partir de un EnrichedOrder"""

    def build_customer_payload(self, customer: CustomerData) -> Dict[str, Any]:
        payload = {
            "ma_kh": normalize_ma_kh(customer.code),
            "ten_kh": customer.name or "",
            "dia_chi": customer.address,
            "so_cccd": customer.idnumber,
            "ngay_sinh": format_date_yyyymmdd(customer.birthday),
            "gioi_tinh": customer.sexual,
            "brand": customer.brand,
        }
        return {key: value for key, value in payload.items() if value is not None}

    def resolve_ma_dvcs(self, enriched: EnrichedOrder) -> str:
        department = enriched.department
        order = enriched.order
        return (
            (department.ma_dvcs if department else None)
            or (order.customer.brand if order.customer else None)
            or order.branch_code
            or ""
        )

    def resolve_ma_ck01(self, enriched: EnrichedOrder, line: SaleLine, variant: OrderVariant) -> str:
        if variant == OrderVariant.LOYALTY_EXCHANGE:
            return ""
        if enriched.is_platform_order:
            brand = (line.brand or enriched.platform_brand or "").strip().lower()
            return PLATFORM_DISCOUNT_CODES.get(brand, "")
        if enriched.is_employee(line) and line.disc_amount > 0:
            codes = EMPLOYEE_DISCOUNT_CODES.get(self.resolve_ma_dvcs(enriched), {})
            return codes.get((line.product_type or "").upper(), "")
        return ""

    def build_detail_line(
        self,
        enriched: EnrichedOrder,
        line: SaleLine,
        index: int,
        variant: OrderVariant,
    ) -> Dict[str, Any]:
        product = enriched.products.get(line.item_code or "")
        ma_bp = line.ma_bp or (enriched.department.ma_bp if enriched.department else None) or line.branch_code or ""
        ma_kho = f"B{ma_bp}" if variant == OrderVariant.CARD_SPLIT else (line.ma_kho or "")
        tien_hang = line.qty * line.gia_ban
        tk_chi_phi, ma_phi = EXPENSE_ACCOUNTS.get(variant, ("", ""))

        detail = {
            "ma_vt": _limit((product.material_code if product else None) or line.item_code, 16),
            "dvt": _limit(line.dvt or (product.dvt if product else None), 32, DEFAULT_UNIT),
            "so_luong": line.qty,
            "gia_ban": line.gia_ban,
            "tien_hang": tien_hang,
            "ma_kh_i": _limit(line.issue_partner_code, 16),
            "ma_bp": _limit(ma_bp, 8),
            "ma_nx_st": _limit(line.ma_nx_st, 32),
            "ma_nx_rt": _limit(line.ma_nx_rt, 32),
            "tk_chi_phi": tk_chi_phi,
            "ma_phi": ma_phi,
            "ma_ck01": _limit(self.resolve_ma_ck01(enriched, line, variant), 32),
            "ck01_nt": line.disc_amount,
            "ma_ck05": _limit(line.voucher_dp1, 32),
            "ck05_nt": line.chiet_khau_voucher_dp1,
            "km_yn": 0 if variant == OrderVariant.INVESTMENT else int(abs(line.gia_ban) < 0.01 and abs(tien_hang) < 0.01),
            "loai_gd": resolve_loai_gd(line, variant),
            "dong": index + 1,
        }
        if ma_kho:
            detail["ma_kho"] = _limit(ma_kho, 16)
        if line.so_serial:
            detail["so_serial"] = _limit(line.so_serial, 64)
        elif line.ma_lo:
            detail["ma_lo"] = _limit(line.ma_lo, 16)
        return detail

    @staticmethod
    def build_cbdetail(detail: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {
                "ma_vt": item.get("ma_vt", ""),
                "dvt": item.get("dvt", ""),
                "so_luong": item.get("so_luong", 0),
                "ck_nt": (item.get("ck01_nt") or 0) + (item.get("ck05_nt") or 0),
                "gia_nt": item.get("gia_ban", 0),
                "tien_nt": item.get("tien_hang", 0),
            }
            for item in detail
        ]

    def build_invoice_payload(
        self,
        enriched: EnrichedOrder,
        variant: OrderVariant,
        lines: Optional[List[SaleLine]] = None,
        doc_code: Optional[str] = None,
        action: int = 0,
    ) -> Dict[str, Any]:
        """Payload común de salesOrder / salesInvoice"""
        order = enriched.order
        lines = order.sales if lines is None else lines
        doc_code = doc_code or order.doc_code
        detail = [self.build_detail_line(enriched, line, i, variant) for i, line in enumerate(lines)]
        first = lines[0] if lines else None
        department = enriched.department
        transfer_date = next((t.trans_date for t in enriched.transfers if t.trans_date), None)

        return {
            "action": action,
            "ma_dvcs": self.resolve_ma_dvcs(enriched),
            "ma_kh": resolve_header_ma_kh(order.model_copy(update={"sales": lines}), variant),
            "ong_ba": order.customer.name if order.customer else None,
            "ma_gd": "1",
            "ma_tt": None,
            "ma_ca": None,
            "hinh_thuc": "0",
            "dien_giai": doc_code,
            "ngay_lct": _iso(order.doc_date),
            "ngay_ct": _iso(order.doc_date),
            "so_ct": doc_code,
            "so_seri": order.branch_code or DEFAULT_SERIES,
            "ma_nt": DEFAULT_CURRENCY,
            "ty_gia": 1.0,
            "ma_bp": (department.ma_bp if department else None) or order.branch_code or "",
            "tk_thue_no": DEFAULT_TAX_DEBIT_ACCOUNT,
            "ma_kenh": DEFAULT_CHANNEL,
            "loai_gd": resolve_loai_gd(first, variant) if first else "01",
            "trans_date": transfer_date.isoformat() if transfer_date else None,
            "detail": detail,
            "cbdetail": self.build_cbdetail(detail),
        }

    def build_sales_return_payload(
        self,
        enriched: EnrichedOrder,
        transfers: List[StockTransferData],
    ) -> Dict[str, Any]:
        """Hàng bán trả lại: cantidades tomadas de los phiếu SALE_RETURN"""
        order = enriched.order
        invoice = self.build_invoice_payload(enriched, OrderVariant.NORMAL)
        returns = [t for t in transfers if t.doctype == StockTransferDocType.SALE_RETURN]

        qty_by_code: Dict[str, float] = {}
        for transfer in returns:
            key = (transfer.material_code or transfer.item_code or "").strip()
            if key and transfer.qty:
                qty_by_code[key] = qty_by_code.get(key, 0) + abs(transfer.qty)

        detail = []
        for item, line in zip(invoice["detail"], order.sales):
            so_luong = qty_by_code.get(item["ma_vt"]) or qty_by_code.get((line.item_code or "").strip(), 0)
            if not so_luong:
                continue
            detail.append({
                "ma_vt": item["ma_vt"],
                "dvt": item["dvt"],
                "ma_kho": item.get("ma_kho", ""),
                "so_luong": so_luong,
                "gia_ban": item["gia_ban"],
                "tien_hang": item["gia_ban"] * so_luong,
                "tk_dt": "511",
                "tk_gv": "632",
                "km_yn": item["km_yn"],
                "ck01_nt": item["ck01_nt"],
                "ck05_nt": item["ck05_nt"],
                "ma_bp": item["ma_bp"],
                "loai_gd": "01",
                "dong": len(detail) + 1,
            })

        origin = returns[0] if returns else None
        origin_date = (origin.trans_date if origin else None) or order.doc_date
        return {
            "ma_dvcs": invoice["ma_dvcs"],
            "ma_kh": invoice["ma_kh"],
            "ong_ba": invoice["ong_ba"],
            "ngay_ct": invoice["ngay_ct"],
            "ngay_lct": invoice["ngay_lct"],
            "so_ct": order.doc_code,
            "so_seri": invoice["so_seri"],
            "ma_nt": DEFAULT_CURRENCY,
            "ty_gia": 1.0,
            "so_ct0": (origin.so_code if origin else None) or order.doc_code,
            "ngay_ct0": _iso(origin_date),
            "dien_giai": order.doc_code,
            "detail": detail,
        }

    def build_gxt_payload(
        self,
        enriched: EnrichedOrder,
        import_lines: List[SaleLine],
        export_lines: List[SaleLine],
    ) -> Dict[str, Any]:
        """Phiếu tạo gộp xuất tách: detail = dòng I (xuất), ndetail = dòng S (nhập)"""
        order = enriched.order
        first = (import_lines or export_lines or [None])[0]
        ma_kho = (first.ma_kho if first else None) or ""

        def build_line(line: SaleLine, index: int) -> Dict[str, Any]:
            product = enriched.products.get(line.item_code or "")
            qty = abs(line.qty)
            tien_hang = line.tien_hang or line.linetotal or line.revenue
            gia = line.gia_ban if line.gia_ban > 0 else (tien_hang / qty if qty > 0 else 0)
            return {
                "ma_kho_n": ma_kho,
                "ma_kho_x": ma_kho,
                "ma_vt": _limit((product.material_code if product else None) or line.item_code, 16),
                "dvt": _limit(line.dvt or (product.dvt if product else None), 32, DEFAULT_UNIT),
                "ma_lo": _limit(line.ma_lo, 16),
                "so_luong": qty,
                "gia_nt2": gia,
                "tien_nt2": qty * gia,
                "ma_nx": GXT_TRANSACTION_CODE,
                "ma_bp": _limit(line.ma_bp or line.branch_code or order.branch_code, 8),
                "dong": index + 1,
                "dong_vt_goc": 1,
            }

        return {
            "ma_dvcs": order.branch_code or (order.customer.brand if order.customer else None) or "",
            "ma_kho_n": ma_kho,
            "ma_kho_x": ma_kho,
            "ong_ba": (order.customer.name if order.customer else None) or "",
            "ma_gd": "2",
            "ngay_ct": _iso(order.doc_date),
            "ngay_lct": _iso(order.doc_date),
            "so_ct": order.doc_code,
            "dien_giai": order.doc_code,
            "action": 0,
            "detail": [build_line(line, i) for i, line in enumerate(export_lines)],
            "ndetail": [build_line(line, i) for i, line in enumerate(import_lines)],
        }

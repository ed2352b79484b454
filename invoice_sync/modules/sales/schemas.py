from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import date, datetime


# Order aggregate (in-memory)
class CustomerData(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    idnumber: Optional[str] = None
    birthday: Optional[date] = None
    sexual: Optional[str] = None
    mobile: Optional[str] = None
    brand: Optional[str] = None

    class Config:
        from_attributes = True


class SaleLine(BaseModel):
    id: Optional[str] = None
    doc_code: Optional[str] = None
    doc_source_type: Optional[str] = None
    branch_code: Optional[str] = None

    ordertype: Optional[str] = None
    ordertype_name: Optional[str] = None
    product_type: Optional[str] = None

    item_code: Optional[str] = None
    item_name: Optional[str] = None
    dvt: Optional[str] = None
    qty: float = 0

    revenue: float = 0
    gia_ban: float = 0
    tien_hang: float = 0
    linetotal: float = 0
    disc_amount: float = 0
    voucher_dp1: Optional[str] = None
    chiet_khau_voucher_dp1: float = 0

    partner_code: Optional[str] = None
    svc_code: Optional[str] = None
    serial: Optional[str] = None
    brand: Optional[str] = None
    is_processed: bool = False

    # Campos calculados durante el enriquecimiento
    ma_kho: Optional[str] = None
    ma_lo: Optional[str] = None
    so_serial: Optional[str] = None
    ma_bp: Optional[str] = None
    issue_partner_code: Optional[str] = None
    ma_nx_st: Optional[str] = None
    ma_nx_rt: Optional[str] = None
    is_pseudo: bool = False

    class Config:
        from_attributes = True

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        return str(v) if v is not None else None


class StockTransferData(BaseModel):
    id: Optional[str] = None
    doc_code: str
    so_code: Optional[str] = None
    doctype: Optional[str] = None
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    material_code: Optional[str] = None
    stock_code: Optional[str] = None
    branch_code: Optional[str] = None
    qty: float = 0
    batch_serial: Optional[str] = None
    trans_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        return str(v) if v is not None else None


class OrderFeeData(BaseModel):
    erp_order_code: str
    brand: Optional[str] = None
    platform: Optional[str] = None
    fee_type: Optional[str] = None
    fee_amount: float = 0
    raw_data: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class OrderData(BaseModel):
    doc_code: str
    doc_date: Optional[datetime] = None
    branch_code: Optional[str] = None
    doc_source_type: Optional[str] = None
    customer: Optional[CustomerData] = None
    sales: List[SaleLine] = Field(default_factory=list)


# Matching
class LineAssignment(BaseModel):
    issue: Optional[StockTransferData] = None
    return_: Optional[StockTransferData] = Field(None, alias="return")

    class Config:
        populate_by_name = True


class MatchResult(BaseModel):
    assignments: Dict[str, LineAssignment] = Field(default_factory=dict)
    unmatched: List[StockTransferData] = Field(default_factory=list)


# Flow results
class ValidationResult(BaseModel):
    success: bool
    message: Optional[str] = None
    order_type: Optional[str] = None


class HandlerResult(BaseModel):
    result: Any = None
    status: int = 0
    message: str = ""
    guid: Optional[str] = None
    fast_api_response: Any = None
    warnings: List[str] = Field(default_factory=list)
    # Datos de cabecera para fast_api_invoices (si el handler los conoce)
    ma_dvcs: Optional[str] = None
    ma_kh: Optional[str] = None
    ten_kh: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == 1


class OrchestrationResult(BaseModel):
    success: bool
    message: str
    result: Any = None
    warnings: List[str] = Field(default_factory=list)
    already_exists: bool = False


# API schemas
class ProcessOrderRequest(BaseModel):
    force_retry: bool = False


class BatchProcessRequest(BaseModel):
    doc_codes: List[str] = Field(..., min_length=1)
    force_retry: bool = False

    @field_validator("doc_codes")
    @classmethod
    def validate_doc_codes(cls, v):
        cleaned = [code.strip() for code in v if code and code.strip()]
        if not cleaned:
            raise ValueError("Debe indicar al menos un doc_code")
        # Mantener orden, sin duplicados
        return list(dict.fromkeys(cleaned))


class BatchItemResult(BaseModel):
    doc_code: str
    success: bool
    message: str
    already_exists: bool = False


class BatchProcessResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[BatchItemResult]


class BatchTaskQueued(BaseModel):
    task_id: str
    total: int


class InvoiceStatusOut(BaseModel):
    doc_code: str
    ma_dvcs: Optional[str] = None
    ma_kh: Optional[str] = None
    ten_kh: Optional[str] = None
    ngay_ct: Optional[datetime] = None
    status: int
    message: Optional[str] = None
    guid: Optional[str] = None
    fast_api_response: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AllowedOrderTypeRequest(BaseModel):
    label: str = Field(..., min_length=1, max_length=255)

    @field_validator("label")
    @classmethod
    def validate_label(cls, v):
        if not v.strip():
            raise ValueError("El Loại đơn hàng no puede estar vacío")
        return v.strip()


class AllowedOrderTypesOut(BaseModel):
    allowed_order_types: List[str]

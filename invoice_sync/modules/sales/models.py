from invoice_sync.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, Date, ForeignKey, Numeric, Integer, Text, JSON, Uuid
from sqlalchemy.orm import relationship
from invoice_sync.common.mixins import BaseMixin


class Customer(Base, BaseMixin):
    __tablename__ = "customers"

    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    idnumber = Column(String(50), nullable=True)  # CCCD
    birthday = Column(Date, nullable=True)
    sexual = Column(String(20), nullable=True)
    mobile = Column(String(50), nullable=True)
    brand = Column(String(50), nullable=True)

    sales = relationship("Sale", back_populates="customer")


class Sale(Base, BaseMixin):
    """Dòng bán hàng sincronizado desde el ERP. Varias filas comparten doc_code."""
    __tablename__ = "sales"

    doc_code = Column(String(100), nullable=False, index=True)
    doc_date = Column(DateTime(timezone=True), nullable=True)
    branch_code = Column(String(50), nullable=True)
    doc_source_type = Column(String(50), nullable=True)

    # Clasificación
    ordertype = Column(String(100), nullable=True)
    ordertype_name = Column(String(255), nullable=True)
    product_type = Column(String(10), nullable=True)  # S / I / V

    # Item
    item_code = Column(String(100), nullable=True, index=True)
    line_no = Column(Integer, nullable=False, default=0)
    item_name = Column(String(255), nullable=True)
    dvt = Column(String(50), nullable=True)
    qty = Column(Numeric(18, 3), nullable=False, default=0)

    # Importes
    revenue = Column(Numeric(18, 2), nullable=False, default=0)
    gia_ban = Column(Numeric(18, 2), nullable=False, default=0)
    tien_hang = Column(Numeric(18, 2), nullable=False, default=0)
    linetotal = Column(Numeric(18, 2), nullable=False, default=0)
    disc_amount = Column(Numeric(18, 2), nullable=False, default=0)
    voucher_dp1 = Column(String(100), nullable=True)
    chiet_khau_voucher_dp1 = Column(Numeric(18, 2), nullable=False, default=0)

    # Referencias
    partner_code = Column(String(50), nullable=True)
    svc_code = Column(String(100), nullable=True)
    serial = Column(String(100), nullable=True)
    brand = Column(String(50), nullable=True)
    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id"), nullable=True)

    is_processed = Column(Boolean, nullable=False, default=False)

    customer = relationship("Customer", back_populates="sales")


class StockTransfer(Base, BaseMixin):
    """Phiếu xuất (ST) / nhập trả (RT) de kho. Solo lectura en este servicio."""
    __tablename__ = "stock_transfers"

    doc_code = Column(String(100), nullable=False, index=True)
    so_code = Column(String(100), nullable=True, index=True)
    doctype = Column(String(50), nullable=True)
    item_code = Column(String(100), nullable=True)
    item_name = Column(String(255), nullable=True)
    material_code = Column(String(100), nullable=True)
    stock_code = Column(String(50), nullable=True)
    branch_code = Column(String(50), nullable=True)
    qty = Column(Numeric(18, 3), nullable=False, default=0)
    batch_serial = Column(String(100), nullable=True)
    trans_date = Column(DateTime(timezone=True), nullable=True)


class OrderFee(Base, BaseMixin):
    """Phí sàn TMĐT importado (Shopee/TikTok...)."""
    __tablename__ = "order_fee"

    erp_order_code = Column(String(100), nullable=False, index=True)
    brand = Column(String(50), nullable=True)
    platform = Column(String(50), nullable=True)
    fee_type = Column(String(100), nullable=True)
    fee_amount = Column(Numeric(18, 2), nullable=False, default=0)
    raw_data = Column(JSON, nullable=True)


class FastApiInvoice(Base, BaseMixin):
    """Trạng thái đồng bộ de cada đơn hàng con Fast. Una fila por doc_code."""
    __tablename__ = "fast_api_invoices"

    doc_code = Column(String(100), nullable=False, unique=True, index=True)
    ma_dvcs = Column(String(50), nullable=True)
    ma_kh = Column(String(50), nullable=True)
    ten_kh = Column(String(255), nullable=True)
    ngay_ct = Column(DateTime(timezone=True), nullable=True)
    status = Column(Integer, nullable=False, default=0)  # 0 thất bại, 1 thành công
    message = Column(Text, nullable=True)
    guid = Column(String(255), nullable=True)
    fast_api_response = Column(Text, nullable=True)

"""
Constantes del flujo de sincronización de hóa đơn con Fast API.

Las etiquetas de Loại đơn hàng vienen del ERP tal cual (con y sin espacio
después del punto), por eso se comparan siempre normalizadas.
"""
import enum


class OrderTypeLabel:
    NORMAL = "01.Thường"
    NORMAL_WITH_SPACE = "01. Thường"
    SERVICE = "02. Làm dịch vụ"
    LOYALTY_EXCHANGE = "03. Đổi điểm"
    SERVICE_CHANGE = "04. Đổi DV"
    BIRTHDAY_GIFT = "05. Tặng sinh nhật"
    INVESTMENT = "06. Đầu tư"
    ACCOUNT_SALE = "07. Bán tài khoản"
    CARD_SPLIT = "08. Tách thẻ"
    BOTTLE_EXCHANGE = "Đổi vỏ"


# Código bruto de ordertype para đơn làm dịch vụ
SERVICE_ORDER_TYPE_CODE = "LAM_DV"

DEFAULT_ALLOWED_ORDER_TYPES = [OrderTypeLabel.NORMAL, OrderTypeLabel.NORMAL_WITH_SPACE]


class DocSourceType:
    SALE_RETURN = "SALE_RETURN"
    ORDER_RETURN = "ORDER_RETURN"


class ProductType:
    SERVICE = "S"
    ITEM_EXPORT = "I"
    PRODUCT = "V"


class StockTransferDocType:
    SALE_STOCKOUT = "SALE_STOCKOUT"
    SALE_RETURN = "SALE_RETURN"


class InvoiceStatus(enum.IntEnum):
    FAILED = 0
    SUCCESS = 1


class SubmitAction(enum.IntEnum):
    NORMAL = 0
    CANCEL_UPDATE = 1


class OrderVariant(str, enum.Enum):
    SALE_RETURN = "SALE_RETURN"
    SERVICE_ORDER = "SERVICE_ORDER"
    LOYALTY_EXCHANGE = "LOYALTY_EXCHANGE"
    SERVICE_CHANGE = "SERVICE_CHANGE"
    BIRTHDAY_GIFT = "BIRTHDAY_GIFT"
    INVESTMENT = "INVESTMENT"
    BOTTLE_EXCHANGE = "BOTTLE_EXCHANGE"
    CARD_SPLIT = "CARD_SPLIT"
    NORMAL = "NORMAL"


# Sufijo de đơn hủy / cập nhật
CANCEL_SUFFIX = "_X"

# Item ficticio de stock transfer que no se explota
TRUTONKEEP_ITEM = "TRUTONKEEP"

# Cuentas contables para líneas de khuyến mãi
PROMO_EXPENSE_ACCOUNT = "64191"
PROMO_EXPENSE_CODE = "161010"
BIRTHDAY_EXPENSE_ACCOUNT = "64192"
BIRTHDAY_EXPENSE_CODE = "162010"

# Cabecera del payload Fast
DEFAULT_UNIT = "Cái"
DEFAULT_SERIES = "DEFAULT"
DEFAULT_CURRENCY = "VND"
DEFAULT_TAX_DEBIT_ACCOUNT = "131111"
DEFAULT_CHANNEL = "ONLINE"
GXT_TRANSACTION_CODE = "NX01"

PLATFORM_VOUCHER_LABEL = "VC CTKM SÀN"
CARD_ADJUST_ACTION = "ADJUST"

# Mensajes de usuario (se persisten tal cual)
MSG_SALE_RETURN_NO_TRANSFERS = "SALE_RETURN không có stock transfer - không cần xử lý"
MSG_SERVICE_ORDER_SUCCESS = "Tạo sales order và sales invoice thành công (02. Làm dịch vụ)"
MSG_SYSTEM_ERROR = "Lỗi hệ thống: {error}"
MSG_NO_SALES = "Đơn hàng {doc_code} không có dữ liệu sales"
MSG_NOT_ALLOWED = 'Chỉ cho phép tạo hóa đơn cho đơn hàng có Loại thuộc: [{allowed}]. Đơn hàng {doc_code} có Loại = "{label}"'
MSG_NO_SERVICE_LINES = "Đơn dịch vụ {doc_code} không có dòng dịch vụ (S) nào"

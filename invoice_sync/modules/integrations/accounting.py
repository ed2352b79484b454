"""
Contrato del cliente de Fast API (kế toán).

La implementación HTTP (token, retry, forma exacta del request) vive fuera
de este servicio; aquí solo se define la interfaz que consumen los flows y
los helpers para leer sus respuestas. Fast responde listas del tipo
[{"status": 1, "message": "OK", "guid": "..."}]; status 1 = thành công.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class AccountingClient(ABC):

    @abstractmethod
    async def create_sales_order(self, payload: Dict[str, Any], action: int = 0) -> Any:
        """Tạo đơn hàng bán (salesOrder). action=1 para hủy / cập nhật."""

    @abstractmethod
    async def create_sales_invoice(self, payload: Dict[str, Any]) -> Any:
        """Tạo hóa đơn bán hàng (salesInvoice)."""

    @abstractmethod
    async def create_sales_return(self, payload: Dict[str, Any]) -> Any:
        """Tạo hàng bán trả lại (salesReturn)."""

    @abstractmethod
    async def create_gxt_invoice(self, payload: Dict[str, Any]) -> Any:
        """Tạo phiếu tạo gộp xuất tách (GXT)."""

    @abstractmethod
    async def create_or_update_customer(self, payload: Dict[str, Any]) -> Any:
        """Tạo / cập nhật khách hàng."""

    @abstractmethod
    async def process_payment(
        self,
        doc_code: str,
        order: Dict[str, Any],
        invoice_data: Dict[str, Any],
        stock_codes: List[str],
        allow_without_stock_codes: bool = False,
    ) -> Dict[str, Any]:
        """Phiếu thu / báo có. Devuelve {paymentResults: [], debitAdviceResults: []}."""

    @abstractmethod
    async def process_cashio_payment(self, payment_data: Dict[str, Any]) -> Any:
        """Envía un registro de cashio pendiente (tiền mặt / ngân hàng)."""


def _first(response: Any) -> Optional[Dict[str, Any]]:
    if isinstance(response, list):
        return response[0] if response and isinstance(response[0], dict) else None
    if isinstance(response, dict):
        return response
    return None


def response_status(response: Any) -> int:
    """1 si el primer elemento de la respuesta reporta status 1, si no 0"""
    first = _first(response)
    if not first:
        return 0
    try:
        return 1 if int(first.get("status")) == 1 else 0
    except (TypeError, ValueError):
        return 0


def response_message(response: Any) -> str:
    first = _first(response)
    if not first:
        return ""
    message = first.get("message")
    return str(message) if message is not None else ""


def response_guid(response: Any) -> Optional[str]:
    """guid del primer elemento; Fast a veces lo devuelve como lista"""
    first = _first(response)
    if not first:
        return None
    guid = first.get("guid")
    if isinstance(guid, list):
        guid = guid[0] if guid else None
    return str(guid) if guid else None


def is_informative(message: Optional[str]) -> bool:
    return bool(message) and message.strip().upper() != "OK"


def with_api_message(base: str, api_message: Optional[str]) -> str:
    """Agrega el mensaje de Fast salvo que sea un simple 'OK'"""
    if is_informative(api_message):
        return f"{base}. {api_message.strip()}"
    return base

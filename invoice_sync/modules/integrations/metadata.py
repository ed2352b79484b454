"""
Contrato de los servicios de metadata (sản phẩm, phòng ban, kho, nhân viên,
thẻ) y de cashio pendiente.

Todas las búsquedas son por lote: reciben un conjunto de claves y devuelven
un dict clave -> datos, para no hacer una llamada por línea.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel


class ProductInfo(BaseModel):
    code: str
    dvt: Optional[str] = None
    track_batch: bool = False
    track_serial: bool = False
    material_code: Optional[str] = None


class DepartmentInfo(BaseModel):
    branch_code: str
    ma_bp: Optional[str] = None
    ma_dvcs: Optional[str] = None
    brand: Optional[str] = None


class CardItem(BaseModel):
    item_code: Optional[str] = None
    qty: float = 0
    action: Optional[str] = None
    issue_partner_code: Optional[str] = None
    serial: Optional[str] = None


class MetadataProvider(ABC):

    @abstractmethod
    async def fetch_products(self, item_codes: Iterable[str]) -> Dict[str, ProductInfo]:
        """item_code -> ProductInfo"""

    @abstractmethod
    async def fetch_departments(self, branch_codes: Iterable[str]) -> Dict[str, DepartmentInfo]:
        """branch_code -> DepartmentInfo"""

    @abstractmethod
    async def fetch_warehouse_codes(self, stock_codes: Iterable[str]) -> Dict[str, str]:
        """stock_code (kho ERP) -> mã kho Fast"""

    @abstractmethod
    async def fetch_employee_status(self, partner_codes: Iterable[str]) -> Dict[str, bool]:
        """partner_code -> True si es nhân viên"""

    @abstractmethod
    async def fetch_card_data(self, doc_code: str) -> List[Dict[str, Any]]:
        """Respuesta cruda del servicio de thẻ: [{"data": [...]}]"""

    @abstractmethod
    async def find_pending_payments(self, doc_code: str) -> List[Dict[str, Any]]:
        """Registros de cashio (tiền mặt / chuyển khoản) asociados al đơn"""


def parse_card_data(response: Any) -> List[CardItem]:
    """Toma response[0].data y lo convierte a CardItem"""
    if not isinstance(response, list) or not response:
        return []
    first = response[0]
    data = first.get("data") if isinstance(first, dict) else None
    if not isinstance(data, list):
        return []
    return [CardItem(**item) for item in data if isinstance(item, dict)]

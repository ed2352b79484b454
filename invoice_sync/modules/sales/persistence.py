"""
Persistencia del estado de sincronización con Fast.

- fast_api_invoices: upsert por doc_code (una fila por đơn hàng)
- sales.is_processed: se marca al crear el documento con éxito
- stock_transfers / order_fee: solo lectura
"""
import json
import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_sync.modules.sales.models import FastApiInvoice, Sale, StockTransfer, OrderFee
from invoice_sync.modules.sales.schemas import StockTransferData, OrderFeeData

logger = logging.getLogger(__name__)


def serialize_response(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


class InvoicePersistenceService:
    """Acceso a datos del flujo de hóa đơn"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_invoice(self, doc_code: str) -> Optional[FastApiInvoice]:
        result = await self.db.execute(
            select(FastApiInvoice).where(FastApiInvoice.doc_code == doc_code)
        )
        return result.scalars().first()

    async def save_fast_api_invoice(
        self,
        doc_code: str,
        status: int,
        message: Optional[str] = None,
        guid: Optional[str] = None,
        fast_api_response: Any = None,
        ma_dvcs: Optional[str] = None,
        ma_kh: Optional[str] = None,
        ten_kh: Optional[str] = None,
        ngay_ct: Optional[datetime] = None,
    ) -> FastApiInvoice:
        """
        Upsert por doc_code.

        En update, status siempre se sobrescribe; message/guid/response solo si
        vienen valores nuevos y los datos de khách hàng solo si están presentes.
        """
        response_text = serialize_response(fast_api_response)
        try:
            invoice = await self.get_invoice(doc_code)
            if invoice:
                invoice.status = status
                if message is not None:
                    invoice.message = message
                if guid is not None:
                    invoice.guid = guid
                if response_text is not None:
                    invoice.fast_api_response = response_text
                if ma_dvcs:
                    invoice.ma_dvcs = ma_dvcs
                if ma_kh:
                    invoice.ma_kh = ma_kh
                if ten_kh:
                    invoice.ten_kh = ten_kh
                if ngay_ct:
                    invoice.ngay_ct = ngay_ct
            else:
                invoice = FastApiInvoice(
                    doc_code=doc_code,
                    status=status,
                    message=message,
                    guid=guid,
                    fast_api_response=response_text,
                    ma_dvcs=ma_dvcs,
                    ma_kh=ma_kh,
                    ten_kh=ten_kh,
                    ngay_ct=ngay_ct,
                )
                self.db.add(invoice)

            await self.db.commit()
            await self.db.refresh(invoice)
            logger.info(f"[Persistence] Saved invoice status for {doc_code}: status={status}")
            return invoice
        except Exception as e:
            await self.db.rollback()
            logger.error(f"[Persistence] Error saving invoice status for {doc_code}: {e}")
            raise

    async def mark_order_as_processed(self, doc_code: str) -> int:
        """UPDATE sales SET is_processed = true WHERE doc_code = ... (no-op si ya lo está)"""
        result = await self.db.execute(
            update(Sale)
            .where(Sale.doc_code == doc_code, Sale.is_processed.is_(False))
            .values(is_processed=True)
        )
        await self.db.commit()
        logger.info(f"[Persistence] Marked {result.rowcount} sale line(s) of {doc_code} as processed")
        return result.rowcount

    async def find_stock_transfers(self, so_codes: List[str]) -> List[StockTransferData]:
        if not so_codes:
            return []
        result = await self.db.execute(
            select(StockTransfer)
            .where(StockTransfer.so_code.in_(so_codes))
            .order_by(StockTransfer.doc_code, StockTransfer.created_at)
        )
        return [StockTransferData.model_validate(row) for row in result.scalars().all()]

    async def find_order_fees(self, doc_codes: List[str]) -> List[OrderFeeData]:
        if not doc_codes:
            return []
        result = await self.db.execute(
            select(OrderFee).where(OrderFee.erp_order_code.in_(doc_codes))
        )
        return [OrderFeeData.model_validate(row) for row in result.scalars().all()]
